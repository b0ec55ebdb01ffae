from fastapi import APIRouter, Depends

from starfood import schemas
from starfood.db import crud
from starfood.routes.base import get_current_user, success
from starfood.utils import formatters
from starfood.utils.security import AuthUser

router = APIRouter(prefix="/api/cart", tags=["cart"])


@router.get("")
async def get_cart(user: AuthUser = Depends(get_current_user)):
    cart = await crud.get_cart(user.id)
    return success("Cart retrieved successfully", formatters.cart(cart))


@router.get("/count")
async def cart_count(user: AuthUser = Depends(get_current_user)):
    count = await crud.cart_item_count(user.id)
    return success("Cart count retrieved successfully", {"count": count})


@router.get("/validate")
async def validate_cart(user: AuthUser = Depends(get_current_user)):
    is_valid, unavailable, cart = await crud.validate_cart(user.id)
    message = "Cart is valid" if is_valid else "Some products are unavailable"
    return success(
        message,
        {
            "isValid": is_valid,
            "unavailableItems": unavailable,
            "cart": formatters.cart(cart),
        },
    )


@router.post("/items")
async def add_item(req: schemas.CartItemAdd, user: AuthUser = Depends(get_current_user)):
    cart = await crud.add_cart_item(user.id, req.product_id, req.quantity)
    return success("Item added to cart", formatters.cart(cart), 201)


@router.patch("/items/{item_id}")
async def update_item(
    item_id: int, req: schemas.CartItemUpdate, user: AuthUser = Depends(get_current_user)
):
    cart = await crud.update_cart_item(user.id, item_id, req.quantity)
    return success("Cart item updated", formatters.cart(cart))


@router.delete("/items/{item_id}")
async def remove_item(item_id: int, user: AuthUser = Depends(get_current_user)):
    cart = await crud.remove_cart_item(user.id, item_id)
    return success("Item removed from cart", formatters.cart(cart))


@router.post("/remove-unavailable")
async def remove_unavailable(user: AuthUser = Depends(get_current_user)):
    cart = await crud.remove_unavailable_items(user.id)
    return success("Unavailable items removed", formatters.cart(cart))


@router.delete("")
async def clear_cart(user: AuthUser = Depends(get_current_user)):
    cart = await crud.clear_cart(user.id)
    return success("Cart cleared", formatters.cart(cart))
