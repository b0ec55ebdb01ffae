from typing import Optional

from fastapi import APIRouter, Depends, Query

from starfood import schemas
from starfood.db import models, orders
from starfood.routes.base import Page, get_current_user, page_params, success
from starfood.utils import formatters
from starfood.utils.lifecycle import OrderStatus
from starfood.utils.security import AuthUser

router = APIRouter(prefix="/api/orders", tags=["orders"])


@router.post("")
async def create_order(
    req: schemas.OrderCreateRequest, user: AuthUser = Depends(get_current_user)
):
    detail = await orders.create_order(
        user.id,
        models.OrderCreate(
            address_id=req.address_id, discount_code=req.discount_code, notes=req.notes
        ),
    )
    return success("Order created successfully", formatters.order_detail(detail), 201)


@router.get("")
async def list_orders(
    p: Page = Depends(page_params),
    status: Optional[OrderStatus] = Query(None),
    user: AuthUser = Depends(get_current_user),
):
    summaries, total = await orders.list_user_orders(user.id, p.page, p.limit, status)
    return success(
        "Orders retrieved successfully",
        formatters.paginated(
            [formatters.order_summary(s) for s in summaries], p.page, p.limit, total
        ),
    )


@router.get("/{order_id}")
async def get_order(order_id: int, user: AuthUser = Depends(get_current_user)):
    detail = await orders.get_order_detail(order_id, user.id)
    return success("Order retrieved successfully", formatters.order_detail(detail))


@router.post("/{order_id}/cancel")
async def cancel_order(order_id: int, user: AuthUser = Depends(get_current_user)):
    detail = await orders.cancel_order(order_id, user.id)
    return success("Order cancelled successfully", formatters.order_detail(detail))
