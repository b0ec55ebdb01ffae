# admin-only endpoints; every route requires the admin role
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from starfood import schemas
from starfood.db import crud, models, orders
from starfood.routes.base import Page, page_params, require_admin, success
from starfood.utils import formatters
from starfood.utils.errors import NotFound
from starfood.utils.lifecycle import OrderStatus

router = APIRouter(
    prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)]
)


# --------------------- Orders ---------------------


@router.get("/orders/stats")
async def order_stats():
    stats = await orders.get_order_stats()
    return success("Order statistics retrieved successfully", formatters.order_stats(stats))


@router.get("/orders")
async def list_orders(
    p: Page = Depends(page_params),
    status: Optional[OrderStatus] = Query(None),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    search: Optional[str] = Query(None, max_length=50),
):
    summaries, total = await orders.list_orders_admin(
        p.page, p.limit, status, start_date, end_date, search
    )
    return success(
        "Orders retrieved successfully",
        formatters.paginated(
            [formatters.order_summary(s) for s in summaries], p.page, p.limit, total
        ),
    )


@router.get("/orders/{order_id}")
async def get_order(order_id: int):
    detail = await orders.get_order_detail_admin(order_id)
    return success("Order retrieved successfully", formatters.order_detail(detail))


@router.patch("/orders/{order_id}/status")
async def update_order_status(order_id: int, req: schemas.OrderStatusUpdate):
    detail = await orders.update_order_status(order_id, req.status, req.estimated_delivery)
    return success("Order status updated successfully", formatters.order_detail(detail))


# --------------------- Categories ---------------------


@router.get("/categories")
async def list_categories(p: Page = Depends(page_params)):
    rows, total = await crud.list_categories(p.page, p.limit)
    return success(
        "Categories retrieved successfully",
        formatters.paginated(formatters.categories(rows), p.page, p.limit, total),
    )


@router.get("/categories/{category_id}")
async def get_category(category_id: int):
    category, count = await crud.get_category(category_id, active_only=False)
    return success("Category retrieved successfully", formatters.category(category, count))


@router.post("/categories")
async def create_category(req: schemas.CategoryCreate):
    category = await crud.create_category(**req.model_dump())
    return success("Category created successfully", formatters.category(category, 0), 201)


@router.put("/categories/reorder")
async def reorder_categories(req: schemas.CategoryReorder):
    rows = await crud.reorder_categories(req.category_ids)
    return success("Categories reordered successfully", formatters.categories(rows))


@router.patch("/categories/{category_id}")
async def update_category(category_id: int, req: schemas.CategoryUpdate):
    data = models.CategoryUpdate(**req.model_dump(exclude_unset=True))
    category, count = await crud.update_category(category_id, data)
    return success("Category updated successfully", formatters.category(category, count))


@router.delete("/categories/{category_id}")
async def delete_category(category_id: int):
    await crud.delete_category(category_id)
    return success("Category deleted successfully")


# --------------------- Products ---------------------


@router.get("/products")
async def list_products(
    p: Page = Depends(page_params),
    category_id: Optional[int] = Query(None, alias="categoryId", gt=0),
    is_available: Optional[bool] = Query(None, alias="isAvailable"),
    is_popular: Optional[bool] = Query(None, alias="isPopular"),
    search: Optional[str] = Query(None, max_length=100),
):
    products, total = await crud.list_products(
        p.page,
        p.limit,
        category_id=category_id,
        is_popular=is_popular,
        search=search,
        include_unavailable=True,
        is_available=is_available,
    )
    return success(
        "Products retrieved successfully",
        formatters.paginated([formatters.product(x) for x in products], p.page, p.limit, total),
    )


@router.get("/products/{product_id}")
async def get_product(product_id: int):
    product = await crud.get_product(product_id)
    if product is None:
        raise NotFound("Product not found")
    return success("Product retrieved successfully", formatters.product(product))


@router.post("/products")
async def create_product(req: schemas.ProductCreate):
    product = await crud.create_product(**req.model_dump())
    return success("Product created successfully", formatters.product(product), 201)


@router.patch("/products/{product_id}/availability")
async def set_availability(product_id: int, req: schemas.AvailabilityUpdate):
    product = await crud.set_product_availability(product_id, req.is_available)
    return success("Product availability updated", formatters.product(product))


@router.patch("/products/{product_id}")
async def update_product(product_id: int, req: schemas.ProductUpdate):
    data = models.ProductUpdate(**req.model_dump(exclude_unset=True))
    product = await crud.update_product(product_id, data)
    return success("Product updated successfully", formatters.product(product))


@router.delete("/products/{product_id}")
async def delete_product(product_id: int):
    await crud.delete_product(product_id)
    return success("Product deleted successfully")


# --------------------- Reviews ---------------------


@router.get("/reviews/stats")
async def review_stats():
    stats = await crud.review_stats()
    return success(
        "Review statistics retrieved successfully",
        {
            "total": stats["total"],
            "pending": stats["pending"],
            "approved": stats["approved"],
            "averageRating": stats["average_rating"],
        },
    )


@router.get("/reviews")
async def list_reviews(
    p: Page = Depends(page_params),
    is_approved: Optional[bool] = Query(None, alias="isApproved"),
    product_id: Optional[int] = Query(None, alias="productId", gt=0),
    rating: Optional[int] = Query(None, ge=1, le=5),
):
    reviews, total = await crud.list_reviews_admin(
        p.page, p.limit, is_approved, product_id, rating
    )
    return success(
        "Reviews retrieved successfully",
        formatters.paginated([formatters.review(r) for r in reviews], p.page, p.limit, total),
    )


@router.get("/reviews/{review_id}")
async def get_review(review_id: int):
    review = await crud.get_review(review_id)
    return success("Review retrieved successfully", formatters.review(review))


@router.patch("/reviews/{review_id}/approval")
async def set_review_approval(review_id: int, req: schemas.ReviewApproval):
    review = await crud.set_review_approval(review_id, req.is_approved)
    message = "Review approved" if req.is_approved else "Review rejected"
    return success(message, formatters.review(review))


@router.delete("/reviews/{review_id}")
async def delete_review(review_id: int):
    await crud.delete_review_admin(review_id)
    return success("Review deleted successfully")


# --------------------- Discounts ---------------------


@router.get("/discounts")
async def list_discounts():
    discounts = await crud.list_discounts()
    return success(
        "Discounts retrieved successfully", [formatters.discount(d) for d in discounts]
    )


@router.post("/discounts")
async def create_discount(req: schemas.DiscountCreate):
    discount = await crud.create_discount(
        req.code,
        req.type,
        req.value,
        start_date=req.start_date,
        expire_date=req.expire_date,
        min_order_amount=req.min_order_amount,
        max_discount_amount=req.max_discount_amount,
        usage_limit=req.usage_limit,
        is_active=req.is_active,
    )
    return success("Discount created successfully", formatters.discount(discount), 201)


@router.patch("/discounts/{discount_id}")
async def set_discount_active(discount_id: int, req: schemas.DiscountActiveUpdate):
    discount = await crud.set_discount_active(discount_id, req.is_active)
    return success("Discount updated successfully", formatters.discount(discount))
