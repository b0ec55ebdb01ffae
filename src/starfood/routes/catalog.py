from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query

from starfood.db import crud
from starfood.routes.base import Page, page_params, success
from starfood.utils import formatters
from starfood.utils.errors import NotFound

router = APIRouter(prefix="/api", tags=["catalog"])


@router.get("/categories")
async def list_categories():
    rows = await crud.list_active_categories()
    return success("Categories retrieved successfully", formatters.categories(rows))


@router.get("/categories/{category_id}")
async def get_category(category_id: int):
    category, count = await crud.get_category(category_id)
    return success("Category retrieved successfully", formatters.category(category, count))


@router.get("/categories/{category_id}/products")
async def category_products(category_id: int, p: Page = Depends(page_params)):
    category, products, total = await crud.get_category_products(category_id, p.page, p.limit)
    body = formatters.paginated(
        [formatters.product(x) for x in products], p.page, p.limit, total
    )
    body["category"] = formatters.category(category, total)
    return success("Category products retrieved successfully", body)


@router.get("/products")
async def list_products(
    p: Page = Depends(page_params),
    category_id: Optional[int] = Query(None, alias="categoryId", gt=0),
    min_price: Optional[Decimal] = Query(None, alias="minPrice", ge=0),
    max_price: Optional[Decimal] = Query(None, alias="maxPrice", ge=0),
    is_popular: Optional[bool] = Query(None, alias="isPopular"),
    search: Optional[str] = Query(None, max_length=100),
):
    products, total = await crud.list_products(
        p.page,
        p.limit,
        category_id=category_id,
        min_price=min_price,
        max_price=max_price,
        is_popular=is_popular,
        search=search,
    )
    return success(
        "Products retrieved successfully",
        formatters.paginated([formatters.product(x) for x in products], p.page, p.limit, total),
    )


@router.get("/products/{product_id}")
async def get_product(product_id: int):
    product = await crud.get_product(product_id, include_unavailable=False)
    if product is None:
        raise NotFound("Product not found")
    return success("Product retrieved successfully", formatters.product(product))
