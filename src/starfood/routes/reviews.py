from fastapi import APIRouter, Depends

from starfood import schemas
from starfood.db import crud, models
from starfood.routes.base import Page, get_current_user, page_params, success
from starfood.utils import formatters
from starfood.utils.security import AuthUser

router = APIRouter(prefix="/api", tags=["reviews"])


@router.get("/products/{product_id}/reviews")
async def product_reviews(product_id: int, p: Page = Depends(page_params)):
    reviews, total = await crud.list_product_reviews(product_id, p.page, p.limit)
    stats = await crud.product_review_stats(product_id)
    body = formatters.paginated(
        [formatters.review(r) for r in reviews], p.page, p.limit, total
    )
    body["stats"] = formatters.review_stats(stats)
    return success("Reviews retrieved successfully", body)


@router.get("/reviews/me")
async def my_reviews(p: Page = Depends(page_params), user: AuthUser = Depends(get_current_user)):
    reviews, total = await crud.list_user_reviews(user.id, p.page, p.limit)
    return success(
        "Reviews retrieved successfully",
        formatters.paginated([formatters.review(r) for r in reviews], p.page, p.limit, total),
    )


@router.get("/reviews/can-review/{product_id}")
async def can_review(product_id: int, user: AuthUser = Depends(get_current_user)):
    allowed, reason = await crud.can_review(user.id, product_id)
    return success("Review eligibility checked", {"canReview": allowed, "reason": reason})


@router.post("/reviews")
async def create_review(req: schemas.ReviewCreate, user: AuthUser = Depends(get_current_user)):
    review = await crud.create_review(user.id, req.product_id, req.rating, req.comment)
    return success(
        "Review submitted successfully. It will be visible after approval.",
        formatters.review(review),
        201,
    )


@router.patch("/reviews/{review_id}")
async def update_review(
    review_id: int, req: schemas.ReviewUpdate, user: AuthUser = Depends(get_current_user)
):
    data = models.ReviewUpdate(**req.model_dump(exclude_unset=True))
    review = await crud.update_review(review_id, user.id, data)
    return success("Review updated successfully", formatters.review(review))


@router.delete("/reviews/{review_id}")
async def delete_review(review_id: int, user: AuthUser = Depends(get_current_user)):
    await crud.delete_review(review_id, user.id)
    return success("Review deleted successfully")
