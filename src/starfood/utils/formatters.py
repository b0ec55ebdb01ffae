# turns dataclass models into the camelCase dicts sent to clients
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from starfood.db import models
from starfood.utils import pricing


def user(u: models.User) -> Dict:
    return {
        "id": u.id,
        "firstName": u.first_name,
        "lastName": u.last_name,
        "fullName": u.full_name,
        "email": u.email,
        "phoneNumber": u.phone_number,
        "role": u.role,
        "createdAt": u.created_at,
    }


def address(a: models.Address) -> Dict:
    return {
        "id": a.id,
        "title": a.title,
        "street": a.street,
        "city": a.city,
        "postalCode": a.postal_code,
        "phoneNumber": a.phone_number,
        "latitude": a.latitude,
        "longitude": a.longitude,
        "isDefault": a.is_default,
        "fullAddress": a.full_address,
        "createdAt": a.created_at,
    }


def category(c: models.Category, product_count: Optional[int] = None) -> Dict:
    out = {
        "id": c.id,
        "name": c.name,
        "description": c.description,
        "imageUrl": c.image_url,
        "displayOrder": c.display_order,
        "isActive": c.is_active,
    }
    if product_count is not None:
        out["productCount"] = product_count
    return out


def categories(rows: List[Tuple[models.Category, int]]) -> List[Dict]:
    return [category(c, n) for c, n in rows]


def product(p: models.Product) -> Dict:
    return {
        "id": p.id,
        "categoryId": p.category_id,
        "name": p.name,
        "description": p.description,
        "price": p.price,
        "finalPrice": p.final_price,
        "discount": p.discount,
        "imageUrl": p.image_url,
        "isAvailable": p.is_available,
        "isPopular": p.is_popular,
        "preparationTime": p.preparation_time,
        "calories": p.calories,
        "createdAt": p.created_at,
    }


def cart(c: models.Cart) -> Dict:
    """Cart lines with live prices and the totals a checkout would start from."""
    items = []
    subtotal = Decimal("0")
    total = Decimal("0")
    for line in c.lines:
        p = line.product
        subtotal += pricing.line_total(p.price, line.item.quantity)
        total += line.item_total
        items.append(
            {
                "id": line.item.id,
                "productId": p.id,
                "name": p.name,
                "imageUrl": p.image_url,
                "price": p.price,
                "discount": p.discount,
                "finalPrice": p.final_price,
                "quantity": line.item.quantity,
                "isAvailable": p.is_available,
                "itemTotal": line.item_total,
            }
        )
    return {
        "id": c.id,
        "items": items,
        "itemCount": sum(line.item.quantity for line in c.lines),
        "subtotal": subtotal,
        "totalDiscount": subtotal - total,
        "total": total,
    }


def discount(d: models.Discount) -> Dict:
    return {
        "id": d.id,
        "code": d.code,
        "type": d.type,
        "value": d.value,
        "minOrderAmount": d.min_order_amount,
        "maxDiscountAmount": d.max_discount_amount,
        "usageLimit": d.usage_limit,
        "usedCount": d.used_count,
        "startDate": d.start_date,
        "expireDate": d.expire_date,
        "isActive": d.is_active,
    }


def review(r: models.Review) -> Dict:
    return {
        "id": r.id,
        "userId": r.user_id,
        "userName": r.user_name,
        "productId": r.product_id,
        "productName": r.product_name,
        "rating": r.rating,
        "comment": r.comment,
        "isApproved": r.is_approved,
        "createdAt": r.created_at,
        "updatedAt": r.updated_at,
    }


def review_stats(stats: Dict) -> Dict:
    return {
        "averageRating": stats["average_rating"],
        "totalReviews": stats["total_reviews"],
        "ratingDistribution": {str(k): v for k, v in stats["rating_distribution"].items()},
    }


def _order_fields(o: models.Order) -> Dict:
    return {
        "id": o.id,
        "orderNumber": o.order_number,
        "status": o.status,
        "subtotal": o.subtotal,
        "discountAmount": o.discount_amount,
        "deliveryCost": o.delivery_cost,
        "totalAmount": o.total_amount,
        "notes": o.notes,
        "estimatedDelivery": o.estimated_delivery,
        "createdAt": o.created_at,
        "updatedAt": o.updated_at,
    }


def order_item(i: models.OrderItem) -> Dict:
    return {
        "id": i.id,
        "productId": i.product_id,
        "productName": i.product_name,
        "quantity": i.quantity,
        "unitPrice": i.unit_price,
        "totalPrice": i.total_price,
    }


def order_detail(detail: models.OrderDetail) -> Dict:
    out = _order_fields(detail.order)
    out["items"] = [order_item(i) for i in detail.items]
    out["address"] = address(detail.address)
    out["discountCode"] = detail.discount_code
    if detail.user is not None:
        out["user"] = user(detail.user)
    return out


def order_summary(summary: models.OrderSummary) -> Dict:
    out = _order_fields(summary.order)
    out["itemCount"] = summary.item_count
    if summary.user is not None:
        out["user"] = {
            "id": summary.user.id,
            "fullName": summary.user.full_name,
            "email": summary.user.email,
            "phoneNumber": summary.user.phone_number,
        }
    return out


def order_stats(stats: Dict) -> Dict:
    return {
        "total": stats["total"],
        **stats["by_status"],
        "todayOrders": stats["today_orders"],
        "todayRevenue": stats["today_revenue"],
    }


def pagination(page: int, limit: int, total: int) -> Dict:
    total_pages = (total + limit - 1) // limit if limit else 0
    return {
        "currentPage": page,
        "totalPages": total_pages,
        "totalItems": total,
        "itemsPerPage": limit,
        "hasNextPage": page < total_pages,
        "hasPrevPage": page > 1,
    }


def paginated(items: List, page: int, limit: int, total: int) -> Dict:
    return {"items": items, "pagination": pagination(page, limit, total)}
