# src/starfood/db/orders.py
"""
Checkout and order lifecycle.

``create_order`` turns a user's cart into an order inside one ``BEGIN IMMEDIATE``
transaction: any failure leaves no order, no items, no discount usage and the cart
untouched. Status changes go through the transition table in
``starfood.utils.lifecycle`` and are persisted with an update guarded on the status
that was read.
"""
from __future__ import annotations

import sqlite3
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from sqlite3 import Row
from typing import Dict, List, Optional, Tuple

import aiosqlite

from starfood import config
from starfood.db import models
from starfood.db.crud import fetch_cart_lines, row_to_address, row_to_discount, row_to_user
from starfood.db.database import (
    connect,
    fetch_all,
    fetch_one,
    like_pattern,
    to_timestamp,
    transaction,
)
from starfood.utils import lifecycle, pricing
from starfood.utils.errors import BadRequest, Conflict, NotFound
from starfood.utils.logger import get_logger

_logger = get_logger(__name__)


def generate_order_number(now: Optional[datetime] = None) -> str:
    """``ORD-YYYYMMDD-`` followed by 8 uppercase hex characters."""
    now = now or datetime.now(timezone.utc)
    return f"ORD-{now:%Y%m%d}-{uuid.uuid4().hex[:8].upper()}"


def row_to_order(row: Row) -> models.Order:
    return models.Order(
        id=row["id"],
        order_number=row["order_number"],
        user_id=row["user_id"],
        address_id=row["address_id"],
        discount_id=row["discount_id"],
        subtotal=pricing.to_money(row["subtotal"]),
        discount_amount=pricing.to_money(row["discount_amount"]),
        delivery_cost=pricing.to_money(row["delivery_cost"]),
        total_amount=pricing.to_money(row["total_amount"]),
        status=row["status"],
        notes=row["notes"],
        estimated_delivery=row["estimated_delivery"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def row_to_order_item(row: Row) -> models.OrderItem:
    return models.OrderItem(
        id=row["id"],
        order_id=row["order_id"],
        product_id=row["product_id"],
        product_name=row["product_name"],
        quantity=row["quantity"],
        unit_price=pricing.to_money(row["unit_price"]),
        total_price=pricing.to_money(row["total_price"]),
    )


# ---------------------------
# Checkout
# ---------------------------


async def _apply_discount(
    conn: aiosqlite.Connection, code: str, subtotal: Decimal, now: datetime
) -> Tuple[int, Decimal]:
    """
    Validate a discount code against the subtotal, consume one use and return
    (discount_id, amount).
    """
    code = code.strip().upper()
    row = await fetch_one(conn, "SELECT * FROM discounts WHERE code = ?;", (code,))
    when = to_timestamp(now)
    if (
        not row
        or not row["is_active"]
        or not (row["start_date"] <= when < row["expire_date"])
    ):
        _logger.info(f"Discount {code} rejected: unknown, inactive or outside its window")
        raise BadRequest("Invalid or expired discount code")
    if row["used_count"] >= row["usage_limit"]:
        _logger.info(f"Discount {code} rejected: usage limit reached")
        raise BadRequest("Discount code usage limit reached")

    discount = row_to_discount(row)
    if subtotal < discount.min_order_amount:
        _logger.info(f"Discount {code} rejected: subtotal {subtotal} below minimum")
        raise BadRequest(
            f"Minimum order amount for this discount is {discount.min_order_amount}"
        )
    amount = pricing.discount_amount(discount, subtotal)

    cur = await conn.execute(
        """
        UPDATE discounts SET used_count = used_count + 1
        WHERE id = ? AND used_count < usage_limit;
        """,
        (discount.id,),
    )
    if cur.rowcount == 0:
        _logger.info(f"Discount {code} rejected: last use taken concurrently")
        raise BadRequest("Discount code usage limit reached")
    return discount.id, amount


async def _insert_order(conn: aiosqlite.Connection, values: tuple, now: datetime) -> int:
    """Insert the order row, drawing a new order number on a collision."""
    for attempt in range(1, config.ORDER_NUMBER_ATTEMPTS + 1):
        order_number = generate_order_number(now)
        try:
            cur = await conn.execute(
                """
                INSERT INTO orders(order_number, user_id, address_id, discount_id, subtotal,
                                   discount_amount, delivery_cost, total_amount, status,
                                   notes, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, 'pending', ?, ?, ?);
                """,
                (order_number,) + values,
            )
        except sqlite3.IntegrityError as e:
            if "order_number" not in str(e) or attempt == config.ORDER_NUMBER_ATTEMPTS:
                raise
            _logger.warning(f"Order number {order_number} already taken, retrying")
            continue
        order_id = cur.lastrowid
        await cur.close()
        return order_id
    raise RuntimeError("unreachable")


async def create_order(
    user_id: int, data: models.OrderCreate, now: Optional[datetime] = None
) -> models.OrderDetail:
    """
    Create an order from the user's cart and return its full detail.

    Line prices are snapshotted from each product's current effective price. The
    cart is emptied in the same transaction; the cart row itself is kept.
    """
    now = now or datetime.now(timezone.utc)
    stamp = to_timestamp(now)

    async with transaction() as conn:
        address = await fetch_one(
            conn,
            "SELECT id FROM addresses WHERE id = ? AND user_id = ?;",
            (data.address_id, user_id),
        )
        if not address:
            raise NotFound("Address not found")

        cart = await fetch_one(conn, "SELECT id FROM carts WHERE user_id = ?;", (user_id,))
        lines = await fetch_cart_lines(conn, cart["id"]) if cart else []
        if not lines:
            raise BadRequest("Cart is empty")
        if any(product is None for _, product in lines):
            raise NotFound("Product not found")

        unavailable = [p.name for _, p in lines if not p.is_available]
        if unavailable:
            raise BadRequest(f"Some products are unavailable: {', '.join(unavailable)}")

        snapshots = []
        subtotal = Decimal("0")
        for item, product in lines:
            unit_price = product.final_price
            total_price = pricing.line_total(unit_price, item.quantity)
            subtotal += total_price
            snapshots.append((product.id, product.name, item.quantity, unit_price, total_price))

        discount_id = None
        discount = Decimal("0")
        if data.discount_code:
            discount_id, discount = await _apply_discount(conn, data.discount_code, subtotal, now)

        delivery_cost = config.DELIVERY_COST
        total = pricing.order_total(subtotal, discount, delivery_cost)
        if total < 0:
            raise BadRequest("Total amount cannot be negative")

        order_id = await _insert_order(
            conn,
            (
                user_id,
                data.address_id,
                discount_id,
                subtotal,
                discount,
                delivery_cost,
                total,
                data.notes,
                stamp,
                stamp,
            ),
            now,
        )

        await conn.executemany(
            """
            INSERT INTO order_items(order_id, product_id, product_name, quantity,
                                    unit_price, total_price)
            VALUES (?, ?, ?, ?, ?, ?);
            """,
            [(order_id,) + snap for snap in snapshots],
        )
        await conn.execute("DELETE FROM cart_items WHERE cart_id = ?;", (cart["id"],))

    _logger.info(
        f"Order {order_id} created for user {user_id}: "
        f"{len(snapshots)} line(s), total {total}"
    )
    return await get_order_detail(order_id, user_id)


# ---------------------------
# Order reads
# ---------------------------


async def _load_detail(
    conn: aiosqlite.Connection, order_row: Row, with_user: bool
) -> models.OrderDetail:
    order = row_to_order(order_row)
    item_rows = await fetch_all(
        conn, "SELECT * FROM order_items WHERE order_id = ? ORDER BY id;", (order.id,)
    )
    address_row = await fetch_one(
        conn, "SELECT * FROM addresses WHERE id = ?;", (order.address_id,)
    )
    code = None
    if order.discount_id is not None:
        row = await fetch_one(
            conn, "SELECT code FROM discounts WHERE id = ?;", (order.discount_id,)
        )
        code = row["code"] if row else None
    user = None
    if with_user:
        row = await fetch_one(conn, "SELECT * FROM users WHERE id = ?;", (order.user_id,))
        user = row_to_user(row) if row else None
    return models.OrderDetail(
        order=order,
        items=[row_to_order_item(r) for r in item_rows],
        address=row_to_address(address_row),
        discount_code=code,
        user=user,
    )


async def get_order_detail(order_id: int, user_id: int) -> models.OrderDetail:
    """Owner-scoped detail; someone else's order reads as not found."""
    async with connect() as conn:
        row = await fetch_one(
            conn, "SELECT * FROM orders WHERE id = ? AND user_id = ?;", (order_id, user_id)
        )
        if not row:
            raise NotFound("Order not found")
        return await _load_detail(conn, row, with_user=False)


async def get_order_detail_admin(order_id: int) -> models.OrderDetail:
    async with connect() as conn:
        row = await fetch_one(conn, "SELECT * FROM orders WHERE id = ?;", (order_id,))
        if not row:
            raise NotFound("Order not found")
        return await _load_detail(conn, row, with_user=True)


_SUMMARY_SELECT = """
    SELECT o.*,
           (SELECT COUNT(*) FROM order_items oi WHERE oi.order_id = o.id) AS item_count,
           u.id AS u_id, u.first_name AS u_first_name, u.last_name AS u_last_name,
           u.email AS u_email, u.phone_number AS u_phone_number, u.role AS u_role,
           u.created_at AS u_created_at, u.updated_at AS u_updated_at
    FROM orders o
    JOIN users u ON u.id = o.user_id
"""


async def _list_summaries(
    where: List[str], params: list, page: int, limit: int, with_user: bool
) -> Tuple[List[models.OrderSummary], int]:
    where_clause = " AND ".join(where) if where else "1 = 1"
    offset = max(page - 1, 0) * limit
    async with connect() as conn:
        total = (
            await fetch_one(
                conn, f"SELECT COUNT(*) FROM orders o WHERE {where_clause};", tuple(params)
            )
        )[0]
        rows = await fetch_all(
            conn,
            _SUMMARY_SELECT
            + f"""
            WHERE {where_clause}
            ORDER BY o.created_at DESC, o.id DESC
            LIMIT ? OFFSET ?;
            """,
            tuple(params + [limit, offset]),
        )
    summaries = [
        models.OrderSummary(
            order=row_to_order(r),
            item_count=int(r["item_count"]),
            user=row_to_user(r, prefix="u_") if with_user else None,
        )
        for r in rows
    ]
    return summaries, total


async def list_user_orders(
    user_id: int, page: int, limit: int, status: Optional[str] = None
) -> Tuple[List[models.OrderSummary], int]:
    """
    List a user's orders newest first, paginated.
    Return (orders_for_page, total_count).
    """
    where, params = ["o.user_id = ?"], [user_id]
    if status:
        where.append("o.status = ?")
        params.append(status)
    return await _list_summaries(where, params, page, limit, with_user=False)


async def list_orders_admin(
    page: int,
    limit: int,
    status: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    search: Optional[str] = None,
) -> Tuple[List[models.OrderSummary], int]:
    """All orders, filtered by status, creation window and order number substring."""
    where: List[str] = []
    params: list = []
    if status:
        where.append("o.status = ?")
        params.append(status)
    if start_date is not None:
        where.append("o.created_at >= ?")
        params.append(to_timestamp(start_date))
    if end_date is not None:
        where.append("o.created_at <= ?")
        params.append(to_timestamp(end_date))
    if search:
        where.append("o.order_number LIKE ? ESCAPE '\\'")
        params.append(like_pattern(search.strip().upper()))
    return await _list_summaries(where, params, page, limit, with_user=True)


# ---------------------------
# Lifecycle
# ---------------------------


async def _persist_transition(
    conn: aiosqlite.Connection,
    order_id: int,
    current: str,
    target: str,
    estimated_delivery: Optional[datetime],
) -> None:
    eta = None
    if estimated_delivery is not None and not lifecycle.is_terminal(target):
        eta = to_timestamp(estimated_delivery)
    cur = await conn.execute(
        """
        UPDATE orders
        SET status = ?, estimated_delivery = COALESCE(?, estimated_delivery), updated_at = ?
        WHERE id = ? AND status = ?;
        """,
        (target, eta, to_timestamp(), order_id, current),
    )
    if cur.rowcount == 0:
        raise Conflict("Order status was changed by another request")
    _logger.info(f"Order {order_id}: {current} -> {target}")


async def transition_order(
    order_id: int, target_status: str, estimated_delivery: Optional[datetime] = None
) -> models.Order:
    """
    Move an order to ``target_status`` if the transition table allows it.

    Raises:
        NotFound: no such order.
        InvalidTransition: the pair is not in the table.
        Conflict: the status changed between the read and the update.
    """
    async with connect() as conn:
        row = await fetch_one(conn, "SELECT status FROM orders WHERE id = ?;", (order_id,))
        if not row:
            raise NotFound("Order not found")
        lifecycle.check_transition(row["status"], target_status)
        await _persist_transition(
            conn, order_id, row["status"], target_status, estimated_delivery
        )
        row = await fetch_one(conn, "SELECT * FROM orders WHERE id = ?;", (order_id,))
    return row_to_order(row)


async def cancel_order(order_id: int, user_id: int) -> models.OrderDetail:
    """Customers may cancel their own orders while still pending."""
    async with connect() as conn:
        row = await fetch_one(
            conn,
            "SELECT status FROM orders WHERE id = ? AND user_id = ?;",
            (order_id, user_id),
        )
        if not row:
            raise NotFound("Order not found")
        if row["status"] != "pending":
            raise BadRequest("Only pending orders can be cancelled")
        await _persist_transition(conn, order_id, "pending", "cancelled", None)
    return await get_order_detail(order_id, user_id)


async def update_order_status(
    order_id: int, status: str, estimated_delivery: Optional[datetime] = None
) -> models.OrderDetail:
    await transition_order(order_id, status, estimated_delivery)
    return await get_order_detail_admin(order_id)


# ---------------------------
# Reports (Admin)
# ---------------------------


async def get_order_stats(now: Optional[datetime] = None) -> Dict:
    """
    Dashboard counters: total orders, a count for every status, and orders and
    non-cancelled revenue since UTC midnight today.
    """
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    midnight = now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    start, end = to_timestamp(midnight), to_timestamp(midnight + timedelta(days=1))

    async with connect() as conn:
        rows = await fetch_all(
            conn, "SELECT status, COUNT(*) AS n FROM orders GROUP BY status;"
        )
        # fractional NUMERIC values are stored as REAL, so revenue is summed as Decimal
        today = await fetch_all(
            conn,
            """
            SELECT status, total_amount
            FROM orders
            WHERE created_at >= ? AND created_at < ?;
            """,
            (start, end),
        )

    by_status = {status: 0 for status in lifecycle.ORDER_STATUSES}
    for row in rows:
        by_status[row["status"]] = int(row["n"])
    revenue = sum(
        (pricing.to_money(row["total_amount"]) for row in today if row["status"] != "cancelled"),
        Decimal("0"),
    )
    return {
        "total": sum(by_status.values()),
        "by_status": by_status,
        "today_orders": len(today),
        "today_revenue": revenue,
    }
