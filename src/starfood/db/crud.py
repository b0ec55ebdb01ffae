# src/starfood/db/crud.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from sqlite3 import Row
from typing import Dict, List, Optional, Sequence, Tuple

import aiosqlite

from starfood.db import models
from starfood.db.database import (
    connect,
    fetch_all,
    fetch_one,
    like_pattern,
    to_timestamp,
    transaction,
)
from starfood.utils.errors import BadRequest, Conflict, NotFound, Unauthorized
from starfood.utils.logger import get_logger
from starfood.utils.pricing import to_money
from starfood.utils.security import hash_password, verify_password

_logger = get_logger(__name__)

MAX_CART_QUANTITY = 99


def _offset(page: int, limit: int) -> int:
    return max(page - 1, 0) * limit


def _money_or_none(val) -> Optional[Decimal]:
    return None if val is None else to_money(val)


# ---------------------------
# Row mapping
# ---------------------------


def row_to_user(row: Row, prefix: str = "") -> models.User:
    return models.User(
        id=row[f"{prefix}id"],
        first_name=row[f"{prefix}first_name"],
        last_name=row[f"{prefix}last_name"],
        email=row[f"{prefix}email"],
        phone_number=row[f"{prefix}phone_number"],
        role=row[f"{prefix}role"],
        created_at=row[f"{prefix}created_at"],
        updated_at=row[f"{prefix}updated_at"],
    )


def row_to_address(row: Row, prefix: str = "") -> models.Address:
    return models.Address(
        id=row[f"{prefix}id"],
        user_id=row[f"{prefix}user_id"],
        title=row[f"{prefix}title"],
        street=row[f"{prefix}street"],
        city=row[f"{prefix}city"],
        postal_code=row[f"{prefix}postal_code"],
        phone_number=row[f"{prefix}phone_number"],
        latitude=row[f"{prefix}latitude"],
        longitude=row[f"{prefix}longitude"],
        is_default=bool(row[f"{prefix}is_default"]),
        created_at=row[f"{prefix}created_at"],
        updated_at=row[f"{prefix}updated_at"],
    )


def row_to_category(row: Row) -> models.Category:
    return models.Category(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        image_url=row["image_url"],
        display_order=row["display_order"],
        is_active=bool(row["is_active"]),
    )


def row_to_product(row: Row, prefix: str = "") -> models.Product:
    return models.Product(
        id=row[f"{prefix}id"],
        category_id=row[f"{prefix}category_id"],
        name=row[f"{prefix}name"],
        description=row[f"{prefix}description"],
        price=to_money(row[f"{prefix}price"]),
        image_url=row[f"{prefix}image_url"],
        is_available=bool(row[f"{prefix}is_available"]),
        is_popular=bool(row[f"{prefix}is_popular"]),
        discount=row[f"{prefix}discount"],
        preparation_time=row[f"{prefix}preparation_time"],
        calories=row[f"{prefix}calories"],
        created_at=row[f"{prefix}created_at"],
        updated_at=row[f"{prefix}updated_at"],
    )


def row_to_discount(row: Row) -> models.Discount:
    return models.Discount(
        id=row["id"],
        code=row["code"],
        type=row["type"],
        value=to_money(row["value"]),
        min_order_amount=to_money(row["min_order_amount"]),
        max_discount_amount=_money_or_none(row["max_discount_amount"]),
        usage_limit=row["usage_limit"],
        used_count=row["used_count"],
        start_date=row["start_date"],
        expire_date=row["expire_date"],
        is_active=bool(row["is_active"]),
    )


def row_to_review(row: Row) -> models.Review:
    return models.Review(
        id=row["id"],
        user_id=row["user_id"],
        product_id=row["product_id"],
        rating=row["rating"],
        comment=row["comment"],
        is_approved=bool(row["is_approved"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        user_name=row["user_name"] or "",
        product_name=row["product_name"] or "",
    )


_PRODUCT_COLS = (
    "id, category_id, name, description, price, image_url, is_available, is_popular, "
    "discount, preparation_time, calories, created_at, updated_at"
)


# ---------------------------
# Auth & Users
# ---------------------------


async def email_available(email: str) -> bool:
    """True if no user already registered with the given email."""
    async with connect() as conn:
        row = await fetch_one(
            conn, "SELECT 1 FROM users WHERE email = ? LIMIT 1;", (email.lower(),)
        )
        return row is None


async def register_user(
    first_name: str,
    last_name: str,
    email: str,
    password: str,
    phone_number: str,
    role: str = "customer",
) -> models.User:
    """
    Create a new account. Email is stored lowercase; both email and phone
    number must be unused.
    """
    email = email.lower()
    now = to_timestamp()
    async with transaction() as conn:
        if await fetch_one(conn, "SELECT 1 FROM users WHERE email = ?;", (email,)):
            raise Conflict("Email is already registered")
        if await fetch_one(
            conn, "SELECT 1 FROM users WHERE phone_number = ?;", (phone_number,)
        ):
            raise Conflict("Phone number is already registered")
        cur = await conn.execute(
            """
            INSERT INTO users(first_name, last_name, email, phone_number, password_hash,
                              role, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (first_name, last_name, email, phone_number, hash_password(password), role, now, now),
        )
        user_id = cur.lastrowid
        await cur.close()
    _logger.info(f"Registered user {user_id} ({role})")
    return await get_profile(user_id)


async def authenticate(email: str, password: str) -> models.User:
    """Return the User for valid credentials; raise Unauthorized otherwise."""
    async with connect() as conn:
        row = await fetch_one(conn, "SELECT * FROM users WHERE email = ?;", (email.lower(),))
    if not row or not verify_password(password, row["password_hash"]):
        raise Unauthorized("Invalid email or password")
    return row_to_user(row)


async def get_user(user_id: int) -> Optional[models.User]:
    """Return a User object for the given id, or None if not found."""
    async with connect() as conn:
        row = await fetch_one(conn, "SELECT * FROM users WHERE id = ?;", (user_id,))
    return row_to_user(row) if row else None


async def get_profile(user_id: int) -> models.User:
    user = await get_user(user_id)
    if user is None:
        raise NotFound("User not found")
    return user


async def update_profile(user_id: int, data: models.ProfileUpdate) -> models.User:
    user = await get_profile(user_id)
    async with connect() as conn:
        if data.phone_number and data.phone_number != user.phone_number:
            taken = await fetch_one(
                conn,
                "SELECT 1 FROM users WHERE phone_number = ? AND id <> ?;",
                (data.phone_number, user_id),
            )
            if taken:
                raise Conflict("Phone number is already in use")
        merged = models.merge_update(user, data)
        await conn.execute(
            """
            UPDATE users SET first_name = ?, last_name = ?, phone_number = ?, updated_at = ?
            WHERE id = ?;
            """,
            (merged.first_name, merged.last_name, merged.phone_number, to_timestamp(), user_id),
        )
    return await get_profile(user_id)


async def change_password(user_id: int, current_password: str, new_password: str) -> None:
    async with connect() as conn:
        row = await fetch_one(
            conn, "SELECT password_hash FROM users WHERE id = ?;", (user_id,)
        )
        if not row:
            raise NotFound("User not found")
        if not verify_password(current_password, row["password_hash"]):
            raise BadRequest("Current password is incorrect")
        if verify_password(new_password, row["password_hash"]):
            raise BadRequest("New password must be different from current password")
        await conn.execute(
            "UPDATE users SET password_hash = ?, updated_at = ? WHERE id = ?;",
            (hash_password(new_password), to_timestamp(), user_id),
        )


async def set_user_role(user_id: int, role: str) -> bool:
    async with connect() as conn:
        cur = await conn.execute(
            "UPDATE users SET role = ?, updated_at = ? WHERE id = ?;",
            (role, to_timestamp(), user_id),
        )
        return cur.rowcount > 0


# ---------------------------
# Addresses
# ---------------------------


async def list_addresses(user_id: int) -> List[models.Address]:
    """Default address first, then newest first."""
    async with connect() as conn:
        rows = await fetch_all(
            conn,
            """
            SELECT * FROM addresses
            WHERE user_id = ?
            ORDER BY is_default DESC, created_at DESC, id DESC;
            """,
            (user_id,),
        )
    return [row_to_address(r) for r in rows]


async def get_address(address_id: int, user_id: int) -> models.Address:
    async with connect() as conn:
        row = await fetch_one(
            conn,
            "SELECT * FROM addresses WHERE id = ? AND user_id = ?;",
            (address_id, user_id),
        )
    if not row:
        raise NotFound("Address not found")
    return row_to_address(row)


async def get_default_address(user_id: int) -> Optional[models.Address]:
    async with connect() as conn:
        row = await fetch_one(
            conn,
            "SELECT * FROM addresses WHERE user_id = ? AND is_default = 1;",
            (user_id,),
        )
    return row_to_address(row) if row else None


async def create_address(
    user_id: int,
    *,
    title: str,
    street: str,
    city: str,
    phone_number: str,
    postal_code: Optional[str] = None,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    is_default: bool = False,
) -> models.Address:
    """
    Add an address. The user's first address is always the default; asking for
    a default clears the flag on every other address of the user.
    """
    now = to_timestamp()
    async with transaction() as conn:
        if is_default:
            await conn.execute(
                "UPDATE addresses SET is_default = 0 WHERE user_id = ? AND is_default = 1;",
                (user_id,),
            )
        count = (
            await fetch_one(
                conn, "SELECT COUNT(*) FROM addresses WHERE user_id = ?;", (user_id,)
            )
        )[0]
        cur = await conn.execute(
            """
            INSERT INTO addresses(user_id, title, street, city, postal_code, phone_number,
                                  latitude, longitude, is_default, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                user_id,
                title,
                street,
                city,
                postal_code,
                phone_number,
                latitude,
                longitude,
                1 if (count == 0 or is_default) else 0,
                now,
                now,
            ),
        )
        address_id = cur.lastrowid
        await cur.close()
    return await get_address(address_id, user_id)


async def update_address(
    address_id: int, user_id: int, data: models.AddressUpdate
) -> models.Address:
    address = await get_address(address_id, user_id)
    merged = models.merge_update(address, data)
    async with transaction() as conn:
        if data.is_default:
            await conn.execute(
                "UPDATE addresses SET is_default = 0 WHERE user_id = ? AND is_default = 1;",
                (user_id,),
            )
        await conn.execute(
            """
            UPDATE addresses
            SET title = ?, street = ?, city = ?, postal_code = ?, phone_number = ?,
                latitude = ?, longitude = ?, is_default = ?, updated_at = ?
            WHERE id = ?;
            """,
            (
                merged.title,
                merged.street,
                merged.city,
                merged.postal_code,
                merged.phone_number,
                merged.latitude,
                merged.longitude,
                1 if merged.is_default else 0,
                to_timestamp(),
                address_id,
            ),
        )
    return await get_address(address_id, user_id)


async def set_default_address(address_id: int, user_id: int) -> models.Address:
    await get_address(address_id, user_id)
    async with transaction() as conn:
        await conn.execute(
            "UPDATE addresses SET is_default = 0 WHERE user_id = ?;", (user_id,)
        )
        await conn.execute(
            "UPDATE addresses SET is_default = 1, updated_at = ? WHERE id = ?;",
            (to_timestamp(), address_id),
        )
    return await get_address(address_id, user_id)


async def delete_address(address_id: int, user_id: int) -> None:
    """
    Delete an address. When it was the default, the most recently created
    remaining address becomes the new default.

    The delete and the reassignment are two separate statements, not one
    transaction.
    """
    address = await get_address(address_id, user_id)
    async with connect() as conn:
        if await fetch_one(
            conn, "SELECT 1 FROM orders WHERE address_id = ? LIMIT 1;", (address_id,)
        ):
            raise BadRequest("Address is used by existing orders")
        await conn.execute("DELETE FROM addresses WHERE id = ?;", (address_id,))

        if address.is_default:
            await conn.execute(
                """
                UPDATE addresses SET is_default = 1
                WHERE id = (
                    SELECT id FROM addresses
                    WHERE user_id = ?
                    ORDER BY created_at DESC, id DESC
                    LIMIT 1
                );
                """,
                (user_id,),
            )


async def address_count(user_id: int) -> int:
    async with connect() as conn:
        row = await fetch_one(
            conn, "SELECT COUNT(*) FROM addresses WHERE user_id = ?;", (user_id,)
        )
    return int(row[0])


# ---------------------------
# Categories
# ---------------------------


async def _category_product_count(
    conn: aiosqlite.Connection, category_id: int, available_only: bool
) -> int:
    sql = "SELECT COUNT(*) FROM products WHERE category_id = ?"
    if available_only:
        sql += " AND is_available = 1"
    row = await fetch_one(conn, sql + ";", (category_id,))
    return int(row[0])


async def list_active_categories() -> List[Tuple[models.Category, int]]:
    """Active categories by display order, each with its available product count."""
    async with connect() as conn:
        rows = await fetch_all(
            conn,
            """
            SELECT c.*, COUNT(p.id) AS product_count
            FROM categories c
            LEFT JOIN products p ON p.category_id = c.id AND p.is_available = 1
            WHERE c.is_active = 1
            GROUP BY c.id
            ORDER BY c.display_order, c.id;
            """,
        )
    return [(row_to_category(r), int(r["product_count"])) for r in rows]


async def list_categories(
    page: int, limit: int
) -> Tuple[List[Tuple[models.Category, int]], int]:
    """All categories (admin), paginated; counts include unavailable products."""
    async with connect() as conn:
        total = (await fetch_one(conn, "SELECT COUNT(*) FROM categories;"))[0]
        rows = await fetch_all(
            conn,
            """
            SELECT c.*, COUNT(p.id) AS product_count
            FROM categories c
            LEFT JOIN products p ON p.category_id = c.id
            GROUP BY c.id
            ORDER BY c.display_order, c.id
            LIMIT ? OFFSET ?;
            """,
            (limit, _offset(page, limit)),
        )
    return [(row_to_category(r), int(r["product_count"])) for r in rows], total


async def get_category(
    category_id: int, active_only: bool = True
) -> Tuple[models.Category, int]:
    async with connect() as conn:
        sql = "SELECT * FROM categories WHERE id = ?"
        if active_only:
            sql += " AND is_active = 1"
        row = await fetch_one(conn, sql + ";", (category_id,))
        if not row:
            raise NotFound("Category not found")
        count = await _category_product_count(conn, category_id, available_only=active_only)
    return row_to_category(row), count


async def get_category_products(
    category_id: int, page: int, limit: int
) -> Tuple[models.Category, List[models.Product], int]:
    category, total = await get_category(category_id, active_only=True)
    async with connect() as conn:
        rows = await fetch_all(
            conn,
            f"""
            SELECT {_PRODUCT_COLS} FROM products
            WHERE category_id = ? AND is_available = 1
            ORDER BY created_at DESC, id DESC
            LIMIT ? OFFSET ?;
            """,
            (category_id, limit, _offset(page, limit)),
        )
    return category, [row_to_product(r) for r in rows], total


async def create_category(
    name: str,
    description: Optional[str] = None,
    image_url: Optional[str] = None,
    display_order: Optional[int] = None,
    is_active: bool = True,
) -> models.Category:
    """Names are unique case-insensitively; display order defaults to last + 1."""
    async with transaction() as conn:
        if await fetch_one(
            conn, "SELECT 1 FROM categories WHERE name = ? COLLATE NOCASE;", (name,)
        ):
            raise Conflict("Category with this name already exists")
        if display_order is None:
            row = await fetch_one(conn, "SELECT COALESCE(MAX(display_order), 0) FROM categories;")
            display_order = int(row[0]) + 1
        cur = await conn.execute(
            """
            INSERT INTO categories(name, description, image_url, display_order, is_active)
            VALUES (?, ?, ?, ?, ?);
            """,
            (name, description, image_url, display_order, 1 if is_active else 0),
        )
        category_id = cur.lastrowid
        await cur.close()
    category, _ = await get_category(category_id, active_only=False)
    return category


async def update_category(
    category_id: int, data: models.CategoryUpdate
) -> Tuple[models.Category, int]:
    category, _ = await get_category(category_id, active_only=False)
    async with connect() as conn:
        if data.name and data.name.lower() != category.name.lower():
            taken = await fetch_one(
                conn,
                "SELECT 1 FROM categories WHERE name = ? COLLATE NOCASE AND id <> ?;",
                (data.name, category_id),
            )
            if taken:
                raise Conflict("Category with this name already exists")
        merged = models.merge_update(category, data)
        await conn.execute(
            """
            UPDATE categories
            SET name = ?, description = ?, image_url = ?, display_order = ?, is_active = ?
            WHERE id = ?;
            """,
            (
                merged.name,
                merged.description,
                merged.image_url,
                merged.display_order,
                1 if merged.is_active else 0,
                category_id,
            ),
        )
    return await get_category(category_id, active_only=False)


async def delete_category(category_id: int) -> None:
    await get_category(category_id, active_only=False)
    async with connect() as conn:
        count = await _category_product_count(conn, category_id, available_only=False)
        if count > 0:
            raise BadRequest(
                f"Cannot delete category. It has {count} product(s). "
                "Please move or delete the products first."
            )
        await conn.execute("DELETE FROM categories WHERE id = ?;", (category_id,))


async def reorder_categories(ordered_ids: Sequence[int]) -> List[Tuple[models.Category, int]]:
    """Set display_order to each id's position in ``ordered_ids``."""
    async with transaction() as conn:
        placeholders = ",".join("?" * len(ordered_ids))
        row = await fetch_one(
            conn,
            f"SELECT COUNT(*) FROM categories WHERE id IN ({placeholders});",
            tuple(ordered_ids),
        )
        if not ordered_ids or row[0] != len(set(ordered_ids)):
            raise BadRequest("Some category IDs are invalid")
        await conn.executemany(
            "UPDATE categories SET display_order = ? WHERE id = ?;",
            [(index, cid) for index, cid in enumerate(ordered_ids)],
        )
    return await list_active_categories()


# ---------------------------
# Products
# ---------------------------


async def list_products(
    page: int,
    limit: int,
    category_id: Optional[int] = None,
    min_price: Optional[Decimal] = None,
    max_price: Optional[Decimal] = None,
    is_popular: Optional[bool] = None,
    search: Optional[str] = None,
    include_unavailable: bool = False,
    is_available: Optional[bool] = None,
) -> Tuple[List[models.Product], int]:
    """
    Filtered, paginated product listing. Public callers only ever see available
    products; admins pass include_unavailable and may filter on is_available.
    Returns (products for page, total_count).
    """
    conds: List[str] = []
    params: List = []
    if not include_unavailable:
        conds.append("is_available = 1")
    elif is_available is not None:
        conds.append("is_available = ?")
        params.append(1 if is_available else 0)
    if category_id is not None:
        conds.append("category_id = ?")
        params.append(category_id)
    if min_price is not None:
        conds.append("price >= ?")
        params.append(min_price)
    if max_price is not None:
        conds.append("price <= ?")
        params.append(max_price)
    if is_popular is not None:
        conds.append("is_popular = ?")
        params.append(1 if is_popular else 0)
    phrase = (search or "").strip().lower()
    if phrase:
        like = like_pattern(phrase)
        conds.append(
            "(LOWER(name) LIKE ? ESCAPE '\\' OR LOWER(description) LIKE ? ESCAPE '\\')"
        )
        params.extend([like, like])
    where_clause = " AND ".join(conds) if conds else "1 = 1"

    async with connect() as conn:
        total = (
            await fetch_one(
                conn, f"SELECT COUNT(*) FROM products WHERE {where_clause};", tuple(params)
            )
        )[0]
        rows = await fetch_all(
            conn,
            f"""
            SELECT {_PRODUCT_COLS}
            FROM products
            WHERE {where_clause}
            ORDER BY is_popular DESC, created_at DESC, id DESC
            LIMIT ? OFFSET ?;
            """,
            tuple(params + [limit, _offset(page, limit)]),
        )
    return [row_to_product(r) for r in rows], total


async def get_product(
    product_id: int, include_unavailable: bool = True
) -> Optional[models.Product]:
    """Fetch a product by id."""
    sql = f"SELECT {_PRODUCT_COLS} FROM products WHERE id = ?"
    if not include_unavailable:
        sql += " AND is_available = 1"
    async with connect() as conn:
        row = await fetch_one(conn, sql + ";", (product_id,))
    return row_to_product(row) if row else None


async def _require_category(conn: aiosqlite.Connection, category_id: int) -> None:
    if not await fetch_one(conn, "SELECT 1 FROM categories WHERE id = ?;", (category_id,)):
        raise NotFound("Category not found")


async def create_product(
    *,
    category_id: int,
    name: str,
    description: str,
    price: Decimal,
    image_url: str,
    is_available: bool = True,
    is_popular: bool = False,
    discount: int = 0,
    preparation_time: Optional[int] = None,
    calories: Optional[int] = None,
) -> models.Product:
    now = to_timestamp()
    async with connect() as conn:
        await _require_category(conn, category_id)
        cur = await conn.execute(
            """
            INSERT INTO products(category_id, name, description, price, image_url,
                                 is_available, is_popular, discount, preparation_time,
                                 calories, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                category_id,
                name,
                description,
                to_money(price),
                image_url,
                1 if is_available else 0,
                1 if is_popular else 0,
                discount,
                preparation_time,
                calories,
                now,
                now,
            ),
        )
        product_id = cur.lastrowid
        await cur.close()
    return await get_product(product_id)


async def update_product(product_id: int, data: models.ProductUpdate) -> models.Product:
    """
    Update only the provided fields. Orders already placed keep their own
    snapshot of name and price.
    """
    product = await get_product(product_id)
    if product is None:
        raise NotFound("Product not found")
    merged = models.merge_update(product, data)
    async with connect() as conn:
        if data.category_id is not None:
            await _require_category(conn, data.category_id)
        await conn.execute(
            """
            UPDATE products
            SET category_id = ?, name = ?, description = ?, price = ?, image_url = ?,
                is_available = ?, is_popular = ?, discount = ?, preparation_time = ?,
                calories = ?, updated_at = ?
            WHERE id = ?;
            """,
            (
                merged.category_id,
                merged.name,
                merged.description,
                to_money(merged.price),
                merged.image_url,
                1 if merged.is_available else 0,
                1 if merged.is_popular else 0,
                merged.discount,
                merged.preparation_time,
                merged.calories,
                to_timestamp(),
                product_id,
            ),
        )
    return await get_product(product_id)


async def set_product_availability(product_id: int, is_available: bool) -> models.Product:
    return await update_product(product_id, models.ProductUpdate(is_available=is_available))


async def delete_product(product_id: int) -> None:
    """Cart lines and reviews go with the product; order history does not."""
    async with connect() as conn:
        cur = await conn.execute("DELETE FROM products WHERE id = ?;", (product_id,))
        if cur.rowcount == 0:
            raise NotFound("Product not found")


# ---------------------------
# Cart Management
# ---------------------------


async def _cart_id(conn: aiosqlite.Connection, user_id: int) -> Optional[int]:
    row = await fetch_one(conn, "SELECT id FROM carts WHERE user_id = ?;", (user_id,))
    return row[0] if row else None


async def _get_or_create_cart_id(conn: aiosqlite.Connection, user_id: int) -> int:
    cart_id = await _cart_id(conn, user_id)
    if cart_id is None:
        cur = await conn.execute(
            "INSERT INTO carts(user_id, created_at) VALUES (?, ?);",
            (user_id, to_timestamp()),
        )
        cart_id = cur.lastrowid
        await cur.close()
    return cart_id


async def fetch_cart_lines(
    conn: aiosqlite.Connection, cart_id: int
) -> List[Tuple[models.CartItem, Optional[models.Product]]]:
    """
    Cart items with their current product, in insertion order. The product is
    None when the row it referenced is gone.
    """
    rows = await fetch_all(
        conn,
        """
        SELECT ci.id AS ci_id, ci.cart_id, ci.product_id AS ci_product_id, ci.quantity,
               p.id AS p_id, p.category_id AS p_category_id, p.name AS p_name,
               p.description AS p_description, p.price AS p_price,
               p.image_url AS p_image_url, p.is_available AS p_is_available,
               p.is_popular AS p_is_popular, p.discount AS p_discount,
               p.preparation_time AS p_preparation_time, p.calories AS p_calories,
               p.created_at AS p_created_at, p.updated_at AS p_updated_at
        FROM cart_items ci
        LEFT JOIN products p ON p.id = ci.product_id
        WHERE ci.cart_id = ?
        ORDER BY ci.id;
        """,
        (cart_id,),
    )
    lines = []
    for row in rows:
        item = models.CartItem(
            id=row["ci_id"],
            cart_id=row["cart_id"],
            product_id=row["ci_product_id"],
            quantity=row["quantity"],
        )
        product = row_to_product(row, prefix="p_") if row["p_id"] is not None else None
        lines.append((item, product))
    return lines


async def get_cart(user_id: int) -> models.Cart:
    """Return the user's cart with current product data; empty if none exists."""
    async with connect() as conn:
        cart_id = await _cart_id(conn, user_id)
        if cart_id is None:
            return models.Cart(id=None)
        lines = await fetch_cart_lines(conn, cart_id)
    return models.Cart(
        id=cart_id,
        lines=[models.CartLine(item=i, product=p) for i, p in lines if p is not None],
    )


async def add_cart_item(user_id: int, product_id: int, quantity: int = 1) -> models.Cart:
    """
    Add a product to the cart; if it is already there, increase its quantity
    instead. The resulting quantity may not exceed 99.
    """
    async with transaction() as conn:
        row = await fetch_one(
            conn, "SELECT is_available FROM products WHERE id = ?;", (product_id,)
        )
        if not row:
            raise NotFound("Product not found")
        if not row["is_available"]:
            raise BadRequest("Product is not available")

        cart_id = await _get_or_create_cart_id(conn, user_id)
        existing = await fetch_one(
            conn,
            "SELECT id, quantity FROM cart_items WHERE cart_id = ? AND product_id = ?;",
            (cart_id, product_id),
        )
        if existing:
            new_quantity = existing["quantity"] + quantity
            if new_quantity > MAX_CART_QUANTITY:
                raise BadRequest(f"Quantity cannot exceed {MAX_CART_QUANTITY}")
            await conn.execute(
                "UPDATE cart_items SET quantity = ? WHERE id = ?;",
                (new_quantity, existing["id"]),
            )
        else:
            if quantity > MAX_CART_QUANTITY:
                raise BadRequest(f"Quantity cannot exceed {MAX_CART_QUANTITY}")
            await conn.execute(
                "INSERT INTO cart_items(cart_id, product_id, quantity) VALUES (?, ?, ?);",
                (cart_id, product_id, quantity),
            )
    return await get_cart(user_id)


async def update_cart_item(user_id: int, item_id: int, quantity: int) -> models.Cart:
    """Set the quantity of one of the user's cart items."""
    if quantity < 1 or quantity > MAX_CART_QUANTITY:
        raise BadRequest(f"Quantity must be between 1 and {MAX_CART_QUANTITY}")
    async with connect() as conn:
        cart_id = await _cart_id(conn, user_id)
        if cart_id is None:
            raise NotFound("Cart not found")
        row = await fetch_one(
            conn,
            """
            SELECT ci.id, p.is_available
            FROM cart_items ci
            JOIN products p ON p.id = ci.product_id
            WHERE ci.id = ? AND ci.cart_id = ?;
            """,
            (item_id, cart_id),
        )
        if not row:
            raise NotFound("Cart item not found")
        if not row["is_available"]:
            raise BadRequest("Product is no longer available")
        await conn.execute(
            "UPDATE cart_items SET quantity = ? WHERE id = ?;", (quantity, item_id)
        )
    return await get_cart(user_id)


async def remove_cart_item(user_id: int, item_id: int) -> models.Cart:
    async with connect() as conn:
        cart_id = await _cart_id(conn, user_id)
        if cart_id is None:
            raise NotFound("Cart not found")
        cur = await conn.execute(
            "DELETE FROM cart_items WHERE id = ? AND cart_id = ?;", (item_id, cart_id)
        )
        if cur.rowcount == 0:
            raise NotFound("Cart item not found")
    return await get_cart(user_id)


async def clear_cart(user_id: int) -> models.Cart:
    """Remove all items; the cart row itself is kept."""
    async with connect() as conn:
        await conn.execute(
            "DELETE FROM cart_items WHERE cart_id IN (SELECT id FROM carts WHERE user_id = ?);",
            (user_id,),
        )
    return await get_cart(user_id)


async def cart_item_count(user_id: int) -> int:
    """Total quantity across the user's cart lines."""
    async with connect() as conn:
        row = await fetch_one(
            conn,
            """
            SELECT COALESCE(SUM(ci.quantity), 0)
            FROM cart_items ci
            JOIN carts c ON c.id = ci.cart_id
            WHERE c.user_id = ?;
            """,
            (user_id,),
        )
    return int(row[0])


async def validate_cart(user_id: int) -> Tuple[bool, List[str], models.Cart]:
    """Return (is_valid, unavailable product names, cart) ahead of checkout."""
    cart = await get_cart(user_id)
    if not cart.lines:
        raise BadRequest("Cart is empty")
    unavailable = [line.product.name for line in cart.lines if not line.product.is_available]
    return not unavailable, unavailable, cart


async def remove_unavailable_items(user_id: int) -> models.Cart:
    async with connect() as conn:
        await conn.execute(
            """
            DELETE FROM cart_items
            WHERE cart_id IN (SELECT id FROM carts WHERE user_id = ?)
              AND product_id IN (SELECT id FROM products WHERE is_available = 0);
            """,
            (user_id,),
        )
    return await get_cart(user_id)


# ---------------------------
# Reviews
# ---------------------------

_REVIEW_SELECT = """
    SELECT r.*, u.first_name || ' ' || u.last_name AS user_name, p.name AS product_name
    FROM reviews r
    JOIN users u ON u.id = r.user_id
    JOIN products p ON p.id = r.product_id
"""


async def _require_product(conn: aiosqlite.Connection, product_id: int) -> None:
    if not await fetch_one(conn, "SELECT 1 FROM products WHERE id = ?;", (product_id,)):
        raise NotFound("Product not found")


async def product_review_stats(product_id: int) -> Dict:
    """Average (one decimal), count and 1..5 distribution of approved reviews."""
    async with connect() as conn:
        rows = await fetch_all(
            conn,
            """
            SELECT rating, COUNT(*) AS n FROM reviews
            WHERE product_id = ? AND is_approved = 1
            GROUP BY rating;
            """,
            (product_id,),
        )
    distribution = {rating: 0 for rating in range(1, 6)}
    for row in rows:
        distribution[row["rating"]] = row["n"]
    total = sum(distribution.values())
    if total == 0:
        average = 0.0
    else:
        average = round(sum(r * n for r, n in distribution.items()) / total, 1)
    return {
        "average_rating": average,
        "total_reviews": total,
        "rating_distribution": distribution,
    }


async def list_product_reviews(
    product_id: int, page: int, limit: int
) -> Tuple[List[models.Review], int]:
    """Approved reviews of a product, newest first."""
    async with connect() as conn:
        await _require_product(conn, product_id)
        total = (
            await fetch_one(
                conn,
                "SELECT COUNT(*) FROM reviews WHERE product_id = ? AND is_approved = 1;",
                (product_id,),
            )
        )[0]
        rows = await fetch_all(
            conn,
            _REVIEW_SELECT
            + """
            WHERE r.product_id = ? AND r.is_approved = 1
            ORDER BY r.created_at DESC, r.id DESC
            LIMIT ? OFFSET ?;
            """,
            (product_id, limit, _offset(page, limit)),
        )
    return [row_to_review(r) for r in rows], total


async def list_user_reviews(
    user_id: int, page: int, limit: int
) -> Tuple[List[models.Review], int]:
    async with connect() as conn:
        total = (
            await fetch_one(conn, "SELECT COUNT(*) FROM reviews WHERE user_id = ?;", (user_id,))
        )[0]
        rows = await fetch_all(
            conn,
            _REVIEW_SELECT
            + """
            WHERE r.user_id = ?
            ORDER BY r.created_at DESC, r.id DESC
            LIMIT ? OFFSET ?;
            """,
            (user_id, limit, _offset(page, limit)),
        )
    return [row_to_review(r) for r in rows], total


async def get_review(review_id: int) -> models.Review:
    async with connect() as conn:
        row = await fetch_one(conn, _REVIEW_SELECT + " WHERE r.id = ?;", (review_id,))
    if not row:
        raise NotFound("Review not found")
    return row_to_review(row)


async def create_review(
    user_id: int, product_id: int, rating: int, comment: Optional[str] = None
) -> models.Review:
    """One review per user and product; new reviews wait for admin approval."""
    now = to_timestamp()
    async with transaction() as conn:
        await _require_product(conn, product_id)
        if await fetch_one(
            conn,
            "SELECT 1 FROM reviews WHERE user_id = ? AND product_id = ?;",
            (user_id, product_id),
        ):
            raise Conflict("You have already reviewed this product")
        cur = await conn.execute(
            """
            INSERT INTO reviews(user_id, product_id, rating, comment, is_approved,
                                created_at, updated_at)
            VALUES (?, ?, ?, ?, 0, ?, ?);
            """,
            (user_id, product_id, rating, comment, now, now),
        )
        review_id = cur.lastrowid
        await cur.close()
    return await get_review(review_id)


async def _get_own_review(review_id: int, user_id: int) -> models.Review:
    review = await get_review(review_id)
    if review.user_id != user_id:
        raise NotFound("Review not found")
    return review


async def update_review(
    review_id: int, user_id: int, data: models.ReviewUpdate
) -> models.Review:
    """Editing a review sends it back for approval."""
    review = await _get_own_review(review_id, user_id)
    merged = models.merge_update(review, data)
    async with connect() as conn:
        await conn.execute(
            """
            UPDATE reviews SET rating = ?, comment = ?, is_approved = 0, updated_at = ?
            WHERE id = ?;
            """,
            (merged.rating, merged.comment, to_timestamp(), review_id),
        )
    return await get_review(review_id)


async def delete_review(review_id: int, user_id: int) -> None:
    await _get_own_review(review_id, user_id)
    async with connect() as conn:
        await conn.execute("DELETE FROM reviews WHERE id = ?;", (review_id,))


async def can_review(user_id: int, product_id: int) -> Tuple[bool, Optional[str]]:
    async with connect() as conn:
        if not await fetch_one(conn, "SELECT 1 FROM products WHERE id = ?;", (product_id,)):
            return False, "Product not found"
        if await fetch_one(
            conn,
            "SELECT 1 FROM reviews WHERE user_id = ? AND product_id = ?;",
            (user_id, product_id),
        ):
            return False, "Already reviewed"
    return True, None


async def list_reviews_admin(
    page: int,
    limit: int,
    is_approved: Optional[bool] = None,
    product_id: Optional[int] = None,
    rating: Optional[int] = None,
) -> Tuple[List[models.Review], int]:
    conds: List[str] = []
    params: List = []
    if is_approved is not None:
        conds.append("r.is_approved = ?")
        params.append(1 if is_approved else 0)
    if product_id is not None:
        conds.append("r.product_id = ?")
        params.append(product_id)
    if rating is not None:
        conds.append("r.rating = ?")
        params.append(rating)
    where_clause = " AND ".join(conds) if conds else "1 = 1"
    async with connect() as conn:
        total = (
            await fetch_one(
                conn, f"SELECT COUNT(*) FROM reviews r WHERE {where_clause};", tuple(params)
            )
        )[0]
        rows = await fetch_all(
            conn,
            _REVIEW_SELECT
            + f"""
            WHERE {where_clause}
            ORDER BY r.created_at DESC, r.id DESC
            LIMIT ? OFFSET ?;
            """,
            tuple(params + [limit, _offset(page, limit)]),
        )
    return [row_to_review(r) for r in rows], total


async def set_review_approval(review_id: int, is_approved: bool) -> models.Review:
    await get_review(review_id)
    async with connect() as conn:
        await conn.execute(
            "UPDATE reviews SET is_approved = ? WHERE id = ?;",
            (1 if is_approved else 0, review_id),
        )
    return await get_review(review_id)


async def delete_review_admin(review_id: int) -> None:
    async with connect() as conn:
        cur = await conn.execute("DELETE FROM reviews WHERE id = ?;", (review_id,))
        if cur.rowcount == 0:
            raise NotFound("Review not found")


async def review_stats() -> Dict:
    async with connect() as conn:
        row = await fetch_one(
            conn,
            """
            SELECT COUNT(*) AS total,
                   COALESCE(SUM(is_approved = 0), 0) AS pending,
                   COALESCE(SUM(is_approved = 1), 0) AS approved,
                   AVG(CASE WHEN is_approved = 1 THEN rating END) AS avg_rating
            FROM reviews;
            """,
        )
    return {
        "total": int(row["total"]),
        "pending": int(row["pending"]),
        "approved": int(row["approved"]),
        "average_rating": round(row["avg_rating"] or 0.0, 1),
    }


# ---------------------------
# Discount codes
# ---------------------------


async def create_discount(
    code: str,
    type: str,
    value: Decimal,
    *,
    start_date: datetime,
    expire_date: datetime,
    min_order_amount: Decimal = Decimal("0"),
    max_discount_amount: Optional[Decimal] = None,
    usage_limit: int = 1,
    is_active: bool = True,
) -> models.Discount:
    """Codes are stored uppercase and must be unique; the window must be non-empty."""
    code = code.strip().upper()
    start, expire = to_timestamp(start_date), to_timestamp(expire_date)
    if expire <= start:
        raise BadRequest("Expire date must be after start date")
    async with transaction() as conn:
        if await fetch_one(conn, "SELECT 1 FROM discounts WHERE code = ?;", (code,)):
            raise Conflict("Discount code already exists")
        await conn.execute(
            """
            INSERT INTO discounts(code, type, value, min_order_amount, max_discount_amount,
                                  usage_limit, used_count, start_date, expire_date, is_active)
            VALUES (?, ?, ?, ?, ?, ?, 0, ?, ?, ?);
            """,
            (
                code,
                type,
                to_money(value),
                to_money(min_order_amount),
                _money_or_none(max_discount_amount),
                usage_limit,
                start,
                expire,
                1 if is_active else 0,
            ),
        )
    return await get_discount_by_code(code)


async def get_discount_by_code(code: str) -> Optional[models.Discount]:
    async with connect() as conn:
        row = await fetch_one(
            conn, "SELECT * FROM discounts WHERE code = ?;", (code.strip().upper(),)
        )
    return row_to_discount(row) if row else None


async def list_discounts() -> List[models.Discount]:
    async with connect() as conn:
        rows = await fetch_all(conn, "SELECT * FROM discounts ORDER BY id;")
    return [row_to_discount(r) for r in rows]


async def set_discount_active(discount_id: int, is_active: bool) -> models.Discount:
    async with connect() as conn:
        cur = await conn.execute(
            "UPDATE discounts SET is_active = ? WHERE id = ?;",
            (1 if is_active else 0, discount_id),
        )
        if cur.rowcount == 0:
            raise NotFound("Discount not found")
        row = await fetch_one(conn, "SELECT * FROM discounts WHERE id = ?;", (discount_id,))
    return row_to_discount(row)
