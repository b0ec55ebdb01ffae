# provide dataclass models

from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional, TypeVar

from starfood.db.database import to_timestamp
from starfood.utils import pricing

Role = Literal["customer", "admin"]
DiscountType = Literal["percentage", "fixed"]


@dataclass(frozen=True)
class User:
    id: int
    first_name: str
    last_name: str
    email: str
    phone_number: str
    role: str  # "customer" or "admin"
    created_at: str
    updated_at: str

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


@dataclass(frozen=True)
class Address:
    id: int
    user_id: int
    title: str
    street: str
    city: str
    postal_code: Optional[str]
    phone_number: str
    latitude: Optional[float]
    longitude: Optional[float]
    is_default: bool
    created_at: str
    updated_at: str

    @property
    def full_address(self) -> str:
        return f"{self.street}, {self.city}"


@dataclass(frozen=True)
class Category:
    id: int
    name: str
    description: Optional[str]
    image_url: Optional[str]
    display_order: int
    is_active: bool


@dataclass(frozen=True)
class Product:
    id: int
    category_id: int
    name: str
    description: str
    price: Decimal
    image_url: str
    is_available: bool
    is_popular: bool
    discount: int  # percentage 0..100
    preparation_time: Optional[int]
    calories: Optional[int]
    created_at: str
    updated_at: str

    @property
    def final_price(self) -> Decimal:
        """Price after the product discount, recomputed on every read."""
        return pricing.effective_unit_price(self.price, self.discount)


@dataclass(frozen=True)
class CartItem:
    id: int
    cart_id: int
    product_id: int
    quantity: int


@dataclass(frozen=True)
class CartLine:
    item: CartItem
    product: Product

    @property
    def item_total(self) -> Decimal:
        return pricing.line_total(self.product.final_price, self.item.quantity)


@dataclass(frozen=True)
class Cart:
    id: Optional[int]  # None when the user never had a cart
    lines: List[CartLine] = field(default_factory=list)


@dataclass(frozen=True)
class Discount:
    id: int
    code: str
    type: str  # "percentage" or "fixed"
    value: Decimal
    min_order_amount: Decimal
    max_discount_amount: Optional[Decimal]
    usage_limit: int
    used_count: int
    start_date: str
    expire_date: str
    is_active: bool

    def is_valid_for_use(self, now: datetime) -> bool:
        when = to_timestamp(now)
        return (
            self.is_active
            and self.start_date <= when < self.expire_date
            and self.used_count < self.usage_limit
        )


@dataclass(frozen=True)
class Order:
    id: int
    order_number: str
    user_id: int
    address_id: int
    discount_id: Optional[int]
    subtotal: Decimal
    discount_amount: Decimal
    delivery_cost: Decimal
    total_amount: Decimal
    status: str
    notes: Optional[str]
    estimated_delivery: Optional[str]
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class OrderItem:
    id: int
    order_id: int
    product_id: int
    product_name: str  # snapshot at time of order
    quantity: int
    unit_price: Decimal  # unit price at time of order
    total_price: Decimal


@dataclass(frozen=True)
class OrderSummary:
    order: Order
    item_count: int
    user: Optional[User] = None


@dataclass(frozen=True)
class OrderDetail:
    order: Order
    items: List[OrderItem]
    address: Address
    discount_code: Optional[str]
    user: Optional[User] = None


@dataclass(frozen=True)
class Review:
    id: int
    user_id: int
    product_id: int
    rating: int
    comment: Optional[str]
    is_approved: bool
    created_at: str
    updated_at: str
    user_name: str = ""
    product_name: str = ""


# ---------------------------
# Inputs
# ---------------------------


@dataclass(frozen=True)
class OrderCreate:
    address_id: int
    discount_code: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class AddressUpdate:
    title: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None
    phone_number: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    is_default: Optional[bool] = None


@dataclass(frozen=True)
class CategoryUpdate:
    name: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    display_order: Optional[int] = None
    is_active: Optional[bool] = None


@dataclass(frozen=True)
class ProductUpdate:
    category_id: Optional[int] = None
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[Decimal] = None
    image_url: Optional[str] = None
    is_available: Optional[bool] = None
    is_popular: Optional[bool] = None
    discount: Optional[int] = None
    preparation_time: Optional[int] = None
    calories: Optional[int] = None


@dataclass(frozen=True)
class ProfileUpdate:
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone_number: Optional[str] = None


@dataclass(frozen=True)
class ReviewUpdate:
    rating: Optional[int] = None
    comment: Optional[str] = None


T = TypeVar("T")


def merge_update(entity: T, update) -> T:
    """
    Return a copy of ``entity`` with every non-None field of ``update`` applied.
    Fields left as None keep the entity's current value.
    """
    changes = {
        f.name: getattr(update, f.name)
        for f in fields(update)
        if getattr(update, f.name) is not None
    }
    return replace(entity, **changes)
