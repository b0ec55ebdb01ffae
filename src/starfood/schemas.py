"""
Request Schemas

Pydantic models validating request bodies before the data layer runs.
Clients send camelCase keys; every model also accepts the snake_case field names.
"""

import re
from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from starfood.utils.lifecycle import OrderStatus

_PASSWORD_CHARS = re.compile(r"^[a-zA-Z\d@$!%*?&]{8,}$")
PHONE_PATTERN = r"^\+?[0-9]{10,15}$"
POSTAL_CODE_PATTERN = r"^[a-zA-Z0-9\s\-]{3,20}$"


def _check_password(value: str) -> str:
    if not (
        _PASSWORD_CHARS.match(value)
        and re.search(r"[a-z]", value)
        and re.search(r"[A-Z]", value)
        and re.search(r"\d", value)
    ):
        raise ValueError(
            "Password must contain at least one uppercase letter, "
            "one lowercase letter, and one number"
        )
    return value


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


# --------------------- Auth ---------------------


class RegisterRequest(CamelModel):
    first_name: str = Field(min_length=2, max_length=50)
    last_name: str = Field(min_length=2, max_length=50)
    email: EmailStr
    password: str = Field(min_length=8)
    phone_number: str = Field(pattern=PHONE_PATTERN)

    @field_validator("password")
    @classmethod
    def strong_password(cls, v: str) -> str:
        return _check_password(v)


class LoginRequest(CamelModel):
    email: EmailStr
    password: str


class RefreshRequest(CamelModel):
    refresh_token: str


class ProfileUpdateRequest(CamelModel):
    first_name: Optional[str] = Field(None, min_length=2, max_length=50)
    last_name: Optional[str] = Field(None, min_length=2, max_length=50)
    phone_number: Optional[str] = Field(None, pattern=PHONE_PATTERN)


class ChangePasswordRequest(CamelModel):
    current_password: str
    new_password: str = Field(min_length=8)
    confirm_password: str

    @field_validator("new_password")
    @classmethod
    def strong_password(cls, v: str) -> str:
        return _check_password(v)

    @model_validator(mode="after")
    def passwords_match(self):
        if self.new_password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


# --------------------- Addresses ---------------------


class AddressCreateRequest(CamelModel):
    title: str = Field(min_length=2, max_length=50)
    street: str = Field(min_length=5, max_length=255)
    city: str = Field(min_length=2, max_length=100)
    postal_code: Optional[str] = Field(None, pattern=POSTAL_CODE_PATTERN)
    phone_number: str = Field(pattern=PHONE_PATTERN)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    is_default: bool = False


class AddressUpdateRequest(CamelModel):
    title: Optional[str] = Field(None, min_length=2, max_length=50)
    street: Optional[str] = Field(None, min_length=5, max_length=255)
    city: Optional[str] = Field(None, min_length=2, max_length=100)
    postal_code: Optional[str] = Field(None, pattern=POSTAL_CODE_PATTERN)
    phone_number: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    is_default: Optional[bool] = None


# --------------------- Cart ---------------------


class CartItemAdd(CamelModel):
    product_id: int = Field(gt=0)
    quantity: int = Field(1, ge=1, le=99)


class CartItemUpdate(CamelModel):
    quantity: int = Field(ge=1, le=99)


# --------------------- Orders ---------------------


class OrderCreateRequest(CamelModel):
    address_id: int = Field(gt=0)
    discount_code: Optional[str] = Field(None, min_length=3, max_length=50)
    notes: Optional[str] = Field(None, max_length=500)

    @field_validator("discount_code")
    @classmethod
    def upper_code(cls, v: Optional[str]) -> Optional[str]:
        return v.upper() if v else v


class OrderStatusUpdate(CamelModel):
    status: OrderStatus
    estimated_delivery: Optional[datetime] = None


# --------------------- Catalog ---------------------


class CategoryCreate(CamelModel):
    name: str = Field(min_length=2, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    image_url: Optional[str] = None
    display_order: Optional[int] = Field(None, ge=0)
    is_active: bool = True


class CategoryUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    image_url: Optional[str] = None
    display_order: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None


class CategoryReorder(CamelModel):
    category_ids: List[int] = Field(min_length=1)


class ProductCreate(CamelModel):
    category_id: int = Field(gt=0)
    name: str = Field(min_length=2, max_length=200)
    description: str = Field(min_length=10)
    price: Decimal = Field(ge=0)
    image_url: str
    is_available: bool = True
    is_popular: bool = False
    discount: int = Field(0, ge=0, le=100)
    preparation_time: Optional[int] = Field(None, ge=0)
    calories: Optional[int] = Field(None, ge=0)


class ProductUpdate(CamelModel):
    category_id: Optional[int] = Field(None, gt=0)
    name: Optional[str] = Field(None, min_length=2, max_length=200)
    description: Optional[str] = Field(None, min_length=10)
    price: Optional[Decimal] = Field(None, ge=0)
    image_url: Optional[str] = None
    is_available: Optional[bool] = None
    is_popular: Optional[bool] = None
    discount: Optional[int] = Field(None, ge=0, le=100)
    preparation_time: Optional[int] = Field(None, ge=0)
    calories: Optional[int] = Field(None, ge=0)


class AvailabilityUpdate(CamelModel):
    is_available: bool


# --------------------- Reviews ---------------------


class ReviewCreate(CamelModel):
    product_id: int = Field(gt=0)
    rating: int = Field(ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=1000)


class ReviewUpdate(CamelModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=1000)


class ReviewApproval(CamelModel):
    is_approved: bool


# --------------------- Discounts ---------------------


class DiscountCreate(CamelModel):
    code: str = Field(min_length=3, max_length=50)
    type: Literal["percentage", "fixed"]
    value: Decimal = Field(ge=0)
    min_order_amount: Decimal = Field(Decimal("0"), ge=0)
    max_discount_amount: Optional[Decimal] = Field(None, ge=0)
    usage_limit: int = Field(1, ge=1)
    start_date: datetime
    expire_date: datetime
    is_active: bool = True

    @model_validator(mode="after")
    def percentage_range(self):
        if self.type == "percentage" and self.value > 100:
            raise ValueError("Percentage discount cannot exceed 100")
        return self


class DiscountActiveUpdate(CamelModel):
    is_active: bool
