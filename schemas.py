"""
Database and API Schemas

Collection documents are plain snake_case pydantic models; the collection
name is the lowercase class name:
- User -> "user"
- Product -> "product"
- Order -> "order"
- Comment -> "comment"

Request and response bodies use camelCase on the wire and accept either
spelling on input.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

Role = Literal["user", "admin"]
OrderStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled"]
PASSWORD_MIN_LENGTH = 12
COMMENT_MIN_LENGTH = 3
COMMENT_MAX_LENGTH = 3000


# ------------- Collection documents -------------

class User(BaseModel):
    email: EmailStr = Field(..., description="Unique, lower-cased")
    first_name: str
    last_name: str
    password_hash: str = Field(..., description="BCrypt hashed password")
    role: Role = "user"
    refresh_token: Optional[str] = Field(None, description="Single active refresh token")


class Product(BaseModel):
    name: str
    description: str
    price: float = Field(..., gt=0, description="Two decimal places")
    available: int = Field(0, ge=0)
    category: Optional[str] = None
    image_path: Optional[str] = None


class OrderItem(BaseModel):
    product_id: str
    name: str = Field(..., description="Snapshot of product name")
    unit_price: float = Field(..., description="Snapshot of product price")
    quantity: int = Field(..., ge=1)


class Order(BaseModel):
    user_id: str
    items: List[OrderItem]
    total_price: float = Field(..., ge=0)
    status: OrderStatus = "pending"
    stock_reserved: bool = Field(True, description="Items are still counted out of product stock")


class Comment(BaseModel):
    body: str = Field(..., min_length=COMMENT_MIN_LENGTH, max_length=COMMENT_MAX_LENGTH)
    user_id: str
    product_id: str
    # Point-in-time copy of the author's name; not refreshed on rename
    author_first_name: Optional[str] = None
    author_last_name: Optional[str] = None


# ------------- Shared validators -------------

def _clean_email(v):
    return v.strip() if isinstance(v, str) else v


def _check_password(v: Optional[str]) -> Optional[str]:
    if v is not None and len(v) < PASSWORD_MIN_LENGTH:
        raise ValueError(f"Password length should be at least {PASSWORD_MIN_LENGTH} characters long")
    return v


def _check_name(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    v = v.strip()
    if not 2 <= len(v) <= 50:
        raise ValueError("Names should be between 2 and 50 characters long")
    return v


def _check_product_name(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    v = v.strip()
    if len(v) < 3:
        raise ValueError("Name should be at least 3 characters long")
    return v


def _check_description(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    v = v.strip()
    if len(v) < 5:
        raise ValueError("Description should be at least 5 characters long")
    return v


def _check_price(v: Optional[Decimal]) -> Optional[Decimal]:
    if v is not None and v <= 0:
        raise ValueError("Price should be positive")
    return v


def _check_available(v: Optional[int]) -> Optional[int]:
    if v is not None and v < 0:
        raise ValueError("Only non-negative values are valid for available parameter")
    return v


def _blank_to_none(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    return v.strip() or None


def _canonical_id(v: str) -> str:
    # stored ids are lowercase hex; anything else is left for the lookup to miss
    return str(ObjectId(v)) if len(v) == 24 and ObjectId.is_valid(v) else v


# ------------- API models -------------

class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RegisterIn(ApiModel):
    email: EmailStr
    password: str
    first_name: str
    last_name: str

    strip_email_check = field_validator("email", mode="before")(_clean_email)
    password_check = field_validator("password")(_check_password)
    names_check = field_validator("first_name", "last_name")(_check_name)

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()


class UserCreateIn(RegisterIn):
    role: Role = "user"


class UserUpdateIn(ApiModel):
    email: Optional[EmailStr] = None
    password: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: Optional[Role] = None

    strip_email_check = field_validator("email", mode="before")(_clean_email)
    password_check = field_validator("password")(_check_password)
    names_check = field_validator("first_name", "last_name")(_check_name)

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: Optional[str]) -> Optional[str]:
        return v.lower() if v is not None else v


class LoginIn(ApiModel):
    email: EmailStr
    password: str

    strip_email_check = field_validator("email", mode="before")(_clean_email)


class RefreshIn(ApiModel):
    token: str = Field(..., min_length=1)


class TokenPair(ApiModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class AccessToken(ApiModel):
    access_token: str
    token_type: str = "bearer"


class UserOut(ApiModel):
    id: str
    email: EmailStr
    first_name: str
    last_name: str
    role: Role
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ProductIn(ApiModel):
    name: str
    description: str
    price: Decimal = Field(..., max_digits=10, decimal_places=2)
    available: int = Field(..., strict=True)
    category: Optional[str] = None
    image_path: Optional[str] = None

    name_check = field_validator("name")(_check_product_name)
    description_check = field_validator("description")(_check_description)
    price_check = field_validator("price")(_check_price)
    available_check = field_validator("available")(_check_available)
    optional_check = field_validator("category", "image_path")(_blank_to_none)


class ProductUpdateIn(ApiModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[Decimal] = Field(None, max_digits=10, decimal_places=2)
    available: Optional[int] = Field(None, strict=True)
    category: Optional[str] = None
    image_path: Optional[str] = None

    name_check = field_validator("name")(_check_product_name)
    description_check = field_validator("description")(_check_description)
    price_check = field_validator("price")(_check_price)
    available_check = field_validator("available")(_check_available)
    optional_check = field_validator("category", "image_path")(_blank_to_none)


class ProductOut(ApiModel):
    id: str
    name: str
    description: str
    price: float
    available: int
    category: Optional[str] = None
    image_path: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class OrderItemIn(ApiModel):
    product_id: str = Field(..., min_length=1)
    quantity: int = Field(..., gt=0, strict=True)

    product_id_check = field_validator("product_id")(_canonical_id)


class OrderIn(ApiModel):
    user_id: str = Field(..., min_length=1)
    items: List[OrderItemIn] = Field(..., min_length=1)

    user_id_check = field_validator("user_id")(_canonical_id)


class CheckoutIn(ApiModel):
    items: List[OrderItemIn] = Field(..., min_length=1)


class StatusUpdate(ApiModel):
    status: OrderStatus


class OrderItemOut(ApiModel):
    product_id: str
    name: str
    unit_price: float
    quantity: int


class OrderOut(ApiModel):
    id: str
    user_id: str
    items: List[OrderItemOut]
    total_price: float
    status: OrderStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CommentIn(ApiModel):
    body: str

    @field_validator("body")
    @classmethod
    def check_body(cls, v: str) -> str:
        v = v.strip()
        if len(v) < COMMENT_MIN_LENGTH:
            raise ValueError(f"Body length should be at least {COMMENT_MIN_LENGTH} characters long")
        if len(v) > COMMENT_MAX_LENGTH:
            raise ValueError(f"Body length should be at most {COMMENT_MAX_LENGTH} characters long")
        return v


class CommentOut(ApiModel):
    id: str
    body: str
    user_id: str
    product_id: str
    author_first_name: str
    author_last_name: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Message(ApiModel):
    message: str
