from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, EmailStr, Field, ConfigDict, field_validator

MAX_PASSWORD_BYTES = 4096


def _validate_password(pw: str) -> str:
    if pw is None or pw == "":
        raise ValueError("Password is required")
    if len(pw.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password too long (max {MAX_PASSWORD_BYTES} bytes)")
    return pw


# --- auth ---

class RegisterIn(BaseModel):
    username: str = Field(min_length=1, max_length=50)
    email: EmailStr
    password: str = Field(min_length=6)
    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)
    phone: str | None = Field(default=None, max_length=15)
    address: str | None = None

    @field_validator("password")
    @classmethod
    def password_ok(cls, v: str) -> str:
        return _validate_password(v)


class LoginIn(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)

    @field_validator("password")
    @classmethod
    def password_ok(cls, v: str) -> str:
        return _validate_password(v)


class UserOut(BaseModel):
    id: int
    username: str
    email: EmailStr
    first_name: str
    last_name: str
    full_name: str
    role: str
    phone: str | None = None
    address: str | None = None
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class AuthOut(BaseModel):
    token: str
    token_type: str = "bearer"
    expires_at: datetime
    user: UserOut


# --- catalog ---

class BookOut(BaseModel):
    id: int
    title: str
    author: str
    isbn: str | None = None
    category_id: int | None = None
    category_name: str | None = None
    description: str | None = None
    price: float
    stock_quantity: int
    image_url: str | None = None
    publication_date: date | None = None
    publisher: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class BookCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    author: str = Field(min_length=1, max_length=100)
    isbn: str | None = Field(default=None, max_length=20)
    category_id: int | None = None
    description: str | None = None
    price: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    stock_quantity: int = Field(default=0, ge=0)
    image_url: str | None = Field(default=None, max_length=500)
    publication_date: date | None = None
    publisher: str | None = Field(default=None, max_length=100)


class BookPatch(BaseModel):
    """
    Partial update. Which fields were sent is tracked by pydantic
    (model_fields_set), so "absent" and "sent as null" stay distinguishable.
    """
    title: str | None = Field(default=None, max_length=200)
    author: str | None = Field(default=None, max_length=100)
    isbn: str | None = Field(default=None, max_length=20)
    category_id: int | None = None
    description: str | None = None
    price: Decimal | None = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    stock_quantity: int | None = Field(default=None, ge=0)
    image_url: str | None = Field(default=None, max_length=500)
    publication_date: date | None = None
    publisher: str | None = Field(default=None, max_length=100)


class CategoryOut(BaseModel):
    id: int
    name: str
    description: str | None = None
    created_at: datetime | None = None
    book_count: int = 0


class CategoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: str | None = None


class CategoryPatch(BaseModel):
    name: str | None = Field(default=None, max_length=100)
    description: str | None = None


# --- orders ---

class OrderItemIn(BaseModel):
    book_id: int
    quantity: int = Field(ge=1)


class OrderCreateIn(BaseModel):
    shipping_address: str = Field(min_length=1)
    payment_method: str | None = Field(default=None, max_length=50)
    items: list[OrderItemIn] = Field(min_length=1)


class OrderItemOut(BaseModel):
    id: int
    book_id: int
    book_title: str
    book_author: str
    quantity: int
    unit_price: float
    total_price: float


class OrderOut(BaseModel):
    id: int
    user_id: int
    username: str
    order_date: datetime | None = None
    total_amount: float
    order_status: str
    payment_status: str
    shipping_address: str
    payment_method: str | None = None
    items: list[OrderItemOut] = []


class OrderStatusUpdateIn(BaseModel):
    order_status: str | None = None
    payment_status: str | None = None


class MessageOut(BaseModel):
    message: str
    order_id: int | None = None
