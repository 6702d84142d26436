"""
Store Schemas

Pydantic models for every slice the store engine holds.
The persisted slices (settings, coupons, reviews, orders, users) are
serialized with these models, so a field added here shows up in storage too:
- StoreSettings -> "settings"
- Coupon -> "coupons"
- Review -> "reviews"
- Order -> "orders"
- User -> "users"
"""

from datetime import date, datetime
from enum import Enum
from typing import Optional, List, Literal

from pydantic import BaseModel, Field, field_validator


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    USER = "USER"
    GUEST = "GUEST"


OrderStatus = Literal["pending", "processing", "completed", "cancelled"]
DiscountType = Literal["percentage", "flat"]


class User(BaseModel):
    id: str
    name: str = Field(..., description="Display name")
    email: str = Field(..., description="Email address")
    role: UserRole = Field(UserRole.USER, description="Access role")
    avatar: Optional[str] = Field(None, description="Avatar image URL")
    joined: Optional[str] = Field(None, description="Join date, YYYY-MM-DD")


class Product(BaseModel):
    id: str
    name: str = Field(..., description="Product name")
    description: str = Field("", description="Product description")
    price: float = Field(..., gt=0, description="Price in store currency")
    category: str = Field(..., description="Product category")
    image: str = Field("", description="Primary image URL")
    is_featured: bool = Field(False, description="Shown on the home page")
    stock: int = Field(0, ge=0, description="Units in stock")
    rating: float = Field(0, ge=0, le=5, description="Average review rating")


class CartItem(Product):
    quantity: int = Field(1, ge=1)


class Order(BaseModel):
    id: str
    user_id: str
    items: List[CartItem]
    total: float = Field(..., description="Cart subtotal at checkout")
    discount: float = Field(0, ge=0, description="Coupon discount granted at checkout")
    status: OrderStatus = "pending"
    date: datetime


class Coupon(BaseModel):
    code: str = Field(..., min_length=1)
    discount_type: DiscountType
    value: float = Field(..., ge=0)
    min_order_value: float = Field(0, ge=0)
    expiry_date: Optional[date] = Field(None, description="Last valid day, inclusive")

    @field_validator("code")
    @classmethod
    def upper_code(cls, v: str) -> str:
        return v.strip().upper()


class Review(BaseModel):
    id: str
    product_id: str
    user_id: str
    user_name: str
    rating: int = Field(..., ge=1, le=5)
    comment: str = ""
    date: datetime


class StoreSettings(BaseModel):
    store_name: str = "Frosty Bite"
    currency: str = "USD"
    tax_rate: float = Field(0.08, ge=0, description="Tax as a fraction")
    maintenance_mode: bool = False
    email_notifications: bool = True


# Request models (not persisted)
class ProductCreate(BaseModel):
    id: Optional[str] = None
    name: str
    description: str = ""
    price: float = Field(..., gt=0)
    category: str
    image: str = ""
    is_featured: bool = False
    stock: int = Field(0, ge=0)
    rating: float = Field(0, ge=0, le=5)


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, gt=0)
    category: Optional[str] = None
    image: Optional[str] = None
    is_featured: Optional[bool] = None
    stock: Optional[int] = Field(None, ge=0)


class AddToCartRequest(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class CartQuantityRequest(BaseModel):
    quantity: int


class CouponRequest(BaseModel):
    code: str


class CheckoutRequest(BaseModel):
    coupon_code: Optional[str] = None


class OrderStatusRequest(BaseModel):
    status: OrderStatus


class CreateReview(BaseModel):
    product_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: str = ""


class SettingsUpdate(BaseModel):
    store_name: Optional[str] = None
    currency: Optional[str] = None
    tax_rate: Optional[float] = Field(None, ge=0)
    maintenance_mode: Optional[bool] = None
    email_notifications: Optional[bool] = None


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    avatar: Optional[str] = None


class LoginRequest(BaseModel):
    email: str
    password: str


class SignupRequest(BaseModel):
    name: str
    email: str
    password: str


class RecoverRequest(BaseModel):
    email: str
