"""
Database Schemas for the storefront

Each persisted Pydantic model maps to a MongoDB collection named after the
lowercased class name:
- Product -> "product"
- Order -> "order"
"""
from __future__ import annotations
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from pricing import to_cents

PLACEHOLDER_IMAGE = "https://via.placeholder.com/300x300?text=Product+Image"


class ProductLifecycle(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class Timeframe(str, Enum):
    WEEK = "7d"
    MONTH = "30d"
    QUARTER = "90d"
    YEAR = "1y"


class SalesGrouping(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


# ---------- Products ----------

class Product(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1, max_length=1000)
    price: float = Field(..., ge=0, description="Price in USD")
    image: str = Field(PLACEHOLDER_IMAGE, description="Public image URL")
    category: str = Field(..., min_length=1)
    stock: int = Field(0, ge=0)
    sku: Optional[str] = Field(None, description="Unique among active products")
    tags: list[str] = Field(default_factory=list)

    @field_validator("price")
    @classmethod
    def round_price(cls, v: float) -> float:
        # Whole cents, so per-unit gateway amounts add up to the stored subtotal
        return float(to_cents(v))


class ProductCreate(Product):
    pass


class ProductUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, min_length=1, max_length=1000)
    price: Optional[float] = Field(None, ge=0)
    image: Optional[str] = None
    category: Optional[str] = Field(None, min_length=1)
    stock: Optional[int] = Field(None, ge=0)
    sku: Optional[str] = None
    tags: Optional[list[str]] = None
    lifecycle: Optional[ProductLifecycle] = None

    @field_validator("price")
    @classmethod
    def round_price(cls, v: Optional[float]) -> Optional[float]:
        return None if v is None else float(to_cents(v))


class ProductOut(Product):
    id: str
    lifecycle: ProductLifecycle = ProductLifecycle.ACTIVE
    in_stock: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ProductPagination(BaseModel):
    current_page: int
    total_pages: int
    total_products: int
    has_next_page: bool
    has_previous_page: bool


class ProductPage(BaseModel):
    products: list[ProductOut]
    pagination: ProductPagination


class ProductMessage(BaseModel):
    message: str
    product: ProductOut


# ---------- Checkout ----------

class CheckoutItem(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)


class CheckoutRequest(BaseModel):
    items: list[CheckoutItem] = Field(default_factory=list)
    customer_email: str = ""
    customer_name: str = ""


class CheckoutSession(BaseModel):
    session_id: str
    url: Optional[str] = None


# ---------- Orders ----------

class OrderItem(BaseModel):
    product_id: str = Field(..., description="Referenced product _id as string")
    title: str = Field(..., description="Snapshot of product title at purchase time")
    price: float = Field(..., ge=0, description="Price at purchase time")
    quantity: int = Field(..., ge=1)
    image: Optional[str] = None


class Order(BaseModel):
    order_number: str
    customer_email: str
    customer_name: str
    items: list[OrderItem]
    subtotal: float = Field(..., ge=0)
    tax: float = Field(0.0, ge=0)
    shipping: float = Field(0.0, ge=0)
    total: float = Field(..., ge=0)
    status: OrderStatus = OrderStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_session_id: Optional[str] = None
    payment_intent_id: Optional[str] = None
    shipping_address: Optional[dict[str, Any]] = None
    tracking_number: Optional[str] = None
    notes: Optional[str] = None


class OrderOut(Order):
    id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class OrderPagination(BaseModel):
    current_page: int
    total_pages: int
    total_orders: int
    has_next_page: bool
    has_previous_page: bool


class OrderPage(BaseModel):
    orders: list[OrderOut]
    pagination: OrderPagination


class OrderMessage(BaseModel):
    message: str
    order: OrderOut


class StatusUpdate(BaseModel):
    status: OrderStatus
    tracking_number: Optional[str] = None
    notes: Optional[str] = None


class PaymentStatusUpdate(BaseModel):
    payment_status: PaymentStatus
