"""Craft product and order data models."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from sanaalink.schemas.booking_schema import PaymentStatus


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class Product(BaseModel):
    """A craft product listed by a seller."""
    id: str
    provider_id: str
    title: str
    price: float
    stock_quantity: int
    category: str = ""


class Order(BaseModel):
    """Persisted product order."""
    id: Optional[str] = None
    customer_id: str
    provider_id: str
    product_id: str
    quantity: int
    status: OrderStatus = OrderStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    total_amount: float
    shipping_address: str
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
