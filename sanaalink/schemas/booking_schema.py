"""Service and booking data models."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Service(BaseModel):
    """A bookable service offered by a provider."""
    id: str
    provider_id: str
    title: str
    price: float
    duration: Optional[int] = None
    category: str = ""
    description: str = ""


class Booking(BaseModel):
    """Persisted booking; booking_date holds the chosen date and slot merged."""
    id: Optional[str] = None
    customer_id: str
    provider_id: str
    service_id: str
    booking_date: datetime
    status: BookingStatus = BookingStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    total_amount: float
    notes: str = ""
    created_at: Optional[datetime] = None
