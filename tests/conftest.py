"""Shared test fixtures and helpers."""

from datetime import date, datetime
from typing import Optional

import pytest
import pytest_asyncio

from sanaalink.payments.realtime import PaymentChannel
from sanaalink.scheduling.availability import save_rule
from sanaalink.schemas.availability_schema import Weekday
from sanaalink.schemas.booking_schema import Booking, BookingStatus, PaymentStatus, Service
from sanaalink.schemas.order_schema import Product
from sanaalink.schemas.payment_schema import StkPushResponse
from sanaalink.stores.memory import (
    InMemoryAvailabilityStore,
    InMemoryBookingStore,
    InMemoryOrderStore,
    InMemoryPaymentStore,
)

PROVIDER_ID = "prov-1"
CUSTOMER_ID = "cust-1"

# Monday; the target booking date is the following Tuesday
TODAY = date(2025, 3, 17)
TUESDAY = date(2025, 3, 18)


class FakeGateway:
    """Records STK push calls and answers with a fixed response or error."""

    def __init__(
        self,
        response_code: str = "0",
        description: str = "Success. Request accepted for processing",
        error: Optional[Exception] = None,
    ) -> None:
        self.response_code = response_code
        self.description = description
        self.error = error
        self.calls: list[tuple[str, float, str]] = []

    async def initiate_push(self, phone: str, amount: float, reference: str) -> StkPushResponse:
        self.calls.append((phone, amount, reference))
        if self.error is not None:
            raise self.error
        return StkPushResponse(
            ResponseCode=self.response_code, ResponseDescription=self.description
        )


@pytest.fixture
def channel():
    return PaymentChannel()


@pytest.fixture
def availability_store():
    return InMemoryAvailabilityStore()


@pytest_asyncio.fixture
async def open_hours(availability_store):
    """Availability store with the provider working 09:00-17:00 on TUESDAY."""
    await save_rule(availability_store, PROVIDER_ID, Weekday.TUESDAY, "09:00", "17:00")
    return availability_store


@pytest.fixture
def booking_store():
    return InMemoryBookingStore()


@pytest.fixture
def payment_store(channel):
    return InMemoryPaymentStore(channel=channel)


@pytest.fixture
def order_store():
    return InMemoryOrderStore()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def service():
    return Service(
        id="svc-1", provider_id=PROVIDER_ID, title="Plumbing Repair", price=1500.0, duration=60
    )


@pytest.fixture
def product():
    return Product(
        id="prod-1", provider_id=PROVIDER_ID, title="Kiondo Basket", price=850.0, stock_quantity=5
    )


def make_booking(
    at: datetime,
    status: BookingStatus = BookingStatus.PENDING,
    payment_status: PaymentStatus = PaymentStatus.PENDING,
    service_id: str = "svc-1",
    booking_id: Optional[str] = None,
) -> Booking:
    """Helper to create a Booking with sensible defaults."""
    return Booking(
        id=booking_id,
        customer_id=CUSTOMER_ID,
        provider_id=PROVIDER_ID,
        service_id=service_id,
        booking_date=at,
        status=status,
        payment_status=payment_status,
        total_amount=1500.0,
    )
