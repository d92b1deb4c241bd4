"""
Store contracts consumed by the booking core.

In production these are backed by the hosted Postgres tables
(availability_settings, bookings, payments, orders) through the
backend-as-a-service query client. Implementations raise
``StoreError`` on any failed read or write.
"""

from datetime import datetime
from typing import Any, Optional, Protocol, runtime_checkable

from sanaalink.schemas.availability_schema import AvailabilityRule, Weekday
from sanaalink.schemas.booking_schema import Booking, PaymentStatus
from sanaalink.schemas.order_schema import Order
from sanaalink.schemas.payment_schema import Payment


@runtime_checkable
class AvailabilityStore(Protocol):
    async def get_rule(self, provider_id: str, weekday: Weekday) -> Optional[AvailabilityRule]: ...

    async def list_rules(self, provider_id: str) -> list[AvailabilityRule]: ...

    async def upsert_rule(self, rule: AvailabilityRule) -> AvailabilityRule: ...

    async def delete_rule(self, rule_id: str) -> None: ...


@runtime_checkable
class BookingStore(Protocol):
    async def insert(self, booking: Booking) -> Booking: ...

    async def get(self, booking_id: str) -> Optional[Booking]: ...

    async def update(self, booking_id: str, **fields: Any) -> Booking: ...

    async def delete(self, booking_id: str) -> None: ...

    async def list_in_range(
        self, provider_id: str, service_id: str, start: datetime, end: datetime
    ) -> list[Booking]: ...

    async def list_for_provider(self, provider_id: str) -> list[Booking]: ...


@runtime_checkable
class PaymentStore(Protocol):
    async def insert(self, payment: Payment) -> Payment: ...

    async def delete(self, payment_id: str) -> None: ...

    async def get_by_ref(self, transaction_ref: str) -> Optional[Payment]: ...

    async def update_status(
        self, transaction_ref: str, status: PaymentStatus, transaction_id: Optional[str] = None
    ) -> Payment: ...


@runtime_checkable
class OrderStore(Protocol):
    async def insert(self, order: Order) -> Order: ...

    async def get(self, order_id: str) -> Optional[Order]: ...

    async def update(self, order_id: str, **fields: Any) -> Order: ...

    async def delete(self, order_id: str) -> None: ...
