"""
In-memory store implementations.

Used by the console demo and the test suite. In production these would be
replaced by clients for the hosted database tables; the behavior mirrors
what those tables enforce (generated ids, one availability rule per
provider and weekday, realtime notification on payment updates).

Each store accepts a ``fail_on`` set of operation names; any listed
operation raises ``StoreError`` instead of running.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from sanaalink.errors import StoreError
from sanaalink.payments.realtime import PaymentChannel
from sanaalink.schemas.availability_schema import AvailabilityRule, Weekday
from sanaalink.schemas.booking_schema import Booking, PaymentStatus
from sanaalink.schemas.order_schema import Order
from sanaalink.schemas.payment_schema import Payment, PaymentEvent

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class _FailureInjection:
    def __init__(self, fail_on: Iterable[str] = ()) -> None:
        self.fail_on: set[str] = set(fail_on)

    def _check(self, operation: str) -> None:
        if operation in self.fail_on:
            raise StoreError(f"{type(self).__name__}.{operation} failed")


class InMemoryAvailabilityStore(_FailureInjection):
    """availability_settings table: at most one rule per (provider, weekday)."""

    def __init__(self, fail_on: Iterable[str] = ()) -> None:
        super().__init__(fail_on)
        self._rules: dict[tuple[str, Weekday], AvailabilityRule] = {}

    async def get_rule(self, provider_id: str, weekday: Weekday) -> Optional[AvailabilityRule]:
        self._check("get_rule")
        return self._rules.get((provider_id, weekday))

    async def list_rules(self, provider_id: str) -> list[AvailabilityRule]:
        self._check("list_rules")
        rules = [r for (pid, _), r in self._rules.items() if pid == provider_id]
        order = list(Weekday)
        return sorted(rules, key=lambda r: order.index(r.weekday))

    async def upsert_rule(self, rule: AvailabilityRule) -> AvailabilityRule:
        self._check("upsert_rule")
        key = (rule.provider_id, rule.weekday)
        existing = self._rules.get(key)
        rule_id = existing.id if existing else (rule.id or _new_id())
        if existing:
            logger.debug("Replacing %s rule %s for provider %s", rule.weekday.value, rule_id,
                         rule.provider_id)
        stored = rule.model_copy(update={"id": rule_id})
        self._rules[key] = stored
        return stored

    async def delete_rule(self, rule_id: str) -> None:
        self._check("delete_rule")
        for key, rule in list(self._rules.items()):
            if rule.id == rule_id:
                del self._rules[key]


class InMemoryBookingStore(_FailureInjection):
    """bookings table."""

    def __init__(self, fail_on: Iterable[str] = ()) -> None:
        super().__init__(fail_on)
        self.bookings: dict[str, Booking] = {}

    async def insert(self, booking: Booking) -> Booking:
        self._check("insert")
        stored = booking.model_copy(update={"id": _new_id(), "created_at": _now()})
        self.bookings[stored.id] = stored
        return stored

    async def get(self, booking_id: str) -> Optional[Booking]:
        self._check("get")
        return self.bookings.get(booking_id)

    async def update(self, booking_id: str, **fields: Any) -> Booking:
        self._check("update")
        if booking_id not in self.bookings:
            raise StoreError(f"Booking {booking_id} not found")
        updated = self.bookings[booking_id].model_copy(update=fields)
        self.bookings[booking_id] = updated
        return updated

    async def delete(self, booking_id: str) -> None:
        self._check("delete")
        self.bookings.pop(booking_id, None)

    async def list_in_range(
        self, provider_id: str, service_id: str, start: datetime, end: datetime
    ) -> list[Booking]:
        self._check("list_in_range")
        return sorted(
            (
                b for b in self.bookings.values()
                if b.provider_id == provider_id
                and b.service_id == service_id
                and start <= b.booking_date < end
            ),
            key=lambda b: b.booking_date,
        )

    async def list_for_provider(self, provider_id: str) -> list[Booking]:
        self._check("list_for_provider")
        return sorted(
            (b for b in self.bookings.values() if b.provider_id == provider_id),
            key=lambda b: b.booking_date,
        )


class InMemoryPaymentStore(_FailureInjection):
    """payments table; status updates are broadcast on the realtime channel."""

    def __init__(
        self, channel: Optional[PaymentChannel] = None, fail_on: Iterable[str] = ()
    ) -> None:
        super().__init__(fail_on)
        self.channel = channel
        self.payments: dict[str, Payment] = {}

    async def insert(self, payment: Payment) -> Payment:
        self._check("insert")
        stored = payment.model_copy(update={"id": _new_id(), "created_at": _now()})
        self.payments[stored.id] = stored
        return stored

    async def delete(self, payment_id: str) -> None:
        self._check("delete")
        self.payments.pop(payment_id, None)

    async def get_by_ref(self, transaction_ref: str) -> Optional[Payment]:
        self._check("get_by_ref")
        for payment in self.payments.values():
            if payment.transaction_ref == transaction_ref:
                return payment
        return None

    async def update_status(
        self, transaction_ref: str, status: PaymentStatus, transaction_id: Optional[str] = None
    ) -> Payment:
        self._check("update_status")
        payment = await self.get_by_ref(transaction_ref)
        if payment is None:
            raise StoreError(f"Payment {transaction_ref} not found")
        updated = payment.model_copy(
            update={"status": status, "transaction_id": transaction_id, "updated_at": _now()}
        )
        self.payments[updated.id] = updated
        if self.channel is not None:
            self.channel.publish(PaymentEvent(
                payment_id=updated.id,
                transaction_ref=transaction_ref,
                status=status,
                transaction_id=transaction_id,
            ))
        return updated


class InMemoryOrderStore(_FailureInjection):
    """orders table."""

    def __init__(self, fail_on: Iterable[str] = ()) -> None:
        super().__init__(fail_on)
        self.orders: dict[str, Order] = {}

    async def insert(self, order: Order) -> Order:
        self._check("insert")
        stored = order.model_copy(update={"id": _new_id(), "created_at": _now()})
        self.orders[stored.id] = stored
        return stored

    async def get(self, order_id: str) -> Optional[Order]:
        self._check("get")
        return self.orders.get(order_id)

    async def update(self, order_id: str, **fields: Any) -> Order:
        self._check("update")
        if order_id not in self.orders:
            raise StoreError(f"Order {order_id} not found")
        updated = self.orders[order_id].model_copy(update=fields)
        self.orders[order_id] = updated
        return updated

    async def delete(self, order_id: str) -> None:
        self._check("delete")
        self.orders.pop(order_id, None)
