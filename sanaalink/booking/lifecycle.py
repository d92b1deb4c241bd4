"""
Booking status lifecycle.

Booking.status follows an explicit transition table:

    pending   -> confirmed   (provider confirms, or payment received)
    confirmed -> completed   (provider marks the job done)
    pending   -> cancelled
    confirmed -> cancelled

``completed`` and ``cancelled`` are terminal. Booking.payment_status moves
once, from ``pending`` to ``completed`` or ``failed``.

Usage:
    machine = BookingStatusMachine(booking.status)
    machine.transition(BookingAction.CONFIRM)
    assert machine.current_status == BookingStatus.CONFIRMED
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Iterable, Optional

from sanaalink.errors import InvalidTransitionError, StoreError, StoreWriteFailure
from sanaalink.schemas.booking_schema import Booking, BookingStatus, PaymentStatus
from sanaalink.stores.base import BookingStore

logger = logging.getLogger(__name__)


class BookingAction(str, Enum):
    """Events that move a booking between statuses."""
    CONFIRM = "confirm"
    CANCEL = "cancel"
    COMPLETE = "complete"
    PAYMENT_RECEIVED = "payment_received"


@dataclass
class Transition:
    """A single valid status transition."""
    from_status: BookingStatus
    to_status: BookingStatus
    action: BookingAction


@dataclass
class StatusEntry:
    """Recorded history entry for a status change."""
    status: BookingStatus
    entered_at: datetime
    action: Optional[BookingAction] = None


class BookingStatusMachine:
    """Deterministic status machine for one booking."""

    TRANSITIONS: list[Transition] = [
        Transition(BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingAction.CONFIRM),
        Transition(BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingAction.PAYMENT_RECEIVED),
        # provider confirmed before the payment callback landed
        Transition(BookingStatus.CONFIRMED, BookingStatus.CONFIRMED,
                   BookingAction.PAYMENT_RECEIVED),
        Transition(BookingStatus.CONFIRMED, BookingStatus.COMPLETED, BookingAction.COMPLETE),
        Transition(BookingStatus.PENDING, BookingStatus.CANCELLED, BookingAction.CANCEL),
        Transition(BookingStatus.CONFIRMED, BookingStatus.CANCELLED, BookingAction.CANCEL),
    ]

    TERMINAL = frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED})

    def __init__(self, status: BookingStatus = BookingStatus.PENDING) -> None:
        self._current_status = status
        self._history: list[StatusEntry] = [
            StatusEntry(status=status, entered_at=datetime.now(timezone.utc))
        ]

    @property
    def current_status(self) -> BookingStatus:
        return self._current_status

    def transition(self, action: BookingAction) -> BookingStatus:
        """
        Apply an action.

        Raises:
            InvalidTransitionError: If the action is not allowed from the current status.
        """
        for t in self.TRANSITIONS:
            if t.from_status == self._current_status and t.action == action:
                old_status = self._current_status
                self._current_status = t.to_status
                self._history.append(StatusEntry(
                    status=self._current_status,
                    entered_at=datetime.now(timezone.utc),
                    action=action,
                ))
                logger.debug(
                    "Booking status: %s -> %s (action: %s)",
                    old_status.value, self._current_status.value, action.value,
                )
                return self._current_status

        valid = [a.value for a in self.get_valid_actions()]
        raise InvalidTransitionError(
            f"Cannot {action.value.replace('_', ' ')} a booking that is "
            f"{self._current_status.value}. Valid actions: {valid}"
        )

    def get_valid_actions(self) -> list[BookingAction]:
        return [t.action for t in self.TRANSITIONS if t.from_status == self._current_status]

    def get_history(self) -> list[StatusEntry]:
        return list(self._history)

    def is_terminal(self) -> bool:
        return self._current_status in self.TERMINAL


PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.COMPLETED, PaymentStatus.FAILED}),
    PaymentStatus.COMPLETED: frozenset(),
    PaymentStatus.FAILED: frozenset(),
}


def advance_payment_status(current: PaymentStatus, target: PaymentStatus) -> PaymentStatus:
    """Validate a payment_status change; pending settles once and stays settled."""
    if target not in PAYMENT_TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Payment status cannot move from {current.value} to {target.value}."
        )
    return target


class BookingTab(str, Enum):
    """Provider dashboard booking tabs."""
    UPCOMING = "upcoming"
    PAST = "past"
    CANCELLED = "cancelled"


def filter_bookings(bookings: Iterable[Booking], tab: BookingTab, today: date) -> list[Booking]:
    """Split bookings the way the provider dashboard tabs show them."""
    if tab == BookingTab.CANCELLED:
        return [b for b in bookings if b.status == BookingStatus.CANCELLED]
    active = [b for b in bookings if b.status != BookingStatus.CANCELLED]
    if tab == BookingTab.UPCOMING:
        return [b for b in active if b.booking_date.date() >= today]
    return [b for b in active if b.booking_date.date() < today]


class BookingManager:
    """Provider-side status changes and payment cascades, persisted through the store."""

    def __init__(self, bookings: BookingStore) -> None:
        self._bookings = bookings

    async def _load(self, booking_id: str) -> Booking:
        try:
            booking = await self._bookings.get(booking_id)
        except StoreError as exc:
            raise StoreWriteFailure(f"Could not load booking {booking_id}.") from exc
        if booking is None:
            raise StoreWriteFailure(f"Booking {booking_id} not found.")
        return booking

    async def _save(self, booking_id: str, **fields) -> Booking:
        try:
            return await self._bookings.update(booking_id, **fields)
        except StoreError as exc:
            raise StoreWriteFailure(f"Could not update booking {booking_id}.") from exc

    async def apply(self, booking_id: str, action: BookingAction) -> Booking:
        """Run a status action against the stored booking."""
        booking = await self._load(booking_id)
        machine = BookingStatusMachine(booking.status)
        new_status = machine.transition(action)
        updated = await self._save(booking_id, status=new_status)
        logger.info("Booking %s is now %s", booking_id, new_status.value)
        return updated

    async def confirm(self, booking_id: str) -> Booking:
        return await self.apply(booking_id, BookingAction.CONFIRM)

    async def cancel(self, booking_id: str) -> Booking:
        return await self.apply(booking_id, BookingAction.CANCEL)

    async def complete(self, booking_id: str) -> Booking:
        return await self.apply(booking_id, BookingAction.COMPLETE)

    async def record_payment(self, booking_id: str, status: PaymentStatus) -> Booking:
        """
        Settle payment_status and cascade a successful payment to ``confirmed``.

        A booking cancelled before its payment landed keeps ``cancelled``.
        """
        booking = await self._load(booking_id)
        fields = {"payment_status": advance_payment_status(booking.payment_status, status)}
        if status == PaymentStatus.COMPLETED:
            machine = BookingStatusMachine(booking.status)
            try:
                fields["status"] = machine.transition(BookingAction.PAYMENT_RECEIVED)
            except InvalidTransitionError:
                logger.warning(
                    "Payment completed for booking %s in status %s; status left unchanged",
                    booking_id, booking.status.value,
                )
        return await self._save(booking_id, **fields)
