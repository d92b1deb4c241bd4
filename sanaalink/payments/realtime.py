"""
Realtime payment-status notifications.

The hosted database pushes a change event whenever a payments row is
updated. ``PaymentChannel`` models that feed as a typed event stream:
``subscribe`` returns a ``PaymentSubscription`` that the caller iterates
and must close, either explicitly or by leaving its ``async with`` block.
Closing removes the listener from the channel, so no callback outlives
the flow that registered it.

Usage:
    async with channel.subscribe(transaction_ref=ref) as sub:
        event = await wait_for_terminal(sub)
"""

import asyncio
import logging
from typing import Optional

from sanaalink.schemas.booking_schema import PaymentStatus
from sanaalink.schemas.payment_schema import PaymentEvent

logger = logging.getLogger(__name__)

TERMINAL_PAYMENT_STATUSES = frozenset({PaymentStatus.COMPLETED, PaymentStatus.FAILED})


class PaymentSubscription:
    """A filtered, cancellable stream of payment events."""

    def __init__(
        self,
        channel: "PaymentChannel",
        transaction_ref: Optional[str] = None,
        payment_id: Optional[str] = None,
    ) -> None:
        self._channel = channel
        self.transaction_ref = transaction_ref
        self.payment_id = payment_id
        self._queue: asyncio.Queue[Optional[PaymentEvent]] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def matches(self, event: PaymentEvent) -> bool:
        if self.transaction_ref is not None and event.transaction_ref != self.transaction_ref:
            return False
        if self.payment_id is not None and event.payment_id != self.payment_id:
            return False
        return True

    def _deliver(self, event: PaymentEvent) -> None:
        if not self._closed:
            self._queue.put_nowait(event)

    def close(self) -> None:
        """Unsubscribe. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._channel._remove(self)
        # wake any pending iteration
        self._queue.put_nowait(None)
        logger.debug("Payment subscription closed (ref=%s)", self.transaction_ref)

    def __aiter__(self) -> "PaymentSubscription":
        return self

    async def __anext__(self) -> PaymentEvent:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        event = await self._queue.get()
        if event is None:
            raise StopAsyncIteration
        return event

    async def __aenter__(self) -> "PaymentSubscription":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()


class PaymentChannel:
    """In-process fan-out of payment row changes to active subscriptions."""

    def __init__(self) -> None:
        self._subscriptions: list[PaymentSubscription] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(
        self, transaction_ref: Optional[str] = None, payment_id: Optional[str] = None
    ) -> PaymentSubscription:
        """Listen for changes to one payment, by transaction ref or payment id."""
        if transaction_ref is None and payment_id is None:
            raise ValueError("subscribe() needs a transaction_ref or a payment_id")
        subscription = PaymentSubscription(self, transaction_ref, payment_id)
        self._subscriptions.append(subscription)
        return subscription

    def publish(self, event: PaymentEvent) -> int:
        """Deliver an event to every matching subscription; returns how many."""
        delivered = 0
        for subscription in list(self._subscriptions):
            if subscription.matches(event):
                subscription._deliver(event)
                delivered += 1
        logger.debug(
            "Payment event %s for %s delivered to %d subscriber(s)",
            event.status.value, event.transaction_ref, delivered,
        )
        return delivered

    def _remove(self, subscription: PaymentSubscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)


async def wait_for_terminal(subscription: PaymentSubscription) -> PaymentEvent:
    """
    Consume events until the payment reaches a terminal status.

    The subscription is closed on return, on error, and on cancellation.

    Raises:
        RuntimeError: if the subscription is closed before a terminal event.
    """
    try:
        async for event in subscription:
            if event.status in TERMINAL_PAYMENT_STATUSES:
                return event
        raise RuntimeError(
            f"Subscription for {subscription.transaction_ref} closed before payment settled"
        )
    finally:
        subscription.close()
