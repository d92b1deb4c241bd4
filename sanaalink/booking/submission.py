"""
Checkout: turn a chosen slot (or a product quantity) into a paid record.

Pipeline, shared by service bookings and product orders:

    validate -> insert record -> insert payment -> STK push -> await settlement

Validation failures raise before any I/O. If a step after the record
insert fails before the gateway accepts the push, the payment row and the
record are deleted again (compensating action), so no unpaid record is
left behind. Once the gateway has accepted, the outcome arrives
asynchronously on the payment channel; a failed payment leaves the
record in place with payment_status ``failed`` for follow-up.

Usage:
    checkout = BookingCheckout(availability, bookings, payments, gateway, channel)
    result = await book_service(checkout, service, customer_id, day, "10:00", phone)
    if result["success"]:
        final = await await_payment(result["pending"])
"""

import asyncio
import time as time_module
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Awaitable, Iterable, Optional, TypedDict, TypeVar, Union

from sanaalink.booking.lifecycle import BookingManager, advance_payment_status
from sanaalink.config import settings
from sanaalink.errors import (
    AsyncPaymentFailure,
    GatewayRejection,
    GatewayUnavailable,
    SanaaLinkError,
    StoreError,
    StoreWriteFailure,
    ValidationError,
)
from sanaalink.logging_context import get_checkout_logger, new_checkout_id
from sanaalink.payments.gateway import PaymentGateway
from sanaalink.payments.realtime import PaymentChannel, PaymentSubscription, wait_for_terminal
from sanaalink.scheduling.availability import find_slots
from sanaalink.scheduling.slots import combine_slot, format_slot
from sanaalink.schemas.booking_schema import Booking, PaymentStatus, Service
from sanaalink.schemas.order_schema import Order, OrderStatus, Product
from sanaalink.schemas.payment_schema import Payment, StkPushResponse
from sanaalink.stores.base import AvailabilityStore, BookingStore, OrderStore, PaymentStore
from sanaalink.utils import format_kes, to_mpesa_msisdn

logger = get_checkout_logger(__name__)

T = TypeVar("T")
Record = Union[Booking, Order]


class CheckoutResult(TypedDict, total=False):
    """User-facing outcome of a checkout step."""

    success: bool
    title: str
    message: str
    checkout_id: str
    record_id: str
    transaction_ref: str
    pending: "PendingPayment"


@dataclass
class PendingPayment:
    """A record whose STK push was accepted and whose payment is in flight."""

    record: Record
    payment: Payment
    gateway_response: StkPushResponse
    settlement: "asyncio.Task[PaymentStatus]"
    subscription: PaymentSubscription

    def cancel(self) -> None:
        """Stop waiting for the payment; the subscription is released."""
        self.settlement.cancel()
        self.subscription.close()


# ---------------------------------------------------------------------- #
# Pure helpers
# ---------------------------------------------------------------------- #

def build_booking(
    day: date, slot: str, service: Service, customer_id: str, notes: str = ""
) -> Booking:
    """Booking record for a chosen slot, in its initial pending/pending state."""
    return Booking(
        customer_id=customer_id,
        provider_id=service.provider_id,
        service_id=service.id,
        booking_date=combine_slot(day, slot),
        total_amount=service.price,
        notes=notes,
    )


def order_total(price: float, quantity: int) -> float:
    return price * quantity


def make_transaction_ref(record_id: str, prefix: str = "", now_ms: Optional[int] = None) -> str:
    """Reference tying a payment to its record: ``{prefix}{record_id}-{epoch_ms}``."""
    if now_ms is None:
        now_ms = int(time_module.time() * 1000)
    return f"{prefix}{record_id}-{now_ms}"


def _require_login(customer_id: Optional[str], action: str) -> str:
    if not customer_id:
        raise ValidationError(f"Please login to {action}.", title="Login Required")
    return customer_id


def _require_msisdn(phone: Optional[str]) -> str:
    msisdn = to_mpesa_msisdn(phone) if phone else None
    if msisdn is None:
        raise ValidationError(
            "Please provide a valid M-Pesa phone number, e.g. 254712345678.",
            title="Invalid Phone Number",
        )
    return msisdn


def require_offered_slot(day: date, slot: str, offered_slots: Iterable[str]) -> None:
    """Reject a slot that is not among the ones currently offered for ``day``."""
    if slot not in set(offered_slots):
        raise ValidationError(
            f"{slot} is no longer available on {day.isoformat()}. Please pick another time.",
            title="Slot Unavailable",
        )


def validate_booking_request(
    customer_id: Optional[str],
    day: Optional[date],
    slot: Optional[str],
    phone: Optional[str],
    today: Optional[date] = None,
    offered_slots: Optional[Iterable[str]] = None,
) -> tuple[str, date, str, str]:
    """
    Check a booking request before any I/O.

    Returns:
        (customer_id, day, canonical slot, M-Pesa MSISDN)

    Raises:
        ValidationError: describing the first problem found.
    """
    customer_id = _require_login(customer_id, "book a service")
    if day is None or not slot or not phone:
        raise ValidationError("Please select a date, a time slot and provide your phone number.")

    today = today or date.today()
    last_day = today + timedelta(days=settings.scheduling.booking_window_days)
    if not today <= day <= last_day:
        raise ValidationError(
            f"Please pick a date between {today.isoformat()} and {last_day.isoformat()}.",
            title="Date Unavailable",
        )

    try:
        slot = format_slot(slot)
    except ValueError:
        raise ValidationError(f"'{slot}' is not a valid time slot.", title="Invalid Time") from None
    if offered_slots is not None:
        require_offered_slot(day, slot, offered_slots)

    return customer_id, day, slot, _require_msisdn(phone)


def validate_order_request(
    customer_id: Optional[str],
    product: Product,
    quantity: int,
    phone: Optional[str],
    shipping_address: Optional[str],
) -> tuple[str, str, str]:
    """
    Check a product order before any I/O.

    Returns:
        (customer_id, M-Pesa MSISDN, stripped shipping address)
    """
    customer_id = _require_login(customer_id, "place an order")
    if not phone or not shipping_address or not shipping_address.strip():
        raise ValidationError("Please provide your phone number and shipping address.")
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1.", title="Invalid Quantity")
    if quantity > product.stock_quantity:
        raise ValidationError("Not enough items in stock.", title="Insufficient Stock")
    return customer_id, _require_msisdn(phone), shipping_address.strip()


# ---------------------------------------------------------------------- #
# Checkout pipeline
# ---------------------------------------------------------------------- #

def _settled(task: "asyncio.Task[PaymentStatus]", subscription: PaymentSubscription) -> None:
    # a task cancelled before its first step never reaches wait_for_terminal
    subscription.close()
    if not task.cancelled() and isinstance(task.exception(), SanaaLinkError):
        # already logged by _settle; the customer may have stopped waiting
        logger.debug("Settlement ended with %s", type(task.exception()).__name__)


class _Checkout(ABC):
    """Payment steps shared by bookings and orders."""

    REF_PREFIX = ""
    RECORD_LABEL = "record"

    def __init__(
        self,
        payments: PaymentStore,
        gateway: PaymentGateway,
        channel: PaymentChannel,
        timeout: Optional[float] = None,
        compensate_on_rejection: Optional[bool] = None,
    ) -> None:
        self._payments = payments
        self._gateway = gateway
        self._channel = channel
        self._timeout = timeout or settings.scheduling.store_timeout_sec
        if compensate_on_rejection is None:
            compensate_on_rejection = settings.payment.compensate_on_gateway_rejection
        self._compensate_on_rejection = compensate_on_rejection

    # Hooks --------------------------------------------------------------

    @abstractmethod
    async def _delete_record(self, record_id: str) -> None:
        ...

    @abstractmethod
    async def _settle_record(self, record_id: str, status: PaymentStatus) -> None:
        ...

    # Steps --------------------------------------------------------------

    async def _write(self, operation: Awaitable[T], failure: StoreWriteFailure) -> T:
        try:
            return await asyncio.wait_for(operation, timeout=self._timeout)
        except (StoreError, asyncio.TimeoutError) as exc:
            logger.warning("%s: %s", failure.description, exc)
            raise failure from exc

    async def _compensate(
        self, record_id: str, payment: Optional[Payment], transaction_ref: Optional[str] = None
    ) -> None:
        """
        Undo the record (and its payment row) after a pre-acceptance failure.

        Without a payment in hand, ``transaction_ref`` is used to find a row
        whose insert landed even though the write reported a failure.
        """
        logger.warning("Rolling back %s %s", self.RECORD_LABEL, record_id)
        if payment is None and transaction_ref is not None:
            try:
                payment = await asyncio.wait_for(
                    self._payments.get_by_ref(transaction_ref), timeout=self._timeout
                )
            except (StoreError, asyncio.TimeoutError):
                logger.error(
                    "Could not look up payment %s during rollback; check for an orphaned row",
                    transaction_ref, exc_info=True,
                )
        try:
            if payment is not None and payment.id is not None:
                await asyncio.wait_for(self._payments.delete(payment.id), timeout=self._timeout)
            await asyncio.wait_for(self._delete_record(record_id), timeout=self._timeout)
        except (StoreError, asyncio.TimeoutError):
            logger.error(
                "Rollback of %s %s failed; manual cleanup needed",
                self.RECORD_LABEL, record_id, exc_info=True,
            )

    async def _pay(self, record: Record, msisdn: str, amount: float) -> PendingPayment:
        record_id = record.id
        ref = make_transaction_ref(record_id, self.REF_PREFIX)

        try:
            payment = await self._write(
                self._payments.insert(Payment(
                    booking_id=record_id,
                    amount=amount,
                    provider_id=record.provider_id,
                    customer_id=record.customer_id,
                    transaction_ref=ref,
                )),
                StoreWriteFailure(
                    "Failed to create payment record. Please try again.", title="Payment Error"
                ),
            )
        except StoreWriteFailure:
            await self._compensate(record_id, None, transaction_ref=ref)
            raise

        # Subscribe before pushing so an early callback cannot be missed.
        subscription = self._channel.subscribe(transaction_ref=payment.transaction_ref)
        try:
            response = await self._gateway.initiate_push(msisdn, amount, payment.transaction_ref)
        except GatewayUnavailable:
            subscription.close()
            await self._compensate(record_id, payment)
            raise
        except BaseException:
            subscription.close()
            raise

        if not response.accepted:
            subscription.close()
            logger.warning(
                "STK push rejected for %s %s: %s %s",
                self.RECORD_LABEL, record_id, response.response_code, response.response_description,
            )
            if self._compensate_on_rejection:
                await self._compensate(record_id, payment)
            raise GatewayRejection(response.response_code, response.response_description)

        settlement = asyncio.create_task(self._settle(record_id, subscription))
        settlement.add_done_callback(lambda task: _settled(task, subscription))
        logger.info("STK push accepted for %s %s (ref=%s)", self.RECORD_LABEL, record_id, ref)
        return PendingPayment(
            record=record,
            payment=payment,
            gateway_response=response,
            settlement=settlement,
            subscription=subscription,
        )

    async def _settle(self, record_id: str, subscription: PaymentSubscription) -> PaymentStatus:
        event = await wait_for_terminal(subscription)
        await self._settle_record(record_id, event.status)
        if event.status == PaymentStatus.FAILED:
            logger.warning("Payment failed for %s %s", self.RECORD_LABEL, record_id)
            raise AsyncPaymentFailure("Please try again or use a different payment method.")
        logger.info("Payment completed for %s %s", self.RECORD_LABEL, record_id)
        return event.status


class BookingCheckout(_Checkout):
    """Books a service slot and collects its fee."""

    RECORD_LABEL = "booking"

    def __init__(
        self,
        availability: AvailabilityStore,
        bookings: BookingStore,
        payments: PaymentStore,
        gateway: PaymentGateway,
        channel: PaymentChannel,
        **kwargs: Any,
    ) -> None:
        super().__init__(payments, gateway, channel, **kwargs)
        self._availability = availability
        self._bookings = bookings
        self._manager = BookingManager(bookings)

    async def _delete_record(self, record_id: str) -> None:
        await self._bookings.delete(record_id)

    async def _settle_record(self, record_id: str, status: PaymentStatus) -> None:
        await self._manager.record_payment(record_id, status)

    async def submit(
        self,
        service: Service,
        customer_id: Optional[str],
        day: Optional[date],
        slot: Optional[str],
        phone: Optional[str],
        notes: str = "",
        today: Optional[date] = None,
        offered_slots: Optional[Iterable[str]] = None,
    ) -> PendingPayment:
        """
        Create the booking and start payment.

        Without ``offered_slots`` the free slots for ``day`` are looked up
        again, so only a slot the scheduler offers can be booked.

        Raises:
            ValidationError, StoreReadFailure, StoreWriteFailure,
            GatewayRejection, GatewayUnavailable
        """
        customer_id, day, slot, msisdn = validate_booking_request(
            customer_id, day, slot, phone, today, offered_slots
        )
        if offered_slots is None:
            require_offered_slot(
                day, slot,
                await find_slots(self._availability, self._bookings, service, day, self._timeout),
            )
        booking = await self._write(
            self._bookings.insert(build_booking(day, slot, service, customer_id, notes)),
            StoreWriteFailure("Failed to create booking. Please try again."),
        )
        logger.info(
            "Booking %s created for %s on %s at %s",
            booking.id, service.title, day.isoformat(), slot,
        )
        return await self._pay(booking, msisdn, booking.total_amount)


class OrderCheckout(_Checkout):
    """Orders a craft product and collects price times quantity."""

    REF_PREFIX = "ORDER-"
    RECORD_LABEL = "order"

    def __init__(
        self,
        orders: OrderStore,
        payments: PaymentStore,
        gateway: PaymentGateway,
        channel: PaymentChannel,
        **kwargs: Any,
    ) -> None:
        super().__init__(payments, gateway, channel, **kwargs)
        self._orders = orders

    async def _delete_record(self, record_id: str) -> None:
        await self._orders.delete(record_id)

    async def _settle_record(self, record_id: str, status: PaymentStatus) -> None:
        order = await self._orders.get(record_id)
        if order is None:
            raise StoreWriteFailure(f"Order {record_id} not found.")
        fields: dict[str, Any] = {
            "payment_status": advance_payment_status(order.payment_status, status)
        }
        if status == PaymentStatus.COMPLETED and order.status == OrderStatus.PENDING:
            fields["status"] = OrderStatus.CONFIRMED
        await self._orders.update(record_id, **fields)

    async def submit(
        self,
        product: Product,
        customer_id: Optional[str],
        quantity: int,
        phone: Optional[str],
        shipping_address: Optional[str],
        notes: Optional[str] = None,
    ) -> PendingPayment:
        customer_id, msisdn, address = validate_order_request(
            customer_id, product, quantity, phone, shipping_address
        )
        total = order_total(product.price, quantity)
        order = await self._write(
            self._orders.insert(Order(
                customer_id=customer_id,
                provider_id=product.provider_id,
                product_id=product.id,
                quantity=quantity,
                total_amount=total,
                shipping_address=address,
                notes=notes or None,
            )),
            StoreWriteFailure("Failed to create order. Please try again.", title="Order Error"),
        )
        logger.info("Order %s created: %d x %s (%s)", order.id, quantity, product.title,
                    format_kes(total))
        return await self._pay(order, msisdn, total)


# ---------------------------------------------------------------------- #
# User-triggered entry points
# ---------------------------------------------------------------------- #

def _failure(exc: SanaaLinkError, checkout_id: str) -> CheckoutResult:
    return {
        "success": False,
        "title": exc.title,
        "message": exc.description,
        "checkout_id": checkout_id,
    }


def _initiated(pending: PendingPayment, checkout_id: str) -> CheckoutResult:
    return {
        "success": True,
        "title": "Payment Initiated",
        "message": "Please check your phone to complete the payment.",
        "checkout_id": checkout_id,
        "record_id": pending.record.id or "",
        "transaction_ref": pending.payment.transaction_ref,
        "pending": pending,
    }


async def book_service(
    checkout: BookingCheckout,
    service: Service,
    customer_id: Optional[str],
    day: Optional[date],
    slot: Optional[str],
    phone: Optional[str],
    notes: str = "",
    today: Optional[date] = None,
    offered_slots: Optional[Iterable[str]] = None,
) -> CheckoutResult:
    """Book a service slot; every failure comes back as an unsuccessful result."""
    checkout_id = new_checkout_id()
    try:
        pending = await checkout.submit(
            service, customer_id, day, slot, phone, notes, today, offered_slots
        )
    except SanaaLinkError as exc:
        return _failure(exc, checkout_id)
    return _initiated(pending, checkout_id)


async def order_product(
    checkout: OrderCheckout,
    product: Product,
    customer_id: Optional[str],
    quantity: int,
    phone: Optional[str],
    shipping_address: Optional[str],
    notes: Optional[str] = None,
) -> CheckoutResult:
    """Order a product; every failure comes back as an unsuccessful result."""
    checkout_id = new_checkout_id()
    try:
        pending = await checkout.submit(
            product, customer_id, quantity, phone, shipping_address, notes
        )
    except SanaaLinkError as exc:
        return _failure(exc, checkout_id)
    return _initiated(pending, checkout_id)


def _label(pending: PendingPayment) -> str:
    return "order" if isinstance(pending.record, Order) else "booking"


async def await_payment(pending: PendingPayment, timeout: Optional[float] = None) -> CheckoutResult:
    """
    Wait for the payment outcome of an accepted push.

    A timeout only stops the wait. Settlement keeps listening, so a payment
    that lands later still updates the record; ``PendingPayment.cancel``
    is the only way to stop it.
    """
    settlement = pending.settlement
    if not settlement.done():
        await asyncio.wait({settlement}, timeout=timeout)
    if not settlement.done() or settlement.cancelled():
        return {
            "success": False,
            "title": "Payment Pending",
            "message": (
                f"We have not received your payment yet. Check your {_label(pending)} later."
            ),
            "record_id": pending.record.id or "",
        }
    exc = settlement.exception()
    if isinstance(exc, SanaaLinkError):
        return {
            "success": False,
            "title": exc.title,
            "message": exc.description,
            "record_id": pending.record.id or "",
        }
    if exc is not None:
        raise exc
    return {
        "success": True,
        "title": "Payment Successful",
        "message": f"Your {_label(pending)} has been confirmed!",
        "record_id": pending.record.id or "",
    }
