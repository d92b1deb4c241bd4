"""Tests for booking and order checkout, including rollback on payment failures."""

import asyncio
from datetime import datetime, timedelta

import pytest

from sanaalink.booking.submission import (
    BookingCheckout,
    OrderCheckout,
    _Checkout,
    await_payment,
    book_service,
    build_booking,
    make_transaction_ref,
    order_product,
    order_total,
    validate_booking_request,
    validate_order_request,
)
from sanaalink.errors import (
    GatewayRejection,
    GatewayUnavailable,
    StoreReadFailure,
    StoreWriteFailure,
    ValidationError,
)
from sanaalink.schemas.booking_schema import BookingStatus, PaymentStatus
from sanaalink.schemas.order_schema import OrderStatus
from sanaalink.stores.memory import (
    InMemoryAvailabilityStore,
    InMemoryBookingStore,
    InMemoryOrderStore,
    InMemoryPaymentStore,
)
from tests.conftest import CUSTOMER_ID, TODAY, TUESDAY, FakeGateway

PHONE = "0712 345 678"
MSISDN = "254712345678"


class SlowAfterInsertPaymentStore(InMemoryPaymentStore):
    """Stores the row, then answers too late for the caller's timeout."""

    async def insert(self, payment):
        stored = await super().insert(payment)
        await asyncio.sleep(1)
        return stored


@pytest.fixture
def checkout(open_hours, booking_store, payment_store, gateway, channel):
    return BookingCheckout(open_hours, booking_store, payment_store, gateway, channel, timeout=1)


@pytest.fixture
def orders(order_store, payment_store, gateway, channel):
    return OrderCheckout(order_store, payment_store, gateway, channel, timeout=1)


async def _submit(checkout, service, **overrides):
    kwargs = dict(
        service=service, customer_id=CUSTOMER_ID, day=TUESDAY, slot="10:00", phone=PHONE,
        today=TODAY,
    )
    kwargs.update(overrides)
    return await checkout.submit(**kwargs)


class TestHelpers:
    def test_build_booking_merges_date_and_slot(self, service):
        booking = build_booking(TUESDAY, "14:30", service, CUSTOMER_ID, "Gate code 42")
        assert booking.booking_date == datetime(2025, 3, 18, 14, 30)
        assert booking.status == BookingStatus.PENDING
        assert booking.payment_status == PaymentStatus.PENDING
        assert booking.total_amount == 1500.0
        assert booking.provider_id == service.provider_id

    def test_order_total(self):
        assert order_total(850.0, 3) == 2550.0

    def test_transaction_ref(self):
        assert make_transaction_ref("abc", now_ms=1700000000000) == "abc-1700000000000"
        assert make_transaction_ref("abc", "ORDER-", 5) == "ORDER-abc-5"


class TestValidateBookingRequest:
    def test_valid_request(self):
        assert validate_booking_request(CUSTOMER_ID, TUESDAY, "9:00", PHONE, today=TODAY) == (
            CUSTOMER_ID, TUESDAY, "09:00", MSISDN
        )

    def test_login_required(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_booking_request(None, TUESDAY, "10:00", PHONE, today=TODAY)
        assert exc_info.value.title == "Login Required"

    @pytest.mark.parametrize("day,slot,phone", [
        (None, "10:00", PHONE),
        (TUESDAY, "", PHONE),
        (TUESDAY, "10:00", ""),
    ])
    def test_missing_fields(self, day, slot, phone):
        with pytest.raises(ValidationError) as exc_info:
            validate_booking_request(CUSTOMER_ID, day, slot, phone, today=TODAY)
        assert exc_info.value.title == "Missing Information"

    def test_past_date_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_booking_request(
                CUSTOMER_ID, TODAY - timedelta(days=1), "10:00", PHONE, today=TODAY
            )
        assert exc_info.value.title == "Date Unavailable"

    def test_date_beyond_window_rejected(self):
        with pytest.raises(ValidationError):
            validate_booking_request(
                CUSTOMER_ID, TODAY + timedelta(days=31), "10:00", PHONE, today=TODAY
            )

    def test_last_day_of_window_accepted(self):
        day = TODAY + timedelta(days=30)
        assert validate_booking_request(CUSTOMER_ID, day, "10:00", PHONE, today=TODAY)[1] == day

    def test_slot_not_offered(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_booking_request(
                CUSTOMER_ID, TUESDAY, "11:00", PHONE, today=TODAY, offered_slots=["10:00"]
            )
        assert exc_info.value.title == "Slot Unavailable"

    def test_invalid_phone(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_booking_request(CUSTOMER_ID, TUESDAY, "10:00", "12345", today=TODAY)
        assert exc_info.value.title == "Invalid Phone Number"


class TestValidateOrderRequest:
    def test_valid(self, product):
        assert validate_order_request(CUSTOMER_ID, product, 2, PHONE, "  Moi Avenue, Nairobi ") == (
            CUSTOMER_ID, MSISDN, "Moi Avenue, Nairobi"
        )

    def test_zero_quantity(self, product):
        with pytest.raises(ValidationError, match="at least 1"):
            validate_order_request(CUSTOMER_ID, product, 0, PHONE, "Nairobi")

    def test_insufficient_stock(self, product):
        with pytest.raises(ValidationError) as exc_info:
            validate_order_request(CUSTOMER_ID, product, 6, PHONE, "Nairobi")
        assert exc_info.value.title == "Insufficient Stock"

    def test_missing_address(self, product):
        with pytest.raises(ValidationError):
            validate_order_request(CUSTOMER_ID, product, 1, PHONE, "   ")


class TestBookingCheckout:
    @pytest.mark.asyncio
    async def test_completed_payment_confirms_booking(
        self, checkout, service, booking_store, payment_store, gateway, channel
    ):
        pending = await _submit(checkout, service)
        booking_id = pending.record.id

        assert pending.payment.transaction_ref.startswith(f"{booking_id}-")
        assert gateway.calls == [(MSISDN, 1500.0, pending.payment.transaction_ref)]
        assert channel.subscriber_count == 1

        await payment_store.update_status(
            pending.payment.transaction_ref, PaymentStatus.COMPLETED, "QKJ3AB12CD"
        )
        result = await await_payment(pending, timeout=1)

        assert result["success"] is True
        assert result["title"] == "Payment Successful"
        assert result["message"] == "Your booking has been confirmed!"
        booking = booking_store.bookings[booking_id]
        assert booking.status == BookingStatus.CONFIRMED
        assert booking.payment_status == PaymentStatus.COMPLETED
        assert channel.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_failed_payment_leaves_booking_for_follow_up(
        self, checkout, service, booking_store, payment_store, channel
    ):
        pending = await _submit(checkout, service)
        await payment_store.update_status(pending.payment.transaction_ref, PaymentStatus.FAILED)
        result = await await_payment(pending, timeout=1)

        assert result["success"] is False
        assert result["title"] == "Payment Failed"
        booking = booking_store.bookings[pending.record.id]
        assert booking.status == BookingStatus.PENDING
        assert booking.payment_status == PaymentStatus.FAILED
        assert channel.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_other_payment_events_are_ignored(
        self, checkout, service, booking_store, payment_store
    ):
        first = await _submit(checkout, service)
        second = await _submit(checkout, service, slot="11:00")
        await payment_store.update_status(second.payment.transaction_ref, PaymentStatus.COMPLETED)
        await await_payment(second, timeout=1)

        assert booking_store.bookings[first.record.id].status == BookingStatus.PENDING
        first.cancel()

    @pytest.mark.asyncio
    async def test_payment_insert_failure_rolls_back_booking(
        self, open_hours, service, booking_store, gateway, channel
    ):
        payments = InMemoryPaymentStore(channel=channel, fail_on={"insert"})
        checkout = BookingCheckout(open_hours, booking_store, payments, gateway, channel, timeout=1)

        with pytest.raises(StoreWriteFailure) as exc_info:
            await _submit(checkout, service)

        assert exc_info.value.title == "Payment Error"
        assert booking_store.bookings == {}
        assert gateway.calls == []
        assert channel.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_payment_row_written_before_timeout_is_removed(
        self, open_hours, service, booking_store, gateway, channel
    ):
        payments = SlowAfterInsertPaymentStore(channel=channel)
        checkout = BookingCheckout(
            open_hours, booking_store, payments, gateway, channel, timeout=0.05
        )

        with pytest.raises(StoreWriteFailure):
            await _submit(checkout, service)

        assert payments.payments == {}
        assert booking_store.bookings == {}
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_booking_insert_failure(
        self, open_hours, service, payment_store, gateway, channel
    ):
        bookings = InMemoryBookingStore(fail_on={"insert"})
        checkout = BookingCheckout(open_hours, bookings, payment_store, gateway, channel, timeout=1)

        with pytest.raises(StoreWriteFailure, match="Failed to create booking"):
            await _submit(checkout, service)
        assert payment_store.payments == {}
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_gateway_rejection_rolls_back(
        self, open_hours, service, booking_store, payment_store, channel
    ):
        gateway = FakeGateway(response_code="1", description="Insufficient balance")
        checkout = BookingCheckout(
            open_hours, booking_store, payment_store, gateway, channel, timeout=1
        )

        with pytest.raises(GatewayRejection) as exc_info:
            await _submit(checkout, service)

        assert exc_info.value.response_code == "1"
        assert exc_info.value.description == "Insufficient balance"
        assert booking_store.bookings == {}
        assert payment_store.payments == {}
        assert channel.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_gateway_rejection_can_leave_records_pending(
        self, open_hours, service, booking_store, payment_store, channel
    ):
        gateway = FakeGateway(response_code="2001", description="Invalid initiator")
        checkout = BookingCheckout(
            open_hours, booking_store, payment_store, gateway, channel, timeout=1,
            compensate_on_rejection=False,
        )

        with pytest.raises(GatewayRejection):
            await _submit(checkout, service)

        assert len(booking_store.bookings) == 1
        assert len(payment_store.payments) == 1
        assert channel.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_gateway_unavailable_rolls_back(
        self, open_hours, service, booking_store, payment_store, channel
    ):
        gateway = FakeGateway(error=GatewayUnavailable("Could not reach the payment service."))
        checkout = BookingCheckout(
            open_hours, booking_store, payment_store, gateway, channel, timeout=1
        )

        with pytest.raises(GatewayUnavailable):
            await _submit(checkout, service)

        assert booking_store.bookings == {}
        assert payment_store.payments == {}
        assert channel.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_failed_rollback_still_reports_original_error(
        self, open_hours, service, payment_store, channel, caplog
    ):
        bookings = InMemoryBookingStore(fail_on={"delete"})
        gateway = FakeGateway(response_code="1", description="Declined")
        checkout = BookingCheckout(open_hours, bookings, payment_store, gateway, channel, timeout=1)

        with pytest.raises(GatewayRejection):
            await _submit(checkout, service)
        assert "manual cleanup needed" in caplog.text

    @pytest.mark.asyncio
    async def test_validation_failure_does_no_io(
        self, checkout, service, booking_store, payment_store, gateway
    ):
        with pytest.raises(ValidationError):
            await _submit(checkout, service, phone="not-a-phone")
        assert booking_store.bookings == {}
        assert payment_store.payments == {}
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_cancel_releases_subscription(self, checkout, service, channel):
        pending = await _submit(checkout, service)
        assert channel.subscriber_count == 1
        pending.cancel()
        with pytest.raises(asyncio.CancelledError):
            await pending.settlement
        assert channel.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_await_payment_timeout_keeps_listening(
        self, checkout, service, booking_store, channel
    ):
        pending = await _submit(checkout, service)
        result = await await_payment(pending, timeout=0.01)

        assert result["success"] is False
        assert result["title"] == "Payment Pending"
        assert booking_store.bookings[pending.record.id].payment_status == PaymentStatus.PENDING
        assert not pending.settlement.done()
        assert channel.subscriber_count == 1
        pending.cancel()

    @pytest.mark.asyncio
    async def test_payment_after_timeout_still_confirms_booking(
        self, checkout, service, booking_store, payment_store, channel
    ):
        pending = await _submit(checkout, service)
        first = await await_payment(pending, timeout=0.01)
        assert first["title"] == "Payment Pending"

        await payment_store.update_status(pending.payment.transaction_ref, PaymentStatus.COMPLETED)
        assert await pending.settlement == PaymentStatus.COMPLETED

        booking = booking_store.bookings[pending.record.id]
        assert booking.status == BookingStatus.CONFIRMED
        assert booking.payment_status == PaymentStatus.COMPLETED
        assert channel.subscriber_count == 0

        second = await await_payment(pending, timeout=0.01)
        assert second["title"] == "Payment Successful"

    @pytest.mark.asyncio
    async def test_await_payment_after_cancel(self, checkout, service, booking_store, channel):
        pending = await _submit(checkout, service)
        pending.cancel()

        result = await await_payment(pending, timeout=1)

        assert result["success"] is False
        assert result["title"] == "Payment Pending"
        assert result["record_id"] == pending.record.id
        assert booking_store.bookings[pending.record.id].status == BookingStatus.PENDING
        assert channel.subscriber_count == 0


class TestSlotRecheck:
    @pytest.mark.asyncio
    async def test_slot_outside_working_hours_rejected(
        self, checkout, service, booking_store, payment_store, gateway
    ):
        with pytest.raises(ValidationError) as exc_info:
            await _submit(checkout, service, slot="03:17")

        assert exc_info.value.title == "Slot Unavailable"
        assert booking_store.bookings == {}
        assert payment_store.payments == {}
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_no_rule_means_no_bookable_slot(
        self, availability_store, service, booking_store, payment_store, gateway, channel
    ):
        checkout = BookingCheckout(
            availability_store, booking_store, payment_store, gateway, channel, timeout=1
        )
        result = await book_service(
            checkout, service, CUSTOMER_ID, TUESDAY, "10:00", PHONE, today=TODAY
        )

        assert result["success"] is False
        assert result["title"] == "Slot Unavailable"
        assert booking_store.bookings == {}
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_taken_slot_rejected(self, checkout, service, booking_store):
        first = await _submit(checkout, service)

        with pytest.raises(ValidationError, match="no longer available"):
            await _submit(checkout, service)

        assert list(booking_store.bookings) == [first.record.id]
        first.cancel()

    @pytest.mark.asyncio
    async def test_availability_read_failure(
        self, service, booking_store, payment_store, gateway, channel
    ):
        availability = InMemoryAvailabilityStore(fail_on={"get_rule"})
        checkout = BookingCheckout(
            availability, booking_store, payment_store, gateway, channel, timeout=1
        )

        with pytest.raises(StoreReadFailure):
            await _submit(checkout, service)
        assert booking_store.bookings == {}

    @pytest.mark.asyncio
    async def test_offered_slots_skip_lookup(
        self, service, booking_store, payment_store, gateway, channel
    ):
        availability = InMemoryAvailabilityStore(fail_on={"get_rule"})
        checkout = BookingCheckout(
            availability, booking_store, payment_store, gateway, channel, timeout=1
        )

        pending = await _submit(checkout, service, offered_slots=["10:00"])

        assert pending.record.id in booking_store.bookings
        pending.cancel()


class TestCheckoutHooks:
    def test_hooks_are_abstract(self, payment_store, gateway, channel):
        class HalfCheckout(_Checkout):
            async def _delete_record(self, record_id):
                pass

        with pytest.raises(TypeError):
            HalfCheckout(payment_store, gateway, channel)


class TestBookService:
    @pytest.mark.asyncio
    async def test_success_result(self, checkout, service):
        result = await book_service(
            checkout, service, CUSTOMER_ID, TUESDAY, "10:00", PHONE, today=TODAY
        )
        assert result["success"] is True
        assert result["title"] == "Payment Initiated"
        assert result["message"] == "Please check your phone to complete the payment."
        assert result["checkout_id"].startswith("CHK-")
        assert result["transaction_ref"].startswith(result["record_id"])
        result["pending"].cancel()

    @pytest.mark.asyncio
    async def test_failure_result(self, checkout, service):
        result = await book_service(checkout, service, None, TUESDAY, "10:00", PHONE, today=TODAY)
        assert result["success"] is False
        assert result["title"] == "Login Required"
        assert "pending" not in result

    @pytest.mark.asyncio
    async def test_rejection_result(
        self, open_hours, service, booking_store, payment_store, channel
    ):
        gateway = FakeGateway(response_code="1", description="Insufficient balance")
        checkout = BookingCheckout(
            open_hours, booking_store, payment_store, gateway, channel, timeout=1
        )
        result = await book_service(
            checkout, service, CUSTOMER_ID, TUESDAY, "10:00", PHONE, today=TODAY
        )
        assert result == {
            "success": False,
            "title": "Payment Rejected",
            "message": "Insufficient balance",
            "checkout_id": result["checkout_id"],
        }


class TestOrderCheckout:
    @pytest.mark.asyncio
    async def test_order_paid_and_confirmed(
        self, orders, product, order_store, payment_store, gateway
    ):
        result = await order_product(
            orders, product, CUSTOMER_ID, 3, PHONE, "Moi Avenue, Nairobi"
        )
        assert result["success"] is True
        pending = result["pending"]
        assert pending.payment.transaction_ref.startswith(f"ORDER-{result['record_id']}-")
        assert pending.payment.amount == 2550.0
        assert gateway.calls[0][1] == 2550.0

        await payment_store.update_status(pending.payment.transaction_ref, PaymentStatus.COMPLETED)
        final = await await_payment(pending, timeout=1)

        assert final["message"] == "Your order has been confirmed!"
        order = order_store.orders[result["record_id"]]
        assert order.status == OrderStatus.CONFIRMED
        assert order.payment_status == PaymentStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_order_rejection_rolls_back(self, product, order_store, payment_store, channel):
        gateway = FakeGateway(response_code="1", description="Declined")
        checkout = OrderCheckout(order_store, payment_store, gateway, channel, timeout=1)
        result = await order_product(checkout, product, CUSTOMER_ID, 1, PHONE, "Nairobi")

        assert result["success"] is False
        assert order_store.orders == {}
        assert payment_store.payments == {}

    @pytest.mark.asyncio
    async def test_order_insert_failure(self, product, payment_store, gateway, channel):
        checkout = OrderCheckout(
            InMemoryOrderStore(fail_on={"insert"}), payment_store, gateway, channel, timeout=1
        )
        result = await order_product(checkout, product, CUSTOMER_ID, 1, PHONE, "Nairobi")
        assert result["success"] is False
        assert result["title"] == "Order Error"
        assert gateway.calls == []
