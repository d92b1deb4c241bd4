"""
Offline console demo: books a service end to end without any API keys.

Uses the real slot generator, checkout pipeline, status machine and
payment channel, backed by in-memory stores and a simulated gateway that
answers the STK push and fires the payment callback a moment later.

Usage:
    python console_demo.py
    python console_demo.py --scenario declined
    python console_demo.py --scenario rejected
"""

import argparse
import asyncio
from datetime import date, timedelta
from typing import Optional

from sanaalink.booking.lifecycle import BookingManager, BookingTab, filter_bookings
from sanaalink.booking.submission import BookingCheckout, await_payment, book_service
from sanaalink.config import settings
from sanaalink.payments.realtime import PaymentChannel
from sanaalink.scheduling.availability import SlotPicker, describe_window, save_rule
from sanaalink.scheduling.slots import combine_slot
from sanaalink.schemas.availability_schema import Weekday
from sanaalink.schemas.booking_schema import Booking, PaymentStatus, Service
from sanaalink.schemas.payment_schema import StkPushResponse
from sanaalink.stores.memory import (
    InMemoryAvailabilityStore,
    InMemoryBookingStore,
    InMemoryPaymentStore,
)
from sanaalink.utils import format_kes

BLUE = "\033[94m"
GREEN = "\033[92m"
YELLOW = "\033[93m"
RED = "\033[91m"
DIM = "\033[2m"
RESET = "\033[0m"
BOLD = "\033[1m"

PROVIDER_ID = "prov-wanjiku"
CUSTOMER_ID = "cust-otieno"
CALLBACK_DELAY_SEC = 0.5


class SimulatedGateway:
    """Accepts (or rejects) the push and later reports the payment outcome."""

    def __init__(self, payments: InMemoryPaymentStore, outcome: str) -> None:
        self._payments = payments
        self._outcome = outcome
        self._callbacks: set[asyncio.Task] = set()

    async def initiate_push(self, phone: str, amount: float, reference: str) -> StkPushResponse:
        if self._outcome == "rejected":
            return StkPushResponse(
                ResponseCode="1", ResponseDescription="The balance is insufficient"
            )
        status = PaymentStatus.FAILED if self._outcome == "declined" else PaymentStatus.COMPLETED
        task = asyncio.create_task(self._callback(reference, status))
        self._callbacks.add(task)
        task.add_done_callback(self._callbacks.discard)
        return StkPushResponse(
            MerchantRequestID="29115-34620561-1",
            CheckoutRequestID="ws_CO_191220191020363925",
            ResponseCode="0",
            ResponseDescription="Success. Request accepted for processing",
            CustomerMessage="Success. Request accepted for processing",
        )

    async def _callback(self, reference: str, status: PaymentStatus) -> None:
        await asyncio.sleep(CALLBACK_DELAY_SEC)
        transaction_id = "DEMOQK7X2" if status == PaymentStatus.COMPLETED else None
        await self._payments.update_status(reference, status, transaction_id)


class ConsoleDemo:
    """Walks one customer through picking a slot and paying for it."""

    SCENARIOS = ("paid", "declined", "rejected")

    def __init__(self, scenario: str = "paid", today: Optional[date] = None) -> None:
        self.scenario = scenario
        self.today = today or date.today()
        self.channel = PaymentChannel()
        self.availability = InMemoryAvailabilityStore()
        self.bookings = InMemoryBookingStore()
        self.payments = InMemoryPaymentStore(channel=self.channel)
        self.gateway = SimulatedGateway(self.payments, scenario)
        self.service = Service(
            id="svc-braids",
            provider_id=PROVIDER_ID,
            title="Knotless Braids",
            price=2500.0,
            duration=90,
            category="beauty",
        )

    def say(self, text: str) -> None:
        print(f"{GREEN}{text}{RESET}")

    def log(self, text: str) -> None:
        print(f"{DIM}  >> {text}{RESET}")

    async def _seed(self, day: date) -> None:
        weekday = Weekday.for_date(day)
        rule = await save_rule(self.availability, PROVIDER_ID, weekday, "09:00", "17:00")
        self.log(f"Provider hours: {describe_window(rule)}")
        existing = await self.bookings.insert(Booking(
            customer_id="cust-other",
            provider_id=PROVIDER_ID,
            service_id=self.service.id,
            booking_date=combine_slot(day, "10:30"),
            total_amount=self.service.price,
        ))
        self.log(f"Existing booking at {existing.booking_date:%H:%M}")

    async def run(self) -> None:
        day = self.today + timedelta(days=1)
        print()
        print(f"{BOLD}{'=' * 60}{RESET}")
        print(f"{BOLD}  {settings.app_name.upper()} - Booking demo: {self.scenario}{RESET}")
        print(f"{BOLD}{'=' * 60}{RESET}")
        print()

        await self._seed(day)

        picker = SlotPicker(self.availability, self.bookings, self.service)
        slots = await picker.select_date(day)
        self.say(
            f"{self.service.title} ({self.service.duration} min, "
            f"{format_kes(self.service.price)}) on {day:%A %d %B}:"
        )
        self.say("  " + ", ".join(slots) if slots else "  No slots available, pick another date.")
        if not slots:
            return

        slot = slots[0]
        print(f"\n{BLUE}[Customer] {RESET}Booking {slot}, paying from 0712 345 678")
        checkout = BookingCheckout(
            self.availability, self.bookings, self.payments, self.gateway, self.channel
        )
        result = await book_service(
            checkout, self.service, CUSTOMER_ID, day, slot, "0712 345 678",
            today=self.today, offered_slots=picker.slots,
        )
        colour = GREEN if result["success"] else RED
        print(f"{colour}{BOLD}[{result['title']}]{RESET} {colour}{result['message']}{RESET}")
        if not result["success"]:
            self._summary()
            return

        self.log(f"Waiting for payment on {result['transaction_ref']}")
        final = await await_payment(result["pending"], timeout=10.0)
        colour = GREEN if final["success"] else YELLOW
        print(f"{colour}{BOLD}[{final['title']}]{RESET} {colour}{final['message']}{RESET}")

        if final["success"]:
            manager = BookingManager(self.bookings)
            done = await manager.complete(result["record_id"])
            self.log(f"Provider marked booking complete: {done.status.value}")
        self._summary()

    def _summary(self) -> None:
        everything = list(self.bookings.bookings.values())
        print(f"\n{BOLD}{'=' * 60}{RESET}")
        for tab in BookingTab:
            rows = filter_bookings(everything, tab, self.today)
            print(f"{DIM}  {tab.value}: {len(rows)}{RESET}")
            for b in rows:
                print(
                    f"{DIM}    {b.booking_date:%Y-%m-%d %H:%M}  status={b.status.value}  "
                    f"payment={b.payment_status.value}{RESET}"
                )
        print(f"{DIM}  open payment subscriptions: {self.channel.subscriber_count}{RESET}")
        print(f"{BOLD}{'=' * 60}{RESET}")


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Offline booking demo")
    parser.add_argument(
        "--scenario",
        choices=ConsoleDemo.SCENARIOS,
        default="paid",
        help="Payment outcome to simulate",
    )
    args = parser.parse_args(argv)
    asyncio.run(ConsoleDemo(args.scenario).run())


if __name__ == "__main__":
    main()
