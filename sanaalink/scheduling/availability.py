"""
Availability lookup feeding the slot generator.

Reads the provider's rule for the weekday of the target date and the
existing bookings for that date, then hands both to ``generate_slots``.
Both reads must resolve before slots are computed; a partially loaded
bookings list would offer already-taken slots.
"""

import asyncio
import logging
from datetime import date, time
from typing import Optional

from sanaalink.config import settings
from sanaalink.errors import (
    SanaaLinkError,
    StoreError,
    StoreReadFailure,
    StoreWriteFailure,
    ValidationError,
)
from sanaalink.scheduling.slots import (
    TimeLike,
    booked_start_times,
    day_bounds,
    effective_duration,
    generate_slots,
    parse_time_of_day,
)
from sanaalink.schemas.availability_schema import AvailabilityRule, Weekday
from sanaalink.schemas.booking_schema import Booking, Service
from sanaalink.stores.base import AvailabilityStore, BookingStore

logger = logging.getLogger(__name__)


async def save_rule(
    store: AvailabilityStore,
    provider_id: str,
    weekday: Weekday,
    start_time: TimeLike,
    end_time: TimeLike,
    is_available: bool = True,
) -> AvailabilityRule:
    """Create or replace the provider's rule for ``weekday``."""
    try:
        start = parse_time_of_day(start_time)
        end = parse_time_of_day(end_time)
    except ValueError as exc:
        raise ValidationError(str(exc), title="Invalid Time") from None
    if end <= start:
        raise ValidationError("End time must be after start time", title="Invalid Time")

    rule = AvailabilityRule(
        provider_id=provider_id,
        weekday=weekday,
        start_time=start,
        end_time=end,
        is_available=is_available,
    )
    try:
        saved = await store.upsert_rule(rule)
    except StoreError as exc:
        raise StoreWriteFailure("Error saving availability settings", title="Error") from exc
    logger.info("Schedule for %s updated for provider %s", weekday.value, provider_id)
    return saved


async def load_day(
    availability: AvailabilityStore,
    bookings: BookingStore,
    provider_id: str,
    service_id: str,
    day: date,
    timeout: Optional[float] = None,
) -> tuple[Optional[AvailabilityRule], list[Booking]]:
    """
    Fetch the weekday rule and the day's bookings concurrently.

    Raises:
        StoreReadFailure: if either read fails or the pair does not finish in time.
    """
    timeout = timeout or settings.scheduling.store_timeout_sec
    start, end = day_bounds(day)
    try:
        rule, day_bookings = await asyncio.wait_for(
            asyncio.gather(
                availability.get_rule(provider_id, Weekday.for_date(day)),
                bookings.list_in_range(provider_id, service_id, start, end),
            ),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        raise StoreReadFailure(f"Timed out loading availability for {day.isoformat()}") from None
    except StoreError as exc:
        raise StoreReadFailure(f"Could not load availability for {day.isoformat()}") from exc
    return rule, day_bookings


async def find_slots(
    availability: AvailabilityStore,
    bookings: BookingStore,
    service: Service,
    day: date,
    timeout: Optional[float] = None,
) -> list[str]:
    """
    Free slots for ``service`` on ``day``.

    No rule, or a rule marked unavailable, means no slots; the generator
    is not consulted in that case.

    Raises:
        StoreReadFailure: propagated from ``load_day``.
    """
    rule, day_bookings = await load_day(
        availability, bookings, service.provider_id, service.id, day, timeout
    )
    if rule is None or not rule.is_available:
        logger.debug("Provider %s unavailable on %s", service.provider_id, day.isoformat())
        return []
    return generate_slots(
        rule.start_time,
        rule.end_time,
        effective_duration(service.duration),
        booked_start_times(day_bookings, day),
    )


class SlotPicker:
    """
    Slot list behind the booking form's date picker.

    Each ``select_date`` call supersedes the previous one. A lookup that
    resolves after a newer date was selected is discarded instead of
    overwriting the newer slot list.
    """

    def __init__(
        self,
        availability: AvailabilityStore,
        bookings: BookingStore,
        service: Service,
    ) -> None:
        self._availability = availability
        self._bookings = bookings
        self.service = service
        self.selected_date: Optional[date] = None
        self.slots: list[str] = []
        self.last_error: Optional[SanaaLinkError] = None
        self._generation = 0

    async def select_date(self, day: date) -> Optional[list[str]]:
        """
        Load slots for ``day``.

        Returns:
            The slot list, or None if a newer selection superseded this one.
        """
        self._generation += 1
        generation = self._generation
        self.selected_date = day
        self.slots = []

        try:
            slots = await find_slots(self._availability, self._bookings, self.service, day)
            error = None
        except StoreReadFailure as exc:
            logger.warning("Slot lookup failed for %s: %s", day.isoformat(), exc.description)
            slots, error = [], exc

        if generation != self._generation:
            logger.debug("Discarding stale slots for %s", day.isoformat())
            return None

        self.slots = slots
        self.last_error = error
        return slots

    def is_offered(self, slot: str) -> bool:
        return slot in self.slots


def describe_window(rule: AvailabilityRule) -> str:
    """Human-readable summary of a rule, as listed on the provider dashboard."""
    if not rule.is_available:
        return f"{rule.weekday.value.title()}: unavailable"
    return (
        f"{rule.weekday.value.title()}: "
        f"{_hhmm(rule.start_time)} - {_hhmm(rule.end_time)}"
    )


def _hhmm(value: time) -> str:
    return value.strftime("%H:%M")
