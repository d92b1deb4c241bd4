"""
Slot Generation

Turns a provider's working-hours window for one weekday into the
ordered list of bookable start times for a specific date.

All arithmetic is on timezone-naive times of day, in whole minutes.
A slot is a ``HH:MM`` string naming the start of an interval of
``duration`` minutes that lies entirely inside [start_time, end_time).

Existing bookings exclude a slot only when their start time of day is
exactly equal to it; a booking of a different duration that merely
overlaps a candidate slot does not exclude it.
"""

from datetime import date, datetime, time, timedelta
from typing import Iterable, Optional, Union

from sanaalink.config import settings
from sanaalink.schemas.booking_schema import Booking, BookingStatus

TimeLike = Union[time, str]

SLOT_FORMAT = "%H:%M"


def parse_time_of_day(value: TimeLike) -> time:
    """Parse ``HH:MM`` or ``HH:MM:SS`` (as stored by the database) into a time."""
    if isinstance(value, time):
        return value
    text = value.strip()
    for fmt in ("%H:%M", "%H:%M:%S"):
        try:
            return datetime.strptime(text, fmt).time()
        except ValueError:
            continue
    raise ValueError(f"Invalid time of day: {value!r}")


def format_slot(value: TimeLike) -> str:
    """Canonical ``HH:MM`` form of a time of day."""
    return parse_time_of_day(value).strftime(SLOT_FORMAT)


def _to_minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def _from_minutes(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def effective_duration(duration: Optional[int]) -> int:
    """Service duration in minutes, falling back to the configured default."""
    if duration is None:
        return settings.scheduling.default_service_duration_min
    return duration


def generate_slots(
    start_time: TimeLike,
    end_time: TimeLike,
    duration_minutes: int,
    booked_start_times: Iterable[TimeLike] = (),
) -> list[str]:
    """
    Generate the free slots of one working-hours window.

    Args:
        start_time: window start for the weekday
        end_time: window end for the weekday
        duration_minutes: length of each slot
        booked_start_times: start times of existing bookings on the date

    Returns:
        Ascending ``HH:MM`` strings. Empty when nothing fits, when the
        window is empty or inverted, or when duration is not positive.
    """
    if duration_minutes <= 0:
        return []

    booked = {format_slot(t) for t in booked_start_times}
    end = _to_minutes(parse_time_of_day(end_time))
    cursor = _to_minutes(parse_time_of_day(start_time))

    slots = []
    while cursor + duration_minutes <= end:
        slot = _from_minutes(cursor)
        if slot not in booked:
            slots.append(slot)
        cursor += duration_minutes
    return slots


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """Half-open [start of day, start of next day) range for a booking query."""
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def booked_start_times(bookings: Iterable[Booking], day: date) -> set[str]:
    """
    Start times of bookings that occupy a slot on ``day``.

    Cancelled bookings free their slot; bookings on other dates are
    ignored even if the store returned them.
    """
    return {
        b.booking_date.strftime(SLOT_FORMAT)
        for b in bookings
        if b.booking_date.date() == day and b.status != BookingStatus.CANCELLED
    }


def combine_slot(day: date, slot: str) -> datetime:
    """Merge a calendar date and a slot string into the booking timestamp."""
    return datetime.combine(day, parse_time_of_day(slot).replace(second=0, microsecond=0))
