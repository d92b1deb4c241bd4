"""Provider working-hours models."""

from datetime import date, time
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class Weekday(str, Enum):
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @classmethod
    def for_date(cls, day: date) -> "Weekday":
        """Weekday of a calendar date, independent of locale."""
        return list(cls)[day.weekday()]


class AvailabilityRule(BaseModel):
    """A provider's declared working-hours window for one weekday."""
    id: Optional[str] = None
    provider_id: str
    weekday: Weekday
    start_time: time
    end_time: time
    is_available: bool = True
