from sanaalink.scheduling.availability import SlotPicker, find_slots, load_day, save_rule
from sanaalink.scheduling.slots import (
    booked_start_times,
    combine_slot,
    effective_duration,
    generate_slots,
)

__all__ = [
    "generate_slots",
    "booked_start_times",
    "combine_slot",
    "effective_duration",
    "SlotPicker",
    "find_slots",
    "load_day",
    "save_rule",
]
