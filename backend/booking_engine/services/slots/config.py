# backend/booking_engine/services/slots/config.py
"""
Engine configuration for slot bookkeeping and reservation holds.
"""

from dataclasses import dataclass
from functools import lru_cache


@dataclass(frozen=True)
class BookingConfig:
    """
    Configuration for the availability engine.

    Attributes:
        slot_step_minutes: Slot granularity, fixed at 15
        reservation_window_minutes: Base hold time for a fresh reservation
        reservation_sibling_bonus_minutes: Extra hold time per existing sibling in the group
        cleanup_grace_minutes: Minimum age before an expired hold can be swept
        committed_retention_minutes: How long committed reservation rows are kept for audit
        reschedule_min_notice_hours: Bookings closer than this to their start cannot be moved
        cas_max_retries: Attempts per slot row write before giving up on contention
    """
    slot_step_minutes: int = 15
    reservation_window_minutes: int = 15
    reservation_sibling_bonus_minutes: int = 5
    cleanup_grace_minutes: int = 5
    committed_retention_minutes: int = 60
    reschedule_min_notice_hours: int = 24
    cas_max_retries: int = 5

    def __post_init__(self):
        """Validate configuration."""
        if self.slot_step_minutes != 15:
            raise ValueError(f"slot_step_minutes is fixed at 15, got {self.slot_step_minutes}")
        if self.cas_max_retries < 1:
            raise ValueError("cas_max_retries must be at least 1")

    @property
    def day_minutes(self) -> int:
        return 24 * 60

    @property
    def slots_per_day(self) -> int:
        """96 slots for the 15 minute grid."""
        return self.day_minutes // self.slot_step_minutes

    @property
    def last_slot_minute(self) -> int:
        return self.day_minutes - self.slot_step_minutes

    def slot_minutes(self) -> range:
        """All slot start minutes of a day: 0, 15, ..., 1425."""
        return range(0, self.day_minutes, self.slot_step_minutes)

    def hold_minutes(self, siblings: int) -> int:
        """Hold window for a reservation joining a group with `siblings` existing rows."""
        return self.reservation_window_minutes + self.reservation_sibling_bonus_minutes * max(0, siblings)


@lru_cache
def get_booking_config() -> BookingConfig:
    """
    Get booking configuration (singleton).
    """
    return BookingConfig()
