# booking_core/app/services/slots/config.py
"""
Configuration for slot generation and recurring materialization.
"""

from dataclasses import dataclass
from datetime import time
from functools import lru_cache


@dataclass(frozen=True)
class BookingConfig:
    """
    Configuration for the availability engine.

    Attributes:
        work_start: Default working window start (local to the slot date)
        work_end: Default working window end
        break_minutes: Default gap between generated slots
        min_slot_minutes: Floor for a generated slot length
        forward_weeks: Instances pre-generated when a template is created
        extension_weeks: Weeks the maintenance pass keeps ahead of the latest instance
        series_default_weeks: Span of a recurring booking series with no end given
    """
    work_start: time = time(8, 0)
    work_end: time = time(20, 0)
    break_minutes: int = 15
    min_slot_minutes: int = 15
    forward_weeks: int = 8
    extension_weeks: int = 4
    series_default_weeks: int = 4

    def __post_init__(self):
        """Validate configuration."""
        if self.work_end <= self.work_start:
            raise ValueError(f"work_end must be after work_start, got {self.work_start}-{self.work_end}")
        if self.min_slot_minutes < 1:
            raise ValueError(f"min_slot_minutes must be positive, got {self.min_slot_minutes}")
        if self.break_minutes < 0:
            raise ValueError(f"break_minutes must not be negative, got {self.break_minutes}")
        if self.forward_weeks < 1:
            raise ValueError(f"forward_weeks must be at least 1, got {self.forward_weeks}")


@lru_cache
def get_booking_config() -> BookingConfig:
    """
    Get booking configuration (singleton).
    """
    return BookingConfig()
