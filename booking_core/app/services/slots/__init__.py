# booking_core/app/services/slots/__init__.py
"""
Availability slots.

Generator (pure) → conflict validator → availability store (DB + cache),
with recurring templates expanded by the materializer.
"""

from .config import BookingConfig, get_booking_config
from .generator import (
    GenerationOptions,
    find_alternative_slot,
    generate_day_slots,
    generate_slots_for_range,
)
from .conflicts import BatchValidation, ConflictValidator
from .store import AvailabilityStore
from .recurring import RecurringMaterializer
from .service import SlotService
from .maintenance import MaintenanceSchedule, run_maintenance, slot_maintenance_loop

__all__ = [
    "BookingConfig",
    "get_booking_config",
    "GenerationOptions",
    "find_alternative_slot",
    "generate_day_slots",
    "generate_slots_for_range",
    "BatchValidation",
    "ConflictValidator",
    "AvailabilityStore",
    "RecurringMaterializer",
    "SlotService",
    "MaintenanceSchedule",
    "run_maintenance",
    "slot_maintenance_loop",
]
