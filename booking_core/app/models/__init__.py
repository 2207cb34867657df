from .tables import (
    ONE_OFF,
    RECURRING,
    SLOT_ACTIVE,
    SLOT_CANCELLED,
    AvailabilitySlot,
    Base,
    Booking,
    metadata,
)
