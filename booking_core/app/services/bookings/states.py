"""
Booking status state machine.

    pending     → confirmed | cancelled
    confirmed   → cancelled | completed | no_show
    in_progress → completed | cancelled | no_show
    completed / cancelled / no_show are terminal
"""

from enum import Enum

from ...errors import BadRequestError


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


ALLOWED_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset(
        {BookingStatus.CANCELLED, BookingStatus.COMPLETED, BookingStatus.NO_SHOW}
    ),
    BookingStatus.IN_PROGRESS: frozenset(
        {BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.NO_SHOW}
    ),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.NO_SHOW: frozenset(),
}

# Statuses that keep a slot occupied
ACTIVE_STATUSES = (
    BookingStatus.PENDING.value,
    BookingStatus.CONFIRMED.value,
    BookingStatus.IN_PROGRESS.value,
)


def is_terminal(status: BookingStatus) -> bool:
    return not ALLOWED_TRANSITIONS[status]


def validate_transition(current: str, target: str) -> BookingStatus:
    """Return the target status or raise BadRequestError."""
    current_status = BookingStatus(current)
    target_status = BookingStatus(target)
    if target_status not in ALLOWED_TRANSITIONS[current_status]:
        raise BadRequestError(
            f"Invalid status transition from {current_status.value} "
            f"to {target_status.value}"
        )
    return target_status
