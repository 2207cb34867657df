# booking_core/app/services/slots/conflicts.py
"""
Conflict detection for candidate slots.

Two ranges conflict iff existing.start < candidate.end and
existing.end > candidate.start (half-open) for the same provider.

Scope:
    recurring candidate → active templates with the same day_of_week,
                          compared by time of day
    dated candidate     → active dated rows of the provider on that date
Independently, active bookings (pending / confirmed / in_progress)
overlapping the candidate's absolute range are conflicts too.

Nothing here mutates state.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ...errors import ConflictError
from ...models import RECURRING, SLOT_ACTIVE, AvailabilitySlot, Booking
from ...schemas.slots import ConflictEntry, SlotConflict, SlotSpec, SuggestedRange
from ...timeutils import at_time_of, day_of_week, minutes_between
from ..bookings.states import ACTIVE_STATUSES


@dataclass
class BatchValidation:
    valid: list[SlotSpec] = field(default_factory=list)
    conflicts: list[SlotConflict] = field(default_factory=list)


def _overlaps(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    return start_a < end_b and end_a > start_b


def _same_time_of_day_overlap(row: AvailabilitySlot, candidate: SlotSpec) -> bool:
    return (
        row.start_time.time() < candidate.end_time.time()
        and row.end_time.time() > candidate.start_time.time()
    )


def _candidate_dow(candidate: SlotSpec) -> int:
    if candidate.day_of_week is not None:
        return candidate.day_of_week
    return day_of_week(candidate.start_time.date())


class ConflictValidator:
    """Finds slot and booking overlaps for candidate slots."""

    # ── Queries ──────────────────────────────────────────────────────────

    def find_conflicts(
        self,
        db: Session,
        candidate: SlotSpec,
        exclude_id: Optional[str] = None,
    ) -> list[AvailabilitySlot]:
        query = db.query(AvailabilitySlot).filter(
            AvailabilitySlot.provider_id == candidate.provider_id,
            AvailabilitySlot.status == SLOT_ACTIVE,
        )
        if exclude_id:
            query = query.filter(AvailabilitySlot.id != exclude_id)

        if candidate.kind == RECURRING:
            templates = query.filter(
                AvailabilitySlot.kind == RECURRING,
                AvailabilitySlot.date.is_(None),
                AvailabilitySlot.day_of_week == _candidate_dow(candidate),
            ).all()
            return [row for row in templates if _same_time_of_day_overlap(row, candidate)]

        slot_date = candidate.date or candidate.start_time.date()
        return (
            query.filter(
                AvailabilitySlot.date == slot_date,
                AvailabilitySlot.start_time < candidate.end_time,
                AvailabilitySlot.end_time > candidate.start_time,
            )
            .order_by(AvailabilitySlot.start_time)
            .all()
        )

    def find_booking_conflicts(
        self,
        db: Session,
        provider_id: str,
        start: datetime,
        end: datetime,
        exclude_booking_id: Optional[str] = None,
    ) -> list[Booking]:
        query = db.query(Booking).filter(
            Booking.provider_id == provider_id,
            Booking.status.in_(ACTIVE_STATUSES),
            Booking.start_time < end,
            Booking.end_time > start,
        )
        if exclude_booking_id:
            query = query.filter(Booking.id != exclude_booking_id)
        return query.order_by(Booking.start_time).all()

    def collect(
        self,
        db: Session,
        candidate: SlotSpec,
        exclude_id: Optional[str] = None,
    ) -> list[ConflictEntry]:
        """Slot and booking conflicts of a candidate as structured entries."""
        entries = [
            ConflictEntry(
                id=row.id,
                entity="slot",
                start_time=row.start_time,
                end_time=row.end_time,
            )
            for row in self.find_conflicts(db, candidate, exclude_id)
        ]
        for booking in self.find_booking_conflicts(
            db, candidate.provider_id, candidate.start_time, candidate.end_time
        ):
            entries.append(
                ConflictEntry(
                    id=booking.id,
                    entity="booking",
                    start_time=booking.start_time,
                    end_time=booking.end_time,
                    serial_key=booking.serial_key,
                )
            )
        return entries

    def check_for_conflicts(
        self,
        db: Session,
        candidate: SlotSpec,
        exclude_id: Optional[str] = None,
    ) -> None:
        """Raise ConflictError listing every overlap of the candidate."""
        entries = self.collect(db, candidate, exclude_id)
        if not entries:
            return

        suggestion = suggest_shift(candidate, entries)
        raise ConflictError(
            f"Time slot conflicts with {len(entries)} existing slot(s) or booking(s)",
            conflicts=[entry.model_dump(mode="json") for entry in entries],
            suggestion=suggestion.model_dump(mode="json") if suggestion else None,
        )

    # ── Batch ────────────────────────────────────────────────────────────

    def validate_batch(self, db: Session, candidates: list[SlotSpec]) -> BatchValidation:
        """
        Split candidates into valid ones and conflicts (with an advisory
        shifted suggestion). Candidates are also checked against the valid
        ones before them in the same batch.
        """
        result = BatchValidation()
        for candidate in candidates:
            entries = self.collect(db, candidate)
            for index, accepted in enumerate(result.valid):
                if _batch_overlap(accepted, candidate):
                    entries.append(
                        ConflictEntry(
                            id=f"batch:{index}",
                            entity="slot",
                            start_time=accepted.start_time,
                            end_time=accepted.end_time,
                        )
                    )

            if entries:
                result.conflicts.append(
                    SlotConflict(
                        slot=candidate,
                        conflicts=entries,
                        suggestion=suggest_shift(candidate, entries),
                    )
                )
            else:
                result.valid.append(candidate)
        return result


def _batch_overlap(a: SlotSpec, b: SlotSpec) -> bool:
    if a.provider_id != b.provider_id or a.kind != b.kind:
        return False
    if a.kind == RECURRING:
        return _candidate_dow(a) == _candidate_dow(b) and (
            a.start_time.time() < b.end_time.time() and a.end_time.time() > b.start_time.time()
        )
    a_date = a.date or a.start_time.date()
    b_date = b.date or b.start_time.date()
    return a_date == b_date and _overlaps(a.start_time, a.end_time, b.start_time, b.end_time)


def suggest_shift(candidate: SlotSpec, entries: list[ConflictEntry]) -> Optional[SuggestedRange]:
    """Start at the latest conflicting end, keep the candidate's duration."""
    if not entries:
        return None

    duration = candidate.duration_minutes or minutes_between(
        candidate.start_time, candidate.end_time
    )
    if candidate.kind == RECURRING:
        # Templates sit on other dates; only their time of day matters
        latest_end = max(at_time_of(candidate.start_time.date(), e.end_time) for e in entries)
    else:
        latest_end = max(e.end_time for e in entries)

    latest_end = max(latest_end, candidate.start_time)
    return SuggestedRange(
        start_time=latest_end,
        end_time=latest_end + timedelta(minutes=duration),
    )
