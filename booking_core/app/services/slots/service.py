# booking_core/app/services/slots/service.py
"""
Slot operations exposed to the API layer: single, bulk, all-day and range
creation, day re-generation, update, delete, cleanup and listings.

Every operation validates before it mutates; conflicts come back as a
ConflictError or as per-item entries of a bulk result.
"""

import logging
from datetime import date, datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...errors import BadRequestError, ConflictError
from ...models import ONE_OFF, RECURRING, SLOT_ACTIVE, SLOT_CANCELLED, AvailabilitySlot
from ...schemas.slots import (
    BulkSlotsRequest,
    BulkSlotsResult,
    CleanupResult,
    DaySlotsRequest,
    GenerationRequest,
    RangeSlotsRequest,
    SlotConflict,
    SlotCreate,
    SlotRead,
    SlotSpec,
    SlotUpdate,
    VirtualSlot,
)
from ...timeutils import at_time_of, day_of_week, minutes_between
from ..idempotency import IdempotencyCache
from .config import BookingConfig, get_booking_config
from .conflicts import ConflictValidator, suggest_shift
from .generator import (
    GenerationOptions,
    find_alternative_slot,
    generate_day_slots,
    generate_slots_for_range,
)
from .recurring import RecurringMaterializer
from .store import AvailabilityStore

logger = logging.getLogger(__name__)


def normalize_spec(spec: SlotSpec) -> SlotSpec:
    """
    Check the time range and fill the derived fields (duration, date or
    day_of_week) so the stored row satisfies the slot invariants.
    """
    if spec.start_time >= spec.end_time:
        raise BadRequestError("Start time must be before end time")

    duration = minutes_between(spec.start_time, spec.end_time)
    if spec.duration_minutes is not None and spec.duration_minutes != duration:
        raise BadRequestError(
            f"Duration {spec.duration_minutes} does not match the time range ({duration} minutes)"
        )

    start_date = spec.start_time.date()
    if spec.kind == RECURRING:
        dow = day_of_week(start_date)
        if spec.day_of_week is not None and spec.day_of_week != dow:
            raise BadRequestError(
                f"day_of_week {spec.day_of_week} does not match start time {spec.start_time.isoformat()}"
            )
        return spec.model_copy(update={"duration_minutes": duration, "day_of_week": dow, "date": None})

    if spec.date is not None and spec.date != start_date:
        raise BadRequestError(f"Date {spec.date} does not match start time {spec.start_time.isoformat()}")
    return spec.model_copy(update={"duration_minutes": duration, "date": start_date, "day_of_week": None})


def _generation_options(request: GenerationRequest) -> GenerationOptions:
    if (request.working_start is None) != (request.working_end is None):
        raise BadRequestError("Both working_start and working_end are required for custom hours")
    if request.count is None and request.minutes_per_slot is None:
        raise BadRequestError("Either count or minutes_per_slot is required")
    return GenerationOptions(
        working_start=request.working_start,
        working_end=request.working_end,
        minutes_per_slot=request.minutes_per_slot,
        break_minutes=request.break_minutes,
        is_recurring=request.is_recurring,
        day_of_week=request.day_of_week,
    )


class SlotService:
    def __init__(
        self,
        store: AvailabilityStore,
        validator: ConflictValidator,
        materializer: RecurringMaterializer,
        idempotency: IdempotencyCache,
        config: Optional[BookingConfig] = None,
    ):
        self.store = store
        self.validator = validator
        self.materializer = materializer
        self.idempotency = idempotency
        self.config = config or get_booking_config()

    # ── Create ───────────────────────────────────────────────────────────

    def create_slot(self, db: Session, data: SlotCreate) -> SlotRead:
        cached = self.idempotency.lookup("slots:create", data.idempotency_key)
        if cached is not None:
            return SlotRead.model_validate(cached)

        spec = normalize_spec(SlotSpec.model_validate(data.model_dump(exclude={"idempotency_key"})))
        self.validator.check_for_conflicts(db, spec)
        slot = self._persist(db, spec)

        result = SlotRead.model_validate(slot)
        self.idempotency.remember("slots:create", data.idempotency_key, result.model_dump(mode="json"))
        return result

    def create_bulk_slots(self, db: Session, request: BulkSlotsRequest) -> BulkSlotsResult:
        """
        Without flags the batch is all-or-nothing: any conflict raises.
        skip_conflicts creates the clean items and reports the rest;
        replace_conflicts deletes clashing free slots first; dry_run only
        reports what would clash.
        """
        cached = self.idempotency.lookup("slots:bulk", request.idempotency_key)
        if cached is not None:
            return BulkSlotsResult.model_validate(cached)

        specs = [normalize_spec(spec) for spec in request.slots]

        if request.dry_run:
            validation = self.validator.validate_batch(db, specs)
            for conflict in validation.conflicts:
                conflict.alternative = self._alternative(db, conflict.slot)
            return BulkSlotsResult(conflicts=validation.conflicts, dry_run=True)

        if not request.skip_conflicts and not request.replace_conflicts:
            validation = self.validator.validate_batch(db, specs)
            if validation.conflicts:
                raise ConflictError(
                    f"{len(validation.conflicts)} of {len(specs)} slots conflict",
                    conflicts=[c.model_dump(mode="json") for c in validation.conflicts],
                )

        result = BulkSlotsResult()
        for spec in specs:
            entries = self.validator.collect(db, spec)
            if entries and request.replace_conflicts:
                entries = self._replace_conflicts(db, entries)
            if entries:
                result.conflicts.append(
                    SlotConflict(slot=spec, conflicts=entries, suggestion=suggest_shift(spec, entries))
                )
                continue
            result.created.append(SlotRead.model_validate(self._persist(db, spec)))

        logger.info(
            f"Bulk slot creation: {len(result.created)} created, "
            f"{len(result.conflicts)} conflicts"
        )
        self.idempotency.remember("slots:bulk", request.idempotency_key, result.model_dump(mode="json"))
        return result

    def create_all_day_slots(self, db: Session, request: DaySlotsRequest) -> list[SlotRead]:
        """Generate a day's partition and persist every non-conflicting slot."""
        specs = generate_day_slots(
            request.provider_id,
            request.date,
            request.count,
            _generation_options(request),
            self.config,
        )
        return self._persist_generated(db, specs)

    def create_range_slots(self, db: Session, request: RangeSlotsRequest) -> list[SlotRead]:
        """Daily partitions for a date range; recurring requests keep one weekday."""
        specs = generate_slots_for_range(
            request.provider_id,
            request.start_date,
            request.end_date,
            request.count,
            _generation_options(request),
            self.config,
        )
        created = self._persist_generated(db, specs)
        logger.info(
            f"Range generation {request.start_date} .. {request.end_date} for provider "
            f"{request.provider_id}: {len(created)} of {len(specs)} slots created"
        )
        return created

    def adjust_day_slot_quantity(self, db: Session, request: DaySlotsRequest) -> list[SlotRead]:
        """Replace a day's free one-off slots with a fresh partition."""
        if request.is_recurring:
            raise BadRequestError("Day quantity can only be adjusted for one-off slots")

        free_slots = (
            db.query(AvailabilitySlot)
            .filter(
                AvailabilitySlot.provider_id == request.provider_id,
                AvailabilitySlot.kind == ONE_OFF,
                AvailabilitySlot.date == request.date,
                AvailabilitySlot.is_booked.is_(False),
            )
            .all()
        )
        removed = self.store.delete_many(db, free_slots)
        logger.info(
            f"Adjusting {request.date} for provider {request.provider_id}: "
            f"removed {removed} free slots"
        )
        return self.create_all_day_slots(db, request)

    # ── Update / delete ──────────────────────────────────────────────────

    def update_slot(self, db: Session, slot_id: str, patch: SlotUpdate) -> SlotRead:
        slot = self.store.find_by_id(db, slot_id)
        changes = {
            field: value
            for field, value in patch.model_dump(exclude_unset=True).items()
            if value is not None or field == "cancellation_reason"
        }

        if "start_time" in changes or "end_time" in changes:
            if slot.is_booked:
                raise BadRequestError("Cannot change the time of a booked slot")
            # dated rows (one-off and pre-generated instances) compare by date
            candidate = normalize_spec(
                SlotSpec(
                    provider_id=slot.provider_id,
                    kind=RECURRING if slot.is_template else ONE_OFF,
                    start_time=changes.get("start_time", slot.start_time),
                    end_time=changes.get("end_time", slot.end_time),
                )
            )
            self.validator.check_for_conflicts(db, candidate, exclude_id=slot.id)
            changes.update(
                start_time=candidate.start_time,
                end_time=candidate.end_time,
                duration_minutes=candidate.duration_minutes,
                date=candidate.date,
            )
            if slot.kind == RECURRING:
                changes["day_of_week"] = day_of_week(candidate.start_time.date())

        if changes.get("status") == SLOT_CANCELLED and slot.is_booked:
            raise BadRequestError("Cannot cancel a booked slot; cancel its booking first")

        slot = self.store.update(db, slot, changes)
        return SlotRead.model_validate(slot)

    def delete_slot(self, db: Session, slot_id: str) -> dict:
        """Delete a free slot; a template takes its free instances with it."""
        slot = self.store.find_by_id(db, slot_id)
        if slot.is_booked:
            error = self.store.already_booked_error(db, slot)
            raise ConflictError(f"Cannot delete a booked slot. {error.detail}", conflicts=error.conflicts)

        doomed = [slot]
        if slot.is_template:
            doomed.extend(
                db.query(AvailabilitySlot)
                .filter(
                    AvailabilitySlot.template_id == slot.id,
                    AvailabilitySlot.is_booked.is_(False),
                )
                .all()
            )
        self.store.delete_many(db, doomed)
        return {"success": True}

    def cleanup_past_slots(self, db: Session) -> CleanupResult:
        return CleanupResult(removed_count=self.store.cleanup_past_one_off_slots(db))

    # ── Read ─────────────────────────────────────────────────────────────

    def get_slot(self, db: Session, slot_id: str) -> SlotRead:
        return SlotRead.model_validate(self.store.find_by_id(db, slot_id))

    def list_slots(
        self,
        db: Session,
        provider_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[SlotRead]:
        return self.store.find_by_provider_and_range(db, provider_id, start, end)

    def list_template_instances(
        self,
        db: Session,
        template_id: str,
        from_date: date,
        to_date: date,
    ) -> list[VirtualSlot]:
        template = self.store.find_by_id(db, template_id)
        return self.materializer.generate_instances(db, template, from_date, to_date)

    # ── Maintenance ──────────────────────────────────────────────────────

    def extend_recurring_templates(self, db: Session) -> int:
        """Top up forward instances of every active template."""
        templates = (
            db.query(AvailabilitySlot)
            .filter(
                AvailabilitySlot.kind == RECURRING,
                AvailabilitySlot.date.is_(None),
                AvailabilitySlot.status == SLOT_ACTIVE,
            )
            .all()
        )
        added = 0
        for template in templates:
            try:
                added += len(self.materializer.extend_template(db, template))
            except Exception:
                db.rollback()
                logger.exception(f"Failed to extend template {template.id}")
        return added

    # ── Internals ────────────────────────────────────────────────────────

    def _persist(self, db: Session, spec: SlotSpec) -> AvailabilitySlot:
        slot = AvailabilitySlot(
            provider_id=spec.provider_id,
            kind=spec.kind,
            day_of_week=spec.day_of_week,
            date=spec.date,
            start_time=spec.start_time,
            end_time=spec.end_time,
            duration_minutes=spec.duration_minutes,
            is_booked=False,
            max_bookings=spec.max_bookings,
            status=spec.status,
        )
        self.store.add(db, slot)
        if spec.kind == RECURRING:
            self.materializer.generate_forward_weeks(db, slot)
        return slot

    def _persist_generated(self, db: Session, specs: list[SlotSpec]) -> list[SlotRead]:
        """Persist generated specs, skipping the ones that clash."""
        created = []
        for spec in specs:
            spec = normalize_spec(spec)
            entries = self.validator.collect(db, spec)
            if entries:
                logger.warning(
                    f"Skipping generated slot {spec.start_time.isoformat()} for "
                    f"provider {spec.provider_id}: {len(entries)} conflict(s)"
                )
                continue
            created.append(SlotRead.model_validate(self._persist(db, spec)))
        return created

    def _replace_conflicts(self, db: Session, entries: list) -> list:
        """Delete clashing free slots; return the entries that cannot be replaced."""
        remaining = []
        replaceable = []
        for entry in entries:
            if entry.entity != "slot":
                remaining.append(entry)
                continue
            slot = db.get(AvailabilitySlot, entry.id)
            if slot is None or slot.is_booked:
                remaining.append(entry)
            else:
                replaceable.append(slot)

        if remaining:
            return remaining

        self.store.delete_many(db, replaceable)
        logger.info(f"Replaced {len(replaceable)} conflicting slots")
        return []

    def _alternative(self, db: Session, spec: SlotSpec):
        """Earliest gap of the default working window that fits the slot."""
        day = spec.start_time.date()
        window_start = datetime.combine(day, self.config.work_start)
        window_end = datetime.combine(day, self.config.work_end)

        if spec.kind == RECURRING:
            rows = self.validator.find_conflicts(
                db,
                spec.model_copy(
                    update={"start_time": window_start, "end_time": window_end}
                ),
            )
            busy = [(at_time_of(day, r.start_time), at_time_of(day, r.end_time)) for r in rows]
        else:
            rows = (
                db.query(AvailabilitySlot)
                .filter(
                    AvailabilitySlot.provider_id == spec.provider_id,
                    AvailabilitySlot.date == day,
                    AvailabilitySlot.status == SLOT_ACTIVE,
                )
                .all()
            )
            busy = [(r.start_time, r.end_time) for r in rows]

        busy.extend(
            (b.start_time, b.end_time)
            for b in self.validator.find_booking_conflicts(
                db, spec.provider_id, window_start, window_end
            )
        )
        return find_alternative_slot(spec.duration_minutes, busy, window_start, window_end)
