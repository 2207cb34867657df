# booking_core/app/services/bookings/orchestrator.py
"""
Booking workflows.

Single booking (inside one transaction context):
    1. provider lookup, before the session touches the database
    2. idempotent replay
    3. lock the slot (or the template and materialize the instance)
    4. weekday check for template bookings, in the provider's timezone
    5. requested times must equal the slot's times
    6. no active booking may overlap
    7. persist the booking (pending for manual-approval providers)
    8. conditional mark-booked on the slot
    9. notifications, after commit (results are read before it)
    10. remember the result under the idempotency key

Recurring series validates every occurrence before writing anything and
sends one summary instead of one message per occurrence.

In sequential mode (no transactions) a lost mark-booked race removes the
booking rows written by the same workflow before the conflict is raised.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Optional, Union

from sqlalchemy.orm import Session

from ...errors import BadRequestError, ConflictError, NotFoundError
from ...models import SLOT_ACTIVE, AvailabilitySlot, Booking
from ...schemas.bookings import BookingCreate, BookingQuery, BookingRead, BookingUpdate
from ...schemas.slots import RecurringInstanceRef
from ...timeutils import day_of_week, local_date, utcnow
from ...transactions import TransactionContext, TransactionRunner
from ..events import Notifier, as_best_effort
from ..idempotency import IdempotencyCache
from ..providers import ProviderDirectory, ProviderProfile, resolve_provider
from ..slots.config import BookingConfig, get_booking_config
from ..slots.conflicts import ConflictValidator
from ..slots.recurring import RecurringMaterializer, anchor_on, day_mismatch_error
from ..slots.store import AvailabilityStore
from .search import BookingSearch
from .serial import generate_serial_key
from .states import BookingStatus, validate_transition

logger = logging.getLogger(__name__)

IDEMPOTENCY_SCOPE = "bookings"

# Series occurrence k > 0 is stored under "<key>#<k>"; client keys may not contain it
SERIES_KEY_SEPARATOR = "#"

# Fields whose value may be cleared by an update
NULLABLE_FIELDS = {"guest_phone", "notes", "cancel_reason"}

CreateResult = Union[BookingRead, list[BookingRead]]


def booking_payload(booking: BookingRead) -> dict:
    return booking.model_dump(mode="json")


class BookingOrchestrator:
    def __init__(
        self,
        store: AvailabilityStore,
        validator: ConflictValidator,
        materializer: RecurringMaterializer,
        idempotency: IdempotencyCache,
        search: BookingSearch,
        notifier: Notifier,
        directory: ProviderDirectory,
        runner: TransactionRunner,
        config: Optional[BookingConfig] = None,
    ):
        self.store = store
        self.validator = validator
        self.materializer = materializer
        self.idempotency = idempotency
        self.search = search
        self.notifier = as_best_effort(notifier)
        self.directory = directory
        self.runner = runner
        self.config = config or get_booking_config()

    # ── Create ───────────────────────────────────────────────────────────

    def create_booking(self, db: Session, request: BookingCreate) -> CreateResult:
        if request.start_time >= request.end_time:
            raise BadRequestError("Start time must be before end time")

        provider = resolve_provider(self.directory, request.provider_id)

        replay = self._replay(db, request)
        if replay is not None:
            return replay

        if request.recurrence is not None:
            result = self._create_series(db, request, provider)
        else:
            result = self._create_single(db, request, provider)

        self._remember(request.idempotency_key, result)
        return result

    def _create_single(
        self,
        db: Session,
        request: BookingCreate,
        provider: ProviderProfile,
    ) -> BookingRead:
        def work(txn: TransactionContext) -> BookingRead:
            slot = self._resolve_slot(txn, request, provider)
            self._check_times(slot, request.start_time, request.end_time)
            self._check_booking_conflicts(db, slot)
            booking = self._new_booking(request, slot, provider, request.idempotency_key)
            db.add(booking)
            txn.step()
            self._reserve(txn, [(slot, booking)])
            txn.after_commit(lambda: self.search.invalidate(request.provider_id))
            return BookingRead.model_validate(booking)

        result = self.runner.run(db, work, label="create booking")
        logger.info(
            f"Booking {result.serial_key} created for provider {result.provider_id} "
            f"({result.status.value})"
        )
        self._notify_created(result, provider)
        return result

    def _create_series(
        self,
        db: Session,
        request: BookingCreate,
        provider: ProviderProfile,
    ) -> list[BookingRead]:
        dates = self._series_dates(request)

        def work(txn: TransactionContext) -> list[BookingRead]:
            template = self._series_template(txn, request, provider)
            self._check_times(template, request.start_time, request.end_time, on=dates[0])

            # All occurrences are checked before anything is written
            problems = []
            for day in dates:
                problems.extend(self._occurrence_conflicts(db, template, day))
            if problems:
                raise ConflictError(
                    f"{len(problems)} of {len(dates)} occurrences are unavailable",
                    conflicts=problems,
                )

            slots = [
                self.materializer.materialize_instance(db, template, day, txn) for day in dates
            ]
            bookings = [
                self._new_booking(
                    request,
                    slot,
                    provider,
                    self._series_key(request.idempotency_key, index),
                )
                for index, slot in enumerate(slots)
            ]
            db.add_all(bookings)
            txn.step()
            self._reserve(txn, list(zip(slots, bookings)))
            txn.after_commit(lambda: self.search.invalidate(request.provider_id))
            return [BookingRead.model_validate(booking) for booking in bookings]

        results = self.runner.run(db, work, label="create booking series")
        logger.info(
            f"Booking series of {len(results)} created for provider {request.provider_id} "
            f"({dates[0]} .. {dates[-1]})"
        )
        self._notify_series(results, provider)
        return results

    # ── Update ───────────────────────────────────────────────────────────

    def update_booking(self, db: Session, booking_id: str, patch: BookingUpdate) -> BookingRead:
        changes = {
            field: value
            for field, value in patch.model_dump(exclude_unset=True).items()
            if value is not None or field in NULLABLE_FIELDS
        }

        def work(txn: TransactionContext) -> tuple[BookingRead, str, list[str]]:
            booking = (
                db.query(Booking)
                .filter(Booking.id == booking_id)
                .with_for_update()
                .populate_existing()
                .first()
            )
            if booking is None:
                raise NotFoundError(f"Booking {booking_id} not found")

            previous = booking.status
            changed: list[str] = []

            target = changes.pop("status", None)
            if target is not None and target.value != previous:
                validate_transition(previous, target.value)
                booking.status = target.value
                changed.append("status")
                if target == BookingStatus.COMPLETED:
                    booking.completed_at = utcnow()

            for field, value in changes.items():
                if getattr(booking, field) != value:
                    setattr(booking, field, value)
                    changed.append(field)

            if not changed:
                return BookingRead.model_validate(booking), previous, changed

            txn.step()
            provider_id = booking.provider_id
            txn.after_commit(lambda: self.search.invalidate(provider_id))
            if booking.status == BookingStatus.CANCELLED.value and "status" in changed:
                slot = db.get(AvailabilitySlot, booking.availability_id)
                if slot is not None:
                    self.store.mark_available(db, slot, booking.id, txn)
            return BookingRead.model_validate(booking), previous, changed

        result, previous, changed = self.runner.run(db, work, label="update booking")
        if changed:
            logger.info(f"Booking {result.serial_key} updated: {', '.join(changed)}")
            provider = resolve_provider(self.directory, result.provider_id)
            self._notify_updated(result, previous, changed, provider)
        return result

    # ── Read ─────────────────────────────────────────────────────────────

    def get_booking(self, db: Session, booking_id: str) -> BookingRead:
        return BookingRead.model_validate(self._get(db, booking_id))

    def find_booking_by_serial_key(self, db: Session, serial_key: str) -> BookingRead:
        booking = db.query(Booking).filter(Booking.serial_key == serial_key).first()
        if booking is None:
            raise NotFoundError(f"Booking {serial_key} not found")
        return BookingRead.model_validate(booking)

    def list_bookings(self, db: Session, query: BookingQuery) -> list[BookingRead]:
        return self.search.find(db, query)

    def find_bookings_by_guest_email(self, db: Session, guest_email: str) -> list[BookingRead]:
        return self.search.find_by_guest_email(db, guest_email)

    # ── Slot resolution ──────────────────────────────────────────────────

    def _resolve_slot(
        self,
        txn: TransactionContext,
        request: BookingCreate,
        provider: ProviderProfile,
    ) -> AvailabilitySlot:
        db = txn.db
        ref = request.slot

        if isinstance(ref, RecurringInstanceRef):
            template = self._lock_template(db, ref.template_id, request.provider_id)
            self._check_weekday(template, anchor_on(template, ref.date)[0], provider)
            return self.materializer.materialize_instance(db, template, ref.date, txn)

        slot = self.store.lock(db, ref.id)
        self._check_slot_usable(slot, request.provider_id)
        if slot.is_booked:
            raise self.store.already_booked_error(db, slot)

        if slot.is_template:
            self._check_weekday(slot, request.start_time, provider)
            return self.materializer.materialize_instance(
                db, slot, request.start_time.date(), txn
            )
        return slot

    def _series_template(
        self,
        txn: TransactionContext,
        request: BookingCreate,
        provider: ProviderProfile,
    ) -> AvailabilitySlot:
        db = txn.db
        ref = request.slot
        if isinstance(ref, RecurringInstanceRef):
            template = self._lock_template(db, ref.template_id, request.provider_id)
            self._check_weekday(template, anchor_on(template, ref.date)[0], provider)
            return template

        slot = self.store.lock(db, ref.id)
        self._check_slot_usable(slot, request.provider_id)
        if slot.is_template:
            self._check_weekday(slot, request.start_time, provider)
            return slot
        if slot.template_id:
            return self._lock_template(db, slot.template_id, request.provider_id)
        raise BadRequestError("Recurring bookings require a recurring availability slot")

    def _lock_template(self, db: Session, template_id: str, provider_id: str) -> AvailabilitySlot:
        template = self.store.lock(db, template_id)
        if not template.is_template:
            raise BadRequestError(f"Slot {template_id} is not a recurring template")
        self._check_slot_usable(template, provider_id)
        return template

    @staticmethod
    def _check_slot_usable(slot: AvailabilitySlot, provider_id: str) -> None:
        if slot.provider_id != provider_id:
            raise BadRequestError(f"Slot {slot.id} does not belong to provider {provider_id}")
        if slot.status != SLOT_ACTIVE:
            raise BadRequestError(f"Slot {slot.id} is not available ({slot.status})")

    @staticmethod
    def _check_weekday(
        template: AvailabilitySlot,
        requested_start: datetime,
        provider: ProviderProfile,
    ) -> None:
        """Requested date must fall on the template's weekday, provider-local."""
        requested_day = local_date(requested_start, provider.timezone)
        template_day = local_date(template.start_time, provider.timezone)
        if day_of_week(requested_day) != day_of_week(template_day):
            raise day_mismatch_error(template, requested_day, provider.timezone)

    @staticmethod
    def _check_times(
        slot: AvailabilitySlot,
        start: datetime,
        end: datetime,
        on: Optional[date] = None,
    ) -> None:
        expected_start, expected_end = (
            anchor_on(slot, on) if on is not None else (slot.start_time, slot.end_time)
        )
        if start != expected_start or end != expected_end:
            raise BadRequestError(
                f"Requested time {start.isoformat()} - {end.isoformat()} does not match "
                f"the availability slot ({expected_start.isoformat()} - {expected_end.isoformat()})"
            )

    def _check_booking_conflicts(self, db: Session, slot: AvailabilitySlot) -> None:
        clashes = self.validator.find_booking_conflicts(
            db, slot.provider_id, slot.start_time, slot.end_time
        )
        if clashes:
            raise ConflictError(
                f"This time slot is already booked. Booking ID: {clashes[0].serial_key}",
                conflicts=[_booking_entry(b) for b in clashes],
            )

    def _occurrence_conflicts(
        self,
        db: Session,
        template: AvailabilitySlot,
        day: date,
    ) -> list[dict]:
        start, end = anchor_on(template, day)
        problems = [
            _booking_entry(b)
            for b in self.validator.find_booking_conflicts(db, template.provider_id, start, end)
        ]
        if problems:
            return problems

        for kind in ("recurring", "one_off"):
            instance = self.store.find_dated(db, template.provider_id, kind, day, start)
            if instance is not None and instance.is_booked:
                return [
                    {
                        "id": instance.id,
                        "entity": "slot",
                        "start_time": start.isoformat(),
                        "end_time": end.isoformat(),
                    }
                ]
        return []

    # ── Writes ───────────────────────────────────────────────────────────

    def _new_booking(
        self,
        request: BookingCreate,
        slot: AvailabilitySlot,
        provider: ProviderProfile,
        idempotency_key: Optional[str],
    ) -> Booking:
        serial_key = generate_serial_key(slot.start_time)
        status = BookingStatus.PENDING if provider.requires_approval else BookingStatus.CONFIRMED
        return Booking(
            provider_id=request.provider_id,
            availability_id=slot.id,
            guest_id=request.guest_id or f"guest_{serial_key}",
            guest_name=request.guest_name,
            guest_email=request.guest_email,
            guest_phone=request.guest_phone,
            start_time=slot.start_time,
            end_time=slot.end_time,
            duration_minutes=slot.duration_minutes,
            status=status.value,
            serial_key=serial_key,
            notes=request.notes,
            idempotency_key=idempotency_key,
        )

    def _reserve(
        self,
        txn: TransactionContext,
        pairs: list[tuple[AvailabilitySlot, Booking]],
    ) -> None:
        """Mark every slot booked; undo own writes on a lost race when sequential."""
        db = txn.db
        reserved: list[tuple[AvailabilitySlot, Booking]] = []
        try:
            for slot, booking in pairs:
                self.store.mark_booked(db, slot, booking.id, txn)
                reserved.append((slot, booking))
        except ConflictError:
            if not txn.transactional:
                self._compensate(txn, reserved, [booking for _, booking in pairs])
            raise

    def _compensate(
        self,
        txn: TransactionContext,
        reserved: list[tuple[AvailabilitySlot, Booking]],
        bookings: list[Booking],
    ) -> None:
        db = txn.db
        try:
            for slot, booking in reserved:
                self.store.mark_available(db, slot, booking.id, txn)
            for booking in bookings:
                db.delete(booking)
            db.commit()
        except Exception:
            db.rollback()
            logger.exception(
                "Sequential booking compensation failed; "
                f"bookings {[b.id for b in bookings]} may be left behind"
            )
            return
        logger.warning(
            f"Sequential booking lost the slot race; removed {len(bookings)} booking row(s)"
        )

    # ── Idempotency ──────────────────────────────────────────────────────

    @staticmethod
    def _series_key(key: Optional[str], index: int) -> Optional[str]:
        if not key:
            return None
        return key if index == 0 else f"{key}{SERIES_KEY_SEPARATOR}{index}"

    def _replay(self, db: Session, request: BookingCreate) -> Optional[CreateResult]:
        key = request.idempotency_key
        if not key:
            return None

        cached = self.idempotency.lookup(IDEMPOTENCY_SCOPE, key)
        if cached is not None:
            if isinstance(cached, list):
                return [BookingRead.model_validate(item) for item in cached]
            return BookingRead.model_validate(cached)

        # cache expired: the unique idempotency_key column still knows the result
        criteria = Booking.idempotency_key == key
        if request.recurrence is not None:
            criteria = criteria | Booking.idempotency_key.startswith(
                f"{key}{SERIES_KEY_SEPARATOR}", autoescape=True
            )
        rows = db.query(Booking).filter(criteria).order_by(Booking.start_time).all()
        results = [BookingRead.model_validate(row) for row in rows]
        # on SQLite even this read holds the write lock until it ends
        db.commit()
        if not results:
            return None
        logger.info(f"Idempotent replay from database: key={key}")
        if request.recurrence is not None:
            return results
        return results[0]

    def _remember(self, key: Optional[str], result: CreateResult) -> None:
        if isinstance(result, list):
            value = [booking_payload(item) for item in result]
        else:
            value = booking_payload(result)
        self.idempotency.remember(IDEMPOTENCY_SCOPE, key, value)

    # ── Helpers ──────────────────────────────────────────────────────────

    def _get(self, db: Session, booking_id: str) -> Booking:
        booking = db.get(Booking, booking_id) if booking_id else None
        if booking is None:
            raise NotFoundError(f"Booking {booking_id} not found")
        return booking

    def _series_dates(self, request: BookingCreate) -> list[date]:
        rule = request.recurrence
        first = request.start_time.date()
        if rule.occurrences:
            return [first + timedelta(weeks=k) for k in range(rule.occurrences)]

        end_date = rule.end_date or first + timedelta(weeks=self.config.series_default_weeks)
        if end_date < first:
            raise BadRequestError("Recurrence end date must not be before the first booking")
        dates = []
        current = first
        while current <= end_date:
            dates.append(current)
            current += timedelta(weeks=1)
        return dates

    # ── Notifications ────────────────────────────────────────────────────

    def _notify_created(self, booking: BookingRead, provider: ProviderProfile) -> None:
        payload = booking_payload(booking)
        self.notifier.notify_created(booking.provider_id, {"booking": payload})
        if provider.email:
            self.notifier.notify_new_booking(payload, provider.email)
        if booking.status != BookingStatus.PENDING:
            self.notifier.notify_booking_confirmation(payload, booking.guest_email)

    def _notify_series(self, bookings: list[BookingRead], provider: ProviderProfile) -> None:
        payloads = [booking_payload(b) for b in bookings]
        first = bookings[0]
        self.notifier.notify_created(first.provider_id, {"bookings": payloads})
        self.notifier.notify_recurring_summary(payloads, first.guest_email)
        if provider.email:
            self.notifier.notify_recurring_summary(payloads, provider.email)

    def _notify_updated(
        self,
        booking: BookingRead,
        previous: str,
        changed: list[str],
        provider: ProviderProfile,
    ) -> None:
        payload = booking_payload(booking)
        self.notifier.notify_updated(booking.provider_id, {"booking": payload, "changed": changed})

        if "status" in changed:
            if booking.status == BookingStatus.CANCELLED:
                self.notifier.notify_booking_cancellation(payload, booking.guest_email)
                if provider.email:
                    self.notifier.notify_booking_cancellation(payload, provider.email)
            elif booking.status == BookingStatus.CONFIRMED and previous == BookingStatus.PENDING.value:
                self.notifier.notify_booking_confirmation(payload, booking.guest_email)
            elif booking.status == BookingStatus.COMPLETED:
                self.notifier.notify_booking_completion(payload, booking.guest_email)

        other_fields = [field for field in changed if field != "status"]
        if other_fields:
            self.notifier.notify_booking_modified(payload, other_fields, booking.guest_email)


def _booking_entry(booking: Booking) -> dict:
    return {
        "id": booking.id,
        "entity": "booking",
        "start_time": booking.start_time.isoformat(),
        "end_time": booking.end_time.isoformat(),
        "serial_key": booking.serial_key,
    }
