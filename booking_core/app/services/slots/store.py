# booking_core/app/services/slots/store.py
"""
Availability store: slot persistence plus a read-through Redis cache for
provider range queries.

Cache key format: availability:{provider_id}:{start}:{end}
Every mutation drops the whole availability:{provider_id}:* namespace
(again after commit when running inside a transaction context).
"""

import logging
from datetime import date, datetime
from typing import Callable, Iterable, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from ...errors import ConflictError, NotFoundError
from ...models import ONE_OFF, SLOT_CANCELLED, AvailabilitySlot, Booking
from ...schemas.slots import SlotRead
from ...timeutils import utcnow
from ...transactions import TransactionContext, defer, finish_write
from ..cache import CacheBackend
from ..events import Notifier, as_best_effort

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL = 300  # 5 minutes


def slot_payload(slot: AvailabilitySlot) -> dict:
    return SlotRead.model_validate(slot).model_dump(mode="json")


def _dedupe_booked(rows: list[AvailabilitySlot]) -> list[AvailabilitySlot]:
    """
    Collapse rows sharing start time and duration (a pre-generated instance
    and an on-demand one); a booked row wins over free ones.
    """
    chosen: dict[tuple[datetime, int], AvailabilitySlot] = {}
    order: list[tuple[datetime, int]] = []
    for row in rows:
        key = (row.start_time, row.duration_minutes)
        current = chosen.get(key)
        if current is None:
            chosen[key] = row
            order.append(key)
        elif row.is_booked and not current.is_booked:
            chosen[key] = row
    return [chosen[key] for key in order]


class AvailabilityStore:
    KEY_PREFIX = "availability"

    def __init__(
        self,
        cache: CacheBackend,
        notifier: Notifier,
        cache_ttl: int = DEFAULT_CACHE_TTL,
    ):
        self.cache = cache
        self.notifier = as_best_effort(notifier)
        self.cache_ttl = cache_ttl

    def _key(self, provider_id: str, start: Optional[datetime], end: Optional[datetime]) -> str:
        start_part = start.isoformat() if start else "open"
        end_part = end.isoformat() if end else "open"
        return f"{self.KEY_PREFIX}:{provider_id}:{start_part}:{end_part}"

    # ── Read ─────────────────────────────────────────────────────────────

    def find_by_provider_and_range(
        self,
        db: Session,
        provider_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> list[SlotRead]:
        """
        Dated slots (one-off rows and recurring instances) of a provider
        overlapping [start, end), upcoming only, sorted by start time.
        """
        key = self._key(provider_id, start, end)
        cached = self.cache.get(key)
        if cached is not None:
            return [SlotRead.model_validate(item) for item in cached]

        now = now or utcnow()
        query = db.query(AvailabilitySlot).filter(
            AvailabilitySlot.provider_id == provider_id,
            AvailabilitySlot.date.isnot(None),
            AvailabilitySlot.status != SLOT_CANCELLED,
            AvailabilitySlot.end_time > now,
        )
        if start is not None:
            query = query.filter(AvailabilitySlot.end_time > start)
        if end is not None:
            query = query.filter(AvailabilitySlot.start_time < end)

        rows = query.order_by(AvailabilitySlot.start_time, AvailabilitySlot.created_at).all()
        result = [SlotRead.model_validate(row) for row in _dedupe_booked(rows)]

        self.cache.set(key, [item.model_dump(mode="json") for item in result], self.cache_ttl)
        return result

    def find_by_id(self, db: Session, slot_id: str) -> AvailabilitySlot:
        slot = db.get(AvailabilitySlot, slot_id) if slot_id else None
        if slot is None:
            raise NotFoundError(f"Availability slot {slot_id} not found")
        return slot

    def lock(self, db: Session, slot_id: str) -> AvailabilitySlot:
        """Read a slot for update (row lock where the backend supports it)."""
        slot = (
            db.query(AvailabilitySlot)
            .filter(AvailabilitySlot.id == slot_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if slot is None:
            raise NotFoundError(f"Availability slot {slot_id} not found")
        return slot

    def find_dated(
        self,
        db: Session,
        provider_id: str,
        kind: str,
        day: date,
        start: datetime,
        end: Optional[datetime] = None,
    ) -> Optional[AvailabilitySlot]:
        query = db.query(AvailabilitySlot).filter(
            AvailabilitySlot.provider_id == provider_id,
            AvailabilitySlot.kind == kind,
            AvailabilitySlot.date == day,
            AvailabilitySlot.start_time == start,
            AvailabilitySlot.status != SLOT_CANCELLED,
        )
        if end is not None:
            query = query.filter(AvailabilitySlot.end_time == end)
        return query.with_for_update().first()

    def booking_for(self, db: Session, slot: AvailabilitySlot) -> Optional[Booking]:
        if not slot.booking_id:
            return None
        return db.get(Booking, slot.booking_id)

    def already_booked_error(self, db: Session, slot: AvailabilitySlot) -> ConflictError:
        booking = self.booking_for(db, slot)
        entry = {
            "id": slot.id,
            "entity": "slot",
            "start_time": slot.start_time.isoformat(),
            "end_time": slot.end_time.isoformat(),
        }
        if booking is None:
            return ConflictError("This time slot is already booked", conflicts=[entry])
        entry["serial_key"] = booking.serial_key
        return ConflictError(
            f"This time slot is already booked. Booking ID: {booking.serial_key}",
            conflicts=[entry],
        )

    # ── Write ────────────────────────────────────────────────────────────

    def add(
        self,
        db: Session,
        slot: AvailabilitySlot,
        txn: Optional[TransactionContext] = None,
        notify: bool = True,
    ) -> AvailabilitySlot:
        db.add(slot)
        db.flush()
        payload = slot_payload(slot) if notify else None
        finish_write(db, txn)
        self._after_write(txn, slot.provider_id, self.notifier.notify_created if notify else None, payload)
        return slot

    def add_many(
        self,
        db: Session,
        slots: list[AvailabilitySlot],
        txn: Optional[TransactionContext] = None,
    ) -> list[AvailabilitySlot]:
        """Batch insert; a single created event per provider."""
        if not slots:
            return []
        db.add_all(slots)
        db.flush()
        by_provider: dict[str, list[dict]] = {}
        for slot in slots:
            by_provider.setdefault(slot.provider_id, []).append(slot_payload(slot))
        finish_write(db, txn)

        for provider_id, payloads in by_provider.items():
            self.invalidate(provider_id)
            defer(txn, self._publish(txn, provider_id, self.notifier.notify_created, {"slots": payloads}))
        return slots

    def update(
        self,
        db: Session,
        slot: AvailabilitySlot,
        changes: dict,
        txn: Optional[TransactionContext] = None,
    ) -> AvailabilitySlot:
        for field, value in changes.items():
            setattr(slot, field, value)
        db.flush()
        payload = slot_payload(slot)
        finish_write(db, txn)
        self._after_write(txn, slot.provider_id, self.notifier.notify_updated, payload)
        return slot

    def delete_many(
        self,
        db: Session,
        slots: Iterable[AvailabilitySlot],
        txn: Optional[TransactionContext] = None,
    ) -> int:
        slots = list(slots)
        if not slots:
            return 0
        payloads = [(slot.provider_id, {"id": slot.id, "date": str(slot.date)}) for slot in slots]
        for slot in slots:
            db.delete(slot)
        finish_write(db, txn)

        for provider_id in {provider_id for provider_id, _ in payloads}:
            self.invalidate(provider_id)
        for provider_id, payload in payloads:
            defer(txn, self._publish(txn, provider_id, self.notifier.notify_deleted, payload))
        return len(payloads)

    def mark_booked(
        self,
        db: Session,
        slot: AvailabilitySlot,
        booking_id: str,
        txn: Optional[TransactionContext] = None,
    ) -> None:
        """
        Conditional flip is_booked false → true. Exactly one concurrent
        caller can win; the others get a ConflictError.
        """
        result = db.execute(
            update(AvailabilitySlot)
            .where(AvailabilitySlot.id == slot.id, AvailabilitySlot.is_booked.is_(False))
            .values(is_booked=True, booking_id=booking_id, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        won = result.rowcount == 1
        db.refresh(slot)
        if not won:
            raise self.already_booked_error(db, slot)

        payload = slot_payload(slot)
        finish_write(db, txn)
        self._after_write(txn, slot.provider_id, self.notifier.notify_booked, payload)

    def mark_available(
        self,
        db: Session,
        slot: AvailabilitySlot,
        booking_id: Optional[str] = None,
        txn: Optional[TransactionContext] = None,
    ) -> bool:
        """Release a slot; with booking_id only if that booking still holds it."""
        stmt = update(AvailabilitySlot).where(AvailabilitySlot.id == slot.id)
        if booking_id is not None:
            stmt = stmt.where(AvailabilitySlot.booking_id == booking_id)
        result = db.execute(
            stmt.values(is_booked=False, booking_id=None, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            db.expire(slot)
            return False

        db.refresh(slot)
        payload = slot_payload(slot)
        finish_write(db, txn)
        self._after_write(txn, slot.provider_id, self.notifier.notify_unbooked, payload)
        return True

    def cleanup_past_one_off_slots(self, db: Session, today: Optional[date] = None) -> int:
        """Delete one-off rows dated before today (their bookings go with them)."""
        today = today or utcnow().date()
        rows = (
            db.query(AvailabilitySlot.id, AvailabilitySlot.provider_id)
            .filter(AvailabilitySlot.kind == ONE_OFF, AvailabilitySlot.date < today)
            .all()
        )
        if not rows:
            return 0

        ids = [row.id for row in rows]
        db.query(Booking).filter(Booking.availability_id.in_(ids)).delete(synchronize_session=False)
        removed = (
            db.query(AvailabilitySlot)
            .filter(AvailabilitySlot.id.in_(ids))
            .delete(synchronize_session=False)
        )
        db.commit()

        for provider_id in {row.provider_id for row in rows}:
            self.invalidate(provider_id)
        logger.info(f"Removed {removed} past one-off slots (before {today})")
        return removed

    # ── Cache ────────────────────────────────────────────────────────────

    def invalidate(self, provider_id: str) -> int:
        return self.cache.delete_pattern(f"{self.KEY_PREFIX}:{provider_id}:*")

    def _after_write(
        self,
        txn: Optional[TransactionContext],
        provider_id: str,
        event: Optional[Callable[[str, dict], None]],
        payload: Optional[dict],
    ) -> None:
        # payloads are built before commit so publishing never reopens a transaction
        self.invalidate(provider_id)
        defer(txn, self._publish(txn, provider_id, event, payload))

    def _publish(
        self,
        txn: Optional[TransactionContext],
        provider_id: str,
        event: Optional[Callable[[str, dict], None]],
        payload: Optional[dict],
    ) -> Callable[[], None]:
        def publish() -> None:
            if txn is not None:
                self.invalidate(provider_id)
            if event is not None:
                event(provider_id, payload)

        return publish
