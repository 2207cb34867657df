# booking_core/app/services/slots/recurring.py
"""
Recurring template materialization.

A template is a recurring row without a date, anchored to day_of_week.
Concrete instances keep the template's time of day on a target date and
point back to it through template_id:

    pre-generated  kind=recurring, date set, week_of = Sunday of that week
    on demand      kind=one_off,   date set

The template row itself is never booked.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...errors import BadRequestError
from ...models import ONE_OFF, RECURRING, SLOT_ACTIVE, AvailabilitySlot
from ...schemas.slots import RecurringInstanceRef, VirtualSlot
from ...timeutils import (
    at_time_of,
    day_of_week,
    local_date,
    next_weekday_on_or_after,
    resolve_zone,
    utcnow,
    week_start,
    weekday_name,
)
from ...transactions import TransactionContext
from .config import BookingConfig, get_booking_config
from .store import AvailabilityStore

logger = logging.getLogger(__name__)

WEEK = timedelta(days=7)


def anchor_on(template: AvailabilitySlot, target_date: date) -> tuple[datetime, datetime]:
    """Template time of day placed on `target_date`."""
    start = at_time_of(target_date, template.start_time)
    return start, start + (template.end_time - template.start_time)


def day_mismatch_error(
    template: AvailabilitySlot,
    requested_day: date,
    tz_name: Optional[str] = None,
) -> BadRequestError:
    """Booking a template on a date that is not its weekday, worded for the guest."""
    zone = resolve_zone(tz_name)
    local_start = template.start_time.replace(tzinfo=timezone.utc).astimezone(zone)
    requested_name = weekday_name(day_of_week(requested_day))
    template_name = weekday_name(day_of_week(local_date(template.start_time, tz_name)))
    return BadRequestError(
        f"Day mismatch: You're trying to book {requested_name} ({requested_day.isoformat()}), "
        f"but this recurring slot is for {template_name}s at {local_start:%H:%M} "
        f"({zone.key}). Please select a {template_name} or choose a different "
        f"availability slot."
    )


def _require_template(slot: AvailabilitySlot) -> None:
    if not slot.is_template:
        raise BadRequestError(f"Slot {slot.id} is not a recurring template")


class RecurringMaterializer:
    def __init__(self, store: AvailabilityStore, config: Optional[BookingConfig] = None):
        self.store = store
        self.config = config or get_booking_config()

    # ── Read-only expansion ──────────────────────────────────────────────

    def generate_instances(
        self,
        db: Session,
        template: AvailabilitySlot,
        from_date: date,
        to_date: date,
    ) -> list[VirtualSlot]:
        """Occurrences of a template in [from_date, to_date], nothing persisted."""
        _require_template(template)
        if to_date < from_date:
            raise BadRequestError("Range end date must not be before start date")

        booked_dates = {
            row.date
            for row in db.query(AvailabilitySlot.date)
            .filter(
                AvailabilitySlot.template_id == template.id,
                AvailabilitySlot.is_booked.is_(True),
                AvailabilitySlot.date >= from_date,
                AvailabilitySlot.date <= to_date,
            )
            .all()
        }

        instances = []
        current = next_weekday_on_or_after(from_date, template.day_of_week)
        while current <= to_date:
            start, end = anchor_on(template, current)
            instances.append(
                VirtualSlot(
                    ref=RecurringInstanceRef(template_id=template.id, date=current),
                    provider_id=template.provider_id,
                    day_of_week=template.day_of_week,
                    date=current,
                    start_time=start,
                    end_time=end,
                    duration_minutes=template.duration_minutes,
                    is_booked=current in booked_dates,
                )
            )
            current += WEEK
        return instances

    # ── Forward weeks ────────────────────────────────────────────────────

    def build_forward_weeks(
        self,
        template: AvailabilitySlot,
        weeks: Optional[int] = None,
        now: Optional[datetime] = None,
        after: Optional[date] = None,
    ) -> list[AvailabilitySlot]:
        """
        Unsaved instance rows for `weeks` consecutive occurrences.

        Starts at the first upcoming occurrence from `now`, or the first
        occurrence strictly after `after` when extending an existing run.
        """
        _require_template(template)
        weeks = weeks or self.config.forward_weeks
        now = now or utcnow()

        if after is not None:
            first = next_weekday_on_or_after(after + timedelta(days=1), template.day_of_week)
        else:
            first = next_weekday_on_or_after(now.date(), template.day_of_week)
            if anchor_on(template, first)[0] <= now:
                first += WEEK

        rows = []
        for step in range(weeks):
            occurrence = first + step * WEEK
            start, end = anchor_on(template, occurrence)
            rows.append(
                AvailabilitySlot(
                    provider_id=template.provider_id,
                    kind=RECURRING,
                    day_of_week=template.day_of_week,
                    date=occurrence,
                    start_time=start,
                    end_time=end,
                    duration_minutes=template.duration_minutes,
                    is_booked=False,
                    max_bookings=template.max_bookings,
                    status=SLOT_ACTIVE,
                    template_id=template.id,
                    week_of=week_start(occurrence),
                )
            )
        return rows

    def generate_forward_weeks(
        self,
        db: Session,
        template: AvailabilitySlot,
        weeks: Optional[int] = None,
        now: Optional[datetime] = None,
        txn: Optional[TransactionContext] = None,
    ) -> list[AvailabilitySlot]:
        """Persist the next `weeks` occurrences in one batch."""
        rows = self.build_forward_weeks(template, weeks, now)
        return self.store.add_many(db, rows, txn)

    def extend_template(
        self,
        db: Session,
        template: AvailabilitySlot,
        now: Optional[datetime] = None,
    ) -> list[AvailabilitySlot]:
        """
        Keep a template materialized ahead: once its latest pre-generated
        week is less than `extension_weeks` away, add that many more weeks.
        """
        now = now or utcnow()
        latest = (
            db.query(func.max(AvailabilitySlot.date))
            .filter(
                AvailabilitySlot.template_id == template.id,
                AvailabilitySlot.kind == RECURRING,
            )
            .scalar()
        )
        weeks = self.config.extension_weeks
        if latest is None or latest < now.date():
            rows = self.build_forward_weeks(template, weeks, now)
        elif latest < now.date() + weeks * WEEK:
            rows = self.build_forward_weeks(template, weeks, now, after=latest)
        else:
            return []

        self.store.add_many(db, rows)
        logger.info(
            f"Extended template {template.id} with {len(rows)} weeks "
            f"({rows[0].date} .. {rows[-1].date})"
        )
        return rows

    # ── On-demand instance ───────────────────────────────────────────────

    def materialize_instance(
        self,
        db: Session,
        template: AvailabilitySlot,
        target_date: date,
        txn: Optional[TransactionContext] = None,
    ) -> AvailabilitySlot:
        """
        Concrete slot for one occurrence of a template.

        Reuses a pre-generated recurring row at that exact date/time, then a
        one-off instance at that date/start; otherwise creates a one-off
        instance. A reused row that is already booked is a conflict; a date
        off the template's weekday is rejected.
        """
        _require_template(template)
        if day_of_week(target_date) != template.day_of_week:
            raise day_mismatch_error(template, target_date)
        start, end = anchor_on(template, target_date)

        existing = self.store.find_dated(db, template.provider_id, RECURRING, target_date, start, end)
        if existing is None:
            existing = self.store.find_dated(db, template.provider_id, ONE_OFF, target_date, start)

        if existing is not None:
            if existing.is_booked:
                raise self.store.already_booked_error(db, existing)
            return existing

        instance = AvailabilitySlot(
            provider_id=template.provider_id,
            kind=ONE_OFF,
            date=target_date,
            start_time=start,
            end_time=end,
            duration_minutes=template.duration_minutes,
            is_booked=False,
            max_bookings=template.max_bookings,
            status=SLOT_ACTIVE,
            template_id=template.id,
        )
        self.store.add(db, instance, txn)
        logger.debug(f"Materialized template {template.id} on {target_date} as {instance.id}")
        return instance
