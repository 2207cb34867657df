"""Tests for SlotService operations."""

from datetime import time, timedelta

import pytest

from booking_core.app.errors import BadRequestError, ConflictError, NotFoundError
from booking_core.app.models import AvailabilitySlot
from booking_core.app.schemas.slots import BulkSlotsRequest, DaySlotsRequest, RangeSlotsRequest, SlotUpdate

from tests.conftest import PROVIDER, THURSDAY, at, future_day, make_slot


@pytest.fixture
def day():
    return future_day()


def slots_on(db, day):
    return (
        db.query(AvailabilitySlot)
        .filter(AvailabilitySlot.date == day)
        .order_by(AvailabilitySlot.start_time)
        .all()
    )


def book_row(store, db, slot_id, booking_id="booking-1"):
    row = store.find_by_id(db, slot_id)
    store.mark_booked(db, row, booking_id)
    return row


class TestCreateSlot:
    def test_derives_date_and_duration(self, db, slot_service, day):
        slot = slot_service.create_slot(db, make_slot(day, (9, 0), (9, 45)))

        assert slot.kind == "one_off"
        assert slot.date == day
        assert slot.day_of_week is None
        assert slot.duration_minutes == 45

    def test_recurring_keeps_weekday_only(self, db, slot_service):
        slot = slot_service.create_slot(db, make_slot(future_day(THURSDAY), (7, 0), (8, 0), kind="recurring"))

        assert slot.date is None
        assert slot.day_of_week == THURSDAY

    def test_overlap_conflicts_with_suggestion(self, db, slot_service, day):
        existing = slot_service.create_slot(db, make_slot(day, (10, 0), (11, 0)))

        with pytest.raises(ConflictError) as exc:
            slot_service.create_slot(db, make_slot(day, (10, 30), (11, 30)))

        assert [c["id"] for c in exc.value.conflicts] == [existing.id]
        assert exc.value.suggestion["start_time"] == at(day, 11).isoformat()
        assert exc.value.suggestion["end_time"] == at(day, 12).isoformat()

    def test_touching_ranges_do_not_conflict(self, db, slot_service, day):
        slot_service.create_slot(db, make_slot(day, (10, 0), (11, 0)))
        slot_service.create_slot(db, make_slot(day, (11, 0), (12, 0)))
        assert len(slots_on(db, day)) == 2

    def test_other_provider_does_not_conflict(self, db, slot_service, day):
        slot_service.create_slot(db, make_slot(day, (10, 0), (11, 0)))
        slot_service.create_slot(db, make_slot(day, (10, 0), (11, 0), provider_id="prov-2"))
        assert len(slots_on(db, day)) == 2

    def test_overlapping_templates_conflict(self, db, slot_service):
        thursday = future_day(THURSDAY)
        slot_service.create_slot(db, make_slot(thursday, (7, 0), (8, 0), kind="recurring"))

        with pytest.raises(ConflictError):
            slot_service.create_slot(
                db, make_slot(future_day(THURSDAY, 3), (7, 30), (8, 30), kind="recurring")
            )

    def test_reversed_range(self, db, slot_service, day):
        with pytest.raises(BadRequestError):
            slot_service.create_slot(db, make_slot(day, (11, 0), (10, 0)))

    def test_idempotent_create(self, db, slot_service, day):
        first = slot_service.create_slot(db, make_slot(day, idempotency_key="slot-1"))
        again = slot_service.create_slot(db, make_slot(day, idempotency_key="slot-1"))

        assert again.id == first.id
        assert len(slots_on(db, day)) == 1


class TestBulk:
    def test_all_or_nothing_by_default(self, db, slot_service, day):
        slot_service.create_slot(db, make_slot(day, (10, 0), (11, 0)))
        request = BulkSlotsRequest(
            slots=[make_slot(day, (10, 30), (11, 30)), make_slot(day, (14, 0), (15, 0))]
        )

        with pytest.raises(ConflictError):
            slot_service.create_bulk_slots(db, request)
        assert len(slots_on(db, day)) == 1

    def test_conflicts_inside_batch(self, db, slot_service, day):
        request = BulkSlotsRequest(
            slots=[make_slot(day, (10, 0), (11, 0)), make_slot(day, (10, 30), (11, 30))]
        )
        with pytest.raises(ConflictError):
            slot_service.create_bulk_slots(db, request)
        assert slots_on(db, day) == []

    def test_clean_batch(self, db, slot_service, day):
        result = slot_service.create_bulk_slots(
            db,
            BulkSlotsRequest(slots=[make_slot(day, (9, 0), (10, 0)), make_slot(day, (10, 0), (11, 0))]),
        )
        assert len(result.created) == 2
        assert result.conflicts == []

    def test_skip_conflicts(self, db, slot_service, day):
        slot_service.create_slot(db, make_slot(day, (10, 0), (11, 0)))

        result = slot_service.create_bulk_slots(
            db,
            BulkSlotsRequest(
                slots=[make_slot(day, (10, 30), (11, 30)), make_slot(day, (14, 0), (15, 0))],
                skip_conflicts=True,
            ),
        )

        assert [s.start_time for s in result.created] == [at(day, 14)]
        assert len(result.conflicts) == 1
        assert result.conflicts[0].suggestion.start_time == at(day, 11)

    def test_replace_free_conflicts(self, db, slot_service, day):
        existing = slot_service.create_slot(db, make_slot(day, (10, 0), (11, 0)))

        result = slot_service.create_bulk_slots(
            db,
            BulkSlotsRequest(slots=[make_slot(day, (10, 30), (11, 30))], replace_conflicts=True),
        )

        assert len(result.created) == 1
        assert [row.id for row in slots_on(db, day)] == [result.created[0].id]
        assert existing.id not in {row.id for row in slots_on(db, day)}

    def test_replace_keeps_booked_slots(self, db, slot_service, store, day):
        existing = slot_service.create_slot(db, make_slot(day, (10, 0), (11, 0)))
        book_row(store, db, existing.id)

        result = slot_service.create_bulk_slots(
            db,
            BulkSlotsRequest(slots=[make_slot(day, (10, 30), (11, 30))], replace_conflicts=True),
        )

        assert result.created == []
        assert result.conflicts[0].conflicts[0].id == existing.id
        assert [row.id for row in slots_on(db, day)] == [existing.id]

    def test_dry_run_writes_nothing(self, db, slot_service, day):
        slot_service.create_slot(db, make_slot(day, (10, 0), (11, 0)))

        result = slot_service.create_bulk_slots(
            db,
            BulkSlotsRequest(
                slots=[make_slot(day, (10, 30), (11, 30)), make_slot(day, (14, 0), (15, 0))],
                dry_run=True,
            ),
        )

        assert result.dry_run is True
        assert result.created == []
        assert len(result.conflicts) == 1
        assert result.conflicts[0].alternative.start_time == at(day, 8)
        assert result.conflicts[0].alternative.end_time == at(day, 9)
        assert len(slots_on(db, day)) == 1

    def test_idempotent_bulk(self, db, slot_service, day):
        request = BulkSlotsRequest(slots=[make_slot(day, (9, 0), (10, 0))], idempotency_key="bulk-1")

        first = slot_service.create_bulk_slots(db, request)
        again = slot_service.create_bulk_slots(db, request)

        assert again.created[0].id == first.created[0].id
        assert len(slots_on(db, day)) == 1


class TestDayGeneration:
    def test_all_day_partition(self, db, slot_service, day):
        created = slot_service.create_all_day_slots(
            db, DaySlotsRequest(provider_id=PROVIDER, date=day, count=4)
        )

        assert len(created) == 4
        assert all(s.duration_minutes == 168 for s in created)
        assert created[0].start_time == at(day, 8)
        assert created[-1].end_time <= at(day, 20)

    def test_all_day_skips_conflicts(self, db, slot_service, day):
        slot_service.create_slot(db, make_slot(day, (8, 0), (9, 0)))

        created = slot_service.create_all_day_slots(
            db, DaySlotsRequest(provider_id=PROVIDER, date=day, count=4)
        )

        assert len(created) == 3
        assert created[0].start_time == at(day, 11, 3)

    def test_custom_hours(self, db, slot_service, day):
        created = slot_service.create_all_day_slots(
            db,
            DaySlotsRequest(
                provider_id=PROVIDER,
                date=day,
                working_start=time(9, 0),
                working_end=time(12, 0),
                minutes_per_slot=45,
                break_minutes=0,
            ),
        )
        assert [s.start_time for s in created] == [at(day, 9), at(day, 9, 45), at(day, 10, 30), at(day, 11, 15)]

    def test_half_custom_window_rejected(self, db, slot_service, day):
        with pytest.raises(BadRequestError):
            slot_service.create_all_day_slots(
                db, DaySlotsRequest(provider_id=PROVIDER, date=day, count=2, working_start=time(9, 0))
            )

    def test_range_partitions_every_day(self, db, slot_service, day):
        end = day + timedelta(days=2)
        created = slot_service.create_range_slots(
            db, RangeSlotsRequest(provider_id=PROVIDER, start_date=day, end_date=end, count=2)
        )

        assert len(created) == 6
        assert [s.date for s in created] == [day, day, day + timedelta(days=1), day + timedelta(days=1), end, end]
        assert created[1].start_time == at(day, 14, 7)

    def test_range_skips_conflicting_day_slots(self, db, slot_service, day):
        slot_service.create_slot(db, make_slot(day, (8, 0), (9, 0)))

        created = slot_service.create_range_slots(
            db,
            RangeSlotsRequest(provider_id=PROVIDER, start_date=day, end_date=day + timedelta(days=1), count=2),
        )

        assert len(created) == 3
        assert created[0].start_time == at(day, 14, 7)

    def test_recurring_range_keeps_one_weekday(self, db, slot_service):
        start = future_day(THURSDAY)
        created = slot_service.create_range_slots(
            db,
            RangeSlotsRequest(
                provider_id=PROVIDER,
                start_date=start - timedelta(days=3),
                end_date=start + timedelta(days=3),
                count=2,
                is_recurring=True,
                day_of_week=THURSDAY,
            ),
        )

        assert len(created) == 2
        assert all(s.kind == "recurring" and s.day_of_week == THURSDAY for s in created)

    def test_reversed_range_rejected(self, db, slot_service, day):
        with pytest.raises(BadRequestError):
            slot_service.create_range_slots(
                db,
                RangeSlotsRequest(provider_id=PROVIDER, start_date=day, end_date=day - timedelta(days=1), count=2),
            )

    def test_adjust_keeps_booked_slots(self, db, slot_service, store, day):
        created = slot_service.create_all_day_slots(
            db, DaySlotsRequest(provider_id=PROVIDER, date=day, count=4)
        )
        book_row(store, db, created[0].id)

        regenerated = slot_service.adjust_day_slot_quantity(
            db, DaySlotsRequest(provider_id=PROVIDER, date=day, count=2)
        )

        assert [s.start_time for s in regenerated] == [at(day, 14, 7)]
        rows = slots_on(db, day)
        assert [row.id for row in rows] == [created[0].id, regenerated[0].id]

    def test_adjust_rejects_recurring(self, db, slot_service, day):
        with pytest.raises(BadRequestError):
            slot_service.adjust_day_slot_quantity(
                db, DaySlotsRequest(provider_id=PROVIDER, date=day, count=2, is_recurring=True)
            )


class TestUpdateDelete:
    def test_move_free_slot(self, db, slot_service, day):
        slot = slot_service.create_slot(db, make_slot(day, (10, 0), (11, 0)))

        moved = slot_service.update_slot(
            db, slot.id, SlotUpdate(start_time=at(day, 12), end_time=at(day, 12, 30))
        )

        assert moved.start_time == at(day, 12)
        assert moved.duration_minutes == 30

    def test_move_into_conflict(self, db, slot_service, day):
        slot_service.create_slot(db, make_slot(day, (12, 0), (13, 0)))
        slot = slot_service.create_slot(db, make_slot(day, (10, 0), (11, 0)))

        with pytest.raises(ConflictError):
            slot_service.update_slot(db, slot.id, SlotUpdate(start_time=at(day, 12, 30), end_time=at(day, 13, 30)))

    def test_booked_slot_time_is_fixed(self, db, slot_service, store, day):
        slot = slot_service.create_slot(db, make_slot(day, (10, 0), (11, 0)))
        book_row(store, db, slot.id)

        with pytest.raises(BadRequestError):
            slot_service.update_slot(db, slot.id, SlotUpdate(start_time=at(day, 12), end_time=at(day, 13)))
        with pytest.raises(BadRequestError):
            slot_service.update_slot(db, slot.id, SlotUpdate(status="cancelled"))

    def test_cancel_free_slot(self, db, slot_service, day):
        slot = slot_service.create_slot(db, make_slot(day, (10, 0), (11, 0)))

        cancelled = slot_service.update_slot(
            db, slot.id, SlotUpdate(status="cancelled", cancellation_reason="holiday")
        )

        assert cancelled.status == "cancelled"
        assert cancelled.cancellation_reason == "holiday"
        assert slot_service.list_slots(db, PROVIDER) == []

    def test_delete_free_slot(self, db, slot_service, day):
        slot = slot_service.create_slot(db, make_slot(day, (10, 0), (11, 0)))

        assert slot_service.delete_slot(db, slot.id) == {"success": True}
        with pytest.raises(NotFoundError):
            slot_service.get_slot(db, slot.id)

    def test_delete_booked_slot_conflicts(self, db, slot_service, store, day):
        slot = slot_service.create_slot(db, make_slot(day, (10, 0), (11, 0)))
        book_row(store, db, slot.id)

        with pytest.raises(ConflictError):
            slot_service.delete_slot(db, slot.id)

    def test_delete_template_with_free_instances(self, db, slot_service, store):
        template = slot_service.create_slot(db, make_slot(future_day(THURSDAY), (7, 0), (8, 0), kind="recurring"))
        instances = (
            db.query(AvailabilitySlot)
            .filter(AvailabilitySlot.template_id == template.id)
            .order_by(AvailabilitySlot.start_time)
            .all()
        )
        book_row(store, db, instances[0].id)

        slot_service.delete_slot(db, template.id)

        remaining = db.query(AvailabilitySlot).all()
        assert [row.id for row in remaining] == [instances[0].id]


class TestListings:
    def test_template_instances(self, db, slot_service):
        thursday = future_day(THURSDAY)
        template = slot_service.create_slot(db, make_slot(thursday, (7, 0), (8, 0), kind="recurring"))

        virtual = slot_service.list_template_instances(db, template.id, thursday, future_day(THURSDAY, 3))

        assert len(virtual) >= 3
        assert all(v.date.weekday() == 3 for v in virtual)

    def test_extend_fresh_templates_adds_nothing(self, db, slot_service):
        slot_service.create_slot(db, make_slot(future_day(THURSDAY), (7, 0), (8, 0), kind="recurring"))
        assert slot_service.extend_recurring_templates(db) == 0
