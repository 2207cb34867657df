# booking_core/app/services/slots/generator.py
"""
Slot generation: partition a working window into bookable slots.

Pure computation, no I/O and no conflict checking (see conflicts.py).

Sizing:
    count given          → slot = (W - (count-1)*break) / count
    minutes_per_slot m   → count = floor((W + break) / (m + break)), min 1
    slot below 15 min    → count = floor((W + break) / (15 + break)), slot = 15

Slot lengths are floored to whole minutes so that
duration_minutes == end_time - start_time holds exactly.
"""

import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional

from ...errors import BadRequestError
from ...schemas.slots import SlotSpec, SuggestedRange
from ...timeutils import day_of_week, minutes_between, next_weekday_on_or_after
from .config import BookingConfig, get_booking_config


@dataclass(frozen=True)
class GenerationOptions:
    working_start: Optional[time] = None
    working_end: Optional[time] = None
    minutes_per_slot: Optional[int] = None
    break_minutes: Optional[int] = None
    is_recurring: bool = False
    day_of_week: Optional[int] = None


def resolve_window(
    target_date: date,
    options: GenerationOptions,
    config: BookingConfig,
) -> tuple[datetime, datetime]:
    """
    Working window for a date, re-aligned to the requested weekday for
    recurring generation. Raises BadRequestError if end <= start.
    """
    if options.is_recurring and options.day_of_week is not None:
        target_date = next_weekday_on_or_after(target_date, options.day_of_week)

    start = datetime.combine(target_date, options.working_start or config.work_start)
    end = datetime.combine(target_date, options.working_end or config.work_end)
    if end <= start:
        raise BadRequestError("Working hours end must be after working hours start")
    return start, end


def compute_layout(
    window_minutes: int,
    count: Optional[int],
    minutes_per_slot: Optional[int],
    break_minutes: int,
    min_slot_minutes: int,
) -> tuple[int, int]:
    """Return (slot count, slot length in minutes) for a window."""
    if window_minutes < min_slot_minutes:
        raise BadRequestError(
            f"Working window of {window_minutes} minutes is shorter than the "
            f"{min_slot_minutes}-minute minimum slot"
        )

    if minutes_per_slot:
        count = max(1, (window_minutes + break_minutes) // (minutes_per_slot + break_minutes))

    if not count or count < 1:
        raise BadRequestError("Either a slot count or minutes per slot is required")

    time_per_slot = (window_minutes - (count - 1) * break_minutes) / count
    if time_per_slot < min_slot_minutes:
        count = max(1, (window_minutes + break_minutes) // (min_slot_minutes + break_minutes))
        return count, min_slot_minutes

    return count, math.floor(time_per_slot)


def generate_day_slots(
    provider_id: str,
    target_date: date,
    count: Optional[int] = None,
    options: Optional[GenerationOptions] = None,
    config: Optional[BookingConfig] = None,
) -> list[SlotSpec]:
    """
    Partition one day's working window into contiguous slots separated by
    the break time.

    Recurring generation yields template specs (day_of_week set, no date)
    anchored on the first matching weekday on or after `target_date`.
    """
    options = options or GenerationOptions()
    config = config or get_booking_config()
    break_minutes = config.break_minutes if options.break_minutes is None else options.break_minutes

    start, end = resolve_window(target_date, options, config)
    slot_count, slot_minutes = compute_layout(
        minutes_between(start, end),
        count,
        options.minutes_per_slot,
        break_minutes,
        config.min_slot_minutes,
    )

    slot_date = start.date()
    recurring = options.is_recurring
    specs = []
    cursor = start
    for _ in range(slot_count):
        slot_end = cursor + timedelta(minutes=slot_minutes)
        if slot_end > end:
            break
        specs.append(
            SlotSpec(
                provider_id=provider_id,
                kind="recurring" if recurring else "one_off",
                day_of_week=day_of_week(slot_date) if recurring else None,
                date=None if recurring else slot_date,
                start_time=cursor,
                end_time=slot_end,
                duration_minutes=slot_minutes,
            )
        )
        cursor = slot_end + timedelta(minutes=break_minutes)

    return specs


def generate_slots_for_range(
    provider_id: str,
    start_date: date,
    end_date: date,
    count: Optional[int] = None,
    options: Optional[GenerationOptions] = None,
    config: Optional[BookingConfig] = None,
) -> list[SlotSpec]:
    """Daily partitions for every date in [start_date, end_date]."""
    if end_date < start_date:
        raise BadRequestError("Range end date must not be before start date")

    options = options or GenerationOptions()
    specs: list[SlotSpec] = []
    current = start_date
    while current <= end_date:
        wanted_dow = options.day_of_week
        if not options.is_recurring or wanted_dow is None or day_of_week(current) == wanted_dow:
            specs.extend(generate_day_slots(provider_id, current, count, options, config))
        current += timedelta(days=1)
    return specs


def find_alternative_slot(
    duration_minutes: int,
    busy: list[tuple[datetime, datetime]],
    window_start: datetime,
    window_end: datetime,
) -> Optional[SuggestedRange]:
    """Earliest gap in the window that fits `duration_minutes`, if any."""
    needed = timedelta(minutes=duration_minutes)
    cursor = window_start

    for busy_start, busy_end in sorted(busy):
        if busy_start - cursor >= needed:
            break
        cursor = max(cursor, busy_end)
    else:
        if window_end - cursor < needed:
            return None

    if cursor + needed > window_end:
        return None
    return SuggestedRange(start_time=cursor, end_time=cursor + needed)
