"""
Date/time helpers shared by the slot and booking services.

All persisted timestamps are naive UTC. Day-of-week numbering is
0=Sunday .. 6=Saturday.
"""

import datetime as dt
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

WEEKDAY_NAMES = (
    "Sunday",
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
)


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)


def to_utc_naive(value: dt.datetime) -> dt.datetime:
    """Aware datetimes are converted to UTC; naive ones are taken as UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(dt.timezone.utc).replace(tzinfo=None)


def day_of_week(day: dt.date) -> int:
    # date.weekday(): Monday=0 → shift so Sunday=0
    return (day.weekday() + 1) % 7


def weekday_name(dow: int) -> str:
    return WEEKDAY_NAMES[dow]


def next_weekday_on_or_after(day: dt.date, dow: int) -> dt.date:
    """First date >= `day` falling on `dow`."""
    delta = (dow - day_of_week(day) + 7) % 7
    return day + dt.timedelta(days=delta)


def week_start(day: dt.date) -> dt.date:
    """Sunday that opens the week containing `day`."""
    return day - dt.timedelta(days=day_of_week(day))


def at_time_of(day: dt.date, source: dt.datetime) -> dt.datetime:
    """`day` combined with the time-of-day of `source`."""
    return dt.datetime.combine(day, source.time())


def minutes_between(start: dt.datetime, end: dt.datetime) -> int:
    return int((end - start).total_seconds() // 60)


def resolve_zone(name: str | None) -> ZoneInfo:
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")


def local_date(moment: dt.datetime, zone_name: str | None) -> dt.date:
    """Calendar date of a naive-UTC `moment` as seen in `zone_name`."""
    aware = moment.replace(tzinfo=dt.timezone.utc)
    return aware.astimezone(resolve_zone(zone_name)).date()
