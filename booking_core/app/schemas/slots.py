# booking_core/app/schemas/slots.py

import datetime as dt
import re
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

from ..timeutils import to_utc_naive

SlotKind = Literal["recurring", "one_off"]
SlotStatus = Literal["active", "cancelled", "override"]


class SlotSpec(BaseModel):
    """Slot to be created (generator output or client input)."""

    provider_id: str
    kind: SlotKind = "one_off"
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)
    date: Optional[dt.date] = None
    start_time: dt.datetime
    end_time: dt.datetime
    duration_minutes: Optional[int] = None
    max_bookings: int = Field(default=1, ge=1)
    status: SlotStatus = "active"

    @field_validator("start_time", "end_time")
    @classmethod
    def _utc(cls, value: dt.datetime) -> dt.datetime:
        return to_utc_naive(value)


class SlotCreate(SlotSpec):
    idempotency_key: Optional[str] = None


class SlotUpdate(BaseModel):
    start_time: Optional[dt.datetime] = None
    end_time: Optional[dt.datetime] = None
    max_bookings: Optional[int] = Field(default=None, ge=1)
    status: Optional[SlotStatus] = None
    cancellation_reason: Optional[str] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def _utc(cls, value: Optional[dt.datetime]) -> Optional[dt.datetime]:
        return to_utc_naive(value) if value is not None else None


class SlotRead(BaseModel):
    id: str
    provider_id: str
    kind: SlotKind
    day_of_week: Optional[int] = None
    date: Optional[dt.date] = None
    start_time: dt.datetime
    end_time: dt.datetime
    duration_minutes: int
    is_booked: bool
    booking_id: Optional[str] = None
    max_bookings: int
    status: SlotStatus
    cancellation_reason: Optional[str] = None
    template_id: Optional[str] = None
    week_of: Optional[dt.date] = None
    created_at: dt.datetime
    updated_at: dt.datetime

    model_config = {"from_attributes": True}


# ── Slot references ─────────────────────────────────────────────────────


class PersistedRef(BaseModel):
    kind: Literal["persisted"] = "persisted"
    id: str


class RecurringInstanceRef(BaseModel):
    """Instance of a recurring template on one date, persisted or not."""

    kind: Literal["recurring_instance"] = "recurring_instance"
    template_id: str
    date: dt.date


SlotRef = Annotated[
    Union[PersistedRef, RecurringInstanceRef],
    Field(discriminator="kind"),
]

_INSTANCE_ID = re.compile(r"^(?P<template_id>[^_\s]+)_(?P<date>\d{4}-\d{2}-\d{2})$")


def parse_slot_ref(value: str) -> Union[PersistedRef, RecurringInstanceRef]:
    """
    Resolve a string slot id into a typed reference.

    "<templateId>_<YYYY-MM-DD>" names a template occurrence, anything else
    is a persisted slot id.
    """
    match = _INSTANCE_ID.match(value)
    if match:
        try:
            day = dt.date.fromisoformat(match.group("date"))
        except ValueError:
            return PersistedRef(id=value)
        return RecurringInstanceRef(template_id=match.group("template_id"), date=day)
    return PersistedRef(id=value)


class VirtualSlot(BaseModel):
    """Read-only expansion of a template onto one date."""

    ref: RecurringInstanceRef
    provider_id: str
    day_of_week: int
    date: dt.date
    start_time: dt.datetime
    end_time: dt.datetime
    duration_minutes: int
    is_booked: bool = False


# ── Bulk / generation ───────────────────────────────────────────────────


class ConflictEntry(BaseModel):
    id: str
    entity: Literal["slot", "booking"] = "slot"
    start_time: dt.datetime
    end_time: dt.datetime
    serial_key: Optional[str] = None


class SuggestedRange(BaseModel):
    start_time: dt.datetime
    end_time: dt.datetime


class SlotConflict(BaseModel):
    slot: SlotSpec
    conflicts: list[ConflictEntry]
    suggestion: Optional[SuggestedRange] = None
    alternative: Optional[SuggestedRange] = None  # earliest free gap that day


class BulkSlotsRequest(BaseModel):
    slots: list[SlotSpec] = Field(min_length=1)
    skip_conflicts: bool = False
    replace_conflicts: bool = False
    dry_run: bool = False
    idempotency_key: Optional[str] = None


class BulkSlotsResult(BaseModel):
    created: list[SlotRead] = []
    conflicts: list[SlotConflict] = []
    dry_run: bool = False


class GenerationRequest(BaseModel):
    provider_id: str
    count: Optional[int] = Field(default=None, ge=1)
    working_start: Optional[dt.time] = None
    working_end: Optional[dt.time] = None
    minutes_per_slot: Optional[int] = Field(default=None, ge=1)
    break_minutes: Optional[int] = Field(default=None, ge=0)
    is_recurring: bool = False
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)


class DaySlotsRequest(GenerationRequest):
    """All-day generation / day quantity adjustment."""

    date: dt.date


class RangeSlotsRequest(GenerationRequest):
    """One day's partition per date in [start_date, end_date]."""

    start_date: dt.date
    end_date: dt.date


class CleanupResult(BaseModel):
    removed_count: int
