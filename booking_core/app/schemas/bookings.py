# booking_core/app/schemas/bookings.py

import datetime as dt
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ..services.bookings.states import BookingStatus
from ..timeutils import to_utc_naive
from .slots import SlotRef, parse_slot_ref


class RecurrenceRule(BaseModel):
    """Weekly series: stop at end_date, after `occurrences`, or after 4 weeks."""

    frequency: Literal["weekly"] = "weekly"
    end_date: Optional[dt.date] = None
    occurrences: Optional[int] = Field(default=None, ge=1, le=104)


class BookingCreate(BaseModel):
    provider_id: str
    slot: SlotRef

    guest_id: Optional[str] = None
    guest_name: str
    guest_email: str
    guest_phone: Optional[str] = None

    start_time: dt.datetime
    end_time: dt.datetime

    notes: Optional[str] = None
    # "#" is reserved for series occurrence keys
    idempotency_key: Optional[str] = Field(default=None, max_length=120, pattern=r"^[^#]+$")
    recurrence: Optional[RecurrenceRule] = None

    @model_validator(mode="before")
    @classmethod
    def _slot_from_availability_id(cls, data: Any) -> Any:
        # Plain "availability_id" strings are resolved to a typed ref here
        if isinstance(data, dict) and "slot" not in data and data.get("availability_id"):
            data = dict(data)
            data["slot"] = parse_slot_ref(data.pop("availability_id")).model_dump()
        return data

    @field_validator("start_time", "end_time")
    @classmethod
    def _utc(cls, value: dt.datetime) -> dt.datetime:
        return to_utc_naive(value)


class BookingUpdate(BaseModel):
    status: Optional[BookingStatus] = None
    guest_name: Optional[str] = None
    guest_email: Optional[str] = None
    guest_phone: Optional[str] = None
    notes: Optional[str] = None
    cancel_reason: Optional[str] = None


class BookingRead(BaseModel):
    id: str
    provider_id: str
    availability_id: str

    guest_id: str
    guest_name: str
    guest_email: str
    guest_phone: Optional[str] = None

    start_time: dt.datetime
    end_time: dt.datetime
    duration_minutes: int

    status: BookingStatus
    serial_key: str
    notes: Optional[str] = None
    cancel_reason: Optional[str] = None
    completed_at: Optional[dt.datetime] = None
    idempotency_key: Optional[str] = None

    created_at: dt.datetime
    updated_at: dt.datetime

    model_config = {"from_attributes": True}


class BookingQuery(BaseModel):
    """Listing filters; `start`/`end` bound the booking start time, inclusive."""

    provider_id: Optional[str] = None
    status: Optional[BookingStatus] = None
    start: Optional[dt.datetime] = None
    end: Optional[dt.datetime] = None
    search: Optional[str] = None

    @field_validator("start", "end")
    @classmethod
    def _utc(cls, value: Optional[dt.datetime]) -> Optional[dt.datetime]:
        return to_utc_naive(value) if value is not None else None
