# booking_core/app/routers/slots.py

from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import get_slot_service
from ..schemas.slots import (
    BulkSlotsRequest,
    BulkSlotsResult,
    CleanupResult,
    DaySlotsRequest,
    RangeSlotsRequest,
    SlotCreate,
    SlotRead,
    SlotUpdate,
    VirtualSlot,
)
from ..services.slots import SlotService
from ..timeutils import to_utc_naive

router = APIRouter(prefix="/slots", tags=["slots"])


@router.get("/", response_model=list[SlotRead])
def list_slots(
    provider_id: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    db: Session = Depends(get_db),
    service: SlotService = Depends(get_slot_service),
):
    return service.list_slots(
        db,
        provider_id,
        to_utc_naive(start) if start else None,
        to_utc_naive(end) if end else None,
    )


@router.post("/", response_model=SlotRead, status_code=status.HTTP_201_CREATED)
def create_slot(
    data: SlotCreate,
    db: Session = Depends(get_db),
    service: SlotService = Depends(get_slot_service),
):
    return service.create_slot(db, data)


@router.post("/bulk", response_model=BulkSlotsResult)
def create_bulk_slots(
    data: BulkSlotsRequest,
    db: Session = Depends(get_db),
    service: SlotService = Depends(get_slot_service),
):
    return service.create_bulk_slots(db, data)


@router.post("/all-day", response_model=list[SlotRead], status_code=status.HTTP_201_CREATED)
def create_all_day_slots(
    data: DaySlotsRequest,
    db: Session = Depends(get_db),
    service: SlotService = Depends(get_slot_service),
):
    return service.create_all_day_slots(db, data)


@router.post("/range", response_model=list[SlotRead], status_code=status.HTTP_201_CREATED)
def create_range_slots(
    data: RangeSlotsRequest,
    db: Session = Depends(get_db),
    service: SlotService = Depends(get_slot_service),
):
    return service.create_range_slots(db, data)


@router.put("/day-quantity", response_model=list[SlotRead])
def adjust_day_slot_quantity(
    data: DaySlotsRequest,
    db: Session = Depends(get_db),
    service: SlotService = Depends(get_slot_service),
):
    return service.adjust_day_slot_quantity(db, data)


@router.post("/cleanup", response_model=CleanupResult)
def cleanup_past_slots(
    db: Session = Depends(get_db),
    service: SlotService = Depends(get_slot_service),
):
    return service.cleanup_past_slots(db)


@router.get("/templates/{template_id}/instances", response_model=list[VirtualSlot])
def list_template_instances(
    template_id: str,
    from_date: date,
    to_date: date,
    db: Session = Depends(get_db),
    service: SlotService = Depends(get_slot_service),
):
    return service.list_template_instances(db, template_id, from_date, to_date)


@router.get("/{id}", response_model=SlotRead)
def get_slot(
    id: str,
    db: Session = Depends(get_db),
    service: SlotService = Depends(get_slot_service),
):
    return service.get_slot(db, id)


@router.patch("/{id}", response_model=SlotRead)
def update_slot(
    id: str,
    data: SlotUpdate,
    db: Session = Depends(get_db),
    service: SlotService = Depends(get_slot_service),
):
    return service.update_slot(db, id, data)


@router.delete("/{id}")
def delete_slot(
    id: str,
    db: Session = Depends(get_db),
    service: SlotService = Depends(get_slot_service),
):
    return service.delete_slot(db, id)
