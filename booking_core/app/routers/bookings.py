# booking_core/app/routers/bookings.py

from datetime import datetime
from typing import Optional, Union

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import get_booking_orchestrator
from ..schemas.bookings import BookingCreate, BookingQuery, BookingRead, BookingUpdate
from ..services.bookings.orchestrator import BookingOrchestrator
from ..services.bookings.states import BookingStatus

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.get("/", response_model=list[BookingRead])
def list_bookings(
    provider_id: Optional[str] = None,
    booking_status: Optional[BookingStatus] = Query(None, alias="status"),
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    search: Optional[str] = None,
    db: Session = Depends(get_db),
    orchestrator: BookingOrchestrator = Depends(get_booking_orchestrator),
):
    query = BookingQuery(
        provider_id=provider_id,
        status=booking_status,
        start=start,
        end=end,
        search=search,
    )
    return orchestrator.list_bookings(db, query)


@router.post(
    "/",
    response_model=Union[BookingRead, list[BookingRead]],
    status_code=status.HTTP_201_CREATED,
)
def create_booking(
    data: BookingCreate,
    db: Session = Depends(get_db),
    orchestrator: BookingOrchestrator = Depends(get_booking_orchestrator),
):
    return orchestrator.create_booking(db, data)


@router.get("/guest/{guest_email}", response_model=list[BookingRead])
def list_guest_bookings(
    guest_email: str,
    db: Session = Depends(get_db),
    orchestrator: BookingOrchestrator = Depends(get_booking_orchestrator),
):
    return orchestrator.find_bookings_by_guest_email(db, guest_email)


@router.get("/serial/{serial_key}", response_model=BookingRead)
def get_booking_by_serial_key(
    serial_key: str,
    db: Session = Depends(get_db),
    orchestrator: BookingOrchestrator = Depends(get_booking_orchestrator),
):
    return orchestrator.find_booking_by_serial_key(db, serial_key)


@router.get("/{id}", response_model=BookingRead)
def get_booking(
    id: str,
    db: Session = Depends(get_db),
    orchestrator: BookingOrchestrator = Depends(get_booking_orchestrator),
):
    return orchestrator.get_booking(db, id)


@router.patch("/{id}", response_model=BookingRead)
def update_booking(
    id: str,
    data: BookingUpdate,
    db: Session = Depends(get_db),
    orchestrator: BookingOrchestrator = Depends(get_booking_orchestrator),
):
    return orchestrator.update_booking(db, id, data)
