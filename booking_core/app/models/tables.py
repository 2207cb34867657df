import uuid

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship

from ..timeutils import utcnow

Base = declarative_base()
metadata = Base.metadata


# Slot kinds
RECURRING = "recurring"
ONE_OFF = "one_off"

# Slot statuses
SLOT_ACTIVE = "active"
SLOT_CANCELLED = "cancelled"


def new_id() -> str:
    return uuid.uuid4().hex


class AvailabilitySlot(Base):
    """
    Bookable window of one provider.

    kind=recurring with date=NULL is a weekly template; kind=recurring with a
    date is a pre-generated instance; kind=one_off rows are dated slots or
    instances materialized on demand (template_id set).
    """

    __tablename__ = 'availability_slots'
    __table_args__ = (
        Index('ix_availability_slots_provider_date', 'provider_id', 'date'),
        Index('ix_availability_slots_provider_dow', 'provider_id', 'day_of_week'),
        Index('ix_availability_slots_template', 'template_id'),
    )

    id = Column(String(32), primary_key=True, default=new_id)
    provider_id = Column(String(64), nullable=False)
    kind = Column(String(16), nullable=False)
    day_of_week = Column(Integer)  # 0=Sunday .. 6=Saturday
    date = Column(Date)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    is_booked = Column(Boolean, nullable=False, default=False)
    booking_id = Column(String(32))
    max_bookings = Column(Integer, nullable=False, default=1)
    status = Column(String(16), nullable=False, default=SLOT_ACTIVE)
    cancellation_reason = Column(Text)
    template_id = Column(String(32))
    week_of = Column(Date)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    bookings = relationship('Booking', back_populates='availability', passive_deletes=True)

    @property
    def is_template(self) -> bool:
        return self.kind == RECURRING and self.date is None


class Booking(Base):
    __tablename__ = 'bookings'
    __table_args__ = (
        Index('ix_bookings_provider_start', 'provider_id', 'start_time'),
    )

    id = Column(String(32), primary_key=True, default=new_id)
    provider_id = Column(String(64), nullable=False)
    availability_id = Column(
        ForeignKey('availability_slots.id', ondelete='CASCADE'), nullable=False
    )
    guest_id = Column(String(64), nullable=False)
    guest_name = Column(Text, nullable=False)
    guest_email = Column(Text, nullable=False)
    guest_phone = Column(Text)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    status = Column(String(16), nullable=False, default='pending')
    serial_key = Column(String(32), nullable=False, unique=True)
    notes = Column(Text)
    cancel_reason = Column(Text)
    completed_at = Column(DateTime)
    idempotency_key = Column(String(128), unique=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    availability = relationship('AvailabilitySlot', back_populates='bookings')
