# booking_core/app/services/bookings/search.py
"""
Booking listings: filter by provider, status and start window, plus a
case-insensitive text search over guest name, guest email and serial key.

Filtered results are cached for a short time under
    bookings:query:{provider_id | all}:{status}:{start}:{end}:{search}
and a booking write drops its provider's keys and the unscoped ones.
"""

import logging
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ...models import Booking
from ...schemas.bookings import BookingQuery, BookingRead
from ..cache import CacheBackend

logger = logging.getLogger(__name__)

DEFAULT_QUERY_TTL = 120  # 2 minutes


class BookingSearch:
    KEY_PREFIX = "bookings:query"
    UNSCOPED = "all"

    def __init__(self, cache: CacheBackend, ttl: int = DEFAULT_QUERY_TTL):
        self.cache = cache
        self.ttl = ttl

    def _key(self, query: BookingQuery) -> str:
        parts = [
            query.provider_id or self.UNSCOPED,
            query.status.value if query.status else "",
            query.start.isoformat() if query.start else "",
            query.end.isoformat() if query.end else "",
            (query.search or "").strip().lower(),
        ]
        return f"{self.KEY_PREFIX}:" + ":".join(parts)

    def find(self, db: Session, query: BookingQuery) -> list[BookingRead]:
        key = self._key(query)
        cached = self.cache.get(key)
        if cached is not None:
            return [BookingRead.model_validate(item) for item in cached]

        rows = db.query(Booking)
        if query.provider_id:
            rows = rows.filter(Booking.provider_id == query.provider_id)
        if query.status:
            rows = rows.filter(Booking.status == query.status.value)
        if query.start:
            rows = rows.filter(Booking.start_time >= query.start)
        if query.end:
            rows = rows.filter(Booking.start_time <= query.end)

        term = (query.search or "").strip()
        if term:
            rows = rows.filter(
                or_(
                    Booking.guest_name.icontains(term, autoescape=True),
                    Booking.guest_email.icontains(term, autoescape=True),
                    Booking.serial_key.icontains(term, autoescape=True),
                )
            )

        result = [BookingRead.model_validate(row) for row in rows.order_by(Booking.start_time).all()]
        logger.debug(f"Booking query {key}: {len(result)} results")
        self.cache.set(key, [item.model_dump(mode="json") for item in result], self.ttl)
        return result

    def find_by_guest_email(self, db: Session, guest_email: str) -> list[BookingRead]:
        rows = (
            db.query(Booking)
            .filter(Booking.guest_email == guest_email)
            .order_by(Booking.start_time)
            .all()
        )
        return [BookingRead.model_validate(row) for row in rows]

    def invalidate(self, provider_id: str) -> int:
        removed = self.cache.delete_pattern(f"{self.KEY_PREFIX}:{provider_id}:*")
        removed += self.cache.delete_pattern(f"{self.KEY_PREFIX}:{self.UNSCOPED}:*")
        return removed
