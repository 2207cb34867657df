"""
booking_core/app/services/events.py

Domain events and notification requests.

Slot/booking mutations push events to the Redis list `events:p2p`; an
external worker turns them into e-mails and pushes. Delivery is
best-effort: callers wrap the notifier in BestEffortNotifier so a failed
push never fails an already committed mutation.
"""

import json
import logging
import time
from typing import Any, Protocol

from redis import Redis

logger = logging.getLogger(__name__)

P2P_QUEUE = "events:p2p"


class Notifier(Protocol):
    # Slot lifecycle
    def notify_created(self, provider_id: str, payload: dict) -> None: ...

    def notify_booked(self, provider_id: str, payload: dict) -> None: ...

    def notify_unbooked(self, provider_id: str, payload: dict) -> None: ...

    def notify_updated(self, provider_id: str, payload: dict) -> None: ...

    def notify_deleted(self, provider_id: str, payload: dict) -> None: ...

    # Booking messages
    def notify_new_booking(self, booking: dict, recipient_email: str) -> None: ...

    def notify_booking_confirmation(self, booking: dict, recipient_email: str) -> None: ...

    def notify_booking_cancellation(self, booking: dict, recipient_email: str) -> None: ...

    def notify_booking_completion(self, booking: dict, recipient_email: str) -> None: ...

    def notify_booking_modified(
        self, booking: dict, changed_fields: list[str], recipient_email: str
    ) -> None: ...

    def notify_recurring_summary(self, bookings: list[dict], recipient_email: str) -> None: ...


class RedisEventNotifier:
    """Notifier that queues every request as a JSON event in Redis."""

    def __init__(self, redis: Redis, queue: str = P2P_QUEUE):
        self.redis = redis
        self.queue = queue

    def emit(self, event_type: str, payload: dict[str, Any]) -> None:
        event = {
            "type": event_type,
            **payload,
            "ts": int(time.time()),
        }
        self.redis.rpush(self.queue, json.dumps(event, default=str))
        logger.info(f"Event emitted: {event_type} → {self.queue}")

    # ── Slot lifecycle ───────────────────────────────────────────────────

    def notify_created(self, provider_id: str, payload: dict) -> None:
        self.emit("availability_created", {"provider_id": provider_id, "data": payload})

    def notify_booked(self, provider_id: str, payload: dict) -> None:
        self.emit("availability_booked", {"provider_id": provider_id, "data": payload})

    def notify_unbooked(self, provider_id: str, payload: dict) -> None:
        self.emit("availability_unbooked", {"provider_id": provider_id, "data": payload})

    def notify_updated(self, provider_id: str, payload: dict) -> None:
        self.emit("availability_updated", {"provider_id": provider_id, "data": payload})

    def notify_deleted(self, provider_id: str, payload: dict) -> None:
        self.emit("availability_deleted", {"provider_id": provider_id, "data": payload})

    # ── Booking messages ─────────────────────────────────────────────────

    def notify_new_booking(self, booking: dict, recipient_email: str) -> None:
        self.emit("booking_new", {"booking": booking, "recipient": recipient_email})

    def notify_booking_confirmation(self, booking: dict, recipient_email: str) -> None:
        self.emit("booking_confirmed", {"booking": booking, "recipient": recipient_email})

    def notify_booking_cancellation(self, booking: dict, recipient_email: str) -> None:
        self.emit("booking_cancelled", {"booking": booking, "recipient": recipient_email})

    def notify_booking_completion(self, booking: dict, recipient_email: str) -> None:
        self.emit("booking_done", {"booking": booking, "recipient": recipient_email})

    def notify_booking_modified(
        self, booking: dict, changed_fields: list[str], recipient_email: str
    ) -> None:
        self.emit(
            "booking_modified",
            {"booking": booking, "changed_fields": changed_fields, "recipient": recipient_email},
        )

    def notify_recurring_summary(self, bookings: list[dict], recipient_email: str) -> None:
        self.emit(
            "booking_series_created",
            {"bookings": bookings, "count": len(bookings), "recipient": recipient_email},
        )


class BestEffortNotifier:
    """Delegates to a Notifier, logging and swallowing delivery failures."""

    def __init__(self, inner: Notifier):
        self.inner = inner

    def __getattr__(self, name: str):
        method = getattr(self.inner, name)

        def call(*args, **kwargs) -> None:
            try:
                method(*args, **kwargs)
            except Exception as e:
                logger.error(f"Notification {name} failed: {e}")

        return call


def as_best_effort(notifier: Notifier) -> BestEffortNotifier:
    if isinstance(notifier, BestEffortNotifier):
        return notifier
    return BestEffortNotifier(notifier)
