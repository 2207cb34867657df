"""
Slot maintenance loop.

Periodically:
- deletes one-off slots dated before today (once per day)
- tops up forward instances of recurring templates (once per week)

Runs as an asyncio task in the app lifespan.
Uses synchronous DB access (via asyncio.to_thread).
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ...timeutils import utcnow
from .service import SlotService

logger = logging.getLogger(__name__)

CLEANUP_EVERY = timedelta(days=1)
EXTEND_EVERY = timedelta(weeks=1)


class MaintenanceSchedule:
    """Remembers when each job last ran so a short loop interval is cheap."""

    def __init__(self):
        self.last_cleanup: Optional[datetime] = None
        self.last_extension: Optional[datetime] = None

    def cleanup_due(self, now: datetime) -> bool:
        return self.last_cleanup is None or now - self.last_cleanup >= CLEANUP_EVERY

    def extension_due(self, now: datetime) -> bool:
        return self.last_extension is None or now - self.last_extension >= EXTEND_EVERY


def run_maintenance(
    session_factory: Callable[[], Session],
    service: SlotService,
    schedule: MaintenanceSchedule,
    now: Optional[datetime] = None,
) -> dict:
    """One maintenance pass (synchronous). Returns what was done."""
    now = now or utcnow()
    report = {"removed": 0, "extended": 0}

    db = session_factory()
    try:
        if schedule.cleanup_due(now):
            report["removed"] = service.cleanup_past_slots(db).removed_count
            schedule.last_cleanup = now
        if schedule.extension_due(now):
            report["extended"] = service.extend_recurring_templates(db)
            schedule.last_extension = now
    finally:
        db.close()

    if report["removed"] or report["extended"]:
        logger.info(
            f"Slot maintenance: removed {report['removed']} past slots, "
            f"added {report['extended']} recurring instances"
        )
    return report


async def slot_maintenance_loop(
    session_factory: Callable[[], Session],
    service: SlotService,
    interval: int,
) -> None:
    """Periodic loop driving run_maintenance until cancelled."""
    logger.info("slot_maintenance_loop started")
    schedule = MaintenanceSchedule()

    try:
        while True:
            try:
                await asyncio.to_thread(run_maintenance, session_factory, service, schedule)
            except asyncio.CancelledError:
                logger.info("slot_maintenance_loop cancelled")
                raise
            except Exception:
                logger.exception("slot_maintenance_loop error")

            await asyncio.sleep(interval)
    except asyncio.CancelledError:
        pass
