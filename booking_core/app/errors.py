"""
Error taxonomy of the availability/booking engine.

Services raise these; the HTTP layer maps them to status codes
(see main.py exception handlers).
"""

from typing import Any, Optional


class EngineError(Exception):
    """Base class for all expected engine failures."""

    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    def to_dict(self) -> dict[str, Any]:
        return {"detail": self.detail}


class NotFoundError(EngineError):
    """Unknown or malformed slot/booking id."""

    status_code = 404


class BadRequestError(EngineError):
    """Invalid time range, weekday mismatch, invalid status transition."""

    status_code = 400


class ConflictError(EngineError):
    """
    Overlap with existing slots or bookings, or a lost booking race.

    Attributes:
        conflicts: [{"id", "start_time", "end_time", ...}] of clashing entities
        suggestion: optional advisory {"start_time", "end_time"} alternative
    """

    status_code = 409

    def __init__(
        self,
        detail: str,
        conflicts: Optional[list[dict]] = None,
        suggestion: Optional[dict] = None,
    ):
        super().__init__(detail)
        self.conflicts = conflicts or []
        self.suggestion = suggestion

    def to_dict(self) -> dict[str, Any]:
        body = {"detail": self.detail, "conflicts": self.conflicts}
        if self.suggestion is not None:
            body["suggestion"] = self.suggestion
        return body
