# app/core/errors.py
from __future__ import annotations

from typing import Any, Dict, Optional


class BookingError(Exception):
    """
    Minden típusos hiba őse. A HTTP réteg ebből csinál
    {"detail": {"error": code, "message": ...}} választ.
    """

    code: str = "INTERNAL_ERROR"
    status_code: int = 500

    def __init__(self, message: Optional[str] = None, *, code: Optional[str] = None, **extra: Any) -> None:
        if code is not None:
            self.code = code
        self.message = message or self.code
        self.extra = extra
        super().__init__(self.message)

    def to_detail(self) -> Dict[str, Any]:
        detail: Dict[str, Any] = {"error": self.code, "message": self.message}
        detail.update(self.extra)
        return detail


class ValidationFailed(BookingError):
    code = "VALIDATION_ERROR"
    status_code = 422


class SlotAlreadyHeld(BookingError):
    code = "SLOT_ALREADY_HELD"
    status_code = 409


class OverlappingHold(BookingError):
    code = "OVERLAPPING_HOLD"
    status_code = 409


class SlotUnavailable(BookingError):
    code = "SLOT_UNAVAILABLE"
    status_code = 409


class ConnectorUnavailable(BookingError):
    code = "CONNECTOR_UNAVAILABLE"
    status_code = 409


class InvalidHold(BookingError):
    code = "INVALID_HOLD"
    status_code = 400


class InvalidState(BookingError):
    code = "INVALID_STATE"
    status_code = 400


class NotFound(BookingError):
    code = "NOT_FOUND"
    status_code = 404


class StationNotFound(NotFound):
    pass


class ConnectorNotFound(NotFound):
    pass


class BookingNotFound(NotFound):
    pass


class SessionNotFound(NotFound):
    pass


class Unauthorized(BookingError):
    code = "UNAUTHORIZED"
    status_code = 403


class BackendUnavailable(BookingError):
    code = "SERVICE_UNAVAILABLE"
    status_code = 503
