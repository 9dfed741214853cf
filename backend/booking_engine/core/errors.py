"""
Domain errors for the availability engine.

Services raise these; main.py maps every EngineError to an HTTP response
using the status_code carried by the class, so routers stay thin.
"""
from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse

# ---------------------------------------------------------------------------
# Status codes per error category
# ---------------------------------------------------------------------------

STATUS_BAD_REQUEST = 400
STATUS_FORBIDDEN = 403
STATUS_NOT_FOUND = 404
STATUS_CONFLICT = 409
STATUS_GONE = 410
STATUS_BAD_GATEWAY = 502


class EngineError(Exception):
    """Base class. Subclasses set status_code."""

    status_code = 500


class ValidationError(EngineError):
    """Missing or malformed input. No state was changed."""

    status_code = STATUS_BAD_REQUEST


class NotFound(EngineError):
    status_code = STATUS_NOT_FOUND


class NoOpeningHours(NotFound):
    pass


class ResourceNotFound(NotFound):
    pass


class GroupNotFound(NotFound):
    pass


class ReservationNotFound(NotFound):
    pass


class BookingNotFound(NotFound):
    pass


class CapacityExceeded(EngineError):
    """Authoritative slot check failed on a write."""

    status_code = STATUS_CONFLICT

    def __init__(self, table: str, date: str, message: str | None = None):
        self.table = table
        self.date = date
        super().__init__(
            message or f"Booking would exceed maximum quantity for {table} on {date}"
        )


class Expired(EngineError):
    """Reservation exists but its hold has lapsed; client should re-check availability."""

    status_code = STATUS_GONE


class Unauthorized(EngineError):
    status_code = STATUS_FORBIDDEN


class UpstreamFailure(EngineError):
    """Store or payment provider call failed."""

    status_code = STATUS_BAD_GATEWAY


async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    """Render any EngineError as {"error": message} with its status code."""
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})
