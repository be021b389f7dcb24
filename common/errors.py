"""
Booking-layer exceptions and their HTTP mapping.

The conflict engine raises these; the services turn them into JSON
responses through the handler installed by ``register_error_handlers``.
"""
from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional, Sequence

from fastapi import FastAPI, Request, status
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

if TYPE_CHECKING:
    from .models import Booking


class BookingError(Exception):
    """Base exception for all booking-layer errors."""

    status_code = status.HTTP_400_BAD_REQUEST
    headers: Optional[dict[str, str]] = None

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


def _render_date(value: Any) -> Optional[str]:
    if isinstance(value, datetime):
        return value.isoformat()
    return None if value is None else str(value)


class InvalidInterval(BookingError):
    """Raised when check-in is not strictly before check-out, or a date does not parse."""

    def __init__(self, check_in: Any, check_out: Any, message: Optional[str] = None) -> None:
        super().__init__(
            message or "Invalid date range: check-in must be before check-out",
            {"check_in": _render_date(check_in), "check_out": _render_date(check_out)},
        )


class InvalidGuestCount(BookingError):
    def __init__(self, guest_count: int, max_guests: Optional[int] = None) -> None:
        if max_guests is None:
            message = "At least 1 guest required"
        else:
            message = f"Room accommodates at most {max_guests} guests"
        super().__init__(message, {"guest_count": guest_count})


class RoomNotFound(BookingError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, room_id: int) -> None:
        super().__init__("Room not found", {"room_id": room_id})
        self.room_id = room_id


class BookingNotFound(BookingError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, booking_id: int) -> None:
        super().__init__("Booking not found", {"booking_id": booking_id})
        self.booking_id = booking_id


class InvalidTransition(BookingError):
    """Raised when a lifecycle action is not legal from the current status."""

    status_code = status.HTTP_409_CONFLICT

    def __init__(self, current_status: str, target_status: str, reason: Optional[str] = None) -> None:
        message = reason or f"Cannot move booking from '{current_status}' to '{target_status}'"
        super().__init__(message, {"current_status": current_status})
        self.current_status = current_status
        self.target_status = target_status


class BookingConflict(BookingError):
    """Raised when the requested stay overlaps active bookings on the room."""

    status_code = status.HTTP_409_CONFLICT

    def __init__(
        self,
        room_id: int,
        blockers: Sequence["Booking"] = (),
        message: str = "Room is already booked during this period",
    ) -> None:
        self.room_id = room_id
        self.blockers = list(blockers)
        super().__init__(
            message,
            {
                "overlapping_count": len(self.blockers),
                "overlapping_bookings": [
                    {
                        "id": booking.id,
                        "check_in": booking.check_in.isoformat(),
                        "check_out": booking.check_out.isoformat(),
                        "status": booking.status.value,
                    }
                    for booking in self.blockers
                ],
            },
        )

    @property
    def blocker_ids(self) -> list[int]:
        return [booking.id for booking in self.blockers]


class RoomBusy(BookingError):
    """Raised when another booking mutation held the room past the lock timeout.

    Unlike ``BookingConflict`` this is transient: the same request may
    succeed when retried.
    """

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    headers = {"Retry-After": "1"}

    def __init__(self, room_id: int) -> None:
        super().__init__(
            "Room is busy with another booking request, try again",
            {"room_id": room_id, "retryable": True},
        )
        self.room_id = room_id


DATE_FIELDS = ("check_in", "check_out")


def booking_error_handler(_: Request, exc: BookingError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": type(exc).__name__, **exc.details},
        headers=exc.headers,
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report unparsable stay dates as ``InvalidInterval``; anything else keeps FastAPI's 422."""
    bad_dates = {
        error["loc"][-1]: error.get("input")
        for error in exc.errors()
        if error.get("loc")
        and error["loc"][-1] in DATE_FIELDS
        and error.get("type", "").startswith(("datetime", "date"))
    }
    if not bad_dates:
        return await request_validation_exception_handler(request, exc)
    return booking_error_handler(
        request,
        InvalidInterval(
            bad_dates.get("check_in"),
            bad_dates.get("check_out"),
            message="Invalid date range: check-in and check-out must be valid dates",
        ),
    )


def register_error_handlers(app: FastAPI) -> None:
    """Map booking-layer exceptions to JSON error responses."""

    app.add_exception_handler(BookingError, booking_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
