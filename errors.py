from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import status
from fastapi.responses import JSONResponse


@dataclass(frozen=True)
class ApiError:
    code: str
    message: str
    http_status: int

    def to_response(self, *, message: Optional[str] = None, extra: Optional[Dict[str, Any]] = None) -> JSONResponse:
        """
        Render this error as the JSON body returned to clients.
        If extra is provided, it will be merged into the payload.
        """
        content: Dict[str, Any] = {"error": message or self.message, "code": self.code}
        if extra:
            content.update(extra)

        return JSONResponse(status_code=self.http_status, content=content)


# ----------------------------
# Validation errors (400)
# ----------------------------

VALIDATION_ERROR = ApiError(
    code="VALIDATION_ERROR",
    message="Invalid request.",
    http_status=status.HTTP_400_BAD_REQUEST,
)

INVALID_DURATION = ApiError(
    code="INVALID_DURATION",
    message="Duration is not one of the allowed durations.",
    http_status=status.HTTP_400_BAD_REQUEST,
)

INVALID_COURT = ApiError(
    code="INVALID_COURT",
    message="Court is out of range.",
    http_status=status.HTTP_400_BAD_REQUEST,
)

INVALID_TIME = ApiError(
    code="INVALID_TIME",
    message="Time does not fit the booking grid.",
    http_status=status.HTTP_400_BAD_REQUEST,
)

BOOKING_IN_PAST = ApiError(
    code="BOOKING_IN_PAST",
    message="You can't book a court in the past.",
    http_status=status.HTTP_400_BAD_REQUEST,
)

# ----------------------------
# Access (401)
# ----------------------------

UNAUTHORIZED = ApiError(
    code="UNAUTHORIZED",
    message="Unauthorized.",
    http_status=status.HTTP_401_UNAUTHORIZED,
)

# ----------------------------
# Not found (404)
# ----------------------------

BOOKING_NOT_FOUND = ApiError(
    code="BOOKING_NOT_FOUND",
    message="Booking not found.",
    http_status=status.HTTP_404_NOT_FOUND,
)

RULE_NOT_FOUND = ApiError(
    code="RULE_NOT_FOUND",
    message="Recurring rule not found.",
    http_status=status.HTTP_404_NOT_FOUND,
)

OWNER_NOT_FOUND = ApiError(
    code="OWNER_NOT_FOUND",
    message="User not found.",
    http_status=status.HTTP_404_NOT_FOUND,
)

ROUTE_NOT_FOUND = ApiError(
    code="ROUTE_NOT_FOUND",
    message="Route not found.",
    http_status=status.HTTP_404_NOT_FOUND,
)

# ----------------------------
# Conflicts (409)
# ----------------------------

COURT_CONFLICT = ApiError(
    code="COURT_CONFLICT",
    message="Court is already booked for that time.",
    http_status=status.HTTP_409_CONFLICT,
)

COURTS_EXHAUSTED = ApiError(
    code="COURTS_EXHAUSTED",
    message="No court is free for that time.",
    http_status=status.HTTP_409_CONFLICT,
)

RULE_CONFLICT = ApiError(
    code="RULE_CONFLICT",
    message="Recurring rule overlaps another active rule on the same court.",
    http_status=status.HTTP_409_CONFLICT,
)

INVALID_TRANSITION = ApiError(
    code="INVALID_TRANSITION",
    message="Booking can't make that status change.",
    http_status=status.HTTP_409_CONFLICT,
)

# ----------------------------
# Storage (503)
# ----------------------------

STORAGE_ERROR = ApiError(
    code="STORAGE_ERROR",
    message="Booking storage is unavailable.",
    http_status=status.HTTP_503_SERVICE_UNAVAILABLE,
)


# ----------------------------
# Exceptions
# ----------------------------

class SchedulingError(Exception):
    """Base error for single-item operations. Carries the ApiError to report."""

    default_error: ApiError = VALIDATION_ERROR

    def __init__(self, message: Optional[str] = None, *, error: Optional[ApiError] = None) -> None:
        self.error = error or self.default_error
        self.message = message or self.error.message
        super().__init__(self.message)

    @property
    def code(self) -> str:
        return self.error.code

    def to_response(self) -> JSONResponse:
        return self.error.to_response(message=self.message)


class ValidationError(SchedulingError):
    default_error = VALIDATION_ERROR


class Unauthorized(SchedulingError):
    default_error = UNAUTHORIZED


class NotFound(SchedulingError):
    default_error = BOOKING_NOT_FOUND


class ResourceConflict(SchedulingError):
    default_error = COURT_CONFLICT


class ResourceExhausted(SchedulingError):
    default_error = COURTS_EXHAUSTED


class InvalidTransition(SchedulingError):
    default_error = INVALID_TRANSITION


class StorageError(SchedulingError):
    default_error = STORAGE_ERROR


# ----------------------------
# Batch item errors
# ----------------------------

@dataclass(frozen=True)
class ItemError:
    """One failed item of a batch run. Batch jobs collect these and keep going."""

    code: str
    message: str
    date: Optional[date] = None
    rule_id: Optional[UUID] = None
    booking_id: Optional[UUID] = None
