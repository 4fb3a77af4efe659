"""Custom exceptions following RFC 9457 Problem Details for HTTP APIs."""

import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .database import utcnow

logger = logging.getLogger(__name__)


class ProblemDetailsException(HTTPException):
    """
    Base exception class following RFC 9457 Problem Details for HTTP APIs.

    https://tools.ietf.org/rfc/rfc9457.txt
    """

    def __init__(
        self,
        status_code: int,
        title: str,
        detail: Optional[str] = None,
        type_uri: Optional[str] = None,
        instance: Optional[str] = None,
        extensions: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize Problem Details exception.

        Args:
            status_code: HTTP status code
            title: Short, human-readable summary of the problem type
            detail: Human-readable explanation specific to this occurrence
            type_uri: URI reference that identifies the problem type
            instance: URI reference that identifies the specific occurrence
            extensions: Additional problem-specific information
            headers: HTTP headers to include in response
        """
        self.status_code = status_code
        self.title = title
        self.type_uri = type_uri or f"about:blank#{status_code}"
        self.instance = instance
        self.extensions = extensions or {}

        self.problem_details = {
            "type": self.type_uri,
            "title": self.title,
            "status": self.status_code,
        }

        if detail:
            self.problem_details["detail"] = detail

        if self.instance:
            self.problem_details["instance"] = self.instance

        self.problem_details.update(self.extensions)

        super().__init__(
            status_code=status_code,
            detail=self.problem_details,
            headers=headers
        )

    @property
    def code(self) -> Optional[str]:
        """Application-specific error code, when the problem carries one."""
        return self.problem_details.get("code")


class ValidationError(ProblemDetailsException):
    """Exception for request validation errors."""

    def __init__(
        self,
        detail: str = "The request data failed validation",
        violations: Optional[list[dict[str, str]]] = None,
        instance: Optional[str] = None,
    ):
        extensions: Dict[str, Any] = {"code": "VALIDATION_ERROR", "retryable": False}
        if violations:
            extensions["violations"] = violations

        super().__init__(
            status_code=422,
            title="Validation Error",
            detail=detail,
            type_uri="https://example.com/problems/validation-error",
            instance=instance,
            extensions=extensions,
        )


class AuthenticationError(ProblemDetailsException):
    """Exception for authentication errors."""

    def __init__(
        self,
        detail: str = "Authentication credentials are required",
        instance: Optional[str] = None,
    ):
        super().__init__(
            status_code=401,
            title="Authentication Required",
            detail=detail,
            type_uri="https://example.com/problems/authentication-required",
            instance=instance,
            headers={"WWW-Authenticate": "Bearer"},
        )


class AuthorizationError(ProblemDetailsException):
    """Exception for authorization errors."""

    def __init__(
        self,
        detail: str = "Insufficient permissions to access this resource",
        required_permissions: Optional[list] = None,
        instance: Optional[str] = None,
    ):
        extensions = {}
        if required_permissions:
            extensions["required_permissions"] = required_permissions

        super().__init__(
            status_code=403,
            title="Access Forbidden",
            detail=detail,
            type_uri="https://example.com/problems/access-forbidden",
            instance=instance,
            extensions=extensions,
        )


class NotFoundError(ProblemDetailsException):
    """Exception for resource not found errors."""

    def __init__(
        self,
        resource_type: str = "resource",
        resource_id: Optional[str] = None,
        detail: Optional[str] = None,
        instance: Optional[str] = None,
    ):
        if not detail:
            detail = f"The requested {resource_type}"
            if resource_id:
                detail += f" with ID '{resource_id}'"
            detail += " could not be found"

        extensions = {
            "resource_type": resource_type,
        }
        if resource_id:
            extensions["resource_id"] = resource_id

        super().__init__(
            status_code=404,
            title="Resource Not Found",
            detail=detail,
            type_uri="https://example.com/problems/resource-not-found",
            instance=instance,
            extensions=extensions,
        )


class ConflictError(ProblemDetailsException):
    """Exception for resource conflict errors."""

    def __init__(
        self,
        detail: str = "The request conflicts with the current state of the resource",
        conflicting_resource: Optional[Dict[str, Any]] = None,
        instance: Optional[str] = None,
    ):
        extensions = {}
        if conflicting_resource:
            extensions["conflicting_resource"] = conflicting_resource

        super().__init__(
            status_code=409,
            title="Resource Conflict",
            detail=detail,
            type_uri="https://example.com/problems/resource-conflict",
            instance=instance,
            extensions=extensions,
        )


# Reservation engine exceptions

class InvalidSegmentError(ProblemDetailsException):
    """Exception when an ordinal range is malformed or falls outside the route."""

    def __init__(self, from_ordinal: int, to_ordinal: int, detail: Optional[str] = None):
        super().__init__(
            status_code=422,
            title="Invalid Segment",
            detail=detail or f"Segment [{from_ordinal}, {to_ordinal}) is not a valid range on this route",
            type_uri="https://example.com/problems/invalid-segment",
            extensions={
                "code": "INVALID_SEGMENT",
                "retryable": False,
                "from_ordinal": from_ordinal,
                "to_ordinal": to_ordinal,
            },
        )


class SegmentConflictError(ConflictError):
    """Exception when a seat segment overlaps a live hold or ticket."""

    def __init__(
        self,
        trip_id: str,
        seat_number: str,
        from_ordinal: int,
        to_ordinal: int,
        detail: Optional[str] = None,
    ):
        super().__init__(
            detail=detail or (
                f"Seat {seat_number} on trip {trip_id} is not free for segment "
                f"[{from_ordinal}, {to_ordinal})"
            ),
            conflicting_resource={
                "trip_id": trip_id,
                "seat_number": seat_number,
                "from_ordinal": from_ordinal,
                "to_ordinal": to_ordinal,
            }
        )
        self.problem_details.update({
            "code": "SEGMENT_CONFLICT",
            "retryable": False
        })


class CapacityExceededError(SegmentConflictError):
    """
    Segment conflict raised when no seat is free on the segment and departure is close.

    Callers should take the overbooking path instead of retrying the hold.
    """

    def __init__(self, trip_id: str, seat_number: str, from_ordinal: int, to_ordinal: int):
        super().__init__(
            trip_id=trip_id,
            seat_number=seat_number,
            from_ordinal=from_ordinal,
            to_ordinal=to_ordinal,
            detail=(
                f"Trip {trip_id} has no free seat for segment [{from_ordinal}, {to_ordinal}); "
                "an overbooking request may be submitted"
            ),
        )
        self.problem_details.update({
            "code": "CAPACITY_EXCEEDED",
            "retryable": False
        })


class HoldExpiredError(ProblemDetailsException):
    """Exception when a hold has expired and the seat is no longer reserved."""

    def __init__(self, hold_id: str, expired_at):
        super().__init__(
            status_code=410,
            title="Hold Expired",
            detail=f"Hold {hold_id} expired at {expired_at.isoformat()}Z",
            type_uri="https://example.com/problems/hold-expired",
            extensions={
                "code": "HOLD_EXPIRED",
                "retryable": False,
                "hold_id": hold_id,
                "expired_at": expired_at.isoformat() + "Z",
            },
        )


class HoldNotFoundError(NotFoundError):
    """Exception when a hold id does not exist."""

    def __init__(self, hold_id: str):
        super().__init__(resource_type="hold", resource_id=hold_id)
        self.problem_details.update({
            "code": "HOLD_NOT_FOUND",
            "retryable": False
        })


class TripNotBookableError(ConflictError):
    """Exception when the trip status does not allow the requested operation."""

    def __init__(self, trip_id: str, status, detail: Optional[str] = None):
        status = getattr(status, "value", status)
        super().__init__(
            detail=detail or f"Trip {trip_id} does not accept this operation while {status}"
        )
        self.problem_details.update({
            "code": "TRIP_NOT_BOOKABLE",
            "retryable": False,
            "trip_id": trip_id,
            "trip_status": status,
        })


class InvalidStateTransitionError(ConflictError):
    """Exception when a state machine guard rejects a transition."""

    def __init__(self, entity: str, entity_id: str, current, target):
        current = getattr(current, "value", current)
        target = getattr(target, "value", target)
        super().__init__(
            detail=f"Cannot move {entity} {entity_id} from {current} to {target}"
        )
        self.problem_details.update({
            "code": "INVALID_STATE_TRANSITION",
            "retryable": False,
            "entity": entity,
            "entity_id": entity_id,
            "current_status": current,
            "target_status": target,
        })


class OtpMismatchError(ProblemDetailsException):
    """Exception when a parcel delivery code does not match."""

    def __init__(self, parcel_code: str):
        super().__init__(
            status_code=422,
            title="OTP Mismatch",
            detail=f"Delivery code for parcel {parcel_code} does not match",
            type_uri="https://example.com/problems/otp-mismatch",
            extensions={
                "code": "OTP_MISMATCH",
                "retryable": False,
                "parcel_code": parcel_code,
            },
        )


class UnknownStopError(NotFoundError):
    """Exception when a stop does not belong to a route."""

    def __init__(self, route_id: str, stop_id: str):
        super().__init__(
            resource_type="stop",
            resource_id=stop_id,
            detail=f"Stop '{stop_id}' is not part of route '{route_id}'",
        )
        self.problem_details.update({
            "code": "UNKNOWN_STOP",
            "retryable": False,
            "route_id": route_id,
        })


class UnknownBusError(NotFoundError):
    """Exception when a bus id does not exist."""

    def __init__(self, bus_id: str):
        super().__init__(resource_type="bus", resource_id=bus_id)
        self.problem_details.update({
            "code": "UNKNOWN_BUS",
            "retryable": False
        })


class UnknownSeatError(NotFoundError):
    """Exception when a seat number is not installed on the trip's bus."""

    def __init__(self, trip_id: str, seat_number: str):
        super().__init__(
            resource_type="seat",
            resource_id=seat_number,
            detail=f"Seat '{seat_number}' does not exist on the bus assigned to trip '{trip_id}'",
        )
        self.problem_details.update({
            "code": "UNKNOWN_SEAT",
            "retryable": False,
            "trip_id": trip_id,
        })


class TripHasNoBusError(ConflictError):
    """Exception when seat operations are attempted before a bus is assigned."""

    def __init__(self, trip_id: str):
        super().__init__(detail=f"Trip {trip_id} has no bus assigned")
        self.problem_details.update({
            "code": "TRIP_HAS_NO_BUS",
            "retryable": False,
            "trip_id": trip_id,
        })


class OverbookingNotAllowedError(ConflictError):
    """Exception when a trip does not meet the overbooking policy."""

    def __init__(self, trip_id: str, reason: str):
        super().__init__(detail=f"Overbooking is not allowed for trip {trip_id}: {reason}")
        self.problem_details.update({
            "code": "OVERBOOKING_NOT_ALLOWED",
            "retryable": False,
            "trip_id": trip_id,
        })


class QuickSaleClosedError(ConflictError):
    """Exception when a quick sale is attempted outside its window before departure."""

    def __init__(self, trip_id: str, minutes_until_departure: int, window_minutes: int):
        if minutes_until_departure < 0:
            detail = f"Trip {trip_id} has already departed"
        else:
            detail = f"Quick sale for trip {trip_id} opens {window_minutes} minutes before departure"
        super().__init__(detail=detail)
        self.problem_details.update({
            "code": "QUICK_SALE_CLOSED",
            "retryable": False,
            "trip_id": trip_id,
            "minutes_until_departure": minutes_until_departure,
        })


async def problem_details_handler(request: Request, exc: ProblemDetailsException) -> JSONResponse:
    """
    Exception handler for Problem Details exceptions.

    Args:
        request: FastAPI request object
        exc: Problem Details exception

    Returns:
        JSONResponse: Problem Details formatted response
    """
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.problem_details,
        headers=exc.headers,
        media_type="application/problem+json",
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Convert FastAPI request validation failures into a Problem Details body.

    Each pydantic error becomes a violation with a dotted path to the field.
    """
    violations = [
        {
            "path": ".".join(str(part) for part in error.get("loc", ()) if part != "body"),
            "message": error.get("msg", "Invalid value"),
        }
        for error in exc.errors()
    ]
    problem = ValidationError(violations=violations, instance=str(request.url.path))
    return await problem_details_handler(request, problem)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Generic exception handler that converts unhandled exceptions to Problem Details format.

    Args:
        request: FastAPI request object
        exc: Unhandled exception

    Returns:
        JSONResponse: Problem Details formatted response
    """
    error_id = str(uuid.uuid4())

    logger.error(
        "Unhandled exception",
        exc_info=exc,
        extra={"error_id": error_id, "path": request.url.path},
    )

    problem_details = {
        "type": "https://example.com/problems/internal-server-error",
        "title": "Internal Server Error",
        "status": 500,
        "detail": "An unexpected error occurred while processing the request",
        "instance": str(request.url),
        "error_id": error_id,
        "timestamp": utcnow().isoformat() + "Z",
    }

    return JSONResponse(
        status_code=500,
        content=problem_details,
        media_type="application/problem+json",
    )
