"""
Custom exceptions for the Flight-Group Booking Platform.
"""

from typing import Any, Dict, Optional, List
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for the platform."""

    # General errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    FORBIDDEN = "FORBIDDEN"

    # Booking lifecycle errors
    INVALID_STATUS_TRANSITION = "INVALID_STATUS_TRANSITION"
    INSUFFICIENT_AVAILABILITY = "INSUFFICIENT_AVAILABILITY"
    IDENTIFIER_EXHAUSTED = "IDENTIFIER_EXHAUSTED"
    INVARIANT_VIOLATION = "INVARIANT_VIOLATION"

    # Concurrency errors
    CONCURRENCY_CONFLICT = "CONCURRENCY_CONFLICT"

    # External service errors
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"


class BookingPlatformError(Exception):
    """Base exception class for the booking platform."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: Optional[Dict[str, Any]] = None,
        suggestions: Optional[List[str]] = None,
        retry_after: Optional[int] = None
    ):
        """Initialize the exception with comprehensive error information."""
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.suggestions = suggestions or []
        self.retry_after = retry_after
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        result = {
            "error_code": self.error_code.value,
            "message": self.message,
        }

        if self.details:
            result["details"] = self.details

        if self.suggestions:
            result["suggestions"] = self.suggestions

        if self.retry_after:
            result["retry_after"] = self.retry_after

        return result


class ValidationError(BookingPlatformError):
    """Exception raised when a business-rule guard fails."""

    def __init__(
        self,
        message: str,
        field_errors: Optional[Dict[str, List[str]]] = None,
        error_code: ErrorCode = ErrorCode.VALIDATION_ERROR,
        details: Optional[Dict[str, Any]] = None,
        **kwargs
    ):
        merged = dict(details or {})
        if field_errors:
            merged["field_errors"] = field_errors
        super().__init__(
            message,
            error_code=error_code,
            details=merged or None,
            **kwargs
        )
        self.field_errors = field_errors or {}


class AuthorizationError(ValidationError):
    """Exception raised when the actor's role does not permit an operation."""

    def __init__(self, message: str = "Access denied", required_role: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            error_code=ErrorCode.FORBIDDEN,
            details={"required_role": required_role} if required_role else None,
            suggestions=["Contact an administrator for access"],
            **kwargs
        )


class NotFoundError(BookingPlatformError):
    """Base exception for resource not found errors."""

    def __init__(self, message: str, resource_type: Optional[str] = None, resource_id: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            error_code=ErrorCode.NOT_FOUND,
            details={"resource_type": resource_type, "resource_id": resource_id} if resource_type else None,
            **kwargs
        )


class BookingNotFoundError(NotFoundError):
    """Exception raised when a booking request is not found."""

    def __init__(self, booking_id: str, **kwargs):
        super().__init__(
            f"Booking {booking_id} not found",
            resource_type="booking",
            resource_id=str(booking_id),
            suggestions=["Check the booking ID", "List your agency's bookings"],
            **kwargs
        )


class FlightGroupNotFoundError(NotFoundError):
    """Exception raised when a flight group is not found."""

    def __init__(self, flight_group_id: str, **kwargs):
        super().__init__(
            f"Flight group {flight_group_id} not found",
            resource_type="flight_group",
            resource_id=str(flight_group_id),
            suggestions=["Check the flight group ID", "Browse published flight groups"],
            **kwargs
        )


class BusinessLogicError(BookingPlatformError):
    """Base exception for business logic violations."""
    pass


class InvalidStatusTransitionError(BusinessLogicError):
    """Exception raised when a transition is not in the transition table."""

    def __init__(self, booking_id: Optional[str], current_status: str, target_status: str, **kwargs):
        super().__init__(
            f"Cannot move booking {booking_id} from {current_status} to {target_status}",
            error_code=ErrorCode.INVALID_STATUS_TRANSITION,
            details={
                "booking_id": str(booking_id) if booking_id else None,
                "current_status": current_status,
                "target_status": target_status,
            },
            **kwargs
        )
        self.current_status = current_status
        self.target_status = target_status


class InsufficientAvailabilityError(BusinessLogicError):
    """Exception raised when a seat bucket cannot satisfy a hold or issue."""

    def __init__(self, passenger_type: str, requested: int, available: int, flight_group_id: Optional[str] = None, **kwargs):
        super().__init__(
            f"Insufficient {passenger_type} seats: requested {requested}, available {available}",
            error_code=ErrorCode.INSUFFICIENT_AVAILABILITY,
            details={
                "passenger_type": passenger_type,
                "requested": requested,
                "available": available,
                "flight_group_id": str(flight_group_id) if flight_group_id else None,
            },
            suggestions=["Request fewer seats", "Check availability on other flight groups"],
            **kwargs
        )
        self.requested = requested
        self.available = available


class IdentifierExhaustedError(BusinessLogicError):
    """Exception raised when no free identifier was found within the attempt bound."""

    def __init__(self, identifier_kind: str, attempts: int, **kwargs):
        super().__init__(
            f"Could not allocate a unique {identifier_kind} after {attempts} attempts",
            error_code=ErrorCode.IDENTIFIER_EXHAUSTED,
            details={"identifier_kind": identifier_kind, "attempts": attempts},
            retry_after=1,
            suggestions=["Retry the operation"],
            **kwargs
        )


class InvariantViolationError(BusinessLogicError):
    """Exception raised when freshly read state breaks a stored invariant."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            error_code=ErrorCode.INVARIANT_VIOLATION,
            **kwargs
        )


class ConcurrencyError(BookingPlatformError):
    """Exception raised for concurrency-related issues."""

    def __init__(self, message: str, retry_after: int = 1, **kwargs):
        super().__init__(
            message,
            error_code=ErrorCode.CONCURRENCY_CONFLICT,
            retry_after=retry_after,
            suggestions=["Please try again", "Wait a moment and retry"],
            **kwargs
        )


class ExternalServiceError(BookingPlatformError):
    """Exception raised for external service failures."""

    def __init__(self, service_name: str, message: str, status_code: Optional[int] = None, **kwargs):
        super().__init__(
            f"{service_name} service error: {message}",
            error_code=ErrorCode.EXTERNAL_SERVICE_ERROR,
            details={"service_name": service_name, "status_code": status_code},
            suggestions=["Try again later", "Contact support if problem persists"],
            **kwargs
        )
