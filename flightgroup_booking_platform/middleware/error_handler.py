"""
Error handling middleware for the Flight-Group Booking Platform.
"""

import logging
import traceback
from datetime import datetime, timezone
from uuid import uuid4

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from sqlalchemy.exc import IntegrityError, OperationalError, TimeoutError as SQLTimeoutError

from ..utils.exceptions import (
    BookingPlatformError,
    ConcurrencyError,
    ErrorCode,
    ExternalServiceError,
    IdentifierExhaustedError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)


STATUS_MAP = {
    ErrorCode.VALIDATION_ERROR: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorCode.INVALID_STATUS_TRANSITION: status.HTTP_400_BAD_REQUEST,
    ErrorCode.INSUFFICIENT_AVAILABILITY: status.HTTP_409_CONFLICT,
    ErrorCode.IDENTIFIER_EXHAUSTED: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorCode.INVARIANT_VIOLATION: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorCode.CONCURRENCY_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCode.EXTERNAL_SERVICE_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def get_status_code_for_error(exc: BookingPlatformError) -> int:
    """Map error codes to HTTP status codes."""
    return STATUS_MAP.get(exc.error_code, status.HTTP_500_INTERNAL_SERVER_ERROR)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Middleware turning exceptions into JSON error envelopes."""

    def __init__(self, app, debug: bool = False):
        super().__init__(app)
        self.debug = debug

    async def dispatch(self, request: Request, call_next):
        """Process request and handle any exceptions."""
        error_id = str(uuid4())

        try:
            return await call_next(request)
        except Exception as exc:
            return self._handle_exception(request, exc, error_id)

    def _handle_exception(self, request: Request, exc: Exception, error_id: str) -> JSONResponse:
        self._log_error(request, exc, error_id)

        if isinstance(exc, BookingPlatformError):
            return self._respond(exc, get_status_code_for_error(exc), error_id)
        elif isinstance(exc, IntegrityError):
            return self._respond(
                ConcurrencyError("The request conflicted with a concurrent change. Please try again."),
                status.HTTP_409_CONFLICT,
                error_id,
            )
        elif isinstance(exc, (OperationalError, SQLTimeoutError)):
            return self._respond(
                ExternalServiceError(
                    "database",
                    "Database service temporarily unavailable",
                    retry_after=30,
                ),
                status.HTTP_503_SERVICE_UNAVAILABLE,
                error_id,
            )
        return self._handle_unexpected_error(exc, error_id)

    def _respond(self, exc: BookingPlatformError, status_code: int, error_id: str) -> JSONResponse:
        headers = {}
        if exc.retry_after:
            headers["Retry-After"] = str(exc.retry_after)

        return JSONResponse(
            status_code=status_code,
            content={
                "error": exc.to_dict(),
                "error_id": error_id,
                "timestamp": self._get_timestamp(),
            },
            headers=headers,
        )

    def _handle_unexpected_error(self, exc: Exception, error_id: str) -> JSONResponse:
        error = BookingPlatformError(
            "An unexpected error occurred",
            error_code=ErrorCode.INTERNAL_ERROR,
            details={"error_type": type(exc).__name__} if self.debug else None
        )

        response_data = {
            "error": error.to_dict(),
            "error_id": error_id,
            "timestamp": self._get_timestamp()
        }

        if self.debug:
            response_data["debug"] = {
                "exception": str(exc),
                "traceback": traceback.format_exc()
            }

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=response_data
        )

    def _log_error(self, request: Request, exc: Exception, error_id: str) -> None:
        request_info = {
            "method": request.method,
            "url": str(request.url),
            "client_ip": request.client.host if request.client else None,
        }

        if isinstance(exc, (ValidationError, NotFoundError)):
            logger.warning(
                f"Client error [{error_id}]: {exc.message}",
                extra={"error_id": error_id, "error_code": exc.error_code.value, "request": request_info},
            )
        elif isinstance(exc, (ConcurrencyError, IdentifierExhaustedError, ExternalServiceError)):
            logger.error(
                f"Transient error [{error_id}]: {exc.message}",
                extra={"error_id": error_id, "error_code": exc.error_code.value, "request": request_info},
            )
        elif isinstance(exc, BookingPlatformError):
            logger.warning(
                f"Business error [{error_id}]: {exc.message}",
                extra={"error_id": error_id, "error_code": exc.error_code.value, "request": request_info},
            )
        else:
            logger.error(
                f"Unexpected error [{error_id}]: {exc}",
                extra={"error_id": error_id, "error_type": type(exc).__name__, "request": request_info},
                exc_info=exc,
            )

    @staticmethod
    def _get_timestamp() -> str:
        return datetime.now(timezone.utc).isoformat()
