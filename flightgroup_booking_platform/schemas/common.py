"""
Common schemas for API responses and error handling.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    """Schema for detailed error information."""

    error_code: str = Field(..., description="Error code for programmatic handling")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error context")
    suggestions: Optional[List[str]] = Field(None, description="Helpful suggestions for resolving the error")


class ErrorResponse(BaseModel):
    """Schema for API error responses."""

    error: ErrorDetail
    error_id: Optional[str] = None
    timestamp: Optional[datetime] = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "error": {
                        "error_code": "INSUFFICIENT_AVAILABILITY",
                        "message": "Only 2 ADT seats available, 5 requested",
                        "details": {
                            "passenger_type": "ADT",
                            "requested": 5,
                            "available": 2
                        },
                        "suggestions": [
                            "Request fewer seats",
                            "Try another flight group"
                        ]
                    }
                },
                {
                    "error": {
                        "error_code": "INVALID_STATUS_TRANSITION",
                        "message": "Cannot move booking from ISSUED to CANCELLED",
                        "details": {
                            "current_status": "ISSUED",
                            "target_status": "CANCELLED"
                        }
                    }
                }
            ]
        }
    }


class SuccessResponse(BaseModel):
    """Schema for simple success responses."""

    message: str = Field(..., description="Success message")
    data: Optional[Dict[str, Any]] = Field(None, description="Additional response data")


class SweepReportResponse(BaseModel):
    """Outcome of an expiry sweep run."""

    started_at: datetime
    finished_at: Optional[datetime] = None
    expired: Dict[str, int]
    total_expired: int
    skipped: int
    failed: int
    failures: List[Dict[str, Any]] = []
    expired_booking_ids: List[UUID] = []
