"""
Pydantic schemas for booking-related API requests and responses.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from ..models.booking import BookingStatus
from ..models.flight_group import PassengerType


class PassengerDetail(BaseModel):
    """Traveller details supplied with a booking request."""

    passenger_type: PassengerType = Field(PassengerType.ADT, description="IATA passenger type")
    title: Optional[str] = Field(None, max_length=10)
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)


class BookingCreateRequest(BaseModel):
    """Schema for creating a new booking request."""

    flight_group_id: UUID = Field(..., description="ID of the flight group to book on")
    adults: int = Field(0, ge=0, description="Number of adult seats")
    children: int = Field(0, ge=0, description="Number of child seats")
    infants: int = Field(0, ge=0, description="Number of infant seats")
    hold_hours: Optional[int] = Field(None, ge=1, description="Requested hold duration in hours")
    passengers: Optional[List[PassengerDetail]] = Field(None, description="Optional traveller details")
    remarks: Optional[str] = Field(None, max_length=1000)

    @model_validator(mode="after")
    def validate_passenger_total(self):
        """At least one seat must be requested."""
        if self.adults + self.children + self.infants < 1:
            raise ValueError("At least one passenger is required")
        return self


class BookingApproveRequest(BaseModel):
    """Schema for approving a booking."""

    remarks: Optional[str] = Field(None, max_length=1000)


class BookingRejectRequest(BaseModel):
    """Schema for rejecting a booking."""

    reason: str = Field(..., min_length=1, max_length=500, description="Why the booking is rejected")


class PaymentRequest(BaseModel):
    """Schema for requesting payment from the agency."""

    payment_deadline: Optional[datetime] = Field(None, description="Deadline for payment, defaults to the payment window")


class MarkPaidRequest(BaseModel):
    """Schema for recording a payment."""

    payment_proof_url: str = Field(..., min_length=1, max_length=500, description="Link to the payment proof")
    payment_reference: Optional[str] = Field(None, max_length=100)
    payment_amount: Optional[Decimal] = Field(None, ge=0)


class BookingRemarksUpdate(BaseModel):
    """Schema for editing a booking's remarks. ``null`` clears them."""

    remarks: Optional[str] = Field(None, max_length=1000)


class BookingCancelRequest(BaseModel):
    """Schema for cancelling a booking."""

    reason: Optional[str] = Field(None, max_length=500, description="Optional cancellation reason")
    refund_initiated: bool = Field(False, description="Required when cancelling a paid booking")


class PassengerResponse(BaseModel):
    """Schema for passenger information in responses."""

    id: UUID
    sequence: int
    passenger_type: PassengerType
    title: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    reservation_code: Optional[str] = None
    ticket_number: Optional[str] = None

    model_config = {"from_attributes": True}


class BookingResponse(BaseModel):
    """Schema for booking responses."""

    id: UUID
    flight_group_id: UUID
    agency_id: UUID
    requested_by: UUID
    pax_adults: int
    pax_children: int
    pax_infants: int
    status: BookingStatus
    hold_expires_at: Optional[datetime] = None
    payment_deadline: Optional[datetime] = None
    reservation_code: Optional[str] = None
    total_amount: Decimal
    currency: str
    approved_by: Optional[UUID] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    payment_reference: Optional[str] = None
    payment_proof_url: Optional[str] = None
    payment_amount: Optional[Decimal] = None
    paid_at: Optional[datetime] = None
    issued_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    remarks: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    passengers: List[PassengerResponse] = []

    model_config = {"from_attributes": True}


class BookingListResponse(BaseModel):
    """Schema for booking list responses."""

    bookings: List[BookingResponse]
    total: int
    limit: int
    offset: int


class BookingHistoryResponse(BaseModel):
    """Schema for booking history entries."""

    id: UUID
    booking_id: UUID
    from_status: Optional[BookingStatus] = None
    to_status: BookingStatus
    details: Optional[str] = None
    performed_by: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class BookingHistoryListResponse(BaseModel):
    """Schema for booking history list responses."""

    history: List[BookingHistoryResponse]
    total: int


class AllowedTransitionsResponse(BaseModel):
    """Statuses a booking may move to next."""

    booking_id: UUID
    status: BookingStatus
    is_terminal: bool
    allowed_transitions: List[BookingStatus]
