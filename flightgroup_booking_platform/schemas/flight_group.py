"""
Pydantic schemas for flight group inventory responses.
"""

from decimal import Decimal
from typing import List
from uuid import UUID

from pydantic import BaseModel

from ..models.flight_group import PassengerType


class BucketAvailabilityResponse(BaseModel):
    """Seat counters of one passenger type."""

    passenger_type: PassengerType
    total_seats: int
    seats_on_hold: int
    seats_issued: int
    available_seats: int
    unit_price: Decimal
    currency: str

    model_config = {"from_attributes": True}


class FlightGroupAvailabilityResponse(BaseModel):
    """Seat availability of a flight group."""

    flight_group_id: UUID
    total_available_seats: int
    buckets: List[BucketAvailabilityResponse]
