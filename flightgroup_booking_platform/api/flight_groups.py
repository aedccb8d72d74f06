"""
FastAPI routes for flight group inventory.
"""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models.flight_group import FlightGroup
from ..schemas.flight_group import BucketAvailabilityResponse, FlightGroupAvailabilityResponse
from ..services.seat_ledger import SeatLedger
from ..utils.auth import Actor
from ..utils.dependencies import get_current_actor
from ..utils.exceptions import FlightGroupNotFoundError

router = APIRouter(prefix="/flight-groups", tags=["flight-groups"])


@router.get("/{flight_group_id}/availability", response_model=FlightGroupAvailabilityResponse)
async def get_availability(
    flight_group_id: UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Get seat counters per passenger type for a flight group."""
    flight_group = await db.get(FlightGroup, flight_group_id)
    if flight_group is None:
        raise FlightGroupNotFoundError(str(flight_group_id))

    availability = await SeatLedger(db).get_availability(flight_group_id)
    return FlightGroupAvailabilityResponse(
        flight_group_id=flight_group_id,
        total_available_seats=sum(bucket.available_seats for bucket in availability),
        buckets=[BucketAvailabilityResponse.model_validate(bucket) for bucket in availability],
    )
