"""API endpoints for the Flight-Group Booking Platform."""

from fastapi import APIRouter
from .admin import router as admin_router
from .bookings import router as bookings_router
from .flight_groups import router as flight_groups_router

# Create main API router
api_router = APIRouter(prefix="/api/v1")

# Include all routers
api_router.include_router(bookings_router)
api_router.include_router(flight_groups_router)
api_router.include_router(admin_router)

__all__ = ["api_router"]
