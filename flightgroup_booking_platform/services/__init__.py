"""Business logic services for the flight-group booking platform."""

from .seat_ledger import SeatLedger
from .identifier_service import IdentifierService
from .status_machine import BookingStateMachine
from .booking_service import BookingService
from .expiry_service import ExpirySweeper, SweepReport

__all__ = [
    "SeatLedger",
    "IdentifierService",
    "BookingStateMachine",
    "BookingService",
    "ExpirySweeper",
    "SweepReport",
]
