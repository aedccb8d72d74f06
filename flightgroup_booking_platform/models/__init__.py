"""
Database models for the flight-group booking platform.
"""

from .base import Base
from .flight_group import FlightGroup, FlightGroupStatus, PassengerType, ReservationCodeMode, SeatBucket
from .booking import BookingRequest, BookingStatus, Passenger
from .booking_history import BookingHistory
from .reservation_code import ReservationCode

__all__ = [
    "Base",
    "FlightGroup",
    "FlightGroupStatus",
    "PassengerType",
    "ReservationCodeMode",
    "SeatBucket",
    "BookingRequest",
    "BookingStatus",
    "Passenger",
    "BookingHistory",
    "ReservationCode",
]
