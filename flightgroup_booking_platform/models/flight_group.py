"""
Flight group and seat bucket models.

A flight group is a block of seats on one flight sold to agencies. Its
inventory is split into seat buckets, one per passenger type.
"""

import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base
from ..utils.timeutils import ensure_utc


class FlightGroupStatus(enum.Enum):
    """Publication status of a flight group."""
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    CLOSED = "CLOSED"
    CANCELLED = "CANCELLED"


class ReservationCodeMode(enum.Enum):
    """How reservation codes are handed out for a flight group."""
    SHARED = "SHARED"
    PER_BOOKING = "PER_BOOKING"


class PassengerType(enum.Enum):
    """IATA passenger type codes."""
    ADT = "ADT"
    CHD = "CHD"
    INF = "INF"


class FlightGroup(Base):
    """Flight group offered to agencies."""

    __tablename__ = "flight_groups"

    carrier_code: Mapped[str] = mapped_column(String(3), nullable=False)
    flight_number: Mapped[str] = mapped_column(String(10), nullable=False)
    origin: Mapped[str] = mapped_column(String(3), nullable=False)
    destination: Mapped[str] = mapped_column(String(3), nullable=False)

    departure_time_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True
    )
    arrival_time_utc: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )

    # Sales window
    sales_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    sales_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    status: Mapped[FlightGroupStatus] = mapped_column(
        Enum(FlightGroupStatus),
        default=FlightGroupStatus.DRAFT,
        nullable=False,
        index=True
    )

    # Reservation code policy
    reservation_code_mode: Mapped[ReservationCodeMode] = mapped_column(
        Enum(ReservationCodeMode),
        default=ReservationCodeMode.PER_BOOKING,
        nullable=False
    )
    code_required_on_approval: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False
    )
    shared_reservation_code: Mapped[Optional[str]] = mapped_column(
        String(16),
        nullable=True,
        unique=True
    )

    # Relationships
    buckets: Mapped[List["SeatBucket"]] = relationship(
        "SeatBucket",
        back_populates="flight_group",
        cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("sales_start <= sales_end", name="ck_flight_groups_sales_window"),
    )

    @property
    def is_published(self) -> bool:
        """Check if the flight group is open for business."""
        return self.status == FlightGroupStatus.PUBLISHED

    def is_within_sales_window(self, moment: datetime) -> bool:
        """Check if the given moment falls inside the sales window."""
        return ensure_utc(self.sales_start) <= moment <= ensure_utc(self.sales_end)

    def has_departed(self, moment: datetime) -> bool:
        """Check if the flight left before the given moment."""
        return ensure_utc(self.departure_time_utc) < moment

    @property
    def flight_designator(self) -> str:
        return f"{self.carrier_code}{self.flight_number}"

    def __repr__(self) -> str:
        """String representation of the flight group."""
        return (
            f"<FlightGroup(id={self.id}, flight='{self.flight_designator}', "
            f"route={self.origin}-{self.destination}, status={self.status.value})>"
        )


class SeatBucket(Base):
    """Seat counters for one passenger type on one flight group."""

    __tablename__ = "seat_buckets"

    flight_group_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("flight_groups.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    passenger_type: Mapped[PassengerType] = mapped_column(
        Enum(PassengerType),
        nullable=False
    )

    # Seat counters, mutated only through the seat ledger
    total_seats: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    seats_on_hold: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    seats_issued: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Fare components per seat
    base_fare: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal('0.00')
    )
    tax_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal('0.00')
    )
    fee_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal('0.00')
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="PKR")

    flight_group: Mapped["FlightGroup"] = relationship("FlightGroup", back_populates="buckets")

    __table_args__ = (
        UniqueConstraint(
            "flight_group_id", "passenger_type",
            name="uq_seat_buckets_group_pax_type"
        ),
        CheckConstraint("total_seats >= 0", name="ck_seat_buckets_total_non_negative"),
        CheckConstraint("seats_on_hold >= 0", name="ck_seat_buckets_on_hold_non_negative"),
        CheckConstraint("seats_issued >= 0", name="ck_seat_buckets_issued_non_negative"),
        CheckConstraint(
            "seats_on_hold + seats_issued <= total_seats",
            name="ck_seat_buckets_conservation"
        ),
    )

    @property
    def available_seats(self) -> int:
        """Seats that can still be put on hold."""
        return self.total_seats - self.seats_on_hold - self.seats_issued

    @property
    def unit_price(self) -> Decimal:
        """All-in price of one seat."""
        return (self.base_fare or Decimal('0')) + (self.tax_amount or Decimal('0')) + (self.fee_amount or Decimal('0'))

    def __repr__(self) -> str:
        """String representation of the seat bucket."""
        return (
            f"<SeatBucket(id={self.id}, type={self.passenger_type.value}, "
            f"total={self.total_seats}, hold={self.seats_on_hold}, issued={self.seats_issued})>"
        )
