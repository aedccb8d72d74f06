"""
Booking request and passenger models.
"""

import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, TYPE_CHECKING

from sqlalchemy import CheckConstraint, DateTime, Enum, ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base
from .flight_group import PassengerType

if TYPE_CHECKING:
    from .flight_group import FlightGroup
    from .booking_history import BookingHistory


class BookingStatus(enum.Enum):
    """Lifecycle status of a booking request."""
    REQUESTED = "REQUESTED"
    APPROVED = "APPROVED"
    PAYMENT_PENDING = "PAYMENT_PENDING"
    PAID = "PAID"
    ISSUED = "ISSUED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class BookingRequest(Base):
    """An agency's request for seats on a flight group."""

    __tablename__ = "booking_requests"

    flight_group_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("flight_groups.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    # Requesting party
    agency_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    requested_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    # Passenger counts per type
    pax_adults: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    pax_children: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    pax_infants: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    status: Mapped[BookingStatus] = mapped_column(
        Enum(BookingStatus),
        default=BookingStatus.REQUESTED,
        nullable=False,
        index=True
    )

    # Deadlines enforced by the expiry sweep
    hold_expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        index=True
    )
    payment_deadline: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        index=True
    )

    # Shared-mode bookings carry their group's code, so this is not unique here.
    # Uniqueness lives in the reservation_codes registry.
    reservation_code: Mapped[Optional[str]] = mapped_column(String(16), nullable=True, index=True)

    # Quote
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal('0.00')
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="PKR")

    # Approval / rejection
    approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Payment
    payment_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    payment_proof_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    payment_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Issuance and closing
    issued_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    expired_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    remarks: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Relationships
    flight_group: Mapped["FlightGroup"] = relationship("FlightGroup")

    passengers: Mapped[List["Passenger"]] = relationship(
        "Passenger",
        back_populates="booking",
        cascade="all, delete-orphan",
        order_by="Passenger.sequence"
    )

    history: Mapped[List["BookingHistory"]] = relationship(
        "BookingHistory",
        back_populates="booking",
        cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("pax_adults >= 0", name="ck_booking_requests_adults_non_negative"),
        CheckConstraint("pax_children >= 0", name="ck_booking_requests_children_non_negative"),
        CheckConstraint("pax_infants >= 0", name="ck_booking_requests_infants_non_negative"),
        CheckConstraint(
            "pax_adults + pax_children + pax_infants >= 1",
            name="ck_booking_requests_pax_total_positive"
        ),
        CheckConstraint("total_amount >= 0", name="ck_booking_requests_total_non_negative"),
    )

    @property
    def total_passengers(self) -> int:
        return self.pax_adults + self.pax_children + self.pax_infants

    @property
    def pax_counts(self) -> Dict[PassengerType, int]:
        """Requested seat counts keyed by passenger type, zero counts omitted."""
        counts = {
            PassengerType.ADT: self.pax_adults,
            PassengerType.CHD: self.pax_children,
            PassengerType.INF: self.pax_infants,
        }
        return {pax_type: count for pax_type, count in counts.items() if count > 0}

    def __repr__(self) -> str:
        """String representation of the booking request."""
        return (
            f"<BookingRequest(id={self.id}, flight_group_id={self.flight_group_id}, "
            f"pax={self.total_passengers}, status={self.status.value})>"
        )


class Passenger(Base):
    """A traveller on a booking request."""

    __tablename__ = "passengers"

    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("booking_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    passenger_type: Mapped[PassengerType] = mapped_column(Enum(PassengerType), nullable=False)

    title: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    first_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Assigned on issuance
    reservation_code: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    ticket_number: Mapped[Optional[str]] = mapped_column(String(32), nullable=True, unique=True)

    booking: Mapped["BookingRequest"] = relationship("BookingRequest", back_populates="passengers")

    @property
    def full_name(self) -> Optional[str]:
        parts = [part for part in (self.title, self.first_name, self.last_name) if part]
        return " ".join(parts) if parts else None

    def __repr__(self) -> str:
        return (
            f"<Passenger(id={self.id}, booking_id={self.booking_id}, "
            f"type={self.passenger_type.value}, ticket={self.ticket_number})>"
        )
