"""
BookingHistory model for tracking booking audit trail.
"""

import uuid
from typing import Optional, TYPE_CHECKING

from sqlalchemy import Enum, ForeignKey, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base
from .booking import BookingStatus

if TYPE_CHECKING:
    from .booking import BookingRequest


class BookingHistory(Base):
    """One row per status change of a booking request."""

    __tablename__ = "booking_history"

    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("booking_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Null for the creation entry
    from_status: Mapped[Optional[BookingStatus]] = mapped_column(
        Enum(BookingStatus),
        nullable=True
    )
    to_status: Mapped[BookingStatus] = mapped_column(
        Enum(BookingStatus),
        nullable=False,
        index=True
    )

    details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # User id, or "system" for automated transitions
    performed_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    booking: Mapped["BookingRequest"] = relationship("BookingRequest", back_populates="history")

    def __repr__(self) -> str:
        """String representation of the booking history entry."""
        source = self.from_status.value if self.from_status else None
        return (
            f"<BookingHistory(id={self.id}, booking_id={self.booking_id}, "
            f"{source} -> {self.to_status.value})>"
        )
