"""
Registry of issued reservation codes.
"""

import uuid
from typing import Optional

from sqlalchemy import CheckConstraint, ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class ReservationCode(Base):
    """
    A claimed reservation code (PNR).

    The UNIQUE constraint on ``code`` is what makes assignment collision-safe:
    a code belongs either to a flight group (shared mode) or to a single
    booking (per-booking mode), never to two owners.
    """

    __tablename__ = "reservation_codes"

    code: Mapped[str] = mapped_column(String(16), nullable=False, unique=True)

    flight_group_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("flight_groups.id", ondelete="CASCADE"),
        nullable=True,
        index=True
    )
    booking_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("booking_requests.id", ondelete="CASCADE"),
        nullable=True,
        index=True
    )

    __table_args__ = (
        CheckConstraint(
            "(flight_group_id IS NULL) <> (booking_id IS NULL)",
            name="ck_reservation_codes_single_owner"
        ),
    )

    def __repr__(self) -> str:
        owner = f"flight_group={self.flight_group_id}" if self.flight_group_id else f"booking={self.booking_id}"
        return f"<ReservationCode(code='{self.code}', {owner})>"
