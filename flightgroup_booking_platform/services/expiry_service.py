"""
Expiry sweep for time-driven booking transitions.

The sweep keeps no state between runs. Each run selects bookings whose hold,
payment deadline or flight is in the past and expires them one by one, each
in its own session and transaction, through the normal status machine path.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import get_settings
from ..models.booking import BookingRequest, BookingStatus
from ..models.flight_group import FlightGroup
from ..utils.auth import SYSTEM_ACTOR
from ..utils.exceptions import InvalidStatusTransitionError, ValidationError
from ..utils.logging_config import log_business_event
from ..utils.timeutils import utcnow
from .booking_service import BookingService
from .notification_service import NotificationPublisher

logger = logging.getLogger(__name__)

HOLD_EXPIRED = "hold_expired"
PAYMENT_DEADLINE_PASSED = "payment_deadline_passed"
FLIGHT_DEPARTED = "flight_departed"


@dataclass
class SweepReport:
    """Outcome of one sweep run."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    expired: Dict[str, int] = field(default_factory=lambda: {
        HOLD_EXPIRED: 0,
        PAYMENT_DEADLINE_PASSED: 0,
        FLIGHT_DEPARTED: 0,
    })
    skipped: int = 0
    failures: List[Dict[str, Any]] = field(default_factory=list)
    expired_booking_ids: List[UUID] = field(default_factory=list)

    @property
    def total_expired(self) -> int:
        return sum(self.expired.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "expired": dict(self.expired),
            "total_expired": self.total_expired,
            "skipped": self.skipped,
            "failed": len(self.failures),
            "failures": self.failures,
            "expired_booking_ids": [str(booking_id) for booking_id in self.expired_booking_ids],
        }


class ExpirySweeper:
    """Expire bookings whose time has run out."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: Optional[NotificationPublisher] = None,
        clock: Callable[[], datetime] = utcnow,
        batch_size: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.notifier = notifier
        self.clock = clock
        self.batch_size = batch_size or get_settings().expiry_sweep_batch_size

    async def run(self) -> SweepReport:
        """
        Run one sweep.

        Per-booking failures are logged and recorded in the report; they never
        stop the rest of the batch.
        """
        now = self.clock()
        report = SweepReport(started_at=now)
        logger.info("Starting booking expiry sweep")

        for category in (HOLD_EXPIRED, PAYMENT_DEADLINE_PASSED, FLIGHT_DEPARTED):
            booking_ids = await self._find_candidates(category, now)
            if booking_ids:
                logger.info(f"Found {len(booking_ids)} bookings to expire ({category})")
            for booking_id in booking_ids:
                await self._expire_one(booking_id, category, report)

        report.finished_at = self.clock()

        if report.total_expired or report.failures:
            log_business_event("expiry_sweep_completed", report.to_dict(), user_id=SYSTEM_ACTOR.label)
        logger.info(
            f"Expiry sweep finished: {report.total_expired} expired, "
            f"{report.skipped} skipped, {len(report.failures)} failed"
        )
        return report

    def _candidate_query(self, category: str, now: datetime):
        if category == HOLD_EXPIRED:
            query = select(BookingRequest.id).where(
                BookingRequest.status == BookingStatus.REQUESTED,
                BookingRequest.hold_expires_at.is_not(None),
                BookingRequest.hold_expires_at < now,
            ).order_by(BookingRequest.hold_expires_at)
        elif category == PAYMENT_DEADLINE_PASSED:
            query = select(BookingRequest.id).where(
                BookingRequest.status == BookingStatus.PAYMENT_PENDING,
                BookingRequest.payment_deadline.is_not(None),
                BookingRequest.payment_deadline < now,
            ).order_by(BookingRequest.payment_deadline)
        elif category == FLIGHT_DEPARTED:
            query = (
                select(BookingRequest.id)
                .join(FlightGroup, FlightGroup.id == BookingRequest.flight_group_id)
                .where(
                    BookingRequest.status == BookingStatus.ISSUED,
                    FlightGroup.departure_time_utc < now,
                )
                .order_by(FlightGroup.departure_time_utc)
            )
        else:
            raise ValueError(f"Unknown sweep category {category}")
        return query.limit(self.batch_size)

    async def _find_candidates(self, category: str, now: datetime) -> List[UUID]:
        async with self.session_factory() as session:
            result = await session.execute(self._candidate_query(category, now))
            return list(result.scalars().all())

    async def _expire_one(self, booking_id: UUID, category: str, report: SweepReport) -> None:
        async with self.session_factory() as session:
            service = BookingService(session, notifier=self.notifier, clock=self.clock)
            try:
                await service.expire_booking(booking_id, SYSTEM_ACTOR)
            except (InvalidStatusTransitionError, ValidationError) as e:
                # Someone else moved the booking between selection and lock
                report.skipped += 1
                logger.info(f"Skipped expiring booking {booking_id}: {e}")
                return
            except Exception as e:
                report.failures.append({
                    "booking_id": str(booking_id),
                    "category": category,
                    "error": str(e),
                    "error_type": type(e).__name__,
                })
                logger.error(f"Failed to expire booking {booking_id}: {e}", exc_info=True)
                return

        report.expired[category] += 1
        report.expired_booking_ids.append(booking_id)
        logger.info(f"Expired booking {booking_id} ({category})")
