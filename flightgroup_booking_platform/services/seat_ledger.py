"""
Seat ledger: the only code allowed to change seat bucket counters.

Every operation is a single conditional UPDATE executed inside the caller's
transaction, so two concurrent holds on the same bucket are serialized by the
database and the loser sees post-commit counters.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Mapping
from uuid import UUID

from sqlalchemy import case, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.booking import BookingRequest, BookingStatus
from ..models.flight_group import PassengerType, SeatBucket
from ..utils.exceptions import (
    InsufficientAvailabilityError,
    InvariantViolationError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Deterministic lock and update order across passenger types
PASSENGER_TYPE_ORDER = (PassengerType.ADT, PassengerType.CHD, PassengerType.INF)

# Bookings whose seats are still counted in seats_on_hold
HOLDING_STATUSES = (
    BookingStatus.REQUESTED,
    BookingStatus.APPROVED,
    BookingStatus.PAYMENT_PENDING,
    BookingStatus.PAID,
)


@dataclass
class BucketAvailability:
    """Read-only snapshot of one seat bucket."""
    passenger_type: PassengerType
    total_seats: int
    seats_on_hold: int
    seats_issued: int
    available_seats: int
    unit_price: Decimal
    currency: str


def check_bucket_invariants(bucket: SeatBucket) -> None:
    """Raise if stored counters break conservation."""
    if bucket.total_seats < 0 or bucket.seats_on_hold < 0 or bucket.seats_issued < 0:
        raise InvariantViolationError(
            f"Seat bucket {bucket.id} has negative counters",
            details={"bucket_id": str(bucket.id)},
        )
    if bucket.seats_on_hold + bucket.seats_issued > bucket.total_seats:
        raise InvariantViolationError(
            f"Seat bucket {bucket.id} is overcommitted: "
            f"{bucket.seats_on_hold} held + {bucket.seats_issued} issued > {bucket.total_seats}",
            details={
                "bucket_id": str(bucket.id),
                "total_seats": bucket.total_seats,
                "seats_on_hold": bucket.seats_on_hold,
                "seats_issued": bucket.seats_issued,
            },
        )


def _validate_count(n: int) -> int:
    if n < 0:
        raise ValidationError(
            "Seat count must not be negative",
            field_errors={"count": [f"got {n}"]},
        )
    return n


class SeatLedger:
    """Hold, release and issue seats against seat buckets."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def hold(self, bucket: SeatBucket, n: int) -> SeatBucket:
        """
        Put ``n`` seats on hold.

        Raises:
            InsufficientAvailabilityError: If fewer than ``n`` seats are free
        """
        if _validate_count(n) == 0:
            return bucket

        available = SeatBucket.total_seats - SeatBucket.seats_on_hold - SeatBucket.seats_issued
        stmt = (
            update(SeatBucket)
            .where(SeatBucket.id == bucket.id, available >= n)
            .values(seats_on_hold=SeatBucket.seats_on_hold + n)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        await self.session.refresh(bucket)

        if result.rowcount == 0:
            logger.info(
                f"Hold of {n} {bucket.passenger_type.value} seats rejected on bucket {bucket.id}: "
                f"{bucket.available_seats} available"
            )
            raise InsufficientAvailabilityError(
                bucket.passenger_type.value,
                requested=n,
                available=bucket.available_seats,
                flight_group_id=bucket.flight_group_id,
            )

        logger.debug(f"Held {n} seats on bucket {bucket.id}")
        return bucket

    async def release(self, bucket: SeatBucket, n: int) -> SeatBucket:
        """Take up to ``n`` seats off hold; the counter never goes negative."""
        if _validate_count(n) == 0:
            return bucket

        stmt = (
            update(SeatBucket)
            .where(SeatBucket.id == bucket.id)
            .values(
                seats_on_hold=case(
                    (SeatBucket.seats_on_hold >= n, SeatBucket.seats_on_hold - n),
                    else_=0,
                )
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)
        await self.session.refresh(bucket)

        logger.debug(f"Released up to {n} seats on bucket {bucket.id}")
        return bucket

    async def issue(self, bucket: SeatBucket, n: int) -> SeatBucket:
        """
        Move ``n`` seats from held to issued.

        Held seats are consumed first; any shortfall must fit in free capacity.

        Raises:
            InsufficientAvailabilityError: If issuing would exceed the bucket total
        """
        if _validate_count(n) == 0:
            return bucket

        stmt = (
            update(SeatBucket)
            .where(
                SeatBucket.id == bucket.id,
                or_(
                    SeatBucket.seats_on_hold >= n,
                    SeatBucket.seats_issued + n <= SeatBucket.total_seats,
                ),
            )
            .values(
                seats_on_hold=case(
                    (SeatBucket.seats_on_hold >= n, SeatBucket.seats_on_hold - n),
                    else_=0,
                ),
                seats_issued=SeatBucket.seats_issued + n,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        await self.session.refresh(bucket)

        if result.rowcount == 0:
            raise InsufficientAvailabilityError(
                bucket.passenger_type.value,
                requested=n,
                available=bucket.seats_on_hold + bucket.available_seats,
                flight_group_id=bucket.flight_group_id,
            )

        logger.debug(f"Issued {n} seats on bucket {bucket.id}")
        return bucket

    async def lock_buckets(self, flight_group_id: UUID) -> Dict[PassengerType, SeatBucket]:
        """Load and row-lock every bucket of a flight group, freshly read."""
        stmt = (
            select(SeatBucket)
            .where(SeatBucket.flight_group_id == flight_group_id)
            .order_by(SeatBucket.passenger_type)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return {bucket.passenger_type: bucket for bucket in result.scalars().all()}

    async def hold_for_booking(
        self,
        buckets: Mapping[PassengerType, SeatBucket],
        counts: Mapping[PassengerType, int],
    ) -> None:
        for pax_type, bucket, count in self._pair(buckets, counts):
            await self.hold(bucket, count)

    async def release_for_booking(
        self,
        buckets: Mapping[PassengerType, SeatBucket],
        counts: Mapping[PassengerType, int],
    ) -> None:
        for pax_type, bucket, count in self._pair(buckets, counts):
            await self.release(bucket, count)

    async def issue_for_booking(
        self,
        buckets: Mapping[PassengerType, SeatBucket],
        counts: Mapping[PassengerType, int],
    ) -> None:
        for pax_type, bucket, count in self._pair(buckets, counts):
            await self.issue(bucket, count)

    def _pair(self, buckets, counts):
        """Match per-type counts with their buckets in a stable order."""
        pairs = []
        for pax_type in PASSENGER_TYPE_ORDER:
            count = counts.get(pax_type, 0)
            if count == 0:
                continue
            bucket = buckets.get(pax_type)
            if bucket is None:
                raise ValidationError(
                    f"Flight group has no {pax_type.value} inventory",
                    field_errors={pax_type.value: ["no seat bucket for this passenger type"]},
                )
            pairs.append((pax_type, bucket, count))
        return pairs

    async def get_availability(self, flight_group_id: UUID) -> List[BucketAvailability]:
        """Snapshot of all buckets for a flight group, without locking."""
        stmt = (
            select(SeatBucket)
            .where(SeatBucket.flight_group_id == flight_group_id)
            .order_by(SeatBucket.passenger_type)
        )
        result = await self.session.execute(stmt)
        return [
            BucketAvailability(
                passenger_type=bucket.passenger_type,
                total_seats=bucket.total_seats,
                seats_on_hold=bucket.seats_on_hold,
                seats_issued=bucket.seats_issued,
                available_seats=bucket.available_seats,
                unit_price=bucket.unit_price,
                currency=bucket.currency,
            )
            for bucket in result.scalars().all()
        ]

    async def held_by_bookings(self, flight_group_id: UUID) -> Dict[PassengerType, int]:
        """Seats held by non-terminal bookings, summed per passenger type."""
        stmt = select(
            func.coalesce(func.sum(BookingRequest.pax_adults), 0),
            func.coalesce(func.sum(BookingRequest.pax_children), 0),
            func.coalesce(func.sum(BookingRequest.pax_infants), 0),
        ).where(
            BookingRequest.flight_group_id == flight_group_id,
            BookingRequest.status.in_(HOLDING_STATUSES),
        )
        adults, children, infants = (await self.session.execute(stmt)).one()
        return {
            PassengerType.ADT: int(adults),
            PassengerType.CHD: int(children),
            PassengerType.INF: int(infants),
        }
