"""
Booking orchestrator.

Each public operation is one unit of work: lock the booking and its seat
buckets, re-check invariants against what was just read, hand the change to
the status machine, commit, and only then publish notifications.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..config import get_settings
from ..models.booking import BookingRequest, BookingStatus, Passenger
from ..models.booking_history import BookingHistory
from ..models.flight_group import FlightGroup, PassengerType, SeatBucket
from ..utils.auth import Actor, ActorRole, SYSTEM_ACTOR
from ..utils.exceptions import (
    AuthorizationError,
    BookingNotFoundError,
    ConcurrencyError,
    FlightGroupNotFoundError,
    InvariantViolationError,
    ValidationError,
)
from ..utils.logging_config import log_business_event
from ..utils.retry import is_concurrency_conflict, retry_on_concurrency_error
from ..utils.timeutils import ensure_utc, utcnow
from .identifier_service import CodeGenerator, IdentifierService, TicketNumberGenerator
from .notification_service import BookingEvent, CeleryNotificationPublisher, NotificationPublisher
from .seat_ledger import SeatLedger, check_bucket_invariants
from .status_machine import BookingStateMachine, TransitionContext, TransitionResult, allowed_transitions, is_terminal

logger = logging.getLogger(__name__)


def check_booking_invariants(booking: BookingRequest) -> None:
    """Raise if a freshly loaded booking is internally inconsistent."""
    counts = (booking.pax_adults, booking.pax_children, booking.pax_infants)
    if any(count < 0 for count in counts) or sum(counts) < 1:
        raise InvariantViolationError(
            f"Booking {booking.id} has invalid passenger counts {counts}",
            details={"booking_id": str(booking.id)},
        )

    per_type: Dict[PassengerType, int] = {}
    for passenger in booking.passengers:
        per_type[passenger.passenger_type] = per_type.get(passenger.passenger_type, 0) + 1
    if per_type != booking.pax_counts:
        raise InvariantViolationError(
            f"Booking {booking.id} passenger rows do not match its seat counts",
            details={"booking_id": str(booking.id)},
        )

    if booking.status == BookingStatus.ISSUED:
        if not booking.reservation_code or any(p.ticket_number is None for p in booking.passengers):
            raise InvariantViolationError(
                f"Issued booking {booking.id} is missing identifiers",
                details={"booking_id": str(booking.id)},
            )


class BookingService:
    """Service for the booking request lifecycle."""

    def __init__(
        self,
        session: AsyncSession,
        notifier: Optional[NotificationPublisher] = None,
        code_generator: Optional[CodeGenerator] = None,
        ticket_number_generator: Optional[TicketNumberGenerator] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.settings = get_settings()
        self.notifier = notifier or CeleryNotificationPublisher()
        self.clock = clock
        self.ledger = SeatLedger(session)
        self.identifiers = IdentifierService(
            session,
            code_generator=code_generator,
            ticket_number_generator=ticket_number_generator,
        )
        self.machine = BookingStateMachine(session, self.ledger, self.identifiers)

    @retry_on_concurrency_error(max_attempts=3, base_delay=0.1, max_delay=1.0)
    async def create_booking(
        self,
        actor: Actor,
        flight_group_id: UUID,
        adults: int = 0,
        children: int = 0,
        infants: int = 0,
        hold_hours: Optional[int] = None,
        passengers: Optional[Sequence[Mapping]] = None,
        remarks: Optional[str] = None,
    ) -> BookingRequest:
        """
        Create a booking request and put its seats on hold.

        Args:
            actor: Agent (or admin) making the request
            flight_group_id: Flight group to book on
            adults, children, infants: Seats requested per passenger type
            hold_hours: Requested hold duration, clamped to the configured range
            passengers: Optional traveller details, one mapping per seat
            remarks: Free-text remarks

        Returns:
            The booking in REQUESTED status

        Raises:
            FlightGroupNotFoundError: When the flight group does not exist
            ValidationError: When the request breaks a booking rule
            InsufficientAvailabilityError: When a bucket lacks free seats
        """
        logger.info(
            f"Creating booking on flight group {flight_group_id} for agency {actor.agency_id}: "
            f"{adults} ADT, {children} CHD, {infants} INF"
        )

        if actor.role not in (ActorRole.AGENT, ActorRole.ADMIN):
            raise AuthorizationError("Only agents and admins can request bookings", required_role="AGENT")
        if actor.agency_id is None:
            raise ValidationError("Booking requests must be made on behalf of an agency")

        counts = self._validate_counts(adults, children, infants)
        passenger_rows = self._build_passengers(counts, passengers)
        now = self.clock()
        events: List[BookingEvent] = []

        async with self._unit_of_work():
            flight_group = await self._get_flight_group(flight_group_id)
            self._validate_flight_group_open(flight_group, now)

            buckets = await self.ledger.lock_buckets(flight_group.id)
            for bucket in buckets.values():
                check_bucket_invariants(bucket)

            total_amount, currency = self._quote(buckets, counts)

            booking = BookingRequest(
                flight_group_id=flight_group.id,
                agency_id=actor.agency_id,
                requested_by=actor.user_id,
                pax_adults=adults,
                pax_children=children,
                pax_infants=infants,
                status=BookingStatus.REQUESTED,
                hold_expires_at=now + timedelta(hours=self._clamp_hold_hours(hold_hours)),
                total_amount=total_amount,
                currency=currency,
                remarks=remarks,
                passengers=passenger_rows,
                flight_group=flight_group,
            )
            self.session.add(booking)
            await self.session.flush()

            await self.machine.open(booking, buckets, TransitionContext(actor=actor, now=now))
            events.append(self._event("booking.requested", booking, None))

        self.notifier.publish_all(events)
        logger.info(f"Booking {booking.id} created, hold expires at {booking.hold_expires_at}")
        return booking

    @retry_on_concurrency_error(max_attempts=3, base_delay=0.1, max_delay=1.0)
    async def approve_booking(self, booking_id: UUID, actor: Actor, remarks: Optional[str] = None) -> BookingRequest:
        """Approve a requested booking, assigning a reservation code when the group requires one."""
        return await self._transition(
            booking_id,
            BookingStatus.APPROVED,
            TransitionContext(actor=actor, now=self.clock(), remarks=remarks),
        )

    @retry_on_concurrency_error(max_attempts=3, base_delay=0.1, max_delay=1.0)
    async def reject_booking(self, booking_id: UUID, actor: Actor, reason: str) -> BookingRequest:
        """Reject a booking and release its held seats."""
        return await self._transition(
            booking_id,
            BookingStatus.REJECTED,
            TransitionContext(actor=actor, now=self.clock(), reason=reason),
        )

    @retry_on_concurrency_error(max_attempts=3, base_delay=0.1, max_delay=1.0)
    async def request_payment(
        self,
        booking_id: UUID,
        actor: Actor,
        payment_deadline: Optional[datetime] = None,
    ) -> BookingRequest:
        """Ask the agency to pay by ``payment_deadline`` (default: the configured payment window)."""
        return await self._transition(
            booking_id,
            BookingStatus.PAYMENT_PENDING,
            TransitionContext(actor=actor, now=self.clock(), payment_deadline=payment_deadline),
        )

    @retry_on_concurrency_error(max_attempts=3, base_delay=0.1, max_delay=1.0)
    async def mark_paid(
        self,
        booking_id: UUID,
        actor: Actor,
        payment_proof_url: Optional[str] = None,
        payment_reference: Optional[str] = None,
        payment_amount: Optional[Decimal] = None,
    ) -> BookingRequest:
        """
        Record payment for a booking.

        An APPROVED booking is first moved to PAYMENT_PENDING in the same
        unit of work, so payment can be confirmed without a separate request.
        """
        ctx = TransitionContext(
            actor=actor,
            now=self.clock(),
            payment_proof_url=payment_proof_url,
            payment_reference=payment_reference,
            payment_amount=payment_amount,
        )

        events: List[BookingEvent] = []
        async with self._unit_of_work():
            booking, flight_group, buckets = await self._load_for_update(booking_id)

            if booking.status == BookingStatus.APPROVED:
                result = await self.machine.transition(
                    booking, flight_group, buckets, BookingStatus.PAYMENT_PENDING,
                    TransitionContext(actor=actor, now=ctx.now),
                )
                events.append(self._event_for(result, ctx))

            result = await self.machine.transition(booking, flight_group, buckets, BookingStatus.PAID, ctx)
            events.append(self._event_for(result, ctx))

        self.notifier.publish_all(events)
        return booking

    @retry_on_concurrency_error(max_attempts=3, base_delay=0.1, max_delay=1.0)
    async def issue_tickets(self, booking_id: UUID, actor: Actor) -> BookingRequest:
        """Issue a paid booking: seats move from held to issued and every passenger gets a ticket."""
        return await self._transition(
            booking_id,
            BookingStatus.ISSUED,
            TransitionContext(actor=actor, now=self.clock()),
        )

    @retry_on_concurrency_error(max_attempts=3, base_delay=0.1, max_delay=1.0)
    async def cancel_booking(
        self,
        booking_id: UUID,
        actor: Actor,
        reason: Optional[str] = None,
        refund_initiated: bool = False,
    ) -> BookingRequest:
        """Cancel a booking that has not been issued; held seats go back to inventory."""
        return await self._transition(
            booking_id,
            BookingStatus.CANCELLED,
            TransitionContext(actor=actor, now=self.clock(), reason=reason, refund_initiated=refund_initiated),
        )

    @retry_on_concurrency_error(max_attempts=3, base_delay=0.1, max_delay=1.0)
    async def expire_booking(self, booking_id: UUID, actor: Actor = SYSTEM_ACTOR) -> BookingRequest:
        """Expire a booking whose hold, payment deadline or flight has passed."""
        return await self._transition(
            booking_id,
            BookingStatus.EXPIRED,
            TransitionContext(actor=actor, now=self.clock()),
        )

    @retry_on_concurrency_error(max_attempts=3, base_delay=0.1, max_delay=1.0)
    async def update_remarks(self, booking_id: UUID, actor: Actor, remarks: Optional[str]) -> BookingRequest:
        """
        Replace the free-text remarks of a booking that is still in progress.

        Status never changes here; the edit is recorded in the booking history.

        Raises:
            AuthorizationError: For the system actor or another agency's agent
            ValidationError: When the booking is already closed
        """
        remarks = (remarks or "").strip() or None
        if actor.role == ActorRole.SYSTEM:
            raise AuthorizationError("The system actor may not edit bookings", required_role="ADMIN or AGENT")

        async with self._unit_of_work():
            booking, _, _ = await self._load_for_update(booking_id)
            if actor.role == ActorRole.AGENT and booking.agency_id != actor.agency_id:
                raise AuthorizationError("Agents may only act on their own agency's bookings")
            if is_terminal(booking.status):
                raise ValidationError(
                    f"Booking {booking.id} is {booking.status.value}; its remarks can no longer change"
                )

            booking.remarks = remarks
            self.session.add(
                BookingHistory(
                    booking_id=booking.id,
                    from_status=booking.status,
                    to_status=booking.status,
                    details="Remarks updated" if remarks else "Remarks cleared",
                    performed_by=actor.label,
                )
            )

        logger.info(f"Remarks of booking {booking.id} updated by {actor.label}")
        log_business_event(
            "booking_remarks_updated",
            {"booking_id": str(booking.id), "status": booking.status.value},
            user_id=actor.label,
        )
        return booking

    async def get_booking(self, booking_id: UUID, actor: Actor) -> BookingRequest:
        """
        Get a booking with its passengers.

        Raises:
            BookingNotFoundError: When the booking does not exist or is not visible to the actor
        """
        async with self.session.begin():
            booking = await self._get_booking(booking_id)
        self._ensure_visible(booking, actor)
        return booking

    async def get_booking_history(self, booking_id: UUID, actor: Actor) -> List[BookingHistory]:
        """Get the audit trail of a booking, oldest first."""
        async with self.session.begin():
            booking = await self._get_booking(booking_id)
            self._ensure_visible(booking, actor)
            result = await self.session.execute(
                select(BookingHistory)
                .where(BookingHistory.booking_id == booking_id)
                .order_by(BookingHistory.created_at.asc())
            )
            return list(result.scalars().all())

    async def get_allowed_transitions(self, booking_id: UUID, actor: Actor) -> Tuple[BookingRequest, List[BookingStatus]]:
        booking = await self.get_booking(booking_id, actor)
        return booking, sorted(allowed_transitions(booking.status), key=lambda status: status.value)

    async def list_agency_bookings(
        self,
        actor: Actor,
        agency_id: Optional[UUID] = None,
        status: Optional[BookingStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[BookingRequest]:
        """
        List bookings of an agency, newest first.

        Agents always see their own agency; admins may pass any ``agency_id``
        or none to list everything.
        """
        query = (
            select(BookingRequest)
            .where(*self._listing_filters(actor, agency_id, status))
            .options(selectinload(BookingRequest.passengers))
            .order_by(BookingRequest.created_at.desc())
            .limit(limit)
            .offset(offset)
        )

        async with self.session.begin():
            result = await self.session.execute(query)
            return list(result.scalars().all())

    async def count_agency_bookings(
        self,
        actor: Actor,
        agency_id: Optional[UUID] = None,
        status: Optional[BookingStatus] = None,
    ) -> int:
        """Count the bookings ``list_agency_bookings`` would page through."""
        query = (
            select(func.count(BookingRequest.id))
            .where(*self._listing_filters(actor, agency_id, status))
        )

        async with self.session.begin():
            return (await self.session.execute(query)).scalar_one()

    @staticmethod
    def _listing_filters(actor: Actor, agency_id: Optional[UUID], status: Optional[BookingStatus]) -> list:
        if actor.role == ActorRole.AGENT:
            agency_id = actor.agency_id

        filters = []
        if agency_id is not None:
            filters.append(BookingRequest.agency_id == agency_id)
        if status is not None:
            filters.append(BookingRequest.status == status)
        return filters

    async def _transition(self, booking_id: UUID, target: BookingStatus, ctx: TransitionContext) -> BookingRequest:
        events: List[BookingEvent] = []

        async with self._unit_of_work():
            booking, flight_group, buckets = await self._load_for_update(booking_id)
            result = await self.machine.transition(booking, flight_group, buckets, target, ctx)
            events.append(self._event_for(result, ctx))

        self.notifier.publish_all(events)
        return booking

    @asynccontextmanager
    async def _unit_of_work(self):
        """
        ``session.begin()`` that reports lock conflicts as ConcurrencyError.

        The whole transaction rolls back on any exception, so a failed
        operation never leaves a partially applied transition behind.
        """
        try:
            async with self.session.begin():
                yield
        except DBAPIError as e:
            if is_concurrency_conflict(e):
                logger.warning(f"Concurrency conflict in unit of work: {e}")
                raise ConcurrencyError("Booking was modified by another transaction. Please try again.") from e
            raise

    async def _load_for_update(
        self, booking_id: UUID
    ) -> Tuple[BookingRequest, FlightGroup, Dict[PassengerType, SeatBucket]]:
        """Lock the booking and its buckets, then re-check invariants on what was read."""
        stmt = (
            select(BookingRequest)
            .where(BookingRequest.id == booking_id)
            .options(
                selectinload(BookingRequest.passengers),
                selectinload(BookingRequest.flight_group),
            )
            .with_for_update(of=BookingRequest)
            .execution_options(populate_existing=True)
        )
        booking = (await self.session.execute(stmt)).scalar_one_or_none()
        if booking is None:
            raise BookingNotFoundError(str(booking_id))

        buckets = await self.ledger.lock_buckets(booking.flight_group_id)

        check_booking_invariants(booking)
        for bucket in buckets.values():
            check_bucket_invariants(bucket)

        return booking, booking.flight_group, buckets

    async def _get_booking(self, booking_id: UUID) -> BookingRequest:
        result = await self.session.execute(
            select(BookingRequest)
            .where(BookingRequest.id == booking_id)
            .options(selectinload(BookingRequest.passengers))
        )
        booking = result.scalar_one_or_none()
        if booking is None:
            raise BookingNotFoundError(str(booking_id))
        return booking

    async def _get_flight_group(self, flight_group_id: UUID) -> FlightGroup:
        flight_group = await self.session.get(FlightGroup, flight_group_id, populate_existing=True)
        if flight_group is None:
            raise FlightGroupNotFoundError(str(flight_group_id))
        return flight_group

    @staticmethod
    def _ensure_visible(booking: BookingRequest, actor: Actor) -> None:
        # Agents never learn whether another agency's booking exists
        if actor.role == ActorRole.AGENT and booking.agency_id != actor.agency_id:
            raise BookingNotFoundError(str(booking.id))

    def _validate_counts(self, adults: int, children: int, infants: int) -> Dict[PassengerType, int]:
        field_errors = {
            name: ["must not be negative"]
            for name, value in (("adults", adults), ("children", children), ("infants", infants))
            if value < 0
        }
        if field_errors:
            raise ValidationError("Passenger counts must not be negative", field_errors=field_errors)

        total = adults + children + infants
        if total < 1:
            raise ValidationError("At least one passenger is required")
        if total > self.settings.max_passengers_per_booking:
            raise ValidationError(
                f"A booking may hold at most {self.settings.max_passengers_per_booking} passengers",
                field_errors={"passengers": [f"requested {total}"]},
            )
        return {
            PassengerType.ADT: adults,
            PassengerType.CHD: children,
            PassengerType.INF: infants,
        }

    @staticmethod
    def _build_passengers(
        counts: Dict[PassengerType, int],
        details: Optional[Sequence[Mapping]],
    ) -> List[Passenger]:
        """One passenger row per seat; names are optional until ticketing."""
        details = list(details or [])
        by_type: Dict[PassengerType, List[Mapping]] = {pax_type: [] for pax_type in counts}

        for entry in details:
            pax_type = PassengerType(entry.get("passenger_type", PassengerType.ADT.value))
            by_type.setdefault(pax_type, []).append(entry)

        for pax_type, entries in by_type.items():
            if details and len(entries) > counts.get(pax_type, 0):
                raise ValidationError(
                    f"More {pax_type.value} passenger details than requested seats",
                    field_errors={"passengers": [f"{len(entries)} {pax_type.value} entries for {counts.get(pax_type, 0)} seats"]},
                )

        passengers = []
        sequence = 0
        for pax_type, count in counts.items():
            entries = by_type.get(pax_type, [])
            for index in range(count):
                entry = entries[index] if index < len(entries) else {}
                sequence += 1
                passengers.append(
                    Passenger(
                        sequence=sequence,
                        passenger_type=pax_type,
                        title=entry.get("title"),
                        first_name=entry.get("first_name"),
                        last_name=entry.get("last_name"),
                    )
                )
        return passengers

    @staticmethod
    def _validate_flight_group_open(flight_group: FlightGroup, now: datetime) -> None:
        if not flight_group.is_published:
            raise ValidationError(
                f"Flight group {flight_group.id} is {flight_group.status.value}, not open for booking"
            )
        if not flight_group.is_within_sales_window(now):
            raise ValidationError(
                f"Flight group {flight_group.id} is outside its sales window",
                details={
                    "sales_start": ensure_utc(flight_group.sales_start).isoformat(),
                    "sales_end": ensure_utc(flight_group.sales_end).isoformat(),
                },
            )

    def _clamp_hold_hours(self, hold_hours: Optional[int]) -> int:
        if hold_hours is None:
            hold_hours = self.settings.default_hold_hours
        return max(self.settings.min_hold_hours, min(self.settings.max_hold_hours, hold_hours))

    @staticmethod
    def _quote(
        buckets: Mapping[PassengerType, SeatBucket],
        counts: Mapping[PassengerType, int],
    ) -> Tuple[Decimal, str]:
        total = Decimal("0.00")
        currency = None
        for pax_type, count in counts.items():
            if count == 0:
                continue
            bucket = buckets.get(pax_type)
            if bucket is None:
                raise ValidationError(
                    f"Flight group has no {pax_type.value} inventory",
                    field_errors={pax_type.value: ["no seat bucket for this passenger type"]},
                )
            if currency is not None and bucket.currency != currency:
                raise ValidationError("Seat buckets of a flight group must share one currency")
            currency = bucket.currency
            total += bucket.unit_price * count
        return total, currency or "PKR"

    @staticmethod
    def _event(event_type: str, booking: BookingRequest, from_status: Optional[BookingStatus], reason: Optional[str] = None) -> BookingEvent:
        return BookingEvent(
            event_type=event_type,
            booking_id=booking.id,
            agency_id=booking.agency_id,
            from_status=from_status.value if from_status else None,
            to_status=booking.status.value,
            reservation_code=booking.reservation_code,
            reason=reason,
        )

    def _event_for(self, result: TransitionResult, ctx: TransitionContext) -> BookingEvent:
        return self._event(
            f"booking.{result.to_status.value.lower()}",
            result.booking,
            result.from_status,
            reason=ctx.reason,
        )


