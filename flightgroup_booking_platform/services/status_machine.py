"""
Booking status machine.

The transition table below is the only place that decides whether a booking
may move from one status to another. Every status change, including the
ones made by the expiry sweep, goes through ``BookingStateMachine.transition``
which checks the table, then role and business-rule guards, and only then
applies side effects. A failed check raises before anything is mutated.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, FrozenSet, Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..models.booking import BookingRequest, BookingStatus
from ..models.booking_history import BookingHistory
from ..models.flight_group import FlightGroup, PassengerType, SeatBucket
from ..utils.auth import Actor, ActorRole
from ..utils.exceptions import (
    AuthorizationError,
    InvalidStatusTransitionError,
    ValidationError,
)
from ..utils.logging_config import log_business_event
from ..utils.timeutils import ensure_utc
from .identifier_service import IdentifierService
from .seat_ledger import SeatLedger

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.REQUESTED: frozenset({
        BookingStatus.APPROVED,
        BookingStatus.REJECTED,
        BookingStatus.EXPIRED,
        BookingStatus.CANCELLED,
    }),
    BookingStatus.APPROVED: frozenset({
        BookingStatus.PAYMENT_PENDING,
        BookingStatus.REJECTED,
        BookingStatus.EXPIRED,
        BookingStatus.CANCELLED,
    }),
    BookingStatus.PAYMENT_PENDING: frozenset({
        BookingStatus.PAID,
        BookingStatus.EXPIRED,
        BookingStatus.CANCELLED,
    }),
    BookingStatus.PAID: frozenset({
        BookingStatus.ISSUED,
        BookingStatus.EXPIRED,
        BookingStatus.CANCELLED,
    }),
    BookingStatus.ISSUED: frozenset({BookingStatus.EXPIRED}),
    BookingStatus.REJECTED: frozenset(),
    BookingStatus.EXPIRED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}

# Targets that hand held seats back to inventory
RELEASING_TARGETS = frozenset({
    BookingStatus.REJECTED,
    BookingStatus.EXPIRED,
    BookingStatus.CANCELLED,
})

# Who may drive each target status
ROLE_PERMISSIONS: Dict[BookingStatus, FrozenSet[ActorRole]] = {
    BookingStatus.APPROVED: frozenset({ActorRole.ADMIN}),
    BookingStatus.REJECTED: frozenset({ActorRole.ADMIN}),
    BookingStatus.PAYMENT_PENDING: frozenset({ActorRole.ADMIN}),
    BookingStatus.PAID: frozenset({ActorRole.ADMIN}),
    BookingStatus.ISSUED: frozenset({ActorRole.ADMIN}),
    # Agents are further limited to their own agency and to unpaid bookings
    BookingStatus.CANCELLED: frozenset({ActorRole.ADMIN, ActorRole.AGENT}),
    BookingStatus.EXPIRED: frozenset({ActorRole.ADMIN, ActorRole.SYSTEM}),
}


def allowed_transitions(status: BookingStatus) -> FrozenSet[BookingStatus]:
    return ALLOWED_TRANSITIONS.get(status, frozenset())


def is_terminal(status: BookingStatus) -> bool:
    """A status with no way out."""
    return not allowed_transitions(status)


def ensure_transition(booking_id, source: BookingStatus, target: BookingStatus) -> None:
    """Raise InvalidStatusTransitionError unless ``source -> target`` is in the table."""
    if target not in allowed_transitions(source):
        raise InvalidStatusTransitionError(booking_id, source.value, target.value)


@dataclass
class TransitionContext:
    """Inputs for one transition."""
    actor: Actor
    now: datetime
    reason: Optional[str] = None
    remarks: Optional[str] = None
    payment_deadline: Optional[datetime] = None
    payment_reference: Optional[str] = None
    payment_proof_url: Optional[str] = None
    payment_amount: Optional[Decimal] = None
    refund_initiated: bool = False


@dataclass
class TransitionResult:
    booking: BookingRequest
    from_status: Optional[BookingStatus]
    to_status: BookingStatus


class BookingStateMachine:
    """Applies status transitions together with their seat and identifier side effects."""

    def __init__(
        self,
        session: AsyncSession,
        ledger: SeatLedger,
        identifiers: IdentifierService,
    ):
        self.session = session
        self.ledger = ledger
        self.identifiers = identifiers
        self.settings = get_settings()

    async def open(
        self,
        booking: BookingRequest,
        buckets: Mapping[PassengerType, SeatBucket],
        ctx: TransitionContext,
    ) -> TransitionResult:
        """Place the initial hold for a freshly created REQUESTED booking."""
        await self.ledger.hold_for_booking(buckets, booking.pax_counts)
        self._record_history(booking, None, BookingStatus.REQUESTED, ctx, "Booking requested")

        log_business_event(
            "booking_requested",
            {
                "booking_id": str(booking.id),
                "flight_group_id": str(booking.flight_group_id),
                "passengers": booking.total_passengers,
            },
            user_id=ctx.actor.label,
        )
        return TransitionResult(booking=booking, from_status=None, to_status=BookingStatus.REQUESTED)

    async def transition(
        self,
        booking: BookingRequest,
        flight_group: FlightGroup,
        buckets: Mapping[PassengerType, SeatBucket],
        target: BookingStatus,
        ctx: TransitionContext,
    ) -> TransitionResult:
        """
        Move a booking to ``target``.

        Raises:
            InvalidStatusTransitionError: If the table forbids the move
            AuthorizationError: If the actor's role may not drive the move
            ValidationError: If a business-rule guard fails
            InsufficientAvailabilityError: If issuing exceeds capacity
            IdentifierExhaustedError: If no free identifier could be found
        """
        source = booking.status
        ensure_transition(booking.id, source, target)
        self._authorize(booking, target, ctx.actor)
        self._check_guards(booking, flight_group, source, target, ctx)

        await self._apply_side_effects(booking, flight_group, buckets, source, target, ctx)

        booking.status = target
        self._record_history(booking, source, target, ctx, self._describe(source, target, ctx))

        logger.info(f"Booking {booking.id} moved {source.value} -> {target.value} by {ctx.actor.label}")
        log_business_event(
            "booking_status_changed",
            {
                "booking_id": str(booking.id),
                "from_status": source.value,
                "to_status": target.value,
                "reservation_code": booking.reservation_code,
            },
            user_id=ctx.actor.label,
        )
        return TransitionResult(booking=booking, from_status=source, to_status=target)

    def _authorize(self, booking: BookingRequest, target: BookingStatus, actor: Actor) -> None:
        permitted = ROLE_PERMISSIONS.get(target, frozenset())
        if actor.role not in permitted:
            raise AuthorizationError(
                f"Role {actor.role.value} may not move bookings to {target.value}",
                required_role=" or ".join(sorted(role.value for role in permitted)),
            )
        if actor.role == ActorRole.AGENT and actor.agency_id != booking.agency_id:
            raise AuthorizationError("Agents may only act on their own agency's bookings")
        # Paid bookings are cancelled by admins only
        if target == BookingStatus.CANCELLED and booking.status == BookingStatus.PAID and actor.role != ActorRole.ADMIN:
            raise AuthorizationError(
                "Only an admin may cancel a paid booking",
                required_role=ActorRole.ADMIN.value,
            )

    def _check_guards(
        self,
        booking: BookingRequest,
        flight_group: FlightGroup,
        source: BookingStatus,
        target: BookingStatus,
        ctx: TransitionContext,
    ) -> None:
        now = ctx.now

        if target == BookingStatus.APPROVED:
            if not flight_group.is_published:
                raise ValidationError(
                    f"Flight group is {flight_group.status.value}; only published groups accept approvals"
                )

        elif target == BookingStatus.REJECTED:
            if not (ctx.reason and ctx.reason.strip()):
                raise ValidationError(
                    "A rejection reason is required",
                    field_errors={"reason": ["must not be blank"]},
                )

        elif target == BookingStatus.PAYMENT_PENDING:
            deadline = self._effective_payment_deadline(ctx)
            if deadline <= now:
                raise ValidationError(
                    "Payment deadline must be in the future",
                    field_errors={"payment_deadline": [f"{deadline.isoformat()} is not after {now.isoformat()}"]},
                )

        elif target == BookingStatus.PAID:
            if not (ctx.payment_proof_url or booking.payment_proof_url):
                raise ValidationError(
                    "Payment proof is required before a booking can be marked paid",
                    field_errors={"payment_proof_url": ["missing"]},
                )
            if ctx.payment_amount is not None and Decimal(ctx.payment_amount) != booking.total_amount:
                raise ValidationError(
                    f"Payment amount {ctx.payment_amount} does not match booking total {booking.total_amount}",
                    field_errors={"payment_amount": [f"expected {booking.total_amount}"]},
                )

        elif target == BookingStatus.ISSUED:
            if flight_group.has_departed(now):
                raise ValidationError("Cannot issue tickets for a flight that has departed")

        elif target == BookingStatus.CANCELLED:
            if source == BookingStatus.PAID and not ctx.refund_initiated:
                raise ValidationError(
                    "Cancelling a paid booking requires the refund to be initiated first",
                    field_errors={"refund_initiated": ["must be true for paid bookings"]},
                )

        elif target == BookingStatus.EXPIRED:
            self._check_expiry_due(booking, flight_group, source, now)

    def _check_expiry_due(
        self,
        booking: BookingRequest,
        flight_group: FlightGroup,
        source: BookingStatus,
        now: datetime,
    ) -> None:
        if source in (BookingStatus.REQUESTED, BookingStatus.APPROVED):
            hold_expires_at = ensure_utc(booking.hold_expires_at)
            if hold_expires_at is None or hold_expires_at > now:
                raise ValidationError("Hold has not expired yet")
        elif source == BookingStatus.PAYMENT_PENDING:
            deadline = ensure_utc(booking.payment_deadline)
            if deadline is None or deadline > now:
                raise ValidationError("Payment deadline has not passed yet")
        elif source in (BookingStatus.PAID, BookingStatus.ISSUED):
            if not flight_group.has_departed(now):
                raise ValidationError("Flight has not departed yet")

    def _effective_payment_deadline(self, ctx: TransitionContext) -> datetime:
        if ctx.payment_deadline is not None:
            return ensure_utc(ctx.payment_deadline)
        return ctx.now + timedelta(hours=self.settings.payment_window_hours)

    async def _apply_side_effects(
        self,
        booking: BookingRequest,
        flight_group: FlightGroup,
        buckets: Mapping[PassengerType, SeatBucket],
        source: BookingStatus,
        target: BookingStatus,
        ctx: TransitionContext,
    ) -> None:
        now = ctx.now

        if target in RELEASING_TARGETS and source != BookingStatus.ISSUED:
            await self.ledger.release_for_booking(buckets, booking.pax_counts)

        if target == BookingStatus.APPROVED:
            booking.approved_by = ctx.actor.user_id
            booking.approved_at = now
            if ctx.remarks:
                booking.remarks = ctx.remarks
            if not booking.reservation_code and flight_group.code_required_on_approval:
                await self.identifiers.assign_reservation_code(booking, flight_group)

        elif target == BookingStatus.REJECTED:
            booking.rejection_reason = ctx.reason.strip()

        elif target == BookingStatus.PAYMENT_PENDING:
            booking.payment_deadline = self._effective_payment_deadline(ctx)

        elif target == BookingStatus.PAID:
            if ctx.payment_proof_url:
                booking.payment_proof_url = ctx.payment_proof_url
            if ctx.payment_reference:
                booking.payment_reference = ctx.payment_reference
            booking.payment_amount = (
                Decimal(ctx.payment_amount) if ctx.payment_amount is not None else booking.total_amount
            )
            booking.paid_at = now

        elif target == BookingStatus.ISSUED:
            await self.ledger.issue_for_booking(buckets, booking.pax_counts)
            code = await self.identifiers.assign_reservation_code(booking, flight_group)
            await self.identifiers.assign_ticket_numbers(booking, flight_group.carrier_code, now)
            for passenger in booking.passengers:
                passenger.reservation_code = code
            booking.issued_at = now

        elif target == BookingStatus.CANCELLED:
            booking.cancelled_at = now
            booking.cancellation_reason = ctx.reason

        elif target == BookingStatus.EXPIRED:
            booking.expired_at = now

    def _record_history(
        self,
        booking: BookingRequest,
        source: Optional[BookingStatus],
        target: BookingStatus,
        ctx: TransitionContext,
        details: str,
    ) -> None:
        self.session.add(
            BookingHistory(
                booking_id=booking.id,
                from_status=source,
                to_status=target,
                details=details,
                performed_by=ctx.actor.label,
            )
        )

    @staticmethod
    def _describe(source: BookingStatus, target: BookingStatus, ctx: TransitionContext) -> str:
        details = f"{source.value} -> {target.value}"
        if ctx.reason:
            details += f" - Reason: {ctx.reason}"
        if target == BookingStatus.PAID and ctx.payment_reference:
            details += f" - Payment reference: {ctx.payment_reference}"
        return details
