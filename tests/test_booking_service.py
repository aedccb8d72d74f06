"""Tests for the booking orchestrator."""

import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import delete, update

from flightgroup_booking_platform.models import (
    BookingStatus,
    FlightGroup,
    FlightGroupStatus,
    Passenger,
    PassengerType,
)
from flightgroup_booking_platform.services.booking_service import BookingService
from flightgroup_booking_platform.services.seat_ledger import SeatLedger
from flightgroup_booking_platform.services.identifier_service import validate_ticket_number_format
from flightgroup_booking_platform.utils.auth import SYSTEM_ACTOR
from flightgroup_booking_platform.utils.exceptions import (
    AuthorizationError,
    BookingNotFoundError,
    FlightGroupNotFoundError,
    InsufficientAvailabilityError,
    InvalidStatusTransitionError,
    InvariantViolationError,
    ValidationError,
)
from flightgroup_booking_platform.utils.timeutils import ensure_utc, utcnow

PROOF_URL = "https://files.example.com/proof.pdf"


class TestCreateBooking:
    async def test_holds_seats_for_requested_adults(self, service, agent, make_flight_group, read_buckets, read_booking):
        flight_group_id = await make_flight_group(adults=10)

        booking = await service.create_booking(agent, flight_group_id, adults=3)

        assert booking.status == BookingStatus.REQUESTED
        assert (await read_buckets(flight_group_id))[PassengerType.ADT] == (10, 3, 0)
        stored = await read_booking(booking.id)
        assert stored.status == BookingStatus.REQUESTED
        assert len(stored.passengers) == 3
        assert [h.to_status for h in stored.history] == [BookingStatus.REQUESTED]
        assert stored.history[0].from_status is None

    async def test_quote_and_passenger_rows(self, service, agent, make_flight_group):
        flight_group_id = await make_flight_group()

        booking = await service.create_booking(
            agent,
            flight_group_id,
            adults=2,
            children=1,
            infants=1,
            passengers=[
                {"passenger_type": "CHD", "first_name": "Sara", "last_name": "Khan"},
                {"passenger_type": "ADT", "title": "MR", "first_name": "Ali", "last_name": "Khan"},
            ],
        )

        assert booking.total_amount == Decimal("277000.00")
        assert booking.currency == "PKR"
        assert [p.passenger_type for p in booking.passengers] == [
            PassengerType.ADT, PassengerType.ADT, PassengerType.CHD, PassengerType.INF,
        ]
        assert booking.passengers[0].full_name == "MR Ali Khan"
        assert booking.passengers[1].full_name is None
        assert booking.passengers[2].first_name == "Sara"
        assert [p.sequence for p in booking.passengers] == [1, 2, 3, 4]

    async def test_hold_hours_are_clamped(self, session, publisher, agent, make_flight_group):
        now = utcnow()
        service = BookingService(session, notifier=publisher, clock=lambda: now)
        flight_group_id = await make_flight_group()

        long_hold = await service.create_booking(agent, flight_group_id, adults=1, hold_hours=1000)
        default_hold = await service.create_booking(agent, flight_group_id, adults=1)

        assert long_hold.hold_expires_at == now + timedelta(hours=72)
        assert default_hold.hold_expires_at == now + timedelta(hours=24)

    async def test_fully_held_bucket_rejects_new_booking(self, service, agent, make_flight_group, read_buckets, publisher):
        flight_group_id = await make_flight_group(adults=5)
        await service.create_booking(agent, flight_group_id, adults=5)
        publisher.events.clear()

        with pytest.raises(InsufficientAvailabilityError):
            await service.create_booking(agent, flight_group_id, adults=1)

        assert (await read_buckets(flight_group_id))[PassengerType.ADT] == (5, 5, 0)
        assert publisher.events == []

    async def test_shortfall_in_one_bucket_holds_nothing(self, service, agent, make_flight_group, read_buckets):
        flight_group_id = await make_flight_group(adults=10, children=1)

        with pytest.raises(InsufficientAvailabilityError):
            await service.create_booking(agent, flight_group_id, adults=2, children=2)

        counters = await read_buckets(flight_group_id)
        assert counters[PassengerType.ADT] == (10, 0, 0)
        assert counters[PassengerType.CHD] == (1, 0, 0)

    @pytest.mark.parametrize(
        "counts",
        [
            {"adults": 0, "children": 0, "infants": 0},
            {"adults": -1, "children": 2},
            {"adults": 51},
        ],
    )
    async def test_invalid_counts(self, service, agent, make_flight_group, counts):
        flight_group_id = await make_flight_group(adults=100)
        with pytest.raises(ValidationError):
            await service.create_booking(agent, flight_group_id, **counts)

    async def test_more_passenger_details_than_seats(self, service, agent, make_flight_group):
        flight_group_id = await make_flight_group()
        with pytest.raises(ValidationError):
            await service.create_booking(
                agent,
                flight_group_id,
                adults=1,
                passengers=[{"passenger_type": "INF", "first_name": "Baby"}],
            )

    async def test_unpublished_flight_group(self, service, agent, make_flight_group):
        flight_group_id = await make_flight_group(status=FlightGroupStatus.DRAFT)
        with pytest.raises(ValidationError):
            await service.create_booking(agent, flight_group_id, adults=1)

    async def test_outside_sales_window(self, service, agent, make_flight_group):
        flight_group_id = await make_flight_group(sales_open=False)
        with pytest.raises(ValidationError) as exc_info:
            await service.create_booking(agent, flight_group_id, adults=1)
        assert "sales_start" in exc_info.value.details

    async def test_missing_bucket(self, service, agent, make_flight_group):
        flight_group_id = await make_flight_group(infants=None)
        with pytest.raises(ValidationError):
            await service.create_booking(agent, flight_group_id, adults=1, infants=1)

    async def test_unknown_flight_group(self, service, agent):
        with pytest.raises(FlightGroupNotFoundError):
            await service.create_booking(agent, uuid.uuid4(), adults=1)

    async def test_system_actor_cannot_request(self, service, make_flight_group):
        flight_group_id = await make_flight_group()
        with pytest.raises(AuthorizationError):
            await service.create_booking(SYSTEM_ACTOR, flight_group_id, adults=1)

    async def test_admin_needs_an_agency(self, service, admin, make_flight_group):
        flight_group_id = await make_flight_group()
        with pytest.raises(ValidationError):
            await service.create_booking(admin, flight_group_id, adults=1)

    async def test_publishes_requested_event(self, service, agent, make_flight_group, publisher):
        flight_group_id = await make_flight_group()
        booking = await service.create_booking(agent, flight_group_id, adults=1)

        assert publisher.event_types == ["booking.requested"]
        event = publisher.events[0]
        assert event.booking_id == booking.id
        assert event.agency_id == agent.agency_id
        assert event.to_status == "REQUESTED"
        assert event.to_payload()["booking_id"] == str(booking.id)


class TestApproveAndReject:
    async def test_approve_assigns_reservation_code(self, service, agent, admin, make_flight_group, read_booking):
        flight_group_id = await make_flight_group()
        booking = await service.create_booking(agent, flight_group_id, adults=2)

        booking = await service.approve_booking(booking.id, admin, remarks="ok")

        assert booking.status == BookingStatus.APPROVED
        assert booking.approved_by == admin.user_id
        assert booking.reservation_code is not None
        stored = await read_booking(booking.id)
        assert stored.reservation_code == booking.reservation_code
        assert stored.remarks == "ok"

    async def test_approve_without_code_requirement(self, service, agent, admin, make_flight_group):
        flight_group_id = await make_flight_group(code_required_on_approval=False)
        booking = await service.create_booking(agent, flight_group_id, adults=1)

        booking = await service.approve_booking(booking.id, admin)

        assert booking.status == BookingStatus.APPROVED
        assert booking.reservation_code is None

    async def test_agent_cannot_approve(self, service, agent, make_flight_group, read_booking):
        flight_group_id = await make_flight_group()
        booking_id = (await service.create_booking(agent, flight_group_id, adults=1)).id

        with pytest.raises(AuthorizationError):
            await service.approve_booking(booking_id, agent)

        assert (await read_booking(booking_id)).status == BookingStatus.REQUESTED

    async def test_approve_requires_published_group(self, service, session_factory, agent, admin, make_flight_group):
        flight_group_id = await make_flight_group()
        booking = await service.create_booking(agent, flight_group_id, adults=1)

        async with session_factory() as other:
            async with other.begin():
                await other.execute(
                    update(FlightGroup)
                    .where(FlightGroup.id == flight_group_id)
                    .values(status=FlightGroupStatus.CLOSED)
                )

        with pytest.raises(ValidationError):
            await service.approve_booking(booking.id, admin)

    async def test_reject_releases_seats(self, service, agent, admin, make_flight_group, read_buckets, read_booking):
        flight_group_id = await make_flight_group(adults=10)
        booking = await service.create_booking(agent, flight_group_id, adults=3)

        booking = await service.reject_booking(booking.id, admin, "duplicate")

        assert booking.status == BookingStatus.REJECTED
        assert booking.rejection_reason == "duplicate"
        assert (await read_buckets(flight_group_id))[PassengerType.ADT] == (10, 0, 0)
        stored = await read_booking(booking.id)
        assert {h.to_status for h in stored.history} == {BookingStatus.REQUESTED, BookingStatus.REJECTED}

    @pytest.mark.parametrize("reason", ["", "   "])
    async def test_reject_requires_reason(self, service, agent, admin, make_flight_group, read_buckets, reason):
        flight_group_id = await make_flight_group(adults=10)
        booking = await service.create_booking(agent, flight_group_id, adults=3)

        with pytest.raises(ValidationError):
            await service.reject_booking(booking.id, admin, reason)

        assert (await read_buckets(flight_group_id))[PassengerType.ADT] == (10, 3, 0)

    async def test_rejected_booking_is_final(self, service, agent, admin, make_flight_group, read_buckets):
        flight_group_id = await make_flight_group(adults=10)
        booking_id = (await service.create_booking(agent, flight_group_id, adults=3)).id
        await service.reject_booking(booking_id, admin, "duplicate")

        with pytest.raises(InvalidStatusTransitionError):
            await service.cancel_booking(booking_id, admin)
        with pytest.raises(InvalidStatusTransitionError):
            await service.approve_booking(booking_id, admin)

        assert (await read_buckets(flight_group_id))[PassengerType.ADT] == (10, 0, 0)

    async def test_unknown_booking(self, service, admin):
        with pytest.raises(BookingNotFoundError):
            await service.approve_booking(uuid.uuid4(), admin)


class TestPayment:
    async def test_request_payment_sets_default_deadline(self, session, publisher, agent, admin, make_flight_group):
        now = utcnow()
        service = BookingService(session, notifier=publisher, clock=lambda: now)
        flight_group_id = await make_flight_group()
        booking = await service.create_booking(agent, flight_group_id, adults=1)
        await service.approve_booking(booking.id, admin)

        booking = await service.request_payment(booking.id, admin)

        assert booking.status == BookingStatus.PAYMENT_PENDING
        assert ensure_utc(booking.payment_deadline) == now + timedelta(hours=48)

    async def test_request_payment_rejects_past_deadline(self, service, agent, admin, make_flight_group):
        flight_group_id = await make_flight_group()
        booking = await service.create_booking(agent, flight_group_id, adults=1)
        await service.approve_booking(booking.id, admin)

        with pytest.raises(ValidationError):
            await service.request_payment(booking.id, admin, payment_deadline=utcnow() - timedelta(minutes=1))

    async def test_request_payment_needs_approval_first(self, service, agent, admin, make_flight_group):
        flight_group_id = await make_flight_group()
        booking = await service.create_booking(agent, flight_group_id, adults=1)

        with pytest.raises(InvalidStatusTransitionError):
            await service.request_payment(booking.id, admin)

    async def test_mark_paid_records_payment(self, service, agent, admin, make_flight_group, read_buckets):
        flight_group_id = await make_flight_group(adults=10)
        booking = await service.create_booking(agent, flight_group_id, adults=2)
        await service.approve_booking(booking.id, admin)
        await service.request_payment(booking.id, admin)

        booking = await service.mark_paid(booking.id, admin, payment_proof_url=PROOF_URL, payment_reference="TRX-9")

        assert booking.status == BookingStatus.PAID
        assert booking.payment_amount == booking.total_amount
        assert booking.payment_reference == "TRX-9"
        assert booking.paid_at is not None
        # No seat movement on payment
        assert (await read_buckets(flight_group_id))[PassengerType.ADT] == (10, 2, 0)

    async def test_mark_paid_requires_proof(self, service, agent, admin, make_flight_group, read_booking):
        flight_group_id = await make_flight_group()
        booking_id = (await service.create_booking(agent, flight_group_id, adults=1)).id
        await service.approve_booking(booking_id, admin)
        await service.request_payment(booking_id, admin)

        with pytest.raises(ValidationError):
            await service.mark_paid(booking_id, admin)

        assert (await read_booking(booking_id)).status == BookingStatus.PAYMENT_PENDING

    async def test_mark_paid_rejects_wrong_amount(self, service, agent, admin, make_flight_group):
        flight_group_id = await make_flight_group()
        booking = await service.create_booking(agent, flight_group_id, adults=1)
        await service.approve_booking(booking.id, admin)
        await service.request_payment(booking.id, admin)

        with pytest.raises(ValidationError):
            await service.mark_paid(booking.id, admin, payment_proof_url=PROOF_URL, payment_amount=Decimal("1.00"))

    async def test_mark_paid_steps_through_payment_pending(self, service, agent, admin, make_flight_group, read_history, publisher):
        flight_group_id = await make_flight_group()
        booking = await service.create_booking(agent, flight_group_id, adults=1)
        await service.approve_booking(booking.id, admin)
        publisher.events.clear()

        booking = await service.mark_paid(booking.id, admin, payment_proof_url=PROOF_URL)

        assert booking.status == BookingStatus.PAID
        assert booking.payment_deadline is not None
        statuses = {entry.to_status for entry in await read_history(booking.id)}
        assert BookingStatus.PAYMENT_PENDING in statuses
        assert BookingStatus.PAID in statuses
        assert publisher.event_types == ["booking.payment_pending", "booking.paid"]

    async def test_mark_paid_from_requested_is_invalid(self, service, agent, admin, make_flight_group):
        flight_group_id = await make_flight_group()
        booking = await service.create_booking(agent, flight_group_id, adults=1)

        with pytest.raises(InvalidStatusTransitionError):
            await service.mark_paid(booking.id, admin, payment_proof_url=PROOF_URL)


class TestIssue:
    async def test_issue_moves_seats_and_assigns_tickets(
        self, service, admin, make_flight_group, make_paid_booking, read_buckets, read_booking, publisher
    ):
        flight_group_id = await make_flight_group(adults=10, children=5)
        paid = await make_paid_booking(flight_group_id, adults=2, children=1)
        assert (await read_buckets(flight_group_id))[PassengerType.ADT] == (10, 2, 0)

        booking = await service.issue_tickets(paid.id, admin)

        assert booking.status == BookingStatus.ISSUED
        counters = await read_buckets(flight_group_id)
        assert counters[PassengerType.ADT] == (10, 0, 2)
        assert counters[PassengerType.CHD] == (5, 0, 1)

        stored = await read_booking(booking.id)
        tickets = [p.ticket_number for p in stored.passengers]
        assert len(tickets) == 3
        assert len(set(tickets)) == 3
        assert all(validate_ticket_number_format(t) for t in tickets)
        assert all(t.startswith("PK-") for t in tickets)
        assert all(p.reservation_code == stored.reservation_code for p in stored.passengers)
        assert stored.issued_at is not None
        assert publisher.event_types[-1] == "booking.issued"

    async def test_issue_assigns_code_when_approval_did_not(self, service, admin, make_flight_group, make_paid_booking, read_booking):
        flight_group_id = await make_flight_group(code_required_on_approval=False)
        paid = await make_paid_booking(flight_group_id, adults=1, children=0)
        assert paid.reservation_code is None

        await service.issue_tickets(paid.id, admin)

        assert (await read_booking(paid.id)).reservation_code is not None

    async def test_tickets_unique_across_bookings(self, service, admin, make_flight_group, make_paid_booking, read_booking):
        flight_group_id = await make_flight_group(adults=20)
        first = await make_paid_booking(flight_group_id, adults=3, children=0)
        second = await make_paid_booking(flight_group_id, adults=3, children=0)

        await service.issue_tickets(first.id, admin)
        await service.issue_tickets(second.id, admin)

        tickets = [p.ticket_number for p in (await read_booking(first.id)).passengers]
        tickets += [p.ticket_number for p in (await read_booking(second.id)).passengers]
        assert len(set(tickets)) == 6

    async def test_issue_requires_paid(self, service, agent, admin, make_flight_group):
        flight_group_id = await make_flight_group()
        booking = await service.create_booking(agent, flight_group_id, adults=1)
        await service.approve_booking(booking.id, admin)

        with pytest.raises(InvalidStatusTransitionError):
            await service.issue_tickets(booking.id, admin)

    async def test_cannot_issue_after_departure(
        self, service, admin, make_flight_group, make_paid_booking, set_departure, read_buckets
    ):
        flight_group_id = await make_flight_group(adults=10, children=5)
        paid = await make_paid_booking(flight_group_id, adults=2, children=0)
        await set_departure(flight_group_id, utcnow() - timedelta(hours=1))

        with pytest.raises(ValidationError):
            await service.issue_tickets(paid.id, admin)

        assert (await read_buckets(flight_group_id))[PassengerType.ADT] == (10, 2, 0)

    async def test_issued_booking_cannot_be_cancelled(self, service, admin, make_flight_group, make_paid_booking, read_buckets):
        flight_group_id = await make_flight_group(adults=10)
        paid = await make_paid_booking(flight_group_id, adults=2, children=0)
        await service.issue_tickets(paid.id, admin)

        with pytest.raises(InvalidStatusTransitionError):
            await service.cancel_booking(paid.id, admin, refund_initiated=True)

        assert (await read_buckets(flight_group_id))[PassengerType.ADT] == (10, 0, 2)


class TestCancel:
    async def test_agent_cancels_own_booking(self, service, agent, make_flight_group, read_buckets):
        flight_group_id = await make_flight_group(adults=10)
        booking = await service.create_booking(agent, flight_group_id, adults=4)

        booking = await service.cancel_booking(booking.id, agent, reason="plans changed")

        assert booking.status == BookingStatus.CANCELLED
        assert booking.cancellation_reason == "plans changed"
        assert booking.cancelled_at is not None
        assert (await read_buckets(flight_group_id))[PassengerType.ADT] == (10, 0, 0)

    async def test_agent_cannot_cancel_other_agency_booking(self, service, agent, other_agent, make_flight_group, read_booking):
        flight_group_id = await make_flight_group()
        booking_id = (await service.create_booking(agent, flight_group_id, adults=1)).id

        with pytest.raises(AuthorizationError):
            await service.cancel_booking(booking_id, other_agent)

        assert (await read_booking(booking_id)).status == BookingStatus.REQUESTED

    async def test_cancel_after_approval_releases_seats(self, service, agent, admin, make_flight_group, read_buckets):
        flight_group_id = await make_flight_group(adults=10)
        booking = await service.create_booking(agent, flight_group_id, adults=4)
        await service.approve_booking(booking.id, admin)
        await service.request_payment(booking.id, admin)

        await service.cancel_booking(booking.id, admin)

        assert (await read_buckets(flight_group_id))[PassengerType.ADT] == (10, 0, 0)

    async def test_paid_booking_needs_refund_before_cancel(self, service, admin, make_flight_group, make_paid_booking, read_buckets):
        flight_group_id = await make_flight_group(adults=10)
        booking_id = (await make_paid_booking(flight_group_id, adults=2, children=0)).id

        with pytest.raises(ValidationError):
            await service.cancel_booking(booking_id, admin)

        booking = await service.cancel_booking(booking_id, admin, reason="refunded", refund_initiated=True)

        assert booking.status == BookingStatus.CANCELLED
        assert (await read_buckets(flight_group_id))[PassengerType.ADT] == (10, 0, 0)

    async def test_agent_cannot_cancel_paid_booking(
        self, service, agent, make_flight_group, make_paid_booking, read_booking, read_buckets
    ):
        flight_group_id = await make_flight_group(adults=10)
        booking_id = (await make_paid_booking(flight_group_id, adults=2, children=0)).id

        with pytest.raises(AuthorizationError) as exc_info:
            await service.cancel_booking(booking_id, agent, refund_initiated=True)

        assert exc_info.value.details["required_role"] == "ADMIN"
        assert (await read_booking(booking_id)).status == BookingStatus.PAID
        assert (await read_buckets(flight_group_id))[PassengerType.ADT] == (10, 2, 0)


class TestExpireBooking:
    async def test_manual_expiry_before_hold_ends_is_refused(self, service, agent, make_flight_group):
        flight_group_id = await make_flight_group()
        booking = await service.create_booking(agent, flight_group_id, adults=1)

        with pytest.raises(ValidationError):
            await service.expire_booking(booking.id, SYSTEM_ACTOR)

    async def test_agent_cannot_expire(self, session, publisher, agent, make_flight_group):
        now = utcnow()
        flight_group_id = await make_flight_group()
        booking = await BookingService(session, notifier=publisher, clock=lambda: now).create_booking(
            agent, flight_group_id, adults=1
        )

        later = BookingService(session, notifier=publisher, clock=lambda: now + timedelta(days=5))
        with pytest.raises(AuthorizationError):
            await later.expire_booking(booking.id, agent)


class TestUpdateRemarks:
    async def test_agent_edits_own_booking(self, service, agent, make_flight_group, read_booking, read_buckets):
        flight_group_id = await make_flight_group(adults=10)
        booking = await service.create_booking(agent, flight_group_id, adults=2, remarks="window seats")

        booking = await service.update_remarks(booking.id, agent, "  aisle seats please ")

        assert booking.remarks == "aisle seats please"
        assert booking.status == BookingStatus.REQUESTED
        stored = await read_booking(booking.id)
        assert stored.remarks == "aisle seats please"
        assert "Remarks updated" in {h.details for h in stored.history}
        assert (await read_buckets(flight_group_id))[PassengerType.ADT] == (10, 2, 0)

    async def test_blank_remarks_clear_them(self, service, agent, admin, make_flight_group):
        flight_group_id = await make_flight_group()
        booking = await service.create_booking(agent, flight_group_id, adults=1, remarks="note")
        await service.approve_booking(booking.id, admin)

        booking = await service.update_remarks(booking.id, admin, "   ")

        assert booking.remarks is None
        assert booking.status == BookingStatus.APPROVED

    async def test_other_agency_cannot_edit(self, service, agent, other_agent, make_flight_group, read_booking):
        flight_group_id = await make_flight_group()
        booking_id = (await service.create_booking(agent, flight_group_id, adults=1, remarks="mine")).id

        with pytest.raises(AuthorizationError):
            await service.update_remarks(booking_id, other_agent, "theirs")

        assert (await read_booking(booking_id)).remarks == "mine"

    async def test_system_actor_cannot_edit(self, service, agent, make_flight_group):
        flight_group_id = await make_flight_group()
        booking_id = (await service.create_booking(agent, flight_group_id, adults=1)).id

        with pytest.raises(AuthorizationError):
            await service.update_remarks(booking_id, SYSTEM_ACTOR, "sweeper note")

    async def test_closed_booking_cannot_be_edited(self, service, agent, make_flight_group, read_booking):
        flight_group_id = await make_flight_group()
        booking_id = (await service.create_booking(agent, flight_group_id, adults=1, remarks="before")).id
        await service.cancel_booking(booking_id, agent)

        with pytest.raises(ValidationError):
            await service.update_remarks(booking_id, agent, "after")

        assert (await read_booking(booking_id)).remarks == "before"

    async def test_unknown_booking(self, service, agent):
        with pytest.raises(BookingNotFoundError):
            await service.update_remarks(uuid.uuid4(), agent, "hello")


class TestInvariants:
    async def test_conservation_across_mixed_operations(
        self, session, service, agent, admin, make_flight_group, make_paid_booking
    ):
        flight_group_id = await make_flight_group(adults=20, children=10, infants=5)

        kept = await service.create_booking(agent, flight_group_id, adults=2, children=1, infants=1)
        rejected = await service.create_booking(agent, flight_group_id, adults=3)
        cancelled = await service.create_booking(agent, flight_group_id, adults=1, children=2)
        paid = await make_paid_booking(flight_group_id, adults=2, children=2)
        issued = await make_paid_booking(flight_group_id, adults=4, children=0)

        await service.approve_booking(kept.id, admin)
        await service.reject_booking(rejected.id, admin, "over limit")
        await service.cancel_booking(cancelled.id, agent)
        await service.issue_tickets(issued.id, admin)

        ledger = SeatLedger(session)
        async with session.begin():
            held = await ledger.held_by_bookings(flight_group_id)
            availability = {entry.passenger_type: entry for entry in await ledger.get_availability(flight_group_id)}

        assert held == {PassengerType.ADT: 4, PassengerType.CHD: 3, PassengerType.INF: 1}
        for pax_type, entry in availability.items():
            assert entry.seats_on_hold == held[pax_type]
            assert entry.seats_on_hold + entry.seats_issued <= entry.total_seats
        assert availability[PassengerType.ADT].seats_issued == 4

    async def test_corrupted_booking_is_refused(self, service, session_factory, agent, admin, make_flight_group):
        flight_group_id = await make_flight_group()
        booking = await service.create_booking(agent, flight_group_id, adults=2)

        async with session_factory() as other:
            async with other.begin():
                passenger_id = booking.passengers[0].id
                await other.execute(delete(Passenger).where(Passenger.id == passenger_id))

        with pytest.raises(InvariantViolationError):
            await service.approve_booking(booking.id, admin)


class TestReads:
    async def test_get_booking_hides_other_agencies(self, service, agent, other_agent, admin, make_flight_group):
        flight_group_id = await make_flight_group()
        booking = await service.create_booking(agent, flight_group_id, adults=1)

        assert (await service.get_booking(booking.id, agent)).id == booking.id
        assert (await service.get_booking(booking.id, admin)).id == booking.id
        with pytest.raises(BookingNotFoundError):
            await service.get_booking(booking.id, other_agent)

    async def test_history_and_allowed_transitions(self, service, agent, admin, make_flight_group):
        flight_group_id = await make_flight_group()
        booking = await service.create_booking(agent, flight_group_id, adults=1)
        await service.approve_booking(booking.id, admin)

        history = await service.get_booking_history(booking.id, agent)
        assert {entry.to_status for entry in history} == {BookingStatus.REQUESTED, BookingStatus.APPROVED}
        assert all(entry.performed_by for entry in history)

        booking, targets = await service.get_allowed_transitions(booking.id, agent)
        assert booking.status == BookingStatus.APPROVED
        assert targets == [
            BookingStatus.CANCELLED,
            BookingStatus.EXPIRED,
            BookingStatus.PAYMENT_PENDING,
            BookingStatus.REJECTED,
        ]

    async def test_list_agency_bookings(self, service, agent, other_agent, admin, make_flight_group):
        flight_group_id = await make_flight_group(adults=20)
        mine = await service.create_booking(agent, flight_group_id, adults=1)
        await service.create_booking(other_agent, flight_group_id, adults=1)
        await service.reject_booking(mine.id, admin, "test")

        own = await service.list_agency_bookings(agent, agency_id=other_agent.agency_id)
        assert [b.id for b in own] == [mine.id]

        everything = await service.list_agency_bookings(admin)
        assert len(everything) == 2

        rejected = await service.list_agency_bookings(admin, status=BookingStatus.REJECTED)
        assert [b.id for b in rejected] == [mine.id]

    async def test_count_ignores_paging(self, service, agent, other_agent, admin, make_flight_group):
        flight_group_id = await make_flight_group(adults=20)
        for _ in range(3):
            await service.create_booking(agent, flight_group_id, adults=1)
        await service.create_booking(other_agent, flight_group_id, adults=1)

        page = await service.list_agency_bookings(agent, limit=2)

        assert len(page) == 2
        assert await service.count_agency_bookings(agent) == 3
        assert await service.count_agency_bookings(agent, agency_id=other_agent.agency_id) == 3
        assert await service.count_agency_bookings(admin) == 4
        assert await service.count_agency_bookings(admin, status=BookingStatus.CANCELLED) == 0
