"""
Shared fixtures: a throwaway SQLite database per test, actors, and factories
for flight groups and bookings.
"""

import uuid
from datetime import timedelta
from decimal import Decimal
from typing import Dict, List, Optional

import pytest
from sqlalchemy import select, update
from sqlalchemy.orm import selectinload

from flightgroup_booking_platform.database import (
    create_database_engine,
    create_session_factory,
    create_tables,
)
from flightgroup_booking_platform.models import (
    BookingHistory,
    BookingRequest,
    FlightGroup,
    FlightGroupStatus,
    PassengerType,
    ReservationCodeMode,
    SeatBucket,
)
from flightgroup_booking_platform.services.booking_service import BookingService
from flightgroup_booking_platform.services.notification_service import BookingEvent, NotificationPublisher
from flightgroup_booking_platform.utils.auth import Actor, ActorRole
from flightgroup_booking_platform.utils.timeutils import utcnow


class RecordingPublisher(NotificationPublisher):
    """Keeps published events in memory."""

    def __init__(self):
        self.events: List[BookingEvent] = []

    def publish(self, event: BookingEvent) -> None:
        self.events.append(event)

    @property
    def event_types(self) -> List[str]:
        return [event.event_type for event in self.events]


@pytest.fixture
async def engine(tmp_path):
    engine = create_database_engine(f"sqlite+aiosqlite:///{tmp_path / 'bookings.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def service(session, publisher):
    return BookingService(session, notifier=publisher)


@pytest.fixture
def agency_id():
    return uuid.uuid4()


@pytest.fixture
def agent(agency_id):
    return Actor(user_id=uuid.uuid4(), role=ActorRole.AGENT, agency_id=agency_id)


@pytest.fixture
def other_agent():
    return Actor(user_id=uuid.uuid4(), role=ActorRole.AGENT, agency_id=uuid.uuid4())


@pytest.fixture
def admin():
    return Actor(user_id=uuid.uuid4(), role=ActorRole.ADMIN)


@pytest.fixture
def make_flight_group(session_factory):
    """
    Create a flight group with one bucket per given seat count.

    Pass ``None`` for a passenger type to leave its bucket out.
    """

    async def _make(
        adults: Optional[int] = 10,
        children: Optional[int] = 5,
        infants: Optional[int] = 2,
        status: FlightGroupStatus = FlightGroupStatus.PUBLISHED,
        mode: ReservationCodeMode = ReservationCodeMode.PER_BOOKING,
        code_required_on_approval: bool = True,
        departs_in: timedelta = timedelta(days=30),
        sales_open: bool = True,
        carrier_code: str = "PK",
    ) -> uuid.UUID:
        now = utcnow()
        if sales_open:
            sales_start, sales_end = now - timedelta(days=1), now + timedelta(days=20)
        else:
            sales_start, sales_end = now - timedelta(days=10), now - timedelta(days=1)

        flight_group = FlightGroup(
            carrier_code=carrier_code,
            flight_number="741",
            origin="LHE",
            destination="JED",
            departure_time_utc=now + departs_in,
            arrival_time_utc=now + departs_in + timedelta(hours=5),
            sales_start=sales_start,
            sales_end=sales_end,
            status=status,
            reservation_code_mode=mode,
            code_required_on_approval=code_required_on_approval,
        )
        fares = {
            PassengerType.ADT: (adults, Decimal("85000.00")),
            PassengerType.CHD: (children, Decimal("70000.00")),
            PassengerType.INF: (infants, Decimal("15000.00")),
        }
        for pax_type, (total, fare) in fares.items():
            if total is None:
                continue
            flight_group.buckets.append(
                SeatBucket(
                    passenger_type=pax_type,
                    total_seats=total,
                    base_fare=fare,
                    tax_amount=Decimal("5000.00"),
                    fee_amount=Decimal("500.00"),
                    currency="PKR",
                )
            )

        async with session_factory() as session:
            async with session.begin():
                session.add(flight_group)
        return flight_group.id

    return _make


@pytest.fixture
def read_buckets(session_factory):
    """Fresh ``{passenger_type: (total, on_hold, issued)}`` for a flight group."""

    async def _read(flight_group_id: uuid.UUID) -> Dict[PassengerType, tuple]:
        async with session_factory() as session:
            result = await session.execute(
                select(SeatBucket).where(SeatBucket.flight_group_id == flight_group_id)
            )
            return {
                bucket.passenger_type: (bucket.total_seats, bucket.seats_on_hold, bucket.seats_issued)
                for bucket in result.scalars().all()
            }

    return _read


@pytest.fixture
def read_booking(session_factory):
    """Fresh copy of a booking with passengers and history loaded."""

    async def _read(booking_id: uuid.UUID) -> BookingRequest:
        async with session_factory() as session:
            result = await session.execute(
                select(BookingRequest)
                .where(BookingRequest.id == booking_id)
                .options(
                    selectinload(BookingRequest.passengers),
                    selectinload(BookingRequest.history),
                )
            )
            return result.scalar_one()

    return _read


@pytest.fixture
def read_history(session_factory):
    async def _read(booking_id: uuid.UUID) -> List[BookingHistory]:
        async with session_factory() as session:
            result = await session.execute(
                select(BookingHistory).where(BookingHistory.booking_id == booking_id)
            )
            return list(result.scalars().all())

    return _read


@pytest.fixture
def set_departure(session_factory):
    """Move a flight group's departure time, e.g. into the past."""

    async def _set(flight_group_id: uuid.UUID, departure_time_utc) -> None:
        async with session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(FlightGroup)
                    .where(FlightGroup.id == flight_group_id)
                    .values(departure_time_utc=departure_time_utc)
                )

    return _set


@pytest.fixture
def make_paid_booking(service, agent, admin):
    """Drive a new booking all the way to PAID."""

    async def _make(flight_group_id: uuid.UUID, adults: int = 2, children: int = 1, infants: int = 0) -> BookingRequest:
        booking = await service.create_booking(agent, flight_group_id, adults=adults, children=children, infants=infants)
        await service.approve_booking(booking.id, admin)
        await service.request_payment(booking.id, admin)
        return await service.mark_paid(
            booking.id,
            admin,
            payment_proof_url="https://files.example.com/proof.pdf",
            payment_reference="BANK-REF-1",
        )

    return _make
