"""
Reservation code (PNR) and ticket number assignment.

Both identifiers follow the same pattern: generate a candidate, skip it if
it is already taken, then claim it under a UNIQUE constraint inside a
SAVEPOINT. A constraint violation only rolls back the savepoint and counts
as one collision of the bounded retry loop.
"""

import logging
import re
import secrets
import string
import uuid
from datetime import date, datetime
from typing import Callable, List, Optional

from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from ..config import get_settings
from ..models.booking import BookingRequest, Passenger
from ..models.flight_group import FlightGroup, ReservationCodeMode
from ..models.reservation_code import ReservationCode
from ..utils.retry import retry_on_conflict

logger = logging.getLogger(__name__)

RESERVATION_CODE_ALPHABET = string.ascii_uppercase + string.digits
TICKET_NUMBER_PATTERN = re.compile(r"^[A-Z0-9]{2,3}-\d{8}-\d{6}$")

CodeGenerator = Callable[[], str]
TicketNumberGenerator = Callable[[str, date], str]


def generate_reservation_code(length: Optional[int] = None) -> str:
    """Random reservation code over A-Z0-9."""
    length = length or get_settings().reservation_code_length
    return "".join(secrets.choice(RESERVATION_CODE_ALPHABET) for _ in range(length))


def generate_ticket_number(carrier_code: str, issued_on: date) -> str:
    """Ticket number in the form ``CC-YYYYMMDD-NNNNNN``."""
    return f"{carrier_code.upper()}-{issued_on:%Y%m%d}-{secrets.randbelow(1_000_000):06d}"


def validate_reservation_code_format(code: str, length: Optional[int] = None) -> bool:
    length = length or get_settings().reservation_code_length
    return re.fullmatch(rf"[A-Z0-9]{{{length}}}", code or "") is not None


def validate_ticket_number_format(ticket_number: str) -> bool:
    return TICKET_NUMBER_PATTERN.fullmatch(ticket_number or "") is not None


class IdentifierService:
    """Assigns reservation codes and ticket numbers with collision retry."""

    def __init__(
        self,
        session: AsyncSession,
        code_generator: Optional[CodeGenerator] = None,
        ticket_number_generator: Optional[TicketNumberGenerator] = None,
        max_attempts: Optional[int] = None,
    ):
        self.session = session
        self.settings = get_settings()
        self.code_generator = code_generator or generate_reservation_code
        self.ticket_number_generator = ticket_number_generator or generate_ticket_number
        self.max_attempts = max_attempts or self.settings.identifier_max_attempts

    async def assign_reservation_code(self, booking: BookingRequest, flight_group: FlightGroup) -> str:
        """
        Give the booking a reservation code if it has none.

        Shared mode reuses (or creates once) the flight group's code;
        per-booking mode claims a fresh code for this booking.

        Raises:
            IdentifierExhaustedError: If no free code was found in time
        """
        if booking.reservation_code:
            return booking.reservation_code

        if flight_group.reservation_code_mode == ReservationCodeMode.SHARED:
            code = await self._ensure_shared_code(flight_group)
        else:
            code = await self._claim_reservation_code(booking_id=booking.id)

        booking.reservation_code = code
        logger.info(f"Reservation code {code} assigned to booking {booking.id}")
        return code

    async def assign_ticket_numbers(
        self,
        booking: BookingRequest,
        carrier_code: str,
        issued_at: datetime,
    ) -> List[str]:
        """
        Give every passenger of the booking a unique ticket number.

        Passengers that already hold a ticket number keep it.
        """
        issued_on = issued_at.date()
        ticket_numbers = []

        for passenger in booking.passengers:
            if passenger.ticket_number is None:
                ticket_number = await self._claim_ticket_number(passenger, carrier_code, issued_on)
                set_committed_value(passenger, "ticket_number", ticket_number)
            ticket_numbers.append(passenger.ticket_number)

        logger.info(f"Assigned {len(ticket_numbers)} ticket numbers to booking {booking.id}")
        return ticket_numbers

    async def _ensure_shared_code(self, flight_group: FlightGroup) -> str:
        if flight_group.shared_reservation_code:
            return flight_group.shared_reservation_code

        code = await self._claim_reservation_code(flight_group_id=flight_group.id)

        # Only the first approval on the group gets to set the shared code
        result = await self.session.execute(
            update(FlightGroup)
            .where(
                FlightGroup.id == flight_group.id,
                FlightGroup.shared_reservation_code.is_(None),
            )
            .values(shared_reservation_code=code)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            logger.info(f"Shared code for flight group {flight_group.id} was set concurrently; discarding {code}")
            await self.session.execute(
                delete(ReservationCode)
                .where(ReservationCode.code == code)
                .execution_options(synchronize_session=False)
            )

        await self.session.refresh(flight_group, ["shared_reservation_code"])
        return flight_group.shared_reservation_code

    async def _claim_reservation_code(
        self,
        booking_id: Optional[uuid.UUID] = None,
        flight_group_id: Optional[uuid.UUID] = None,
    ) -> str:
        async def attempt(attempt_number: int) -> Optional[str]:
            candidate = self.code_generator()
            if await self._reservation_code_taken(candidate):
                return None
            claimed = await self._try_claim(
                insert(ReservationCode).values(
                    id=uuid.uuid4(),
                    code=candidate,
                    booking_id=booking_id,
                    flight_group_id=flight_group_id,
                )
            )
            return candidate if claimed else None

        return await retry_on_conflict(attempt, self.max_attempts, "reservation code")

    async def _claim_ticket_number(self, passenger: Passenger, carrier_code: str, issued_on: date) -> str:
        async def attempt(attempt_number: int) -> Optional[str]:
            candidate = self.ticket_number_generator(carrier_code, issued_on)
            if await self._ticket_number_taken(candidate):
                return None
            claimed = await self._try_claim(
                update(Passenger)
                .where(Passenger.id == passenger.id, Passenger.ticket_number.is_(None))
                .values(ticket_number=candidate)
                .execution_options(synchronize_session=False)
            )
            return candidate if claimed else None

        return await retry_on_conflict(attempt, self.max_attempts, "ticket number")

    async def _try_claim(self, stmt) -> bool:
        """Run a claiming statement in a savepoint; False on a uniqueness clash."""
        try:
            async with self.session.begin_nested():
                result = await self.session.execute(stmt)
        except IntegrityError as e:
            logger.debug(f"Identifier claim collided: {e.orig}")
            return False
        return result.rowcount == 1

    async def _reservation_code_taken(self, code: str) -> bool:
        stmt = select(ReservationCode.id).where(ReservationCode.code == code).limit(1)
        return (await self.session.execute(stmt)).first() is not None

    async def _ticket_number_taken(self, ticket_number: str) -> bool:
        stmt = select(Passenger.id).where(Passenger.ticket_number == ticket_number).limit(1)
        return (await self.session.execute(stmt)).first() is not None
