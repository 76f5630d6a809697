"""
Capacity ledger: the single source of truth for "is this class full".

ClassSession.confirmed_count is the per-session counter. Every seat change
goes through a conditional UPDATE (compare-and-swap), so two writers can
never both take the last seat even without the surrounding locks.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Optional, Union

from sqlalchemy import select, update, and_
from sqlalchemy.ext.asyncio import AsyncSession

from classbook.core.conversions import utcnow
from classbook.core.errors import (
    BookingNotFound, ClassSessionNotFound, InvalidTransition, InvariantViolation
)
from classbook.crud.bookingsCrud import Attendee
from classbook.models import Booking, ClassSession
from classbook.models.classModel import (
    BOOKING_CONFIRMED, BOOKING_WAITLISTED, BOOKING_CANCELLED, SOURCE_DIRECT
)

logger = logging.getLogger(__name__)


@dataclass
class Admitted:
    booking: Booking


@dataclass
class Full:
    session_id: int
    capacity: int


ReserveResult = Union[Admitted, Full]


def new_request_id() -> str:
    return str(uuid.uuid4())


def new_qr_code() -> str:
    return uuid.uuid4().hex


class CapacityLedger:
    """Seat accounting for class sessions"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def lock_session(self, session_id: int) -> ClassSession:
        """Load the class session with a row lock held until the transaction ends"""
        result = await self.db.execute(
            select(ClassSession)
            .where(ClassSession.id == session_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        session = result.scalar_one_or_none()
        if session is None:
            raise ClassSessionNotFound(session_id)
        return session

    async def confirmed_count(self, session_id: int) -> int:
        result = await self.db.execute(
            select(ClassSession.confirmed_count).where(ClassSession.id == session_id)
        )
        count = result.scalar_one_or_none()
        if count is None:
            raise ClassSessionNotFound(session_id)
        return count

    async def is_full(self, session_id: int) -> bool:
        result = await self.db.execute(
            select(ClassSession.confirmed_count, ClassSession.capacity)
            .where(ClassSession.id == session_id)
        )
        row = result.first()
        if row is None:
            raise ClassSessionNotFound(session_id)
        return row.confirmed_count >= row.capacity

    async def _take_seat(self, session_id: int) -> bool:
        result = await self.db.execute(
            update(ClassSession)
            .where(
                and_(
                    ClassSession.id == session_id,
                    ClassSession.confirmed_count < ClassSession.capacity
                )
            )
            .values(confirmed_count=ClassSession.confirmed_count + 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def _return_seat(self, session_id: int) -> None:
        result = await self.db.execute(
            update(ClassSession)
            .where(
                and_(
                    ClassSession.id == session_id,
                    ClassSession.confirmed_count > 0
                )
            )
            .values(confirmed_count=ClassSession.confirmed_count - 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvariantViolation(
                f"Class session {session_id} released a seat with a zero confirmed count"
            )

    async def reserve(
        self,
        session_id: int,
        *,
        attendee: Optional[Attendee] = None,
        request_id: Optional[str] = None,
        source: str = SOURCE_DIRECT,
        booking: Optional[Booking] = None
    ) -> ReserveResult:
        """
        Take a seat if one is free.

        Args:
            session_id: Class session to reserve in
            attendee: Who the new confirmed booking is for
            request_id: Stable request id to stamp on a new booking
            source: Booking source recorded on the confirmed booking
            booking: Waitlisted booking to confirm instead of creating a new one

        Returns:
            Admitted with the confirmed booking, or Full (nothing written)
        """
        if booking is None and attendee is None:
            raise ValueError("reserve needs an attendee or a waitlisted booking")
        if booking is not None and booking.status != BOOKING_WAITLISTED:
            raise InvalidTransition(
                f"Booking {booking.id} cannot be confirmed from status {booking.status}"
            )

        if not await self._take_seat(session_id):
            capacity = await self.db.scalar(
                select(ClassSession.capacity).where(ClassSession.id == session_id)
            )
            if capacity is None:
                raise ClassSessionNotFound(session_id)
            logger.info("Class session %s is full (capacity %s)", session_id, capacity)
            return Full(session_id=session_id, capacity=capacity)

        now = utcnow()
        if booking is None:
            booking = Booking(
                session_id=session_id,
                request_id=request_id or new_request_id(),
                attendee_name=attendee.name,
                attendee_email=attendee.email,
                attendee_phone=attendee.phone,
                status=BOOKING_CONFIRMED,
                source=source,
                qr_code=new_qr_code(),
                confirmed_at=now,
            )
            self.db.add(booking)
        else:
            booking.status = BOOKING_CONFIRMED
            booking.source = source
            booking.confirmed_at = now
            booking.qr_code = booking.qr_code or new_qr_code()

        await self.db.flush()
        logger.info("Seat taken in class session %s by booking %s", session_id, booking.id)
        return Admitted(booking=booking)

    async def release(self, booking_id: int) -> Booking:
        """Cancel a confirmed booking and give its seat back"""
        result = await self.db.execute(
            select(Booking)
            .where(Booking.id == booking_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        booking = result.scalar_one_or_none()
        if booking is None:
            raise BookingNotFound(booking_id)
        if booking.status != BOOKING_CONFIRMED:
            raise InvalidTransition(
                f"Only confirmed bookings release a seat (booking {booking_id} is {booking.status})"
            )

        await self._return_seat(booking.session_id)
        booking.status = BOOKING_CANCELLED
        booking.cancelled_at = utcnow()
        await self.db.flush()

        logger.info("Seat released in class session %s by booking %s", booking.session_id, booking.id)
        return booking
