"""
Per-session FIFO waitlist with dense 1-based positions.

Callers hold the class session's serialization (SessionLocks plus the
session row lock) around every method that writes positions.
"""
import logging
from typing import List, Optional

from sqlalchemy import select, update, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from classbook.core.conversions import utcnow
from classbook.core.errors import WaitlistEntryNotFound
from classbook.crud.bookingsCrud import Attendee
from classbook.models import Booking, WaitlistEntry

logger = logging.getLogger(__name__)


class WaitlistQueue:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def enqueue(
        self,
        session_id: int,
        attendee: Attendee,
        booking: Booking,
        request_id: str
    ) -> WaitlistEntry:
        """Append an attendee at position max + 1 (1 when empty)"""
        current_max = await self.db.scalar(
            select(func.max(WaitlistEntry.position)).where(WaitlistEntry.session_id == session_id)
        )
        entry = WaitlistEntry(
            session_id=session_id,
            booking_id=booking.id,
            request_id=request_id,
            attendee_name=attendee.name,
            attendee_email=attendee.email,
            attendee_phone=attendee.phone,
            position=(current_max or 0) + 1,
        )
        self.db.add(entry)
        await self.db.flush()

        logger.info(
            "Booking %s waitlisted for class session %s at position %s",
            booking.id, session_id, entry.position
        )
        return entry

    async def _compact_after(self, session_id: int, position: int) -> None:
        await self.db.execute(
            update(WaitlistEntry)
            .where(
                and_(
                    WaitlistEntry.session_id == session_id,
                    WaitlistEntry.position > position
                )
            )
            .values(position=WaitlistEntry.position - 1, updated_at=utcnow())
            .execution_options(synchronize_session="fetch")
        )

    async def _remove(self, entry: WaitlistEntry) -> None:
        session_id, position = entry.session_id, entry.position
        await self.db.delete(entry)
        await self.db.flush()
        await self._compact_after(session_id, position)

    async def dequeue_front(self, session_id: int) -> Optional[WaitlistEntry]:
        """Remove and return the position 1 entry, shifting everyone else up"""
        result = await self.db.execute(
            select(WaitlistEntry)
            .where(WaitlistEntry.session_id == session_id)
            .order_by(WaitlistEntry.position)
            .limit(1)
        )
        entry = result.scalar_one_or_none()
        if entry is None:
            return None

        await self._remove(entry)
        logger.info("Dequeued waitlist entry %s from class session %s", entry.id, session_id)
        return entry

    async def withdraw(self, entry_id: int) -> WaitlistEntry:
        """Remove an arbitrary entry and close the gap it leaves"""
        entry = await self.db.get(WaitlistEntry, entry_id)
        if entry is None:
            raise WaitlistEntryNotFound(entry_id)

        await self._remove(entry)
        logger.info(
            "Withdrew waitlist entry %s (position %s) from class session %s",
            entry.id, entry.position, entry.session_id
        )
        return entry

    async def entry_for_booking(self, booking_id: int) -> Optional[WaitlistEntry]:
        result = await self.db.execute(
            select(WaitlistEntry).where(WaitlistEntry.booking_id == booking_id)
        )
        return result.scalar_one_or_none()

    async def entries(self, session_id: int) -> List[WaitlistEntry]:
        result = await self.db.execute(
            select(WaitlistEntry)
            .where(WaitlistEntry.session_id == session_id)
            .order_by(WaitlistEntry.position)
        )
        return list(result.scalars().all())

    async def size(self, session_id: int) -> int:
        count = await self.db.scalar(
            select(func.count(WaitlistEntry.id)).where(WaitlistEntry.session_id == session_id)
        )
        return count or 0
