"""
GraphQL queries for bookings and waitlists.
"""
import logging
from typing import Optional

import strawberry
from sqlalchemy.ext.asyncio import AsyncSession
from strawberry.types import Info

from classbook.crud.bookingsCrud import get_booking_data, get_session_bookings, get_session_waitlist
from classbook.graphql.auth.permissions import IsAuthenticated
from classbook.graphql.bookings.types import (
    Booking,
    BookingsResponse,
    WaitlistEntry,
    WaitlistResponse
)

logger = logging.getLogger(__name__)


@strawberry.type
class BookingQuery:
    """Booking queries"""

    @strawberry.field(permission_classes=[IsAuthenticated])
    async def booking(
        self,
        info: Info,
        id: int
    ) -> Optional[Booking]:
        """Get a booking by ID"""
        db: AsyncSession = info.context.db

        try:
            booking_data = await get_booking_data(db, id)
            return Booking.from_data(booking_data) if booking_data else None

        except Exception:
            logger.exception("Failed to load booking %s", id)
            return None

    @strawberry.field(permission_classes=[IsAuthenticated])
    async def session_bookings(
        self,
        info: Info,
        session_id: int,
        include_cancelled: bool = False
    ) -> BookingsResponse:
        """Bookings of a class session, oldest first"""
        db: AsyncSession = info.context.db

        try:
            bookings_data = await get_session_bookings(db, session_id, include_cancelled=include_cancelled)
            bookings = [Booking.from_data(data) for data in bookings_data]
            return BookingsResponse(
                success=True,
                bookings=bookings,
                total_count=len(bookings),
                message=f"Found {len(bookings)} bookings"
            )

        except Exception as e:
            logger.exception("Failed to load bookings of class session %s", session_id)
            return BookingsResponse(
                success=False,
                bookings=[],
                total_count=0,
                message=f"Error retrieving bookings: {str(e)}"
            )

    @strawberry.field(permission_classes=[IsAuthenticated])
    async def session_waitlist(
        self,
        info: Info,
        session_id: int
    ) -> WaitlistResponse:
        """Waitlist of a class session in promotion order"""
        db: AsyncSession = info.context.db

        try:
            entries = [WaitlistEntry.from_data(data) for data in await get_session_waitlist(db, session_id)]
            return WaitlistResponse(
                success=True,
                entries=entries,
                total_count=len(entries),
                message=f"Found {len(entries)} waitlist entries"
            )

        except Exception as e:
            logger.exception("Failed to load waitlist of class session %s", session_id)
            return WaitlistResponse(
                success=False,
                entries=[],
                total_count=0,
                message=f"Error retrieving waitlist: {str(e)}"
            )
