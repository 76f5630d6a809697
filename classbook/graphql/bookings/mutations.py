"""
GraphQL mutations for bookings.
"""
import logging

import strawberry
from sqlalchemy.ext.asyncio import AsyncSession
from strawberry.types import Info

from classbook.crud.bookingsCrud import Attendee, check_in_to_data, get_booking_data
from classbook.graphql.auth.permissions import IsAuthenticated
from classbook.graphql.bookings.types import (
    Booking,
    BookingResponse,
    CancelBookingInput,
    CancelBookingResponse,
    CheckIn,
    CheckInResponse,
    RequestBookingInput
)
from classbook.services.booking_lifecycle import BookingLifecycle

logger = logging.getLogger(__name__)


@strawberry.type
class BookingMutation:
    """Booking mutations"""

    @strawberry.mutation
    async def request_booking(
        self,
        info: Info,
        input: RequestBookingInput
    ) -> BookingResponse:
        """Book a seat, or join the waitlist when the class is full"""
        db: AsyncSession = info.context.db

        try:
            outcome = await BookingLifecycle(db).request_booking(
                input.session_id,
                Attendee(
                    name=input.attendee_name,
                    email=input.attendee_email,
                    phone=input.attendee_phone
                )
            )
            booking_data = await get_booking_data(db, outcome.booking.id)

            if outcome.waitlist_position is not None:
                message = f"Class is full; you are number {outcome.waitlist_position} on the waitlist"
            else:
                message = "Booking confirmed"

            return BookingResponse(
                success=True,
                booking=Booking.from_data(booking_data) if booking_data else None,
                message=message
            )

        except ValueError as e:
            await db.rollback()
            return BookingResponse(success=False, booking=None, message=str(e))
        except Exception as e:
            await db.rollback()
            logger.exception("request_booking failed")
            return BookingResponse(success=False, booking=None, message=f"Unexpected error: {str(e)}")

    @strawberry.mutation
    async def cancel_booking(
        self,
        info: Info,
        input: CancelBookingInput
    ) -> CancelBookingResponse:
        """Cancel a booking; a freed seat goes to the front of the waitlist"""
        db: AsyncSession = info.context.db

        try:
            # Staff may cancel any booking, attendees only their own
            attendee_email = None if info.context.user else input.attendee_email
            if not info.context.user and not attendee_email:
                return CancelBookingResponse(
                    success=False,
                    booking=None,
                    promoted_booking=None,
                    message="attendee_email is required to cancel a booking"
                )

            result = await BookingLifecycle(db).cancel_booking(input.booking_id, attendee_email=attendee_email)

            booking_data = await get_booking_data(db, result.booking.id)
            promoted_data = await get_booking_data(db, result.promoted.id) if result.promoted else None

            message = "Booking cancelled successfully"
            if result.promotion_failed:
                message = "Booking cancelled; waitlist promotion needs operator attention"

            return CancelBookingResponse(
                success=True,
                booking=Booking.from_data(booking_data) if booking_data else None,
                promoted_booking=Booking.from_data(promoted_data) if promoted_data else None,
                message=message
            )

        except ValueError as e:
            await db.rollback()
            return CancelBookingResponse(success=False, booking=None, promoted_booking=None, message=str(e))
        except Exception as e:
            await db.rollback()
            logger.exception("cancel_booking failed")
            return CancelBookingResponse(
                success=False,
                booking=None,
                promoted_booking=None,
                message=f"Unexpected error: {str(e)}"
            )

    @strawberry.mutation
    async def withdraw_from_waitlist(
        self,
        info: Info,
        entry_id: int,
        attendee_email: str
    ) -> BookingResponse:
        """Leave the waitlist of a class"""
        db: AsyncSession = info.context.db

        try:
            result = await BookingLifecycle(db).withdraw_from_waitlist(entry_id, attendee_email=attendee_email)
            booking_data = await get_booking_data(db, result.booking.id)
            return BookingResponse(
                success=True,
                booking=Booking.from_data(booking_data) if booking_data else None,
                message="Removed from waitlist"
            )

        except ValueError as e:
            await db.rollback()
            return BookingResponse(success=False, booking=None, message=str(e))
        except Exception as e:
            await db.rollback()
            logger.exception("withdraw_from_waitlist failed")
            return BookingResponse(success=False, booking=None, message=f"Unexpected error: {str(e)}")

    @strawberry.mutation(permission_classes=[IsAuthenticated])
    async def check_in(
        self,
        info: Info,
        booking_id: int
    ) -> CheckInResponse:
        """Check in a confirmed booking"""
        db: AsyncSession = info.context.db

        try:
            check_in = await BookingLifecycle(db).check_in(booking_id, operator=info.context.user.label)
            return CheckInResponse(
                success=True,
                check_in=CheckIn.from_data(check_in_to_data(check_in)),
                message="Check-in successful"
            )

        except ValueError as e:
            await db.rollback()
            return CheckInResponse(success=False, check_in=None, message=str(e))
        except Exception as e:
            await db.rollback()
            logger.exception("check_in failed")
            return CheckInResponse(success=False, check_in=None, message=f"Unexpected error: {str(e)}")

    @strawberry.mutation(permission_classes=[IsAuthenticated])
    async def check_in_by_qr(
        self,
        info: Info,
        qr_code: str
    ) -> CheckInResponse:
        """Check in the booking behind a scanned QR code"""
        db: AsyncSession = info.context.db

        try:
            check_in = await BookingLifecycle(db).check_in_by_qr(qr_code.strip(), operator=info.context.user.label)
            return CheckInResponse(
                success=True,
                check_in=CheckIn.from_data(check_in_to_data(check_in)),
                message="Check-in successful"
            )

        except ValueError as e:
            await db.rollback()
            return CheckInResponse(success=False, check_in=None, message=str(e))
        except Exception as e:
            await db.rollback()
            logger.exception("check_in_by_qr failed")
            return CheckInResponse(success=False, check_in=None, message=f"Unexpected error: {str(e)}")
