"""
GraphQL types for bookings, waitlist entries and check-ins.
"""
from datetime import datetime
from typing import Optional, List
import strawberry

from classbook.crud.bookingsCrud import BookingData, CheckInData, WaitlistEntryData


@strawberry.type
class Booking:
    """Booking GraphQL type"""
    id: int
    session_id: int
    request_id: str
    attendee_name: str
    attendee_email: str
    attendee_phone: Optional[str]
    status: str
    source: str
    qr_code: Optional[str]
    created_at: datetime
    confirmed_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    checked_in_at: Optional[datetime]
    waitlist_position: Optional[int]

    # Related data
    session_name: Optional[str]
    session_start: Optional[datetime]
    session_end: Optional[datetime]

    @classmethod
    def from_data(cls, data: BookingData) -> "Booking":
        return cls(
            id=data.id,
            session_id=data.session_id,
            request_id=data.request_id,
            attendee_name=data.attendee_name,
            attendee_email=data.attendee_email,
            attendee_phone=data.attendee_phone,
            status=data.status,
            source=data.source,
            qr_code=data.qr_code,
            created_at=data.created_at,
            confirmed_at=data.confirmed_at,
            cancelled_at=data.cancelled_at,
            checked_in_at=data.checked_in_at,
            waitlist_position=data.waitlist_position,
            session_name=data.session_name,
            session_start=data.session_start,
            session_end=data.session_end
        )


@strawberry.type
class WaitlistEntry:
    id: int
    session_id: int
    booking_id: int
    request_id: str
    attendee_name: str
    attendee_email: str
    position: int
    created_at: datetime

    @classmethod
    def from_data(cls, data: WaitlistEntryData) -> "WaitlistEntry":
        return cls(
            id=data.id,
            session_id=data.session_id,
            booking_id=data.booking_id,
            request_id=data.request_id,
            attendee_name=data.attendee_name,
            attendee_email=data.attendee_email,
            position=data.position,
            created_at=data.created_at
        )


@strawberry.type
class CheckIn:
    id: int
    booking_id: int
    checked_in_at: datetime
    checked_in_by: Optional[str]

    @classmethod
    def from_data(cls, data: CheckInData) -> "CheckIn":
        return cls(
            id=data.id,
            booking_id=data.booking_id,
            checked_in_at=data.checked_in_at,
            checked_in_by=data.checked_in_by
        )


# Input types for mutations
@strawberry.input
class RequestBookingInput:
    """Input for requesting a seat in a class"""
    session_id: int
    attendee_name: str
    attendee_email: str
    attendee_phone: Optional[str] = None


@strawberry.input
class CancelBookingInput:
    booking_id: int
    attendee_email: Optional[str] = None


# Response types
@strawberry.type
class BookingResponse:
    """Response for booking operations"""
    success: bool
    booking: Optional[Booking]
    message: str


@strawberry.type
class CancelBookingResponse:
    success: bool
    booking: Optional[Booking]
    promoted_booking: Optional[Booking]
    message: str


@strawberry.type
class CheckInResponse:
    """Response for check-in operations"""
    success: bool
    check_in: Optional[CheckIn]
    message: str


@strawberry.type
class BookingsResponse:
    success: bool
    bookings: List[Booking]
    total_count: int
    message: str


@strawberry.type
class WaitlistResponse:
    success: bool
    entries: List[WaitlistEntry]
    total_count: int
    message: str
