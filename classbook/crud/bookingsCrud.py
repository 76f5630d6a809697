"""
CRUD operations for bookings, waitlist entries and check-ins.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, List

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from classbook.core.conversions import as_utc
from classbook.models import Booking, ClassSession, WaitlistEntry, CheckIn


@dataclass
class Attendee:
    """Who a booking request is for"""
    name: str
    email: str
    phone: Optional[str] = None


@dataclass
class BookingData:
    """Clean booking data structure"""
    id: int
    session_id: int
    request_id: str
    attendee_name: str
    attendee_email: str
    status: str
    source: str
    created_at: datetime
    attendee_phone: Optional[str] = None
    qr_code: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    checked_in_at: Optional[datetime] = None
    waitlist_position: Optional[int] = None

    # Related data
    session_name: Optional[str] = None
    session_start: Optional[datetime] = None
    session_end: Optional[datetime] = None


@dataclass
class WaitlistEntryData:
    """Waitlist entry with its queue position"""
    id: int
    session_id: int
    booking_id: int
    request_id: str
    attendee_name: str
    attendee_email: str
    position: int
    created_at: datetime


@dataclass
class CheckInData:
    id: int
    booking_id: int
    checked_in_at: datetime
    checked_in_by: Optional[str]


def booking_to_data(
    booking: Booking,
    session: Optional[ClassSession] = None,
    check_in: Optional[CheckIn] = None,
    waitlist_position: Optional[int] = None,
) -> BookingData:
    return BookingData(
        id=booking.id,
        session_id=booking.session_id,
        request_id=booking.request_id,
        attendee_name=booking.attendee_name,
        attendee_email=booking.attendee_email,
        attendee_phone=booking.attendee_phone,
        status=booking.status,
        source=booking.source,
        qr_code=booking.qr_code,
        created_at=as_utc(booking.created_at),
        confirmed_at=as_utc(booking.confirmed_at),
        cancelled_at=as_utc(booking.cancelled_at),
        checked_in_at=as_utc(check_in.checked_in_at) if check_in else None,
        waitlist_position=waitlist_position,
        session_name=session.name if session else None,
        session_start=as_utc(session.start_at) if session else None,
        session_end=as_utc(session.end_at) if session else None,
    )


def entry_to_data(entry: WaitlistEntry) -> WaitlistEntryData:
    return WaitlistEntryData(
        id=entry.id,
        session_id=entry.session_id,
        booking_id=entry.booking_id,
        request_id=entry.request_id,
        attendee_name=entry.attendee_name,
        attendee_email=entry.attendee_email,
        position=entry.position,
        created_at=as_utc(entry.created_at),
    )


def check_in_to_data(check_in: CheckIn) -> CheckInData:
    return CheckInData(
        id=check_in.id,
        booking_id=check_in.booking_id,
        checked_in_at=as_utc(check_in.checked_in_at),
        checked_in_by=check_in.checked_in_by,
    )


async def get_booking(
    db: AsyncSession,
    booking_id: int,
    for_update: bool = False
) -> Optional[Booking]:
    query = select(Booking).where(Booking.id == booking_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def get_booking_by_qr(db: AsyncSession, qr_code: str) -> Optional[Booking]:
    result = await db.execute(select(Booking).where(Booking.qr_code == qr_code))
    return result.scalar_one_or_none()


async def get_active_booking_for_email(
    db: AsyncSession,
    session_id: int,
    attendee_email: str
) -> Optional[Booking]:
    """Non-cancelled booking the attendee already holds for a session"""
    result = await db.execute(
        select(Booking).where(
            and_(
                Booking.session_id == session_id,
                Booking.attendee_email == attendee_email,
                Booking.status != "cancelled"
            )
        )
    )
    return result.scalar_one_or_none()


async def get_check_in(db: AsyncSession, booking_id: int) -> Optional[CheckIn]:
    result = await db.execute(select(CheckIn).where(CheckIn.booking_id == booking_id))
    return result.scalar_one_or_none()


async def get_booking_data(
    db: AsyncSession,
    booking_id: int
) -> Optional[BookingData]:
    """Get a booking by ID with related data"""
    result = await db.execute(
        select(Booking, CheckIn, WaitlistEntry.position)
        .options(joinedload(Booking.session))
        .outerjoin(CheckIn, CheckIn.booking_id == Booking.id)
        .outerjoin(WaitlistEntry, WaitlistEntry.booking_id == Booking.id)
        .where(Booking.id == booking_id)
    )
    row = result.first()
    if not row:
        return None

    booking, check_in, position = row
    return booking_to_data(booking, booking.session, check_in, position)


async def get_session_bookings(
    db: AsyncSession,
    session_id: int,
    include_cancelled: bool = False
) -> List[BookingData]:
    """Get all bookings for a session, oldest first"""
    query = (
        select(Booking, CheckIn, WaitlistEntry.position)
        .options(joinedload(Booking.session))
        .outerjoin(CheckIn, CheckIn.booking_id == Booking.id)
        .outerjoin(WaitlistEntry, WaitlistEntry.booking_id == Booking.id)
        .where(Booking.session_id == session_id)
    )

    if not include_cancelled:
        query = query.where(Booking.status != "cancelled")

    query = query.order_by(Booking.created_at, Booking.id)

    result = await db.execute(query)
    return [
        booking_to_data(booking, booking.session, check_in, position)
        for booking, check_in, position in result.all()
    ]


async def get_session_waitlist(
    db: AsyncSession,
    session_id: int
) -> List[WaitlistEntryData]:
    result = await db.execute(
        select(WaitlistEntry)
        .where(WaitlistEntry.session_id == session_id)
        .order_by(WaitlistEntry.position)
    )
    return [entry_to_data(entry) for entry in result.scalars().all()]
