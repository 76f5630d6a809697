"""
CRUD operations for ClassSession management
Creation runs calendar conflict detection; updates keep booked windows fixed
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, and_, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError

from classbook.core.conversions import as_utc, coerce_decimal, utcnow
from classbook.core.errors import ClassSessionNotFound, InvalidTransition, SchedulingConflict
from classbook.models import Booking, ClassSession, Organization, WaitlistEntry
from classbook.models.classModel import BOOKING_CANCELLED
from classbook.services.conflict_detector import ConflictDetector
from classbook.services.session_locks import SessionLocks, default_session_locks

logger = logging.getLogger(__name__)


@dataclass
class ClassSessionData:
    id: int
    organization_id: int
    name: str
    instructor_name: Optional[str]
    start_at: datetime
    end_at: datetime
    capacity: int
    confirmed_count: int
    available_spots: int
    waitlist_size: int
    price: Decimal
    currency: str

    @property
    def is_full(self) -> bool:
        return self.available_spots == 0


def _validate_window(start_at: datetime, end_at: datetime) -> None:
    if as_utc(start_at) >= as_utc(end_at):
        raise ValueError("Class start must be before its end")


def _validate_price(price: Optional[Decimal]) -> Decimal:
    value = coerce_decimal(price) if price is not None else Decimal("0.00")
    if value is None or value < 0:
        raise ValueError("Class price must be zero or positive")
    return value


async def create_class_session(
    db: AsyncSession,
    organization_id: int,
    name: str,
    start_at: datetime,
    end_at: datetime,
    capacity: int,
    price: Optional[Decimal] = None,
    currency: str = "USD",
    instructor_name: Optional[str] = None,
    allow_conflicts: bool = False
) -> ClassSession:
    """Create a new class session, refusing windows that clash with synced calendars"""
    name = (name or "").strip()
    if not name:
        raise ValueError("Class name is required")
    if capacity is None or capacity <= 0:
        raise ValueError("Class capacity must be positive")
    _validate_window(start_at, end_at)
    price = _validate_price(price)

    if await db.get(Organization, organization_id) is None:
        raise ValueError(f"Organization {organization_id} not found")

    if not allow_conflicts:
        conflicts = await ConflictDetector(db).find_conflicts(organization_id, start_at, end_at)
        if conflicts:
            raise SchedulingConflict(conflicts)

    session = ClassSession(
        organization_id=organization_id,
        name=name,
        instructor_name=instructor_name,
        start_at=as_utc(start_at),
        end_at=as_utc(end_at),
        capacity=capacity,
        confirmed_count=0,
        price=price,
        currency=currency.upper(),
    )

    db.add(session)
    try:
        await db.commit()
        await db.refresh(session)
    except SQLAlchemyError:
        await db.rollback()
        raise

    logger.info("Created class session %s for organization %s", session.id, organization_id)
    return session


async def get_class_session_data(
    db: AsyncSession,
    session_id: int
) -> Optional[ClassSessionData]:
    """Class session with its seat and waitlist figures"""
    session = await db.get(ClassSession, session_id, populate_existing=True)
    if session is None:
        return None

    waitlist_size = await db.scalar(
        select(func.count(WaitlistEntry.id)).where(WaitlistEntry.session_id == session_id)
    )
    return ClassSessionData(
        id=session.id,
        organization_id=session.organization_id,
        name=session.name,
        instructor_name=session.instructor_name,
        start_at=as_utc(session.start_at),
        end_at=as_utc(session.end_at),
        capacity=session.capacity,
        confirmed_count=session.confirmed_count,
        available_spots=max(0, session.capacity - session.confirmed_count),
        waitlist_size=waitlist_size or 0,
        price=session.price,
        currency=session.currency,
    )


async def list_class_sessions(
    db: AsyncSession,
    organization_id: int,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None
) -> List[ClassSession]:
    """Classes of an organization, optionally limited to a start-time window"""
    query = select(ClassSession).where(ClassSession.organization_id == organization_id)
    if start:
        query = query.where(ClassSession.start_at >= as_utc(start))
    if end:
        query = query.where(ClassSession.start_at < as_utc(end))

    result = await db.execute(query.order_by(ClassSession.start_at, ClassSession.id))
    return list(result.scalars().all())


async def _has_active_bookings(db: AsyncSession, session_id: int) -> bool:
    bookings = await db.scalar(
        select(func.count(Booking.id)).where(
            and_(
                Booking.session_id == session_id,
                Booking.status != BOOKING_CANCELLED
            )
        )
    )
    return bool(bookings)


async def update_class_session(
    db: AsyncSession,
    session_id: int,
    *,
    name: Optional[str] = None,
    instructor_name: Optional[str] = None,
    price: Optional[Decimal] = None,
    currency: Optional[str] = None,
    start_at: Optional[datetime] = None,
    end_at: Optional[datetime] = None,
    capacity: Optional[int] = None,
    allow_conflicts: bool = False,
    locks: Optional[SessionLocks] = None
) -> ClassSession:
    """
    Update a class session

    Name, instructor and price can always change. The time window only
    changes while nobody holds a booking or waitlist spot, and capacity can
    never drop below the confirmed count.
    """
    locks = locks or default_session_locks

    async with locks.hold(session_id):
        try:
            result = await db.execute(
                select(ClassSession)
                .where(ClassSession.id == session_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            session = result.scalar_one_or_none()
            if session is None:
                raise ClassSessionNotFound(session_id)

            if name is not None:
                if not name.strip():
                    raise ValueError("Class name is required")
                session.name = name.strip()
            if instructor_name is not None:
                session.instructor_name = instructor_name or None
            if price is not None:
                session.price = _validate_price(price)
            if currency is not None:
                session.currency = currency.upper()

            if start_at is not None or end_at is not None:
                new_start = as_utc(start_at) if start_at is not None else as_utc(session.start_at)
                new_end = as_utc(end_at) if end_at is not None else as_utc(session.end_at)
                window_changed = (
                    new_start != as_utc(session.start_at) or new_end != as_utc(session.end_at)
                )
                if window_changed:
                    if await _has_active_bookings(db, session_id):
                        raise InvalidTransition(
                            "Class time cannot change while it has bookings or waitlist entries"
                        )
                    _validate_window(new_start, new_end)
                    if not allow_conflicts:
                        conflicts = await ConflictDetector(db).find_conflicts(
                            session.organization_id, new_start, new_end
                        )
                        if conflicts:
                            raise SchedulingConflict(conflicts)
                    session.start_at = new_start
                    session.end_at = new_end

            if capacity is not None:
                if capacity <= 0:
                    raise ValueError("Class capacity must be positive")
                if capacity < session.confirmed_count:
                    raise InvalidTransition(
                        f"Capacity {capacity} is below the {session.confirmed_count} confirmed bookings"
                    )
                session.capacity = capacity

            session.updated_at = utcnow()
            await db.commit()
        except Exception:
            await db.rollback()
            raise

    logger.info("Updated class session %s", session_id)
    return session
