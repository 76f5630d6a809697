import pytest
from sqlalchemy import func, select, update

from classbook.core.errors import ClassSessionNotFound, InvalidTransition
from classbook.models import Booking, ClassSession
from classbook.models.classModel import BOOKING_CANCELLED, BOOKING_CONFIRMED
from classbook.services.capacity_ledger import Admitted, CapacityLedger, Full

from conftest import attendee


async def test_reserve_admits_until_capacity_then_reports_full(db, org, make_session):
    session = await make_session(org.id, capacity=2)
    ledger = CapacityLedger(db)

    first = await ledger.reserve(session.id, attendee=attendee(email="a@example.com"))
    second = await ledger.reserve(session.id, attendee=attendee(email="b@example.com"))
    third = await ledger.reserve(session.id, attendee=attendee(email="c@example.com"))
    await db.commit()

    assert isinstance(first, Admitted)
    assert isinstance(second, Admitted)
    assert isinstance(third, Full)
    assert third.capacity == 2

    assert first.booking.status == BOOKING_CONFIRMED
    assert first.booking.qr_code
    assert first.booking.qr_code != second.booking.qr_code
    assert await ledger.confirmed_count(session.id) == 2
    assert await ledger.is_full(session.id)

    bookings = await db.scalar(select(func.count(Booking.id)).where(Booking.session_id == session.id))
    assert bookings == 2


async def test_release_returns_the_seat(db, org, make_session):
    session = await make_session(org.id, capacity=1)
    ledger = CapacityLedger(db)

    admitted = await ledger.reserve(session.id, attendee=attendee())
    released = await ledger.release(admitted.booking.id)
    await db.commit()

    assert released.status == BOOKING_CANCELLED
    assert released.cancelled_at is not None
    assert await ledger.confirmed_count(session.id) == 0
    assert not await ledger.is_full(session.id)


async def test_release_requires_a_confirmed_booking(db, org, make_session):
    session = await make_session(org.id, capacity=1)
    ledger = CapacityLedger(db)

    admitted = await ledger.reserve(session.id, attendee=attendee())
    await ledger.release(admitted.booking.id)

    with pytest.raises(InvalidTransition):
        await ledger.release(admitted.booking.id)


async def test_unknown_session(db):
    ledger = CapacityLedger(db)

    with pytest.raises(ClassSessionNotFound):
        await ledger.reserve(999, attendee=attendee())
    with pytest.raises(ClassSessionNotFound):
        await ledger.confirmed_count(999)


async def test_reserve_needs_attendee_or_booking(db, org, make_session):
    session = await make_session(org.id)

    with pytest.raises(ValueError):
        await CapacityLedger(db).reserve(session.id)


async def test_seat_counter_is_checked_in_the_database(db, org, make_session):
    session = await make_session(org.id, capacity=1)

    # Another writer takes the last seat; the loaded object still says 0
    await db.execute(
        update(ClassSession).where(ClassSession.id == session.id).values(confirmed_count=1)
        .execution_options(synchronize_session=False)
    )
    assert session.confirmed_count == 0

    result = await CapacityLedger(db).reserve(session.id, attendee=attendee())

    assert isinstance(result, Full)
    bookings = await db.scalar(select(func.count(Booking.id)).where(Booking.session_id == session.id))
    assert bookings == 0
