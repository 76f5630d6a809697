from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from classbook.core.errors import ClassSessionNotFound, InvalidTransition
from classbook.crud.classSessionCrud import (
    create_class_session, get_class_session_data, list_class_sessions, update_class_session
)
from classbook.services.booking_lifecycle import BookingLifecycle

from conftest import attendee

START = datetime(2026, 5, 4, 18, 0, tzinfo=timezone.utc)
BOOKED_AT = datetime(2026, 5, 1, tzinfo=timezone.utc)


async def _create(db, org, **overrides):
    values = dict(name="Evening Flow", start_at=START, end_at=START + timedelta(hours=1), capacity=2)
    values.update(overrides)
    return await create_class_session(db, org.id, **values)


@pytest.mark.parametrize("overrides", [
    {"name": "  "},
    {"capacity": 0},
    {"end_at": START},
    {"price": Decimal("-1")},
])
async def test_create_validates_input(db, org, overrides):
    with pytest.raises(ValueError):
        await _create(db, org, **overrides)


async def test_create_for_unknown_organization(db):
    with pytest.raises(ValueError):
        await create_class_session(db, 999, "Evening Flow", START, START + timedelta(hours=1), capacity=5)


async def test_session_data_reports_seats_and_waitlist(db, org, locks):
    session = await _create(db, org, capacity=1, price=Decimal("18.50"), currency="eur")
    lifecycle = BookingLifecycle(db, locks=locks)
    await lifecycle.request_booking(session.id, attendee(email="a@example.com"), now=BOOKED_AT)
    await lifecycle.request_booking(session.id, attendee(email="b@example.com"), now=BOOKED_AT)

    data = await get_class_session_data(db, session.id)

    assert data.confirmed_count == 1
    assert data.available_spots == 0
    assert data.is_full
    assert data.waitlist_size == 1
    assert data.price == Decimal("18.50")
    assert data.currency == "EUR"
    assert data.start_at == START
    assert await get_class_session_data(db, 999) is None


async def test_list_class_sessions_by_window(db, org):
    first = await _create(db, org)
    second = await _create(db, org, start_at=START + timedelta(days=7), end_at=START + timedelta(days=7, hours=1))

    assert [s.id for s in await list_class_sessions(db, org.id)] == [first.id, second.id]
    assert [s.id for s in await list_class_sessions(db, org.id, start=START + timedelta(days=1))] == [second.id]
    assert [s.id for s in await list_class_sessions(db, org.id, end=START + timedelta(days=1))] == [first.id]


async def test_window_moves_only_without_bookings(db, org, locks):
    session = await _create(db, org)
    session_id = session.id
    later = START + timedelta(hours=2)

    moved = await update_class_session(db, session_id, start_at=later, end_at=later + timedelta(hours=1), locks=locks)
    assert moved.start_at.replace(tzinfo=timezone.utc) == later

    await BookingLifecycle(db, locks=locks).request_booking(session_id, attendee(), now=BOOKED_AT)

    with pytest.raises(InvalidTransition):
        await update_class_session(db, session_id, start_at=START, end_at=START + timedelta(hours=1), locks=locks)

    # Everything else can still change
    renamed = await update_class_session(
        db, session_id, name="Candlelight Flow", price=Decimal("25"), locks=locks
    )
    assert renamed.name == "Candlelight Flow"
    assert renamed.price == Decimal("25.00")


async def test_capacity_cannot_drop_below_confirmed(db, org, locks):
    session = await _create(db, org, capacity=3)
    session_id = session.id
    lifecycle = BookingLifecycle(db, locks=locks)
    for email in ("a@example.com", "b@example.com"):
        await lifecycle.request_booking(session_id, attendee(email=email), now=BOOKED_AT)

    with pytest.raises(InvalidTransition):
        await update_class_session(db, session_id, capacity=1, locks=locks)
    with pytest.raises(ValueError):
        await update_class_session(db, session_id, capacity=0, locks=locks)

    updated = await update_class_session(db, session_id, capacity=2, locks=locks)
    assert updated.capacity == 2
    assert updated.confirmed_count == 2


async def test_update_unknown_session(db, locks):
    with pytest.raises(ClassSessionNotFound):
        await update_class_session(db, 404, name="Ghost", locks=locks)
