from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from classbook.core.errors import InvalidTransition
from classbook.crud.notificationCrud import list_notifications
from classbook.crud.organizationCrud import create_organization, update_organization_settings
from classbook.models import CheckIn, NoShowPenaltyRecord, Payment
from classbook.services.booking_lifecycle import BookingLifecycle
from classbook.services.gateways import LoggingPaymentGateway
from classbook.services.no_show_reconciler import NoShowReconciler

from conftest import attendee

CLASS_START = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)
CLASS_END = CLASS_START + timedelta(hours=1)
BEFORE_CLASS = CLASS_START - timedelta(hours=2)


def no_show_settings(**overrides):
    section = {"no_show_enabled": True, "no_show_window_minutes": 15, "penalty_type": "credit_loss"}
    section.update(overrides)
    return {"no_show_management": section}


async def _book(db, locks, session_id, *emails):
    lifecycle = BookingLifecycle(db, locks=locks)
    outcomes = []
    for email in emails:
        outcomes.append(await lifecycle.request_booking(session_id, attendee(email=email), now=BEFORE_CLASS))
    return outcomes


async def _records(db):
    return await db.scalar(select(func.count(NoShowPenaltyRecord.id)))


async def test_penalizes_after_grace_exactly_once(db, make_session, make_pass, locks, payment_gateway):
    org = await create_organization(db, "Morning Studio", settings=no_show_settings())
    session = await make_session(org.id, start_at=CLASS_START)
    member_pass = await make_pass(org.id, "ana@example.com", credits=5)
    [outcome] = await _book(db, locks, session.id, "ana@example.com")

    reconciler = NoShowReconciler(db, payment_gateway)

    # 09:14: still inside the grace window
    early = await reconciler.run(org.id, now=CLASS_END + timedelta(minutes=14))
    assert early.sessions_scanned == 0
    assert early.processed_count == 0

    # 09:16: past end + grace
    summary = await reconciler.run(org.id, now=CLASS_END + timedelta(minutes=16))
    assert summary.sessions_scanned == 1
    assert summary.processed_count == 1
    assert summary.errors == []
    assert len(summary.penalty_record_ids) == 1

    record = await db.get(NoShowPenaltyRecord, summary.penalty_record_ids[0])
    assert record.booking_id == outcome.booking.id
    assert record.penalty_type == "credit_loss"
    assert record.amount == Decimal("1")

    await db.refresh(member_pass)
    assert member_pass.remaining_credits == 4

    notifications = await list_notifications(db, template_kind="no_show_notification")
    assert [n.recipient for n in notifications] == ["ana@example.com"]
    assert notifications[0].payload["penalty_type"] == "credit_loss"

    # A second run finds nothing left to do
    again = await reconciler.run(org.id, now=CLASS_END + timedelta(minutes=30))
    assert again.processed_count == 0
    assert await _records(db) == 1
    await db.refresh(member_pass)
    assert member_pass.remaining_credits == 4


async def test_checked_in_and_cancelled_bookings_are_left_alone(db, make_session, locks, payment_gateway):
    org = await create_organization(db, "Morning Studio", settings=no_show_settings())
    session = await make_session(org.id, start_at=CLASS_START)
    attended, cancelled, missing = await _book(
        db, locks, session.id, "a@example.com", "b@example.com", "c@example.com"
    )
    missing_id = missing.booking.id
    lifecycle = BookingLifecycle(db, locks=locks)
    await lifecycle.check_in(attended.booking.id, now=CLASS_START + timedelta(minutes=5))
    await lifecycle.cancel_booking(cancelled.booking.id, now=BEFORE_CLASS)

    summary = await NoShowReconciler(db, payment_gateway).run(org.id, now=CLASS_END + timedelta(minutes=20))

    assert summary.processed_count == 1
    record = await db.get(NoShowPenaltyRecord, summary.penalty_record_ids[0])
    assert record.booking_id == missing_id


async def test_credit_loss_without_a_pass_still_records(db, make_session, locks, payment_gateway):
    org = await create_organization(db, "Morning Studio", settings=no_show_settings())
    session = await make_session(org.id, start_at=CLASS_START)
    await _book(db, locks, session.id, "walkin@example.com")

    summary = await NoShowReconciler(db, payment_gateway).run(org.id, now=CLASS_END + timedelta(minutes=16))

    assert summary.processed_count == 1
    record = await db.get(NoShowPenaltyRecord, summary.penalty_record_ids[0])
    assert record.detail == "no active pass"


async def test_fee_failures_are_collected_and_siblings_continue(db, make_session, locks, payment_gateway):
    org = await create_organization(
        db, "Morning Studio",
        settings=no_show_settings(penalty_type="fee", penalty_amount=15, penalty_currency="eur")
    )
    session = await make_session(org.id, start_at=CLASS_START)
    good, _ = await _book(db, locks, session.id, "good@example.com", "declined@example.com")
    good_id = good.booking.id
    payment_gateway.decline_for.add("declined@example.com")

    summary = await NoShowReconciler(db, payment_gateway).run(org.id, now=CLASS_END + timedelta(minutes=16))

    assert summary.processed_count == 1
    assert len(summary.errors) == 1
    assert summary.errors[0].attendee_email == "declined@example.com"
    assert summary.errors[0].message == "card declined"

    assert payment_gateway.charges == [
        {"email": "good@example.com", "amount": Decimal("15.00"), "currency": "EUR", "key": f"no-show-{good_id}"}
    ]
    payments = (await db.execute(select(Payment))).scalars().all()
    assert [(p.attendee_email, p.status, p.payment_type) for p in payments] == [
        ("good@example.com", "succeeded", "no_show_penalty")
    ]
    assert await _records(db) == 1

    # The declined booking is retried by the next run
    payment_gateway.decline_for.clear()
    retry = await NoShowReconciler(db, payment_gateway).run(org.id, now=CLASS_END + timedelta(minutes=30))
    assert retry.processed_count == 1
    assert await _records(db) == 2


async def test_suspension_suspends_active_passes(db, make_session, make_pass, locks, payment_gateway):
    org = await create_organization(
        db, "Morning Studio", settings=no_show_settings(penalty_type="suspension", suspension_days=3)
    )
    session = await make_session(org.id, start_at=CLASS_START)
    member_pass = await make_pass(org.id, "ana@example.com")
    await _book(db, locks, session.id, "ana@example.com")
    now = CLASS_END + timedelta(minutes=16)

    summary = await NoShowReconciler(db, payment_gateway).run(org.id, now=now)

    assert summary.processed_count == 1
    await db.refresh(member_pass)
    assert member_pass.status == "suspended"
    assert member_pass.suspended_until.replace(tzinfo=timezone.utc) == now + timedelta(days=3)


async def test_claimed_bookings_are_skipped(db, make_session, locks, payment_gateway, monkeypatch):
    org = await create_organization(db, "Morning Studio", settings=no_show_settings())
    session = await make_session(org.id, start_at=CLASS_START)
    await _book(db, locks, session.id, "ana@example.com")
    now = CLASS_END + timedelta(minutes=16)

    first = NoShowReconciler(db, payment_gateway)
    candidates = await first._unattended_bookings([session.id])
    await first.run(org.id, now=now)

    # An overlapping run that read its candidates before the first one committed
    second = NoShowReconciler(db, payment_gateway)

    async def stale_candidates(session_ids):
        return candidates

    monkeypatch.setattr(second, "_unattended_bookings", stale_candidates)
    summary = await second.run(org.id, now=now)

    assert summary.processed_count == 0
    assert summary.skipped_count == 1
    assert await _records(db) == 1


async def test_disabled_and_lookback(db, make_session, locks, payment_gateway):
    disabled = await create_organization(db, "Relaxed Studio", settings={})
    enabled = await create_organization(db, "Strict Studio", settings=no_show_settings(lookback_hours=24))
    old = await make_session(enabled.id, start_at=CLASS_START)
    await _book(db, locks, old.id, "ana@example.com")
    enabled_id = enabled.id

    summaries = await NoShowReconciler(db, payment_gateway).run_all(now=CLASS_END + timedelta(days=2))

    by_org = {s.organization_id: s for s in summaries}
    assert by_org[disabled.id].skipped_reason == "disabled"
    # The class started more than 24 hours ago
    assert by_org[enabled_id].skipped_reason is None
    assert by_org[enabled_id].sessions_scanned == 0


async def test_invalid_policy_is_reported_not_raised(db, payment_gateway):
    org = await create_organization(db, "Broken Studio", settings=no_show_settings(penalty_type="public_shaming"))

    summary = await NoShowReconciler(db, payment_gateway).run(org.id)

    assert summary.skipped_reason.startswith("invalid_policy")


@pytest.mark.parametrize("minutes,expected", [(15, 1), (14, 0)])
async def test_grace_boundary(db, make_session, locks, payment_gateway, minutes, expected):
    org = await create_organization(db, "Morning Studio", settings=no_show_settings())
    session = await make_session(org.id, start_at=CLASS_START)
    await _book(db, locks, session.id, "ana@example.com")

    summary = await NoShowReconciler(db, payment_gateway).run(org.id, now=CLASS_END + timedelta(minutes=minutes))

    assert summary.processed_count == expected


async def test_enabling_later_picks_up_recent_classes(db, make_session, locks, payment_gateway):
    org = await create_organization(db, "Morning Studio", settings={"branding": {"color": "teal"}})
    session = await make_session(org.id, start_at=CLASS_START)
    await _book(db, locks, session.id, "ana@example.com")
    now = CLASS_END + timedelta(minutes=16)
    reconciler = NoShowReconciler(db, payment_gateway)

    assert (await reconciler.run(org.id, now=now)).skipped_reason == "disabled"

    row = await update_organization_settings(db, org.id, settings=no_show_settings())

    assert row.settings["branding"] == {"color": "teal"}
    assert (await reconciler.run(org.id, now=now)).processed_count == 1


async def test_late_cancellation_does_not_shift_the_penalty(db, make_session, locks, payment_gateway):
    org = await create_organization(db, "Morning Studio", settings=no_show_settings())
    session = await make_session(org.id, capacity=1, start_at=CLASS_START)
    skipped, _ = await _book(db, locks, session.id, "a@example.com", "b@example.com")
    skipped_id = skipped.booking.id

    with pytest.raises(InvalidTransition):
        await BookingLifecycle(db, locks=locks).cancel_booking(skipped_id, now=CLASS_END + timedelta(minutes=5))

    summary = await NoShowReconciler(db, payment_gateway).run(org.id, now=CLASS_END + timedelta(minutes=30))

    assert summary.processed_count == 1
    record = await db.get(NoShowPenaltyRecord, summary.penalty_record_ids[0])
    assert record.booking_id == skipped_id
    assert await list_notifications(db, template_kind="waitlist_promotion") == []


async def test_penalized_booking_cannot_check_in_afterwards(db, make_session, locks, payment_gateway):
    org = await create_organization(db, "Morning Studio", settings=no_show_settings())
    session = await make_session(org.id, start_at=CLASS_START)
    [outcome] = await _book(db, locks, session.id, "ana@example.com")
    booking_id = outcome.booking.id
    cutoff = CLASS_END + timedelta(minutes=15)

    summary = await NoShowReconciler(db, payment_gateway).run(org.id, now=cutoff)
    assert summary.processed_count == 1

    lifecycle = BookingLifecycle(db, locks=locks)
    with pytest.raises(InvalidTransition):
        await lifecycle.check_in(booking_id, now=cutoff)
    # A front desk clock running behind the sweep is refused too
    with pytest.raises(InvalidTransition):
        await lifecycle.check_in(booking_id, now=CLASS_END + timedelta(minutes=5))

    assert await db.scalar(select(func.count(CheckIn.id))) == 0


async def test_logging_gateway_leaves_fee_payments_pending(db, make_session, locks):
    org = await create_organization(
        db, "Morning Studio", settings=no_show_settings(penalty_type="fee", penalty_amount=12)
    )
    session = await make_session(org.id, start_at=CLASS_START)
    await _book(db, locks, session.id, "ana@example.com")

    summary = await NoShowReconciler(db, LoggingPaymentGateway()).run(org.id, now=CLASS_END + timedelta(minutes=16))

    assert summary.processed_count == 1
    [payment] = (await db.execute(select(Payment))).scalars().all()
    assert payment.status == "pending"
    assert payment.provider_reference.startswith("log_")
    record = await db.get(NoShowPenaltyRecord, summary.penalty_record_ids[0])
    assert record.detail.startswith("charge pending, reference log_")


async def test_fee_is_not_charged_twice_when_recording_fails(db, make_session, locks, payment_gateway, monkeypatch):
    org = await create_organization(
        db, "Morning Studio", settings=no_show_settings(penalty_type="fee", penalty_amount=15)
    )
    session = await make_session(org.id, start_at=CLASS_START)
    [outcome] = await _book(db, locks, session.id, "ana@example.com")
    booking_id = outcome.booking.id
    reconciler = NoShowReconciler(db, payment_gateway)

    async def outbox_down(booking, session, record):
        raise RuntimeError("outbox unavailable")

    monkeypatch.setattr(reconciler, "_notify", outbox_down)
    first = await reconciler.run(org.id, now=CLASS_END + timedelta(minutes=16))

    assert first.processed_count == 0
    assert [e.message for e in first.errors] == ["outbox unavailable"]
    assert len(payment_gateway.charges) == 1

    # The claim survived, so later runs leave the booking alone
    again = await NoShowReconciler(db, payment_gateway).run(org.id, now=CLASS_END + timedelta(minutes=30))
    assert again.processed_count == 0
    assert len(payment_gateway.charges) == 1

    record = await db.scalar(
        select(NoShowPenaltyRecord)
        .where(NoShowPenaltyRecord.booking_id == booking_id)
        .execution_options(populate_existing=True)
    )
    assert record.detail == "charge pending"
    assert (await db.execute(select(Payment))).scalars().all() == []
