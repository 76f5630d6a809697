"""
No-show reconciliation sweep for classbook.

For every class of an organization whose end time plus the grace window
has passed (and that started within the lookback window), each confirmed
booking without a check-in gets the organization's penalty exactly once.
The NoShowPenaltyRecord row is inserted before the penalty is applied, in
the same savepoint: its unique booking_id is the idempotency key, so
overlapping or repeated runs never penalize a booking twice. Fee penalties
commit that claim before the payment gateway is called.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, update, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from classbook.core.conversions import as_utc, utcnow
from classbook.core.errors import InvalidPolicy, PenaltyApplicationFailed
from classbook.crud.bookingsCrud import Attendee
from classbook.crud.notificationCrud import enqueue_notification
from classbook.crud.organizationCrud import get_organization_settings, list_organization_ids
from classbook.models import (
    Booking, CheckIn, ClassSession, MemberPass, NoShowPenaltyRecord, Payment
)
from classbook.models.classModel import BOOKING_CONFIRMED
from classbook.services.gateways import PaymentGateway
from classbook.services.no_show_policy import (
    CreditLossPenalty, FeePenalty, NoShowPolicy, SuspensionPenalty, parse_no_show_policy
)

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationError:
    booking_id: int
    attendee_email: str
    message: str


@dataclass
class ReconciliationSummary:
    organization_id: int
    sessions_scanned: int = 0
    processed_count: int = 0
    skipped_count: int = 0
    errors: List[ReconciliationError] = field(default_factory=list)
    penalty_record_ids: List[int] = field(default_factory=list)
    skipped_reason: Optional[str] = None


class NoShowReconciler:
    """Applies no-show penalties for one organization per run"""

    def __init__(self, db: AsyncSession, payment_gateway: PaymentGateway):
        self.db = db
        self.payment_gateway = payment_gateway

    async def run(self, organization_id: int, now: Optional[datetime] = None) -> ReconciliationSummary:
        """
        Reconcile no-shows for an organization

        Args:
            organization_id: Organization whose classes are swept
            now: Reference time, defaults to the current UTC time

        Returns:
            Summary with counts and per-booking errors; never raises for a single booking
        """
        now = as_utc(now) if now else utcnow()
        summary = ReconciliationSummary(organization_id=organization_id)

        org_settings = await get_organization_settings(self.db, organization_id)
        if org_settings is None:
            summary.skipped_reason = "no_settings"
            return summary

        try:
            policy = parse_no_show_policy(org_settings.settings)
        except InvalidPolicy as exc:
            logger.error("Organization %s has invalid no-show settings: %s", organization_id, exc)
            summary.skipped_reason = f"invalid_policy: {exc}"
            return summary

        if not policy.enabled:
            summary.skipped_reason = "disabled"
            return summary

        sessions = await self._eligible_sessions(organization_id, policy, now)
        summary.sessions_scanned = len(sessions)
        if not sessions:
            return summary

        candidates = await self._unattended_bookings([s.id for s in sessions])
        sessions_by_id = {s.id: s for s in sessions}
        # Release read locks before the per-booking transactions
        await self.db.commit()

        for booking in candidates:
            booking_id, attendee_email = booking.id, booking.attendee_email
            session = sessions_by_id[booking.session_id]
            # A failing savepoint rolls back only this booking's writes
            try:
                if isinstance(policy.penalty, FeePenalty):
                    record = await self._collect_fee(booking, session, policy)
                else:
                    async with self.db.begin_nested():
                        record = await self._claim(booking, session, policy)
                        await self._apply_penalty(booking, session, policy, record, now)
                        await self._notify(booking, session, record)
            except IntegrityError:
                logger.info("Booking %s was already penalized by another run", booking_id)
                summary.skipped_count += 1
                continue
            except PenaltyApplicationFailed as exc:
                logger.warning("No-show penalty failed for booking %s: %s", booking_id, exc.reason)
                summary.errors.append(ReconciliationError(booking_id, attendee_email, exc.reason))
                continue
            except Exception as exc:
                logger.exception("Unexpected error reconciling booking %s", booking_id)
                summary.errors.append(ReconciliationError(booking_id, attendee_email, str(exc)))
                continue

            await self.db.commit()
            summary.processed_count += 1
            summary.penalty_record_ids.append(record.id)

        logger.info(
            "No-show sweep for organization %s: sessions=%s processed=%s skipped=%s errors=%s",
            organization_id, summary.sessions_scanned, summary.processed_count,
            summary.skipped_count, len(summary.errors)
        )
        return summary

    async def run_all(self, now: Optional[datetime] = None) -> List[ReconciliationSummary]:
        """Sweep every organization; disabled ones come back with a skipped_reason"""
        summaries = []
        for organization_id in await list_organization_ids(self.db):
            summaries.append(await self.run(organization_id, now=now))
        return summaries

    async def _eligible_sessions(
        self,
        organization_id: int,
        policy: NoShowPolicy,
        now: datetime
    ) -> List[ClassSession]:
        ended_before = now - timedelta(minutes=policy.grace_minutes)
        started_after = now - timedelta(hours=policy.lookback_hours)

        result = await self.db.execute(
            select(ClassSession)
            .where(
                and_(
                    ClassSession.organization_id == organization_id,
                    ClassSession.end_at <= ended_before,
                    ClassSession.start_at >= started_after
                )
            )
            .order_by(ClassSession.start_at, ClassSession.id)
        )
        return list(result.scalars().all())

    async def _unattended_bookings(self, session_ids: List[int]) -> List[Booking]:
        """Confirmed bookings with neither a check-in nor a penalty record"""
        result = await self.db.execute(
            select(Booking)
            .outerjoin(CheckIn, CheckIn.booking_id == Booking.id)
            .outerjoin(NoShowPenaltyRecord, NoShowPenaltyRecord.booking_id == Booking.id)
            .where(
                and_(
                    Booking.session_id.in_(session_ids),
                    Booking.status == BOOKING_CONFIRMED,
                    CheckIn.id.is_(None),
                    NoShowPenaltyRecord.id.is_(None)
                )
            )
            .order_by(Booking.session_id, Booking.id)
        )
        return list(result.scalars().all())

    async def _claim(
        self,
        booking: Booking,
        session: ClassSession,
        policy: NoShowPolicy
    ) -> NoShowPenaltyRecord:
        """Insert-if-absent: a duplicate booking_id raises IntegrityError"""
        record = NoShowPenaltyRecord(
            booking_id=booking.id,
            organization_id=session.organization_id,
            session_id=session.id,
            penalty_type=policy.penalty.kind,
        )
        self.db.add(record)
        await self.db.flush()
        return record

    async def _collect_fee(
        self,
        booking: Booking,
        session: ClassSession,
        policy: NoShowPolicy
    ) -> NoShowPenaltyRecord:
        """
        Charge a fee penalty at most once per booking.

        The claim is committed before the gateway is called, so a failure
        while recording the outcome leaves the booking claimed rather than
        open to a second charge. A declined or failed charge removes the
        claim again and the next run retries the booking.
        """
        penalty: FeePenalty = policy.penalty
        booking_id = booking.id

        async with self.db.begin_nested():
            record = await self._claim(booking, session, policy)
            record.currency = penalty.currency
            record.detail = "charge pending"
        await self.db.commit()

        attendee = Attendee(
            name=booking.attendee_name,
            email=booking.attendee_email,
            phone=booking.attendee_phone,
        )
        error = None
        try:
            charge = await self.payment_gateway.charge(
                attendee, penalty.amount, penalty.currency,
                idempotency_key=f"no-show-{booking_id}"
            )
            if not charge.success:
                error = charge.error or "charge declined"
        except Exception as exc:
            logger.exception("Payment gateway failed for booking %s", booking_id)
            error = f"payment gateway error: {exc}"

        if error is not None:
            await self.db.delete(record)
            await self.db.commit()
            raise PenaltyApplicationFailed(booking_id, error)

        try:
            async with self.db.begin_nested():
                self.db.add(Payment(
                    organization_id=session.organization_id,
                    booking_id=booking_id,
                    attendee_email=booking.attendee_email,
                    amount=penalty.amount,
                    currency=penalty.currency,
                    status=charge.status,
                    payment_type="no_show_penalty",
                    provider_reference=charge.reference,
                ))
                record.amount = penalty.amount
                record.detail = f"charge {charge.status}, reference {charge.reference}"
                await self.db.flush()
                await self._notify(booking, session, record)
        except Exception:
            logger.error(
                "Charge %s for booking %s went through but was not recorded; claim kept",
                charge.reference, booking_id
            )
            raise
        return record

    async def _apply_penalty(
        self,
        booking: Booking,
        session: ClassSession,
        policy: NoShowPolicy,
        record: NoShowPenaltyRecord,
        now: datetime
    ) -> None:
        penalty = policy.penalty

        if isinstance(penalty, CreditLossPenalty):
            result = await self.db.execute(
                select(MemberPass)
                .where(
                    and_(
                        MemberPass.organization_id == session.organization_id,
                        MemberPass.attendee_email == booking.attendee_email,
                        MemberPass.status == "active",
                        MemberPass.remaining_credits > 0
                    )
                )
                .order_by(MemberPass.id)
                .limit(1)
                .with_for_update()
            )
            member_pass = result.scalar_one_or_none()
            if member_pass is None:
                record.detail = "no active pass"
            else:
                deducted = min(penalty.credits, member_pass.remaining_credits)
                member_pass.remaining_credits -= deducted
                record.amount = Decimal(deducted)
                record.detail = f"deducted {deducted} credit(s) from pass {member_pass.id}"

        elif isinstance(penalty, SuspensionPenalty):
            suspended_until = now + timedelta(days=penalty.days)
            result = await self.db.execute(
                update(MemberPass)
                .where(
                    and_(
                        MemberPass.organization_id == session.organization_id,
                        MemberPass.attendee_email == booking.attendee_email,
                        MemberPass.status == "active"
                    )
                )
                .values(status="suspended", suspended_until=suspended_until, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            record.detail = f"suspended {result.rowcount} pass(es) until {suspended_until.isoformat()}"

        await self.db.flush()

    async def _notify(
        self,
        booking: Booking,
        session: ClassSession,
        record: NoShowPenaltyRecord
    ) -> None:
        await enqueue_notification(
            self.db,
            recipient=booking.attendee_email,
            template_kind="no_show_notification",
            payload={
                "user_name": booking.attendee_name,
                "class_name": session.name,
                "class_date": as_utc(session.start_at).date().isoformat(),
                "penalty_type": record.penalty_type,
                "penalty_amount": str(record.amount) if record.amount is not None else None,
            },
        )
