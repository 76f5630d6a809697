"""
Booking lifecycle: Requested -> {Confirmed, Waitlisted} -> {CheckedIn, Cancelled}.

NoShow is not a status; the no-show reconciler concludes it from a missing
check-in. Every public transition owns its transaction: it runs under the
class session's serialization, commits the state change together with its
outbox notifications, and rolls everything back on failure.
"""
import logging
import re
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from classbook.core.config import Settings, get_settings
from classbook.core.conversions import as_utc, utcnow
from classbook.core.errors import (
    AlreadyCheckedIn, BookingNotFound, BookingOwnershipError, CapacityExceeded,
    ClassSessionNotFound, InvalidBookingRequest, InvalidPolicy, InvalidTransition,
    InvariantViolation, WaitlistEntryNotFound
)
from classbook.core.logging_config import log_operator_alert
from classbook.crud.bookingsCrud import (
    Attendee, get_active_booking_for_email, get_booking, get_booking_by_qr, get_check_in
)
from classbook.crud.notificationCrud import enqueue_notification
from classbook.crud.organizationCrud import get_organization_settings
from classbook.models import Booking, CheckIn, ClassSession, NoShowPenaltyRecord, WaitlistEntry
from classbook.models.classModel import (
    BOOKING_CANCELLED, BOOKING_CONFIRMED, BOOKING_WAITLISTED,
    SOURCE_DIRECT, SOURCE_WAITLIST_PROMOTION
)
from classbook.services.capacity_ledger import Admitted, CapacityLedger, Full, new_request_id
from classbook.services.no_show_policy import parse_no_show_policy
from classbook.services.session_locks import SessionLocks, default_session_locks
from classbook.services.waitlist_queue import WaitlistQueue

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass
class BookingOutcome:
    booking: Booking
    waitlist_position: Optional[int] = None

    @property
    def status(self) -> str:
        return self.booking.status


@dataclass
class CancellationResult:
    booking: Booking
    promoted: Optional[Booking] = None
    promotion_failed: bool = False


def normalize_attendee(attendee: Attendee) -> Attendee:
    """Trim and validate attendee identity; emails are compared lower-cased"""
    name = (attendee.name or "").strip()
    email = (attendee.email or "").strip().lower()
    phone = (attendee.phone or "").strip() or None

    if not name:
        raise InvalidBookingRequest("Attendee name is required")
    if len(name) > 120:
        raise InvalidBookingRequest("Attendee name is too long")
    if not EMAIL_RE.match(email):
        raise InvalidBookingRequest(f"Invalid attendee email: {attendee.email!r}")
    return replace(attendee, name=name, email=email, phone=phone)


class BookingLifecycle:
    """State transitions for bookings of one database session"""

    def __init__(
        self,
        db: AsyncSession,
        locks: Optional[SessionLocks] = None,
        settings: Optional[Settings] = None
    ):
        self.db = db
        self.locks = locks or default_session_locks
        self.settings = settings or get_settings()
        self.ledger = CapacityLedger(db)
        self.waitlist = WaitlistQueue(db)

    # ------------------------------
    # Requested -> Confirmed | Waitlisted
    # ------------------------------
    async def request_booking(
        self,
        session_id: int,
        attendee: Attendee,
        now: Optional[datetime] = None
    ) -> BookingOutcome:
        """
        Confirm a booking if a seat is free, otherwise waitlist it.

        Raises:
            InvalidBookingRequest: malformed attendee, duplicate booking or started class
            CapacityExceeded: class is full and the organization has no waitlist
        """
        attendee = normalize_attendee(attendee)
        now = as_utc(now) if now else utcnow()

        async with self.locks.hold(session_id):
            try:
                outcome = await self._request_locked(session_id, attendee, now)
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        logger.info(
            "Booking %s for class session %s is %s",
            outcome.booking.id, session_id, outcome.booking.status
        )
        return outcome

    async def _request_locked(
        self,
        session_id: int,
        attendee: Attendee,
        now: datetime
    ) -> BookingOutcome:
        session = await self.ledger.lock_session(session_id)

        if as_utc(session.start_at) <= now:
            raise InvalidBookingRequest("Cannot book a class that has already started")

        if await get_active_booking_for_email(self.db, session_id, attendee.email):
            raise InvalidBookingRequest(
                f"{attendee.email} already has an active booking for this class"
            )

        request_id = new_request_id()
        result = await self.ledger.reserve(
            session_id, attendee=attendee, request_id=request_id, source=SOURCE_DIRECT
        )

        if isinstance(result, Admitted):
            await self._notify(
                result.booking.attendee_email, "booking_confirmation", session,
                booking_id=result.booking.id, qr_code=result.booking.qr_code
            )
            return BookingOutcome(booking=result.booking)

        org_settings = await get_organization_settings(self.db, session.organization_id)
        if org_settings is not None and not org_settings.allow_waitlist:
            raise CapacityExceeded(session_id, result.capacity)

        booking = Booking(
            session_id=session_id,
            request_id=request_id,
            attendee_name=attendee.name,
            attendee_email=attendee.email,
            attendee_phone=attendee.phone,
            status=BOOKING_WAITLISTED,
            source=SOURCE_DIRECT,
        )
        self.db.add(booking)
        await self.db.flush()

        entry = await self.waitlist.enqueue(session_id, attendee, booking, request_id)
        await self._notify(
            attendee.email, "waitlist_joined", session,
            booking_id=booking.id, position=entry.position
        )
        return BookingOutcome(booking=booking, waitlist_position=entry.position)

    # ------------------------------
    # Confirmed | Waitlisted -> Cancelled
    # ------------------------------
    async def cancel_booking(
        self,
        booking_id: int,
        attendee_email: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> CancellationResult:
        """
        Cancel a booking. Cancelling a confirmed booking frees its seat and
        promotes the front of the waitlist in the same transaction. A
        confirmed seat can only be given up before the class starts; after
        that the booking is settled by check-in or the no-show sweep.
        Waitlisted bookings can be withdrawn at any time.
        """
        now = as_utc(now) if now else utcnow()
        session_id = await self.db.scalar(select(Booking.session_id).where(Booking.id == booking_id))
        # No read transaction may stay open while waiting for the session lock
        await self.db.commit()
        if session_id is None:
            raise BookingNotFound(booking_id)

        async with self.locks.hold(session_id):
            try:
                result = await self._cancel_locked(booking_id, session_id, attendee_email, now)
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        if result.promoted is not None:
            logger.info(
                "Cancellation of booking %s promoted booking %s",
                booking_id, result.promoted.id
            )
        return result

    async def _cancel_locked(
        self,
        booking_id: int,
        session_id: int,
        attendee_email: Optional[str],
        now: datetime
    ) -> CancellationResult:
        session = await self.ledger.lock_session(session_id)
        booking = await get_booking(self.db, booking_id, for_update=True)
        if booking is None:
            raise BookingNotFound(booking_id)

        if attendee_email is not None and attendee_email.strip().lower() != booking.attendee_email:
            raise BookingOwnershipError(f"Booking {booking_id} does not belong to {attendee_email}")

        if booking.status == BOOKING_CANCELLED:
            return CancellationResult(booking=booking)

        if booking.status == BOOKING_WAITLISTED:
            entry = await self.waitlist.entry_for_booking(booking.id)
            if entry is not None:
                await self.waitlist.withdraw(entry.id)
            booking.status = BOOKING_CANCELLED
            booking.cancelled_at = utcnow()
            await self.db.flush()
            await self._notify(booking.attendee_email, "booking_cancellation", session, booking_id=booking.id)
            return CancellationResult(booking=booking)

        if await get_check_in(self.db, booking.id) is not None:
            raise InvalidTransition(f"Booking {booking_id} is already checked in")
        if as_utc(session.start_at) <= now:
            raise InvalidTransition(
                f"Booking {booking_id} can no longer be cancelled; class session {session_id} has started"
            )

        booking = await self.ledger.release(booking.id)
        await self._notify(booking.attendee_email, "booking_cancellation", session, booking_id=booking.id)

        promoted = None
        try:
            async with self.db.begin_nested():
                promoted = await self._promote_next(session)
        except InvariantViolation as exc:
            logger.critical(
                "Waitlist promotion failed after cancelling booking %s", booking_id, exc_info=True
            )
            await self._alert_operator("waitlist_promotion_failed", str(exc), session)
            return CancellationResult(booking=booking, promotion_failed=True)

        return CancellationResult(booking=booking, promoted=promoted)

    async def _promote_next(self, session: ClassSession) -> Optional[Booking]:
        """Move the front of the waitlist into the seat that was just freed"""
        entry = await self.waitlist.dequeue_front(session.id)
        if entry is None:
            return None

        booking = await get_booking(self.db, entry.booking_id, for_update=True)
        if booking is None or booking.status != BOOKING_WAITLISTED:
            raise InvariantViolation(
                f"Waitlist entry {entry.id} points at booking {entry.booking_id} which is not waitlisted"
            )

        result = await self.ledger.reserve(
            session.id, booking=booking, source=SOURCE_WAITLIST_PROMOTION
        )
        if isinstance(result, Full):
            raise InvariantViolation(
                f"Class session {session.id} had no seat for waitlist promotion of booking {booking.id}"
            )

        await self._notify(
            booking.attendee_email, "waitlist_promotion", session,
            booking_id=booking.id, qr_code=booking.qr_code
        )
        if booking.attendee_phone:
            await self._notify(
                booking.attendee_phone, "waitlist_promotion", session,
                channel="sms", booking_id=booking.id
            )
        return result.booking

    async def fill_open_seats(self, session_id: int, now: Optional[datetime] = None) -> List[Booking]:
        """Promote from the waitlist while the class has free seats and has not started"""
        now = as_utc(now) if now else utcnow()
        promoted: List[Booking] = []
        async with self.locks.hold(session_id):
            try:
                session = await self.ledger.lock_session(session_id)
                while as_utc(session.start_at) > now and not await self.ledger.is_full(session_id):
                    booking = await self._promote_next(session)
                    if booking is None:
                        break
                    promoted.append(booking)
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise
        return promoted

    async def withdraw_from_waitlist(
        self,
        entry_id: int,
        attendee_email: Optional[str] = None
    ) -> CancellationResult:
        booking_id = await self.db.scalar(
            select(WaitlistEntry.booking_id).where(WaitlistEntry.id == entry_id)
        )
        if booking_id is None:
            raise WaitlistEntryNotFound(entry_id)
        return await self.cancel_booking(booking_id, attendee_email=attendee_email)

    # ------------------------------
    # Confirmed -> CheckedIn
    # ------------------------------
    async def check_in(
        self,
        booking_id: int,
        operator: Optional[str] = None,
        now: Optional[datetime] = None,
        qr_code: Optional[str] = None
    ) -> CheckIn:
        """Record attendance for a confirmed booking before the no-show cutoff"""
        now = as_utc(now) if now else utcnow()

        booking = await get_booking(self.db, booking_id)
        if booking is None:
            raise BookingNotFound(booking_id)
        if booking.status != BOOKING_CONFIRMED:
            raise InvalidTransition(f"Cannot check in booking with status {booking.status}")
        if await get_check_in(self.db, booking.id) is not None:
            raise AlreadyCheckedIn(booking.id)

        session = await self.db.get(ClassSession, booking.session_id)
        if session is None:
            raise ClassSessionNotFound(booking.session_id)

        cutoff = as_utc(session.end_at) + timedelta(minutes=await self._grace_minutes(session.organization_id))
        # The sweep treats end + grace as already past, so the window is half-open
        if now >= cutoff:
            raise InvalidTransition(
                f"Check-in for booking {booking.id} closed at {cutoff.isoformat()}"
            )
        penalized = await self.db.scalar(
            select(NoShowPenaltyRecord.id).where(NoShowPenaltyRecord.booking_id == booking.id)
        )
        if penalized is not None:
            raise InvalidTransition(f"Booking {booking.id} was already recorded as a no-show")

        check_in = CheckIn(
            booking_id=booking.id,
            checked_in_at=now,
            checked_in_by=operator,
            qr_code=qr_code,
        )
        self.db.add(check_in)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise AlreadyCheckedIn(booking_id)

        logger.info("Booking %s checked in by %s", booking.id, operator or "self")
        return check_in

    async def check_in_by_qr(
        self,
        qr_code: str,
        operator: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> CheckIn:
        booking = await get_booking_by_qr(self.db, qr_code)
        if booking is None:
            raise InvalidBookingRequest("Invalid QR code or booking not found")
        return await self.check_in(booking.id, operator=operator, now=now, qr_code=qr_code)

    # ------------------------------
    # Helpers
    # ------------------------------
    async def _grace_minutes(self, organization_id: int) -> int:
        org_settings = await get_organization_settings(self.db, organization_id)
        try:
            return parse_no_show_policy(org_settings.settings if org_settings else None).grace_minutes
        except InvalidPolicy as exc:
            logger.warning(
                "Organization %s has invalid no-show settings (%s); using default grace window",
                organization_id, exc
            )
            return self.settings.no_show_default_grace_minutes

    async def _notify(
        self,
        recipient: str,
        template_kind: str,
        session: ClassSession,
        channel: str = "email",
        **extra
    ) -> None:
        payload = {
            "class_name": session.name,
            "class_start": as_utc(session.start_at).isoformat(),
            "booking_url": f"{self.settings.site_url}/embed/{session.organization_id}",
            **extra,
        }
        await enqueue_notification(
            self.db,
            recipient=recipient,
            template_kind=template_kind,
            payload=payload,
            channel=channel,
        )

    async def _alert_operator(self, event_type: str, details: str, session: ClassSession) -> None:
        log_operator_alert(event_type, details)
        if self.settings.operator_alert_email:
            await self._notify(
                self.settings.operator_alert_email, "operator_alert", session,
                event_type=event_type, details=details
            )
