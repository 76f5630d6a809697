"""
Attendance analytics for classbook
Every rate is computed from raw counts over the requested window.
"""
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from classbook.core.config import Settings, get_settings
from classbook.core.conversions import as_utc, utcnow
from classbook.core.errors import InvalidPolicy
from classbook.crud.organizationCrud import get_organization_settings
from classbook.models import Booking, CheckIn, ClassSession
from classbook.models.classModel import BOOKING_CONFIRMED
from classbook.services.no_show_policy import parse_no_show_policy

logger = logging.getLogger(__name__)

REPEAT_OFFENDER_THRESHOLD = 3


@dataclass
class AttendanceStats:
    organization_id: int
    start: datetime
    end: datetime
    class_count: int = 0
    total_capacity: int = 0
    confirmed_bookings: int = 0
    check_ins: int = 0
    no_shows: int = 0
    fill_rate: float = 0.0
    no_show_rate: float = 0.0
    revenue: Decimal = Decimal("0.00")
    repeat_offenders: List[str] = field(default_factory=list)
    popular_classes: List[Tuple[str, int]] = field(default_factory=list)


def _rate(numerator: int, denominator: int) -> float:
    if denominator <= 0:
        return 0.0
    return round(numerator / denominator, 4)


class AnalyticsService:
    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()

    async def attendance_stats(
        self,
        organization_id: int,
        start: datetime,
        end: datetime,
        now: Optional[datetime] = None
    ) -> AttendanceStats:
        """
        Attendance figures for classes starting in [start, end)

        No-shows only count once check-in has closed, i.e. the class ended
        more than the organization's grace window ago; the no-show rate is
        relative to confirmed bookings of those settled classes.
        """
        start, end = as_utc(start), as_utc(end)
        if start >= end:
            raise ValueError("Window start must be before its end")
        now = as_utc(now) if now else utcnow()

        stats = AttendanceStats(organization_id=organization_id, start=start, end=end)

        result = await self.db.execute(
            select(ClassSession).where(
                and_(
                    ClassSession.organization_id == organization_id,
                    ClassSession.start_at >= start,
                    ClassSession.start_at < end
                )
            )
        )
        sessions = {s.id: s for s in result.scalars().all()}
        if not sessions:
            return stats

        stats.class_count = len(sessions)
        stats.total_capacity = sum(s.capacity for s in sessions.values())

        rows = await self.db.execute(
            select(Booking.session_id, Booking.attendee_email, CheckIn.id)
            .outerjoin(CheckIn, CheckIn.booking_id == Booking.id)
            .where(
                and_(
                    Booking.session_id.in_(list(sessions)),
                    Booking.status == BOOKING_CONFIRMED
                )
            )
        )

        grace = timedelta(minutes=await self._grace_minutes(organization_id))
        per_class: Counter = Counter()
        offenders: Counter = Counter()
        ended_confirmed = 0
        for session_id, email, check_in_id in rows.all():
            session = sessions[session_id]
            stats.confirmed_bookings += 1
            per_class[session.name] += 1
            stats.revenue += session.price or Decimal("0")

            if check_in_id is not None:
                stats.check_ins += 1
            elif as_utc(session.end_at) + grace <= now:
                stats.no_shows += 1
                offenders[email] += 1

            if as_utc(session.end_at) + grace <= now:
                ended_confirmed += 1

        stats.fill_rate = _rate(stats.confirmed_bookings, stats.total_capacity)
        stats.no_show_rate = _rate(stats.no_shows, ended_confirmed)
        stats.repeat_offenders = sorted(
            email for email, count in offenders.items() if count >= REPEAT_OFFENDER_THRESHOLD
        )
        stats.popular_classes = sorted(per_class.items(), key=lambda item: (-item[1], item[0]))[:5]

        logger.debug(
            "Attendance stats for organization %s: %s classes, %s confirmed, %s no-shows",
            organization_id, stats.class_count, stats.confirmed_bookings, stats.no_shows
        )
        return stats

    async def _grace_minutes(self, organization_id: int) -> int:
        org_settings = await get_organization_settings(self.db, organization_id)
        try:
            return parse_no_show_policy(org_settings.settings if org_settings else None).grace_minutes
        except InvalidPolicy:
            return self.settings.no_show_default_grace_minutes
