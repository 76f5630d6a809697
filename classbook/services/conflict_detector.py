"""
Conflict detection against busy periods synced from external calendars.

Only reads what calendar sync has already stored. Intervals are half-open:
a busy period ending exactly when a class starts does not conflict.
"""
import logging
from datetime import datetime
from typing import List

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from classbook.core.conversions import as_utc
from classbook.models import CalendarBusyPeriod, CalendarIntegration

logger = logging.getLogger(__name__)


def windows_overlap(
    start: datetime,
    end: datetime,
    other_start: datetime,
    other_end: datetime
) -> bool:
    return other_start < end and other_end > start


class ConflictDetector:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_conflicts(
        self,
        organization_id: int,
        start: datetime,
        end: datetime
    ) -> List[CalendarBusyPeriod]:
        """
        Busy periods of the organization's active integrations overlapping [start, end).

        Returns:
            Overlapping periods ordered by start time, then id
        """
        start, end = as_utc(start), as_utc(end)
        if start >= end:
            raise ValueError("Window start must be before its end")

        result = await self.db.execute(
            select(CalendarBusyPeriod)
            .join(CalendarIntegration, CalendarIntegration.id == CalendarBusyPeriod.integration_id)
            .where(
                and_(
                    CalendarIntegration.organization_id == organization_id,
                    CalendarIntegration.is_active.is_(True),
                    CalendarBusyPeriod.is_busy.is_(True),
                    CalendarBusyPeriod.start_at < end,
                    CalendarBusyPeriod.end_at > start
                )
            )
            .order_by(CalendarBusyPeriod.start_at, CalendarBusyPeriod.id)
        )
        conflicts = list(result.scalars().all())

        if conflicts:
            logger.info(
                "Found %s calendar conflict(s) for organization %s in %s - %s",
                len(conflicts), organization_id, start.isoformat(), end.isoformat()
            )
        return conflicts

    async def has_conflicts(self, organization_id: int, start: datetime, end: datetime) -> bool:
        return bool(await self.find_conflicts(organization_id, start, end))
