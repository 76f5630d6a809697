"""
Calendar Sync Service for classbook
Copies busy periods from external calendars into calendar_busy_periods.
"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy import select, delete, and_
from sqlalchemy.ext.asyncio import AsyncSession

from classbook.core.conversions import as_utc, utcnow
from classbook.models import CalendarBusyPeriod, CalendarIntegration
from classbook.services.gateways import CalendarSyncGateway

logger = logging.getLogger(__name__)


class CalendarSyncService:
    """Upserts provider busy periods keyed by (integration, external event id)"""

    def __init__(self, db: AsyncSession, gateway: CalendarSyncGateway):
        self.db = db
        self.gateway = gateway

    async def sync_integration(self, integration_id: int) -> Dict[str, Any]:
        """
        Pull the current busy periods of one integration and store them

        Returns:
            Counts of created, updated and removed periods
        """
        integration = await self.db.get(CalendarIntegration, integration_id)
        if integration is None:
            raise ValueError(f"Calendar integration {integration_id} not found")
        if not integration.is_active:
            return {"integration_id": integration_id, "skipped": "inactive"}

        reported = await self.gateway.fetch_busy_periods(integration)
        now = utcnow()

        result = await self.db.execute(
            select(CalendarBusyPeriod).where(CalendarBusyPeriod.integration_id == integration_id)
        )
        existing = {period.external_event_id: period for period in result.scalars().all()}

        created = updated = 0
        seen = set()
        for item in reported:
            start_at, end_at = as_utc(item.start_at), as_utc(item.end_at)
            if start_at >= end_at:
                logger.warning(
                    "Skipping event %s from integration %s with an empty window",
                    item.external_event_id, integration_id
                )
                continue
            if item.external_event_id in seen:
                logger.warning(
                    "Integration %s reported event %s more than once; keeping the first",
                    integration_id, item.external_event_id
                )
                continue
            seen.add(item.external_event_id)

            period = existing.get(item.external_event_id)
            if period is None:
                self.db.add(CalendarBusyPeriod(
                    integration_id=integration.id,
                    organization_id=integration.organization_id,
                    external_event_id=item.external_event_id,
                    title=item.title,
                    start_at=start_at,
                    end_at=end_at,
                    is_busy=item.is_busy,
                    synced_at=now,
                ))
                created += 1
            else:
                period.title = item.title
                period.start_at = start_at
                period.end_at = end_at
                period.is_busy = item.is_busy
                period.synced_at = now
                updated += 1

        stale = [event_id for event_id in existing if event_id not in seen]
        if stale:
            await self.db.execute(
                delete(CalendarBusyPeriod).where(
                    and_(
                        CalendarBusyPeriod.integration_id == integration_id,
                        CalendarBusyPeriod.external_event_id.in_(stale)
                    )
                )
            )

        integration.last_synced_at = now
        await self.db.commit()

        stats = {
            "integration_id": integration_id,
            "created": created,
            "updated": updated,
            "removed": len(stale),
        }
        logger.info("Calendar sync finished: %s", stats)
        return stats

    async def sync_organization(self, organization_id: int) -> Dict[str, Any]:
        result = await self.db.execute(
            select(CalendarIntegration.id).where(
                and_(
                    CalendarIntegration.organization_id == organization_id,
                    CalendarIntegration.is_active.is_(True)
                )
            )
        )
        integration_ids = [row[0] for row in result.all()]

        stats: Dict[str, Any] = {"organization_id": organization_id, "integrations": []}
        for integration_id in integration_ids:
            stats["integrations"].append(await self.sync_integration(integration_id))
        return stats


async def register_integration(
    db: AsyncSession,
    organization_id: int,
    provider: str,
    is_active: bool = True,
    commit: bool = True
) -> CalendarIntegration:
    """Create or reactivate the organization's integration for a provider"""
    result = await db.execute(
        select(CalendarIntegration).where(
            and_(
                CalendarIntegration.organization_id == organization_id,
                CalendarIntegration.provider == provider
            )
        )
    )
    integration: Optional[CalendarIntegration] = result.scalar_one_or_none()
    if integration is None:
        integration = CalendarIntegration(
            organization_id=organization_id,
            provider=provider,
            is_active=is_active,
        )
        db.add(integration)
    else:
        integration.is_active = is_active

    if commit:
        await db.commit()
        await db.refresh(integration)
    else:
        await db.flush()
    return integration
