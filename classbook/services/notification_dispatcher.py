"""
Notification Dispatcher for classbook
Delivers pending outbox rows through the notification gateway.
"""
import logging
from typing import Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from classbook.core.config import get_settings
from classbook.core.conversions import utcnow
from classbook.core.errors import NotificationFailed
from classbook.crud.notificationCrud import get_pending_notifications
from classbook.services.gateways import NotificationGateway

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """
    Sends pending notifications. A delivery failure never propagates: the row
    keeps its pending status until it runs out of attempts, then it is failed.
    """

    def __init__(
        self,
        db: AsyncSession,
        gateway: NotificationGateway,
        max_attempts: Optional[int] = None
    ):
        self.db = db
        self.gateway = gateway
        self.max_attempts = max_attempts or get_settings().notification_max_attempts

    async def dispatch_pending(self, limit: int = 50) -> Dict[str, int]:
        """
        Deliver up to `limit` pending notifications, oldest first

        Returns:
            Counts of sent, retried and failed rows
        """
        stats = {"sent": 0, "retry": 0, "failed": 0}
        events = await get_pending_notifications(self.db, limit=limit, max_attempts=self.max_attempts)

        for event in events:
            event.attempts += 1
            try:
                try:
                    await self.gateway.notify(event.recipient, event.template_kind, dict(event.payload or {}))
                except Exception as exc:
                    raise NotificationFailed(event.id, str(exc)) from exc
            except NotificationFailed as failure:
                event.last_error = failure.reason
                if event.attempts >= self.max_attempts:
                    event.status = "failed"
                    stats["failed"] += 1
                    logger.error(
                        "Notification %s (%s) to %s failed permanently: %s",
                        event.id, event.template_kind, event.channel, failure.reason
                    )
                else:
                    stats["retry"] += 1
                    logger.warning(
                        "Notification %s attempt %s failed: %s",
                        event.id, event.attempts, failure.reason
                    )
                continue

            event.status = "sent"
            event.dispatched_at = utcnow()
            event.last_error = None
            stats["sent"] += 1

        await self.db.commit()
        if events:
            logger.info("Notification dispatch finished: %s", stats)
        return stats
