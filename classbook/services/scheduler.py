"""
Background loops started from the FastAPI lifespan: the no-show sweep for
every organization, the notification outbox dispatcher and, when a
calendar provider is configured, the calendar busy-period sync.
"""
import asyncio
import contextlib
import logging
from typing import Awaitable, Callable, List, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from classbook.core.config import Settings, get_settings
from classbook.crud.organizationCrud import list_organization_ids
from classbook.services.calendar_sync import CalendarSyncService
from classbook.services.gateways import (
    CalendarSyncGateway, LoggingNotificationGateway, LoggingPaymentGateway,
    NotificationGateway, PaymentGateway
)
from classbook.services.no_show_reconciler import NoShowReconciler
from classbook.services.notification_dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)


class BackgroundScheduler:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        settings: Optional[Settings] = None,
        payment_gateway: Optional[PaymentGateway] = None,
        notification_gateway: Optional[NotificationGateway] = None,
        calendar_gateway: Optional[CalendarSyncGateway] = None
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.payment_gateway = payment_gateway or LoggingPaymentGateway()
        self.notification_gateway = notification_gateway or LoggingNotificationGateway()
        self.calendar_gateway = calendar_gateway
        self._stop = asyncio.Event()
        self._tasks: List[asyncio.Task] = []

    async def reconcile_once(self) -> None:
        async with self.session_factory() as db:
            summaries = await NoShowReconciler(db, self.payment_gateway).run_all()
        processed = sum(s.processed_count for s in summaries)
        failed = sum(len(s.errors) for s in summaries)
        if processed or failed:
            logger.info("Scheduled no-show sweep: %s penalized, %s failed", processed, failed)

    async def dispatch_once(self) -> None:
        async with self.session_factory() as db:
            await NotificationDispatcher(
                db, self.notification_gateway, self.settings.notification_max_attempts
            ).dispatch_pending()

    async def sync_calendars_once(self) -> None:
        async with self.session_factory() as db:
            organization_ids = await list_organization_ids(db)
            service = CalendarSyncService(db, self.calendar_gateway)
            for organization_id in organization_ids:
                try:
                    await service.sync_organization(organization_id)
                except Exception:
                    await db.rollback()
                    logger.exception("Calendar sync failed for organization %s", organization_id)

    async def _loop(self, name: str, interval: int, job: Callable[[], Awaitable[None]]) -> None:
        interval = max(1, interval)
        while not self._stop.is_set():
            try:
                await job()
            except Exception:
                logger.exception("Background job %s failed", name)
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._stop.wait(), timeout=interval)

    def start(self) -> None:
        if self._tasks:
            return
        self._stop.clear()
        self._tasks = [
            asyncio.create_task(
                self._loop("no_show_sweep", self.settings.reconcile_interval_seconds, self.reconcile_once)
            ),
            asyncio.create_task(
                self._loop("notification_dispatch", self.settings.dispatch_interval_seconds, self.dispatch_once)
            ),
        ]
        if self.calendar_gateway is not None:
            self._tasks.append(asyncio.create_task(
                self._loop(
                    "calendar_sync", self.settings.calendar_sync_interval_seconds, self.sync_calendars_once
                )
            ))
        logger.info(
            "Background scheduler started (sweep every %ss, dispatch every %ss, calendar sync %s)",
            self.settings.reconcile_interval_seconds, self.settings.dispatch_interval_seconds,
            f"every {self.settings.calendar_sync_interval_seconds}s" if self.calendar_gateway else "off"
        )

    async def stop(self) -> None:
        self._stop.set()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks = []
        logger.info("Background scheduler stopped")
