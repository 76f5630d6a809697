"""
Capability interfaces for the external collaborators plus the default
implementations used when no provider is configured. The defaults only log,
the same way a console email sender stands in for a mail provider.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Protocol

from classbook.crud.bookingsCrud import Attendee
from classbook.models import CalendarIntegration

logger = logging.getLogger(__name__)


@dataclass
class PaymentResult:
    success: bool
    reference: Optional[str] = None
    error: Optional[str] = None
    # Settlement state as reported by the provider: succeeded or pending
    status: str = "succeeded"


@dataclass
class ExternalBusyPeriod:
    """A busy block as reported by a calendar provider"""
    external_event_id: str
    start_at: datetime
    end_at: datetime
    title: Optional[str] = None
    is_busy: bool = True


class PaymentGateway(Protocol):
    async def charge(
        self,
        attendee: Attendee,
        amount: Decimal,
        currency: str,
        idempotency_key: Optional[str] = None
    ) -> PaymentResult:
        ...


class NotificationGateway(Protocol):
    async def notify(self, recipient: str, template_kind: str, payload: Dict[str, Any]) -> None:
        ...


class CalendarSyncGateway(Protocol):
    async def fetch_busy_periods(self, integration: CalendarIntegration) -> List[ExternalBusyPeriod]:
        ...


class LoggingPaymentGateway:
    """Records charge requests in the log; nothing is collected, so they stay pending"""

    async def charge(
        self,
        attendee: Attendee,
        amount: Decimal,
        currency: str,
        idempotency_key: Optional[str] = None
    ) -> PaymentResult:
        reference = f"log_{uuid.uuid4().hex[:16]}"
        logger.info(
            "Charge requested: %s %s for %s (reference %s, key %s)",
            amount, currency, attendee.email, reference, idempotency_key
        )
        return PaymentResult(success=True, reference=reference, status="pending")


class LoggingNotificationGateway:
    async def notify(self, recipient: str, template_kind: str, payload: Dict[str, Any]) -> None:
        logger.info("Notification %s -> %s: %s", template_kind, recipient, payload)


@dataclass
class StaticCalendarSyncGateway:
    """Serves busy periods registered in memory, keyed by integration id"""
    periods: Dict[int, List[ExternalBusyPeriod]] = field(default_factory=dict)

    async def fetch_busy_periods(self, integration: CalendarIntegration) -> List[ExternalBusyPeriod]:
        return list(self.periods.get(integration.id, []))
