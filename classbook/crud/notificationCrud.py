"""
Outbox writes and reads. Writers never commit: the outbox row belongs to
the caller's transaction so a rolled back transition leaves no notification.
"""
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from classbook.models import NotificationOutbox


async def enqueue_notification(
    db: AsyncSession,
    *,
    recipient: str,
    template_kind: str,
    payload: Dict[str, Any],
    channel: str = "email"
) -> NotificationOutbox:
    event = NotificationOutbox(
        recipient=recipient,
        channel=channel,
        template_kind=template_kind,
        payload=payload,
        status="pending",
    )
    db.add(event)
    await db.flush()
    return event


async def get_pending_notifications(
    db: AsyncSession,
    limit: int = 50,
    max_attempts: Optional[int] = None
) -> List[NotificationOutbox]:
    query = select(NotificationOutbox).where(NotificationOutbox.status == "pending")
    if max_attempts is not None:
        query = query.where(NotificationOutbox.attempts < max_attempts)
    query = (
        query.order_by(NotificationOutbox.created_at, NotificationOutbox.id)
        .limit(limit)
        .with_for_update(skip_locked=True)
    )
    result = await db.execute(query)
    return list(result.scalars().all())


async def list_notifications(
    db: AsyncSession,
    recipient: Optional[str] = None,
    template_kind: Optional[str] = None
) -> List[NotificationOutbox]:
    query = select(NotificationOutbox)
    if recipient:
        query = query.where(NotificationOutbox.recipient == recipient)
    if template_kind:
        query = query.where(NotificationOutbox.template_kind == template_kind)
    result = await db.execute(query.order_by(NotificationOutbox.id))
    return list(result.scalars().all())
