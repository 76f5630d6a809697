"""
Notification outbox: rows are written in the same transaction as the
state change that caused them and delivered later by the dispatcher.
"""
from datetime import datetime
from typing import Any, Dict, Optional
from sqlalchemy import (
    Integer, String, Text, JSON,
    CheckConstraint, Index
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import TIMESTAMP

from classbook.core.conversions import utcnow
from classbook.db.postgresql import Base, BigIntPK


class NotificationOutbox(Base):
    __tablename__ = "notification_outbox"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    recipient: Mapped[str] = mapped_column(String(254), nullable=False)
    channel: Mapped[str] = mapped_column(String(10), nullable=False, default="email")
    template_kind: Mapped[str] = mapped_column(String(60), nullable=False)
    payload: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)
    dispatched_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))

    __table_args__ = (
        CheckConstraint("channel IN ('email','sms')", name="ck_outbox_channel"),
        CheckConstraint("status IN ('pending','sent','failed')", name="ck_outbox_status"),
        Index("idx_outbox_status_created", "status", "created_at"),
    )
