"""
External calendar integrations and the busy periods synced from them
"""
from datetime import datetime
from typing import List, Optional
from sqlalchemy import (
    ForeignKey, BigInteger, String, Boolean,
    CheckConstraint, UniqueConstraint, Index
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import TIMESTAMP

from classbook.core.conversions import utcnow
from classbook.db.postgresql import Base, BigIntPK


class CalendarIntegration(Base):
    """A connected Google/Outlook/Calendly calendar"""

    __tablename__ = "calendar_integrations"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    organization_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("organizations.id"), nullable=False)
    provider: Mapped[str] = mapped_column(String(20), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_synced_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    busy_periods: Mapped[List["CalendarBusyPeriod"]] = relationship(back_populates="integration")

    __table_args__ = (
        UniqueConstraint("organization_id", "provider", name="uq_integration_org_provider"),
        CheckConstraint("provider IN ('google','outlook','calendly')", name="ck_integration_provider"),
    )


class CalendarBusyPeriod(Base):
    """Busy block copied from an external calendar; read-only to the booking engine"""

    __tablename__ = "calendar_busy_periods"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    integration_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("calendar_integrations.id", ondelete="CASCADE"), nullable=False)
    organization_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("organizations.id"), nullable=False)
    external_event_id: Mapped[str] = mapped_column(String(255), nullable=False)
    title: Mapped[Optional[str]] = mapped_column(String(255))
    start_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    end_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    is_busy: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    synced_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)

    # Relationships
    integration: Mapped["CalendarIntegration"] = relationship(back_populates="busy_periods")

    __table_args__ = (
        UniqueConstraint("integration_id", "external_event_id", name="uq_busy_period_external_event"),
        CheckConstraint("end_at > start_at", name="ck_busy_period_window"),
        Index("idx_busy_periods_org_time", "organization_id", "start_at", "end_at"),
    )
