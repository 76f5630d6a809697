"""
Organization and per-organization booking settings
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, TYPE_CHECKING
from sqlalchemy import (
    ForeignKey, BigInteger, String, Boolean, JSON
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import TIMESTAMP

from classbook.core.conversions import utcnow
from classbook.db.postgresql import Base, BigIntPK

if TYPE_CHECKING:
    from classbook.models.classModel import ClassSession


class Organization(Base):
    """Studio that owns classes and settings"""

    __tablename__ = "organizations"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)

    # Relationships
    settings: Mapped[Optional["OrganizationSettings"]] = relationship(back_populates="organization", uselist=False)
    class_sessions: Mapped[List["ClassSession"]] = relationship(back_populates="organization")


class OrganizationSettings(Base):
    """Booking switches plus the free-form settings blob (no_show_management lives there)"""

    __tablename__ = "organization_settings"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    organization_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("organizations.id"), nullable=False, unique=True)
    allow_waitlist: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    settings: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    organization: Mapped["Organization"] = relationship(back_populates="settings")
