"""
Member pass and payment models targeted by no-show penalties
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional
from sqlalchemy import (
    ForeignKey, Integer, BigInteger, Numeric, String, Text,
    CheckConstraint, Index
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import TIMESTAMP

from classbook.core.conversions import utcnow
from classbook.db.postgresql import Base, BigIntPK


class MemberPass(Base):
    """Credit pass an attendee holds with an organization"""

    __tablename__ = "member_passes"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    organization_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("organizations.id"), nullable=False)
    attendee_email: Mapped[str] = mapped_column(String(254), nullable=False)
    remaining_credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    suspended_until: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("status IN ('active','expired','suspended')", name="ck_pass_status"),
        CheckConstraint("remaining_credits >= 0", name="ck_pass_credits"),
        Index("idx_passes_org_email", "organization_id", "attendee_email", "status"),
    )


class Payment(Base):
    """Payment records"""

    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    organization_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("organizations.id"), nullable=False)
    booking_id: Mapped[Optional[int]] = mapped_column(BigInteger, ForeignKey("bookings.id"))
    attendee_email: Mapped[str] = mapped_column(String(254), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    payment_type: Mapped[str] = mapped_column(String(40), nullable=False)
    provider_reference: Mapped[Optional[str]] = mapped_column(String(120))
    comment: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("status IN ('pending','succeeded','failed')", name="ck_payment_status"),
        Index("idx_payments_booking", "booking_id"),
    )
