"""
Class scheduling, booking and attendance models for classbook
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, TYPE_CHECKING
from sqlalchemy import (
    ForeignKey, Integer, BigInteger, Numeric, String, Text,
    CheckConstraint, UniqueConstraint, Index, text
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import TIMESTAMP

from classbook.core.conversions import utcnow
from classbook.db.postgresql import Base, BigIntPK

if TYPE_CHECKING:
    from classbook.models.organizationModel import Organization


BOOKING_CONFIRMED = "confirmed"
BOOKING_WAITLISTED = "waitlisted"
BOOKING_CANCELLED = "cancelled"

SOURCE_DIRECT = "direct"
SOURCE_WAITLIST_PROMOTION = "waitlist_promotion"


class ClassSession(Base):
    """A single scheduled occurrence of a bookable class"""

    __tablename__ = "class_sessions"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    organization_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("organizations.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    instructor_name: Mapped[Optional[str]] = mapped_column(String(120))
    start_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    end_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    # Maintained only by the capacity ledger
    confirmed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    organization: Mapped["Organization"] = relationship(back_populates="class_sessions")
    bookings: Mapped[List["Booking"]] = relationship(back_populates="session")
    waitlist_entries: Mapped[List["WaitlistEntry"]] = relationship(back_populates="session")

    __table_args__ = (
        CheckConstraint("capacity > 0", name="ck_session_capacity"),
        CheckConstraint("confirmed_count >= 0 AND confirmed_count <= capacity", name="ck_session_confirmed_count"),
        CheckConstraint("end_at > start_at", name="ck_session_window"),
        CheckConstraint("price >= 0", name="ck_session_price"),
        Index("idx_sessions_org_time", "organization_id", "start_at"),
        Index("idx_sessions_org_end", "organization_id", "end_at"),
    )


class Booking(Base):
    """Attendee bookings; never deleted, only status-transitioned"""

    __tablename__ = "bookings"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    session_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("class_sessions.id", ondelete="CASCADE"), nullable=False)
    request_id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True)
    attendee_name: Mapped[str] = mapped_column(String(120), nullable=False)
    attendee_email: Mapped[str] = mapped_column(String(254), nullable=False)
    attendee_phone: Mapped[Optional[str]] = mapped_column(String(32))
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    source: Mapped[str] = mapped_column(String(20), nullable=False, default=SOURCE_DIRECT)
    qr_code: Mapped[Optional[str]] = mapped_column(String(64), unique=True)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))

    # Relationships
    session: Mapped["ClassSession"] = relationship(back_populates="bookings")
    check_in: Mapped[Optional["CheckIn"]] = relationship(back_populates="booking", uselist=False)
    penalty_record: Mapped[Optional["NoShowPenaltyRecord"]] = relationship(back_populates="booking", uselist=False)

    __table_args__ = (
        CheckConstraint("status IN ('confirmed','waitlisted','cancelled')", name="ck_booking_status"),
        CheckConstraint("source IN ('direct','waitlist_promotion')", name="ck_booking_source"),
        Index("uq_bookings_active_email", "session_id", "attendee_email", unique=True,
              postgresql_where=text("status <> 'cancelled'"),
              sqlite_where=text("status <> 'cancelled'")),
        Index("idx_bookings_session", "session_id", "status"),
    )


class WaitlistEntry(Base):
    """Queue position of a waitlisted booking"""

    __tablename__ = "waitlist_entries"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    session_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("class_sessions.id", ondelete="CASCADE"), nullable=False)
    booking_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("bookings.id"), nullable=False, unique=True)
    request_id: Mapped[str] = mapped_column(String(36), nullable=False)
    attendee_name: Mapped[str] = mapped_column(String(120), nullable=False)
    attendee_email: Mapped[str] = mapped_column(String(254), nullable=False)
    attendee_phone: Mapped[Optional[str]] = mapped_column(String(32))
    # Dense and 1-based per session; compaction shifts rows one at a time,
    # so uniqueness is enforced by the queue rather than a constraint
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    session: Mapped["ClassSession"] = relationship(back_populates="waitlist_entries")
    booking: Mapped["Booking"] = relationship()

    __table_args__ = (
        CheckConstraint("position >= 1", name="ck_waitlist_position"),
        Index("idx_waitlist_session_position", "session_id", "position"),
    )


class CheckIn(Base):
    """Attendance record; at most one per booking"""

    __tablename__ = "check_ins"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    booking_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("bookings.id"), nullable=False)
    checked_in_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)
    checked_in_by: Mapped[Optional[str]] = mapped_column(String(120))
    qr_code: Mapped[Optional[str]] = mapped_column(String(64))

    # Relationships
    booking: Mapped["Booking"] = relationship(back_populates="check_in")

    __table_args__ = (
        UniqueConstraint("booking_id", name="uq_check_ins_booking"),
    )


class NoShowPenaltyRecord(Base):
    """Idempotency key of the no-show sweep: one row per penalized booking"""

    __tablename__ = "no_show_penalty_records"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    booking_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("bookings.id"), nullable=False)
    organization_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("organizations.id"), nullable=False)
    session_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("class_sessions.id"), nullable=False)
    penalty_type: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    currency: Mapped[Optional[str]] = mapped_column(String(3))
    detail: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)

    # Relationships
    booking: Mapped["Booking"] = relationship(back_populates="penalty_record")

    __table_args__ = (
        UniqueConstraint("booking_id", name="uq_no_show_penalty_booking"),
        CheckConstraint("penalty_type IN ('credit_loss','fee','suspension')", name="ck_penalty_type"),
        Index("idx_penalties_org_created", "organization_id", "created_at"),
    )
