"""
GraphQL types for Class Sessions
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
import strawberry

from classbook.core.conversions import as_utc
from classbook.crud.classSessionCrud import ClassSessionData
from classbook.models.calendarModel import CalendarBusyPeriod


@strawberry.type
class ClassSession:
    """Class Session GraphQL type with availability info"""
    id: int
    organization_id: int
    name: str
    instructor_name: Optional[str]
    start_at: datetime
    end_at: datetime
    capacity: int
    confirmed_count: int
    available_spots: int
    waitlist_size: int
    is_full: bool
    price: Decimal
    currency: str

    @classmethod
    def from_data(cls, data: ClassSessionData) -> "ClassSession":
        return cls(
            id=data.id,
            organization_id=data.organization_id,
            name=data.name,
            instructor_name=data.instructor_name,
            start_at=data.start_at,
            end_at=data.end_at,
            capacity=data.capacity,
            confirmed_count=data.confirmed_count,
            available_spots=data.available_spots,
            waitlist_size=data.waitlist_size,
            is_full=data.is_full,
            price=data.price,
            currency=data.currency
        )


@strawberry.type
class BusyPeriod:
    """Busy block synced from an external calendar"""
    id: int
    integration_id: int
    external_event_id: str
    title: Optional[str]
    start_at: datetime
    end_at: datetime

    @classmethod
    def from_model(cls, period: CalendarBusyPeriod) -> "BusyPeriod":
        return cls(
            id=period.id,
            integration_id=period.integration_id,
            external_event_id=period.external_event_id,
            title=period.title,
            start_at=as_utc(period.start_at),
            end_at=as_utc(period.end_at)
        )


# Input types for mutations and queries
@strawberry.input
class CreateClassSessionInput:
    """Input for creating a class session"""
    organization_id: int
    name: str
    start_at: datetime
    end_at: datetime
    capacity: int
    price: Decimal = Decimal("0")
    currency: str = "USD"
    instructor_name: Optional[str] = None
    allow_conflicts: bool = False


@strawberry.input
class UpdateClassSessionInput:
    """Input for updating a class session; omitted fields stay unchanged"""
    session_id: int
    name: Optional[str] = None
    instructor_name: Optional[str] = None
    price: Optional[Decimal] = None
    currency: Optional[str] = None
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    capacity: Optional[int] = None
    allow_conflicts: bool = False


# Response types
@strawberry.type
class ClassSessionResponse:
    """Response for class session operations"""
    success: bool
    session: Optional[ClassSession]
    message: str
    conflicts: List[BusyPeriod] = strawberry.field(default_factory=list)
    promoted_booking_ids: List[int] = strawberry.field(default_factory=list)


@strawberry.type
class ConflictsResponse:
    success: bool
    has_conflicts: bool
    conflicts: List[BusyPeriod]
    message: str


@strawberry.type
class CalendarSyncResult:
    """Counts for one synced calendar integration"""
    integration_id: int
    created: int
    updated: int
    removed: int

    @classmethod
    def from_stats(cls, stats: dict) -> "CalendarSyncResult":
        return cls(
            integration_id=stats["integration_id"],
            created=stats.get("created", 0),
            updated=stats.get("updated", 0),
            removed=stats.get("removed", 0)
        )


@strawberry.type
class SyncCalendarsResponse:
    success: bool
    message: str
    results: List[CalendarSyncResult] = strawberry.field(default_factory=list)
