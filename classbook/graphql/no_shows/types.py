"""
GraphQL types for no-show processing and attendance analytics
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
import strawberry

from classbook.services.analytics_service import AttendanceStats
from classbook.services.no_show_reconciler import ReconciliationSummary


@strawberry.type
class NoShowError:
    booking_id: int
    attendee_email: str
    message: str


@strawberry.type
class NoShowSummary:
    """Outcome of one reconciliation run for an organization"""
    organization_id: int
    sessions_scanned: int
    processed_count: int
    skipped_count: int
    skipped_reason: Optional[str]
    penalty_record_ids: List[int]
    errors: List[NoShowError]

    @classmethod
    def from_data(cls, data: ReconciliationSummary) -> "NoShowSummary":
        return cls(
            organization_id=data.organization_id,
            sessions_scanned=data.sessions_scanned,
            processed_count=data.processed_count,
            skipped_count=data.skipped_count,
            skipped_reason=data.skipped_reason,
            penalty_record_ids=list(data.penalty_record_ids),
            errors=[
                NoShowError(booking_id=e.booking_id, attendee_email=e.attendee_email, message=e.message)
                for e in data.errors
            ]
        )


@strawberry.type
class PopularClass:
    name: str
    bookings: int


@strawberry.type
class NoShowAnalytics:
    """Attendance figures computed from raw counts"""
    organization_id: int
    start: datetime
    end: datetime
    class_count: int
    total_capacity: int
    confirmed_bookings: int
    check_ins: int
    no_shows: int
    fill_rate: float
    no_show_rate: float
    revenue: Decimal
    repeat_offenders: List[str]
    popular_classes: List[PopularClass]

    @classmethod
    def from_data(cls, data: AttendanceStats) -> "NoShowAnalytics":
        return cls(
            organization_id=data.organization_id,
            start=data.start,
            end=data.end,
            class_count=data.class_count,
            total_capacity=data.total_capacity,
            confirmed_bookings=data.confirmed_bookings,
            check_ins=data.check_ins,
            no_shows=data.no_shows,
            fill_rate=data.fill_rate,
            no_show_rate=data.no_show_rate,
            revenue=data.revenue,
            repeat_offenders=list(data.repeat_offenders),
            popular_classes=[PopularClass(name=name, bookings=count) for name, count in data.popular_classes]
        )


@strawberry.type
class ProcessNoShowsResponse:
    success: bool
    summary: Optional[NoShowSummary]
    message: str


@strawberry.type
class NoShowAnalyticsResponse:
    success: bool
    analytics: Optional[NoShowAnalytics]
    message: str
