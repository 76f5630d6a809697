"""
GraphQL mutations for Class Sessions
"""
import logging
import strawberry
from strawberry.types import Info

from classbook.core.errors import SchedulingConflict
from classbook.crud.classSessionCrud import (
    create_class_session,
    get_class_session_data,
    update_class_session
)
from classbook.graphql.auth.permissions import IsAuthenticated
from classbook.services.booking_lifecycle import BookingLifecycle
from classbook.services.calendar_sync import CalendarSyncService
from .types import (
    BusyPeriod,
    CalendarSyncResult,
    ClassSession,
    ClassSessionResponse,
    CreateClassSessionInput,
    SyncCalendarsResponse,
    UpdateClassSessionInput
)

logger = logging.getLogger(__name__)


@strawberry.type
class ClassSessionMutations:
    """Class Session mutations"""

    @strawberry.mutation(permission_classes=[IsAuthenticated])
    async def create_class_session(
        self,
        info: Info,
        input: CreateClassSessionInput
    ) -> ClassSessionResponse:
        """Create a new class session"""
        db = info.context.db

        try:
            session = await create_class_session(
                db=db,
                organization_id=input.organization_id,
                name=input.name,
                start_at=input.start_at,
                end_at=input.end_at,
                capacity=input.capacity,
                price=input.price,
                currency=input.currency,
                instructor_name=input.instructor_name,
                allow_conflicts=input.allow_conflicts
            )
            session_data = await get_class_session_data(db, session.id)

            return ClassSessionResponse(
                success=True,
                session=ClassSession.from_data(session_data),
                message="Class session created successfully"
            )

        except SchedulingConflict as e:
            await db.rollback()
            return ClassSessionResponse(
                success=False,
                session=None,
                message=str(e),
                conflicts=[BusyPeriod.from_model(period) for period in e.conflicts]
            )
        except ValueError as e:
            await db.rollback()
            return ClassSessionResponse(success=False, session=None, message=str(e))
        except Exception as e:
            await db.rollback()
            logger.exception("create_class_session failed")
            return ClassSessionResponse(
                success=False,
                session=None,
                message=f"Error creating session: {str(e)}"
            )

    @strawberry.mutation(permission_classes=[IsAuthenticated])
    async def update_class_session(
        self,
        info: Info,
        input: UpdateClassSessionInput
    ) -> ClassSessionResponse:
        """Update a class session; extra capacity is filled from the waitlist"""
        db = info.context.db

        try:
            before = await get_class_session_data(db, input.session_id)
            session = await update_class_session(
                db,
                input.session_id,
                name=input.name,
                instructor_name=input.instructor_name,
                price=input.price,
                currency=input.currency,
                start_at=input.start_at,
                end_at=input.end_at,
                capacity=input.capacity,
                allow_conflicts=input.allow_conflicts
            )

            promoted_ids = []
            if before is not None and session.capacity > before.capacity:
                promoted = await BookingLifecycle(db).fill_open_seats(session.id)
                promoted_ids = [booking.id for booking in promoted]

            session_data = await get_class_session_data(db, session.id)
            return ClassSessionResponse(
                success=True,
                session=ClassSession.from_data(session_data),
                message="Class session updated successfully",
                promoted_booking_ids=promoted_ids
            )

        except SchedulingConflict as e:
            await db.rollback()
            return ClassSessionResponse(
                success=False,
                session=None,
                message=str(e),
                conflicts=[BusyPeriod.from_model(period) for period in e.conflicts]
            )
        except ValueError as e:
            await db.rollback()
            return ClassSessionResponse(success=False, session=None, message=str(e))
        except Exception as e:
            await db.rollback()
            logger.exception("update_class_session failed")
            return ClassSessionResponse(
                success=False,
                session=None,
                message=f"Error updating session: {str(e)}"
            )

    @strawberry.mutation(permission_classes=[IsAuthenticated])
    async def sync_calendars(
        self,
        info: Info,
        organization_id: int
    ) -> SyncCalendarsResponse:
        """Pull busy periods from the organization's calendar integrations now"""
        db = info.context.db
        gateway = info.context.calendar_gateway

        if gateway is None:
            return SyncCalendarsResponse(
                success=False,
                message="No calendar provider is configured"
            )

        try:
            stats = await CalendarSyncService(db, gateway).sync_organization(organization_id)
            results = [CalendarSyncResult.from_stats(item) for item in stats["integrations"]]
            return SyncCalendarsResponse(
                success=True,
                message=f"Synced {len(results)} calendar integration(s)",
                results=results
            )

        except Exception as e:
            await db.rollback()
            logger.exception("sync_calendars failed for organization %s", organization_id)
            return SyncCalendarsResponse(
                success=False,
                message=f"Error syncing calendars: {str(e)}"
            )
