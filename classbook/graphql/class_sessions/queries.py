"""
GraphQL queries for Class Sessions
"""
from datetime import datetime
from typing import Optional
import logging
import strawberry
from strawberry.types import Info

from classbook.crud.classSessionCrud import get_class_session_data
from classbook.graphql.auth.permissions import IsAuthenticated
from classbook.services.conflict_detector import ConflictDetector
from .types import BusyPeriod, ClassSession, ConflictsResponse

logger = logging.getLogger(__name__)


@strawberry.type
class ClassSessionQueries:
    """Class Session queries"""

    @strawberry.field
    async def class_session(
        self,
        info: Info,
        id: int
    ) -> Optional[ClassSession]:
        """Get a class session with its availability"""
        db = info.context.db

        try:
            session_data = await get_class_session_data(db, id)
            return ClassSession.from_data(session_data) if session_data else None
        except Exception:
            logger.exception("Failed to load class session %s", id)
            return None

    @strawberry.field(permission_classes=[IsAuthenticated])
    async def calendar_conflicts(
        self,
        info: Info,
        organization_id: int,
        start_at: datetime,
        end_at: datetime
    ) -> ConflictsResponse:
        """Synced busy periods overlapping a proposed class window"""
        db = info.context.db

        try:
            conflicts = await ConflictDetector(db).find_conflicts(organization_id, start_at, end_at)
            return ConflictsResponse(
                success=True,
                has_conflicts=bool(conflicts),
                conflicts=[BusyPeriod.from_model(period) for period in conflicts],
                message=f"Found {len(conflicts)} conflicts"
            )
        except ValueError as e:
            return ConflictsResponse(success=False, has_conflicts=False, conflicts=[], message=str(e))
