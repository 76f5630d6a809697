"""
GraphQL queries for attendance analytics
"""
import logging
from datetime import datetime
import strawberry
from strawberry.types import Info

from classbook.graphql.auth.permissions import IsAuthenticated
from classbook.services.analytics_service import AnalyticsService
from .types import NoShowAnalytics, NoShowAnalyticsResponse

logger = logging.getLogger(__name__)


@strawberry.type
class NoShowQueries:

    @strawberry.field(permission_classes=[IsAuthenticated])
    async def no_show_analytics(
        self,
        info: Info,
        organization_id: int,
        start: datetime,
        end: datetime
    ) -> NoShowAnalyticsResponse:
        db = info.context.db

        try:
            stats = await AnalyticsService(db).attendance_stats(organization_id, start, end)
            return NoShowAnalyticsResponse(
                success=True,
                analytics=NoShowAnalytics.from_data(stats),
                message="Analytics computed"
            )
        except ValueError as e:
            return NoShowAnalyticsResponse(success=False, analytics=None, message=str(e))
        except Exception as e:
            logger.exception("no_show_analytics failed for organization %s", organization_id)
            return NoShowAnalyticsResponse(
                success=False,
                analytics=None,
                message=f"Error computing analytics: {str(e)}"
            )
