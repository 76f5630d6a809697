"""
GraphQL mutations for no-show processing
"""
import logging
from datetime import datetime
from typing import Optional
import strawberry
from strawberry.types import Info

from classbook.graphql.auth.permissions import IsAuthenticated
from classbook.services.no_show_reconciler import NoShowReconciler
from .types import NoShowSummary, ProcessNoShowsResponse

logger = logging.getLogger(__name__)


@strawberry.type
class NoShowMutations:

    @strawberry.mutation(permission_classes=[IsAuthenticated])
    async def process_no_shows(
        self,
        info: Info,
        organization_id: int,
        now: Optional[datetime] = None
    ) -> ProcessNoShowsResponse:
        """Run the no-show sweep for one organization right away"""
        db = info.context.db

        try:
            summary = await NoShowReconciler(db, info.context.payment_gateway).run(organization_id, now=now)

            if summary.skipped_reason:
                message = f"No-show processing skipped: {summary.skipped_reason}"
            else:
                message = (
                    f"Processed {summary.processed_count} no-shows, "
                    f"{len(summary.errors)} failed"
                )
            return ProcessNoShowsResponse(
                success=not summary.errors,
                summary=NoShowSummary.from_data(summary),
                message=message
            )

        except Exception as e:
            await db.rollback()
            logger.exception("process_no_shows failed for organization %s", organization_id)
            return ProcessNoShowsResponse(
                success=False,
                summary=None,
                message=f"Error processing no-shows: {str(e)}"
            )
