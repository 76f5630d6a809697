import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from strawberry.fastapi import GraphQLRouter

from classbook.core.config import get_settings
from classbook.core.logging_config import setup_logging
from classbook.db.postgresql import SessionLocal, engine
from classbook.graphql.context import build_context
from classbook.graphql.schema import schema
from classbook.services.scheduler import BackgroundScheduler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    settings = get_settings()

    scheduler = None
    if settings.enable_scheduler:
        scheduler = BackgroundScheduler(
            SessionLocal, settings, calendar_gateway=app.state.calendar_gateway
        )
        scheduler.start()

    yield

    if scheduler is not None:
        await scheduler.stop()
    await engine.dispose()
    logger.info("classbook API shut down")


app = FastAPI(lifespan=lifespan)
# Set to a CalendarSyncGateway to enable calendar sync (scheduler loop and syncCalendars)
app.state.calendar_gateway = None

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

graphql_app = GraphQLRouter(
    schema=schema,
    context_getter=build_context,
    graphiql=True
)
app.include_router(graphql_app, prefix="/graphql")
