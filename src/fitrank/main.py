"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from fitrank.activity.router import router as activity_router
from fitrank.competitions.router import router as competitions_router
from fitrank.config import get_settings
from fitrank.database import close_db, init_db
from fitrank.duels.router import router as duels_router
from fitrank.events import RedisEventPublisher, get_event_bus
from fitrank.health.router import router as health_router
from fitrank.middleware import setup_middleware
from fitrank.ranking.router import router as ranking_router
from fitrank.redis_client import close_redis, get_redis, init_redis

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)

    publisher = None
    if settings.publish_events:
        await init_redis(settings.redis_url)
        publisher = RedisEventPublisher(get_redis(), settings.events_channel)
        get_event_bus().subscribe(publisher)
        logger.info("Publishing contest events on %s", settings.events_channel)

    yield

    if publisher is not None:
        get_event_bus().unsubscribe(publisher)
        await close_redis()
    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="FitRank API",
        description="Ranking, duel and group competition engine for the fitness tracker",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(duels_router)
    app.include_router(competitions_router)
    app.include_router(ranking_router)
    app.include_router(activity_router)

    return app


app = create_app()
