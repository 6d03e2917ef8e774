"""arq worker: expiration sweeper and periodic matchmaking.

Usage: arq fitrank.workers.settings.WorkerSettings
"""

from __future__ import annotations

import logging

from arq import cron
from arq.connections import RedisSettings

from fitrank.competitions import matchmaking
from fitrank.config import get_settings
from fitrank.contests.sweeper import sweep_expired
from fitrank.database import close_db, get_session_factory, init_db
from fitrank.events import RedisEventPublisher, get_event_bus
from fitrank.middleware.logging import setup_logging

logger = logging.getLogger(__name__)


def sweep_seconds(interval: int) -> set[int]:
    """Seconds-of-minute at which the sweep fires for a given interval."""
    if interval <= 0 or interval >= 60:
        return {0}
    return set(range(0, 60, interval))


async def sweep_contests(ctx: dict) -> dict[str, int]:
    """Finalize every expired duel and competition."""
    result = await sweep_expired(get_session_factory())
    return {
        "duels_completed": result.duels_completed,
        "competitions_completed": result.competitions_completed,
        "failures": result.failures,
    }


async def pair_matchmaking(ctx: dict) -> int:
    """Pair any groups left waiting in the matchmaking queue."""
    settings = get_settings()
    async with get_session_factory()() as db:
        paired = await matchmaking.pair_all(
            db, duration_days=settings.matchmaking_duration_days
        )
    if paired:
        logger.info("Paired %d matchmaking competitions", len(paired))
    return len(paired)


async def startup(ctx: dict) -> None:
    """Initialize connections on worker startup."""
    settings = get_settings()
    setup_logging(settings)
    await init_db(settings.database_url)
    if settings.publish_events:
        publisher = RedisEventPublisher(ctx["redis"], settings.events_channel)
        get_event_bus().subscribe(publisher)
        ctx["publisher"] = publisher
    logger.info("Contest worker started")


async def shutdown(ctx: dict) -> None:
    """Clean up on worker shutdown."""
    publisher = ctx.get("publisher")
    if publisher is not None:
        get_event_bus().unsubscribe(publisher)
    await close_db()
    logger.info("Contest worker shut down")


class WorkerSettings:
    """arq worker settings for contest maintenance."""

    functions = [sweep_contests, pair_matchmaking]
    cron_jobs = [
        cron(sweep_contests, second=sweep_seconds(get_settings().sweep_interval_seconds), run_at_startup=True),
        cron(pair_matchmaking, second={30}),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().redis_url)
    max_jobs = 4
    job_timeout = 120
