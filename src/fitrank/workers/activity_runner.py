"""Standalone runner for the workout-logged event consumer.

Reads workout events from a Redis Stream with its own consumer group and
credits each workout to the user's running competitions and duels.

Usage: python -m fitrank.workers.activity_runner
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import signal
import uuid

import redis.asyncio as aioredis

from fitrank.activity.ingest import IngestResult, ingest_workout
from fitrank.activity.sources import SqlActivitySource, SqlMembershipSource
from fitrank.config import Settings, get_settings
from fitrank.database import close_db, get_session_factory, init_db
from fitrank.events import RedisEventPublisher, get_event_bus
from fitrank.middleware.logging import setup_logging

logger = logging.getLogger(__name__)

_running = True


def parse_user_id(raw_data: dict) -> uuid.UUID:
    """Pull the user id out of a stream entry.

    Entries carry either a ``user_id`` field or a JSON ``data`` field with
    one. Raises ValueError when neither holds a UUID.
    """
    value = raw_data.get("user_id")
    if value is None and "data" in raw_data:
        try:
            value = json.loads(raw_data["data"]).get("user_id")
        except (TypeError, json.JSONDecodeError, AttributeError) as exc:
            raise ValueError("Malformed workout event payload") from exc
    if value is None:
        raise ValueError("Workout event has no user_id")
    return uuid.UUID(str(value))


async def handle_entry(raw_data: dict, settings: Settings) -> IngestResult:
    user_id = parse_user_id(raw_data)
    async with get_session_factory()() as db:
        return await ingest_workout(
            db,
            SqlActivitySource(db),
            SqlMembershipSource(db),
            user_id,
            points_per_workout=settings.contribution_points_per_workout,
        )


async def consume(redis_client: aioredis.Redis, consumer_name: str, settings: Settings) -> None:
    """Main consumer loop."""
    stream = settings.activity_stream
    group = settings.activity_consumer_group

    while _running:
        try:
            entries = await redis_client.xreadgroup(
                groupname=group,
                consumername=consumer_name,
                streams={stream: ">"},
                count=100,
                block=5000,
            )
        except aioredis.ResponseError as e:
            logger.error("XREADGROUP error: %s", e)
            await asyncio.sleep(1)
            continue

        for _stream_name, messages in entries or []:
            for msg_id, raw_data in messages:
                try:
                    await handle_entry(raw_data, settings)
                except ValueError:
                    logger.warning("Dropping malformed workout event %s: %r", msg_id, raw_data)
                except Exception:
                    # Not acked: stays in the pending list, this loop only reads new entries
                    logger.exception("Failed to process %s from %s", msg_id, stream)
                    continue
                await redis_client.xack(stream, group, msg_id)


async def main() -> None:
    """Run the workout event consumer."""
    global _running  # noqa: PLW0603

    settings = get_settings()
    setup_logging(settings)
    await init_db(settings.database_url)

    consumer_name = os.environ.get("FITRANK_ACTIVITY_CONSUMER", "activity-worker-1")
    redis_client = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=20,
    )

    try:
        await redis_client.xgroup_create(
            settings.activity_stream, settings.activity_consumer_group, id="0", mkstream=True
        )
        logger.info(
            "Created consumer group %s for %s",
            settings.activity_consumer_group, settings.activity_stream,
        )
    except aioredis.ResponseError as e:
        if "BUSYGROUP" not in str(e):
            raise

    if settings.publish_events:
        get_event_bus().subscribe(RedisEventPublisher(redis_client, settings.events_channel))

    loop = asyncio.get_running_loop()

    def _stop() -> None:
        global _running  # noqa: PLW0603
        _running = False

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _stop)

    logger.info("Starting activity consumer (consumer=%s)", consumer_name)
    try:
        await consume(redis_client, consumer_name, settings)
    finally:
        await redis_client.aclose()
        await close_db()
        logger.info("Activity consumer stopped")


if __name__ == "__main__":
    asyncio.run(main())
