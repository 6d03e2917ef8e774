"""Unit tests for the contest event bus and the Redis publisher."""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from fitrank import events
from fitrank.events import Event, EventBus, RedisEventPublisher


@pytest.mark.asyncio
class TestEventBus:
    async def test_publish_reaches_every_handler(self):
        bus = EventBus()
        first, second = AsyncMock(), AsyncMock()
        bus.subscribe(first)
        bus.subscribe(second)

        event = await bus.publish(events.DUEL_CREATED, duel_id="d1")

        first.assert_awaited_once_with(event)
        second.assert_awaited_once_with(event)
        assert event.name == "duel.created"
        assert event.payload == {"duel_id": "d1"}

    async def test_failing_handler_does_not_block_others(self):
        bus = EventBus()
        broken = AsyncMock(side_effect=RuntimeError("boom"))
        healthy = AsyncMock()
        bus.subscribe(broken)
        bus.subscribe(healthy)

        await bus.publish(events.DUEL_ACCEPTED)

        healthy.assert_awaited_once()

    async def test_unsubscribe(self):
        bus = EventBus()
        handler = AsyncMock()
        bus.subscribe(handler)
        bus.unsubscribe(handler)
        bus.unsubscribe(handler)

        await bus.publish(events.DUEL_CANCELLED)

        handler.assert_not_awaited()


class TestEventSerialization:
    def test_to_dict_stringifies_ids_and_datetimes(self):
        duel_id = uuid.uuid4()
        ends_at = datetime(2026, 1, 8, 12, 0, tzinfo=timezone.utc)
        event = Event(name=events.DUEL_ACCEPTED, payload={"duel_id": duel_id, "ends_at": ends_at})

        data = event.to_dict()

        assert data["event"] == "duel.accepted"
        assert data["data"] == {"duel_id": str(duel_id), "ends_at": "2026-01-08T12:00:00+00:00"}
        json.dumps(data)


@pytest.mark.asyncio
class TestRedisEventPublisher:
    async def test_publishes_json_on_channel(self):
        redis = AsyncMock()
        publisher = RedisEventPublisher(redis, "fitrank:events")
        event = Event(name=events.MATCHMAKING_PAIRED, payload={"competition_id": uuid.uuid4()})

        await publisher(event)

        redis.publish.assert_awaited_once()
        channel, body = redis.publish.await_args.args
        assert channel == "fitrank:events"
        assert json.loads(body)["event"] == "matchmaking.paired"

    async def test_redis_failure_is_logged_not_raised(self):
        redis = AsyncMock()
        redis.publish.side_effect = ConnectionError("redis down")
        publisher = RedisEventPublisher(redis, "fitrank:events")

        await publisher(Event(name=events.DUEL_COMPLETED, payload={}))

        redis.publish.assert_awaited_once()
