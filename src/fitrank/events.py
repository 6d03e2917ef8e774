"""In-process bus for contest state-change events.

Engines publish after their transaction commits. Subscribers are async
callables; a failing subscriber is logged and never undoes the transition
that produced the event. ``RedisEventPublisher`` forwards every event as JSON
over Redis pub/sub for the notification layer.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from fitrank.timeutils import utcnow

logger = logging.getLogger(__name__)

DUEL_CREATED = "duel.created"
DUEL_ACCEPTED = "duel.accepted"
DUEL_DECLINED = "duel.declined"
DUEL_CANCELLED = "duel.cancelled"
DUEL_COMPLETED = "duel.completed"
COMPETITION_CREATED = "competition.created"
COMPETITION_ACCEPTED = "competition.accepted"
COMPETITION_DECLINED = "competition.declined"
COMPETITION_CANCELLED = "competition.cancelled"
COMPETITION_COMPLETED = "competition.completed"
MATCHMAKING_PAIRED = "matchmaking.paired"


@dataclass(frozen=True)
class Event:
    name: str
    payload: dict[str, Any]
    occurred_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "event": self.name,
            "data": _jsonable(self.payload),
            "occurred_at": self.occurred_at.isoformat(),
        }


Handler = Callable[[Event], Awaitable[None]]


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class EventBus:
    """Fan-out of events to registered async handlers."""

    def __init__(self) -> None:
        self._handlers: list[Handler] = []

    def subscribe(self, handler: Handler) -> None:
        self._handlers.append(handler)

    def unsubscribe(self, handler: Handler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def clear(self) -> None:
        self._handlers.clear()

    async def publish(self, name: str, **payload: Any) -> Event:
        event = Event(name=name, payload=payload)
        for handler in list(self._handlers):
            try:
                await handler(event)
            except Exception:
                logger.warning("Event handler failed for %s", name, exc_info=True)
        return event


class RedisEventPublisher:
    """Bus subscriber that publishes events to a Redis pub/sub channel."""

    def __init__(self, redis: Any, channel: str) -> None:
        self.redis = redis
        self.channel = channel

    async def __call__(self, event: Event) -> None:
        try:
            await self.redis.publish(self.channel, json.dumps(event.to_dict()))
        except Exception:
            logger.warning(
                "Failed to publish %s on %s", event.name, self.channel, exc_info=True
            )


_bus = EventBus()


def get_event_bus() -> EventBus:
    return _bus
