"""Shared test fixtures.

Every test gets a fresh SQLite database file created from the ORM metadata.
Writers are serialized with BEGIN IMMEDIATE (see fitrank.database), so the
concurrency tests exercise the same conditional-update paths as PostgreSQL.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator
from datetime import date, datetime, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fitrank.config import get_settings
from fitrank.database import close_db, get_engine, get_session_factory, init_db
from fitrank.db import models
from fitrank.db.base import Base
from fitrank.events import Event, get_event_bus


@pytest.fixture(autouse=True)
def _test_settings(tmp_path, monkeypatch):
    """Point settings at the per-test database and keep Redis out of the app."""
    monkeypatch.setenv("FITRANK_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'fitrank.db'}")
    monkeypatch.setenv("FITRANK_PUBLISH_EVENTS", "false")
    monkeypatch.setenv("FITRANK_LOG_FORMAT", "console")
    get_settings.cache_clear()
    get_event_bus().clear()
    yield
    get_event_bus().clear()
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Initialize the engine against a fresh schema."""
    await init_db(get_settings().database_url)
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield get_session_factory()
    await close_db()


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """A direct database session for engine calls and assertions."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def in_session(session_factory):
    """Run ``fn(db, *args, **kwargs)`` in its own short-lived session.

    SQLite holds the write lock for as long as a transaction is open, so
    engine calls in tests get a fresh session that is closed right after.
    """

    async def _run(fn, *args, **kwargs):
        async with session_factory() as db:
            return await fn(db, *args, **kwargs)

    return _run


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client bound to the test database."""
    from fitrank.main import create_app

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def recorded_events() -> list[Event]:
    """Collect every event published on the bus during the test."""
    captured: list[Event] = []

    async def _record(event: Event) -> None:
        captured.append(event)

    get_event_bus().subscribe(_record)
    return captured


class Seeder:
    """Writes collaborator rows (profiles, groups, workouts, friendships)."""

    def __init__(self, factory: async_sessionmaker[AsyncSession]) -> None:
        self.factory = factory

    async def user(self, streak: int = 0, name: str | None = None) -> uuid.UUID:
        user_id = uuid.uuid4()
        async with self.factory() as db:
            db.add(models.Profile(id=user_id, username=name, current_streak=streak))
            await db.commit()
        return user_id

    async def group(self, owner_id: uuid.UUID, name: str = "Group") -> uuid.UUID:
        group_id = uuid.uuid4()
        async with self.factory() as db:
            db.add(models.Group(id=group_id, name=name, created_by=owner_id))
            await db.flush()
            db.add(models.GroupMember(group_id=group_id, user_id=owner_id, role="owner"))
            await db.commit()
        return group_id

    async def member(self, group_id: uuid.UUID, user_id: uuid.UUID, role: str = "member") -> None:
        async with self.factory() as db:
            db.add(models.GroupMember(group_id=group_id, user_id=user_id, role=role))
            await db.commit()

    async def workouts(self, user_id: uuid.UUID, dates: list[date]) -> None:
        async with self.factory() as db:
            for d in dates:
                db.add(models.Workout(user_id=user_id, workout_type="run", workout_date=d))
            await db.commit()

    async def friends(self, user_a: uuid.UUID, user_b: uuid.UUID, status: str = "accepted") -> None:
        async with self.factory() as db:
            db.add(models.Friendship(user_id=user_a, friend_id=user_b, status=status))
            await db.commit()

    async def queue_entry(self, group_id: uuid.UUID, queued_at: datetime) -> None:
        async with self.factory() as db:
            db.add(models.MatchmakingQueueEntry(group_id=group_id, queued_at=queued_at))
            await db.commit()


@pytest_asyncio.fixture
async def seed(session_factory) -> Seeder:
    return Seeder(session_factory)


@pytest.fixture
def now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)
