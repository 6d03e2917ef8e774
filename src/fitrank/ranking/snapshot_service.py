"""Leaderboard snapshot store and rank movement.

One snapshot per (user, scope, period). Movement compares the rank a user
held in the most recent earlier period with their current rank:
``previous - current``, so a positive number means the user climbed.
Callers read the previous snapshot before saving the current one.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fitrank.db.models import LeaderboardSnapshot
from fitrank.db.upsert import insert_for
from fitrank.errors import ValidationError
from fitrank.ranking.periods import validate_period_key
from fitrank.timeutils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class Movement:
    previous_rank: int | None
    current_rank: int
    movement: int | None

    @property
    def label(self) -> str | None:
        return format_movement(self.movement)


def rank_movement(previous_rank: int | None, current_rank: int) -> int | None:
    """Positive = improved. None when there is nothing to compare against."""
    if previous_rank is None:
        return None
    return previous_rank - current_rank


def format_movement(movement: int | None) -> str | None:
    if movement is None:
        return None
    if movement > 0:
        return f"+{movement}"
    return str(movement)


async def get_previous(
    db: AsyncSession,
    user_id: uuid.UUID,
    scope: str,
    period_key: str,
) -> LeaderboardSnapshot | None:
    """Most recent snapshot from a period strictly earlier than period_key."""
    validate_period_key(period_key)
    result = await db.execute(
        select(LeaderboardSnapshot)
        .where(
            LeaderboardSnapshot.user_id == user_id,
            LeaderboardSnapshot.scope == scope,
            LeaderboardSnapshot.period_key < period_key,
        )
        .order_by(LeaderboardSnapshot.period_key.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_snapshot(
    db: AsyncSession,
    user_id: uuid.UUID,
    scope: str,
    period_key: str,
) -> LeaderboardSnapshot | None:
    result = await db.execute(
        select(LeaderboardSnapshot).where(
            LeaderboardSnapshot.user_id == user_id,
            LeaderboardSnapshot.scope == scope,
            LeaderboardSnapshot.period_key == period_key,
        )
    )
    return result.scalar_one_or_none()


async def save_snapshot(
    db: AsyncSession,
    user_id: uuid.UUID,
    scope: str,
    rank: int,
    points: int,
    period_key: str,
    taken_at: datetime | None = None,
) -> LeaderboardSnapshot:
    """Upsert the (user, scope, period) snapshot. Last write wins."""
    validate_period_key(period_key)
    if rank < 1:
        raise ValidationError("Snapshot rank must be at least 1")
    if points < 0:
        raise ValidationError("Snapshot points must be non-negative")

    taken_at = taken_at or utcnow()
    stmt = insert_for(db, LeaderboardSnapshot).values(
        id=uuid.uuid4(),
        user_id=user_id,
        scope=scope,
        period_key=period_key,
        rank=rank,
        points=points,
        taken_at=taken_at,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["user_id", "scope", "period_key"],
        set_={"rank": rank, "points": points, "taken_at": taken_at},
    )
    await db.execute(stmt)
    await db.commit()

    result = await db.execute(
        select(LeaderboardSnapshot)
        .where(
            LeaderboardSnapshot.user_id == user_id,
            LeaderboardSnapshot.scope == scope,
            LeaderboardSnapshot.period_key == period_key,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def track_movement(
    db: AsyncSession,
    user_id: uuid.UUID,
    scope: str,
    rank: int,
    points: int,
    period_key: str,
) -> Movement:
    """Read the previous snapshot, then save the current one."""
    previous = await get_previous(db, user_id, scope, period_key)
    previous_rank = previous.rank if previous is not None else None
    await save_snapshot(db, user_id, scope, rank, points, period_key)
    return Movement(
        previous_rank=previous_rank,
        current_rank=rank,
        movement=rank_movement(previous_rank, rank),
    )
