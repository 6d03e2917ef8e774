"""Expiration sweeper: completes every active contest whose window closed.

Safe to run concurrently with itself and with finalize-on-read because each
contest is finalized by a conditional update in its own transaction. Only
the caller that actually performed a transition counts it.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fitrank.activity.sources import ActivitySource, SqlActivitySource
from fitrank.competitions import service as competition_service
from fitrank.duels import service as duel_service
from fitrank.timeutils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    duels_completed: int = 0
    competitions_completed: int = 0
    failures: int = 0


async def sweep_expired(
    session_factory: async_sessionmaker[AsyncSession],
    now: datetime | None = None,
    activity_factory: Callable[[AsyncSession], ActivitySource] = SqlActivitySource,
) -> SweepResult:
    """Finalize expired duels and competitions.

    Each contest gets a fresh session so one failure cannot poison the rest.
    """
    now = now or utcnow()
    result = SweepResult()

    async with session_factory() as db:
        duel_ids = await duel_service.expired_duel_ids(db, now)
        competition_ids = await competition_service.expired_competition_ids(db, now)
        await db.commit()

    for duel_id in duel_ids:
        try:
            async with session_factory() as db:
                _, moved = await duel_service.finalize_expired(
                    db, activity_factory(db), duel_id, now=now
                )
        except Exception:
            result.failures += 1
            logger.exception("Failed to finalize duel %s", duel_id)
            continue
        if moved:
            result.duels_completed += 1

    for competition_id in competition_ids:
        try:
            async with session_factory() as db:
                _, moved = await competition_service.finalize_expired(
                    db, competition_id, now=now
                )
        except Exception:
            result.failures += 1
            logger.exception("Failed to finalize competition %s", competition_id)
            continue
        if moved:
            result.competitions_completed += 1

    if duel_ids or competition_ids:
        logger.info(
            "Sweep complete: %d duels, %d competitions finalized (%d failures)",
            result.duels_completed,
            result.competitions_completed,
            result.failures,
        )
    return result
