"""Workout-logged event handling.

When a user logs a workout every active competition of their groups gets one
contribution and every active duel they are in is rescored.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from fitrank.activity.sources import ActivitySource, MembershipSource
from fitrank.competitions import service as competition_service
from fitrank.duels import service as duel_service
from fitrank.errors import InvalidStateError, ValidationError
from fitrank.timeutils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class IngestResult:
    user_id: uuid.UUID
    contributions_recorded: int = 0
    duels_rescored: int = 0


async def ingest_workout(
    db: AsyncSession,
    activity: ActivitySource,
    membership: MembershipSource,
    user_id: uuid.UUID,
    points_per_workout: int = 1,
    now: datetime | None = None,
) -> IngestResult:
    """Apply one logged workout to the user's running contests."""
    now = now or utcnow()
    result = IngestResult(user_id=user_id)

    group_ids = set(await membership.groups_of(user_id))
    competitions = await competition_service.active_for_groups(db, list(group_ids), now)
    # One side per competition; group1 wins when the user is on both
    targets = [
        (comp.id, comp.group1_id if comp.group1_id in group_ids else comp.group2_id)
        for comp in competitions
    ]
    duel_ids = await duel_service.active_duel_ids_for_user(db, user_id)
    await db.commit()

    for competition_id, group_id in targets:
        try:
            await competition_service.record_contribution(
                db, membership, competition_id, group_id, user_id, points_per_workout, workouts=1, now=now
            )
        except (InvalidStateError, ValidationError):
            # Finished, or the user left the group, between lookup and increment
            logger.debug("Competition %s no longer takes this contribution", competition_id)
            continue
        result.contributions_recorded += 1

    for duel_id in duel_ids:
        await duel_service.recompute_scores(db, activity, duel_id, now=now)
        result.duels_rescored += 1

    logger.info(
        "Workout by %s: %d contributions, %d duels rescored",
        user_id, result.contributions_recorded, result.duels_rescored,
    )
    return result
