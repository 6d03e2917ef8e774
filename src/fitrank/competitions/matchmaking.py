"""Matchmaking queue: pairs waiting groups into active competitions.

Groups are paired oldest first (queued_at, then group id). Pairing locks
the candidate rows, deletes both entries and inserts the competition in one
transaction; if either entry is already gone the whole attempt is a no-op.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from fitrank import events
from fitrank.activity.sources import MembershipSource, is_staff
from fitrank.competitions.service import (
    DEFAULT_DURATION_DAYS,
    has_open_competition,
    insert_competition,
    open_between_groups,
)
from fitrank.contests.transitions import rollback_on_error
from fitrank.db.models import GroupCompetition, MatchmakingQueueEntry
from fitrank.errors import AuthorizationError, ConflictError, NotFoundError
from fitrank.timeutils import utcnow

logger = logging.getLogger(__name__)

# Rows examined per pairing attempt
PAIR_SCAN_LIMIT = 50


async def is_queued(db: AsyncSession, group_id: uuid.UUID) -> bool:
    result = await db.execute(
        select(MatchmakingQueueEntry.id).where(MatchmakingQueueEntry.group_id == group_id)
    )
    return result.scalar_one_or_none() is not None


async def list_queue(db: AsyncSession) -> list[MatchmakingQueueEntry]:
    result = await db.execute(
        select(MatchmakingQueueEntry).order_by(
            MatchmakingQueueEntry.queued_at, MatchmakingQueueEntry.group_id
        )
    )
    return list(result.scalars().all())


@rollback_on_error
async def enqueue(
    db: AsyncSession,
    membership: MembershipSource,
    group_id: uuid.UUID,
    acting_user_id: uuid.UUID,
    duration_days: int = DEFAULT_DURATION_DAYS,
    now: datetime | None = None,
) -> GroupCompetition | None:
    """Queue a group and try to pair it right away.

    Returns the competition when the group was paired immediately.
    """
    if not await membership.group_exists(group_id):
        raise NotFoundError(f"Group {group_id} not found")
    if not is_staff(await membership.get_role(group_id, acting_user_id)):
        raise AuthorizationError("Only group owners or admins can join matchmaking")
    if await is_queued(db, group_id):
        raise ConflictError("Group is already in matchmaking queue")
    if await has_open_competition(db, group_id):
        raise ConflictError("Group already has an open competition")

    db.add(
        MatchmakingQueueEntry(
            id=uuid.uuid4(),
            group_id=group_id,
            queued_by=acting_user_id,
            queued_at=now or utcnow(),
        )
    )
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError("Group is already in matchmaking queue") from exc

    logger.info("Group %s queued for matchmaking by %s", group_id, acting_user_id)
    return await try_pair(db, duration_days=duration_days, now=now)


@rollback_on_error
async def dequeue(
    db: AsyncSession,
    membership: MembershipSource,
    group_id: uuid.UUID,
    acting_user_id: uuid.UUID,
) -> bool:
    """Leave the queue. Returns False when the group was not queued."""
    if not is_staff(await membership.get_role(group_id, acting_user_id)):
        raise AuthorizationError("Only group owners or admins can leave the queue")

    result = await db.execute(
        delete(MatchmakingQueueEntry).where(MatchmakingQueueEntry.group_id == group_id)
    )
    await db.commit()
    removed = result.rowcount > 0
    if removed:
        logger.info("Group %s left matchmaking", group_id)
    return removed


async def _pick_pair(
    db: AsyncSession, entries: list[MatchmakingQueueEntry]
) -> tuple[MatchmakingQueueEntry, MatchmakingQueueEntry] | None:
    for i, first in enumerate(entries):
        for second in entries[i + 1:]:
            if first.group_id == second.group_id:
                continue
            if await open_between_groups(db, first.group_id, second.group_id) is not None:
                continue
            return first, second
    return None


async def try_pair(
    db: AsyncSession,
    duration_days: int = DEFAULT_DURATION_DAYS,
    now: datetime | None = None,
) -> GroupCompetition | None:
    """Pair the two oldest eligible entries into one active competition.

    Returns None when fewer than two pairable groups are waiting or another
    worker claimed the entries first.
    """
    result = await db.execute(
        select(MatchmakingQueueEntry)
        .order_by(MatchmakingQueueEntry.queued_at, MatchmakingQueueEntry.group_id)
        .limit(PAIR_SCAN_LIMIT)
        .with_for_update(skip_locked=True)
    )
    entries = list(result.scalars().all())
    pair = await _pick_pair(db, entries)
    if pair is None:
        await db.commit()
        return None
    first, second = pair

    deleted = await db.execute(
        delete(MatchmakingQueueEntry)
        .where(MatchmakingQueueEntry.id.in_([first.id, second.id]))
        .execution_options(synchronize_session=False)
    )
    if deleted.rowcount != 2:
        await db.rollback()
        return None

    try:
        comp = await insert_competition(
            db,
            "matchmaking",
            first.group_id,
            second.group_id,
            first.queued_by,
            duration_days,
            now or utcnow(),
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.warning(
            "Pairing %s with %s lost a race, leaving queue untouched",
            first.group_id, second.group_id,
        )
        return None
    await db.refresh(comp)

    logger.info(
        "Matchmaking paired %s vs %s into competition %s",
        comp.group1_id, comp.group2_id, comp.id,
    )
    bus = events.get_event_bus()
    await bus.publish(
        events.COMPETITION_CREATED,
        competition_id=comp.id,
        group1_id=comp.group1_id,
        group2_id=comp.group2_id,
        competition_type=comp.competition_type,
        status=comp.status,
        created_by=comp.created_by,
    )
    await bus.publish(
        events.MATCHMAKING_PAIRED,
        competition_id=comp.id,
        group1_id=comp.group1_id,
        group2_id=comp.group2_id,
        ends_at=comp.ends_at,
    )
    return comp


async def pair_all(
    db: AsyncSession,
    duration_days: int = DEFAULT_DURATION_DAYS,
    now: datetime | None = None,
) -> list[GroupCompetition]:
    """Keep pairing until no pairable groups remain."""
    paired: list[GroupCompetition] = []
    while True:
        comp = await try_pair(db, duration_days=duration_days, now=now)
        if comp is None:
            return paired
        paired.append(comp)
