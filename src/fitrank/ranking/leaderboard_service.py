"""Leaderboard ranker.

Gathers activity for everyone in a scope, scores it with the points
calculator and ranks deterministically: points DESC, then user id string
ASC. Ranks are 1..n with no gaps and no shared positions, so the same input
always produces the same board.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field

from fitrank.activity.sources import ActivitySource, MembershipSource
from fitrank.errors import ValidationError
from fitrank.ranking.points import ActivitySnapshot, points_for

logger = logging.getLogger(__name__)

SCOPES = ("friends", "groups", "global")


@dataclass
class LeaderboardRow:
    user_id: uuid.UUID
    points: int
    rank: int
    workouts_count: int
    streak: int
    groups_count: int
    friends_count: int


@dataclass
class Leaderboard:
    scope: str
    group_id: uuid.UUID | None
    total: int
    rows: list[LeaderboardRow] = field(default_factory=list)
    requester_row: LeaderboardRow | None = None

    def row_for(self, user_id: uuid.UUID) -> LeaderboardRow | None:
        if self.requester_row is not None and self.requester_row.user_id == user_id:
            return self.requester_row
        for row in self.rows:
            if row.user_id == user_id:
                return row
        return None


def snapshot_scope_key(scope: str, group_id: uuid.UUID | None = None) -> str:
    """Scope key under which snapshots for this board are stored."""
    if scope == "groups" and group_id is not None:
        return f"groups:{group_id}"
    return scope


def rank_activity(activity: dict[uuid.UUID, ActivitySnapshot]) -> list[LeaderboardRow]:
    """Score and rank every user in ``activity``."""
    scored = [(uid, snap, points_for(snap)) for uid, snap in activity.items()]
    scored.sort(key=lambda item: (-item[2], str(item[0])))
    return [
        LeaderboardRow(
            user_id=uid,
            points=points,
            rank=idx + 1,
            workouts_count=snap.workouts_count,
            streak=snap.streak,
            groups_count=snap.groups_count,
            friends_count=snap.friends_count,
        )
        for idx, (uid, snap, points) in enumerate(scored)
    ]


async def resolve_scope(
    membership: MembershipSource,
    scope: str,
    group_id: uuid.UUID | None = None,
    requesting_user_id: uuid.UUID | None = None,
) -> list[uuid.UUID]:
    """User ids that belong on the board for ``scope``."""
    if scope == "global":
        return await membership.all_user_ids()
    if scope == "friends":
        if requesting_user_id is None:
            return []
        friends = await membership.friend_ids(requesting_user_id)
        return [requesting_user_id, *[f for f in friends if f != requesting_user_id]]
    if scope == "groups":
        if group_id is not None:
            return await membership.group_member_ids(group_id)
        if requesting_user_id is not None:
            return await membership.group_peer_ids(requesting_user_id)
        return []
    raise ValidationError(f"Unknown leaderboard scope: {scope!r}")


async def get_leaderboard(
    activity: ActivitySource,
    membership: MembershipSource,
    scope: str,
    limit: int,
    group_id: uuid.UUID | None = None,
    requesting_user_id: uuid.UUID | None = None,
) -> Leaderboard:
    """Ranked top ``limit`` rows for a scope.

    When the requester is ranked below the cut, their row is returned
    separately as ``requester_row``.
    """
    if scope not in SCOPES:
        raise ValidationError(f"Unknown leaderboard scope: {scope!r}")
    if limit < 1:
        raise ValidationError("Leaderboard limit must be at least 1")

    user_ids = await resolve_scope(membership, scope, group_id, requesting_user_id)
    if not user_ids:
        return Leaderboard(scope=scope, group_id=group_id, total=0)

    batch = await activity.get_activity_batch(user_ids)
    for uid in user_ids:
        batch.setdefault(uid, ActivitySnapshot())
    ranked = rank_activity(batch)

    board = Leaderboard(scope=scope, group_id=group_id, total=len(ranked), rows=ranked[:limit])
    if requesting_user_id is not None:
        own = next((r for r in ranked if r.user_id == requesting_user_id), None)
        if own is not None and own.rank > limit:
            board.requester_row = own

    logger.debug("Ranked %d users for scope %s", len(ranked), scope)
    return board
