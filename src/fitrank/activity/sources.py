"""Read-only collaborators consumed by the ranking and challenge engines.

``ActivitySource`` answers activity questions (workout counts, streaks) and
``MembershipSource`` answers social-graph questions (roles, members,
friends). The SQL implementations read the profile, workout, group and
friendship tables owned by the rest of the application and never write.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from datetime import date
from typing import Protocol

from sqlalchemy import func, or_, select, union
from sqlalchemy.ext.asyncio import AsyncSession

from fitrank.db.models import Friendship, Group, GroupMember, Profile, Workout
from fitrank.ranking.points import ActivitySnapshot

STAFF_ROLES = frozenset({"owner", "admin"})
ACCEPTED = "accepted"


class ActivitySource(Protocol):
    async def get_activity(self, user_id: uuid.UUID) -> ActivitySnapshot: ...

    async def get_activity_batch(
        self, user_ids: Iterable[uuid.UUID]
    ) -> dict[uuid.UUID, ActivitySnapshot]: ...

    async def count_workouts(self, user_id: uuid.UUID, start: date, end: date) -> int: ...

    async def count_active_days(self, user_id: uuid.UUID, start: date, end: date) -> int: ...


class MembershipSource(Protocol):
    async def get_role(self, group_id: uuid.UUID, user_id: uuid.UUID) -> str | None: ...

    async def group_exists(self, group_id: uuid.UUID) -> bool: ...

    async def group_member_ids(self, group_id: uuid.UUID) -> list[uuid.UUID]: ...

    async def groups_of(self, user_id: uuid.UUID) -> list[uuid.UUID]: ...

    async def group_peer_ids(self, user_id: uuid.UUID) -> list[uuid.UUID]: ...

    async def friend_ids(self, user_id: uuid.UUID) -> list[uuid.UUID]: ...

    async def all_user_ids(self) -> list[uuid.UUID]: ...


def is_staff(role: str | None) -> bool:
    return role in STAFF_ROLES


class SqlActivitySource:
    """ActivitySource over the workouts, profiles and membership tables."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_activity(self, user_id: uuid.UUID) -> ActivitySnapshot:
        batch = await self.get_activity_batch([user_id])
        return batch.get(user_id, ActivitySnapshot())

    async def get_activity_batch(
        self, user_ids: Iterable[uuid.UUID]
    ) -> dict[uuid.UUID, ActivitySnapshot]:
        ids = list(dict.fromkeys(user_ids))
        if not ids:
            return {}

        workout_result = await self.db.execute(
            select(Workout.user_id, func.count(Workout.id))
            .where(Workout.user_id.in_(ids))
            .group_by(Workout.user_id)
        )
        workouts = {row[0]: row[1] for row in workout_result.all()}

        streak_result = await self.db.execute(
            select(Profile.id, Profile.current_streak).where(Profile.id.in_(ids))
        )
        streaks = {row[0]: row[1] or 0 for row in streak_result.all()}

        group_result = await self.db.execute(
            select(GroupMember.user_id, func.count(GroupMember.id))
            .where(GroupMember.user_id.in_(ids))
            .group_by(GroupMember.user_id)
        )
        groups = {row[0]: row[1] for row in group_result.all()}

        # Friendships may be stored in either direction
        friends: dict[uuid.UUID, int] = {}
        pairs = await self.db.execute(
            select(Friendship.user_id, Friendship.friend_id).where(
                Friendship.status == ACCEPTED,
                or_(Friendship.user_id.in_(ids), Friendship.friend_id.in_(ids)),
            )
        )
        seen: dict[uuid.UUID, set[uuid.UUID]] = {}
        wanted = set(ids)
        for a, b in pairs.all():
            if a in wanted:
                seen.setdefault(a, set()).add(b)
            if b in wanted:
                seen.setdefault(b, set()).add(a)
        for uid, others in seen.items():
            friends[uid] = len(others)

        return {
            uid: ActivitySnapshot(
                workouts_count=workouts.get(uid, 0),
                streak=streaks.get(uid, 0),
                groups_count=groups.get(uid, 0),
                friends_count=friends.get(uid, 0),
            )
            for uid in ids
        }

    async def count_workouts(self, user_id: uuid.UUID, start: date, end: date) -> int:
        """Workouts logged with workout_date in [start, end]."""
        result = await self.db.execute(
            select(func.count(Workout.id)).where(
                Workout.user_id == user_id,
                Workout.workout_date >= start,
                Workout.workout_date <= end,
            )
        )
        return result.scalar_one() or 0

    async def count_active_days(self, user_id: uuid.UUID, start: date, end: date) -> int:
        """Distinct days with at least one workout in [start, end]."""
        result = await self.db.execute(
            select(func.count(func.distinct(Workout.workout_date))).where(
                Workout.user_id == user_id,
                Workout.workout_date >= start,
                Workout.workout_date <= end,
            )
        )
        return result.scalar_one() or 0


class SqlMembershipSource:
    """MembershipSource over the groups, group_members and friendships tables."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_role(self, group_id: uuid.UUID, user_id: uuid.UUID) -> str | None:
        result = await self.db.execute(
            select(GroupMember.role).where(
                GroupMember.group_id == group_id,
                GroupMember.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    async def group_exists(self, group_id: uuid.UUID) -> bool:
        result = await self.db.execute(select(Group.id).where(Group.id == group_id))
        return result.scalar_one_or_none() is not None

    async def group_member_ids(self, group_id: uuid.UUID) -> list[uuid.UUID]:
        result = await self.db.execute(
            select(GroupMember.user_id).where(GroupMember.group_id == group_id)
        )
        return list(result.scalars().all())

    async def groups_of(self, user_id: uuid.UUID) -> list[uuid.UUID]:
        result = await self.db.execute(
            select(GroupMember.group_id).where(GroupMember.user_id == user_id)
        )
        return list(result.scalars().all())

    async def group_peer_ids(self, user_id: uuid.UUID) -> list[uuid.UUID]:
        """Everyone sharing at least one group with user_id, user_id included."""
        my_groups = select(GroupMember.group_id).where(GroupMember.user_id == user_id)
        result = await self.db.execute(
            select(GroupMember.user_id)
            .where(GroupMember.group_id.in_(my_groups))
            .distinct()
        )
        return list(result.scalars().all())

    async def friend_ids(self, user_id: uuid.UUID) -> list[uuid.UUID]:
        outgoing = select(Friendship.friend_id.label("uid")).where(
            Friendship.user_id == user_id, Friendship.status == ACCEPTED
        )
        incoming = select(Friendship.user_id.label("uid")).where(
            Friendship.friend_id == user_id, Friendship.status == ACCEPTED
        )
        result = await self.db.execute(union(outgoing, incoming))
        return [row[0] for row in result.all()]

    async def all_user_ids(self) -> list[uuid.UUID]:
        result = await self.db.execute(select(Profile.id))
        return list(result.scalars().all())
