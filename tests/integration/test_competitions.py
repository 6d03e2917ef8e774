"""Group competition engine: challenges, contributions, standings, finalize."""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from datetime import timedelta

import pytest
import pytest_asyncio

from fitrank import events
from fitrank.activity.sources import SqlMembershipSource
from fitrank.competitions import service
from fitrank.errors import (
    AuthorizationError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from fitrank.timeutils import ensure_utc

pytestmark = pytest.mark.asyncio


@dataclass
class Groups:
    group1: uuid.UUID
    group2: uuid.UUID
    owner1: uuid.UUID
    owner2: uuid.UUID
    admin2: uuid.UUID
    member1: uuid.UUID
    member2: uuid.UUID


@pytest_asyncio.fixture
async def groups(seed) -> Groups:
    owner1, owner2 = await seed.user(name="owner1"), await seed.user(name="owner2")
    admin2 = await seed.user(name="admin2")
    member1, member2 = await seed.user(name="member1"), await seed.user(name="member2")
    group1 = await seed.group(owner1, "Runners")
    group2 = await seed.group(owner2, "Lifters")
    await seed.member(group1, member1)
    await seed.member(group2, member2)
    await seed.member(group2, admin2, role="admin")
    return Groups(group1, group2, owner1, owner2, admin2, member1, member2)


async def _create(db, groups: Groups, acting, group1=None, group2=None, **kwargs):
    return await service.create_competition(
        db,
        SqlMembershipSource(db),
        "challenge",
        group1 or groups.group1,
        group2 or groups.group2,
        acting,
        **kwargs,
    )


async def _accept(db, competition_id, acting, now=None):
    return await service.accept_competition(db, SqlMembershipSource(db), competition_id, acting, now=now)


async def _decline(db, competition_id, acting):
    return await service.decline_competition(db, SqlMembershipSource(db), competition_id, acting)


async def _cancel(db, competition_id, acting):
    return await service.cancel_competition(db, SqlMembershipSource(db), competition_id, acting)


async def _contribute(db, competition_id, group_id, user_id, points, **kwargs):
    return await service.record_contribution(
        db, SqlMembershipSource(db), competition_id, group_id, user_id, points, **kwargs
    )


async def _standings(db, competition_id):
    return await service.member_standings(db, SqlMembershipSource(db), competition_id)


async def _active(in_session, groups: Groups, now, days_ago: int = 0, duration_days: int = 7):
    comp = await in_session(_create, groups, groups.owner1, duration_days=duration_days)
    return await in_session(_accept, comp.id, groups.owner2, now=now - timedelta(days=days_ago))


class TestChallenge:
    async def test_staff_creates_pending_challenge(self, in_session, groups, recorded_events):
        comp = await in_session(_create, groups, groups.owner1)

        assert comp.status == "pending"
        assert comp.competition_type == "challenge"
        assert comp.created_by == groups.owner1
        assert comp.started_at is None
        assert (comp.group1_score, comp.group2_score) == (0, 0)
        assert recorded_events[-1].name == events.COMPETITION_CREATED

    async def test_non_staff_cannot_challenge(self, in_session, groups):
        with pytest.raises(AuthorizationError):
            await in_session(_create, groups, groups.member1)

    async def test_same_group_rejected(self, in_session, groups):
        with pytest.raises(ValidationError):
            await in_session(_create, groups, groups.owner1, group2=groups.group1)

    async def test_unknown_group(self, in_session, groups):
        with pytest.raises(NotFoundError):
            await in_session(_create, groups, groups.owner1, group2=uuid.uuid4())

    async def test_bad_duration(self, in_session, groups):
        with pytest.raises(ValidationError):
            await in_session(_create, groups, groups.owner1, duration_days=0)

    async def test_open_pair_conflicts_both_directions(self, in_session, groups):
        await in_session(_create, groups, groups.owner1)

        with pytest.raises(ConflictError):
            await in_session(_create, groups, groups.owner1)
        with pytest.raises(ConflictError):
            await in_session(
                _create, groups, groups.owner2, group1=groups.group2, group2=groups.group1
            )

    async def test_active_group_cannot_be_challenged(self, in_session, seed, groups, now):
        await _active(in_session, groups, now)
        owner3 = await seed.user(name="owner3")
        group3 = await seed.group(owner3, "Swimmers")

        with pytest.raises(ConflictError, match="active competition"):
            await in_session(_create, groups, owner3, group1=group3, group2=groups.group2)


class TestChallengeResponses:
    async def test_accept_scenario(self, in_session, groups, now, recorded_events):
        comp = await in_session(_create, groups, groups.owner1)

        with pytest.raises(AuthorizationError):
            await in_session(_accept, comp.id, groups.member2)
        with pytest.raises(AuthorizationError):
            await in_session(_accept, comp.id, groups.owner1)

        accepted = await in_session(_accept, comp.id, groups.owner2, now=now)

        assert accepted.status == "active"
        assert ensure_utc(accepted.started_at) == now
        assert ensure_utc(accepted.ends_at) == now + timedelta(days=accepted.duration_days)
        assert recorded_events[-1].name == events.COMPETITION_ACCEPTED

    async def test_admin_can_accept(self, in_session, groups):
        comp = await in_session(_create, groups, groups.owner1)
        accepted = await in_session(_accept, comp.id, groups.admin2)
        assert accepted.status == "active"

    async def test_accept_twice_rejected(self, in_session, groups):
        comp = await in_session(_create, groups, groups.owner1)
        await in_session(_accept, comp.id, groups.owner2)

        with pytest.raises(InvalidStateError):
            await in_session(_accept, comp.id, groups.owner2)

    async def test_decline(self, in_session, groups):
        comp = await in_session(_create, groups, groups.owner1)

        with pytest.raises(AuthorizationError):
            await in_session(_decline, comp.id, groups.owner1)

        declined = await in_session(_decline, comp.id, groups.owner2)
        assert declined.status == "declined"

    async def test_cancel_by_either_side(self, in_session, groups):
        first = await in_session(_create, groups, groups.owner1)
        with pytest.raises(AuthorizationError):
            await in_session(_cancel, first.id, groups.member1)
        cancelled = await in_session(_cancel, first.id, groups.owner1)
        assert cancelled.status == "cancelled"

        second = await in_session(_create, groups, groups.owner1)
        cancelled = await in_session(_cancel, second.id, groups.admin2)
        assert cancelled.status == "cancelled"

    async def test_cannot_cancel_active(self, in_session, groups, now):
        comp = await _active(in_session, groups, now)
        with pytest.raises(InvalidStateError, match="Can only cancel pending competitions"):
            await in_session(_cancel, comp.id, groups.owner1)

    async def test_unknown_competition(self, in_session, groups):
        with pytest.raises(NotFoundError):
            await in_session(_accept, uuid.uuid4(), groups.owner2)


class TestContributions:
    async def test_contribution_moves_group_score(self, in_session, groups, now):
        comp = await _active(in_session, groups, now)

        first = await in_session(
            _contribute, comp.id, groups.group1, groups.member1, 3, workouts=1, now=now
        )
        second = await in_session(
            _contribute, comp.id, groups.group1, groups.member1, 2, workouts=1, now=now
        )
        await in_session(_contribute, comp.id, groups.group2, groups.member2, 4, now=now)

        assert first.points == 3
        assert (second.points, second.workouts_count) == (5, 2)
        current = await in_session(service.get_competition, comp.id)
        assert (current.group1_score, current.group2_score) == (5, 4)

    async def test_concurrent_contributions_sum_to_score(self, in_session, seed, groups, now):
        comp = await _active(in_session, groups, now)
        members = [groups.owner1, groups.member1]
        for _ in range(3):
            user = await seed.user()
            await seed.member(groups.group1, user)
            members.append(user)

        await asyncio.gather(
            *[
                in_session(
                    _contribute,
                    comp.id,
                    groups.group1,
                    members[i % len(members)],
                    1 + i % 3,
                    now=now,
                )
                for i in range(20)
            ]
        )

        current = await in_session(service.get_competition, comp.id)
        contributions = await in_session(service.get_contributions, comp.id)
        expected = sum(1 + i % 3 for i in range(20))
        assert current.group1_score == expected
        assert sum(c.points for c in contributions if c.group_id == groups.group1) == expected
        assert len(contributions) == len(members)

    async def test_non_positive_delta_rejected(self, in_session, groups, now):
        comp = await _active(in_session, groups, now)
        with pytest.raises(ValidationError):
            await in_session(_contribute, comp.id, groups.group1, groups.member1, 0)

    async def test_foreign_group_rejected(self, in_session, groups, now):
        comp = await _active(in_session, groups, now)
        with pytest.raises(ValidationError):
            await in_session(_contribute, comp.id, uuid.uuid4(), groups.member1, 1)

    async def test_non_member_rejected(self, in_session, seed, groups, now):
        comp = await _active(in_session, groups, now)
        outsider = await seed.user()

        with pytest.raises(ValidationError, match="not a member"):
            await in_session(_contribute, comp.id, groups.group1, outsider, 50, now=now)
        with pytest.raises(ValidationError, match="not a member"):
            await in_session(_contribute, comp.id, groups.group1, groups.member2, 50, now=now)

        unchanged = await in_session(service.get_competition, comp.id)
        assert unchanged.group1_score == 0
        assert await in_session(service.get_contributions, comp.id) == []

    async def test_pending_competition_rejects_contributions(self, in_session, groups):
        comp = await in_session(_create, groups, groups.owner1)
        with pytest.raises(InvalidStateError, match="not active"):
            await in_session(_contribute, comp.id, groups.group1, groups.member1, 1)

        unchanged = await in_session(service.get_competition, comp.id)
        assert unchanged.group1_score == 0

    async def test_expired_window_rejects_contributions(self, in_session, groups, now):
        comp = await _active(in_session, groups, now, days_ago=8)
        with pytest.raises(InvalidStateError):
            await in_session(
                _contribute, comp.id, groups.group1, groups.member1, 1, now=now
            )

    async def test_standings_include_silent_members(self, in_session, groups, now):
        comp = await _active(in_session, groups, now)
        await in_session(_contribute, comp.id, groups.group1, groups.member1, 6, now=now)

        standings = await in_session(_standings, comp.id)

        side1 = standings[groups.group1]
        assert [s.user_id for s in side1] == [groups.member1, groups.owner1]
        assert [s.points for s in side1] == [6, 0]
        assert {s.user_id for s in standings[groups.group2]} == {
            groups.owner2, groups.admin2, groups.member2
        }
        assert all(s.points == 0 for s in standings[groups.group2])


class TestFinalizeCompetition:
    async def test_higher_score_wins(self, in_session, groups, now, recorded_events):
        comp = await _active(in_session, groups, now, days_ago=3, duration_days=7)
        await in_session(_contribute, comp.id, groups.group2, groups.member2, 5, now=now)
        await in_session(_contribute, comp.id, groups.group1, groups.member1, 2, now=now)

        finished, moved = await in_session(service.finalize_expired, comp.id, now=now + timedelta(days=5))

        assert moved is True
        assert finished.status == "completed"
        assert finished.winner_group_id == groups.group2
        assert (finished.group1_score, finished.group2_score) == (2, 5)
        assert recorded_events[-1].name == events.COMPETITION_COMPLETED

    async def test_tie_and_idempotence(self, in_session, groups, now):
        comp = await _active(in_session, groups, now, days_ago=8)

        finished, first = await in_session(service.finalize_expired, comp.id, now=now)
        again, second = await in_session(service.finalize_expired, comp.id, now=now)

        assert (first, second) == (True, False)
        assert finished.winner_group_id is None
        assert again.status == "completed"

    async def test_running_competition_untouched(self, in_session, groups, now):
        comp = await _active(in_session, groups, now)
        same, moved = await in_session(service.finalize_expired, comp.id, now=now)
        assert moved is False
        assert same.status == "active"

    async def test_group_listings(self, in_session, seed, groups, now):
        done = await _active(in_session, groups, now, days_ago=8)
        await in_session(service.finalize_expired, done.id, now=now)
        owner3 = await seed.user()
        group3 = await seed.group(owner3, "Climbers")
        pending = await in_session(_create, groups, groups.owner1, group2=group3)

        open_comps = await in_session(service.open_for_group, groups.group1)
        completed = await in_session(service.completed_for_group, groups.group1)

        assert [c.id for c in open_comps] == [pending.id]
        assert [c.id for c in completed] == [done.id]
