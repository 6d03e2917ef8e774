"""Duel engine against a real database."""

from __future__ import annotations

import asyncio
from datetime import date, timedelta

import pytest
import pytest_asyncio

from fitrank import events
from fitrank.activity.sources import SqlActivitySource
from fitrank.duels import service
from fitrank.errors import AuthorizationError, ConflictError, InvalidStateError, ValidationError
from fitrank.timeutils import ensure_utc

pytestmark = pytest.mark.asyncio


class FixedActivity:
    """Activity source that reports the same count for everyone."""

    def __init__(self, count: int) -> None:
        self.count = count

    async def count_workouts(self, user_id, start: date, end: date) -> int:
        return self.count

    async def count_active_days(self, user_id, start: date, end: date) -> int:
        return self.count


async def _recompute(db, duel_id, now):
    return await service.recompute_scores(db, SqlActivitySource(db), duel_id, now=now)


async def _finalize(db, duel_id, now):
    return await service.finalize_expired(db, SqlActivitySource(db), duel_id, now=now)


@pytest_asyncio.fixture
async def pair(seed):
    return await seed.user(name="challenger"), await seed.user(name="opponent")


class TestCreateDuel:
    async def test_creates_pending_duel(self, in_session, pair, recorded_events):
        challenger, opponent = pair
        duel = await in_session(service.create_duel, challenger, opponent, "workout_count", 7)

        assert duel.status == "pending"
        assert duel.challenger_score == 0 and duel.opponent_score == 0
        assert duel.started_at is None and duel.ends_at is None
        assert duel.winner_id is None
        assert [e.name for e in recorded_events] == [events.DUEL_CREATED]

    async def test_self_challenge_rejected(self, in_session, pair):
        challenger, _ = pair
        with pytest.raises(ValidationError, match="cannot challenge yourself"):
            await in_session(service.create_duel, challenger, challenger, "workout_count", 7)

    async def test_unknown_type_rejected(self, in_session, pair):
        with pytest.raises(ValidationError):
            await in_session(service.create_duel, *pair, "pushups", 7)

    async def test_unsupported_duration_rejected(self, in_session, pair):
        with pytest.raises(ValidationError, match="Duration"):
            await in_session(service.create_duel, *pair, "workout_count", 5)

    async def test_open_duel_blocks_either_direction(self, in_session, pair):
        challenger, opponent = pair
        await in_session(service.create_duel, challenger, opponent, "workout_count", 7)

        with pytest.raises(ConflictError, match="pending duel"):
            await in_session(service.create_duel, challenger, opponent, "streak", 3)
        with pytest.raises(ConflictError):
            await in_session(service.create_duel, opponent, challenger, "workout_count", 7)

    async def test_active_duel_blocks_new_one(self, in_session, pair):
        challenger, opponent = pair
        duel = await in_session(service.create_duel, challenger, opponent, "workout_count", 7)
        await in_session(service.accept_duel, duel.id, opponent)

        with pytest.raises(ConflictError, match="active duel"):
            await in_session(service.create_duel, opponent, challenger, "workout_count", 7)

    async def test_closed_duel_allows_rematch(self, in_session, pair):
        challenger, opponent = pair
        duel = await in_session(service.create_duel, challenger, opponent, "workout_count", 7)
        await in_session(service.decline_duel, duel.id, opponent)

        rematch = await in_session(service.create_duel, challenger, opponent, "workout_count", 7)
        assert rematch.status == "pending"


class TestDuelTransitions:
    async def test_accept_starts_clock(self, in_session, pair, now, recorded_events):
        challenger, opponent = pair
        duel = await in_session(service.create_duel, challenger, opponent, "workout_count", 14)

        accepted = await in_session(service.accept_duel, duel.id, opponent, now=now)

        assert accepted.status == "active"
        assert ensure_utc(accepted.started_at) == now
        assert ensure_utc(accepted.ends_at) == now + timedelta(days=14)
        assert recorded_events[-1].name == events.DUEL_ACCEPTED

    async def test_only_opponent_can_accept(self, in_session, pair):
        challenger, opponent = pair
        duel = await in_session(service.create_duel, challenger, opponent, "workout_count", 7)

        with pytest.raises(AuthorizationError, match="Only the opponent can accept"):
            await in_session(service.accept_duel, duel.id, challenger)

        unchanged = await in_session(service.get_duel, duel.id)
        assert unchanged.status == "pending"

    async def test_accept_twice_rejected(self, in_session, pair):
        challenger, opponent = pair
        duel = await in_session(service.create_duel, challenger, opponent, "workout_count", 7)
        await in_session(service.accept_duel, duel.id, opponent)

        with pytest.raises(InvalidStateError, match="not pending"):
            await in_session(service.accept_duel, duel.id, opponent)

    async def test_decline(self, in_session, pair, recorded_events):
        challenger, opponent = pair
        duel = await in_session(service.create_duel, challenger, opponent, "workout_count", 7)

        with pytest.raises(AuthorizationError, match="Only the opponent can decline"):
            await in_session(service.decline_duel, duel.id, challenger)

        declined = await in_session(service.decline_duel, duel.id, opponent)
        assert declined.status == "declined"
        assert recorded_events[-1].name == events.DUEL_DECLINED

        with pytest.raises(InvalidStateError, match="Can only cancel pending duels"):
            await in_session(service.cancel_duel, duel.id, challenger)

    async def test_cancel(self, in_session, pair):
        challenger, opponent = pair
        duel = await in_session(service.create_duel, challenger, opponent, "workout_count", 7)

        with pytest.raises(AuthorizationError, match="Only the challenger can cancel"):
            await in_session(service.cancel_duel, duel.id, opponent)

        cancelled = await in_session(service.cancel_duel, duel.id, challenger)
        assert cancelled.status == "cancelled"

    async def test_cannot_cancel_active_duel(self, in_session, pair):
        challenger, opponent = pair
        duel = await in_session(service.create_duel, challenger, opponent, "workout_count", 7)
        await in_session(service.accept_duel, duel.id, opponent)

        with pytest.raises(InvalidStateError):
            await in_session(service.cancel_duel, duel.id, challenger)

    async def test_concurrent_accepts_single_winner(self, in_session, pair, recorded_events):
        challenger, opponent = pair
        duel = await in_session(service.create_duel, challenger, opponent, "workout_count", 7)

        results = await asyncio.gather(
            *[in_session(service.accept_duel, duel.id, opponent) for _ in range(5)],
            return_exceptions=True,
        )

        accepted = [r for r in results if not isinstance(r, Exception)]
        rejected = [r for r in results if isinstance(r, Exception)]
        assert len(accepted) == 1
        assert all(isinstance(r, InvalidStateError) for r in rejected)
        assert [e.name for e in recorded_events].count(events.DUEL_ACCEPTED) == 1


class TestDuelScoring:
    async def test_recompute_counts_workouts_in_window(self, in_session, seed, pair, now):
        challenger, opponent = pair
        duel = await in_session(service.create_duel, challenger, opponent, "workout_count", 7)
        await in_session(service.accept_duel, duel.id, opponent, now=now - timedelta(days=2))
        await seed.workouts(challenger, [(now - timedelta(days=1)).date(), now.date()])
        await seed.workouts(challenger, [(now - timedelta(days=10)).date()])
        await seed.workouts(opponent, [now.date()])

        rescored = await in_session(_recompute, duel.id, now)

        assert rescored.challenger_score == 2
        assert rescored.opponent_score == 1

    async def test_scores_never_decrease(self, in_session, pair, now):
        challenger, opponent = pair
        duel = await in_session(service.create_duel, challenger, opponent, "workout_count", 7)
        await in_session(service.accept_duel, duel.id, opponent, now=now - timedelta(days=1))

        await in_session(service.recompute_scores, FixedActivity(4), duel.id, now=now)
        lowered = await in_session(service.recompute_scores, FixedActivity(1), duel.id, now=now)

        assert lowered.challenger_score == 4
        assert lowered.opponent_score == 4

    async def test_recompute_ignores_pending_duel(self, in_session, pair, now):
        duel = await in_session(service.create_duel, *pair, "workout_count", 7)

        same = await in_session(service.recompute_scores, FixedActivity(3), duel.id, now=now)

        assert same.status == "pending"
        assert same.challenger_score == 0

    async def test_streak_counts_distinct_days(self, in_session, seed, pair, now):
        challenger, opponent = pair
        duel = await in_session(service.create_duel, challenger, opponent, "streak", 7)
        await in_session(service.accept_duel, duel.id, opponent, now=now - timedelta(days=3))
        today = now.date()
        await seed.workouts(challenger, [today, today, today])
        await seed.workouts(opponent, [today, today - timedelta(days=1)])

        rescored = await in_session(_recompute, duel.id, now)

        assert rescored.challenger_score == 1
        assert rescored.opponent_score == 2


class TestFinalizeDuel:
    async def test_expired_duel_completes_with_winner(self, in_session, seed, pair, now, recorded_events):
        challenger, opponent = pair
        duel = await in_session(service.create_duel, challenger, opponent, "workout_count", 7)
        await in_session(service.accept_duel, duel.id, opponent, now=now - timedelta(days=8))
        await seed.workouts(challenger, [(now - timedelta(days=d)).date() for d in (7, 6, 5)])
        await seed.workouts(opponent, [(now - timedelta(days=4)).date(), now.date()])

        finished, moved = await in_session(_finalize, duel.id, now)

        assert moved is True
        assert finished.status == "completed"
        assert (finished.challenger_score, finished.opponent_score) == (3, 1)
        assert finished.winner_id == challenger
        assert recorded_events[-1].name == events.DUEL_COMPLETED

    async def test_tie_has_no_winner(self, in_session, pair, now):
        challenger, opponent = pair
        duel = await in_session(service.create_duel, challenger, opponent, "workout_count", 3)
        await in_session(service.accept_duel, duel.id, opponent, now=now - timedelta(days=4))

        finished, moved = await in_session(_finalize, duel.id, now)

        assert moved is True
        assert finished.status == "completed"
        assert finished.winner_id is None

    async def test_finalize_is_idempotent(self, in_session, pair, now, recorded_events):
        challenger, opponent = pair
        duel = await in_session(service.create_duel, challenger, opponent, "workout_count", 3)
        await in_session(service.accept_duel, duel.id, opponent, now=now - timedelta(days=4))

        _, first = await in_session(_finalize, duel.id, now)
        again, second = await in_session(_finalize, duel.id, now)

        assert (first, second) == (True, False)
        assert again.status == "completed"
        assert [e.name for e in recorded_events].count(events.DUEL_COMPLETED) == 1

    async def test_running_duel_untouched(self, in_session, pair, now):
        challenger, opponent = pair
        duel = await in_session(service.create_duel, challenger, opponent, "workout_count", 7)
        await in_session(service.accept_duel, duel.id, opponent, now=now - timedelta(days=1))

        same, moved = await in_session(_finalize, duel.id, now)

        assert moved is False
        assert same.status == "active"

    async def test_completed_scores_frozen(self, in_session, pair, now):
        challenger, opponent = pair
        duel = await in_session(service.create_duel, challenger, opponent, "workout_count", 3)
        await in_session(service.accept_duel, duel.id, opponent, now=now - timedelta(days=4))
        await in_session(_finalize, duel.id, now)

        after = await in_session(service.recompute_scores, FixedActivity(9), duel.id, now=now)

        assert after.status == "completed"
        assert after.challenger_score == 0


class TestDuelListings:
    async def test_list_and_invites(self, in_session, seed, pair):
        challenger, opponent = pair
        third = await seed.user(name="third")
        first = await in_session(service.create_duel, challenger, opponent, "workout_count", 7)
        second = await in_session(service.create_duel, third, opponent, "streak", 7)
        await in_session(service.accept_duel, second.id, opponent)

        mine = await in_session(service.list_for_user, opponent)
        active = await in_session(service.list_for_user, opponent, ["active"])
        invites = await in_session(service.pending_invites, opponent)

        assert {d.id for d in mine} == {first.id, second.id}
        assert [d.id for d in active] == [second.id]
        assert [d.id for d in invites] == [first.id]
        assert await in_session(service.pending_invites, challenger) == []
