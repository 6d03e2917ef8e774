"""Duel engine: one-on-one challenges scored from logged workouts.

State progression: pending -> active -> completed
The opponent may decline and the challenger may cancel while pending.
Scores are recomputed from the activity source, never decrease while the
duel is active, and are frozen when the duel completes.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy import and_, case, null, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from fitrank import events
from fitrank.activity.sources import ActivitySource
from fitrank.contests.state_machine import OPEN_STATUSES, ContestStatus
from fitrank.contests.transitions import conditional_transition, rollback_on_error
from fitrank.db.models import Duel
from fitrank.errors import (
    AuthorizationError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from fitrank.timeutils import ensure_utc, utcnow

logger = logging.getLogger(__name__)

DUEL_TYPES = ("workout_count", "streak")
DURATION_OPTIONS = (3, 7, 14, 30)
DEFAULT_DURATION_DAYS = 7


def _pair_clause(user_a: uuid.UUID, user_b: uuid.UUID):  # type: ignore[no-untyped-def]
    return or_(
        and_(Duel.challenger_id == user_a, Duel.opponent_id == user_b),
        and_(Duel.challenger_id == user_b, Duel.opponent_id == user_a),
    )


def _event_payload(duel: Duel) -> dict:
    return {
        "duel_id": duel.id,
        "challenger_id": duel.challenger_id,
        "opponent_id": duel.opponent_id,
        "status": duel.status,
    }


async def get_duel(db: AsyncSession, duel_id: uuid.UUID) -> Duel:
    """Get a duel by ID."""
    result = await db.execute(select(Duel).where(Duel.id == duel_id))
    duel = result.scalar_one_or_none()
    if duel is None:
        raise NotFoundError(f"Duel {duel_id} not found")
    return duel


async def open_between(
    db: AsyncSession, user_a: uuid.UUID, user_b: uuid.UUID
) -> Duel | None:
    """The pending or active duel between two users, in either direction."""
    result = await db.execute(
        select(Duel)
        .where(_pair_clause(user_a, user_b), Duel.status.in_(OPEN_STATUSES))
        .limit(1)
    )
    return result.scalar_one_or_none()


@rollback_on_error
async def create_duel(
    db: AsyncSession,
    challenger_id: uuid.UUID,
    opponent_id: uuid.UUID,
    challenge_type: str,
    duration_days: int = DEFAULT_DURATION_DAYS,
) -> Duel:
    """Challenge another user. The duel starts pending."""
    if challenger_id == opponent_id:
        raise ValidationError("You cannot challenge yourself")
    if challenge_type not in DUEL_TYPES:
        raise ValidationError(f"Unknown duel type: {challenge_type!r}")
    if duration_days not in DURATION_OPTIONS:
        raise ValidationError(
            f"Duration must be one of {list(DURATION_OPTIONS)} days, got {duration_days}"
        )

    existing = await open_between(db, challenger_id, opponent_id)
    if existing is not None:
        if existing.status == ContestStatus.PENDING:
            raise ConflictError("A pending duel already exists between these users")
        raise ConflictError("An active duel already exists between these users")

    duel = Duel(
        id=uuid.uuid4(),
        challenger_id=challenger_id,
        opponent_id=opponent_id,
        challenge_type=challenge_type,
        duration_days=duration_days,
        status=ContestStatus.PENDING.value,
        challenger_score=0,
        opponent_score=0,
    )
    db.add(duel)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError("An open duel already exists between these users") from exc
    await db.refresh(duel)

    logger.info("Duel %s created: %s vs %s", duel.id, challenger_id, opponent_id)
    await events.get_event_bus().publish(
        events.DUEL_CREATED,
        **_event_payload(duel),
        challenge_type=challenge_type,
        duration_days=duration_days,
    )
    return duel


@rollback_on_error
async def accept_duel(
    db: AsyncSession,
    duel_id: uuid.UUID,
    acting_user_id: uuid.UUID,
    now: datetime | None = None,
) -> Duel:
    """Opponent accepts: the duel becomes active and the clock starts."""
    duel = await get_duel(db, duel_id)
    if duel.opponent_id != acting_user_id:
        raise AuthorizationError("Only the opponent can accept")
    if duel.status != ContestStatus.PENDING:
        raise InvalidStateError("Duel is not pending")

    started_at = now or utcnow()
    ends_at = started_at + timedelta(days=duel.duration_days)
    moved = await conditional_transition(
        db,
        Duel,
        duel_id,
        ContestStatus.PENDING.value,
        ContestStatus.ACTIVE.value,
        started_at=started_at,
        ends_at=ends_at,
    )
    if not moved:
        raise InvalidStateError("Duel is not pending")
    await db.commit()
    await db.refresh(duel)

    logger.info("Duel %s accepted, ends at %s", duel_id, ends_at.isoformat())
    await events.get_event_bus().publish(
        events.DUEL_ACCEPTED, **_event_payload(duel), ends_at=ends_at
    )
    return duel


@rollback_on_error
async def decline_duel(
    db: AsyncSession, duel_id: uuid.UUID, acting_user_id: uuid.UUID
) -> Duel:
    """Opponent declines a pending duel."""
    duel = await get_duel(db, duel_id)
    if duel.opponent_id != acting_user_id:
        raise AuthorizationError("Only the opponent can decline")
    if duel.status != ContestStatus.PENDING:
        raise InvalidStateError("Duel is not pending")

    moved = await conditional_transition(
        db, Duel, duel_id, ContestStatus.PENDING.value, ContestStatus.DECLINED.value
    )
    if not moved:
        raise InvalidStateError("Duel is not pending")
    await db.commit()
    await db.refresh(duel)

    logger.info("Duel %s declined", duel_id)
    await events.get_event_bus().publish(events.DUEL_DECLINED, **_event_payload(duel))
    return duel


@rollback_on_error
async def cancel_duel(
    db: AsyncSession, duel_id: uuid.UUID, acting_user_id: uuid.UUID
) -> Duel:
    """Challenger withdraws a pending duel."""
    duel = await get_duel(db, duel_id)
    if duel.challenger_id != acting_user_id:
        raise AuthorizationError("Only the challenger can cancel")
    if duel.status != ContestStatus.PENDING:
        raise InvalidStateError("Can only cancel pending duels")

    moved = await conditional_transition(
        db, Duel, duel_id, ContestStatus.PENDING.value, ContestStatus.CANCELLED.value
    )
    if not moved:
        raise InvalidStateError("Can only cancel pending duels")
    await db.commit()
    await db.refresh(duel)

    logger.info("Duel %s cancelled", duel_id)
    await events.get_event_bus().publish(events.DUEL_CANCELLED, **_event_payload(duel))
    return duel


async def compute_scores(
    activity: ActivitySource, duel: Duel, now: datetime | None = None
) -> tuple[int, int]:
    """Raw (challenger, opponent) scores over [started_at, min(now, ends_at)].

    workout_count counts workouts; streak counts distinct active days.
    """
    started_at = ensure_utc(duel.started_at)
    ends_at = ensure_utc(duel.ends_at)
    if started_at is None or ends_at is None:
        return 0, 0

    window_end = min(now or utcnow(), ends_at)
    start, end = started_at.date(), window_end.date()
    if end < start:
        return 0, 0

    if duel.challenge_type == "streak":
        counter = activity.count_active_days
    else:
        counter = activity.count_workouts
    challenger = await counter(duel.challenger_id, start, end)
    opponent = await counter(duel.opponent_id, start, end)
    return challenger, opponent


def _monotonic(column, value: int):  # type: ignore[no-untyped-def]
    return case((column < value, value), else_=column)


@rollback_on_error
async def recompute_scores(
    db: AsyncSession,
    activity: ActivitySource,
    duel_id: uuid.UUID,
    now: datetime | None = None,
) -> Duel:
    """Refresh an active duel's scores. No-op for any other status."""
    duel = await get_duel(db, duel_id)
    if duel.status != ContestStatus.ACTIVE:
        await db.commit()
        return duel

    challenger, opponent = await compute_scores(activity, duel, now)
    await db.execute(
        update(Duel)
        .where(Duel.id == duel_id, Duel.status == ContestStatus.ACTIVE.value)
        .values(
            challenger_score=_monotonic(Duel.challenger_score, challenger),
            opponent_score=_monotonic(Duel.opponent_score, opponent),
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    await db.refresh(duel)
    return duel


@rollback_on_error
async def finalize_expired(
    db: AsyncSession,
    activity: ActivitySource,
    duel_id: uuid.UUID,
    now: datetime | None = None,
) -> tuple[Duel, bool]:
    """Complete an active duel whose window has closed.

    Scores get one last recompute, then the higher score wins; a tie leaves
    winner_id null. Any other state, or a duel still running, is a no-op.
    """
    now = now or utcnow()
    duel = await get_duel(db, duel_id)
    ends_at = ensure_utc(duel.ends_at)
    if duel.status != ContestStatus.ACTIVE or ends_at is None or ends_at > now:
        await db.commit()
        return duel, False

    challenger, opponent = await compute_scores(activity, duel, now)
    final_challenger = _monotonic(Duel.challenger_score, challenger)
    final_opponent = _monotonic(Duel.opponent_score, opponent)
    winner = case(
        (final_challenger > final_opponent, Duel.challenger_id),
        (final_opponent > final_challenger, Duel.opponent_id),
        else_=null(),
    )
    moved = await conditional_transition(
        db,
        Duel,
        duel_id,
        ContestStatus.ACTIVE.value,
        ContestStatus.COMPLETED.value,
        Duel.ends_at <= now,
        challenger_score=final_challenger,
        opponent_score=final_opponent,
        winner_id=winner,
    )
    await db.commit()
    await db.refresh(duel)
    if not moved:
        return duel, False

    logger.info(
        "Duel %s completed %d-%d, winner %s",
        duel_id,
        duel.challenger_score,
        duel.opponent_score,
        duel.winner_id,
    )
    await events.get_event_bus().publish(
        events.DUEL_COMPLETED,
        **_event_payload(duel),
        challenger_score=duel.challenger_score,
        opponent_score=duel.opponent_score,
        winner_id=duel.winner_id,
    )
    return duel, True


async def finalize_if_expired(
    db: AsyncSession,
    activity: ActivitySource,
    duel_id: uuid.UUID,
    now: datetime | None = None,
) -> Duel:
    """Idempotent finalize; returns the duel in whatever state it ends up."""
    duel, _ = await finalize_expired(db, activity, duel_id, now=now)
    return duel


async def list_for_user(
    db: AsyncSession,
    user_id: uuid.UUID,
    statuses: list[str] | None = None,
) -> list[Duel]:
    """Duels the user takes part in, newest first."""
    q = select(Duel).where(or_(Duel.challenger_id == user_id, Duel.opponent_id == user_id))
    if statuses:
        q = q.where(Duel.status.in_(statuses))
    q = q.order_by(Duel.created_at.desc(), Duel.id)
    result = await db.execute(q)
    return list(result.scalars().all())


async def pending_invites(db: AsyncSession, user_id: uuid.UUID) -> list[Duel]:
    """Pending duels waiting on this user's answer."""
    result = await db.execute(
        select(Duel)
        .where(Duel.opponent_id == user_id, Duel.status == ContestStatus.PENDING.value)
        .order_by(Duel.created_at.desc(), Duel.id)
    )
    return list(result.scalars().all())


async def active_duel_ids_for_user(db: AsyncSession, user_id: uuid.UUID) -> list[uuid.UUID]:
    result = await db.execute(
        select(Duel.id).where(
            or_(Duel.challenger_id == user_id, Duel.opponent_id == user_id),
            Duel.status == ContestStatus.ACTIVE.value,
        )
    )
    return list(result.scalars().all())


async def expired_duel_ids(db: AsyncSession, now: datetime) -> list[uuid.UUID]:
    """Active duels whose ends_at has passed."""
    result = await db.execute(
        select(Duel.id)
        .where(Duel.status == ContestStatus.ACTIVE.value, Duel.ends_at <= now)
        .order_by(Duel.ends_at)
    )
    return list(result.scalars().all())
