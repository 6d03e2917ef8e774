"""Group competition engine.

State progression: pending -> active -> completed
Direct challenges start pending and wait for the challenged group's staff;
matchmaking competitions start active. Scores are the sum of member
contributions and are only ever changed by SQL-side increments, so
``sum(contributions for group) == competition.groupN_score`` holds after
every committed transaction.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import and_, case, null, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from fitrank import events
from fitrank.activity.sources import MembershipSource, is_staff
from fitrank.contests.state_machine import OPEN_STATUSES, ContestStatus
from fitrank.contests.transitions import conditional_transition, rollback_on_error
from fitrank.db.models import CompetitionContribution, GroupCompetition
from fitrank.db.upsert import insert_for
from fitrank.errors import (
    AuthorizationError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from fitrank.timeutils import ensure_utc, utcnow

logger = logging.getLogger(__name__)

COMPETITION_TYPES = ("matchmaking", "challenge")
DEFAULT_DURATION_DAYS = 7


@dataclass
class MemberStanding:
    user_id: uuid.UUID
    group_id: uuid.UUID
    points: int
    workouts_count: int
    rank: int


def _pair_clause(group_a: uuid.UUID, group_b: uuid.UUID):  # type: ignore[no-untyped-def]
    return or_(
        and_(GroupCompetition.group1_id == group_a, GroupCompetition.group2_id == group_b),
        and_(GroupCompetition.group1_id == group_b, GroupCompetition.group2_id == group_a),
    )


def _event_payload(comp: GroupCompetition) -> dict:
    return {
        "competition_id": comp.id,
        "group1_id": comp.group1_id,
        "group2_id": comp.group2_id,
        "competition_type": comp.competition_type,
        "status": comp.status,
    }


async def _require_staff(
    membership: MembershipSource,
    group_id: uuid.UUID,
    user_id: uuid.UUID | None,
    message: str,
) -> None:
    if user_id is None or not is_staff(await membership.get_role(group_id, user_id)):
        raise AuthorizationError(message)


async def get_competition(db: AsyncSession, competition_id: uuid.UUID) -> GroupCompetition:
    """Get a competition by ID."""
    result = await db.execute(
        select(GroupCompetition).where(GroupCompetition.id == competition_id)
    )
    comp = result.scalar_one_or_none()
    if comp is None:
        raise NotFoundError(f"Competition {competition_id} not found")
    return comp


async def open_between_groups(
    db: AsyncSession, group_a: uuid.UUID, group_b: uuid.UUID
) -> GroupCompetition | None:
    result = await db.execute(
        select(GroupCompetition)
        .where(_pair_clause(group_a, group_b), GroupCompetition.status.in_(OPEN_STATUSES))
        .limit(1)
    )
    return result.scalar_one_or_none()


async def has_open_competition(db: AsyncSession, group_id: uuid.UUID) -> bool:
    result = await db.execute(
        select(GroupCompetition.id)
        .where(
            or_(GroupCompetition.group1_id == group_id, GroupCompetition.group2_id == group_id),
            GroupCompetition.status.in_(OPEN_STATUSES),
        )
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


async def _any_active(db: AsyncSession, *group_ids: uuid.UUID) -> bool:
    ids = list(group_ids)
    result = await db.execute(
        select(GroupCompetition.id)
        .where(
            or_(GroupCompetition.group1_id.in_(ids), GroupCompetition.group2_id.in_(ids)),
            GroupCompetition.status == ContestStatus.ACTIVE.value,
        )
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


async def insert_competition(
    db: AsyncSession,
    competition_type: str,
    group1_id: uuid.UUID,
    group2_id: uuid.UUID,
    created_by: uuid.UUID | None,
    duration_days: int,
    now: datetime,
) -> GroupCompetition:
    """Add a new competition row to the session without committing.

    Matchmaking competitions start active with the clock running;
    challenges wait pending until accepted.
    """
    active = competition_type == "matchmaking"
    comp = GroupCompetition(
        id=uuid.uuid4(),
        group1_id=group1_id,
        group2_id=group2_id,
        competition_type=competition_type,
        status=(ContestStatus.ACTIVE if active else ContestStatus.PENDING).value,
        duration_days=duration_days,
        started_at=now if active else None,
        ends_at=now + timedelta(days=duration_days) if active else None,
        group1_score=0,
        group2_score=0,
        created_by=created_by,
    )
    db.add(comp)
    await db.flush()
    return comp


@rollback_on_error
async def create_competition(
    db: AsyncSession,
    membership: MembershipSource,
    competition_type: str,
    group1_id: uuid.UUID,
    group2_id: uuid.UUID,
    acting_user_id: uuid.UUID | None,
    duration_days: int = DEFAULT_DURATION_DAYS,
    now: datetime | None = None,
) -> GroupCompetition:
    """Create a competition between two groups.

    A challenge requires the acting user to be an owner or admin of group1.
    """
    if competition_type not in COMPETITION_TYPES:
        raise ValidationError(f"Unknown competition type: {competition_type!r}")
    if group1_id == group2_id:
        raise ValidationError("A group cannot compete against itself")
    if duration_days < 1:
        raise ValidationError("Competition duration must be at least one day")
    for group_id in (group1_id, group2_id):
        if not await membership.group_exists(group_id):
            raise NotFoundError(f"Group {group_id} not found")
    if competition_type == "challenge":
        await _require_staff(
            membership, group1_id, acting_user_id,
            "Only group owners or admins can challenge another group",
        )

    if await open_between_groups(db, group1_id, group2_id) is not None:
        raise ConflictError("These groups already have an open competition")
    if competition_type == "challenge" and await _any_active(db, group1_id, group2_id):
        raise ConflictError("One or both groups already have an active competition")

    try:
        comp = await insert_competition(
            db, competition_type, group1_id, group2_id, acting_user_id, duration_days, now or utcnow()
        )
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError("These groups already have an open competition") from exc
    await db.refresh(comp)

    logger.info(
        "Competition %s created (%s): %s vs %s",
        comp.id, competition_type, group1_id, group2_id,
    )
    await events.get_event_bus().publish(
        events.COMPETITION_CREATED, **_event_payload(comp), created_by=acting_user_id
    )
    return comp


@rollback_on_error
async def accept_competition(
    db: AsyncSession,
    membership: MembershipSource,
    competition_id: uuid.UUID,
    acting_user_id: uuid.UUID,
    now: datetime | None = None,
) -> GroupCompetition:
    """Staff of the challenged group accept; the competition starts now."""
    comp = await get_competition(db, competition_id)
    await _require_staff(
        membership, comp.group2_id, acting_user_id,
        "Only owners or admins of the challenged group can accept",
    )
    if comp.status != ContestStatus.PENDING:
        raise InvalidStateError("Competition is not pending")

    started_at = now or utcnow()
    ends_at = started_at + timedelta(days=comp.duration_days)
    moved = await conditional_transition(
        db,
        GroupCompetition,
        competition_id,
        ContestStatus.PENDING.value,
        ContestStatus.ACTIVE.value,
        started_at=started_at,
        ends_at=ends_at,
    )
    if not moved:
        raise InvalidStateError("Competition is not pending")
    await db.commit()
    await db.refresh(comp)

    logger.info("Competition %s accepted by %s", competition_id, acting_user_id)
    await events.get_event_bus().publish(
        events.COMPETITION_ACCEPTED, **_event_payload(comp), ends_at=ends_at
    )
    return comp


@rollback_on_error
async def decline_competition(
    db: AsyncSession,
    membership: MembershipSource,
    competition_id: uuid.UUID,
    acting_user_id: uuid.UUID,
) -> GroupCompetition:
    """Staff of the challenged group turn a pending challenge down."""
    comp = await get_competition(db, competition_id)
    await _require_staff(
        membership, comp.group2_id, acting_user_id,
        "Only owners or admins of the challenged group can decline",
    )
    if comp.status != ContestStatus.PENDING:
        raise InvalidStateError("Competition is not pending")

    moved = await conditional_transition(
        db, GroupCompetition, competition_id,
        ContestStatus.PENDING.value, ContestStatus.DECLINED.value,
    )
    if not moved:
        raise InvalidStateError("Competition is not pending")
    await db.commit()
    await db.refresh(comp)

    logger.info("Competition %s declined", competition_id)
    await events.get_event_bus().publish(events.COMPETITION_DECLINED, **_event_payload(comp))
    return comp


@rollback_on_error
async def cancel_competition(
    db: AsyncSession,
    membership: MembershipSource,
    competition_id: uuid.UUID,
    acting_user_id: uuid.UUID,
) -> GroupCompetition:
    """Staff of either group withdraw a pending challenge."""
    comp = await get_competition(db, competition_id)
    role1 = await membership.get_role(comp.group1_id, acting_user_id)
    role2 = await membership.get_role(comp.group2_id, acting_user_id)
    if not (is_staff(role1) or is_staff(role2)):
        raise AuthorizationError("Only group owners or admins can cancel a competition")
    if comp.status != ContestStatus.PENDING:
        raise InvalidStateError("Can only cancel pending competitions")

    moved = await conditional_transition(
        db, GroupCompetition, competition_id,
        ContestStatus.PENDING.value, ContestStatus.CANCELLED.value,
    )
    if not moved:
        raise InvalidStateError("Can only cancel pending competitions")
    await db.commit()
    await db.refresh(comp)

    logger.info("Competition %s cancelled by %s", competition_id, acting_user_id)
    await events.get_event_bus().publish(events.COMPETITION_CANCELLED, **_event_payload(comp))
    return comp


@rollback_on_error
async def record_contribution(
    db: AsyncSession,
    membership: MembershipSource,
    competition_id: uuid.UUID,
    group_id: uuid.UUID,
    user_id: uuid.UUID,
    delta_points: int,
    workouts: int = 0,
    now: datetime | None = None,
) -> CompetitionContribution:
    """Add points a member earned for their group.

    The member's contribution row and the group's score move together in
    one transaction, both as SQL-side increments.
    """
    if delta_points <= 0:
        raise ValidationError("Contribution points must be positive")
    if workouts < 0:
        raise ValidationError("Workout count must be non-negative")

    now = now or utcnow()
    comp = await get_competition(db, competition_id)
    if group_id == comp.group1_id:
        score_col = GroupCompetition.group1_score
    elif group_id == comp.group2_id:
        score_col = GroupCompetition.group2_score
    else:
        raise ValidationError(f"Group {group_id} is not part of competition {competition_id}")
    if await membership.get_role(group_id, user_id) is None:
        raise ValidationError(f"User {user_id} is not a member of group {group_id}")

    result = await db.execute(
        update(GroupCompetition)
        .where(
            GroupCompetition.id == competition_id,
            GroupCompetition.status == ContestStatus.ACTIVE.value,
            GroupCompetition.ends_at > now,
        )
        .values({score_col: score_col + delta_points, GroupCompetition.updated_at: now})
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InvalidStateError("Competition is not active")

    stmt = insert_for(db, CompetitionContribution).values(
        id=uuid.uuid4(),
        competition_id=competition_id,
        group_id=group_id,
        user_id=user_id,
        points=delta_points,
        workouts_count=workouts,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["competition_id", "group_id", "user_id"],
        set_={
            "points": CompetitionContribution.points + delta_points,
            "workouts_count": CompetitionContribution.workouts_count + workouts,
            "updated_at": now,
        },
    )
    await db.execute(stmt)
    await db.commit()

    contribution = (
        await db.execute(
            select(CompetitionContribution)
            .where(
                CompetitionContribution.competition_id == competition_id,
                CompetitionContribution.group_id == group_id,
                CompetitionContribution.user_id == user_id,
            )
            .execution_options(populate_existing=True)
        )
    ).scalar_one()
    await db.commit()
    return contribution


@rollback_on_error
async def finalize_expired(
    db: AsyncSession,
    competition_id: uuid.UUID,
    now: datetime | None = None,
) -> tuple[GroupCompetition, bool]:
    """Complete an active competition whose window has closed.

    Scores are frozen as they stand; the higher score wins and a tie
    leaves winner_group_id null. Otherwise a no-op.
    """
    now = now or utcnow()
    comp = await get_competition(db, competition_id)
    ends_at = ensure_utc(comp.ends_at)
    if comp.status != ContestStatus.ACTIVE or ends_at is None or ends_at > now:
        await db.commit()
        return comp, False

    winner = case(
        (GroupCompetition.group1_score > GroupCompetition.group2_score, GroupCompetition.group1_id),
        (GroupCompetition.group2_score > GroupCompetition.group1_score, GroupCompetition.group2_id),
        else_=null(),
    )
    moved = await conditional_transition(
        db,
        GroupCompetition,
        competition_id,
        ContestStatus.ACTIVE.value,
        ContestStatus.COMPLETED.value,
        GroupCompetition.ends_at <= now,
        winner_group_id=winner,
    )
    await db.commit()
    await db.refresh(comp)
    if not moved:
        return comp, False

    logger.info(
        "Competition %s completed %d-%d, winner %s",
        competition_id, comp.group1_score, comp.group2_score, comp.winner_group_id,
    )
    await events.get_event_bus().publish(
        events.COMPETITION_COMPLETED,
        **_event_payload(comp),
        group1_score=comp.group1_score,
        group2_score=comp.group2_score,
        winner_group_id=comp.winner_group_id,
    )
    return comp, True


async def finalize_if_expired(
    db: AsyncSession,
    competition_id: uuid.UUID,
    now: datetime | None = None,
) -> GroupCompetition:
    """Idempotent finalize; returns the competition in whatever state it ends up."""
    comp, _ = await finalize_expired(db, competition_id, now=now)
    return comp


def rank_members(
    group_id: uuid.UUID,
    member_ids: list[uuid.UUID],
    contributions: list[CompetitionContribution],
) -> list[MemberStanding]:
    """Rank a group's members by contribution, zero contributors last."""
    totals: dict[uuid.UUID, tuple[int, int]] = {uid: (0, 0) for uid in member_ids}
    for c in contributions:
        if c.group_id == group_id:
            totals[c.user_id] = (c.points, c.workouts_count)

    ordered = sorted(totals.items(), key=lambda item: (-item[1][0], str(item[0])))
    return [
        MemberStanding(
            user_id=uid,
            group_id=group_id,
            points=points,
            workouts_count=workouts,
            rank=idx + 1,
        )
        for idx, (uid, (points, workouts)) in enumerate(ordered)
    ]


async def get_contributions(
    db: AsyncSession, competition_id: uuid.UUID
) -> list[CompetitionContribution]:
    result = await db.execute(
        select(CompetitionContribution).where(
            CompetitionContribution.competition_id == competition_id
        )
    )
    return list(result.scalars().all())


async def member_standings(
    db: AsyncSession,
    membership: MembershipSource,
    competition_id: uuid.UUID,
) -> dict[uuid.UUID, list[MemberStanding]]:
    """Per-group member rankings for a competition."""
    comp = await get_competition(db, competition_id)
    contributions = await get_contributions(db, competition_id)
    standings: dict[uuid.UUID, list[MemberStanding]] = {}
    for group_id in (comp.group1_id, comp.group2_id):
        members = await membership.group_member_ids(group_id)
        standings[group_id] = rank_members(group_id, members, contributions)
    return standings


async def open_for_group(db: AsyncSession, group_id: uuid.UUID) -> list[GroupCompetition]:
    """Pending and active competitions involving the group."""
    result = await db.execute(
        select(GroupCompetition)
        .where(
            or_(GroupCompetition.group1_id == group_id, GroupCompetition.group2_id == group_id),
            GroupCompetition.status.in_(OPEN_STATUSES),
        )
        .order_by(GroupCompetition.created_at.desc(), GroupCompetition.id)
    )
    return list(result.scalars().all())


async def completed_for_group(
    db: AsyncSession, group_id: uuid.UUID, limit: int = 10
) -> list[GroupCompetition]:
    """Most recently finished competitions involving the group."""
    result = await db.execute(
        select(GroupCompetition)
        .where(
            or_(GroupCompetition.group1_id == group_id, GroupCompetition.group2_id == group_id),
            GroupCompetition.status == ContestStatus.COMPLETED.value,
        )
        .order_by(GroupCompetition.ends_at.desc(), GroupCompetition.id)
        .limit(limit)
    )
    return list(result.scalars().all())


async def active_for_groups(
    db: AsyncSession, group_ids: list[uuid.UUID], now: datetime | None = None
) -> list[GroupCompetition]:
    """Active, still-running competitions involving any of the groups."""
    if not group_ids:
        return []
    now = now or utcnow()
    result = await db.execute(
        select(GroupCompetition).where(
            or_(GroupCompetition.group1_id.in_(group_ids), GroupCompetition.group2_id.in_(group_ids)),
            GroupCompetition.status == ContestStatus.ACTIVE.value,
            GroupCompetition.ends_at > now,
        )
    )
    return list(result.scalars().all())


async def expired_competition_ids(db: AsyncSession, now: datetime) -> list[uuid.UUID]:
    """Active competitions whose ends_at has passed."""
    result = await db.execute(
        select(GroupCompetition.id)
        .where(
            GroupCompetition.status == ContestStatus.ACTIVE.value,
            GroupCompetition.ends_at <= now,
        )
        .order_by(GroupCompetition.ends_at)
    )
    return list(result.scalars().all())
