"""Leaderboard, snapshot and points API endpoints."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from fitrank.activity.sources import SqlActivitySource, SqlMembershipSource
from fitrank.config import get_settings
from fitrank.database import get_session
from fitrank.dependencies import (
    get_activity_source,
    get_membership_source,
    get_optional_user_id,
)
from fitrank.ranking import snapshot_service
from fitrank.ranking.leaderboard_service import (
    LeaderboardRow,
    get_leaderboard,
    snapshot_scope_key,
)
from fitrank.ranking.periods import get_current_period_key, validate_period_key
from fitrank.ranking.points import points_formula
from fitrank.ranking.schemas import (
    LeaderboardEntryResponse,
    LeaderboardResponse,
    MovementResponse,
    PointsFormulaResponse,
    PreviousSnapshotResponse,
    SaveSnapshotRequest,
    SnapshotResponse,
)

router = APIRouter(prefix="/api/v1", tags=["Leaderboard"])


def _entry(row: LeaderboardRow, requester: uuid.UUID | None) -> LeaderboardEntryResponse:
    return LeaderboardEntryResponse(
        rank=row.rank,
        user_id=row.user_id,
        points=row.points,
        workouts_count=row.workouts_count,
        streak=row.streak,
        groups_count=row.groups_count,
        friends_count=row.friends_count,
        is_current_user=row.user_id == requester,
    )


@router.get("/leaderboard", response_model=LeaderboardResponse)
async def leaderboard(
    scope: str = Query("global", description="friends, groups or global"),
    group_id: uuid.UUID | None = Query(None),
    limit: int | None = Query(None, ge=1),
    period: str | None = Query(None, description="Period key YYYY-MM, defaults to this month"),
    user_id: uuid.UUID | None = Depends(get_optional_user_id),
    db: AsyncSession = Depends(get_session),
    activity: SqlActivitySource = Depends(get_activity_source),
    membership: SqlMembershipSource = Depends(get_membership_source),
):
    """Ranked board for a scope plus the requester's movement since last period.

    Reading the board records the requester's current rank for the period.
    """
    settings = get_settings()
    period_key = period or get_current_period_key()
    validate_period_key(period_key)
    limit = min(limit or settings.leaderboard_default_limit, settings.leaderboard_max_limit)

    board = await get_leaderboard(
        activity, membership, scope, limit, group_id=group_id, requesting_user_id=user_id
    )

    movement = None
    own = board.row_for(user_id) if user_id is not None else None
    if own is not None:
        tracked = await snapshot_service.track_movement(
            db,
            own.user_id,
            snapshot_scope_key(scope, group_id),
            own.rank,
            own.points,
            period_key,
        )
        movement = MovementResponse(
            previous_rank=tracked.previous_rank,
            current_rank=tracked.current_rank,
            movement=tracked.movement,
            label=tracked.label,
        )

    return LeaderboardResponse(
        scope=scope,
        group_id=group_id,
        period_key=period_key,
        total=board.total,
        entries=[_entry(r, user_id) for r in board.rows],
        requester=_entry(board.requester_row, user_id) if board.requester_row else None,
        movement=movement,
    )


@router.get("/leaderboard/snapshots", response_model=PreviousSnapshotResponse)
async def previous_snapshot(
    user_id: uuid.UUID = Query(...),
    scope: str = Query(...),
    period_key: str = Query(..., description="Current period; the result is from an earlier one"),
    db: AsyncSession = Depends(get_session),
):
    snapshot = await snapshot_service.get_previous(db, user_id, scope, period_key)
    return PreviousSnapshotResponse(
        snapshot=SnapshotResponse.model_validate(snapshot) if snapshot else None
    )


@router.put("/leaderboard/snapshots", response_model=SnapshotResponse)
async def save_snapshot(
    body: SaveSnapshotRequest,
    db: AsyncSession = Depends(get_session),
):
    snapshot = await snapshot_service.save_snapshot(
        db, body.user_id, body.scope, body.rank, body.points, body.period_key
    )
    return SnapshotResponse.model_validate(snapshot)


@router.get("/points/formula", response_model=PointsFormulaResponse)
async def get_points_formula():
    """Weights for the "How points work" panel."""
    return PointsFormulaResponse(**points_formula())
