"""Duel API endpoints.

Reads finalize expired duels first, so a client never sees an active duel
whose window has already closed.
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from fitrank.activity.sources import SqlActivitySource
from fitrank.database import get_session
from fitrank.dependencies import get_activity_source, get_acting_user_id
from fitrank.duels import service
from fitrank.duels.schemas import CreateDuelRequest, DuelListResponse, DuelResponse
from fitrank.timeutils import ensure_utc, utcnow

router = APIRouter(prefix="/api/v1/duels", tags=["Duels"])


async def _finalize_expired(
    db: AsyncSession, activity: SqlActivitySource, duels: list
) -> None:
    now = utcnow()
    for duel in duels:
        ends_at = ensure_utc(duel.ends_at)
        if duel.status == "active" and ends_at is not None and ends_at <= now:
            await service.finalize_if_expired(db, activity, duel.id, now=now)


@router.post("", response_model=DuelResponse, status_code=201)
async def create_duel(
    body: CreateDuelRequest,
    user_id: uuid.UUID = Depends(get_acting_user_id),
    db: AsyncSession = Depends(get_session),
):
    """Challenge another user to a duel."""
    duel = await service.create_duel(
        db, user_id, body.opponent_id, body.challenge_type, body.duration_days
    )
    return DuelResponse.model_validate(duel)


@router.get("", response_model=DuelListResponse)
async def list_duels(
    status: list[str] | None = Query(None, description="Filter by status, repeatable"),
    user_id: uuid.UUID = Depends(get_acting_user_id),
    db: AsyncSession = Depends(get_session),
    activity: SqlActivitySource = Depends(get_activity_source),
):
    """Duels the acting user takes part in, newest first."""
    duels = await service.list_for_user(db, user_id, status)
    await _finalize_expired(db, activity, duels)
    if status:
        duels = [d for d in duels if d.status in status]
    return DuelListResponse(
        duels=[DuelResponse.model_validate(d) for d in duels],
        total=len(duels),
    )


@router.get("/invites", response_model=DuelListResponse)
async def list_invites(
    user_id: uuid.UUID = Depends(get_acting_user_id),
    db: AsyncSession = Depends(get_session),
):
    """Pending duels waiting on the acting user's answer."""
    duels = await service.pending_invites(db, user_id)
    return DuelListResponse(
        duels=[DuelResponse.model_validate(d) for d in duels],
        total=len(duels),
    )


@router.get("/{duel_id}", response_model=DuelResponse)
async def get_duel(
    duel_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    activity: SqlActivitySource = Depends(get_activity_source),
):
    duel = await service.finalize_if_expired(db, activity, duel_id)
    return DuelResponse.model_validate(duel)


@router.post("/{duel_id}/accept", response_model=DuelResponse)
async def accept_duel(
    duel_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_acting_user_id),
    db: AsyncSession = Depends(get_session),
):
    duel = await service.accept_duel(db, duel_id, user_id)
    return DuelResponse.model_validate(duel)


@router.post("/{duel_id}/decline", response_model=DuelResponse)
async def decline_duel(
    duel_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_acting_user_id),
    db: AsyncSession = Depends(get_session),
):
    duel = await service.decline_duel(db, duel_id, user_id)
    return DuelResponse.model_validate(duel)


@router.post("/{duel_id}/cancel", response_model=DuelResponse)
async def cancel_duel(
    duel_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_acting_user_id),
    db: AsyncSession = Depends(get_session),
):
    duel = await service.cancel_duel(db, duel_id, user_id)
    return DuelResponse.model_validate(duel)


@router.post("/{duel_id}/finalize", response_model=DuelResponse)
async def finalize_duel(
    duel_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    activity: SqlActivitySource = Depends(get_activity_source),
):
    """Complete the duel if its window has closed; otherwise return it unchanged."""
    duel = await service.finalize_if_expired(db, activity, duel_id)
    return DuelResponse.model_validate(duel)
