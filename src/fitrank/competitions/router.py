"""Group competition and matchmaking API endpoints."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from fitrank.activity.sources import SqlMembershipSource
from fitrank.competitions import matchmaking, service
from fitrank.competitions.schemas import (
    CompetitionDetailResponse,
    CompetitionResponse,
    ContributionRequest,
    ContributionResponse,
    CreateCompetitionRequest,
    GroupCompetitionsResponse,
    MatchmakingStatusResponse,
    MemberStandingResponse,
    PairResponse,
)
from fitrank.config import get_settings
from fitrank.database import get_session
from fitrank.dependencies import get_acting_user_id, get_membership_source

router = APIRouter(prefix="/api/v1", tags=["Competitions"])


async def _detail(
    db: AsyncSession, membership: SqlMembershipSource, comp
) -> CompetitionDetailResponse:
    standings = await service.member_standings(db, membership, comp.id)
    return CompetitionDetailResponse(
        competition=CompetitionResponse.model_validate(comp),
        group1_standings=[
            MemberStandingResponse.model_validate(s) for s in standings[comp.group1_id]
        ],
        group2_standings=[
            MemberStandingResponse.model_validate(s) for s in standings[comp.group2_id]
        ],
    )


# ── Competitions ──


@router.post("/competitions", response_model=CompetitionResponse, status_code=201)
async def challenge_group(
    body: CreateCompetitionRequest,
    user_id: uuid.UUID = Depends(get_acting_user_id),
    db: AsyncSession = Depends(get_session),
    membership: SqlMembershipSource = Depends(get_membership_source),
):
    """Challenge another group. The acting user must be staff of group1."""
    duration = body.duration_days or get_settings().challenge_duration_days
    comp = await service.create_competition(
        db, membership, "challenge", body.group1_id, body.group2_id, user_id, duration
    )
    return CompetitionResponse.model_validate(comp)


@router.get("/competitions/{competition_id}", response_model=CompetitionDetailResponse)
async def get_competition(
    competition_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    membership: SqlMembershipSource = Depends(get_membership_source),
):
    """Competition with per-group member standings."""
    comp = await service.finalize_if_expired(db, competition_id)
    return await _detail(db, membership, comp)


@router.get("/groups/{group_id}/competitions", response_model=GroupCompetitionsResponse)
async def group_competitions(
    group_id: uuid.UUID,
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_session),
):
    open_comps = await service.open_for_group(db, group_id)
    completed = await service.completed_for_group(db, group_id, limit)
    return GroupCompetitionsResponse(
        group_id=group_id,
        open=[CompetitionResponse.model_validate(c) for c in open_comps],
        completed=[CompetitionResponse.model_validate(c) for c in completed],
    )


@router.post("/competitions/{competition_id}/accept", response_model=CompetitionResponse)
async def accept_competition(
    competition_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_acting_user_id),
    db: AsyncSession = Depends(get_session),
    membership: SqlMembershipSource = Depends(get_membership_source),
):
    comp = await service.accept_competition(db, membership, competition_id, user_id)
    return CompetitionResponse.model_validate(comp)


@router.post("/competitions/{competition_id}/decline", response_model=CompetitionResponse)
async def decline_competition(
    competition_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_acting_user_id),
    db: AsyncSession = Depends(get_session),
    membership: SqlMembershipSource = Depends(get_membership_source),
):
    comp = await service.decline_competition(db, membership, competition_id, user_id)
    return CompetitionResponse.model_validate(comp)


@router.post("/competitions/{competition_id}/cancel", response_model=CompetitionResponse)
async def cancel_competition(
    competition_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_acting_user_id),
    db: AsyncSession = Depends(get_session),
    membership: SqlMembershipSource = Depends(get_membership_source),
):
    comp = await service.cancel_competition(db, membership, competition_id, user_id)
    return CompetitionResponse.model_validate(comp)


@router.post("/competitions/{competition_id}/finalize", response_model=CompetitionResponse)
async def finalize_competition(
    competition_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
):
    comp = await service.finalize_if_expired(db, competition_id)
    return CompetitionResponse.model_validate(comp)


@router.post(
    "/competitions/{competition_id}/contributions",
    response_model=ContributionResponse,
    status_code=201,
)
async def record_contribution(
    competition_id: uuid.UUID,
    body: ContributionRequest,
    db: AsyncSession = Depends(get_session),
    membership: SqlMembershipSource = Depends(get_membership_source),
):
    """Credit a member's points to their group's score."""
    contribution = await service.record_contribution(
        db, membership, competition_id, body.group_id, body.user_id, body.points, workouts=body.workouts
    )
    return ContributionResponse.model_validate(contribution)


# ── Matchmaking ──


@router.post("/matchmaking/pair", response_model=PairResponse)
async def pair_queued_groups(db: AsyncSession = Depends(get_session)):
    """Pair the two oldest waiting groups, if there are two."""
    comp = await matchmaking.try_pair(db, duration_days=get_settings().matchmaking_duration_days)
    return PairResponse(
        paired=comp is not None,
        competition=CompetitionResponse.model_validate(comp) if comp else None,
    )


@router.get("/matchmaking/{group_id}", response_model=MatchmakingStatusResponse)
async def matchmaking_status(
    group_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
):
    return MatchmakingStatusResponse(
        group_id=group_id, queued=await matchmaking.is_queued(db, group_id)
    )


@router.post("/matchmaking/{group_id}", response_model=MatchmakingStatusResponse)
async def join_matchmaking(
    group_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_acting_user_id),
    db: AsyncSession = Depends(get_session),
    membership: SqlMembershipSource = Depends(get_membership_source),
):
    """Queue a group. The response carries the competition if it paired at once."""
    comp = await matchmaking.enqueue(
        db,
        membership,
        group_id,
        user_id,
        duration_days=get_settings().matchmaking_duration_days,
    )
    return MatchmakingStatusResponse(
        group_id=group_id,
        queued=await matchmaking.is_queued(db, group_id),
        competition=CompetitionResponse.model_validate(comp) if comp else None,
    )


@router.delete("/matchmaking/{group_id}", response_model=MatchmakingStatusResponse)
async def leave_matchmaking(
    group_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_acting_user_id),
    db: AsyncSession = Depends(get_session),
    membership: SqlMembershipSource = Depends(get_membership_source),
):
    await matchmaking.dequeue(db, membership, group_id, user_id)
    return MatchmakingStatusResponse(group_id=group_id, queued=False)
