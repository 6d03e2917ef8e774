"""Pydantic request/response models for competition and matchmaking endpoints."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


# ── Competitions ──


class CreateCompetitionRequest(BaseModel):
    group1_id: uuid.UUID
    group2_id: uuid.UUID
    duration_days: int | None = None


class CompetitionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    group1_id: uuid.UUID
    group2_id: uuid.UUID
    competition_type: str
    status: str
    duration_days: int
    started_at: datetime | None = None
    ends_at: datetime | None = None
    group1_score: int
    group2_score: int
    winner_group_id: uuid.UUID | None = None
    created_by: uuid.UUID | None = None
    created_at: datetime | None = None


class MemberStandingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    rank: int
    user_id: uuid.UUID
    group_id: uuid.UUID
    points: int
    workouts_count: int


class CompetitionDetailResponse(BaseModel):
    competition: CompetitionResponse
    group1_standings: list[MemberStandingResponse]
    group2_standings: list[MemberStandingResponse]


class GroupCompetitionsResponse(BaseModel):
    group_id: uuid.UUID
    open: list[CompetitionResponse]
    completed: list[CompetitionResponse]


class ContributionRequest(BaseModel):
    group_id: uuid.UUID
    user_id: uuid.UUID
    points: int
    workouts: int = Field(0, ge=0)


class ContributionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    competition_id: uuid.UUID
    group_id: uuid.UUID
    user_id: uuid.UUID
    points: int
    workouts_count: int


# ── Matchmaking ──


class MatchmakingStatusResponse(BaseModel):
    group_id: uuid.UUID
    queued: bool
    competition: CompetitionResponse | None = None


class PairResponse(BaseModel):
    paired: bool
    competition: CompetitionResponse | None = None
