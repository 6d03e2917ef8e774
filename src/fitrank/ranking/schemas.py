"""Pydantic models for leaderboard, snapshot and points endpoints."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class LeaderboardEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    rank: int
    user_id: uuid.UUID
    points: int
    workouts_count: int
    streak: int
    groups_count: int
    friends_count: int
    is_current_user: bool = False


class MovementResponse(BaseModel):
    previous_rank: int | None
    current_rank: int
    movement: int | None
    label: str | None


class LeaderboardResponse(BaseModel):
    scope: str
    group_id: uuid.UUID | None = None
    period_key: str
    total: int
    entries: list[LeaderboardEntryResponse]
    requester: LeaderboardEntryResponse | None = None
    movement: MovementResponse | None = None


class SaveSnapshotRequest(BaseModel):
    user_id: uuid.UUID
    scope: str = Field(..., min_length=1, max_length=64)
    period_key: str
    rank: int
    points: int


class SnapshotResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: uuid.UUID
    scope: str
    period_key: str
    rank: int
    points: int
    taken_at: datetime


class PreviousSnapshotResponse(BaseModel):
    snapshot: SnapshotResponse | None = None


class PointsFormulaResponse(BaseModel):
    weights: dict[str, int]
    ceiling: int
    formula: str
