"""Pydantic request/response models for duel endpoints."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict


class CreateDuelRequest(BaseModel):
    opponent_id: uuid.UUID
    challenge_type: str = "workout_count"
    duration_days: int = 7


class DuelResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    challenger_id: uuid.UUID
    opponent_id: uuid.UUID
    challenge_type: str
    duration_days: int
    status: str
    started_at: datetime | None = None
    ends_at: datetime | None = None
    challenger_score: int
    opponent_score: int
    winner_id: uuid.UUID | None = None
    created_at: datetime | None = None


class DuelListResponse(BaseModel):
    duels: list[DuelResponse]
    total: int
