"""Pydantic models for activity ingestion."""

from __future__ import annotations

import uuid

from pydantic import BaseModel


class WorkoutLoggedRequest(BaseModel):
    user_id: uuid.UUID
    workout_id: uuid.UUID | None = None


class IngestResponse(BaseModel):
    user_id: uuid.UUID
    contributions_recorded: int
    duels_rescored: int
