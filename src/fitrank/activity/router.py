"""Activity ingestion endpoint for the workout-logged event."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from fitrank.activity.ingest import ingest_workout
from fitrank.activity.schemas import IngestResponse, WorkoutLoggedRequest
from fitrank.activity.sources import SqlActivitySource, SqlMembershipSource
from fitrank.config import get_settings
from fitrank.database import get_session
from fitrank.dependencies import get_activity_source, get_membership_source

router = APIRouter(prefix="/api/v1/activity", tags=["Activity"])


@router.post("/workouts", response_model=IngestResponse)
async def workout_logged(
    body: WorkoutLoggedRequest,
    db: AsyncSession = Depends(get_session),
    activity: SqlActivitySource = Depends(get_activity_source),
    membership: SqlMembershipSource = Depends(get_membership_source),
):
    """Credit a freshly logged workout to the user's running contests."""
    result = await ingest_workout(
        db,
        activity,
        membership,
        body.user_id,
        points_per_workout=get_settings().contribution_points_per_workout,
    )
    return IngestResponse(
        user_id=result.user_id,
        contributions_recorded=result.contributions_recorded,
        duels_rescored=result.duels_rescored,
    )
