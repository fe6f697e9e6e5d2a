from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from whisperwalls.api.v1.dependencies import (
    CurrentUser,
    get_current_user_from_token,
    get_mood_insights_service,
)
from whisperwalls.models.mood import MoodInsights
from whisperwalls.services.mood_insights import MoodInsightsService

router = APIRouter(prefix="/mood", tags=["Mood"])


@router.get(
    "/insights",
    response_model=MoodInsights,
    summary="Summarise the caller's recent moods",
)
async def get_my_mood_insights(
    current_user: Annotated[CurrentUser, Depends(get_current_user_from_token)],
    service: Annotated[MoodInsightsService, Depends(get_mood_insights_service)],
):
    """Dominant emotion, sentiment trend and a 0..1 mood score over the
    caller's last ten whispers."""
    return await service.get_user_insights(current_user.user_id)
