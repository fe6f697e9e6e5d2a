from __future__ import annotations

"""Endpoints for user reports and the moderator review workflow."""

from typing import Annotated, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from whisperwalls.api.v1.dependencies import (
    CurrentUser,
    get_current_moderator,
    get_current_user_from_token,
    get_lifecycle_service,
    get_moderation_engine,
)
from whisperwalls.models.message import MessageResponse
from whisperwalls.models.moderation import (
    ModerationRecord,
    ModerationStats,
    QueueStatusEnum,
    Report,
    ReportCreateRequest,
    ReportStatusEnum,
    ReviewRequest,
    TimeframeEnum,
)
from whisperwalls.services.message_service import MessageLifecycleService
from whisperwalls.services.moderation_engine import ModerationEngine

router = APIRouter(prefix="/moderation", tags=["Moderation Actions"])

EngineDep = Annotated[ModerationEngine, Depends(get_moderation_engine)]
ModeratorDep = Annotated[CurrentUser, Depends(get_current_moderator)]


@router.post(
    "/reports",
    response_model=Report,
    response_model_exclude_none=True,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Report a whisper for review",
)
async def report_message(
    request: ReportCreateRequest,
    current_user: Annotated[CurrentUser, Depends(get_current_user_from_token)],
    service: Annotated[MessageLifecycleService, Depends(get_lifecycle_service)],
):
    """Accepted immediately; re-classification and queueing happen in the background."""

    return await service.report_message(
        message_id=request.message_id,
        reporter_id=current_user.user_id,
        reason=request.reason,
        description=request.description,
    )


@router.get(
    "/queue",
    response_model=List[ModerationRecord],
    response_model_exclude_none=True,
    summary="List the review queue, most urgent first",
)
async def list_queue(
    current_moderator: ModeratorDep,
    engine: EngineDep,
    status_filter: QueueStatusEnum = Query(
        QueueStatusEnum.PENDING, alias="status", description="Queue state to list"
    ),
    limit: int = Query(50, ge=1, le=200),
):
    return await engine.get_queue(status_filter, limit)


@router.post(
    "/queue/{record_id_path:uuid}/claim",
    response_model=ModerationRecord,
    response_model_exclude_none=True,
    summary="Claim a queued record for review",
)
async def claim_record(
    record_id_path: UUID,
    current_moderator: ModeratorDep,
    engine: EngineDep,
):
    return await engine.start_review(record_id_path, current_moderator.user_id)


@router.post(
    "/messages/{message_id_path:uuid}/review",
    response_model=MessageResponse,
    response_model_exclude_none=True,
    summary="Approve or reject a whisper",
)
async def review_message(
    message_id_path: UUID,
    request: ReviewRequest,
    current_moderator: ModeratorDep,
    engine: EngineDep,
):
    message = await engine.review_message(
        message_id_path, current_moderator.user_id, request.decision, request.notes
    )
    return MessageResponse.from_message(message)


@router.post(
    "/messages/{message_id_path:uuid}/rerun",
    response_model=MessageResponse,
    response_model_exclude_none=True,
    summary="Send a whisper back through automatic classification",
)
async def rerun_classification(
    message_id_path: UUID,
    current_moderator: ModeratorDep,
    engine: EngineDep,
):
    message = await engine.rerun_classification(message_id_path)
    return MessageResponse.from_message(message)


@router.get(
    "/messages/{message_id_path:uuid}/reports",
    response_model=List[Report],
    response_model_exclude_none=True,
    summary="List reports filed against a whisper",
)
async def list_message_reports(
    message_id_path: UUID,
    current_moderator: ModeratorDep,
    engine: EngineDep,
    status_filter: Optional[ReportStatusEnum] = Query(None, alias="status"),
):
    return await engine.get_reports(message_id_path, status_filter)


@router.get(
    "/stats",
    response_model=ModerationStats,
    summary="Moderation outcome counts over a timeframe",
)
async def moderation_stats(
    current_moderator: ModeratorDep,
    engine: EngineDep,
    timeframe: TimeframeEnum = Query(TimeframeEnum.DAY),
):
    return await engine.get_stats(timeframe)
