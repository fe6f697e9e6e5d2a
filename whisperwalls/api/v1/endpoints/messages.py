from __future__ import annotations

"""API endpoints for dropping whispers and interacting with them."""

from typing import Annotated, List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from whisperwalls.api.v1.dependencies import (
    CurrentUser,
    get_current_user_from_token,
    get_lifecycle_service,
)
from whisperwalls.models.message import (
    MessageCreateRequest,
    MessageResponse,
    ReactionRequest,
)
from whisperwalls.services.message_service import MessageLifecycleService

router = APIRouter(prefix="/messages", tags=["Messages"])

LifecycleDep = Annotated[MessageLifecycleService, Depends(get_lifecycle_service)]
UserDep = Annotated[CurrentUser, Depends(get_current_user_from_token)]


@router.post(
    "",
    response_model=MessageResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
    summary="Drop a new whisper at a location",
)
async def create_message(
    request: MessageCreateRequest,
    current_user: UserDep,
    service: LifecycleDep,
):
    """New whispers start ``pending`` and become discoverable once approved."""

    message = await service.create_message(
        content=request.content,
        location=request.location.to_point(),
        author_id=current_user.user_id,
        is_anonymous=request.is_anonymous,
        is_ephemeral=request.is_ephemeral,
        expiration_hours=request.expiration_hours,
    )
    return MessageResponse.from_message(message)


@router.get(
    "/mine",
    response_model=List[MessageResponse],
    response_model_exclude_none=True,
    summary="List the caller's attributed whispers",
)
async def list_my_messages(
    current_user: UserDep,
    service: LifecycleDep,
    limit: int = Query(50, ge=1, le=100),
):
    messages = await service.list_messages_by_author(current_user.user_id, limit)
    return [MessageResponse.from_message(m) for m in messages]


@router.get(
    "/{message_id_path:uuid}",
    response_model=MessageResponse,
    response_model_exclude_none=True,
    summary="Get a single whisper",
)
async def get_message(
    message_id_path: UUID,
    current_user: UserDep,
    service: LifecycleDep,
):
    message = await service.get_message(message_id_path, viewer_id=current_user.user_id)
    return MessageResponse.from_message(message)


@router.post(
    "/{message_id_path:uuid}/reactions",
    response_model=MessageResponse,
    response_model_exclude_none=True,
    summary="React to a whisper (replaces any earlier reaction)",
)
async def react_to_message(
    message_id_path: UUID,
    request: ReactionRequest,
    current_user: UserDep,
    service: LifecycleDep,
):
    message = await service.add_reaction(message_id_path, current_user.user_id, request.reaction)
    return MessageResponse.from_message(message)


@router.post(
    "/{message_id_path:uuid}/discover",
    response_model=MessageResponse,
    response_model_exclude_none=True,
    summary="Mark a whisper as discovered by the caller",
)
async def discover_message(
    message_id_path: UUID,
    current_user: UserDep,
    service: LifecycleDep,
):
    message = await service.mark_discovered(message_id_path, current_user.user_id)
    return MessageResponse.from_message(message)
