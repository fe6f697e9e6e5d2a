from __future__ import annotations

"""Proximity discovery, area insights and distance helpers."""

from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, Query

from whisperwalls.api.v1.dependencies import (
    CurrentUser,
    get_current_user_from_token,
    get_discovery_service,
)
from whisperwalls.models.discovery import (
    DistanceResponse,
    LocationInsights,
    MoodFilter,
    NearbyOptions,
    NearbyResponse,
)
from whisperwalls.models.message import GeoPoint, MessageResponse, ModerationStatusEnum
from whisperwalls.models.mood import EmotionEnum
from whisperwalls.services.discovery_service import DiscoveryService

router = APIRouter(prefix="/discovery", tags=["Discovery"])

DiscoveryDep = Annotated[DiscoveryService, Depends(get_discovery_service)]


@router.get(
    "/nearby",
    response_model=NearbyResponse,
    response_model_exclude_none=True,
    summary="Find approved whispers around a location",
)
async def find_nearby(
    current_user: Annotated[CurrentUser, Depends(get_current_user_from_token)],
    service: DiscoveryDep,
    lat: float = Query(..., description="Latitude of the caller"),
    lng: float = Query(..., description="Longitude of the caller"),
    radius_meters: Optional[float] = Query(None, alias="radiusMeters"),
    limit: Optional[int] = Query(None, ge=1),
    include_expired: bool = Query(False, alias="includeExpired"),
    exclude_seen: bool = Query(
        False,
        alias="excludeSeen",
        description="Skip whispers the caller has already discovered.",
    ),
    min_sentiment: Optional[float] = Query(None, alias="minSentiment", ge=-1.0, le=1.0),
    max_sentiment: Optional[float] = Query(None, alias="maxSentiment", ge=-1.0, le=1.0),
    emotions: Optional[List[EmotionEnum]] = Query(None, alias="emotion"),
    status_filter: Optional[ModerationStatusEnum] = Query(
        None,
        alias="status",
        description="Moderators only: look at whispers in another moderation state.",
    ),
):
    mood_filter = None
    if min_sentiment is not None or max_sentiment is not None or emotions:
        mood_filter = MoodFilter(
            min_sentiment=min_sentiment,
            max_sentiment=max_sentiment,
            emotions=set(emotions or []),
        )

    options = NearbyOptions(
        limit=limit,
        include_expired=include_expired,
        exclude_discovered_by=current_user.user_id if exclude_seen else None,
        mood_filter=mood_filter,
    )

    privileged = current_user.is_moderator and status_filter is not None
    messages = await service.find_nearby_messages(
        GeoPoint(longitude=lng, latitude=lat),
        radius_meters,
        options,
        privileged=privileged,
        moderation_status=status_filter,
    )
    data = [MessageResponse.from_message(m) for m in messages]
    return NearbyResponse(data=data, count=len(data))


@router.get(
    "/insights",
    response_model=LocationInsights,
    summary="Aggregate mood of the whispers around a location",
)
async def location_insights(
    current_user: Annotated[CurrentUser, Depends(get_current_user_from_token)],
    service: DiscoveryDep,
    lat: float = Query(...),
    lng: float = Query(...),
    radius_meters: Optional[float] = Query(None, alias="radiusMeters"),
):
    return await service.get_location_insights(GeoPoint(longitude=lng, latitude=lat), radius_meters)


@router.get(
    "/distance",
    response_model=DistanceResponse,
    response_model_exclude_none=True,
    summary="Great-circle distance between two points",
)
async def distance(
    service: DiscoveryDep,
    lat1: float = Query(...),
    lng1: float = Query(...),
    lat2: float = Query(...),
    lng2: float = Query(...),
    radius_meters: Optional[float] = Query(
        None,
        alias="radiusMeters",
        gt=0,
        description="When given, also report whether the points are within this radius.",
    ),
):
    a = GeoPoint(longitude=lng1, latitude=lat1)
    b = GeoPoint(longitude=lng2, latitude=lat2)
    meters = service.calculate_distance(a, b)
    return DistanceResponse(
        distance_meters=round(meters, 2),
        within_radius=meters <= radius_meters if radius_meters is not None else None,
    )
