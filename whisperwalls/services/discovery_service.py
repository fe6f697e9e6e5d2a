from __future__ import annotations

"""Proximity discovery and area-level mood aggregates."""

import logging
import math
from collections import Counter
from datetime import datetime, timezone
from typing import Callable, List, Optional

from whisperwalls.core.errors import InvalidQuery
from whisperwalls.db.message_store import MessageStore
from whisperwalls.models.discovery import LocationInsights, MoodFilter, NearbyOptions
from whisperwalls.models.message import GeoPoint, Message, ModerationStatusEnum
from whisperwalls.models.mood import EMOTION_ORDER, EmotionEnum
from whisperwalls.utils.geo import haversine_meters, validate_location

logger = logging.getLogger(__name__)

_TOP_HOURS = 3


class DiscoveryService:
    def __init__(
        self,
        messages: MessageStore,
        *,
        default_radius_meters: float = 1000.0,
        max_radius_meters: float = 50_000.0,
        default_limit: int = 50,
        max_limit: int = 100,
        insights_sample_limit: int = 1000,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.messages = messages
        self.default_radius_meters = default_radius_meters
        self.max_radius_meters = max_radius_meters
        self.default_limit = default_limit
        self.max_limit = max_limit
        self.insights_sample_limit = insights_sample_limit
        self._clock = clock

    @classmethod
    def from_settings(cls, messages: MessageStore, settings) -> "DiscoveryService":
        return cls(
            messages,
            default_radius_meters=settings.DEFAULT_RADIUS_METERS,
            max_radius_meters=settings.MAX_RADIUS_METERS,
            default_limit=settings.DEFAULT_DISCOVERY_LIMIT,
            max_limit=settings.MAX_DISCOVERY_LIMIT,
            insights_sample_limit=settings.INSIGHTS_SAMPLE_LIMIT,
        )

    def _check_radius(self, radius_meters: Optional[float]) -> float:
        if radius_meters is None:
            return self.default_radius_meters
        if not math.isfinite(radius_meters) or radius_meters <= 0:
            raise InvalidQuery("radiusMeters must be a positive number")
        if radius_meters > self.max_radius_meters:
            raise InvalidQuery(f"radiusMeters must not exceed {self.max_radius_meters:g}")
        return radius_meters

    def _check_mood_filter(self, mood_filter: Optional[MoodFilter]) -> None:
        if mood_filter is None:
            return
        lo, hi = mood_filter.min_sentiment, mood_filter.max_sentiment
        if lo is not None and hi is not None and lo > hi:
            raise InvalidQuery("minSentiment must not exceed maxSentiment")

    def _clamp_limit(self, limit: Optional[int]) -> int:
        if limit is None:
            return self.default_limit
        return max(1, min(self.max_limit, limit))

    async def find_nearby_messages(
        self,
        location: GeoPoint,
        radius_meters: Optional[float] = None,
        options: Optional[NearbyOptions] = None,
        *,
        privileged: bool = False,
        moderation_status: Optional[ModerationStatusEnum] = ModerationStatusEnum.APPROVED,
    ) -> List[Message]:
        """Approved messages around *location*, newest first.

        Only privileged callers (moderators) may pick another
        ``moderation_status``, or every status by passing ``None``.
        """

        options = options or NearbyOptions()
        validate_location(location)
        radius = self._check_radius(radius_meters)
        self._check_mood_filter(options.mood_filter)
        limit = self._clamp_limit(options.limit)

        status = moderation_status if privileged else ModerationStatusEnum.APPROVED
        seen_by = options.exclude_discovered_by
        mood_filter = options.mood_filter

        def wanted(message: Message) -> bool:
            if seen_by is not None and seen_by in message.discovered_by:
                return False
            if mood_filter is not None and not mood_filter.matches(message.mood_vector):
                return False
            return True

        return await self.messages.find_nearby(
            location.longitude,
            location.latitude,
            radius,
            moderation_status=status,
            include_expired=options.include_expired,
            limit=limit,
            now=self._clock(),
            where=wanted,
        )

    async def get_location_insights(
        self, location: GeoPoint, radius_meters: Optional[float] = None
    ) -> LocationInsights:
        """Mood averages, engagement totals and busiest UTC hours of an area."""

        validate_location(location)
        radius = self._check_radius(radius_meters)
        messages = await self.messages.find_nearby(
            location.longitude,
            location.latitude,
            radius,
            include_expired=False,
            limit=self.insights_sample_limit,
            now=self._clock(),
        )
        if not messages:
            return LocationInsights()

        count = len(messages)
        average_sentiment = sum(m.mood_vector.sentiment for m in messages) / count
        average_intensity = sum(m.mood_vector.intensity for m in messages) / count

        totals = {e: 0.0 for e in EMOTION_ORDER}
        for message in messages:
            for emotion, value in message.mood_vector.emotions.as_dict().items():
                totals[emotion] += value
        dominant: EmotionEnum = EMOTION_ORDER[0]
        for emotion in EMOTION_ORDER[1:]:
            if totals[emotion] > totals[dominant]:
                dominant = emotion

        hours = Counter(m.created_at.astimezone(timezone.utc).hour for m in messages)
        # Most frequent first; earlier hour wins a tie.
        top = sorted(hours.items(), key=lambda kv: (-kv[1], kv[0]))[:_TOP_HOURS]

        return LocationInsights(
            message_count=count,
            average_sentiment=round(average_sentiment, 4),
            average_intensity=round(average_intensity, 4),
            total_reactions=sum(len(m.reactions) for m in messages),
            total_discoveries=sum(len(m.discovered_by) for m in messages),
            dominant_emotion=dominant.value,
            popular_times=[f"{hour:02d}:00" for hour, _ in top],
        )

    @staticmethod
    def calculate_distance(a: GeoPoint, b: GeoPoint) -> float:
        validate_location(a)
        validate_location(b)
        return haversine_meters(a, b)

    @staticmethod
    def is_within_geofence(point: GeoPoint, center: GeoPoint, radius_meters: float) -> bool:
        return DiscoveryService.calculate_distance(point, center) <= radius_meters
