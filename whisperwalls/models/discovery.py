from __future__ import annotations

"""Models for proximity discovery and location insights."""

from typing import List, Optional, Set
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from whisperwalls.models.message import MessageResponse
from whisperwalls.models.mood import EmotionEnum, MoodVector, dominant_emotion


class MoodFilter(BaseModel):
    """Optional sentiment band and/or acceptable dominant emotions.

    Both sentiment bounds are inclusive.  An empty ``emotions`` set means
    "any emotion".
    """

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    min_sentiment: Optional[float] = Field(default=None, ge=-1.0, le=1.0)
    max_sentiment: Optional[float] = Field(default=None, ge=-1.0, le=1.0)
    emotions: Set[EmotionEnum] = Field(default_factory=set)

    def matches(self, mood: MoodVector) -> bool:
        if self.min_sentiment is not None and mood.sentiment < self.min_sentiment:
            return False
        if self.max_sentiment is not None and mood.sentiment > self.max_sentiment:
            return False
        if self.emotions and dominant_emotion(mood) not in self.emotions:
            return False
        return True


class NearbyOptions(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    limit: Optional[int] = None
    include_expired: bool = False
    exclude_discovered_by: Optional[UUID] = None
    mood_filter: Optional[MoodFilter] = None


class NearbyResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    data: List[MessageResponse]
    count: int


class LocationInsights(BaseModel):
    """Aggregate mood of an area.

    ``dominant_emotion`` is ``"neutral"`` when there is nothing to aggregate.
    """

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    message_count: int = 0
    average_sentiment: float = 0.0
    average_intensity: float = 0.0
    total_reactions: int = 0
    total_discoveries: int = 0
    dominant_emotion: str = "neutral"
    popular_times: List[str] = Field(default_factory=list)


class DistanceResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    distance_meters: float
    within_radius: Optional[bool] = None


__all__ = [
    "MoodFilter",
    "NearbyOptions",
    "NearbyResponse",
    "LocationInsights",
    "DistanceResponse",
]
