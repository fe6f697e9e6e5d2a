from __future__ import annotations

"""Pydantic models for whispers (location-anchored messages)."""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from whisperwalls.models.common import MessageID, UserID
from whisperwalls.models.mood import MoodVector


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class ModerationStatusEnum(str, Enum):
    """Visibility state of a message as decided by moderation."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ReactionKindEnum(str, Enum):
    HEART = "heart"
    HUG = "hug"
    SMILE = "smile"
    TEAR = "tear"


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------
class GeoPoint(BaseModel):
    """A (longitude, latitude) pair.

    Range checks live in ``whisperwalls.utils.geo.validate_location`` so that
    bad coordinates surface as ``InvalidLocation`` rather than a schema error.
    """

    model_config = ConfigDict(frozen=True)

    longitude: float
    latitude: float


class Reaction(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    kind: ReactionKindEnum
    reacted_at: datetime


# ---------------------------------------------------------------------------
# Message
# ---------------------------------------------------------------------------
class Message(BaseModel):
    """Canonical persisted representation of a whisper."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    message_id: MessageID = Field(default_factory=uuid4)
    content: str
    location: GeoPoint
    mood_vector: MoodVector
    author_id: Optional[UserID] = None
    is_anonymous: bool = True
    is_ephemeral: bool = True
    expires_at: Optional[datetime] = None
    discovered_by: List[UserID] = Field(default_factory=list)
    # One entry per user; a later reaction replaces the earlier one.
    reactions: Dict[UserID, Reaction] = Field(default_factory=dict)
    moderation_status: ModerationStatusEnum = ModerationStatusEnum.PENDING
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """True once an ephemeral message has passed its ``expires_at``."""
        if not self.is_ephemeral or self.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        return self.expires_at <= now

    def is_discoverable(self, now: Optional[datetime] = None) -> bool:
        return (
            self.moderation_status == ModerationStatusEnum.APPROVED
            and not self.is_expired(now)
        )


class MessageResponse(BaseModel):
    """External representation; ``authorId`` is omitted for anonymous messages."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    message_id: MessageID
    content: str
    location: GeoPoint
    mood_vector: MoodVector
    author_id: Optional[UserID] = None
    is_anonymous: bool
    is_ephemeral: bool
    expires_at: Optional[datetime] = None
    discovered_by: List[UserID] = Field(default_factory=list)
    reactions: Dict[UserID, Reaction] = Field(default_factory=dict)
    moderation_status: ModerationStatusEnum
    created_at: datetime

    @classmethod
    def from_message(cls, message: Message) -> "MessageResponse":
        data = message.model_dump(exclude={"updated_at"})
        if message.is_anonymous:
            data["author_id"] = None
        return cls.model_validate(data)


# ---------------------------------------------------------------------------
# Request payloads
# ---------------------------------------------------------------------------
class LocationPayload(BaseModel):
    latitude: float
    longitude: float

    def to_point(self) -> GeoPoint:
        return GeoPoint(longitude=self.longitude, latitude=self.latitude)


class MessageCreateRequest(BaseModel):
    """Payload for dropping a new whisper."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    content: str
    location: LocationPayload
    is_anonymous: bool = True
    is_ephemeral: bool = True
    expiration_hours: Optional[int] = None


class ReactionRequest(BaseModel):
    reaction: ReactionKindEnum


__all__ = [
    "ModerationStatusEnum",
    "ReactionKindEnum",
    "GeoPoint",
    "Reaction",
    "Message",
    "MessageResponse",
    "LocationPayload",
    "MessageCreateRequest",
    "ReactionRequest",
]
