from __future__ import annotations

"""Emotional fingerprint attached to every message."""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class EmotionEnum(str, Enum):
    """The eight tracked emotions.

    Declaration order is significant: it is the tie-break order used when
    picking a dominant emotion.
    """

    JOY = "joy"
    SADNESS = "sadness"
    ANGER = "anger"
    FEAR = "fear"
    SURPRISE = "surprise"
    DISGUST = "disgust"
    TRUST = "trust"
    ANTICIPATION = "anticipation"


EMOTION_ORDER: tuple[EmotionEnum, ...] = tuple(EmotionEnum)


class EmotionScores(BaseModel):
    """Per-emotion intensity, each in ``[0, 1]``."""

    model_config = ConfigDict(frozen=True)

    joy: float = Field(0.0, ge=0.0, le=1.0)
    sadness: float = Field(0.0, ge=0.0, le=1.0)
    anger: float = Field(0.0, ge=0.0, le=1.0)
    fear: float = Field(0.0, ge=0.0, le=1.0)
    surprise: float = Field(0.0, ge=0.0, le=1.0)
    disgust: float = Field(0.0, ge=0.0, le=1.0)
    trust: float = Field(0.0, ge=0.0, le=1.0)
    anticipation: float = Field(0.0, ge=0.0, le=1.0)

    def as_dict(self) -> Dict[EmotionEnum, float]:
        return {e: getattr(self, e.value) for e in EMOTION_ORDER}


class MoodVector(BaseModel):
    """Immutable emotion map plus overall sentiment and intensity."""

    model_config = ConfigDict(frozen=True)

    emotions: EmotionScores = Field(default_factory=EmotionScores)
    sentiment: float = Field(0.0, ge=-1.0, le=1.0)
    intensity: float = Field(0.0, ge=0.0, le=1.0)

    @classmethod
    def from_payload(cls, raw: dict) -> "MoodVector":
        """Build a vector from a loosely shaped classifier response.

        Unknown keys are dropped and every number is clamped into range so a
        sloppy upstream payload cannot leak into core logic.
        """

        raw_emotions = raw.get("emotions") or {}
        emotions = {
            e.value: _clamp(raw_emotions.get(e.value, 0.0), 0.0, 1.0)
            for e in EMOTION_ORDER
        }
        return cls(
            emotions=EmotionScores(**emotions),
            sentiment=_clamp(raw.get("sentiment", 0.0), -1.0, 1.0),
            intensity=_clamp(raw.get("intensity", 0.0), 0.0, 1.0),
        )

    @property
    def dominant_emotion(self) -> EmotionEnum:
        return dominant_emotion(self)


def dominant_emotion(mood: MoodVector) -> EmotionEnum:
    """Argmax over the emotion map; ties go to the earliest in ``EMOTION_ORDER``."""

    best = EMOTION_ORDER[0]
    best_value = getattr(mood.emotions, best.value)
    for emotion in EMOTION_ORDER[1:]:
        value = getattr(mood.emotions, emotion.value)
        if value > best_value:
            best, best_value = emotion, value
    return best


NEUTRAL_MOOD = MoodVector(
    emotions=EmotionScores(
        joy=0.5,
        sadness=0.1,
        anger=0.1,
        fear=0.1,
        surprise=0.1,
        disgust=0.1,
        trust=0.5,
        anticipation=0.4,
    ),
    sentiment=0.0,
    intensity=0.3,
)


class MoodHistoryEntry(BaseModel):
    """One point in a user's emotional timeline."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    entry_id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    mood: MoodVector
    message_id: Optional[UUID] = None
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class MoodTrendEnum(str, Enum):
    """Direction of a user's recent sentiment."""

    IMPROVING = "improving"
    DECLINING = "declining"
    STABLE = "stable"
    INSUFFICIENT_DATA = "insufficient_data"


class MoodInsights(BaseModel):
    """Summary of a user's recent mood history.

    The empty state is ``neutral`` with a mid-scale ``mood_score`` of 0.5.
    """

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    sample_size: int = 0
    dominant_emotion: str = "neutral"
    trend: MoodTrendEnum = MoodTrendEnum.INSUFFICIENT_DATA
    mood_score: float = Field(0.5, ge=0.0, le=1.0)
    average_sentiment: float = 0.0


def _clamp(value, lo: float, hi: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if number != number:  # NaN
        return 0.0
    return max(lo, min(hi, number))


__all__ = [
    "EmotionEnum",
    "EMOTION_ORDER",
    "EmotionScores",
    "MoodVector",
    "MoodHistoryEntry",
    "MoodTrendEnum",
    "MoodInsights",
    "NEUTRAL_MOOD",
    "dominant_emotion",
]
