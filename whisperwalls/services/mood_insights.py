from __future__ import annotations

"""Per-user mood insights over the mood history recorded at create time."""

import logging
from typing import List, Sequence
from uuid import UUID

from whisperwalls.db.mood_history_store import MoodHistoryStore
from whisperwalls.models.mood import (
    EMOTION_ORDER,
    EmotionEnum,
    EmotionScores,
    MoodHistoryEntry,
    MoodInsights,
    MoodTrendEnum,
    MoodVector,
    dominant_emotion,
)

logger = logging.getLogger(__name__)

RECENT_WINDOW = 10
TREND_SPAN = 3
TREND_THRESHOLD = 0.1

_POSITIVE_EMOTIONS = (EmotionEnum.JOY, EmotionEnum.TRUST, EmotionEnum.ANTICIPATION)


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values)


def average_mood(moods: Sequence[MoodVector]) -> MoodVector:
    """Component-wise mean of *moods* (non-empty)."""

    emotions = {
        e.value: _mean([getattr(m.emotions, e.value) for m in moods]) for e in EMOTION_ORDER
    }
    return MoodVector(
        emotions=EmotionScores(**emotions),
        sentiment=_mean([m.sentiment for m in moods]),
        intensity=_mean([m.intensity for m in moods]),
    )


def sentiment_trend(moods: Sequence[MoodVector]) -> MoodTrendEnum:
    """Compare the last three moods against the three before them.

    *moods* is oldest first.
    """

    recent = moods[-TREND_SPAN:]
    older = moods[-2 * TREND_SPAN:-TREND_SPAN]
    if len(moods) < 2 or not older:
        return MoodTrendEnum.INSUFFICIENT_DATA

    delta = _mean([m.sentiment for m in recent]) - _mean([m.sentiment for m in older])
    if delta > TREND_THRESHOLD:
        return MoodTrendEnum.IMPROVING
    if delta < -TREND_THRESHOLD:
        return MoodTrendEnum.DECLINING
    return MoodTrendEnum.STABLE


def mood_score(moods: Sequence[MoodVector]) -> float:
    """Blend of mean sentiment (rescaled to 0..1) and positive emotions, 60/40."""

    average = average_mood(moods)
    positive = _mean([getattr(average.emotions, e.value) for e in _POSITIVE_EMOTIONS])
    score = (average.sentiment + 1) / 2 * 0.6 + positive * 0.4
    return max(0.0, min(1.0, score))


class MoodInsightsService:
    def __init__(self, history: MoodHistoryStore, *, recent_window: int = RECENT_WINDOW):
        self.history = history
        self.recent_window = recent_window

    async def get_user_insights(self, user_id: UUID) -> MoodInsights:
        entries: List[MoodHistoryEntry] = await self.history.list_for_user(user_id, self.recent_window)
        if not entries:
            return MoodInsights()

        # The store returns newest first.
        moods = [e.mood for e in reversed(entries)]
        average = average_mood(moods)
        logger.debug("Mood insights for %s over %d entries", user_id, len(moods))
        return MoodInsights(
            sample_size=len(moods),
            dominant_emotion=dominant_emotion(average).value,
            trend=sentiment_trend(moods),
            mood_score=round(mood_score(moods), 4),
            average_sentiment=round(average.sentiment, 4),
        )
