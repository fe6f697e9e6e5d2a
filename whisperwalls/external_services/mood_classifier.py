"""Mood classification collaborators.

``MoodClassifier`` is the narrow capability the lifecycle service depends on:
``classify(text) -> MoodVector``.  Two implementations ship here:

1. **OpenAIMoodClassifier** – asks a chat-completion model for a JSON emotion
   breakdown and wraps it into a :class:`MoodVector` on receipt.
2. **MockMoodClassifier** – deterministic keyword lexicon, used by default in
   development and tests.

Callers should go through :func:`classify_mood`, which bounds the call with a
timeout and substitutes :data:`NEUTRAL_MOOD` on any failure.  The returned
:class:`MoodOutcome` says whether that fallback was used.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from collections import Counter
from typing import Optional, Protocol

import httpx
from opentelemetry import trace
from pydantic import BaseModel, ConfigDict

from whisperwalls.core.errors import ClassifierUnavailable
from whisperwalls.metrics import CLASSIFIER_CALL_DURATION_SECONDS, CLASSIFIER_FALLBACK_TOTAL
from whisperwalls.models.common import DegradedReasonEnum
from whisperwalls.models.mood import NEUTRAL_MOOD, EmotionEnum, EmotionScores, MoodVector

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class MoodClassifier(Protocol):
    name: str
    configured: bool

    async def classify(self, text: str) -> MoodVector: ...


class MoodOutcome(BaseModel):
    """A mood vector plus, when the classifier failed, the reason why."""

    model_config = ConfigDict(frozen=True)

    mood: MoodVector
    degraded: Optional[DegradedReasonEnum] = None

    @property
    def used_fallback(self) -> bool:
        return self.degraded is not None


# ---------------------------------------------------------------------------
# OpenAI-backed classifier
# ---------------------------------------------------------------------------

_SYSTEM_PROMPT = (
    "You are an expert emotion analyst. Analyze the emotional content of text "
    "and return a detailed emotional breakdown in JSON format."
)

_USER_PROMPT = """Analyze the emotional content of the following text and return a JSON object with this exact structure:
{{
  "emotions": {{"joy": 0-1, "sadness": 0-1, "anger": 0-1, "fear": 0-1,
               "surprise": 0-1, "disgust": 0-1, "trust": 0-1, "anticipation": 0-1}},
  "sentiment": -1 to 1,
  "intensity": 0-1
}}
Scores follow the Plutchik wheel of emotions. Sentiment is -1 (very negative) to 1 (very positive); intensity is the overall emotional strength.

Text to analyze: {text}"""


class OpenAIMoodClassifier:
    name = "openai_mood"

    def __init__(
        self,
        api_key: Optional[str],
        *,
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-4o-mini",
        timeout: float = 8.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._api_key = api_key
        self._url = f"{base_url.rstrip('/')}/chat/completions"
        self._model = model
        self._timeout = timeout
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    async def _post(self, payload: dict) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self._api_key}"}
        if self._client is not None:
            return await self._client.post(self._url, json=payload, headers=headers)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.post(self._url, json=payload, headers=headers)

    async def classify(self, text: str) -> MoodVector:
        if not self.configured:
            raise ClassifierUnavailable("OpenAI API key is not configured")

        payload = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": _SYSTEM_PROMPT},
                {"role": "user", "content": _USER_PROMPT.format(text=json.dumps(text))},
            ],
            "temperature": 0.3,
            "max_tokens": 500,
            "response_format": {"type": "json_object"},
        }

        try:
            resp = await self._post(payload)
        except httpx.HTTPError as exc:
            raise ClassifierUnavailable(f"Mood classifier request failed: {exc}", cause=exc) from exc

        if resp.status_code != 200:
            raise ClassifierUnavailable(
                f"Mood classifier returned HTTP {resp.status_code}: {resp.text[:200]}"
            )

        try:
            content = resp.json()["choices"][0]["message"]["content"]
            raw = json.loads(content)
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise ClassifierUnavailable("Mood classifier returned malformed JSON", cause=exc) from exc

        if not isinstance(raw, dict):
            raise ClassifierUnavailable("Mood classifier returned a non-object payload")
        return MoodVector.from_payload(raw)


# ---------------------------------------------------------------------------
# Deterministic lexicon classifier
# ---------------------------------------------------------------------------

_LEXICON = {
    EmotionEnum.JOY: {"happy", "joy", "love", "great", "awesome", "smile", "wonderful", "glad", "yay", "beautiful"},
    EmotionEnum.SADNESS: {"sad", "miss", "lonely", "cry", "tears", "sorry", "lost", "grief", "heartbroken"},
    EmotionEnum.ANGER: {"angry", "hate", "furious", "mad", "annoyed", "rage"},
    EmotionEnum.FEAR: {"afraid", "scared", "fear", "worried", "anxious", "nervous"},
    EmotionEnum.SURPRISE: {"wow", "surprised", "unexpected", "suddenly", "omg"},
    EmotionEnum.DISGUST: {"gross", "disgusting", "awful", "terrible", "yuck"},
    EmotionEnum.TRUST: {"trust", "friend", "together", "safe", "believe", "thanks", "thank"},
    EmotionEnum.ANTICIPATION: {"hope", "soon", "tomorrow", "waiting", "excited", "someday"},
}

_POSITIVE = {EmotionEnum.JOY, EmotionEnum.TRUST, EmotionEnum.ANTICIPATION}
_NEGATIVE = {EmotionEnum.SADNESS, EmotionEnum.ANGER, EmotionEnum.FEAR, EmotionEnum.DISGUST}

_WORD_RE = re.compile(r"[a-z']+")


class MockMoodClassifier:
    """Keyword lexicon scorer; the same text always yields the same vector."""

    name = "mock_mood"
    configured = True

    async def classify(self, text: str) -> MoodVector:
        words = _WORD_RE.findall(text.lower())
        hits: Counter = Counter()
        for word in words:
            for emotion, vocabulary in _LEXICON.items():
                if word in vocabulary:
                    hits[emotion] += 1

        total = sum(hits.values())
        if total == 0:
            return NEUTRAL_MOOD

        emotions = EmotionScores(
            **{e.value: min(1.0, 0.1 + 0.3 * hits[e]) for e in EmotionEnum}
        )
        positive = sum(hits[e] for e in _POSITIVE)
        negative = sum(hits[e] for e in _NEGATIVE)
        exclamations = text.count("!")
        return MoodVector(
            emotions=emotions,
            sentiment=(positive - negative) / total,
            intensity=min(1.0, 0.3 + 0.1 * total + 0.1 * exclamations),
        )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def _fallback(classifier_name: str, reason: DegradedReasonEnum) -> MoodOutcome:
    CLASSIFIER_FALLBACK_TOTAL.labels(classifier=classifier_name, reason=reason.value).inc()
    return MoodOutcome(mood=NEUTRAL_MOOD, degraded=reason)


async def classify_mood(classifier: MoodClassifier, text: str, timeout: float) -> MoodOutcome:
    """Classify *text*, never raising.

    Timeouts and classifier errors produce the neutral mood with the matching
    :class:`DegradedReasonEnum`.
    """

    if not classifier.configured:
        logger.debug("Mood classifier %s is not configured; using neutral mood", classifier.name)
        return _fallback(classifier.name, DegradedReasonEnum.UNCONFIGURED)

    start = time.perf_counter()
    with tracer.start_as_current_span("mood.classify") as span:
        span.set_attribute("classifier", classifier.name)
        try:
            mood = await asyncio.wait_for(classifier.classify(text), timeout)
        except asyncio.TimeoutError:
            logger.warning("Mood classifier %s timed out after %.1fs", classifier.name, timeout)
            return _fallback(classifier.name, DegradedReasonEnum.TIMEOUT)
        except Exception as exc:  # noqa: BLE001 – any failure degrades to neutral
            logger.warning("Mood classifier %s failed: %s", classifier.name, exc)
            return _fallback(classifier.name, DegradedReasonEnum.ERROR)
        finally:
            duration = time.perf_counter() - start
            CLASSIFIER_CALL_DURATION_SECONDS.labels(classifier=classifier.name).observe(duration)
            span.set_attribute("duration_ms", int(duration * 1000))

    return MoodOutcome(mood=mood)


def build_mood_classifier(settings) -> MoodClassifier:
    """Pick the implementation named by ``MOOD_CLASSIFIER_BACKEND``."""

    backend = settings.MOOD_CLASSIFIER_BACKEND.lower()
    if backend == "openai":
        return OpenAIMoodClassifier(
            settings.OPENAI_API_KEY,
            base_url=settings.OPENAI_BASE_URL,
            model=settings.OPENAI_MOOD_MODEL,
            timeout=settings.CLASSIFIER_TIMEOUT_SECONDS,
        )
    if backend != "mock":
        logger.warning("Unknown MOOD_CLASSIFIER_BACKEND %r; using mock", backend)
    return MockMoodClassifier()
