import asyncio
import json

import httpx
import pytest

from whisperwalls.core.errors import ClassifierUnavailable
from whisperwalls.external_services.mood_classifier import (
    MockMoodClassifier,
    OpenAIMoodClassifier,
    build_mood_classifier,
    classify_mood,
)
from whisperwalls.models.common import DegradedReasonEnum
from whisperwalls.models.mood import NEUTRAL_MOOD, EmotionEnum, MoodVector


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _completion(content: str) -> dict:
    return {"choices": [{"message": {"content": content}}]}


@pytest.mark.asyncio
async def test_openai_classifier_parses_and_clamps_payload():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        payload = {
            "emotions": {"joy": 1.7, "sadness": 0.2, "wonder": 0.9},
            "sentiment": -3,
            "intensity": 0.6,
        }
        return httpx.Response(200, json=_completion(json.dumps(payload)))

    classifier = OpenAIMoodClassifier("sk-test", base_url="https://llm.test/v1/", client=_client(handler))
    mood = await classifier.classify("what a day")

    assert seen["url"] == "https://llm.test/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"]["response_format"] == {"type": "json_object"}
    assert mood.emotions.joy == 1.0
    assert mood.emotions.sadness == 0.2
    assert mood.sentiment == -1.0
    assert mood.dominant_emotion == EmotionEnum.JOY


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, text="upstream exploded"),
        httpx.Response(200, json={"choices": []}),
        httpx.Response(200, json=_completion("not json")),
        httpx.Response(200, json=_completion("[1, 2]")),
    ],
)
async def test_openai_classifier_bad_responses_raise(response):
    classifier = OpenAIMoodClassifier("sk-test", client=_client(lambda request: response))
    with pytest.raises(ClassifierUnavailable):
        await classifier.classify("hello")


@pytest.mark.asyncio
async def test_openai_classifier_transport_error_raises():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    classifier = OpenAIMoodClassifier("sk-test", client=_client(handler))
    with pytest.raises(ClassifierUnavailable) as exc_info:
        await classifier.classify("hello")
    assert isinstance(exc_info.value.cause, httpx.ConnectError)


@pytest.mark.asyncio
async def test_mock_classifier_is_deterministic():
    classifier = MockMoodClassifier()

    first = await classifier.classify("So happy, I love this wonderful place!")
    second = await classifier.classify("So happy, I love this wonderful place!")

    assert first == second
    assert first.dominant_emotion == EmotionEnum.JOY
    assert first.sentiment > 0

    sad = await classifier.classify("I miss you and feel lonely")
    assert sad.dominant_emotion == EmotionEnum.SADNESS
    assert sad.sentiment < 0

    assert await classifier.classify("the bus stop") == NEUTRAL_MOOD


@pytest.mark.asyncio
async def test_classify_mood_success():
    outcome = await classify_mood(MockMoodClassifier(), "wow, unexpected", timeout=1.0)
    assert outcome.used_fallback is False
    assert outcome.mood.dominant_emotion == EmotionEnum.SURPRISE


@pytest.mark.asyncio
async def test_classify_mood_unconfigured_falls_back():
    outcome = await classify_mood(OpenAIMoodClassifier(None), "hi", timeout=1.0)
    assert outcome.mood == NEUTRAL_MOOD
    assert outcome.degraded == DegradedReasonEnum.UNCONFIGURED


class _SlowClassifier:
    name = "slow"
    configured = True

    async def classify(self, text: str) -> MoodVector:
        await asyncio.sleep(5)
        return MoodVector()


class _BrokenClassifier:
    name = "broken"
    configured = True

    async def classify(self, text: str) -> MoodVector:
        raise ClassifierUnavailable("boom")


@pytest.mark.asyncio
async def test_classify_mood_timeout_falls_back():
    outcome = await classify_mood(_SlowClassifier(), "hi", timeout=0.01)
    assert outcome.mood == NEUTRAL_MOOD
    assert outcome.degraded == DegradedReasonEnum.TIMEOUT


@pytest.mark.asyncio
async def test_classify_mood_error_falls_back():
    outcome = await classify_mood(_BrokenClassifier(), "hi", timeout=1.0)
    assert outcome.used_fallback is True
    assert outcome.degraded == DegradedReasonEnum.ERROR


def test_build_mood_classifier(monkeypatch):
    from whisperwalls.core.config import settings

    monkeypatch.setattr(settings, "MOOD_CLASSIFIER_BACKEND", "openai")
    assert isinstance(build_mood_classifier(settings), OpenAIMoodClassifier)

    monkeypatch.setattr(settings, "MOOD_CLASSIFIER_BACKEND", "carrier-pigeon")
    assert isinstance(build_mood_classifier(settings), MockMoodClassifier)
