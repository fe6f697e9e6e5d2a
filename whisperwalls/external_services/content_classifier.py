"""Content moderation collaborators.

``ContentClassifier.moderate(text) -> Verdict`` is what the moderation engine
consumes.  :class:`OpenAIContentClassifier` calls the hosted moderation
endpoint; :class:`KeywordContentFilter` is the local fallback and the default
when no API key is configured.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, Optional, Protocol

import httpx
from pydantic import BaseModel, ConfigDict

from whisperwalls.core.errors import ClassifierUnavailable
from whisperwalls.models.common import DegradedReasonEnum
from whisperwalls.models.moderation import Verdict, VerdictSourceEnum

logger = logging.getLogger(__name__)


class ContentClassifier(Protocol):
    name: str
    configured: bool

    async def moderate(self, text: str) -> Verdict: ...


class ClassificationOutcome(BaseModel):
    """Verdict plus the reason the external classifier was bypassed, if it was."""

    model_config = ConfigDict(frozen=True)

    verdict: Verdict
    degraded: Optional[DegradedReasonEnum] = None

    @property
    def used_fallback(self) -> bool:
        return self.degraded is not None


class OpenAIContentClassifier:
    name = "openai_moderation"

    def __init__(
        self,
        api_key: Optional[str],
        *,
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 8.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._api_key = api_key
        self._url = f"{base_url.rstrip('/')}/moderations"
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

    async def moderate(self, text: str) -> Verdict:
        if not self.configured:
            raise ClassifierUnavailable("OpenAI API key is not configured")

        try:
            resp = await self._post({"input": text})
        except httpx.HTTPError as exc:
            raise ClassifierUnavailable(f"Moderation request failed: {exc}", cause=exc) from exc

        if resp.status_code != 200:
            raise ClassifierUnavailable(
                f"Moderation endpoint returned HTTP {resp.status_code}: {resp.text[:200]}"
            )

        try:
            result = resp.json()["results"][0]
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise ClassifierUnavailable("Moderation endpoint returned malformed JSON", cause=exc) from exc
        if not isinstance(result, dict):
            raise ClassifierUnavailable("Moderation endpoint returned a non-object result")

        return Verdict.from_payload(result, source=VerdictSourceEnum.CLASSIFIER)


class KeywordContentFilter:
    """Whole-word, case-insensitive blocklist match.

    Produces the same :class:`Verdict` shape as the hosted classifier with
    every category false and every score zero; ``flagged`` is the keyword hit.
    """

    name = "keyword_filter"
    configured = True

    def __init__(self, keywords: Iterable[str]):
        self.keywords = sorted({k.strip().lower() for k in keywords if k.strip()})
        if self.keywords:
            alternation = "|".join(re.escape(k) for k in self.keywords)
            self._pattern: Optional[re.Pattern] = re.compile(rf"\b(?:{alternation})\b", re.IGNORECASE)
        else:
            self._pattern = None

    def matches(self, text: str) -> list[str]:
        if self._pattern is None:
            return []
        return sorted({m.group(0).lower() for m in self._pattern.finditer(text)})

    async def moderate(self, text: str) -> Verdict:
        hits = self.matches(text)
        return Verdict(
            flagged=bool(hits),
            reason=f"Content flagged by keyword filter: {', '.join(hits)}" if hits else None,
            source=VerdictSourceEnum.KEYWORD_FILTER,
        )


def build_content_classifier(settings) -> ContentClassifier:
    """Pick the implementation named by ``CONTENT_CLASSIFIER_BACKEND``."""

    backend = settings.CONTENT_CLASSIFIER_BACKEND.lower()
    if backend == "openai":
        return OpenAIContentClassifier(
            settings.OPENAI_API_KEY,
            base_url=settings.OPENAI_BASE_URL,
            timeout=settings.CLASSIFIER_TIMEOUT_SECONDS,
        )
    if backend != "keyword":
        logger.warning("Unknown CONTENT_CLASSIFIER_BACKEND %r; using keyword filter", backend)
    return KeywordContentFilter(settings.parsed_moderation_keywords)
