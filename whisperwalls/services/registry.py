from __future__ import annotations

"""Wires stores, classifiers and services together from settings.

The application builds one :class:`ServiceRegistry` at start-up; tests build
their own from in-memory stores and install it with :func:`set_registry`.
"""

import logging
from typing import Optional

from whisperwalls.core.config import Settings
from whisperwalls.db.message_store import AstraMessageStore, InMemoryMessageStore, MessageStore
from whisperwalls.db.moderation_store import (
    AstraModerationStore,
    InMemoryModerationStore,
    ModerationStore,
)
from whisperwalls.db.mood_history_store import (
    AstraMoodHistoryStore,
    InMemoryMoodHistoryStore,
    MoodHistoryStore,
)
from whisperwalls.external_services.content_classifier import (
    ContentClassifier,
    KeywordContentFilter,
    build_content_classifier,
)
from whisperwalls.external_services.mood_classifier import MoodClassifier, build_mood_classifier
from whisperwalls.services.discovery_service import DiscoveryService
from whisperwalls.services.expiration_sweeper import ExpirationSweeper
from whisperwalls.services.message_service import LifecyclePolicy, MessageLifecycleService
from whisperwalls.services.moderation_engine import ModerationEngine
from whisperwalls.services.mood_insights import MoodInsightsService
from whisperwalls.services.rate_limiter import RateLimiter
from whisperwalls.utils.tasks import TaskScheduler

logger = logging.getLogger(__name__)


class ServiceRegistry:
    def __init__(
        self,
        settings: Settings,
        *,
        messages: MessageStore,
        moderation_store: ModerationStore,
        mood_history: MoodHistoryStore,
        mood_classifier: MoodClassifier,
        content_classifier: ContentClassifier,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        self.settings = settings
        self.messages = messages
        self.moderation_store = moderation_store
        self.mood_history = mood_history
        self.rate_limiter = rate_limiter or RateLimiter()
        self.scheduler = TaskScheduler("moderation")

        fallback = (
            content_classifier
            if isinstance(content_classifier, KeywordContentFilter)
            else KeywordContentFilter(settings.parsed_moderation_keywords)
        )
        self.moderation = ModerationEngine(
            messages,
            moderation_store,
            content_classifier,
            fallback,
            timeout=settings.CLASSIFIER_TIMEOUT_SECONDS,
        )
        self.lifecycle = MessageLifecycleService(
            messages,
            self.moderation,
            moderation_store,
            mood_history,
            mood_classifier,
            self.rate_limiter,
            policy=LifecyclePolicy.from_settings(settings),
            scheduler=self.scheduler,
        )
        self.discovery = DiscoveryService.from_settings(messages, settings)
        self.mood = MoodInsightsService(mood_history)
        self.sweeper = ExpirationSweeper(
            messages,
            mood_history,
            self.rate_limiter,
            interval_seconds=settings.SWEEP_INTERVAL_SECONDS,
            history_retention_days=settings.MOOD_HISTORY_RETENTION_DAYS,
        )

    @classmethod
    def in_memory(cls, settings: Settings, **overrides) -> "ServiceRegistry":
        kwargs = {
            "messages": InMemoryMessageStore(),
            "moderation_store": InMemoryModerationStore(),
            "mood_history": InMemoryMoodHistoryStore(),
            "mood_classifier": build_mood_classifier(settings),
            "content_classifier": build_content_classifier(settings),
        }
        kwargs.update(overrides)
        return cls(settings, **kwargs)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ServiceRegistry":
        backend = settings.STORE_BACKEND.lower()
        if backend == "astra":
            logger.info("Using Astra Data API stores (keyspace %s)", settings.ASTRA_DB_KEYSPACE)
            return cls(
                settings,
                messages=AstraMessageStore(
                    settings.MESSAGES_COLLECTION,
                    candidate_limit=settings.DISCOVERY_CANDIDATE_LIMIT,
                ),
                moderation_store=AstraModerationStore(
                    settings.MODERATION_QUEUE_COLLECTION,
                    settings.REPORTS_COLLECTION,
                ),
                mood_history=AstraMoodHistoryStore(settings.MOOD_HISTORY_COLLECTION),
                mood_classifier=build_mood_classifier(settings),
                content_classifier=build_content_classifier(settings),
            )
        if backend != "memory":
            logger.warning("Unknown STORE_BACKEND %r; using in-memory stores", backend)
        logger.info("Using in-memory stores")
        return cls.in_memory(settings)


_registry: Optional[ServiceRegistry] = None


def get_registry() -> ServiceRegistry:
    global _registry
    if _registry is None:
        from whisperwalls.core.config import settings

        _registry = ServiceRegistry.from_settings(settings)
    return _registry


def set_registry(registry: Optional[ServiceRegistry]) -> None:
    global _registry
    _registry = registry
