from __future__ import annotations

"""Creation, reactions, discovery marking and reporting of whispers.

This is the entry point the HTTP layer calls into.  Moderation runs in the
background after a message is persisted, so a fresh message is ``pending``
and invisible to discovery until the moderation engine approves it.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional
from uuid import UUID

from whisperwalls.core.errors import (
    Expired,
    InvalidContent,
    NotApproved,
    NotFound,
    RateLimited,
    TooManyReports,
)
from whisperwalls.db.message_store import MessageStore
from whisperwalls.db.moderation_store import ModerationStore
from whisperwalls.db.mood_history_store import MoodHistoryStore
from whisperwalls.external_services.mood_classifier import MoodClassifier, classify_mood
from whisperwalls.models.message import (
    GeoPoint,
    Message,
    ModerationStatusEnum,
    ReactionKindEnum,
)
from whisperwalls.models.moderation import Report, ReportReasonEnum
from whisperwalls.models.mood import MoodHistoryEntry
from whisperwalls.services.moderation_engine import ModerationEngine
from whisperwalls.services.rate_limiter import ACTION_CREATE, ACTION_REPORT, RateLimiter
from whisperwalls.utils.geo import validate_location
from whisperwalls.utils.tasks import TaskScheduler

logger = logging.getLogger(__name__)


class LifecyclePolicy:
    """Numeric knobs, usually read from :mod:`whisperwalls.core.config`."""

    def __init__(
        self,
        *,
        max_content_length: int = 1000,
        default_expiration_hours: int = 24,
        min_expiration_hours: int = 1,
        max_expiration_hours: int = 168,
        create_limit: int = 10,
        create_window_ms: int = 300_000,
        report_limit: int = 5,
        report_window_ms: int = 300_000,
        classifier_timeout: float = 8.0,
    ):
        self.max_content_length = max_content_length
        self.default_expiration_hours = default_expiration_hours
        self.min_expiration_hours = min_expiration_hours
        self.max_expiration_hours = max_expiration_hours
        self.create_limit = create_limit
        self.create_window_ms = create_window_ms
        self.report_limit = report_limit
        self.report_window_ms = report_window_ms
        self.classifier_timeout = classifier_timeout

    @classmethod
    def from_settings(cls, settings) -> "LifecyclePolicy":
        return cls(
            max_content_length=settings.MESSAGE_MAX_LENGTH,
            default_expiration_hours=settings.DEFAULT_EXPIRATION_HOURS,
            min_expiration_hours=settings.MIN_EXPIRATION_HOURS,
            max_expiration_hours=settings.MAX_EXPIRATION_HOURS,
            create_limit=settings.CREATE_RATE_LIMIT,
            create_window_ms=settings.CREATE_RATE_WINDOW_MS,
            report_limit=settings.REPORT_RATE_LIMIT,
            report_window_ms=settings.REPORT_RATE_WINDOW_MS,
            classifier_timeout=settings.CLASSIFIER_TIMEOUT_SECONDS,
        )

    def clamp_expiration(self, hours: Optional[int]) -> int:
        if hours is None:
            hours = self.default_expiration_hours
        return max(self.min_expiration_hours, min(self.max_expiration_hours, hours))


class MessageLifecycleService:
    def __init__(
        self,
        messages: MessageStore,
        moderation: ModerationEngine,
        reports: ModerationStore,
        mood_history: MoodHistoryStore,
        mood_classifier: MoodClassifier,
        rate_limiter: RateLimiter,
        *,
        policy: Optional[LifecyclePolicy] = None,
        scheduler: Optional[TaskScheduler] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.messages = messages
        self.moderation = moderation
        self.reports = reports
        self.mood_history = mood_history
        self.mood_classifier = mood_classifier
        self.rate_limiter = rate_limiter
        self.policy = policy or LifecyclePolicy()
        self.scheduler = scheduler or TaskScheduler("moderation")
        self._clock = clock

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _validate_content(self, content: str) -> str:
        trimmed = (content or "").strip()
        if not trimmed:
            raise InvalidContent("Message content must not be empty")
        if len(trimmed) > self.policy.max_content_length:
            raise InvalidContent(
                f"Message content must be at most {self.policy.max_content_length} characters"
            )
        return trimmed

    async def _require_interactable(self, message_id: UUID, now: datetime) -> Message:
        message = await self.messages.get(message_id)
        if message is None:
            raise NotFound()
        if message.is_expired(now):
            raise Expired()
        if message.moderation_status != ModerationStatusEnum.APPROVED:
            raise NotApproved()
        return message

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_message(
        self,
        content: str,
        location: GeoPoint,
        author_id: Optional[UUID] = None,
        is_anonymous: bool = True,
        is_ephemeral: bool = True,
        expiration_hours: Optional[int] = None,
    ) -> Message:
        """Validate, fingerprint and persist a new whisper.

        *author_id* is the authenticated caller.  It is rate limited and
        recorded in mood history, but only stored on the message when
        ``is_anonymous`` is false.
        """

        now = self._clock()

        if author_id is not None:
            decision = self.rate_limiter.hit(
                str(author_id),
                ACTION_CREATE,
                self.policy.create_limit,
                self.policy.create_window_ms,
            )
            if not decision.allowed:
                raise RateLimited(
                    "Too many messages. Please wait before posting again.",
                    retry_after_seconds=decision.retry_after_seconds,
                )

        text = self._validate_content(content)
        validate_location(location)

        outcome = await classify_mood(self.mood_classifier, text, self.policy.classifier_timeout)
        if outcome.used_fallback:
            logger.info("Using neutral mood for new message (%s)", outcome.degraded.value)

        expires_at = None
        if is_ephemeral:
            expires_at = now + timedelta(hours=self.policy.clamp_expiration(expiration_hours))

        message = Message(
            content=text,
            location=location,
            mood_vector=outcome.mood,
            author_id=None if is_anonymous else author_id,
            is_anonymous=is_anonymous,
            is_ephemeral=is_ephemeral,
            expires_at=expires_at,
            moderation_status=ModerationStatusEnum.PENDING,
            created_at=now,
            updated_at=now,
        )
        await self.messages.insert(message)

        if author_id is not None:
            try:
                await self.mood_history.record(
                    MoodHistoryEntry(
                        user_id=author_id,
                        mood=outcome.mood,
                        message_id=message.message_id,
                        recorded_at=now,
                    )
                )
            except Exception as exc:  # noqa: BLE001 – history is best effort
                logger.warning("Could not record mood history for %s: %s", author_id, exc)

        self.scheduler.spawn(self.moderation.moderate_message(message.message_id))
        logger.debug("Created message %s (ephemeral=%s)", message.message_id, is_ephemeral)
        return message

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_message(self, message_id: UUID, viewer_id: Optional[UUID] = None) -> Message:
        """Return a visible message; authors can always see their own."""

        message = await self.messages.get(message_id)
        if message is None:
            raise NotFound()
        if viewer_id is not None and message.author_id == viewer_id:
            return message
        if message.is_expired(self._clock()):
            raise Expired()
        if message.moderation_status != ModerationStatusEnum.APPROVED:
            raise NotFound()
        return message

    async def list_messages_by_author(self, author_id: UUID, limit: int = 50) -> List[Message]:
        return await self.messages.list_by_author(author_id, limit)

    # ------------------------------------------------------------------
    # Interactions
    # ------------------------------------------------------------------

    async def add_reaction(
        self, message_id: UUID, user_id: UUID, reaction: ReactionKindEnum
    ) -> Message:
        now = self._clock()
        await self._require_interactable(message_id, now)

        updated = await self.messages.add_reaction(message_id, user_id, reaction, now=now)
        if updated is None:
            # Lost a race with expiry, removal or a status change.
            await self._require_interactable(message_id, now)
            raise NotFound()
        return updated

    async def mark_discovered(self, message_id: UUID, user_id: UUID) -> Message:
        """Record that *user_id* found the message.  Repeat calls are no-ops."""

        now = self._clock()
        await self._require_interactable(message_id, now)

        updated = await self.messages.add_discovery(message_id, user_id, now=now)
        if updated is None:
            await self._require_interactable(message_id, now)
            raise NotFound()
        return updated

    async def report_message(
        self,
        message_id: UUID,
        reporter_id: UUID,
        reason: ReportReasonEnum,
        description: Optional[str] = None,
    ) -> Report:
        now = self._clock()
        decision = self.rate_limiter.hit(
            str(reporter_id),
            ACTION_REPORT,
            self.policy.report_limit,
            self.policy.report_window_ms,
        )
        if not decision.allowed:
            raise TooManyReports(retry_after_seconds=decision.retry_after_seconds)

        message = await self.messages.get(message_id)
        if message is None:
            raise NotFound()
        if message.is_expired(now):
            raise Expired()

        report = Report(
            message_id=message_id,
            reporter_id=reporter_id,
            reason=reason,
            description=description,
            created_at=now,
        )
        await self.reports.add_report(report)
        logger.info("Message %s reported by %s (%s)", message_id, reporter_id, reason.value)

        self.scheduler.spawn(self.moderation.escalate_report(message_id))
        return report
