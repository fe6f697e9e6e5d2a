from __future__ import annotations

"""Automatic classification and the human review workflow.

Per-message state machine::

    pending --(classify)--> approved
            \\--(classify, flagged)--> pending + queued record --(review)--> approved | rejected
            \\--(classify, critical)--> rejected

``approved`` and ``rejected`` only change again through :meth:`review_message`
or an operator :meth:`rerun_classification`.  Automatic transitions are
compare-and-set against ``pending`` so a late classifier result can never
overwrite a human decision.
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional
from uuid import UUID

from opentelemetry import trace

from whisperwalls.core.errors import Conflict, NotFound
from whisperwalls.db.message_store import MessageStore
from whisperwalls.db.moderation_store import ModerationStore
from whisperwalls.external_services.content_classifier import (
    ClassificationOutcome,
    ContentClassifier,
    KeywordContentFilter,
)
from whisperwalls.metrics import (
    CLASSIFIER_CALL_DURATION_SECONDS,
    CLASSIFIER_FALLBACK_TOTAL,
    MODERATION_DECISIONS_TOTAL,
)
from whisperwalls.models.common import DegradedReasonEnum
from whisperwalls.models.message import Message, ModerationStatusEnum
from whisperwalls.models.moderation import (
    ModerationCategoryEnum as Cat,
    ModerationRecord,
    ModerationStats,
    PriorityEnum,
    QueueStatusEnum,
    QueueTriggerEnum,
    Report,
    ReportStatusEnum,
    ReviewDecisionEnum,
    TimeframeEnum,
    Verdict,
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

SEVERE_CATEGORIES = frozenset(
    {
        Cat.HATE_THREATENING,
        Cat.HARASSMENT_THREATENING,
        Cat.SELF_HARM_INTENT,
        Cat.VIOLENCE_GRAPHIC,
        Cat.SEXUAL_MINORS,
    }
)
HIGH_CATEGORIES = frozenset({Cat.HATE, Cat.HARASSMENT, Cat.VIOLENCE})
MEDIUM_CATEGORIES = frozenset({Cat.SEXUAL, Cat.SELF_HARM})

HIGH_SCORE_THRESHOLD = 0.7
MEDIUM_SCORE_THRESHOLD = 0.5

_TIMEFRAME_DAYS = {
    TimeframeEnum.DAY: 1,
    TimeframeEnum.WEEK: 7,
    TimeframeEnum.MONTH: 30,
}


class ModerationDecisionEnum(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"
    QUEUED = "queued"
    # Status had already moved on (reviewed or re-run) before the verdict landed
    SKIPPED = "skipped"


def compute_priority(verdict: Verdict) -> PriorityEnum:
    """Deterministic severity table over a verdict."""

    if any(verdict.is_flagged(c) for c in SEVERE_CATEGORIES):
        return PriorityEnum.CRITICAL

    top_score = max(verdict.scores.values(), default=0.0)
    if any(verdict.is_flagged(c) for c in HIGH_CATEGORIES) or top_score > HIGH_SCORE_THRESHOLD:
        return PriorityEnum.HIGH
    if any(verdict.is_flagged(c) for c in MEDIUM_CATEGORIES) or top_score > MEDIUM_SCORE_THRESHOLD:
        return PriorityEnum.MEDIUM
    return PriorityEnum.LOW


class ModerationEngine:
    def __init__(
        self,
        messages: MessageStore,
        queue: ModerationStore,
        classifier: ContentClassifier,
        fallback: KeywordContentFilter,
        *,
        timeout: float = 8.0,
    ):
        self.messages = messages
        self.queue = queue
        self.classifier = classifier
        self.fallback = fallback
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    async def _fallback(self, content: str, reason: DegradedReasonEnum) -> ClassificationOutcome:
        CLASSIFIER_FALLBACK_TOTAL.labels(classifier=self.classifier.name, reason=reason.value).inc()
        verdict = await self.fallback.moderate(content)
        return ClassificationOutcome(verdict=verdict, degraded=reason)

    async def classify(self, content: str) -> ClassificationOutcome:
        """Run the content classifier, degrading to the keyword filter.

        Never raises.  ``outcome.degraded`` tells whether the fallback ran.
        """

        if self.classifier is self.fallback:
            return ClassificationOutcome(verdict=await self.fallback.moderate(content))
        if not self.classifier.configured:
            return await self._fallback(content, DegradedReasonEnum.UNCONFIGURED)

        start = time.perf_counter()
        with tracer.start_as_current_span("moderation.classify") as span:
            span.set_attribute("classifier", self.classifier.name)
            try:
                verdict = await asyncio.wait_for(self.classifier.moderate(content), self.timeout)
            except asyncio.TimeoutError:
                logger.warning("Content classifier timed out after %.1fs; using keyword filter", self.timeout)
                return await self._fallback(content, DegradedReasonEnum.TIMEOUT)
            except Exception as exc:  # noqa: BLE001 – moderation must never fail the caller
                logger.warning("Content classifier failed (%s); using keyword filter", exc)
                return await self._fallback(content, DegradedReasonEnum.ERROR)
            finally:
                duration = time.perf_counter() - start
                CLASSIFIER_CALL_DURATION_SECONDS.labels(classifier=self.classifier.name).observe(duration)
                span.set_attribute("duration_ms", int(duration * 1000))

        return ClassificationOutcome(verdict=verdict)

    def priority(self, verdict: Verdict) -> PriorityEnum:
        return compute_priority(verdict)

    # ------------------------------------------------------------------
    # Automatic decisions
    # ------------------------------------------------------------------

    async def apply_decision(
        self,
        message_id: UUID,
        priority: PriorityEnum,
        verdict: Verdict,
        *,
        trigger: QueueTriggerEnum = QueueTriggerEnum.CLASSIFIER,
    ) -> ModerationDecisionEnum:
        if priority == PriorityEnum.CRITICAL:
            updated = await self.messages.update_moderation_status(
                message_id, ModerationStatusEnum.REJECTED, expected=ModerationStatusEnum.PENDING
            )
            if updated is None:
                return ModerationDecisionEnum.SKIPPED
            logger.info("Message %s auto-rejected: %s", message_id, verdict.reason)
            return ModerationDecisionEnum.REJECTED

        if verdict.flagged:
            await self.queue.enqueue(
                ModerationRecord(
                    message_id=message_id,
                    verdict=verdict,
                    priority=priority,
                    trigger=trigger,
                )
            )
            # A reviewer may have decided while the classifier was running;
            # their resolve pass can precede this enqueue, so close it here.
            current = await self.messages.get(message_id)
            if current is None or current.moderation_status != ModerationStatusEnum.PENDING:
                outcome = (
                    QueueStatusEnum.APPROVED
                    if current is not None and current.moderation_status == ModerationStatusEnum.APPROVED
                    else QueueStatusEnum.REJECTED
                )
                await self.queue.resolve_for_message(
                    message_id, outcome, None, "Decided before classification finished"
                )
                return ModerationDecisionEnum.SKIPPED
            logger.info("Message %s queued for human review with priority %s", message_id, priority.value)
            return ModerationDecisionEnum.QUEUED

        updated = await self.messages.update_moderation_status(
            message_id, ModerationStatusEnum.APPROVED, expected=ModerationStatusEnum.PENDING
        )
        if updated is None:
            return ModerationDecisionEnum.SKIPPED
        return ModerationDecisionEnum.APPROVED

    async def _moderate(
        self, message_id: UUID, trigger: QueueTriggerEnum
    ) -> Optional[ModerationDecisionEnum]:
        message = await self.messages.get(message_id)
        if message is None:
            logger.info("Skipping moderation of %s: message no longer exists", message_id)
            return None
        if message.moderation_status != ModerationStatusEnum.PENDING:
            return ModerationDecisionEnum.SKIPPED

        outcome = await self.classify(message.content)
        priority = self.priority(outcome.verdict)
        decision = await self.apply_decision(message_id, priority, outcome.verdict, trigger=trigger)
        MODERATION_DECISIONS_TOTAL.labels(outcome=decision.value).inc()
        return decision

    async def moderate_message(self, message_id: UUID) -> Optional[ModerationDecisionEnum]:
        """Background job run after creation.

        Any failure is logged and swallowed; the message simply stays
        ``pending`` until a later run or a human review.
        """

        try:
            return await self._moderate(message_id, QueueTriggerEnum.CLASSIFIER)
        except Exception as exc:  # noqa: BLE001
            logger.error("Moderation of message %s failed: %s", message_id, exc, exc_info=True)
            return None

    async def escalate_report(self, message_id: UUID) -> Optional[ModerationDecisionEnum]:
        """Re-classify a reported message and queue it at no less than ``high``.

        The message keeps its current status while the record waits for a
        reviewer, except that a critical verdict rejects it outright.
        """

        try:
            message = await self.messages.get(message_id)
            if message is None or message.moderation_status == ModerationStatusEnum.REJECTED:
                return ModerationDecisionEnum.SKIPPED

            outcome = await self.classify(message.content)
            priority = self.priority(outcome.verdict)
            if priority == PriorityEnum.CRITICAL:
                updated = await self.messages.update_moderation_status(
                    message_id, ModerationStatusEnum.REJECTED, expected=message.moderation_status
                )
                decision = ModerationDecisionEnum.REJECTED if updated else ModerationDecisionEnum.SKIPPED
            else:
                if priority.rank < PriorityEnum.HIGH.rank:
                    priority = PriorityEnum.HIGH
                await self.queue.enqueue(
                    ModerationRecord(
                        message_id=message_id,
                        verdict=outcome.verdict,
                        priority=priority,
                        trigger=QueueTriggerEnum.REPORT,
                    )
                )
                decision = ModerationDecisionEnum.QUEUED
            MODERATION_DECISIONS_TOTAL.labels(outcome=decision.value).inc()
            return decision
        except Exception as exc:  # noqa: BLE001
            logger.error("Report escalation for %s failed: %s", message_id, exc, exc_info=True)
            return None

    # ------------------------------------------------------------------
    # Human / operator paths
    # ------------------------------------------------------------------

    async def review_message(
        self,
        message_id: UUID,
        reviewer_id: UUID,
        decision: ReviewDecisionEnum,
        notes: Optional[str] = None,
    ) -> Message:
        approve = decision == ReviewDecisionEnum.APPROVE
        status = ModerationStatusEnum.APPROVED if approve else ModerationStatusEnum.REJECTED

        updated = await self.messages.update_moderation_status(message_id, status)
        if updated is None:
            raise NotFound()

        await self.queue.resolve_for_message(
            message_id,
            QueueStatusEnum.APPROVED if approve else QueueStatusEnum.REJECTED,
            reviewer_id,
            notes,
        )
        await self.queue.resolve_reports(
            message_id,
            ReportStatusEnum.DISMISSED if approve else ReportStatusEnum.RESOLVED,
            reviewer_id,
        )
        MODERATION_DECISIONS_TOTAL.labels(outcome=f"human_{status.value}").inc()
        logger.info("Message %s %s by reviewer %s: %s", message_id, status.value, reviewer_id, notes or "No notes")
        return updated

    async def rerun_classification(self, message_id: UUID) -> Message:
        """Operator re-run: back to ``pending``, then classify again inline."""

        reset = await self.messages.update_moderation_status(message_id, ModerationStatusEnum.PENDING)
        if reset is None:
            raise NotFound()

        decision = await self._moderate(message_id, QueueTriggerEnum.RERUN)
        logger.info("Re-ran classification for %s: %s", message_id, decision.value if decision else "gone")

        message = await self.messages.get(message_id)
        if message is None:
            raise NotFound()
        return message

    async def get_queue(
        self,
        status: QueueStatusEnum = QueueStatusEnum.PENDING,
        limit: int = 50,
    ) -> List[ModerationRecord]:
        return await self.queue.list_queue(status, limit)

    async def get_reports(
        self,
        message_id: Optional[UUID] = None,
        status: Optional[ReportStatusEnum] = None,
    ) -> List[Report]:
        return await self.queue.list_reports(message_id, status)

    async def start_review(self, record_id: UUID, reviewer_id: UUID) -> ModerationRecord:
        record = await self.queue.mark_reviewing(record_id, reviewer_id)
        if record is not None:
            return record
        if await self.queue.get_record(record_id) is None:
            raise NotFound("Moderation record not found.")
        raise Conflict("Moderation record is already claimed or resolved.")

    async def get_stats(
        self,
        timeframe: TimeframeEnum = TimeframeEnum.DAY,
        now: Optional[datetime] = None,
    ) -> ModerationStats:
        now = now or datetime.now(timezone.utc)
        since = now - timedelta(days=_TIMEFRAME_DAYS[timeframe])
        counts = await self.messages.count_by_status(since)
        return ModerationStats(
            timeframe=timeframe,
            total=sum(counts.values()),
            approved=counts.get(ModerationStatusEnum.APPROVED, 0),
            pending=counts.get(ModerationStatusEnum.PENDING, 0),
            rejected=counts.get(ModerationStatusEnum.REJECTED, 0),
        )
