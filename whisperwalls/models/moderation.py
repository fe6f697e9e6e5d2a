from __future__ import annotations

"""Pydantic models related to content moderation: verdicts, the human review
queue and user reports."""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from whisperwalls.models.common import MessageID, RecordID, ReportID, UserID


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class ModerationCategoryEnum(str, Enum):
    """Policy categories reported by the content classifier."""

    HATE = "hate"
    HATE_THREATENING = "hate/threatening"
    HARASSMENT = "harassment"
    HARASSMENT_THREATENING = "harassment/threatening"
    SELF_HARM = "self-harm"
    SELF_HARM_INTENT = "self-harm/intent"
    SELF_HARM_INSTRUCTIONS = "self-harm/instructions"
    SEXUAL = "sexual"
    SEXUAL_MINORS = "sexual/minors"
    VIOLENCE = "violence"
    VIOLENCE_GRAPHIC = "violence/graphic"


class VerdictSourceEnum(str, Enum):
    CLASSIFIER = "classifier"
    KEYWORD_FILTER = "keyword_filter"


class PriorityEnum(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Higher is more urgent."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    PriorityEnum.LOW: 0,
    PriorityEnum.MEDIUM: 1,
    PriorityEnum.HIGH: 2,
    PriorityEnum.CRITICAL: 3,
}


class QueueStatusEnum(str, Enum):
    """Lifecycle states for an entry in the human review queue."""

    PENDING = "pending"  # Awaiting a reviewer
    REVIEWING = "reviewing"
    APPROVED = "approved"
    REJECTED = "rejected"


class QueueTriggerEnum(str, Enum):
    """What put a message in the queue."""

    CLASSIFIER = "classifier"
    REPORT = "report"
    RERUN = "rerun"


class ReportReasonEnum(str, Enum):
    """Standardized reasons a user can give when reporting a whisper."""

    INAPPROPRIATE = "inappropriate"
    SPAM = "spam"
    HARASSMENT = "harassment"
    HATE_SPEECH = "hate-speech"
    VIOLENCE = "violence"
    OTHER = "other"


class ReportStatusEnum(str, Enum):
    PENDING = "pending"
    REVIEWED = "reviewed"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


class ReviewDecisionEnum(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


class TimeframeEnum(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


# ---------------------------------------------------------------------------
# Verdict
# ---------------------------------------------------------------------------
def _all_categories(value):
    return {c: value for c in ModerationCategoryEnum}


class Verdict(BaseModel):
    """Strongly typed classifier output."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    flagged: bool = False
    categories: Dict[ModerationCategoryEnum, bool] = Field(
        default_factory=lambda: _all_categories(False)
    )
    scores: Dict[ModerationCategoryEnum, float] = Field(
        default_factory=lambda: _all_categories(0.0)
    )
    reason: Optional[str] = None
    source: VerdictSourceEnum = VerdictSourceEnum.CLASSIFIER

    @classmethod
    def from_payload(
        cls,
        raw: dict,
        *,
        source: VerdictSourceEnum = VerdictSourceEnum.CLASSIFIER,
    ) -> "Verdict":
        """Wrap a loosely shaped ``{flagged, categories, category_scores}`` dict.

        Unknown category names are dropped; missing ones default to
        ``False`` / ``0.0``.
        """

        raw_categories = raw.get("categories") or {}
        raw_scores = raw.get("category_scores") or raw.get("scores") or {}

        categories = {c: bool(raw_categories.get(c.value, False)) for c in ModerationCategoryEnum}
        scores: Dict[ModerationCategoryEnum, float] = {}
        for c in ModerationCategoryEnum:
            try:
                scores[c] = min(1.0, max(0.0, float(raw_scores.get(c.value, 0.0))))
            except (TypeError, ValueError):
                scores[c] = 0.0

        flagged = bool(raw.get("flagged", any(categories.values())))
        return cls(
            flagged=flagged,
            categories=categories,
            scores=scores,
            reason=describe_flags(categories) if flagged else None,
            source=source,
        )

    def is_flagged(self, category: ModerationCategoryEnum) -> bool:
        return self.categories.get(category, False)

    def score(self, category: ModerationCategoryEnum) -> float:
        return self.scores.get(category, 0.0)


def describe_flags(categories: Dict[ModerationCategoryEnum, bool]) -> str:
    """Human readable summary of flagged categories."""

    flagged = [c.value for c, hit in categories.items() if hit]
    if not flagged:
        return "Content flagged for review"
    return f"Content flagged for: {', '.join(flagged)}"


# ---------------------------------------------------------------------------
# Review queue
# ---------------------------------------------------------------------------
class ModerationRecord(BaseModel):
    """One entry in the human review queue."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    record_id: RecordID = Field(default_factory=uuid4)
    message_id: MessageID
    verdict: Verdict
    priority: PriorityEnum
    queue_status: QueueStatusEnum = QueueStatusEnum.PENDING
    trigger: QueueTriggerEnum = QueueTriggerEnum.CLASSIFIER
    reviewer_id: Optional[UserID] = None
    review_notes: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------
class Report(BaseModel):
    """A user's complaint about a whisper."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    report_id: ReportID = Field(default_factory=uuid4)
    message_id: MessageID
    reporter_id: UserID
    reason: ReportReasonEnum
    description: Optional[str] = Field(default=None, max_length=500)
    status: ReportStatusEnum = ReportStatusEnum.PENDING
    reviewed_by: Optional[UserID] = None
    reviewed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ReportCreateRequest(BaseModel):
    """Payload viewers submit when reporting a whisper."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    message_id: MessageID
    reason: ReportReasonEnum
    description: Optional[str] = Field(
        default=None,
        max_length=500,
        description="Optional free-form context supplied by the reporter.",
    )


class ReviewRequest(BaseModel):
    """Payload moderators send when deciding on a message."""

    decision: ReviewDecisionEnum
    notes: Optional[str] = Field(default=None, max_length=1000)


class ModerationStats(BaseModel):
    timeframe: TimeframeEnum
    total: int = 0
    approved: int = 0
    pending: int = 0
    rejected: int = 0


__all__ = [
    "ModerationCategoryEnum",
    "VerdictSourceEnum",
    "PriorityEnum",
    "QueueStatusEnum",
    "QueueTriggerEnum",
    "ReportReasonEnum",
    "ReportStatusEnum",
    "ReviewDecisionEnum",
    "TimeframeEnum",
    "Verdict",
    "describe_flags",
    "ModerationRecord",
    "Report",
    "ReportCreateRequest",
    "ReviewRequest",
    "ModerationStats",
]
