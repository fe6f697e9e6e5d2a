from __future__ import annotations

"""Persistence for the human review queue and user reports."""

import abc
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID

from astrapy.constants import ReturnDocument
from astrapy.exceptions import DataAPIException

from whisperwalls.core.errors import ServiceUnavailable
from whisperwalls.db.astra_client import AstraDBCollection, get_table
from whisperwalls.models.moderation import (
    ModerationRecord,
    PriorityEnum,
    QueueStatusEnum,
    QueueTriggerEnum,
    Report,
    ReportReasonEnum,
    ReportStatusEnum,
    Verdict,
)

logger = logging.getLogger(__name__)

__all__ = ["ModerationStore", "InMemoryModerationStore", "AstraModerationStore"]

_OPEN_QUEUE_STATES = (QueueStatusEnum.PENDING, QueueStatusEnum.REVIEWING)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _queue_order(record: ModerationRecord):
    # Most urgent first, oldest first within a priority.
    return (-record.priority.rank, record.created_at)


class ModerationStore(abc.ABC):
    @abc.abstractmethod
    async def enqueue(self, record: ModerationRecord) -> ModerationRecord: ...

    @abc.abstractmethod
    async def list_queue(
        self,
        status: QueueStatusEnum = QueueStatusEnum.PENDING,
        limit: int = 50,
    ) -> List[ModerationRecord]: ...

    @abc.abstractmethod
    async def get_record(self, record_id: UUID) -> Optional[ModerationRecord]: ...

    @abc.abstractmethod
    async def mark_reviewing(
        self, record_id: UUID, reviewer_id: UUID
    ) -> Optional[ModerationRecord]:
        """Claim a pending record; ``None`` if it is missing or already claimed."""

    @abc.abstractmethod
    async def resolve_for_message(
        self,
        message_id: UUID,
        status: QueueStatusEnum,
        reviewer_id: Optional[UUID],
        notes: Optional[str] = None,
    ) -> int:
        """Close every open record for *message_id*; returns how many changed."""

    @abc.abstractmethod
    async def add_report(self, report: Report) -> Report: ...

    @abc.abstractmethod
    async def list_reports(
        self,
        message_id: Optional[UUID] = None,
        status: Optional[ReportStatusEnum] = None,
    ) -> List[Report]: ...

    @abc.abstractmethod
    async def resolve_reports(
        self,
        message_id: UUID,
        status: ReportStatusEnum,
        reviewer_id: UUID,
    ) -> int: ...


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


class InMemoryModerationStore(ModerationStore):
    def __init__(self):
        self._lock = threading.RLock()
        self._records: Dict[UUID, ModerationRecord] = {}
        self._reports: Dict[UUID, Report] = {}

    async def enqueue(self, record: ModerationRecord) -> ModerationRecord:
        with self._lock:
            self._records[record.record_id] = record.model_copy(deep=True)
        return record

    async def list_queue(
        self,
        status: QueueStatusEnum = QueueStatusEnum.PENDING,
        limit: int = 50,
    ) -> List[ModerationRecord]:
        with self._lock:
            matching = [r.model_copy(deep=True) for r in self._records.values() if r.queue_status == status]
        matching.sort(key=_queue_order)
        return matching[:limit]

    async def get_record(self, record_id: UUID) -> Optional[ModerationRecord]:
        with self._lock:
            record = self._records.get(record_id)
            return record.model_copy(deep=True) if record else None

    async def mark_reviewing(
        self, record_id: UUID, reviewer_id: UUID
    ) -> Optional[ModerationRecord]:
        with self._lock:
            record = self._records.get(record_id)
            if record is None or record.queue_status != QueueStatusEnum.PENDING:
                return None
            record.queue_status = QueueStatusEnum.REVIEWING
            record.reviewer_id = reviewer_id
            record.updated_at = _utcnow()
            return record.model_copy(deep=True)

    async def resolve_for_message(
        self,
        message_id: UUID,
        status: QueueStatusEnum,
        reviewer_id: Optional[UUID],
        notes: Optional[str] = None,
    ) -> int:
        now = _utcnow()
        changed = 0
        with self._lock:
            for record in self._records.values():
                if record.message_id != message_id or record.queue_status not in _OPEN_QUEUE_STATES:
                    continue
                record.queue_status = status
                record.reviewer_id = reviewer_id
                record.review_notes = notes
                record.updated_at = now
                changed += 1
        return changed

    async def add_report(self, report: Report) -> Report:
        with self._lock:
            self._reports[report.report_id] = report.model_copy(deep=True)
        return report

    async def list_reports(
        self,
        message_id: Optional[UUID] = None,
        status: Optional[ReportStatusEnum] = None,
    ) -> List[Report]:
        with self._lock:
            reports = [
                r.model_copy(deep=True)
                for r in self._reports.values()
                if (message_id is None or r.message_id == message_id)
                and (status is None or r.status == status)
            ]
        reports.sort(key=lambda r: r.created_at, reverse=True)
        return reports

    async def resolve_reports(
        self,
        message_id: UUID,
        status: ReportStatusEnum,
        reviewer_id: UUID,
    ) -> int:
        now = _utcnow()
        changed = 0
        with self._lock:
            for report in self._reports.values():
                if report.message_id != message_id or report.status != ReportStatusEnum.PENDING:
                    continue
                report.status = status
                report.reviewed_by = reviewer_id
                report.reviewed_at = now
                changed += 1
        return changed


# ---------------------------------------------------------------------------
# Astra Data API backend
# ---------------------------------------------------------------------------


def _aware(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _record_to_document(record: ModerationRecord) -> Dict[str, Any]:
    return {
        "_id": str(record.record_id),
        "message_id": str(record.message_id),
        "verdict": record.verdict.model_dump(mode="json"),
        "priority": record.priority.value,
        "priority_rank": record.priority.rank,
        "queue_status": record.queue_status.value,
        "trigger": record.trigger.value,
        "reviewer_id": str(record.reviewer_id) if record.reviewer_id else None,
        "review_notes": record.review_notes,
        "created_at": record.created_at,
        "updated_at": record.updated_at,
    }


def _to_record_model(doc: Dict[str, Any]) -> ModerationRecord:
    return ModerationRecord(
        record_id=UUID(str(doc["_id"])),
        message_id=UUID(doc["message_id"]),
        verdict=Verdict.model_validate(doc.get("verdict") or {}),
        priority=PriorityEnum(doc.get("priority", "low")),
        queue_status=QueueStatusEnum(doc.get("queue_status", "pending")),
        trigger=QueueTriggerEnum(doc.get("trigger", "classifier")),
        reviewer_id=UUID(doc["reviewer_id"]) if doc.get("reviewer_id") else None,
        review_notes=doc.get("review_notes"),
        created_at=_aware(doc.get("created_at")) or _utcnow(),
        updated_at=_aware(doc.get("updated_at")) or _utcnow(),
    )


def _report_to_document(report: Report) -> Dict[str, Any]:
    return {
        "_id": str(report.report_id),
        "message_id": str(report.message_id),
        "reporter_id": str(report.reporter_id),
        "reason": report.reason.value,
        "description": report.description,
        "status": report.status.value,
        "reviewed_by": None,
        "reviewed_at": None,
        "created_at": report.created_at,
    }


def _to_report_model(doc: Dict[str, Any]) -> Report:
    return Report(
        report_id=UUID(str(doc["_id"])),
        message_id=UUID(doc["message_id"]),
        reporter_id=UUID(doc["reporter_id"]),
        reason=ReportReasonEnum(doc.get("reason", "other")),
        description=doc.get("description"),
        status=ReportStatusEnum(doc.get("status", "pending")),
        reviewed_by=UUID(doc["reviewed_by"]) if doc.get("reviewed_by") else None,
        reviewed_at=_aware(doc.get("reviewed_at")),
        created_at=_aware(doc.get("created_at")) or _utcnow(),
    )


class AstraModerationStore(ModerationStore):
    def __init__(
        self,
        queue_collection: str,
        reports_collection: str,
        *,
        queue_table: Optional[AstraDBCollection] = None,
        reports_table: Optional[AstraDBCollection] = None,
    ):
        self._queue_name = queue_collection
        self._reports_name = reports_collection
        self._queue = queue_table
        self._reports = reports_table

    async def _queue_table(self) -> AstraDBCollection:
        if self._queue is None:
            self._queue = await get_table(self._queue_name)
        return self._queue

    async def _reports_table(self) -> AstraDBCollection:
        if self._reports is None:
            self._reports = await get_table(self._reports_name)
        return self._reports

    async def enqueue(self, record: ModerationRecord) -> ModerationRecord:
        table = await self._queue_table()
        try:
            await table.insert_one(document=_record_to_document(record))
        except DataAPIException as exc:
            logger.error("Failed to enqueue record for message %s: %s", record.message_id, exc)
            raise ServiceUnavailable() from exc
        return record

    async def list_queue(
        self,
        status: QueueStatusEnum = QueueStatusEnum.PENDING,
        limit: int = 50,
    ) -> List[ModerationRecord]:
        table = await self._queue_table()
        try:
            cursor = table.find(
                filter={"queue_status": status.value},
                sort={"priority_rank": -1, "created_at": 1},
                limit=limit,
            )
            docs = await cursor.to_list()
        except DataAPIException as exc:
            logger.error("Failed to list moderation queue: %s", exc)
            raise ServiceUnavailable() from exc
        return [_to_record_model(d) for d in docs]

    async def get_record(self, record_id: UUID) -> Optional[ModerationRecord]:
        table = await self._queue_table()
        try:
            doc = await table.find_one(filter={"_id": str(record_id)})
        except DataAPIException as exc:
            logger.error("Failed to load moderation record %s: %s", record_id, exc)
            raise ServiceUnavailable() from exc
        return _to_record_model(doc) if doc else None

    async def mark_reviewing(
        self, record_id: UUID, reviewer_id: UUID
    ) -> Optional[ModerationRecord]:
        table = await self._queue_table()
        try:
            doc = await table.find_one_and_update(
                {"_id": str(record_id), "queue_status": QueueStatusEnum.PENDING.value},
                {
                    "$set": {
                        "queue_status": QueueStatusEnum.REVIEWING.value,
                        "reviewer_id": str(reviewer_id),
                        "updated_at": _utcnow(),
                    }
                },
                return_document=ReturnDocument.AFTER,
            )
        except DataAPIException as exc:
            logger.error("Failed to claim moderation record %s: %s", record_id, exc)
            raise ServiceUnavailable() from exc
        return _to_record_model(doc) if doc else None

    async def resolve_for_message(
        self,
        message_id: UUID,
        status: QueueStatusEnum,
        reviewer_id: Optional[UUID],
        notes: Optional[str] = None,
    ) -> int:
        table = await self._queue_table()
        try:
            result = await table.update_many(
                {
                    "message_id": str(message_id),
                    "queue_status": {"$in": [s.value for s in _OPEN_QUEUE_STATES]},
                },
                {
                    "$set": {
                        "queue_status": status.value,
                        "reviewer_id": str(reviewer_id) if reviewer_id else None,
                        "review_notes": notes,
                        "updated_at": _utcnow(),
                    }
                },
            )
        except DataAPIException as exc:
            logger.error("Failed to resolve queue records for %s: %s", message_id, exc)
            raise ServiceUnavailable() from exc
        return int(result.update_info.get("nModified", 0))

    async def add_report(self, report: Report) -> Report:
        table = await self._reports_table()
        try:
            await table.insert_one(document=_report_to_document(report))
        except DataAPIException as exc:
            logger.error("Failed to save report for message %s: %s", report.message_id, exc)
            raise ServiceUnavailable() from exc
        return report

    async def list_reports(
        self,
        message_id: Optional[UUID] = None,
        status: Optional[ReportStatusEnum] = None,
    ) -> List[Report]:
        query_filter: Dict[str, Any] = {}
        if message_id is not None:
            query_filter["message_id"] = str(message_id)
        if status is not None:
            query_filter["status"] = status.value

        table = await self._reports_table()
        try:
            cursor = table.find(filter=query_filter, sort={"created_at": -1})
            docs = await cursor.to_list()
        except DataAPIException as exc:
            logger.error("Failed to list reports: %s", exc)
            raise ServiceUnavailable() from exc
        return [_to_report_model(d) for d in docs]

    async def resolve_reports(
        self,
        message_id: UUID,
        status: ReportStatusEnum,
        reviewer_id: UUID,
    ) -> int:
        table = await self._reports_table()
        try:
            result = await table.update_many(
                {"message_id": str(message_id), "status": ReportStatusEnum.PENDING.value},
                {
                    "$set": {
                        "status": status.value,
                        "reviewed_by": str(reviewer_id),
                        "reviewed_at": _utcnow(),
                    }
                },
            )
        except DataAPIException as exc:
            logger.error("Failed to resolve reports for %s: %s", message_id, exc)
            raise ServiceUnavailable() from exc
        return int(result.update_info.get("nModified", 0))
