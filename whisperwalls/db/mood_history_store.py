from __future__ import annotations

"""Per-user emotional timeline.

Entries are stored one document per data point so retention trimming is a
single range delete instead of an array rewrite.
"""

import abc
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID

from astrapy.exceptions import DataAPIException

from whisperwalls.core.errors import ServiceUnavailable
from whisperwalls.db.astra_client import AstraDBCollection, get_table
from whisperwalls.models.mood import MoodHistoryEntry, MoodVector

logger = logging.getLogger(__name__)

__all__ = ["MoodHistoryStore", "InMemoryMoodHistoryStore", "AstraMoodHistoryStore"]


class MoodHistoryStore(abc.ABC):
    @abc.abstractmethod
    async def record(self, entry: MoodHistoryEntry) -> MoodHistoryEntry: ...

    @abc.abstractmethod
    async def list_for_user(self, user_id: UUID, limit: int = 100) -> List[MoodHistoryEntry]:
        """Newest first."""

    @abc.abstractmethod
    async def trim_before(self, cutoff: datetime) -> int:
        """Delete entries recorded before *cutoff*; returns how many went."""


class InMemoryMoodHistoryStore(MoodHistoryStore):
    def __init__(self):
        self._lock = threading.Lock()
        self._entries: List[MoodHistoryEntry] = []

    async def record(self, entry: MoodHistoryEntry) -> MoodHistoryEntry:
        with self._lock:
            self._entries.append(entry)
        return entry

    async def list_for_user(self, user_id: UUID, limit: int = 100) -> List[MoodHistoryEntry]:
        with self._lock:
            mine = [e for e in self._entries if e.user_id == user_id]
        mine.sort(key=lambda e: e.recorded_at, reverse=True)
        return mine[:limit]

    async def trim_before(self, cutoff: datetime) -> int:
        with self._lock:
            kept = [e for e in self._entries if e.recorded_at >= cutoff]
            removed = len(self._entries) - len(kept)
            self._entries = kept
        return removed


def _to_entry_model(doc: Dict[str, Any]) -> MoodHistoryEntry:
    recorded_at = doc.get("recorded_at")
    if isinstance(recorded_at, datetime) and recorded_at.tzinfo is None:
        recorded_at = recorded_at.replace(tzinfo=timezone.utc)
    return MoodHistoryEntry(
        entry_id=UUID(str(doc["_id"])),
        user_id=UUID(doc["user_id"]),
        mood=MoodVector.model_validate(doc.get("mood") or {}),
        message_id=UUID(doc["message_id"]) if doc.get("message_id") else None,
        recorded_at=recorded_at or datetime.now(timezone.utc),
    )


class AstraMoodHistoryStore(MoodHistoryStore):
    def __init__(self, collection_name: str, *, db_table: Optional[AstraDBCollection] = None):
        self._collection_name = collection_name
        self._table = db_table

    async def _collection(self) -> AstraDBCollection:
        if self._table is None:
            self._table = await get_table(self._collection_name)
        return self._table

    async def record(self, entry: MoodHistoryEntry) -> MoodHistoryEntry:
        table = await self._collection()
        doc = {
            "_id": str(entry.entry_id),
            "user_id": str(entry.user_id),
            "mood": entry.mood.model_dump(),
            "message_id": str(entry.message_id) if entry.message_id else None,
            "recorded_at": entry.recorded_at,
        }
        try:
            await table.insert_one(document=doc)
        except DataAPIException as exc:
            logger.error("Failed to record mood entry for %s: %s", entry.user_id, exc)
            raise ServiceUnavailable() from exc
        return entry

    async def list_for_user(self, user_id: UUID, limit: int = 100) -> List[MoodHistoryEntry]:
        table = await self._collection()
        try:
            cursor = table.find(
                filter={"user_id": str(user_id)},
                sort={"recorded_at": -1},
                limit=limit,
            )
            docs = await cursor.to_list()
        except DataAPIException as exc:
            logger.error("Failed to list mood history for %s: %s", user_id, exc)
            raise ServiceUnavailable() from exc
        return [_to_entry_model(d) for d in docs]

    async def trim_before(self, cutoff: datetime) -> int:
        table = await self._collection()
        try:
            result = await table.delete_many({"recorded_at": {"$lt": cutoff}})
        except DataAPIException as exc:
            logger.error("Mood history trim failed: %s", exc)
            raise ServiceUnavailable() from exc
        return result.deleted_count or 0
