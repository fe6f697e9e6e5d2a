from __future__ import annotations

"""Persistence for whispers.

Two interchangeable backends share the :class:`MessageStore` interface:

* :class:`InMemoryMessageStore` keeps messages in a dict guarded by a lock and
  answers proximity queries through :class:`~whisperwalls.db.geo_index.GeoIndex`.
* :class:`AstraMessageStore` persists one document per message in an Astra
  Data API collection.  Proximity is a lat/lng range prefilter followed by an
  exact haversine check.

The store is the single source of truth for moderation status and expiry.
Reaction and discovery writes are guarded on "approved and not expired" and
applied in one atomic step so concurrent callers never lose updates.
"""

import abc
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from astrapy.constants import ReturnDocument
from astrapy.exceptions import DataAPIException, TooManyDocumentsToCountException

from whisperwalls.core.errors import ServiceUnavailable
from whisperwalls.db.astra_client import AstraDBCollection, get_table
from whisperwalls.db.geo_index import GeoIndex
from whisperwalls.models.message import (
    GeoPoint,
    Message,
    ModerationStatusEnum,
    Reaction,
    ReactionKindEnum,
)
from whisperwalls.models.mood import MoodVector
from whisperwalls.utils.geo import bounding_box, haversine_meters

logger = logging.getLogger(__name__)

__all__ = ["MessageStore", "InMemoryMessageStore", "AstraMessageStore"]

_COUNT_UPPER_BOUND = 10_000


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MessageStore(abc.ABC):
    """Abstract message repository."""

    @abc.abstractmethod
    async def insert(self, message: Message) -> Message: ...

    @abc.abstractmethod
    async def get(self, message_id: UUID) -> Optional[Message]: ...

    @abc.abstractmethod
    async def remove(self, message_id: UUID) -> bool: ...

    @abc.abstractmethod
    async def find_nearby(
        self,
        longitude: float,
        latitude: float,
        radius_meters: float,
        *,
        moderation_status: Optional[ModerationStatusEnum] = ModerationStatusEnum.APPROVED,
        include_expired: bool = False,
        limit: Optional[int] = None,
        now: Optional[datetime] = None,
        where: Optional[Callable[[Message], bool]] = None,
    ) -> List[Message]:
        """Messages within *radius_meters*, newest first.

        ``moderation_status=None`` disables the status filter.  Non-ephemeral
        messages are always included regardless of ``include_expired``.
        *where* is applied before *limit*, so a selective filter still yields
        up to *limit* matches when older ones exist.
        """

    @abc.abstractmethod
    async def update_moderation_status(
        self,
        message_id: UUID,
        status: ModerationStatusEnum,
        *,
        expected: Optional[ModerationStatusEnum] = None,
    ) -> Optional[Message]:
        """Set the status, optionally only if the current one is *expected*.

        Returns the updated message, or ``None`` when the message is missing
        or the compare-and-set did not match.
        """

    @abc.abstractmethod
    async def add_reaction(
        self,
        message_id: UUID,
        user_id: UUID,
        kind: ReactionKindEnum,
        *,
        now: Optional[datetime] = None,
    ) -> Optional[Message]:
        """Replace *user_id*'s reaction; ``None`` if the message is not reactable."""

    @abc.abstractmethod
    async def add_discovery(
        self,
        message_id: UUID,
        user_id: UUID,
        *,
        now: Optional[datetime] = None,
    ) -> Optional[Message]:
        """Add *user_id* to ``discovered_by`` at most once."""

    @abc.abstractmethod
    async def delete_expired(self, now: Optional[datetime] = None) -> int: ...

    @abc.abstractmethod
    async def list_by_author(self, author_id: UUID, limit: int = 50) -> List[Message]: ...

    @abc.abstractmethod
    async def count_by_status(self, since: datetime) -> Dict[ModerationStatusEnum, int]: ...


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


class InMemoryMessageStore(MessageStore):
    """Process-local store.  Safe to share across threads and tasks."""

    def __init__(self, cell_size_degrees: float = 0.05):
        self._lock = threading.RLock()
        self._messages: Dict[UUID, Message] = {}
        self._geo = GeoIndex(cell_size_degrees)

    async def insert(self, message: Message) -> Message:
        with self._lock:
            self._messages[message.message_id] = message.model_copy(deep=True)
            self._geo.insert(message.message_id, message.location)
        return message

    async def get(self, message_id: UUID) -> Optional[Message]:
        with self._lock:
            message = self._messages.get(message_id)
            return message.model_copy(deep=True) if message else None

    async def remove(self, message_id: UUID) -> bool:
        with self._lock:
            self._geo.remove(message_id)
            return self._messages.pop(message_id, None) is not None

    async def find_nearby(
        self,
        longitude: float,
        latitude: float,
        radius_meters: float,
        *,
        moderation_status: Optional[ModerationStatusEnum] = ModerationStatusEnum.APPROVED,
        include_expired: bool = False,
        limit: Optional[int] = None,
        now: Optional[datetime] = None,
        where: Optional[Callable[[Message], bool]] = None,
    ) -> List[Message]:
        now = now or _utcnow()
        center = GeoPoint(longitude=longitude, latitude=latitude)
        with self._lock:
            hits = []
            for message_id, _distance in self._geo.query(center, radius_meters):
                message = self._messages[message_id]
                if moderation_status is not None and message.moderation_status != moderation_status:
                    continue
                if not include_expired and message.is_expired(now):
                    continue
                if where is not None and not where(message):
                    continue
                hits.append(message.model_copy(deep=True))

        hits.sort(key=lambda m: m.created_at, reverse=True)
        return hits[:limit] if limit is not None else hits

    async def update_moderation_status(
        self,
        message_id: UUID,
        status: ModerationStatusEnum,
        *,
        expected: Optional[ModerationStatusEnum] = None,
    ) -> Optional[Message]:
        with self._lock:
            message = self._messages.get(message_id)
            if message is None:
                return None
            if expected is not None and message.moderation_status != expected:
                return None
            message.moderation_status = status
            message.updated_at = _utcnow()
            return message.model_copy(deep=True)

    def _guarded(self, message_id: UUID, now: datetime) -> Optional[Message]:
        message = self._messages.get(message_id)
        if message is None or not message.is_discoverable(now):
            return None
        return message

    async def add_reaction(
        self,
        message_id: UUID,
        user_id: UUID,
        kind: ReactionKindEnum,
        *,
        now: Optional[datetime] = None,
    ) -> Optional[Message]:
        now = now or _utcnow()
        with self._lock:
            message = self._guarded(message_id, now)
            if message is None:
                return None
            message.reactions[user_id] = Reaction(kind=kind, reacted_at=now)
            message.updated_at = now
            return message.model_copy(deep=True)

    async def add_discovery(
        self,
        message_id: UUID,
        user_id: UUID,
        *,
        now: Optional[datetime] = None,
    ) -> Optional[Message]:
        now = now or _utcnow()
        with self._lock:
            message = self._guarded(message_id, now)
            if message is None:
                return None
            if user_id not in message.discovered_by:
                message.discovered_by.append(user_id)
                message.updated_at = now
            return message.model_copy(deep=True)

    async def delete_expired(self, now: Optional[datetime] = None) -> int:
        now = now or _utcnow()
        with self._lock:
            doomed = [mid for mid, m in self._messages.items() if m.is_expired(now)]
            for message_id in doomed:
                self._geo.remove(message_id)
                del self._messages[message_id]
        return len(doomed)

    async def list_by_author(self, author_id: UUID, limit: int = 50) -> List[Message]:
        with self._lock:
            mine = [
                m.model_copy(deep=True)
                for m in self._messages.values()
                if m.author_id == author_id
            ]
        mine.sort(key=lambda m: m.created_at, reverse=True)
        return mine[:limit]

    async def count_by_status(self, since: datetime) -> Dict[ModerationStatusEnum, int]:
        counts = {s: 0 for s in ModerationStatusEnum}
        with self._lock:
            for message in self._messages.values():
                if message.created_at >= since:
                    counts[message.moderation_status] += 1
        return counts


# ---------------------------------------------------------------------------
# Astra Data API backend
# ---------------------------------------------------------------------------


def _ensure_aware(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_document(message: Message) -> Dict[str, Any]:
    """Translate a :class:`Message` to the collection's snake_case layout."""

    return {
        "_id": str(message.message_id),
        "content": message.content,
        # GeoJSON copy for consumers that understand it; queries use lat/lng.
        "location": {
            "type": "Point",
            "coordinates": [message.location.longitude, message.location.latitude],
        },
        "lat": message.location.latitude,
        "lng": message.location.longitude,
        "mood_vector": message.mood_vector.model_dump(),
        "author_id": str(message.author_id) if message.author_id else None,
        "is_anonymous": message.is_anonymous,
        "is_ephemeral": message.is_ephemeral,
        "expires_at": message.expires_at,
        "discovered_by": [str(u) for u in message.discovered_by],
        "reactions": {
            str(uid): {"kind": r.kind.value, "reacted_at": r.reacted_at}
            for uid, r in message.reactions.items()
        },
        "moderation_status": message.moderation_status.value,
        "created_at": message.created_at,
        "updated_at": message.updated_at,
    }


def _to_message_model(doc: Dict[str, Any]) -> Message:
    """Convert a collection document back into a :class:`Message`."""

    reactions = {
        UUID(uid): Reaction(
            kind=ReactionKindEnum(raw["kind"]),
            reacted_at=_ensure_aware(raw.get("reacted_at")) or _utcnow(),
        )
        for uid, raw in (doc.get("reactions") or {}).items()
    }
    return Message(
        message_id=UUID(str(doc["_id"])),
        content=doc["content"],
        location=GeoPoint(longitude=doc["lng"], latitude=doc["lat"]),
        mood_vector=MoodVector.model_validate(doc.get("mood_vector") or {}),
        author_id=UUID(doc["author_id"]) if doc.get("author_id") else None,
        is_anonymous=doc.get("is_anonymous", True),
        is_ephemeral=doc.get("is_ephemeral", True),
        expires_at=_ensure_aware(doc.get("expires_at")),
        discovered_by=[UUID(u) for u in doc.get("discovered_by") or []],
        reactions=reactions,
        moderation_status=ModerationStatusEnum(doc.get("moderation_status", "pending")),
        created_at=_ensure_aware(doc.get("created_at")) or _utcnow(),
        updated_at=_ensure_aware(doc.get("updated_at")) or _utcnow(),
    )


def _not_expired_clause(now: datetime) -> Dict[str, Any]:
    return {"$or": [{"is_ephemeral": False}, {"expires_at": {"$gt": now}}]}


class AstraMessageStore(MessageStore):
    """Data API collection backend.

    Expected indexes: ``lat``/``lng`` (proximity prefilter),
    ``moderation_status`` + ``created_at`` and ``expires_at`` (sweeps).
    """

    def __init__(
        self,
        collection_name: str,
        *,
        candidate_limit: int = 500,
        db_table: Optional[AstraDBCollection] = None,
    ):
        self._collection_name = collection_name
        self._candidate_limit = candidate_limit
        self._table = db_table

    async def _collection(self) -> AstraDBCollection:
        if self._table is None:
            self._table = await get_table(self._collection_name)
        return self._table

    async def _find(self, query_filter: Dict[str, Any], **kwargs) -> List[Dict[str, Any]]:
        table = await self._collection()
        cursor = table.find(filter=query_filter, **kwargs)
        return await cursor.to_list()

    async def insert(self, message: Message) -> Message:
        table = await self._collection()
        try:
            await table.insert_one(document=_to_document(message))
        except DataAPIException as exc:
            logger.error("Failed to insert message %s: %s", message.message_id, exc)
            raise ServiceUnavailable() from exc
        return message

    async def get(self, message_id: UUID) -> Optional[Message]:
        table = await self._collection()
        try:
            doc = await table.find_one(filter={"_id": str(message_id)})
        except DataAPIException as exc:
            logger.error("Failed to load message %s: %s", message_id, exc)
            raise ServiceUnavailable() from exc
        return _to_message_model(doc) if doc else None

    async def remove(self, message_id: UUID) -> bool:
        table = await self._collection()
        try:
            result = await table.delete_many({"_id": str(message_id)})
        except DataAPIException as exc:
            logger.error("Failed to remove message %s: %s", message_id, exc)
            raise ServiceUnavailable() from exc
        return bool(result.deleted_count)

    async def find_nearby(
        self,
        longitude: float,
        latitude: float,
        radius_meters: float,
        *,
        moderation_status: Optional[ModerationStatusEnum] = ModerationStatusEnum.APPROVED,
        include_expired: bool = False,
        limit: Optional[int] = None,
        now: Optional[datetime] = None,
        where: Optional[Callable[[Message], bool]] = None,
    ) -> List[Message]:
        now = now or _utcnow()
        center = GeoPoint(longitude=longitude, latitude=latitude)
        box = bounding_box(center, radius_meters)

        query_filter: Dict[str, Any] = {"lat": {"$gte": box.min_lat, "$lte": box.max_lat}}
        # A box spanning the antimeridian cannot be expressed as one range;
        # the haversine pass below does the longitude filtering instead.
        if not box.wraps_antimeridian:
            query_filter["lng"] = {"$gte": box.min_lng, "$lte": box.max_lng}
        if moderation_status is not None:
            query_filter["moderation_status"] = moderation_status.value
        if not include_expired:
            query_filter.update(_not_expired_clause(now))

        hits: List[Message] = []
        skip = 0
        # Page through the box newest first until enough candidates survive.
        while True:
            try:
                docs = await self._find(
                    query_filter,
                    sort={"created_at": -1},
                    skip=skip,
                    limit=self._candidate_limit,
                )
            except DataAPIException as exc:
                logger.error("Nearby query failed: %s", exc)
                raise ServiceUnavailable() from exc

            for doc in docs:
                message = _to_message_model(doc)
                if haversine_meters(center, message.location) > radius_meters:
                    continue
                # Guards against clock skew between the query and the check.
                if not include_expired and message.is_expired(now):
                    continue
                if where is not None and not where(message):
                    continue
                hits.append(message)
                if limit is not None and len(hits) >= limit:
                    return hits

            if len(docs) < self._candidate_limit:
                return hits
            skip += len(docs)

    async def _find_one_and_update(
        self, query_filter: Dict[str, Any], update: Dict[str, Any]
    ) -> Optional[Message]:
        table = await self._collection()
        try:
            doc = await table.find_one_and_update(
                query_filter,
                update,
                return_document=ReturnDocument.AFTER,
            )
        except DataAPIException as exc:
            logger.error("Message update failed (%s): %s", query_filter.get("_id"), exc)
            raise ServiceUnavailable() from exc
        return _to_message_model(doc) if doc else None

    async def update_moderation_status(
        self,
        message_id: UUID,
        status: ModerationStatusEnum,
        *,
        expected: Optional[ModerationStatusEnum] = None,
    ) -> Optional[Message]:
        query_filter: Dict[str, Any] = {"_id": str(message_id)}
        if expected is not None:
            query_filter["moderation_status"] = expected.value
        return await self._find_one_and_update(
            query_filter,
            {"$set": {"moderation_status": status.value, "updated_at": _utcnow()}},
        )

    def _reactable_filter(self, message_id: UUID, now: datetime) -> Dict[str, Any]:
        query_filter: Dict[str, Any] = {
            "_id": str(message_id),
            "moderation_status": ModerationStatusEnum.APPROVED.value,
        }
        query_filter.update(_not_expired_clause(now))
        return query_filter

    async def add_reaction(
        self,
        message_id: UUID,
        user_id: UUID,
        kind: ReactionKindEnum,
        *,
        now: Optional[datetime] = None,
    ) -> Optional[Message]:
        now = now or _utcnow()
        return await self._find_one_and_update(
            self._reactable_filter(message_id, now),
            {
                "$set": {
                    f"reactions.{user_id}": {"kind": kind.value, "reacted_at": now},
                    "updated_at": now,
                }
            },
        )

    async def add_discovery(
        self,
        message_id: UUID,
        user_id: UUID,
        *,
        now: Optional[datetime] = None,
    ) -> Optional[Message]:
        now = now or _utcnow()
        return await self._find_one_and_update(
            self._reactable_filter(message_id, now),
            {"$addToSet": {"discovered_by": str(user_id)}},
        )

    async def delete_expired(self, now: Optional[datetime] = None) -> int:
        now = now or _utcnow()
        table = await self._collection()
        try:
            result = await table.delete_many(
                {"is_ephemeral": True, "expires_at": {"$lte": now}}
            )
        except DataAPIException as exc:
            logger.error("Expired message sweep failed: %s", exc)
            raise ServiceUnavailable() from exc
        return result.deleted_count or 0

    async def list_by_author(self, author_id: UUID, limit: int = 50) -> List[Message]:
        try:
            docs = await self._find(
                {"author_id": str(author_id)},
                sort={"created_at": -1},
                limit=limit,
            )
        except DataAPIException as exc:
            logger.error("Listing messages for %s failed: %s", author_id, exc)
            raise ServiceUnavailable() from exc
        return [_to_message_model(d) for d in docs]

    async def count_by_status(self, since: datetime) -> Dict[ModerationStatusEnum, int]:
        table = await self._collection()
        counts: Dict[ModerationStatusEnum, int] = {}
        for status_value in ModerationStatusEnum:
            try:
                counts[status_value] = await table.count_documents(
                    {"moderation_status": status_value.value, "created_at": {"$gte": since}},
                    upper_bound=_COUNT_UPPER_BOUND,
                )
            except TooManyDocumentsToCountException:
                counts[status_value] = _COUNT_UPPER_BOUND
            except DataAPIException as exc:
                logger.error("Counting %s messages failed: %s", status_value.value, exc)
                raise ServiceUnavailable() from exc
        return counts
