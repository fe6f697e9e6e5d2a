from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from astrapy.constants import ReturnDocument
from astrapy.exceptions import DataAPIException, TooManyDocumentsToCountException

from whisperwalls.core.errors import ServiceUnavailable
from whisperwalls.db.message_store import AstraMessageStore
from whisperwalls.models.message import (
    GeoPoint,
    Message,
    ModerationStatusEnum,
    ReactionKindEnum,
)
from whisperwalls.models.mood import NEUTRAL_MOOD

NOW = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)


def _doc(lat: float, lng: float, **overrides) -> dict:
    doc = {
        "_id": str(uuid4()),
        "content": "hi",
        "lat": lat,
        "lng": lng,
        "mood_vector": NEUTRAL_MOOD.model_dump(),
        "author_id": None,
        "is_anonymous": True,
        "is_ephemeral": True,
        "expires_at": NOW + timedelta(hours=1),
        "discovered_by": [],
        "reactions": {},
        "moderation_status": "approved",
        "created_at": NOW,
        "updated_at": NOW,
    }
    doc.update(overrides)
    return doc


def _table_with_find(docs):
    table = AsyncMock()
    cursor = MagicMock()
    cursor.to_list = AsyncMock(return_value=docs)
    table.find = MagicMock(return_value=cursor)
    return table


@pytest.mark.asyncio
async def test_insert_writes_snake_case_document():
    table = AsyncMock()
    store = AstraMessageStore("messages", db_table=table)
    author = uuid4()
    message = Message(
        content="hello",
        location=GeoPoint(longitude=1.5, latitude=2.5),
        mood_vector=NEUTRAL_MOOD,
        author_id=author,
        is_anonymous=False,
    )

    await store.insert(message)

    doc = table.insert_one.await_args.kwargs["document"]
    assert doc["_id"] == str(message.message_id)
    assert doc["lat"] == 2.5 and doc["lng"] == 1.5
    assert doc["location"] == {"type": "Point", "coordinates": [1.5, 2.5]}
    assert doc["author_id"] == str(author)
    assert doc["moderation_status"] == "pending"


@pytest.mark.asyncio
async def test_insert_failure_maps_to_service_unavailable():
    table = AsyncMock()
    table.insert_one.side_effect = DataAPIException("boom")
    store = AstraMessageStore("messages", db_table=table)

    with pytest.raises(ServiceUnavailable):
        await store.insert(
            Message(content="x", location=GeoPoint(longitude=0, latitude=0), mood_vector=NEUTRAL_MOOD)
        )


@pytest.mark.asyncio
async def test_get_round_trips_document():
    user = uuid4()
    doc = _doc(
        10.0,
        20.0,
        discovered_by=[str(user)],
        reactions={str(user): {"kind": "hug", "reacted_at": NOW.replace(tzinfo=None)}},
    )
    table = AsyncMock()
    table.find_one.return_value = doc
    store = AstraMessageStore("messages", db_table=table)

    message = await store.get(uuid4())

    assert message.location == GeoPoint(longitude=20.0, latitude=10.0)
    assert message.discovered_by == [user]
    assert message.reactions[user].kind == ReactionKindEnum.HUG
    assert message.reactions[user].reacted_at.tzinfo is not None


@pytest.mark.asyncio
async def test_find_nearby_builds_range_filter_and_refines_by_distance():
    inside = _doc(40.7484, -73.9857)
    corner = _doc(40.7509, -73.9824)  # inside the box, outside the circle
    table = _table_with_find([inside, corner])
    store = AstraMessageStore("messages", db_table=table)

    hits = await store.find_nearby(-73.9857, 40.7484, 300, now=NOW)

    assert [str(m.message_id) for m in hits] == [inside["_id"]]
    query_filter = table.find.call_args.kwargs["filter"]
    assert set(query_filter["lat"]) == {"$gte", "$lte"}
    assert "lng" in query_filter
    assert query_filter["moderation_status"] == "approved"
    assert query_filter["$or"] == [{"is_ephemeral": False}, {"expires_at": {"$gt": NOW}}]
    assert table.find.call_args.kwargs["sort"] == {"created_at": -1}


@pytest.mark.asyncio
async def test_find_nearby_pages_until_where_is_satisfied():
    viewer = uuid4()
    seen = [_doc(40.7484, -73.9857, discovered_by=[str(viewer)]) for _ in range(2)]
    fresh = _doc(40.7484, -73.9857)
    pages = [seen, [fresh]]
    table = AsyncMock()

    def _find(**kwargs):
        cursor = MagicMock()
        cursor.to_list = AsyncMock(return_value=pages.pop(0))
        return cursor

    table.find = MagicMock(side_effect=_find)
    store = AstraMessageStore("messages", candidate_limit=2, db_table=table)

    hits = await store.find_nearby(
        -73.9857, 40.7484, 300, limit=5, now=NOW, where=lambda m: viewer not in m.discovered_by
    )

    assert [str(m.message_id) for m in hits] == [fresh["_id"]]
    assert [c.kwargs["skip"] for c in table.find.call_args_list] == [0, 2]
    assert all(c.kwargs["limit"] == 2 for c in table.find.call_args_list)


@pytest.mark.asyncio
async def test_find_nearby_without_status_or_expiry_filters():
    table = _table_with_find([])
    store = AstraMessageStore("messages", db_table=table)

    await store.find_nearby(179.9999, 0.0, 1000, moderation_status=None, include_expired=True, now=NOW)

    query_filter = table.find.call_args.kwargs["filter"]
    assert "moderation_status" not in query_filter
    assert "$or" not in query_filter
    # The box wraps the antimeridian, so longitude is left to the distance check.
    assert "lng" not in query_filter


@pytest.mark.asyncio
async def test_find_nearby_failure_maps_to_service_unavailable():
    table = AsyncMock()
    cursor = MagicMock()
    cursor.to_list = AsyncMock(side_effect=DataAPIException("down"))
    table.find = MagicMock(return_value=cursor)
    store = AstraMessageStore("messages", db_table=table)

    with pytest.raises(ServiceUnavailable):
        await store.find_nearby(0, 0, 100, now=NOW)


@pytest.mark.asyncio
async def test_status_update_uses_compare_and_set_filter():
    doc = _doc(0, 0, moderation_status="rejected")
    table = AsyncMock()
    table.find_one_and_update.return_value = doc
    store = AstraMessageStore("messages", db_table=table)
    message_id = uuid4()

    updated = await store.update_moderation_status(
        message_id, ModerationStatusEnum.REJECTED, expected=ModerationStatusEnum.PENDING
    )

    assert updated.moderation_status == ModerationStatusEnum.REJECTED
    args = table.find_one_and_update.await_args
    assert args.args[0] == {"_id": str(message_id), "moderation_status": "pending"}
    assert args.args[1]["$set"]["moderation_status"] == "rejected"
    assert args.kwargs["return_document"] == ReturnDocument.AFTER


@pytest.mark.asyncio
async def test_status_update_miss_returns_none():
    table = AsyncMock()
    table.find_one_and_update.return_value = None
    store = AstraMessageStore("messages", db_table=table)

    assert await store.update_moderation_status(uuid4(), ModerationStatusEnum.APPROVED) is None


@pytest.mark.asyncio
async def test_reaction_and_discovery_updates_are_guarded():
    table = AsyncMock()
    table.find_one_and_update.return_value = _doc(0, 0)
    store = AstraMessageStore("messages", db_table=table)
    message_id, user = uuid4(), uuid4()

    await store.add_reaction(message_id, user, ReactionKindEnum.SMILE, now=NOW)
    reaction_filter, reaction_update = table.find_one_and_update.await_args.args
    assert reaction_filter["moderation_status"] == "approved"
    assert "$or" in reaction_filter
    assert reaction_update["$set"][f"reactions.{user}"] == {"kind": "smile", "reacted_at": NOW}

    await store.add_discovery(message_id, user, now=NOW)
    _, discovery_update = table.find_one_and_update.await_args.args
    assert discovery_update == {"$addToSet": {"discovered_by": str(user)}}


@pytest.mark.asyncio
async def test_delete_expired_targets_only_ephemeral():
    table = AsyncMock()
    table.delete_many.return_value = MagicMock(deleted_count=3)
    store = AstraMessageStore("messages", db_table=table)

    assert await store.delete_expired(NOW) == 3
    table.delete_many.assert_awaited_once_with({"is_ephemeral": True, "expires_at": {"$lte": NOW}})


@pytest.mark.asyncio
async def test_count_by_status_caps_at_upper_bound():
    table = AsyncMock()
    table.count_documents.side_effect = [
        4,
        TooManyDocumentsToCountException(text="too many", server_max_count_exceeded=False),
        0,
    ]
    store = AstraMessageStore("messages", db_table=table)

    counts = await store.count_by_status(NOW - timedelta(days=1))

    assert counts[ModerationStatusEnum.PENDING] == 4
    assert counts[ModerationStatusEnum.APPROVED] == 10_000
    assert counts[ModerationStatusEnum.REJECTED] == 0
