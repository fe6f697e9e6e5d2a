import asyncio
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from whisperwalls.db.message_store import InMemoryMessageStore
from whisperwalls.models.message import (
    GeoPoint,
    Message,
    ModerationStatusEnum,
    ReactionKindEnum,
)
from whisperwalls.models.mood import NEUTRAL_MOOD

NOW = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)
HERE = GeoPoint(longitude=2.3522, latitude=48.8566)


def _message(**overrides) -> Message:
    data = dict(
        content="bonjour",
        location=HERE,
        mood_vector=NEUTRAL_MOOD,
        moderation_status=ModerationStatusEnum.APPROVED,
        is_ephemeral=True,
        expires_at=NOW + timedelta(hours=24),
        created_at=NOW,
    )
    data.update(overrides)
    return Message(**data)


@pytest.fixture
def store() -> InMemoryMessageStore:
    return InMemoryMessageStore()


@pytest.mark.asyncio
async def test_insert_get_returns_copies(store):
    message = await store.insert(_message())
    loaded = await store.get(message.message_id)
    assert loaded == message

    loaded.content = "mutated"
    assert (await store.get(message.message_id)).content == "bonjour"


@pytest.mark.asyncio
async def test_find_nearby_filters_status_expiry_and_distance(store):
    approved = await store.insert(_message(created_at=NOW - timedelta(minutes=5)))
    newest = await store.insert(_message(created_at=NOW))
    await store.insert(_message(moderation_status=ModerationStatusEnum.PENDING))
    expired = await store.insert(_message(expires_at=NOW - timedelta(minutes=1)))
    permanent = await store.insert(
        _message(is_ephemeral=False, expires_at=None, created_at=NOW - timedelta(days=900))
    )
    await store.insert(_message(location=GeoPoint(longitude=2.45, latitude=48.90)))

    found = await store.find_nearby(HERE.longitude, HERE.latitude, 500, now=NOW)
    assert [m.message_id for m in found] == [
        newest.message_id,
        approved.message_id,
        permanent.message_id,
    ]

    with_expired = await store.find_nearby(HERE.longitude, HERE.latitude, 500, include_expired=True, now=NOW)
    assert expired.message_id in {m.message_id for m in with_expired}

    any_status = await store.find_nearby(HERE.longitude, HERE.latitude, 500, moderation_status=None, now=NOW)
    assert len(any_status) == 4

    limited = await store.find_nearby(HERE.longitude, HERE.latitude, 500, limit=1, now=NOW)
    assert [m.message_id for m in limited] == [newest.message_id]


@pytest.mark.asyncio
async def test_update_moderation_status_compare_and_set(store):
    message = await store.insert(_message(moderation_status=ModerationStatusEnum.PENDING))

    assert await store.update_moderation_status(
        message.message_id, ModerationStatusEnum.APPROVED, expected=ModerationStatusEnum.REJECTED
    ) is None
    updated = await store.update_moderation_status(
        message.message_id, ModerationStatusEnum.APPROVED, expected=ModerationStatusEnum.PENDING
    )
    assert updated.moderation_status == ModerationStatusEnum.APPROVED
    assert await store.update_moderation_status(uuid4(), ModerationStatusEnum.APPROVED) is None


@pytest.mark.asyncio
async def test_reaction_replaces_previous_kind(store):
    message = await store.insert(_message())
    user = uuid4()

    await store.add_reaction(message.message_id, user, ReactionKindEnum.HEART, now=NOW)
    updated = await store.add_reaction(message.message_id, user, ReactionKindEnum.TEAR, now=NOW)

    assert len(updated.reactions) == 1
    assert updated.reactions[user].kind == ReactionKindEnum.TEAR


@pytest.mark.asyncio
async def test_interactions_are_guarded(store):
    pending = await store.insert(_message(moderation_status=ModerationStatusEnum.PENDING))
    expired = await store.insert(_message(expires_at=NOW - timedelta(seconds=1)))
    user = uuid4()

    assert await store.add_reaction(pending.message_id, user, ReactionKindEnum.HUG, now=NOW) is None
    assert await store.add_discovery(expired.message_id, user, now=NOW) is None
    assert await store.add_discovery(uuid4(), user, now=NOW) is None


@pytest.mark.asyncio
async def test_concurrent_discovery_adds_user_once(store):
    message = await store.insert(_message())
    user = uuid4()

    await asyncio.gather(*[store.add_discovery(message.message_id, user, now=NOW) for _ in range(20)])

    loaded = await store.get(message.message_id)
    assert loaded.discovered_by == [user]


@pytest.mark.asyncio
async def test_delete_expired_spares_permanent_messages(store):
    expired = await store.insert(_message(expires_at=NOW - timedelta(hours=1)))
    live = await store.insert(_message())
    permanent = await store.insert(
        _message(is_ephemeral=False, expires_at=None, created_at=NOW - timedelta(days=3650))
    )

    assert await store.delete_expired(NOW) == 1
    assert await store.get(expired.message_id) is None
    assert await store.get(live.message_id) is not None
    assert await store.get(permanent.message_id) is not None
    assert await store.delete_expired(NOW) == 0

    nearby = await store.find_nearby(HERE.longitude, HERE.latitude, 500, include_expired=True, now=NOW)
    assert expired.message_id not in {m.message_id for m in nearby}


@pytest.mark.asyncio
async def test_list_by_author_and_counts(store):
    author = uuid4()
    await store.insert(_message(author_id=author, created_at=NOW - timedelta(days=2)))
    newest = await store.insert(_message(author_id=author, created_at=NOW))
    await store.insert(_message(author_id=uuid4(), moderation_status=ModerationStatusEnum.REJECTED))

    mine = await store.list_by_author(author, limit=10)
    assert len(mine) == 2
    assert mine[0].message_id == newest.message_id

    counts = await store.count_by_status(NOW - timedelta(days=1))
    assert counts[ModerationStatusEnum.APPROVED] == 1
    assert counts[ModerationStatusEnum.REJECTED] == 1
    assert counts[ModerationStatusEnum.PENDING] == 0


@pytest.mark.asyncio
async def test_remove(store):
    message = await store.insert(_message())
    assert await store.remove(message.message_id) is True
    assert await store.remove(message.message_id) is False
    assert await store.find_nearby(HERE.longitude, HERE.latitude, 500, now=NOW) == []
