from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from whisperwalls.core.errors import InvalidLocation, InvalidQuery
from whisperwalls.db.message_store import InMemoryMessageStore
from whisperwalls.models.discovery import MoodFilter, NearbyOptions
from whisperwalls.models.message import GeoPoint, Message, ModerationStatusEnum, Reaction, ReactionKindEnum
from whisperwalls.models.mood import NEUTRAL_MOOD, EmotionEnum, EmotionScores, MoodVector
from whisperwalls.services.discovery_service import DiscoveryService

NOW = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)
CENTER = GeoPoint(longitude=151.2093, latitude=-33.8688)
NEARBY = GeoPoint(longitude=151.2100, latitude=-33.8690)


class Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _mood(sentiment: float, **emotions) -> MoodVector:
    return MoodVector(emotions=EmotionScores(**emotions), sentiment=sentiment, intensity=0.5)


async def _add(store, location=NEARBY, **overrides) -> Message:
    data = dict(
        content="g'day",
        location=location,
        mood_vector=NEUTRAL_MOOD,
        moderation_status=ModerationStatusEnum.APPROVED,
        expires_at=NOW + timedelta(hours=1),
        created_at=NOW,
    )
    data.update(overrides)
    return await store.insert(Message(**data))


@pytest.fixture
def store():
    return InMemoryMessageStore()


@pytest.fixture
def clock():
    return Clock(NOW)


@pytest.fixture
def service(store, clock):
    return DiscoveryService(store, max_radius_meters=50_000, default_limit=50, max_limit=100, clock=clock)


@pytest.mark.asyncio
async def test_one_hour_message_disappears_two_hours_later(store, clock, service):
    message = await _add(store)

    assert [m.message_id for m in await service.find_nearby_messages(CENTER, 500)] == [message.message_id]

    clock.now = NOW + timedelta(hours=2)
    assert await service.find_nearby_messages(CENTER, 500) == []
    expired = await service.find_nearby_messages(CENTER, 500, NearbyOptions(include_expired=True))
    assert [m.message_id for m in expired] == [message.message_id]


@pytest.mark.asyncio
async def test_only_approved_unless_privileged(store, service):
    approved = await _add(store)
    pending = await _add(store, moderation_status=ModerationStatusEnum.PENDING)

    public = await service.find_nearby_messages(
        CENTER, 500, moderation_status=ModerationStatusEnum.PENDING
    )
    assert [m.message_id for m in public] == [approved.message_id]

    privileged = await service.find_nearby_messages(
        CENTER, 500, privileged=True, moderation_status=ModerationStatusEnum.PENDING
    )
    assert [m.message_id for m in privileged] == [pending.message_id]

    everything = await service.find_nearby_messages(CENTER, 500, privileged=True, moderation_status=None)
    assert len(everything) == 2


@pytest.mark.asyncio
async def test_results_are_newest_first_and_limited(store, service):
    older = await _add(store, created_at=NOW - timedelta(minutes=10))
    newer = await _add(store, created_at=NOW - timedelta(minutes=1))
    await _add(store, location=GeoPoint(longitude=151.30, latitude=-33.80))

    results = await service.find_nearby_messages(CENTER, 500)
    assert [m.message_id for m in results] == [newer.message_id, older.message_id]

    limited = await service.find_nearby_messages(CENTER, 500, NearbyOptions(limit=1))
    assert [m.message_id for m in limited] == [newer.message_id]


@pytest.mark.asyncio
async def test_exclude_seen(store, service):
    viewer = uuid4()
    seen = await _add(store, discovered_by=[viewer])
    fresh = await _add(store)

    results = await service.find_nearby_messages(CENTER, 500, NearbyOptions(exclude_discovered_by=viewer))
    ids = {m.message_id for m in results}
    assert fresh.message_id in ids
    assert seen.message_id not in ids


@pytest.mark.asyncio
async def test_mood_filters(store, service):
    happy = await _add(store, mood_vector=_mood(0.8, joy=0.9))
    sad = await _add(store, mood_vector=_mood(-0.6, sadness=0.8))
    await _add(store, mood_vector=_mood(0.1, fear=0.7))

    positive = await service.find_nearby_messages(
        CENTER, 500, NearbyOptions(mood_filter=MoodFilter(min_sentiment=0.5))
    )
    assert [m.message_id for m in positive] == [happy.message_id]

    sad_only = await service.find_nearby_messages(
        CENTER, 500, NearbyOptions(mood_filter=MoodFilter(emotions={EmotionEnum.SADNESS, EmotionEnum.ANGER}))
    )
    assert [m.message_id for m in sad_only] == [sad.message_id]

    band = await service.find_nearby_messages(
        CENTER, 500, NearbyOptions(mood_filter=MoodFilter(min_sentiment=-1.0, max_sentiment=0.1))
    )
    assert len(band) == 2


@pytest.mark.asyncio
async def test_exclude_seen_reaches_past_the_newest_discovered(store, service):
    viewer = uuid4()
    for i in range(600):
        await _add(
            store,
            created_at=NOW - timedelta(seconds=i),
            discovered_by=[viewer] if i < 500 else [],
        )

    results = await service.find_nearby_messages(CENTER, 500, NearbyOptions(exclude_discovered_by=viewer))

    assert len(results) == 50
    assert all(viewer not in m.discovered_by for m in results)
    assert results[0].created_at == NOW - timedelta(seconds=500)


@pytest.mark.asyncio
async def test_mood_filter_matching_only_older_messages(store, service):
    old_sad = await _add(store, mood_vector=_mood(-0.5, sadness=0.9), created_at=NOW - timedelta(hours=1))
    for i in range(300):
        await _add(store, mood_vector=_mood(0.5, joy=0.9), created_at=NOW - timedelta(seconds=i))

    results = await service.find_nearby_messages(
        CENTER, 500, NearbyOptions(mood_filter=MoodFilter(emotions={EmotionEnum.SADNESS}))
    )

    assert [m.message_id for m in results] == [old_sad.message_id]


@pytest.mark.asyncio
@pytest.mark.parametrize("radius", [0, -5, float("nan"), float("inf"), 50_001])
async def test_invalid_radius(service, radius):
    with pytest.raises(InvalidQuery):
        await service.find_nearby_messages(CENTER, radius)


@pytest.mark.asyncio
async def test_inverted_sentiment_band_is_rejected(service):
    with pytest.raises(InvalidQuery):
        await service.find_nearby_messages(
            CENTER, 500, NearbyOptions(mood_filter=MoodFilter(min_sentiment=0.5, max_sentiment=-0.5))
        )


@pytest.mark.asyncio
async def test_invalid_center(service):
    with pytest.raises(InvalidLocation):
        await service.find_nearby_messages(GeoPoint(longitude=0, latitude=0), 500)


@pytest.mark.asyncio
async def test_location_insights(store, service):
    await _add(
        store,
        mood_vector=_mood(0.6, joy=0.9, trust=0.5),
        created_at=NOW.replace(hour=18),
        discovered_by=[uuid4(), uuid4()],
        reactions={uuid4(): Reaction(kind=ReactionKindEnum.HUG, reacted_at=NOW)},
    )
    await _add(store, mood_vector=_mood(0.2, joy=0.4, sadness=0.6), created_at=NOW.replace(hour=18, minute=30))
    await _add(store, mood_vector=_mood(-0.2, sadness=0.3), created_at=NOW.replace(hour=9))
    await _add(store, mood_vector=_mood(-1.0, anger=1.0), expires_at=NOW - timedelta(minutes=1))

    insights = await service.get_location_insights(CENTER, 500)

    assert insights.message_count == 3
    assert insights.average_sentiment == pytest.approx(0.2)
    assert insights.average_intensity == pytest.approx(0.5)
    assert insights.total_reactions == 1
    assert insights.total_discoveries == 2
    assert insights.dominant_emotion == "joy"
    assert insights.popular_times == ["18:00", "09:00"]


@pytest.mark.asyncio
async def test_location_insights_empty_area(service):
    insights = await service.get_location_insights(CENTER, 500)
    assert insights.message_count == 0
    assert insights.average_intensity == 0.0
    assert insights.total_reactions == 0
    assert insights.total_discoveries == 0
    assert insights.dominant_emotion == "neutral"
    assert insights.popular_times == []


def test_distance_and_geofence():
    paris = GeoPoint(longitude=2.3522, latitude=48.8566)
    london = GeoPoint(longitude=-0.1276, latitude=51.5072)

    distance = DiscoveryService.calculate_distance(paris, london)

    assert 340_000 < distance < 345_000
    assert DiscoveryService.calculate_distance(paris, paris) == 0
    assert DiscoveryService.is_within_geofence(london, paris, 350_000) is True
    assert DiscoveryService.is_within_geofence(london, paris, 300_000) is False
    with pytest.raises(InvalidLocation):
        DiscoveryService.calculate_distance(paris, GeoPoint(longitude=200, latitude=0))
