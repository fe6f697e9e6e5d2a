from datetime import datetime, timedelta, timezone
from uuid import uuid4

from whisperwalls.models.message import (
    GeoPoint,
    Message,
    MessageResponse,
    ModerationStatusEnum,
)
from whisperwalls.models.mood import NEUTRAL_MOOD

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _message(**overrides) -> Message:
    data = dict(
        content="hello",
        location=GeoPoint(longitude=-74.0, latitude=40.7),
        mood_vector=NEUTRAL_MOOD,
    )
    data.update(overrides)
    return Message(**data)


def test_non_ephemeral_never_expires():
    message = _message(is_ephemeral=False, expires_at=None)
    assert message.is_expired(NOW + timedelta(days=10_000)) is False


def test_ephemeral_expires_at_boundary():
    message = _message(is_ephemeral=True, expires_at=NOW)
    assert message.is_expired(NOW - timedelta(seconds=1)) is False
    assert message.is_expired(NOW) is True


def test_is_discoverable_requires_approval():
    message = _message(expires_at=NOW + timedelta(hours=1))
    assert message.is_discoverable(NOW) is False
    message.moderation_status = ModerationStatusEnum.APPROVED
    assert message.is_discoverable(NOW) is True


def test_response_strips_author_for_anonymous_messages():
    author = uuid4()
    anonymous = _message(author_id=author, is_anonymous=True)
    attributed = _message(author_id=author, is_anonymous=False)

    assert MessageResponse.from_message(anonymous).author_id is None
    assert MessageResponse.from_message(attributed).author_id == author


def test_response_serializes_camel_case():
    payload = MessageResponse.from_message(_message()).model_dump(by_alias=True)
    assert "moodVector" in payload
    assert "moderationStatus" in payload
    assert "updatedAt" not in payload
