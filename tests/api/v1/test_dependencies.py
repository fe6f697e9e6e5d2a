import pytest
from uuid import uuid4, UUID
from datetime import datetime, timedelta, timezone
from typing import List

from fastapi import HTTPException, status
from jose import jwt

from whisperwalls.core.config import settings
from whisperwalls.core.security import MODERATOR_ROLE, TokenPayload, create_access_token
from whisperwalls.api.v1 import dependencies
from whisperwalls.api.v1.dependencies import CurrentUser


# --- Fixtures ---
@pytest.fixture
def test_user_id() -> UUID:
    return uuid4()


@pytest.fixture
def test_user_roles() -> List[str]:
    return ["viewer"]


@pytest.fixture
def valid_token(test_user_id: UUID, test_user_roles: List[str]) -> str:
    return create_access_token(subject=test_user_id, roles=test_user_roles)


@pytest.fixture
def expired_token(test_user_id: UUID, test_user_roles: List[str]) -> str:
    return create_access_token(
        subject=test_user_id, roles=test_user_roles, expires_delta=timedelta(hours=-1)
    )


# --- Tests for get_current_user_token_payload ---
@pytest.mark.asyncio
async def test_get_current_user_token_payload_valid_token(
    valid_token: str, test_user_id: UUID, test_user_roles: List[str]
):
    payload = await dependencies.get_current_user_token_payload(token=valid_token)
    assert payload.sub == str(test_user_id)
    assert payload.roles == test_user_roles
    assert payload.exp > datetime.now(timezone.utc)


@pytest.mark.asyncio
async def test_get_current_user_token_payload_missing_token():
    with pytest.raises(HTTPException) as exc_info:
        await dependencies.get_current_user_token_payload(token=None)
    assert exc_info.value.status_code == status.HTTP_401_UNAUTHORIZED
    assert exc_info.value.detail == "Not authenticated"


@pytest.mark.asyncio
async def test_get_current_user_token_payload_expired_token(expired_token: str):
    with pytest.raises(HTTPException) as exc_info:
        await dependencies.get_current_user_token_payload(token=expired_token)
    assert exc_info.value.status_code == status.HTTP_401_UNAUTHORIZED
    assert exc_info.value.detail == "Token has expired"


@pytest.mark.asyncio
async def test_get_current_user_token_payload_invalid_signature(test_user_id: UUID):
    forged = jwt.encode(
        {"sub": str(test_user_id), "roles": ["viewer"]}, "wrong-secret", algorithm=settings.ALGORITHM
    )
    with pytest.raises(HTTPException) as exc_info:
        await dependencies.get_current_user_token_payload(token=forged)
    assert exc_info.value.status_code == status.HTTP_401_UNAUTHORIZED
    assert "Could not validate credentials" in exc_info.value.detail


# --- Tests for get_current_user_from_token ---
@pytest.mark.asyncio
async def test_current_user_from_payload(test_user_id: UUID):
    user = await dependencies.get_current_user_from_token(
        payload=TokenPayload(sub=str(test_user_id), roles=[MODERATOR_ROLE])
    )
    assert user.user_id == test_user_id
    assert user.is_moderator is True


@pytest.mark.asyncio
@pytest.mark.parametrize("sub, detail", [(None, "Subject missing"), ("not-a-uuid", "not a valid UUID")])
async def test_current_user_bad_subject(sub, detail):
    with pytest.raises(HTTPException) as exc_info:
        await dependencies.get_current_user_from_token(payload=TokenPayload(sub=sub, roles=["viewer"]))
    assert exc_info.value.status_code == status.HTTP_401_UNAUTHORIZED
    assert detail in exc_info.value.detail


# --- RBAC ---
@pytest.mark.asyncio
async def test_require_role_allows_matching_role():
    checker = dependencies.require_role([MODERATOR_ROLE, "admin"])
    user = CurrentUser(user_id=uuid4(), roles=["admin"])
    assert await checker(current_user=user) is user


@pytest.mark.asyncio
@pytest.mark.parametrize("roles, detail", [([], "no roles"), (["viewer"], "required roles")])
async def test_require_role_forbidden(roles, detail):
    checker = dependencies.require_role([MODERATOR_ROLE])
    with pytest.raises(HTTPException) as exc_info:
        await checker(current_user=CurrentUser(user_id=uuid4(), roles=roles))
    assert exc_info.value.status_code == status.HTTP_403_FORBIDDEN
    assert detail in exc_info.value.detail


@pytest.mark.asyncio
async def test_get_current_moderator_passthrough():
    moderator = CurrentUser(user_id=uuid4(), roles=[MODERATOR_ROLE])
    assert await dependencies.get_current_moderator(current_user=moderator) is moderator


# --- Optional auth ---
@pytest.mark.asyncio
async def test_optional_user(valid_token: str, test_user_id: UUID):
    assert await dependencies.get_current_user_optional(token=None) is None
    assert await dependencies.get_current_user_optional(token="garbage") is None
    user = await dependencies.get_current_user_optional(token=valid_token)
    assert user.user_id == test_user_id


# --- Service dependencies ---
def test_service_dependencies_come_from_registry(registry):
    assert dependencies.get_lifecycle_service() is registry.lifecycle
    assert dependencies.get_discovery_service() is registry.discovery
    assert dependencies.get_moderation_engine() is registry.moderation
