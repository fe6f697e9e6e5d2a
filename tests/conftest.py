"""Shared fixtures: an in-memory service registry and bearer tokens."""

from typing import Callable, List, Optional
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from whisperwalls.core.config import settings
from whisperwalls.core.security import MODERATOR_ROLE, create_access_token
from whisperwalls.services import registry as registry_module
from whisperwalls.services.registry import ServiceRegistry


@pytest.fixture
def registry():
    """Fresh in-memory wiring installed as the process-wide registry."""

    reg = ServiceRegistry.in_memory(settings)
    registry_module.set_registry(reg)
    yield reg
    registry_module.set_registry(None)


@pytest.fixture
def user_id() -> UUID:
    return uuid4()


@pytest.fixture
def moderator_id() -> UUID:
    return uuid4()


@pytest.fixture
def make_headers() -> Callable[..., dict]:
    def _headers(subject: UUID, roles: Optional[List[str]] = None) -> dict:
        token = create_access_token(subject=subject, roles=roles or ["viewer"])
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def user_headers(make_headers, user_id: UUID) -> dict:
    return make_headers(user_id)


@pytest.fixture
def moderator_headers(make_headers, moderator_id: UUID) -> dict:
    return make_headers(moderator_id, [MODERATOR_ROLE])


@pytest_asyncio.fixture
async def client(registry):
    from whisperwalls.main import app

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    await registry.scheduler.cancel_all()
