"""
Shared Test Fixtures
====================
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from taskflow.db.session import get_db
from taskflow.dependencies import get_current_user
from taskflow.main import app
from taskflow.models.user import User

from factories import make_user


@pytest.fixture(autouse=True)
def fake_redis():
    """Redis that always misses, so cache and rate limits never interfere."""
    redis_client = MagicMock()
    redis_client.get = AsyncMock(return_value=None)
    redis_client.setex = AsyncMock(return_value=True)
    redis_client.delete = AsyncMock(return_value=1)
    redis_client.incr = AsyncMock(return_value=1)
    redis_client.ttl = AsyncMock(return_value=60)

    get_redis = AsyncMock(return_value=redis_client)
    with patch("taskflow.services.cache.get_redis", get_redis), \
            patch("taskflow.core.rate_limit.get_redis", get_redis):
        yield redis_client


@pytest.fixture
def db_session() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def current_user() -> User:
    return make_user()


@pytest_asyncio.fixture
async def client(db_session, current_user):
    """HTTP client bound to the app with the database and user faked."""

    async def override_get_db():
        yield db_session

    async def override_current_user():
        return current_user

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_current_user

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def anonymous_client(db_session):
    """HTTP client with the database faked but real authentication."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
