"""Shared fixtures for entitlements API tests.

Provides settings, a mock database session, a file-backed SQLite session
for service tests, a fake payment provider, and an async httpx client
carrying a valid hosted-auth token.
"""

from __future__ import annotations

import os
import time
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Set the token secret BEFORE importing application modules so the
# AuthenticationMiddleware built by create_app() verifies test tokens.
_TEST_JWT_SECRET = "test-secret-key-for-entitlement-tests"
os.environ.setdefault("API_SUPABASE_JWT_SECRET", _TEST_JWT_SECRET)

from entitlement_engine.models import Identity  # noqa: E402
from entitlement_engine.state.sqlite_adapter import create_local_tables, get_local_engine  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker  # noqa: E402

from api.config import APISettings  # noqa: E402
from api.dependencies import (  # noqa: E402
    get_db_session,
    get_entitlement_service,
    get_pause_service,
    get_settings,
)
from api.main import create_app  # noqa: E402

TEST_USER_ID = "3f1c2b9a-user"
TEST_EMAIL = "ada@example.com"


def make_token(
    sub: str = TEST_USER_ID,
    email: str | None = TEST_EMAIL,
    *,
    secret: str = _TEST_JWT_SECRET,
    audience: str = "authenticated",
    expires_in: int = 3600,
) -> str:
    """Sign a hosted-auth style access token."""
    now = int(time.time())
    payload: dict[str, Any] = {
        "sub": sub,
        "aud": audience,
        "role": "authenticated",
        "iat": now,
        "exp": now + expires_in,
    }
    if email is not None:
        payload["email"] = email
    return jwt.encode(payload, secret, algorithm="HS256")


# ---------------------------------------------------------------------------
# Settings fixture
# ---------------------------------------------------------------------------


@pytest.fixture()
def test_settings() -> APISettings:
    """Return a settings object suitable for testing."""
    return APISettings(
        debug=True,
        database_url="sqlite+aiosqlite:///:memory:",
        platform_env="dev",
        cors_origins=["http://localhost:5173"],
        supabase_jwt_secret=_TEST_JWT_SECRET,
        stripe_secret_key="sk_test_xxx",
        provider_timeout_seconds=1.0,
    )


# ---------------------------------------------------------------------------
# Database sessions
# ---------------------------------------------------------------------------


@pytest.fixture()
def mock_session() -> AsyncMock:
    """Return a mock AsyncSession for endpoints that only probe the database."""
    session = AsyncMock()
    session.add = MagicMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    session.execute = AsyncMock(return_value=MagicMock())
    return session


@pytest_asyncio.fixture()
async def sqlite_session(tmp_path: Path):
    """Yield a session on a fresh SQLite file with all tables created."""
    engine = get_local_engine(tmp_path / "api_state.db")
    await create_local_tables(engine)
    factory = async_sessionmaker(engine, expire_on_commit=False)
    async with factory() as session:
        yield session
    await engine.dispose()


# ---------------------------------------------------------------------------
# Payment provider
# ---------------------------------------------------------------------------


@pytest.fixture()
def fake_provider() -> AsyncMock:
    """A provider with no customer.  Tests override return values as needed."""
    provider = AsyncMock()
    provider.find_customer_by_email = AsyncMock(return_value=None)
    provider.list_active_subscriptions = AsyncMock(return_value=[])
    provider.list_successful_one_time_payments = AsyncMock(return_value=[])
    return provider


# ---------------------------------------------------------------------------
# FastAPI app and client
# ---------------------------------------------------------------------------


@pytest.fixture()
def mock_entitlement_service() -> MagicMock:
    service = MagicMock()
    service.reconcile = AsyncMock()
    service.start_trial = AsyncMock()
    service.capabilities = AsyncMock()
    return service


@pytest.fixture()
def mock_pause_service() -> MagicMock:
    service = MagicMock()
    service.get_state = AsyncMock()
    service.pause_profile = AsyncMock()
    service.resume_profile = AsyncMock()
    return service


@pytest.fixture()
def app(
    test_settings: APISettings,
    mock_session: AsyncMock,
    mock_entitlement_service: MagicMock,
    mock_pause_service: MagicMock,
):
    """Create a FastAPI app with dependency overrides for testing.

    Services are replaced with mocks so router tests exercise request
    parsing, authentication, and error mapping only.
    """
    application = create_app(test_settings)

    async def _override_session():
        yield mock_session

    application.dependency_overrides[get_db_session] = _override_session
    application.dependency_overrides[get_settings] = lambda: test_settings
    application.dependency_overrides[get_entitlement_service] = lambda: mock_entitlement_service
    application.dependency_overrides[get_pause_service] = lambda: mock_pause_service
    return application


@pytest_asyncio.fixture()
async def client(app) -> AsyncClient:
    """Yield an async httpx client bound to the test app.

    Uses ASGITransport so requests go directly to the ASGI app.  Every
    request carries a valid Bearer token for ``TEST_USER_ID``.
    """
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"Authorization": f"Bearer {make_token()}"},
    ) as ac:
        yield ac


@pytest_asyncio.fixture()
async def anon_client(app) -> AsyncClient:
    """Yield an async httpx client without credentials."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture()
def token_factory():
    """Return the token signer so tests can mint expired or malformed tokens."""
    return make_token


@pytest.fixture()
def identity() -> Identity:
    """The identity carried by the default test token."""
    return Identity(user_id=TEST_USER_ID, email=TEST_EMAIL)
