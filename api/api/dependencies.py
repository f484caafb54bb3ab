"""FastAPI dependency injection for database sessions, payment provider, identity, and settings."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from typing import Annotated

from entitlement_engine.errors import Unauthenticated
from entitlement_engine.models import Identity
from entitlement_engine.provider import PaymentProvider
from entitlement_engine.state.database import get_engine
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from api.config import APISettings, load_api_settings
from api.services.entitlement_service import EntitlementService
from api.services.pause_service import PauseService
from api.services.stripe_provider import StripePaymentProvider

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

_settings_cache: APISettings | None = None


def get_settings() -> APISettings:
    """Return the cached :class:`APISettings` singleton."""
    global _settings_cache  # noqa: PLW0603
    if _settings_cache is None:
        _settings_cache = load_api_settings()
    return _settings_cache


SettingsDep = Annotated[APISettings, Depends(get_settings)]

# ---------------------------------------------------------------------------
# Database session
# ---------------------------------------------------------------------------

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_engine(settings: APISettings) -> AsyncEngine:
    """Create and cache the global async engine."""
    global _engine, _session_factory  # noqa: PLW0603
    _engine = get_engine(settings.database_url)
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    return _engine


async def dispose_engine() -> None:
    """Dispose the global engine pool (call during shutdown)."""
    global _engine, _session_factory  # noqa: PLW0603
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the global async session factory."""
    if _session_factory is None:
        raise RuntimeError(
            "Database engine has not been initialised. Ensure init_engine() is called during application startup."
        )
    return _session_factory


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an ``AsyncSession`` scoped to one request.

    The session commits on clean exit and rolls back on exception, so a
    reconciliation or pause call is all-or-nothing.
    """
    session = get_session_factory()()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


SessionDep = Annotated[AsyncSession, Depends(get_db_session)]

# ---------------------------------------------------------------------------
# Payment provider
# ---------------------------------------------------------------------------


def get_payment_provider(settings: SettingsDep) -> PaymentProvider:
    """Return the configured payment-provider adapter."""
    return StripePaymentProvider(settings)


ProviderDep = Annotated[PaymentProvider, Depends(get_payment_provider)]

# ---------------------------------------------------------------------------
# Identity (populated by AuthenticationMiddleware)
# ---------------------------------------------------------------------------


def get_identity(request: Request) -> Identity:
    """Build the caller's :class:`Identity` from authenticated request state."""
    user_id = getattr(request.state, "user_id", None)
    email = getattr(request.state, "email", None)
    if not user_id or not email:
        raise Unauthenticated("Authentication required")
    return Identity(user_id=user_id, email=email)


IdentityDep = Annotated[Identity, Depends(get_identity)]

# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


def get_entitlement_service(
    session: SessionDep,
    settings: SettingsDep,
    provider: ProviderDep,
) -> EntitlementService:
    return EntitlementService(session, settings, provider)


def get_pause_service(session: SessionDep, settings: SettingsDep) -> PauseService:
    return PauseService(session, settings)


EntitlementServiceDep = Annotated[EntitlementService, Depends(get_entitlement_service)]
PauseServiceDep = Annotated[PauseService, Depends(get_pause_service)]
