"""Async SQLAlchemy engine and session factory.

Supports both PostgreSQL (production) and SQLite (local dev mode).
Engine type is determined by the database URL scheme:
  - ``postgresql+asyncpg://`` → connection-pooled PostgreSQL engine
  - ``sqlite+aiosqlite://``   → single-connection SQLite engine
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

logger = logging.getLogger(__name__)

# Cache of async_sessionmaker instances keyed by engine identity.
_session_factories: dict[int, async_sessionmaker[AsyncSession]] = {}


def get_engine(
    database_url: str,
    pool_size: int = 10,
    max_overflow: int = 20,
) -> AsyncEngine:
    """Create an async SQLAlchemy engine.

    Parameters
    ----------
    database_url:
        Connection string (PostgreSQL or SQLite scheme).
    pool_size:
        Number of persistent connections for PostgreSQL (ignored for SQLite).
    max_overflow:
        Maximum overflow connections for PostgreSQL (ignored for SQLite).

    Returns
    -------
    AsyncEngine
        A configured async engine ready for session creation.
    """
    if database_url.startswith("sqlite"):
        from entitlement_engine.state.sqlite_adapter import get_local_engine

        # Extract path from URL: sqlite+aiosqlite:///path/to/db
        db_path = database_url.split("///", 1)[-1] if "///" in database_url else ":memory:"
        return get_local_engine(db_path if db_path else ":memory:")

    engine = create_async_engine(
        database_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
        pool_recycle=3600,
        pool_timeout=10,
        echo=False,
        connect_args={
            "server_settings": {
                "statement_timeout": "30000",  # 30 s
                "lock_timeout": "10000",  # 10 s
            }
        },
    )
    logger.info(
        "Created async engine pool_size=%d max_overflow=%d",
        pool_size,
        max_overflow,
    )
    return engine


@asynccontextmanager
async def get_session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Yield an async session with automatic commit/rollback semantics.

    On successful exit the session is committed.  If an exception propagates
    the session is rolled back before the error is re-raised.
    """
    engine_key = id(engine)
    factory = _session_factories.get(engine_key)
    if factory is None:
        factory = async_sessionmaker(engine, expire_on_commit=False)
        _session_factories[engine_key] = factory
    session = factory()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()
