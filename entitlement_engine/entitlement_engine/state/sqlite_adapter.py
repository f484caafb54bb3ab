"""SQLite adapter for local-only operation.

Provides an async SQLAlchemy engine backed by ``aiosqlite`` that uses the
same ORM table definitions as the production PostgreSQL backend, so the
API can run without an external database.

Key differences from the PostgreSQL backend:

* No connection pooling (SQLite is single-writer).
* Tables are created automatically on first connect.
* Datetimes come back naive and are coerced to UTC by ``UTCDateTime``.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

logger = logging.getLogger(__name__)


def get_local_engine(
    db_path: Path | str = ".entitlements/state.db",
) -> AsyncEngine:
    """Create an async SQLAlchemy engine backed by SQLite via aiosqlite.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file.  Parent directories are
        created automatically.  Use ``:memory:`` for ephemeral
        in-memory databases.

    Returns
    -------
    AsyncEngine
        A configured async engine ready for session creation.
    """
    db_path = Path(db_path) if db_path != ":memory:" else db_path

    if isinstance(db_path, Path):
        db_path.parent.mkdir(parents=True, exist_ok=True)
        url = f"sqlite+aiosqlite:///{db_path}"
    else:
        url = "sqlite+aiosqlite:///:memory:"

    engine = create_async_engine(
        url,
        echo=False,
        connect_args={"check_same_thread": False},
    )

    # Enable WAL mode and foreign keys for every connection.
    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragmas(dbapi_conn: object, _: object) -> None:
        cursor = dbapi_conn.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

    logger.info("Created SQLite engine: %s", url)
    return engine


async def create_local_tables(engine: AsyncEngine) -> None:
    """Create all ORM tables in the SQLite database.  Idempotent."""
    from entitlement_engine.state.tables import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("SQLite tables created/verified")


@asynccontextmanager
async def get_local_session(
    engine: AsyncEngine,
) -> AsyncGenerator[AsyncSession, None]:
    """Yield an async session with commit/rollback semantics.

    Mirrors :func:`entitlement_engine.state.database.get_session` for local
    SQLite usage.
    """
    factory = async_sessionmaker(engine, expire_on_commit=False)
    session = factory()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()
