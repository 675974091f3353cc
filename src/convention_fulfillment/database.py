"""Process-wide async engine for the booking store.

The API lifespan and the CLI both go through `init_db` so that one process
holds one connection pool. SQLite URLs (local runs, tests) skip the pool
sizing options, which aiosqlite does not accept.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from convention_fulfillment.config import get_settings
from convention_fulfillment.models import Base

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

SessionFactory = async_sessionmaker[AsyncSession]

_POSTGRES_POOL = {"pool_pre_ping": True, "pool_size": 10, "max_overflow": 20}

_engine: AsyncEngine | None = None
_sessions: SessionFactory | None = None


def build_engine(database_url: str) -> AsyncEngine:
    options = {} if database_url.startswith("sqlite") else _POSTGRES_POOL
    return create_async_engine(database_url, echo=False, **options)


def init_db(database_url: str | None = None) -> tuple[AsyncEngine, SessionFactory]:
    """Return the shared engine and session factory, creating them on first use.

    Sessions keep attributes loaded after commit so that services can build
    responses from records they have just written.
    """
    global _engine, _sessions
    if _engine is None or _sessions is None:
        _engine = build_engine(database_url or get_settings().database_url)
        _sessions = async_sessionmaker(_engine, expire_on_commit=False, autoflush=False)
    return _engine, _sessions


async def create_tables(engine: AsyncEngine) -> None:
    """Create the user, booking and QR history tables where missing."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_db() -> None:
    global _engine, _sessions
    engine, _engine, _sessions = _engine, None, None
    if engine is not None:
        await engine.dispose()
