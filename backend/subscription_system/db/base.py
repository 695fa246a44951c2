"""Async engine and session factory for the SQL subscription store.

One engine per process: the application lifespan calls ``init_db`` on startup
and ``close_db`` on shutdown. Tables come straight from the ORM metadata.
"""

from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _engine_options(url: str, echo: bool) -> dict[str, Any]:
    if url.startswith("sqlite"):
        return {"echo": echo, "connect_args": {"check_same_thread": False}}
    return {"echo": echo, "pool_pre_ping": True}


async def create_tables(engine: AsyncEngine) -> None:
    """Create the customer, subscription and webhook-event tables if missing."""
    import subscription_system.db.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db(url: str, echo: bool = False) -> None:
    """Create the process-wide engine and session factory. Idempotent."""
    global _engine, _session_factory

    if _engine is not None:
        return

    _engine = create_async_engine(url, **_engine_options(url, echo))
    _session_factory = async_sessionmaker(_engine, class_=AsyncSession, expire_on_commit=False)
    await create_tables(_engine)


async def close_db() -> None:
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Raises RuntimeError if init_db() has not been called."""
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _session_factory
