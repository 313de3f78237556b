"""Warden database module.

Database models and migrations:
- SQLAlchemy 2.x ORM models
- Alembic migration configuration
- Connection pooling via psycopg, with an optional read replica
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from warden.core.config import DatabaseSettings

logger = logging.getLogger(__name__)

# Module-level engines and session factories (initialized on first use)
_engine: AsyncEngine | None = None
_replica_engine: AsyncEngine | None = None
_async_session_factory: async_sessionmaker[AsyncSession] | None = None
_read_session_factory: async_sessionmaker[AsyncSession] | None = None


def to_async_url(url: str) -> str:
    """Rewrite a database URL to use an async driver.

    Args:
        url: Database URL as configured.

    Returns:
        URL using postgresql+psycopg or sqlite+aiosqlite.
    """
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


def _pool_options(settings: DatabaseSettings, url: str) -> dict[str, Any]:
    """Pool arguments for the configured dialect (SQLite takes none)."""
    if url.startswith("sqlite"):
        return {"echo": settings.echo}
    return {
        "pool_size": settings.pool_size,
        "max_overflow": settings.max_overflow,
        "pool_timeout": settings.pool_timeout,
        "pool_recycle": settings.pool_recycle,
        "pool_pre_ping": True,
        "echo": settings.echo,
    }


def configure_engine(
    url: str,
    *,
    replica_url: str | None = None,
    **engine_kwargs: Any,
) -> AsyncEngine:
    """Create the engines and session factories explicitly.

    Used by tests and the worker, which build their own engines instead of
    reading the cached settings.

    Args:
        url: Primary database URL.
        replica_url: Optional read replica URL.
        **engine_kwargs: Extra arguments for create_async_engine.

    Returns:
        The primary engine.
    """
    global _engine, _replica_engine, _async_session_factory, _read_session_factory

    _engine = create_async_engine(to_async_url(url), **engine_kwargs)
    _async_session_factory = async_sessionmaker(
        bind=_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    if replica_url:
        _replica_engine = create_async_engine(to_async_url(replica_url), **engine_kwargs)
        _read_session_factory = async_sessionmaker(
            bind=_replica_engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
    else:
        _replica_engine = None
        _read_session_factory = _async_session_factory

    return _engine


def _init_engine() -> None:
    """Initialize the engines from settings if not already configured."""
    if _engine is not None:
        return

    from warden.core.settings import get_settings

    db_settings = get_settings().database
    url = to_async_url(db_settings.url)

    configure_engine(
        url,
        replica_url=db_settings.read_replica_url,
        **_pool_options(db_settings, url),
    )
    logger.info(
        "Database engine initialized (replica=%s)",
        db_settings.read_replica_url is not None,
    )


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the primary session factory, initializing it if needed."""
    _init_engine()
    if _async_session_factory is None:
        msg = "Database session factory not initialized"
        raise RuntimeError(msg)
    return _async_session_factory


def get_engine() -> AsyncEngine:
    """Return the primary engine, initializing it if needed."""
    _init_engine()
    if _engine is None:
        msg = "Database engine not initialized"
        raise RuntimeError(msg)
    return _engine


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Get an async database session bound to the primary.

    Usage:
        async with get_async_session() as session:
            result = await session.execute(query)
            await session.commit()

    Yields:
        AsyncSession for database operations.
    """
    session = get_session_factory()()
    try:
        yield session
    except BaseException:
        # BaseException so cancelled requests roll back too
        await session.rollback()
        raise
    finally:
        await session.close()


@asynccontextmanager
async def get_read_session() -> AsyncGenerator[AsyncSession, None]:
    """Get a session for pure queries.

    Bound to the read replica when one is configured, otherwise to the
    primary. Never commit through this session.

    Yields:
        AsyncSession for read-only queries.
    """
    _init_engine()
    factory = _read_session_factory or get_session_factory()
    session = factory()
    try:
        yield session
    finally:
        await session.close()


async def close_engine() -> None:
    """Close the database engines.

    Call this during application shutdown to clean up connections.
    """
    global _engine, _replica_engine, _async_session_factory, _read_session_factory

    if _replica_engine is not None:
        await _replica_engine.dispose()
    if _engine is not None:
        await _engine.dispose()

    _engine = None
    _replica_engine = None
    _async_session_factory = None
    _read_session_factory = None
