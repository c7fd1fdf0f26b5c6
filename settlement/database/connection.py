"""
Database Connection Management

Async database engine lifecycle with SQLAlchemy 2.0.
Process-wide engine and session factory, created at startup and disposed on
shutdown.
"""

from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool, StaticPool
from sqlalchemy import text

from settlement.config import get_settings
from settlement.database.models import Base

logger = structlog.get_logger(__name__)

# Process-wide engine, created once at startup
_engine: Optional[AsyncEngine] = None
_async_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine for the given URL.

    In-memory SQLite shares a single connection so every session sees the
    same database; everything else uses NullPool and lets the driver pool.
    """
    if url.startswith("sqlite") and ":memory:" in url:
        return create_async_engine(
            url,
            echo=echo,
            poolclass=StaticPool,
        )
    return create_async_engine(
        url,
        echo=echo,
        pool_pre_ping=True,
        poolclass=NullPool,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def create_tables(engine: AsyncEngine) -> None:
    """Create all tables that do not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ensured", tables=sorted(Base.metadata.tables))


async def init_database() -> AsyncEngine:
    """
    Initialize the database engine.

    Returns:
        AsyncEngine: The initialized database engine
    """
    global _engine, _async_session_factory

    if _engine is not None:
        logger.warning("Database already initialized")
        return _engine

    settings = get_settings()
    _engine = build_engine(settings.database.async_url, echo=settings.database.echo)
    _async_session_factory = build_session_factory(_engine)

    try:
        async with _engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info(
            "Database connection established",
            host=settings.database.host,
            database=settings.database.db,
        )
    except Exception as e:
        logger.error("Failed to connect to database", error=str(e))
        raise

    if settings.database.create_tables:
        await create_tables(_engine)

    return _engine


async def close_database() -> None:
    """Dispose the engine and drop the session factory."""
    global _engine, _async_session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _async_session_factory = None
        logger.info("Database connection pool closed")


def get_engine() -> AsyncEngine:
    """
    Get the database engine.

    Raises:
        RuntimeError: If database is not initialized
    """
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if _async_session_factory is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return _async_session_factory

