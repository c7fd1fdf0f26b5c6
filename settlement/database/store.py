"""
Settlement Store

Injected storage handle. Every settlement operation receives a store and
scopes its writes with `transaction()`, so tests can hand in a store bound to
an in-memory database instead of the process-wide engine.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from settlement.database.connection import build_engine, build_session_factory, create_tables

logger = structlog.get_logger(__name__)


class SettlementStore:
    """
    Transaction-scoped access to the order store.

    Example:
        async with store.transaction() as session:
            purchase = await get_purchase_by_intent(session, intent_id)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine: Optional[AsyncEngine] = None,
    ):
        self._session_factory = session_factory
        self._engine = engine

    @classmethod
    async def from_url(cls, url: str, create_schema: bool = False) -> "SettlementStore":
        """Build a store with its own engine (tests, scripts)."""
        engine = build_engine(url)
        if create_schema:
            await create_tables(engine)
        return cls(build_session_factory(engine), engine=engine)

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Run a unit of work in one database transaction.

        Commits when the block exits normally; rolls back and re-raises on
        any exception.
        """
        session = self._session_factory()
        try:
            async with session.begin():
                yield session
        except Exception as e:
            logger.warning(
                "Transaction rolled back",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise
        finally:
            await session.close()

    async def dispose(self) -> None:
        """Dispose the engine this store owns, if any."""
        if self._engine is not None:
            await self._engine.dispose()
