"""Async engine and session handling for the tracker database.

PostgreSQL (asyncpg) is the production backend; SQLite (aiosqlite) is
accepted for local runs and tests.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from smart_money_tracker.storage.models import Base

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)

_SQLITE_PREFIX = "sqlite"


def _normalize_async_database_url(database_url: str) -> str:
    if database_url.startswith("postgresql://"):
        logger.warning(
            "Database URL uses sync dialect 'postgresql://'; using async driver 'postgresql+asyncpg://'."
        )
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return database_url


def create_async_db_engine(database_url: str, **kwargs: Any) -> AsyncEngine:
    """Create the async engine for a tracker database URL.

    Pool sizing only applies to server databases and is dropped for SQLite.
    """
    url = _normalize_async_database_url(database_url)
    if url.startswith(_SQLITE_PREFIX):
        kwargs.pop("pool_size", None)
        kwargs.pop("max_overflow", None)
    return create_async_engine(url, **kwargs)


def create_async_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, expire_on_commit=False)


async def init_async_db(engine: AsyncEngine) -> None:
    """Create every missing table of the tracker schema.

    Production PostgreSQL databases are migrated with Alembic instead.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema initialized (%d tables)", len(Base.metadata.tables))


class DatabaseManager:
    """Owns the async engine and hands out one transaction per session block.

    The engine is created lazily on first use and recreated after
    `dispose_async()`.
    """

    def __init__(
        self,
        database_url: str,
        *,
        pool_size: int = 5,
        max_overflow: int = 10,
        echo: bool = False,
    ) -> None:
        """Initialize database manager.

        Args:
            database_url: Async database URL (postgresql+asyncpg:// or
                sqlite+aiosqlite://).
            pool_size: Connection pool size (server databases only).
            max_overflow: Maximum overflow connections (server databases only).
            echo: Echo SQL statements for debugging.
        """
        self.database_url = database_url
        self._pool_size = pool_size
        self._max_overflow = max_overflow
        self._echo = echo

        self._async_engine: AsyncEngine | None = None
        self._async_session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def is_sqlite(self) -> bool:
        return _normalize_async_database_url(self.database_url).startswith(_SQLITE_PREFIX)

    def _get_async_engine(self) -> AsyncEngine:
        if self._async_engine is None:
            self._async_engine = create_async_db_engine(
                self.database_url,
                pool_size=self._pool_size,
                max_overflow=self._max_overflow,
                echo=self._echo,
            )
        return self._async_engine

    @asynccontextmanager
    async def get_async_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Yield a session that commits on normal exit.

        Any exception, including task cancellation, rolls the transaction
        back so a half-finished write is never committed.
        """
        if self._async_session_factory is None:
            self._async_session_factory = create_async_session_factory(self._get_async_engine())

        session = self._async_session_factory()
        try:
            yield session
            await session.commit()
        except BaseException:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def check_connection_async(self) -> None:
        """Run a trivial query so a bad URL fails at startup.

        Raises:
            sqlalchemy.exc.SQLAlchemyError: If the database is unreachable.
        """
        async with self._get_async_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        logger.debug("Database connection OK (%s)", "sqlite" if self.is_sqlite else "postgresql")

    async def init_schema_async(self) -> None:
        await init_async_db(self._get_async_engine())

    async def dispose_async(self) -> None:
        if self._async_engine is not None:
            await self._async_engine.dispose()
            self._async_engine = None
            self._async_session_factory = None
        logger.info("Database connections disposed")
