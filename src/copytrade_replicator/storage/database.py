"""Async database access for the copy-trading store.

PostgreSQL (asyncpg) in production. SQLite (aiosqlite) is accepted for
local runs and tests.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from copytrade_replicator.storage.models import Base

logger = logging.getLogger(__name__)

_ASYNC_DRIVERS = {
    "postgresql://": "postgresql+asyncpg://",
    "sqlite://": "sqlite+aiosqlite://",
}


def async_database_url(database_url: str) -> str:
    """Map a plain ``postgresql://`` or ``sqlite://`` URL onto its async driver."""
    for plain, driver in _ASYNC_DRIVERS.items():
        if database_url.startswith(plain):
            logger.debug("Using async driver %s", driver.rstrip(":/"))
            return driver + database_url[len(plain) :]
    return database_url


class DatabaseManager:
    """Owns the async engine and hands out transactional sessions."""

    def __init__(
        self,
        database_url: str,
        *,
        pool_size: int = 5,
        max_overflow: int = 10,
        echo: bool = False,
    ) -> None:
        self.database_url = async_database_url(database_url)
        self._engine_options: dict[str, Any] = {"echo": echo}
        if not self.is_sqlite:
            # aiosqlite pools reject sizing options
            self._engine_options.update(pool_size=pool_size, max_overflow=max_overflow)

        self._engine: AsyncEngine | None = None
        self._sessions: async_sessionmaker[AsyncSession] | None = None

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = create_async_engine(self.database_url, **self._engine_options)
        return self._engine

    def _session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._sessions is None:
            self._sessions = async_sessionmaker(bind=self.engine, expire_on_commit=False)
        return self._sessions

    @asynccontextmanager
    async def get_async_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Yield a session that commits on success and rolls back on error."""
        async with self._session_factory()() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def check_connection(self) -> None:
        """Run a trivial query so a bad DATABASE_URL fails at startup."""
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("Database reachable (%s)", "sqlite" if self.is_sqlite else "postgresql")

    async def init_schema_async(self) -> None:
        """Create missing tables. Production schemas come from Alembic."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database schema initialized")

    async def dispose_async(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._sessions = None
            logger.info("Database connections disposed")
