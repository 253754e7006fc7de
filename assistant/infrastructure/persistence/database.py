"""Async database access for the assistant's durable store.

Usage:
    database = Database("sqlite+aiosqlite:///./assistant.db")
    await database.create_all()

    async with database.session() as session:
        ...
"""

from typing import Any, AsyncIterator
from contextlib import asynccontextmanager

import structlog
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .tables import Base

logger = structlog.get_logger(__name__)


def _set_sqlite_pragma(dbapi_connection: Any, connection_record: Any) -> None:
    """Enable referential integrity for SQLite connections"""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """Owns the async engine and session factory"""

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        self.engine: AsyncEngine = create_async_engine(url, echo=echo)

        if url.startswith("sqlite"):
            event.listen(self.engine.sync_engine, "connect", _set_sqlite_pragma)

        self._session_factory = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            autoflush=False,
            expire_on_commit=False,
        )

    async def create_all(self) -> None:
        """Create all tables if they do not exist"""

        async with self.engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)

        logger.info("Database schema ready", url=self.url.split("@")[-1])

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Transactional session: commits on success, rolls back on error"""

        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def dispose(self) -> None:
        await self.engine.dispose()
