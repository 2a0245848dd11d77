"""
Database Session Management

This module handles async database connections using SQLAlchemy's async engine.
Uses a database abstraction layer to support different database backends.

Key Features:
- Database abstraction: the adapter decides engine options and upsert syntax
- Explicit lifecycle: a Database is opened and closed by its owner, so tests
  build isolated instances instead of sharing a process-wide engine
- Async session management: commit on success, rollback on exception
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession as SQLModelAsyncSession

from app.db import models  # noqa: F401  (registers tables on SQLModel.metadata)
from app.db.interface import READ_ONLY_OPTION, DatabaseAdapter
from app.db.sqlite_adapter import get_database_adapter

logger = logging.getLogger(__name__)


class Database:
    """
    Owns one async engine and its session factory.

    Args:
        database_url: Connection string (sqlite+aiosqlite:///...)
        adapter: Dialect adapter, SQLite by default
        create_tables: Create missing tables on open (alembic handles
            production schemas, tests rely on this)
    """

    def __init__(
        self,
        database_url: str,
        adapter: Optional[DatabaseAdapter] = None,
        create_tables: bool = True,
    ):
        self.database_url = database_url
        self.adapter = adapter or get_database_adapter()
        self.create_tables = create_tables
        self.engine: Optional[AsyncEngine] = None
        self._session_maker: Optional[async_sessionmaker] = None

    @property
    def is_open(self) -> bool:
        return self.engine is not None

    async def open(self) -> None:
        """Create the engine and, optionally, the schema. Safe to call twice."""
        if self.engine is not None:
            return

        self.adapter.prepare_database(self.database_url)
        self.engine = self.adapter.create_engine(self.database_url)
        self._session_maker = async_sessionmaker(
            self.engine,
            class_=SQLModelAsyncSession,
            expire_on_commit=False,  # Prevents SQLAlchemy from expiring objects after commit
            autoflush=False,
        )

        if self.create_tables:
            async with self.engine.begin() as conn:
                await conn.run_sync(SQLModel.metadata.create_all)

        logger.info(f"Database opened: dialect={self.adapter.get_dialect_name()}")

    async def close(self) -> None:
        if self.engine is None:
            return
        await self.engine.dispose()
        self.engine = None
        self._session_maker = None
        logger.info("Database closed")

    @asynccontextmanager
    async def session(self, read_only: bool = False) -> AsyncIterator[AsyncSession]:
        """
        Yield a session that commits on success and rolls back on exception.

        read_only sessions are marked so the adapter can open them without
        taking the write lock.

        Usage:
            async with database.session() as session:
                await session.execute(statement)
        """
        if self._session_maker is None:
            raise RuntimeError("Database is not open")

        async with self._session_maker() as session:
            if read_only:
                await session.connection(execution_options={READ_ONLY_OPTION: True})
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
