"""
SQLite Database Adapter

This module implements the DatabaseAdapter interface for SQLite.
All SQLite-specific configuration and behavior is encapsulated here.

SQLite suits the rate limit store of a single API instance:
- File-based (single .db file), no server required
- Single writer at a time (file locking), so writers wait on a busy timeout
- INSERT ... ON CONFLICT DO UPDATE gives an atomic increment
"""

from pathlib import Path
from typing import Any

from sqlalchemy import event
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool
from sqlalchemy.sql.dml import Insert

from app.db.interface import READ_ONLY_OPTION, DatabaseAdapter
from app.db.models import RateLimitWindow


class SQLiteAdapter(DatabaseAdapter):
    """
    SQLite database adapter implementation.

    Args:
        busy_timeout: Seconds a connection waits for the write lock before
            failing with "database is locked"
    """

    def __init__(self, busy_timeout: float = 30.0):
        self.busy_timeout = busy_timeout

    def create_engine(self, database_url: str, **kwargs) -> AsyncEngine:
        """
        Create SQLite async engine with appropriate configuration.

        SQLite-specific configuration:
        - NullPool: one connection per session (file-based, no pooling needed)
        - check_same_thread=False: Required for async SQLite operations
        - timeout: busy timeout so concurrent writers queue instead of failing

        Args:
            database_url: SQLite connection string (sqlite+aiosqlite:///...)
            **kwargs: Additional engine options (merged with SQLite defaults)

        Returns:
            Configured AsyncEngine for SQLite
        """
        engine_kwargs = self.get_engine_kwargs()
        engine_kwargs.update(kwargs)

        engine = create_async_engine(
            database_url,
            poolclass=self.get_pool_class(),
            connect_args=self.get_connect_args(),
            **engine_kwargs
        )

        # Writers take the write lock at BEGIN so concurrent transactions wait
        # on the busy timeout instead of failing on a SHARED -> RESERVED
        # upgrade. Read-only transactions keep a deferred BEGIN.
        @event.listens_for(engine.sync_engine, "connect")
        def _disable_driver_begin(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine.sync_engine, "begin")
        def _begin(conn):
            if conn.get_execution_options().get(READ_ONLY_OPTION):
                conn.exec_driver_sql("BEGIN")
            else:
                conn.exec_driver_sql("BEGIN IMMEDIATE")

        return engine

    def get_pool_class(self) -> type[NullPool]:
        return NullPool

    def get_connect_args(self) -> dict[str, Any]:
        return {
            "check_same_thread": False,
            "timeout": self.busy_timeout,
        }

    def get_engine_kwargs(self) -> dict[str, Any]:
        return {
            "echo": False  # Set to True only for SQL debugging in development
        }

    def prepare_database(self, database_url: str) -> None:
        """Create the parent directory of a file-backed SQLite database."""
        database = make_url(database_url).database
        if not database or database == ":memory:":
            return
        Path(database).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)

    def build_increment_upsert(
        self,
        identifier: str,
        action: str,
        window_start: int,
        window_end: int,
        now_ms: int,
    ) -> Insert:
        """
        Build INSERT ... ON CONFLICT(identifier, action, window_start) DO UPDATE.

        The conflict target is the unique constraint of the rate_limits table,
        so two requests landing in the same window always end up in one row.
        """
        table = RateLimitWindow.__table__
        statement = sqlite_insert(table).values(
            identifier=identifier,
            action=action,
            count=1,
            window_start=window_start,
            window_end=window_end,
            created_at=now_ms,
            updated_at=now_ms,
        )
        return statement.on_conflict_do_update(
            index_elements=[table.c.identifier, table.c.action, table.c.window_start],
            set_={
                "count": table.c.count + 1,
                "updated_at": now_ms,
            },
        )

    def get_dialect_name(self) -> str:
        return "sqlite"


def get_database_adapter(busy_timeout: float = 30.0) -> DatabaseAdapter:
    """
    Factory function to get the database adapter.

    Returns SQLiteAdapter by default. To switch to PostgreSQL, create a
    PostgreSQLAdapter class and update this function.
    """
    return SQLiteAdapter(busy_timeout=busy_timeout)
