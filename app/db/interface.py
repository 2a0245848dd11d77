"""
Database Abstraction Interface

This module defines the database abstraction layer that allows the window
store to run on different database backends (SQLite today, PostgreSQL later)
without changing the limiter engine.

The interface covers engine construction and the one dialect-specific
statement the limiter needs: the atomic insert-or-increment upsert.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.pool import Pool
from sqlalchemy.sql.dml import Insert

# Execution option marking a transaction that only reads
READ_ONLY_OPTION = "read_only_transaction"


class DatabaseAdapter(ABC):
    """
    Engine settings plus the increment upsert for one database backend.

    A backend is added by subclassing, implementing every method (the
    upsert included) and returning the subclass from
    get_database_adapter().
    """

    @abstractmethod
    def create_engine(self, database_url: str, **kwargs) -> AsyncEngine:
        """
        Create and configure the async database engine.

        Args:
            database_url: Connection string for the database
            **kwargs: Additional engine configuration options

        Returns:
            Configured AsyncEngine instance
        """
        pass

    @abstractmethod
    def get_pool_class(self) -> Optional[type[Pool]]:
        """
        Get the connection pool class for this database type.

        Returns:
            Pool class or None to use default
        """
        pass

    @abstractmethod
    def get_connect_args(self) -> dict[str, Any]:
        """Get connection arguments specific to this database type."""
        pass

    @abstractmethod
    def get_engine_kwargs(self) -> dict[str, Any]:
        """Get additional engine configuration specific to this database type."""
        pass

    @abstractmethod
    def prepare_database(self, database_url: str) -> None:
        """
        Make sure the database location exists before the first connection.

        File-based databases create their parent directory here; server
        databases have nothing to do.
        """
        pass

    @abstractmethod
    def build_increment_upsert(
        self,
        identifier: str,
        action: str,
        window_start: int,
        window_end: int,
        now_ms: int,
    ) -> Insert:
        """
        Build a single atomic insert-or-increment statement.

        The statement inserts a fresh window with count=1, or increments the
        count of the existing row sharing (identifier, action, window_start).
        It must never be expressed as a read followed by a write.

        Returns:
            Executable INSERT ... ON CONFLICT statement
        """
        pass

    @abstractmethod
    def get_dialect_name(self) -> str:
        """
        Get the SQLAlchemy dialect name for this database.

        Returns:
            Dialect name (e.g., 'sqlite', 'postgresql')
        """
        pass
