"""
SQLite Window Store

Persists rate limit windows in the rate_limits table through the async
SQLAlchemy engine owned by a Database.

Design Decisions:
- Increment is one INSERT ... ON CONFLICT DO UPDATE built by the dialect
  adapter, never a read-then-write pair, so racing requests in the same
  window cannot lose updates
- Each operation runs in its own short transaction; SQLite serialises
  writers through its file lock and the busy timeout
- Reads may observe a slightly stale count, which the limiter tolerates
- Any database failure is re-raised as StoreUnavailableError so the engine
  can fail open
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import delete, func, select, text

from app.core.exceptions import StoreUnavailableError
from app.db.models import RateLimitWindow
from app.db.session import Database
from app.services.window_store import StoreStats, WindowStore, WindowSummary

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _store_errors(operation: str) -> AsyncIterator[None]:
    try:
        yield
    except StoreUnavailableError:
        raise
    except Exception as e:
        raise StoreUnavailableError(f"{operation} failed: {e}", original_error=e) from e


class SQLiteWindowStore(WindowStore):
    """
    Window store backed by a SQL database (SQLite by default).

    Args:
        database: Database wrapper; opened and closed with the store
    """

    def __init__(self, database: Database):
        self.database = database

    async def open(self) -> None:
        async with _store_errors("open"):
            await self.database.open()

    async def close(self) -> None:
        await self.database.close()

    async def upsert_and_increment(
        self,
        identifier: str,
        action: str,
        now_ms: int,
        window_ms: int,
    ) -> int:
        statement = self.database.adapter.build_increment_upsert(
            identifier=identifier,
            action=action,
            window_start=now_ms,
            window_end=now_ms + window_ms,
            now_ms=now_ms,
        )
        # Read back inside the same transaction, the write lock is still held
        count_query = select(RateLimitWindow.count).where(
            RateLimitWindow.identifier == identifier,
            RateLimitWindow.action == action,
            RateLimitWindow.window_start == now_ms,
        )

        async with _store_errors("increment"):
            async with self.database.session() as session:
                await session.execute(statement)
                result = await session.execute(count_query)
                return int(result.scalar_one())

    async def sum_live_count(self, identifier: str, action: str, now_ms: int) -> WindowSummary:
        statement = select(
            func.sum(RateLimitWindow.count),
            func.min(RateLimitWindow.window_end),
        ).where(
            RateLimitWindow.identifier == identifier,
            RateLimitWindow.action == action,
            RateLimitWindow.window_end > now_ms,
        )

        async with _store_errors("aggregate"):
            async with self.database.session(read_only=True) as session:
                total, earliest = (await session.execute(statement)).one()

        return WindowSummary(
            total=int(total or 0),
            earliest_window_end=int(earliest) if earliest is not None else None,
        )

    async def purge_expired(
        self,
        now_ms: int,
        identifier: Optional[str] = None,
        action: Optional[str] = None,
    ) -> int:
        statement = delete(RateLimitWindow).where(RateLimitWindow.window_end <= now_ms)
        if identifier is not None:
            statement = statement.where(RateLimitWindow.identifier == identifier)
        if action is not None:
            statement = statement.where(RateLimitWindow.action == action)

        async with _store_errors("purge"):
            async with self.database.session() as session:
                result = await session.execute(statement)
                return result.rowcount or 0

    async def delete(self, identifier: str, action: str) -> int:
        statement = delete(RateLimitWindow).where(
            RateLimitWindow.identifier == identifier,
            RateLimitWindow.action == action,
        )

        async with _store_errors("delete"):
            async with self.database.session() as session:
                result = await session.execute(statement)
                return result.rowcount or 0

    async def stats(self) -> StoreStats:
        async with _store_errors("stats"):
            async with self.database.session(read_only=True) as session:
                total = (await session.execute(
                    select(func.count()).select_from(RateLimitWindow)
                )).scalar_one()
                by_action = (await session.execute(
                    select(RateLimitWindow.action, func.count()).group_by(RateLimitWindow.action)
                )).all()
                oldest = (await session.execute(
                    select(func.min(RateLimitWindow.created_at))
                )).scalar_one()

        return StoreStats(
            total_entries=int(total or 0),
            entries_by_action={row[0]: int(row[1]) for row in by_action},
            oldest_entry=int(oldest) if oldest is not None else None,
        )

    async def ping(self) -> bool:
        """Run SELECT 1; report False instead of raising."""
        try:
            async with self.database.session(read_only=True) as session:
                await session.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.warning(f"Window store ping failed: {e}")
            return False
