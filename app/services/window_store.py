"""
Window Store Interface

The limiter engine keeps its counters in a window store. Storage is
pluggable: SQLite on the API tier, a key/value file on the client tier,
memory in tests. Every backend honours the same contract so one engine
algorithm serves all tiers.

Contract:
- upsert_and_increment is a single atomic insert-or-increment keyed on
  (identifier, action, window_start)
- sum_live_count only counts windows with window_end > now
- purge_expired only deletes windows with window_end <= now
- failures surface as StoreUnavailableError
"""

from abc import ABC, abstractmethod
from typing import Optional

from pydantic import BaseModel, Field


class WindowSummary(BaseModel):
    """Aggregate of the live windows of one (identifier, action) pair."""
    total: int = 0
    earliest_window_end: Optional[int] = None


class StoreStats(BaseModel):
    """Operator view of a store."""
    total_entries: int = 0
    entries_by_action: dict[str, int] = Field(default_factory=dict)
    oldest_entry: Optional[int] = None


class WindowStore(ABC):
    """Abstract base class for rate limit window stores."""

    async def open(self) -> None:
        """Acquire resources. Default: nothing to do."""

    async def close(self) -> None:
        """Release resources. Default: nothing to do."""

    @abstractmethod
    async def upsert_and_increment(
        self,
        identifier: str,
        action: str,
        now_ms: int,
        window_ms: int,
    ) -> int:
        """
        Count one request.

        Creates a window [now_ms, now_ms + window_ms) with count=1, or
        increments the window already keyed on (identifier, action, now_ms).

        Returns:
            The count of the touched window after the increment
        """

    @abstractmethod
    async def sum_live_count(self, identifier: str, action: str, now_ms: int) -> WindowSummary:
        """Sum the counts of every window of the pair that is still open."""

    @abstractmethod
    async def purge_expired(
        self,
        now_ms: int,
        identifier: Optional[str] = None,
        action: Optional[str] = None,
    ) -> int:
        """
        Delete windows whose window_end has passed.

        Scoped to one pair when identifier and action are given, global
        otherwise (background sweep).

        Returns:
            Number of windows deleted
        """

    @abstractmethod
    async def delete(self, identifier: str, action: str) -> int:
        """Delete every window of the pair (admin reset)."""

    @abstractmethod
    async def stats(self) -> StoreStats:
        """Entry counts for the operator stats endpoint."""

    @abstractmethod
    async def ping(self) -> bool:
        """Cheap reachability probe."""
