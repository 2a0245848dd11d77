"""
Key/Value Window Store

Window store over a LocalStateStore. One entry per (action, identifier)
holds the list of that pair's windows:

    fallback_ratelimit_<action>_<identifier> -> [
        {"count": 3, "window_start": ..., "window_end": ..., "created_at": ...},
    ]

Used by the client fallback limiter (approximate: not shared across
devices or processes) and, with a memory-only state store, as the
in-memory backend. A single asyncio.Lock serialises all mutations.
"""

import asyncio
from typing import Optional

from app.core.exceptions import StoreUnavailableError
from app.services.local_state import LocalStateStore
from app.services.window_store import StoreStats, WindowStore, WindowSummary

KEY_PREFIX = "fallback_ratelimit_"


def window_key(action: str, identifier: str) -> str:
    return f"{KEY_PREFIX}{action}_{identifier}"


class KeyValueWindowStore(WindowStore):
    """
    Args:
        state: Backing key/value store; memory only when omitted
    """

    def __init__(self, state: Optional[LocalStateStore] = None):
        self.state = state if state is not None else LocalStateStore()
        self._lock = asyncio.Lock()

    def _read(self, action: str, identifier: str) -> list[dict]:
        windows = self.state.get(window_key(action, identifier), [])
        if not isinstance(windows, list):
            raise StoreUnavailableError(f"corrupt entry for {action}/{identifier}")
        return windows

    def _write(self, action: str, identifier: str, windows: list[dict]) -> None:
        key = window_key(action, identifier)
        try:
            if windows:
                self.state.set(key, windows)
            else:
                self.state.remove(key)
        except OSError as e:
            raise StoreUnavailableError(f"write failed: {e}", original_error=e) from e

    async def upsert_and_increment(
        self,
        identifier: str,
        action: str,
        now_ms: int,
        window_ms: int,
    ) -> int:
        async with self._lock:
            windows = self._read(action, identifier)
            for window in windows:
                if window["window_start"] == now_ms:
                    window["count"] += 1
                    count = window["count"]
                    break
            else:
                windows.append({
                    "count": 1,
                    "window_start": now_ms,
                    "window_end": now_ms + window_ms,
                    "created_at": now_ms,
                })
                count = 1
            self._write(action, identifier, windows)
            return count

    async def sum_live_count(self, identifier: str, action: str, now_ms: int) -> WindowSummary:
        live = [w for w in self._read(action, identifier) if w["window_end"] > now_ms]
        if not live:
            return WindowSummary()
        return WindowSummary(
            total=sum(w["count"] for w in live),
            earliest_window_end=min(w["window_end"] for w in live),
        )

    async def purge_expired(
        self,
        now_ms: int,
        identifier: Optional[str] = None,
        action: Optional[str] = None,
    ) -> int:
        async with self._lock:
            if identifier is not None and action is not None:
                keys = [window_key(action, identifier)]
            else:
                keys = list(self.state.keys(KEY_PREFIX))

            removed = 0
            for key in keys:
                windows = self.state.get(key, [])
                live = [w for w in windows if w["window_end"] > now_ms]
                if len(live) == len(windows):
                    continue
                removed += len(windows) - len(live)
                try:
                    if live:
                        self.state.set(key, live)
                    else:
                        self.state.remove(key)
                except OSError as e:
                    raise StoreUnavailableError(f"purge failed: {e}", original_error=e) from e
            return removed

    async def delete(self, identifier: str, action: str) -> int:
        async with self._lock:
            removed = len(self._read(action, identifier))
            self._write(action, identifier, [])
            return removed

    async def stats(self) -> StoreStats:
        stats = StoreStats()
        for key in self.state.keys(KEY_PREFIX):
            windows = self.state.get(key, [])
            action = key[len(KEY_PREFIX):].split("_", 1)[0]
            stats.total_entries += len(windows)
            stats.entries_by_action[action] = stats.entries_by_action.get(action, 0) + len(windows)
            for window in windows:
                created = window.get("created_at", window["window_start"])
                if stats.oldest_entry is None or created < stats.oldest_entry:
                    stats.oldest_entry = created
        return stats

    async def ping(self) -> bool:
        return True
