"""
Tests for the window store backends.

Both backends are run through the same contract tests; SQLite-specific
behaviour (persistence across reopen, locked database) is tested apart.
"""

import asyncio

import pytest

from app.core.exceptions import StoreUnavailableError
from app.db.session import Database
from app.services.kv_window_store import KEY_PREFIX, KeyValueWindowStore, window_key
from app.services.local_state import LocalStateStore
from app.services.sqlite_window_store import SQLiteWindowStore

from tests.conftest import START_MS, sqlite_url

MINUTE = 60_000


@pytest.fixture(params=["sqlite", "kv"])
def store(request, sqlite_store, kv_store):
    return sqlite_store if request.param == "sqlite" else kv_store


class TestWindowStoreContract:
    """Contract shared by every backend."""

    @pytest.mark.asyncio
    async def test_upsert_creates_then_increments_same_window(self, store):
        """Same window_start increments one counter instead of adding rows."""
        assert await store.upsert_and_increment("user:1", "add-asset", START_MS, MINUTE) == 1
        assert await store.upsert_and_increment("user:1", "add-asset", START_MS, MINUTE) == 2
        assert await store.upsert_and_increment("user:1", "add-asset", START_MS, MINUTE) == 3

        summary = await store.sum_live_count("user:1", "add-asset", START_MS)
        assert summary.total == 3
        assert summary.earliest_window_end == START_MS + MINUTE

    @pytest.mark.asyncio
    async def test_sum_spans_windows_and_reports_earliest_end(self, store):
        """Windows started at different times all count while live."""
        await store.upsert_and_increment("user:1", "global", START_MS, MINUTE)
        await store.upsert_and_increment("user:1", "global", START_MS + 1_000, MINUTE)
        await store.upsert_and_increment("user:1", "global", START_MS + 2_000, MINUTE)

        summary = await store.sum_live_count("user:1", "global", START_MS + 2_000)
        assert summary.total == 3
        assert summary.earliest_window_end == START_MS + MINUTE

    @pytest.mark.asyncio
    async def test_sum_ignores_ended_windows(self, store):
        """A window whose end equals now is no longer live."""
        await store.upsert_and_increment("user:1", "global", START_MS, MINUTE)
        await store.upsert_and_increment("user:1", "global", START_MS + 10_000, MINUTE)

        summary = await store.sum_live_count("user:1", "global", START_MS + MINUTE)
        assert summary.total == 1
        assert summary.earliest_window_end == START_MS + 10_000 + MINUTE

    @pytest.mark.asyncio
    async def test_sum_of_unknown_pair_is_empty(self, store):
        """No windows means zero and no reset time."""
        summary = await store.sum_live_count("user:nobody", "global", START_MS)
        assert summary.total == 0
        assert summary.earliest_window_end is None

    @pytest.mark.asyncio
    async def test_pairs_are_isolated(self, store):
        """Counters of one identifier or action never leak into another."""
        await store.upsert_and_increment("user:1", "add-asset", START_MS, MINUTE)
        await store.upsert_and_increment("user:2", "add-asset", START_MS, MINUTE)
        await store.upsert_and_increment("user:1", "add-debt", START_MS, MINUTE)

        assert (await store.sum_live_count("user:1", "add-asset", START_MS)).total == 1
        assert (await store.sum_live_count("user:2", "add-asset", START_MS)).total == 1
        assert (await store.sum_live_count("user:1", "add-debt", START_MS)).total == 1

    @pytest.mark.asyncio
    async def test_purge_then_sum_never_counts_expired(self, store):
        """purge_expired followed by sum_live_count sees only live windows."""
        await store.upsert_and_increment("user:1", "global", START_MS, MINUTE)
        await store.upsert_and_increment("user:1", "global", START_MS + 30_000, MINUTE)

        now = START_MS + MINUTE
        removed = await store.purge_expired(now, identifier="user:1", action="global")
        summary = await store.sum_live_count("user:1", "global", now)

        assert removed == 1
        assert summary.total == 1

    @pytest.mark.asyncio
    async def test_scoped_purge_leaves_other_pairs(self, store):
        """A pair-scoped purge does not touch other identifiers."""
        await store.upsert_and_increment("user:1", "global", START_MS, MINUTE)
        await store.upsert_and_increment("user:2", "global", START_MS, MINUTE)

        await store.purge_expired(START_MS + MINUTE, identifier="user:1", action="global")
        stats = await store.stats()
        assert stats.total_entries == 1

        assert await store.purge_expired(START_MS + MINUTE) == 1
        assert (await store.stats()).total_entries == 0

    @pytest.mark.asyncio
    async def test_purge_keeps_live_windows(self, store):
        """The sweep only deletes windows that have ended."""
        await store.upsert_and_increment("user:1", "global", START_MS, MINUTE)
        assert await store.purge_expired(START_MS + MINUTE - 1) == 0
        assert (await store.sum_live_count("user:1", "global", START_MS)).total == 1

    @pytest.mark.asyncio
    async def test_delete_drops_every_window_of_pair(self, store):
        """Admin reset removes all windows of the pair only."""
        await store.upsert_and_increment("user:1", "add-debt", START_MS, MINUTE)
        await store.upsert_and_increment("user:1", "add-debt", START_MS + 1, MINUTE)
        await store.upsert_and_increment("user:1", "global", START_MS, MINUTE)

        assert await store.delete("user:1", "add-debt") == 2
        assert (await store.sum_live_count("user:1", "add-debt", START_MS + 1)).total == 0
        assert (await store.sum_live_count("user:1", "global", START_MS)).total == 1

    @pytest.mark.asyncio
    async def test_stats(self, store):
        """Stats count entries, group them by action and find the oldest."""
        await store.upsert_and_increment("user:1", "add-asset", START_MS + 5, MINUTE)
        await store.upsert_and_increment("user:2", "add-asset", START_MS, MINUTE)
        await store.upsert_and_increment("user:1", "delete-item", START_MS + 9, MINUTE)

        stats = await store.stats()
        assert stats.total_entries == 3
        assert stats.entries_by_action == {"add-asset": 2, "delete-item": 1}
        assert stats.oldest_entry == START_MS

    @pytest.mark.asyncio
    async def test_concurrent_increments_of_one_window_are_not_lost(self, store):
        """Racing increments on the same key all land."""
        await asyncio.gather(*[
            store.upsert_and_increment("user:1", "global", START_MS, MINUTE)
            for _ in range(20)
        ])
        assert (await store.sum_live_count("user:1", "global", START_MS)).total == 20

    @pytest.mark.asyncio
    async def test_ping(self, store):
        assert await store.ping() is True


class TestSQLiteWindowStore:
    """SQLite specifics."""

    @pytest.mark.asyncio
    async def test_counts_survive_reopen(self, tmp_path):
        """Counters are durable across a close/open cycle."""
        url = sqlite_url(tmp_path, "durable.db")
        store = SQLiteWindowStore(Database(url))
        await store.open()
        await store.upsert_and_increment("user:1", "global", START_MS, MINUTE)
        await store.close()

        reopened = SQLiteWindowStore(Database(url))
        await reopened.open()
        try:
            assert (await reopened.sum_live_count("user:1", "global", START_MS)).total == 1
        finally:
            await reopened.close()

    @pytest.mark.asyncio
    async def test_open_creates_missing_directory(self, tmp_path):
        """The parent directory of the database file is created on open."""
        url = sqlite_url(tmp_path, "nested/dir/rate_limits.db")
        store = SQLiteWindowStore(Database(url))
        await store.open()
        try:
            assert (tmp_path / "nested" / "dir").is_dir()
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_closed_database_raises_store_unavailable(self, tmp_path):
        """Failures surface as StoreUnavailableError, never raw driver errors."""
        store = SQLiteWindowStore(Database(sqlite_url(tmp_path)))

        with pytest.raises(StoreUnavailableError):
            await store.sum_live_count("user:1", "global", START_MS)
        with pytest.raises(StoreUnavailableError):
            await store.upsert_and_increment("user:1", "global", START_MS, MINUTE)

        assert await store.ping() is False

    @pytest.mark.asyncio
    async def test_reads_do_not_wait_for_an_open_writer(self, database, sqlite_store):
        """Aggregates and pings run while another transaction holds the write lock."""
        await sqlite_store.upsert_and_increment("user:1", "global", START_MS, MINUTE)

        async with database.session() as session:
            await session.execute(
                database.adapter.build_increment_upsert(
                    identifier="user:2",
                    action="global",
                    window_start=START_MS,
                    window_end=START_MS + MINUTE,
                    now_ms=START_MS,
                )
            )

            summary = await asyncio.wait_for(
                sqlite_store.sum_live_count("user:1", "global", START_MS), timeout=5
            )
            assert summary.total == 1
            assert await asyncio.wait_for(sqlite_store.ping(), timeout=5) is True

        assert (await sqlite_store.sum_live_count("user:2", "global", START_MS)).total == 1


class TestKeyValueWindowStore:
    """Key/value specifics."""

    @pytest.mark.asyncio
    async def test_layout_is_one_entry_per_pair(self):
        """Windows live under fallback_ratelimit_<action>_<identifier>."""
        state = LocalStateStore()
        store = KeyValueWindowStore(state)
        await store.upsert_and_increment("user:1", "add-debt", START_MS, MINUTE)
        await store.upsert_and_increment("user:1", "add-debt", START_MS + 1, MINUTE)

        assert list(state.keys(KEY_PREFIX)) == ["fallback_ratelimit_add-debt_user:1"]
        windows = state.get(window_key("add-debt", "user:1"))
        assert [w["count"] for w in windows] == [1, 1]

    @pytest.mark.asyncio
    async def test_windows_persist_to_file(self, tmp_path):
        """A new store over the same file sees the old counters."""
        path = tmp_path / "state.json"
        store = KeyValueWindowStore(LocalStateStore(path))
        await store.upsert_and_increment("user:1", "global", START_MS, MINUTE)

        reloaded = KeyValueWindowStore(LocalStateStore(path))
        assert (await reloaded.sum_live_count("user:1", "global", START_MS)).total == 1

    @pytest.mark.asyncio
    async def test_corrupt_entry_raises_store_unavailable(self):
        state = LocalStateStore()
        state.set(window_key("global", "user:1"), "not a list")
        store = KeyValueWindowStore(state)

        with pytest.raises(StoreUnavailableError):
            await store.sum_live_count("user:1", "global", START_MS)
