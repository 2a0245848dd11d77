"""
Shared fixtures: a controllable clock, throwaway SQLite databases and
failing backends for the fail-open paths.
"""

from typing import Optional

import pytest

from app.core.exceptions import StoreUnavailableError
from app.db.session import Database
from app.services.health_monitor import HealthMonitor
from app.services.kv_window_store import KeyValueWindowStore
from app.services.local_state import LocalStateStore
from app.services.rate_limiter import RateLimiterService
from app.services.sqlite_window_store import SQLiteWindowStore
from app.services.window_store import StoreStats, WindowStore, WindowSummary

START_MS = 1_700_000_000_000


class FakeClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, now: int = START_MS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FailingWindowStore(WindowStore):
    """Window store whose every operation fails like a locked database."""

    def __init__(self, message: str = "database is locked"):
        self.message = message
        self.calls = 0

    def _fail(self):
        self.calls += 1
        raise StoreUnavailableError(self.message)

    async def upsert_and_increment(self, identifier, action, now_ms, window_ms) -> int:
        self._fail()

    async def sum_live_count(self, identifier, action, now_ms) -> WindowSummary:
        self._fail()

    async def purge_expired(self, now_ms, identifier: Optional[str] = None, action: Optional[str] = None) -> int:
        self._fail()

    async def delete(self, identifier, action) -> int:
        self._fail()

    async def stats(self) -> StoreStats:
        self._fail()

    async def ping(self) -> bool:
        return False


def sqlite_url(tmp_path, name: str = "rate_limits.db") -> str:
    return f"sqlite+aiosqlite:///{tmp_path / name}"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def database(tmp_path):
    db = Database(sqlite_url(tmp_path))
    await db.open()
    yield db
    await db.close()


@pytest.fixture
def sqlite_store(database):
    return SQLiteWindowStore(database)


@pytest.fixture
def kv_store():
    return KeyValueWindowStore(LocalStateStore())


@pytest.fixture
async def monitor(clock):
    health_monitor = HealthMonitor(state=LocalStateStore(), clock=clock)
    yield health_monitor
    await health_monitor.close()


@pytest.fixture
def rate_limiter(sqlite_store, monitor, clock):
    return RateLimiterService(sqlite_store, monitor=monitor, clock=clock)
