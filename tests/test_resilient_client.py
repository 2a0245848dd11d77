"""
Tests for the client tier: the httpx remote limiter client and the
resilient client's remote/fallback state machine.
"""

import httpx
import pytest

from app.client import create_client
from app.client.remote import RemoteLimiterClient
from app.client.resilient import LimiterState, ResilientRateLimitClient
from app.core.exceptions import RemoteLimiterUnreachableError
from app.core.setting import Settings
from app.main import create_app
from app.services.health_monitor import (
    FORCE_FALLBACK_KEY,
    HealthMonitor,
    RecoveryEvent,
    Severity,
    classify_severity,
)
from app.services.kv_window_store import KeyValueWindowStore
from app.services.local_state import LocalStateStore
from app.services.rate_limiter import RateLimiterService

from tests.conftest import START_MS

BASE_URL = "http://limiter.test/api"


class FakeRemote:
    """In-process stand-in for a remote limiter, served through MockTransport."""

    def __init__(self, clock):
        self.clock = clock
        self.calls = []
        self.mode = "ok"
        self.remaining = {"add-asset": 10, "add-debt": 10, "global": 100}
        self.limits = dict(self.remaining)

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append((request.method, path))

        if self.mode == "timeout":
            raise httpx.ConnectTimeout("timed out", request=request)
        if self.mode == "refused":
            raise httpx.ConnectError("connection refused", request=request)
        if self.mode == "down":
            return httpx.Response(503, json={"success": False, "error": "down"})
        if self.mode == "unauthorized":
            return httpx.Response(401, json={"success": False, "error": "Invalid authentication token"})
        if self.mode == "server-error":
            return httpx.Response(500, json={"success": False, "error": "Internal server error"})
        if self.mode == "plain-429":
            return httpx.Response(429, text="Too Many Requests")

        if path.endswith("/rate-limit/ping"):
            return httpx.Response(200, json={"result": "PONG"})

        if "/rate-limit/consume/" in path:
            action = path.rsplit("/", 1)[-1]
            reset = self.clock() + 60_000
            if self.remaining[action] <= 0:
                return httpx.Response(429, json={
                    "success": False,
                    "error": "Rate limit exceeded",
                    "rateLimitInfo": {
                        "limit": self.limits[action], "remaining": 0, "reset": reset, "retryAfter": 60,
                    },
                })
            self.remaining[action] -= 1
            return httpx.Response(200, json={
                "success": True,
                "limit": self.limits[action],
                "remaining": self.remaining[action],
                "reset": reset,
            })

        if path.endswith("/rate-limit/info"):
            return httpx.Response(200, json={
                "success": True,
                "data": {
                    "identifier": "user:42",
                    "timestamp": self.clock(),
                    "rateLimits": {
                        action: {
                            "limit": self.limits[action],
                            "remaining": remaining,
                            "reset": self.clock() + 30_000,
                            "windowMs": 60_000,
                        }
                        for action, remaining in self.remaining.items()
                    },
                },
            })

        return httpx.Response(404, json={"success": False, "error": "not found"})

    def count(self, suffix: str) -> int:
        return sum(1 for _, path in self.calls if path.endswith(suffix))


@pytest.fixture
def fake_remote(clock):
    return FakeRemote(clock)


@pytest.fixture
def remote(fake_remote):
    return RemoteLimiterClient(
        BASE_URL,
        token="token-42",
        transport=httpx.MockTransport(fake_remote.handler),
    )


@pytest.fixture
async def make_client(remote, clock):
    built = []

    def factory(state=None, with_remote=True):
        state = state if state is not None else LocalStateStore()
        monitor = HealthMonitor(
            state=state,
            probe=remote.ping if with_remote else None,
            clock=clock,
        )
        client = ResilientRateLimitClient(
            "user:42",
            remote=remote if with_remote else None,
            state=state,
            monitor=monitor,
            clock=clock,
        )
        built.append(client)
        return client

    yield factory
    for client in built:
        await client.close()


class TestRemoteLimiterClient:
    """Wire protocol and error mapping."""

    @pytest.mark.asyncio
    async def test_consume_and_429(self, remote, fake_remote):
        fake_remote.remaining["add-asset"] = 1

        allowed = await remote.consume("add-asset")
        assert allowed.allowed is True
        assert allowed.remaining == 0

        blocked = await remote.consume("add-asset")
        assert blocked.allowed is False
        assert blocked.retry_after_seconds == 60
        assert fake_remote.calls[0] == ("POST", "/api/rate-limit/consume/add-asset")

    @pytest.mark.asyncio
    async def test_bearer_token_is_sent(self, clock):
        seen = []

        def handler(request):
            seen.append(request.headers.get("Authorization"))
            return httpx.Response(200, json={"result": "PONG"})

        client = RemoteLimiterClient(BASE_URL, token="secret", transport=httpx.MockTransport(handler))
        assert await client.ping() is True
        assert seen == ["Bearer secret"]
        await client.aclose()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("mode, keyword, severity", [
        ("timeout", "timeout", Severity.MEDIUM),
        ("refused", "network", Severity.MEDIUM),
        ("unauthorized", "unauthorized", Severity.HIGH),
        ("down", "service unavailable", Severity.CRITICAL),
    ])
    async def test_failures_carry_classifiable_messages(self, remote, fake_remote, mode, keyword, severity):
        fake_remote.mode = mode
        with pytest.raises(RemoteLimiterUnreachableError) as excinfo:
            await remote.consume("global")

        assert keyword in str(excinfo.value)
        assert classify_severity(str(excinfo.value)) == severity

    @pytest.mark.asyncio
    async def test_unreadable_rejection_is_a_remote_failure(self, remote, fake_remote):
        fake_remote.mode = "plain-429"
        with pytest.raises(RemoteLimiterUnreachableError) as excinfo:
            await remote.consume("add-asset")

        assert "unreadable rejection" in str(excinfo.value)

    @pytest.mark.asyncio
    async def test_ping_never_raises(self, remote, fake_remote):
        assert await remote.ping() is True
        fake_remote.mode = "refused"
        assert await remote.ping() is False
        fake_remote.mode = "down"
        assert await remote.ping() is False

    @pytest.mark.asyncio
    async def test_against_the_real_api(self, tmp_path):
        """The API's own /rate-limit routes serve as a remote limiter."""
        limiter = RateLimiterService(KeyValueWindowStore())
        app = create_app(rate_limiter=limiter, auth_tokens={"token-42": "42"})
        await limiter.open()

        client = RemoteLimiterClient(
            "http://testserver/api",
            token="token-42",
            transport=httpx.ASGITransport(app=app),
        )
        try:
            decisions = [await client.consume("add-asset") for _ in range(11)]
            assert [d.remaining for d in decisions[:10]] == list(range(9, -1, -1))
            assert decisions[10].allowed is False
            assert decisions[10].retry_after_seconds is not None

            info = await client.get_info()
            assert info["add-asset"].remaining == 0
            assert await client.ping() is True
        finally:
            await client.aclose()
            await limiter.close()


class TestStateMachine:
    """REMOTE_ACTIVE / LOCAL_FALLBACK / RECOVERING."""

    @pytest.mark.asyncio
    async def test_starts_remote_and_uses_remote(self, make_client, fake_remote):
        client = make_client()
        assert client.state == LimiterState.REMOTE_ACTIVE

        decision = await client.check_rate_limit("add-asset")
        assert decision.remaining == 9
        assert fake_remote.count("/consume/add-asset") == 1
        assert client.monitor.get_metrics().total_requests == 1

    @pytest.mark.asyncio
    async def test_no_remote_means_local_only(self, make_client):
        client = make_client(with_remote=False)
        assert client.state == LimiterState.LOCAL_FALLBACK
        assert await client.get_cached_info() is None

        for expected in range(9, -1, -1):
            assert (await client.check_rate_limit("add-debt")).remaining == expected
        assert (await client.check_rate_limit("add-debt")).allowed is False

    @pytest.mark.asyncio
    async def test_forced_fallback_never_calls_remote(self, make_client, fake_remote):
        """With the flag set, quota checks only consult the local counter."""
        state = LocalStateStore()
        state.set(FORCE_FALLBACK_KEY, True)
        client = make_client(state=state)
        assert client.state == LimiterState.LOCAL_FALLBACK

        for _ in range(3):
            await client.check_rate_limit("add-debt")
        quota = await client.check_action_quota("add-debt")

        assert quota.allowed is True
        assert quota.remaining == 7
        assert fake_remote.calls == []

    @pytest.mark.asyncio
    async def test_flag_is_reread_on_every_call(self, make_client, fake_remote):
        client = make_client()
        await client.check_rate_limit("global")

        client.monitor.force_fallback()
        await client.check_rate_limit("global")
        await client.check_action_quota("global")

        assert client.state == LimiterState.LOCAL_FALLBACK
        assert fake_remote.count("/consume/global") == 1
        assert fake_remote.count("/info") == 0

    @pytest.mark.asyncio
    async def test_remote_exception_falls_back_and_reports(self, make_client, fake_remote):
        client = make_client()
        fake_remote.mode = "timeout"

        decision = await client.check_rate_limit("global")

        assert decision.allowed is True
        assert decision.remaining == 99
        assert client.state == LimiterState.LOCAL_FALLBACK
        incidents = client.monitor.get_active_incidents()
        assert len(incidents) == 1
        assert incidents[0].severity == Severity.MEDIUM
        assert client.monitor.pending_recoveries == [60]
        assert client.monitor.get_metrics().error_count == 1

        # Later calls stay local without touching the remote
        fake_remote.calls.clear()
        await client.check_rate_limit("global")
        assert fake_remote.calls == []

    @pytest.mark.asyncio
    async def test_unavailable_remote_sets_force_flag(self, make_client, fake_remote):
        client = make_client()
        fake_remote.mode = "down"

        await client.check_rate_limit("add-asset")

        assert client.monitor.is_fallback_forced() is True
        assert client.monitor.pending_recoveries == [300]
        assert client.monitor.generate_health_report().status == "unhealthy"

    @pytest.mark.asyncio
    async def test_recovery_returns_to_remote(self, make_client, fake_remote):
        client = make_client()
        seen = []
        client.monitor.add_listener(lambda event: seen.append((event, client.state)))

        fake_remote.mode = "down"
        await client.check_rate_limit("global")
        assert client.state == LimiterState.LOCAL_FALLBACK

        # Probe still failing: back to fallback
        assert await client.monitor.attempt_recovery() is False
        assert client.state == LimiterState.LOCAL_FALLBACK

        fake_remote.mode = "ok"
        assert await client.monitor.attempt_recovery() is True
        assert client.state == LimiterState.REMOTE_ACTIVE
        assert client.monitor.is_fallback_forced() is False

        assert seen == [
            (RecoveryEvent.STARTED, LimiterState.RECOVERING),
            (RecoveryEvent.FAILED, LimiterState.LOCAL_FALLBACK),
            (RecoveryEvent.STARTED, LimiterState.RECOVERING),
            (RecoveryEvent.SUCCEEDED, LimiterState.REMOTE_ACTIVE),
        ]

        fake_remote.calls.clear()
        await client.check_rate_limit("global")
        assert fake_remote.count("/consume/global") == 1

    @pytest.mark.asyncio
    async def test_low_severity_error_only_affects_one_call(self, make_client, fake_remote):
        """An HTTP 500 is answered locally once; the next call goes back to the remote."""
        client = make_client()
        fake_remote.mode = "server-error"

        decision = await client.check_rate_limit("global")

        assert decision.allowed is True
        assert decision.remaining == 99
        assert client.state == LimiterState.REMOTE_ACTIVE
        assert [i.severity for i in client.monitor.get_active_incidents()] == [Severity.LOW]

        fake_remote.mode = "ok"
        for _ in range(3):
            await client.check_rate_limit("global")
        assert fake_remote.count("/consume/global") == 4

    @pytest.mark.asyncio
    async def test_monitor_loop_starts_with_traffic(self, make_client):
        client = make_client()
        assert client.monitor.running is False

        await client.check_rate_limit("global")
        assert client.monitor.running is True

        await client.close()
        assert client.monitor.running is False

    @pytest.mark.asyncio
    async def test_monitor_loop_needs_a_remote(self, make_client):
        client = make_client(with_remote=False)
        await client.check_rate_limit("global")
        assert client.monitor.running is False

    @pytest.mark.asyncio
    async def test_remote_429_is_a_decision_not_a_failure(self, make_client, fake_remote):
        client = make_client()
        fake_remote.remaining["add-asset"] = 0

        decision = await client.check_rate_limit("add-asset")

        assert decision.allowed is False
        assert client.state == LimiterState.REMOTE_ACTIVE
        assert client.monitor.get_metrics().blocked_requests == 1
        assert client.monitor.get_active_incidents() == []

    @pytest.mark.asyncio
    async def test_factory_from_settings(self, tmp_path):
        settings = Settings(CLIENT_STATE_PATH=str(tmp_path / "client.json"), REMOTE_LIMITER_URL=None)
        client = create_client("user:42", settings=settings)
        try:
            assert client.state == LimiterState.LOCAL_FALLBACK
            await client.check_rate_limit("global")
            assert (tmp_path / "client.json").exists()
        finally:
            await client.close()


class TestQuotaCache:
    """check_action_quota and the aggregate info cache."""

    @pytest.mark.asyncio
    async def test_info_is_fetched_once_per_ttl(self, make_client, fake_remote, clock):
        client = make_client()

        await client.check_action_quota("add-asset")
        await client.check_action_quota("add-debt")
        clock.advance(4_999)
        await client.check_action_quota("global")
        assert fake_remote.count("/info") == 1

        clock.advance(1)
        await client.check_action_quota("global")
        assert fake_remote.count("/info") == 2

    @pytest.mark.asyncio
    async def test_quota_projects_the_next_request(self, make_client, fake_remote, clock):
        client = make_client()
        fake_remote.remaining["add-asset"] = 3

        quota = await client.check_action_quota("add-asset")
        assert quota.allowed is True
        assert quota.remaining == 2
        assert quota.reset_at_epoch_ms == START_MS + 30_000

    @pytest.mark.asyncio
    async def test_exhausted_quota(self, make_client, fake_remote, clock):
        client = make_client()
        fake_remote.remaining["add-debt"] = 0

        quota = await client.check_action_quota("add-debt")
        assert quota.allowed is False
        assert quota.retry_after_seconds == 30

    @pytest.mark.asyncio
    async def test_cached_reset_in_the_past_means_fresh_window(self, make_client, fake_remote, clock):
        client = make_client()
        client.cache_ttl_ms = 60_000
        fake_remote.remaining["add-debt"] = 0
        await client.get_cached_info()

        clock.advance(30_000)
        quota = await client.check_action_quota("add-debt")
        assert quota.allowed is True
        assert quota.remaining == 9
        assert fake_remote.count("/info") == 1

    @pytest.mark.asyncio
    async def test_consume_updates_cached_remaining(self, make_client, fake_remote):
        client = make_client()
        await client.get_cached_info()
        await client.check_rate_limit("add-asset")

        cached = await client.get_cached_info()
        assert cached["add-asset"].remaining == 9
        assert fake_remote.count("/info") == 1

    @pytest.mark.asyncio
    async def test_info_failure_falls_back(self, make_client, fake_remote):
        client = make_client()
        fake_remote.mode = "refused"

        quota = await client.check_action_quota("global")

        assert quota.allowed is True
        assert quota.remaining == 100
        assert client.state == LimiterState.LOCAL_FALLBACK

    @pytest.mark.asyncio
    async def test_is_approaching_limit(self, make_client, fake_remote):
        client = make_client()
        fake_remote.remaining["add-asset"] = 2
        assert await client.is_approaching_limit("add-asset") is True
        assert await client.is_approaching_limit("add-debt") is False
        assert await client.is_approaching_limit("add-debt", threshold=0.0) is True

    @pytest.mark.asyncio
    async def test_status_and_reset_in_fallback(self, make_client):
        client = make_client(with_remote=False)
        for _ in range(4):
            await client.check_rate_limit("update-debt")

        status = await client.get_rate_limit_status("update-debt")
        assert status.remaining == 16
        assert await client.reset_rate_limit("update-debt") is True
        assert (await client.get_rate_limit_status("update-debt")).remaining == 20

    @pytest.mark.parametrize("offset_ms, text", [
        (-1, "now"),
        (0, "now"),
        (1_000, "1 second"),
        (1_001, "2 seconds"),
        (59_000, "59 seconds"),
        (60_000, "1 minute"),
        (61_000, "2 minutes"),
        (300_000, "5 minutes"),
    ])
    def test_time_until_reset(self, offset_ms, text, clock):
        client = ResilientRateLimitClient(
            "user:42",
            monitor=HealthMonitor(state=LocalStateStore(), clock=clock),
            clock=clock,
        )
        assert client.time_until_reset(START_MS + offset_ms) == text
