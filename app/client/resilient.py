"""
Resilient Rate Limit Client

Client-tier limiter for one identifier. Talks to the remote limiter while it
answers and degrades to a local approximate limiter when it does not.

States:
- REMOTE_ACTIVE: decisions come from the remote limiter
- LOCAL_FALLBACK: decisions come from the local fallback engine; entered
  when no remote is configured, the persisted force-fallback flag is set,
  or a remote call fails in a way the monitor schedules a recovery probe
  for. Other (low severity) failures are answered locally for that one
  call only.
- RECOVERING: a recovery probe is in flight; decisions stay local

The health monitor owns recovery. Its probe is the remote ping and its
recovery events drive LOCAL_FALLBACK -> RECOVERING -> REMOTE_ACTIVE. The
monitor's periodic check is started on the first call made on a running
event loop.

The local fallback is the same RateLimiterService the API runs, over a
KeyValueWindowStore on the client's LocalStateStore. Its counters are not
shared across devices or processes.
"""

import logging
import time
from enum import Enum
from typing import Mapping, Optional

from app.api.schemas import ActionStatus
from app.client.remote import RemoteLimiterClient
from app.core.rate_limit import (
    RATE_LIMIT_CONFIGS,
    ActionConfig,
    RateLimitAction,
    RateLimitDecision,
    action_name,
    get_action_config,
    now_ms,
    retry_after_seconds,
)
from app.services.health_monitor import HealthMonitor, RecoveryEvent, schedules_recovery
from app.services.kv_window_store import KeyValueWindowStore
from app.services.local_state import LocalStateStore
from app.services.rate_limiter import RateLimiterService

logger = logging.getLogger(__name__)


class LimiterState(str, Enum):
    REMOTE_ACTIVE = "remote_active"
    LOCAL_FALLBACK = "local_fallback"
    RECOVERING = "recovering"


class ResilientRateLimitClient:
    """
    Args:
        identifier: Subject every decision is made for (e.g. user:42)
        remote: Remote limiter client; local fallback only when omitted
        state: Durable client state (fallback counters, flag, metrics)
        monitor: Health monitor; one probing the remote is built when omitted
        configs: Action catalog shared with the server
        cache_ttl: Seconds the aggregate quota info is reused
        clock: Epoch-millisecond clock
    """

    def __init__(
        self,
        identifier: str,
        remote: Optional[RemoteLimiterClient] = None,
        state: Optional[LocalStateStore] = None,
        monitor: Optional[HealthMonitor] = None,
        configs: Mapping[str, ActionConfig] = RATE_LIMIT_CONFIGS,
        cache_ttl: float = 5.0,
        clock=now_ms,
    ):
        self.identifier = identifier
        self.remote = remote
        self.state_store = state if state is not None else LocalStateStore()
        self.configs = configs
        self.cache_ttl_ms = int(cache_ttl * 1000)
        self.clock = clock

        if monitor is None:
            monitor = HealthMonitor(
                state=self.state_store,
                probe=remote.ping if remote is not None else None,
                clock=clock,
            )
        self.monitor = monitor
        self.monitor.add_listener(self._on_recovery_event)

        # Reports to the monitor are made here, not by the fallback engine
        self.fallback = RateLimiterService(
            KeyValueWindowStore(self.state_store),
            configs=configs,
            clock=clock,
        )

        self._cache: Optional[dict[str, ActionStatus]] = None
        self._cache_expires_at = 0
        self._monitor_started = False

        if remote is None or self.monitor.is_fallback_forced():
            self._state = LimiterState.LOCAL_FALLBACK
        else:
            self._state = LimiterState.REMOTE_ACTIVE

    @property
    def state(self) -> LimiterState:
        """Current state; the force-fallback flag is re-read on every access."""
        if self.remote is None:
            return LimiterState.LOCAL_FALLBACK
        if self._state == LimiterState.REMOTE_ACTIVE and self.monitor.is_fallback_forced():
            logger.warning("Force fallback flag set, switching to local rate limiting")
            self._state = LimiterState.LOCAL_FALLBACK
        return self._state

    def _ensure_monitor_running(self) -> None:
        if self._monitor_started or self.remote is None:
            return
        self._monitor_started = True
        self.monitor.start()

    def _enter_fallback(self, error: Exception) -> None:
        if not schedules_recovery(error):
            logger.warning(f"Remote rate limiter error, answering this call locally: {error}")
            return
        if self._state == LimiterState.REMOTE_ACTIVE:
            logger.warning(f"Remote rate limiter failed, using local fallback: {error}")
        self._state = LimiterState.LOCAL_FALLBACK

    def _on_recovery_event(self, event: RecoveryEvent) -> None:
        if self.remote is None:
            return
        if event == RecoveryEvent.STARTED and self._state == LimiterState.LOCAL_FALLBACK:
            self._state = LimiterState.RECOVERING
        elif event == RecoveryEvent.SUCCEEDED:
            if self._state != LimiterState.REMOTE_ACTIVE:
                logger.info("Remote rate limiter recovered, leaving local fallback")
            self._state = LimiterState.REMOTE_ACTIVE
            self.clear_cache()
        elif event == RecoveryEvent.FAILED and self._state == LimiterState.RECOVERING:
            self._state = LimiterState.LOCAL_FALLBACK

    async def close(self) -> None:
        await self.monitor.close()
        if self.remote is not None:
            await self.remote.aclose()

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    async def check_rate_limit(self, action: "str | RateLimitAction") -> RateLimitDecision:
        """Check and count one request; never raises for limiter failures."""
        key = action_name(action)
        self._ensure_monitor_running()
        get_action_config(key, self.configs)
        started = time.perf_counter()

        if self.state == LimiterState.REMOTE_ACTIVE:
            try:
                decision = await self.remote.consume(key)
            except Exception as e:
                self._enter_fallback(e)
                decision = await self.fallback.check_rate_limit(key, self.identifier)
                self._report(key, decision.allowed, started, error=e)
                return decision

            self._remember(key, decision)
            self._report(key, decision.allowed, started)
            return decision

        decision = await self.fallback.check_rate_limit(key, self.identifier)
        self._report(key, decision.allowed, started)
        return decision

    async def check_action_quota(self, action: "str | RateLimitAction") -> RateLimitDecision:
        """
        Would a request of `action` be allowed right now?

        Answers from the cached aggregate info while the remote is active
        (refetched at most once per cache TTL). In fallback mode only the
        local fallback counter is consulted. Nothing is counted.
        """
        key = action_name(action)
        self._ensure_monitor_running()
        config = get_action_config(key, self.configs)

        if self.state != LimiterState.REMOTE_ACTIVE:
            return await self._local_status(key)

        info = await self.get_cached_info()
        if info is None or key not in info:
            return await self._local_status(key)

        status = info[key]
        now = self.clock()
        if now >= status.reset:
            return RateLimitDecision(
                allowed=True,
                limit=status.limit,
                remaining=max(0, status.limit - 1),
                reset_at_epoch_ms=now + status.window_ms,
            )
        if status.remaining > 0:
            return RateLimitDecision(
                allowed=True,
                limit=status.limit,
                remaining=status.remaining - 1,
                reset_at_epoch_ms=status.reset,
            )
        return RateLimitDecision(
            allowed=False,
            limit=config.max_requests,
            remaining=0,
            reset_at_epoch_ms=status.reset,
            retry_after_seconds=retry_after_seconds(status.reset, now),
        )

    async def get_rate_limit_status(
        self,
        action: "str | RateLimitAction",
        use_cache: bool = False,
    ) -> RateLimitDecision:
        """Non-counting read of one action's quota (fresh unless use_cache)."""
        key = action_name(action)
        self._ensure_monitor_running()
        get_action_config(key, self.configs)

        if self.state == LimiterState.REMOTE_ACTIVE:
            if not use_cache:
                self.clear_cache()
            info = await self.get_cached_info()
            if info is not None and key in info:
                status = info[key]
                now = self.clock()
                allowed = status.remaining > 0 or now >= status.reset
                return RateLimitDecision(
                    allowed=allowed,
                    limit=status.limit,
                    remaining=status.remaining,
                    reset_at_epoch_ms=status.reset,
                    retry_after_seconds=None if allowed else retry_after_seconds(status.reset, now),
                )

        return await self._local_status(key)

    async def reset_rate_limit(self, action: "str | RateLimitAction") -> bool:
        """Drop the local fallback counters of `action` and the cached info."""
        self.clear_cache()
        return await self.fallback.reset_rate_limit(action, self.identifier)

    async def is_approaching_limit(self, action: "str | RateLimitAction", threshold: float = 0.8) -> bool:
        status = await self.get_rate_limit_status(action, use_cache=True)
        if status.limit <= 0:
            return False
        return (status.limit - status.remaining) / status.limit >= threshold

    # ------------------------------------------------------------------
    # Aggregate info cache
    # ------------------------------------------------------------------

    async def get_cached_info(self) -> Optional[dict[str, ActionStatus]]:
        """
        Aggregate quota info, fetched from the remote at most once per TTL.

        Returns None when there is nothing fresh and the remote is not
        active or fails.
        """
        if self._cache is not None and self.clock() < self._cache_expires_at:
            return self._cache

        if self.state != LimiterState.REMOTE_ACTIVE:
            return None

        started = time.perf_counter()
        try:
            info = await self.remote.get_info()
        except Exception as e:
            self._enter_fallback(e)
            self._report("rate-limit-info", True, started, error=e)
            return None

        self._cache = info
        self._cache_expires_at = self.clock() + self.cache_ttl_ms
        return info

    def clear_cache(self) -> None:
        self._cache = None
        self._cache_expires_at = 0

    def time_until_reset(self, reset_at_ms: int) -> str:
        """Human readable wait until `reset_at_ms`."""
        diff = reset_at_ms - self.clock()
        if diff <= 0:
            return "now"

        seconds = retry_after_seconds(reset_at_ms, self.clock())
        if seconds < 60:
            return f"{seconds} second{'s' if seconds != 1 else ''}"

        minutes = -(-seconds // 60)
        return f"{minutes} minute{'s' if minutes != 1 else ''}"

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _local_status(self, key: str) -> RateLimitDecision:
        status = await self.fallback.get_rate_limit_status(key, self.identifier)
        if status is not None:
            return status

        config = get_action_config(key, self.configs)
        return RateLimitDecision(
            allowed=True,
            limit=config.max_requests,
            remaining=config.max_requests,
            reset_at_epoch_ms=self.clock() + config.window_ms,
        )

    def _remember(self, key: str, decision: RateLimitDecision) -> None:
        if self._cache is None or key not in self._cache:
            return
        self._cache[key] = self._cache[key].model_copy(update={"remaining": decision.remaining})

    def _report(
        self,
        action: str,
        success: bool,
        started: float,
        error: Optional[Exception] = None,
    ) -> None:
        latency_ms = (time.perf_counter() - started) * 1000
        self.monitor.record_operation(action, self.identifier, success, latency_ms, error=error)
