"""
Rate Limiter Service

The limiter engine: decides whether a request for an (identifier, action)
pair is allowed, using whatever window store it was built with.

Algorithm (fixed/rolling hybrid, windows are per-request relative):
1. Look up the action budget (unknown action -> ConfigurationError)
2. Purge the pair's expired windows
3. Sum the live windows; at or over budget -> reject until the earliest
   live window ends
4. Otherwise count the request in a window starting now

Failure policy:
- The store failing never fails the caller. The request is allowed, the
  error is logged and reported to the attached monitor (fail open).
- Only a genuine over-quota condition produces allowed=False.
"""

import logging
import time
from typing import TYPE_CHECKING, Any, Callable, Mapping, Optional

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
from app.services.window_store import WindowStore

if TYPE_CHECKING:
    from app.services.health_monitor import HealthMonitor

logger = logging.getLogger(__name__)


class RateLimiterService:
    """
    Limiter engine over a pluggable window store.

    Args:
        store: Window store backend (SQLite, key/value, ...)
        configs: Action catalog, RATE_LIMIT_CONFIGS by default
        monitor: Optional health monitor receiving every outcome
        clock: Epoch-millisecond clock, injectable for tests
    """

    def __init__(
        self,
        store: WindowStore,
        configs: Mapping[str, ActionConfig] = RATE_LIMIT_CONFIGS,
        monitor: Optional["HealthMonitor"] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.configs = configs
        self.monitor = monitor
        self.clock = clock

    async def open(self) -> None:
        await self.store.open()

    async def close(self) -> None:
        await self.store.close()

    async def check_rate_limit(
        self,
        action: "str | RateLimitAction",
        identifier: str,
    ) -> RateLimitDecision:
        """
        Check and count one request.

        Returns:
            RateLimitDecision; retry_after_seconds is set only when rejected

        Raises:
            ConfigurationError: If the action is not configured
        """
        key = action_name(action)
        config = get_action_config(key, self.configs)
        started = time.perf_counter()
        now = self.clock()

        try:
            # Expired windows must never count toward the limit
            await self.store.purge_expired(now, identifier=identifier, action=key)
            summary = await self.store.sum_live_count(identifier, key, now)

            if summary.total >= config.max_requests:
                reset_at = summary.earliest_window_end or now + config.window_ms
                decision = RateLimitDecision(
                    allowed=False,
                    limit=config.max_requests,
                    remaining=0,
                    reset_at_epoch_ms=reset_at,
                    retry_after_seconds=retry_after_seconds(reset_at, now),
                )
            else:
                await self.store.upsert_and_increment(identifier, key, now, config.window_ms)
                decision = RateLimitDecision(
                    allowed=True,
                    limit=config.max_requests,
                    remaining=max(0, config.max_requests - (summary.total + 1)),
                    reset_at_epoch_ms=now + config.window_ms,
                )
        except Exception as e:
            logger.error(
                f"Rate limit check failed for {key} ({identifier}), allowing request: {e}",
                exc_info=True
            )
            self._record(key, identifier, True, started, error=e)
            return RateLimitDecision(
                allowed=True,
                limit=config.max_requests,
                remaining=max(0, config.max_requests - 1),
                reset_at_epoch_ms=now + config.window_ms,
            )

        self._record(key, identifier, decision.allowed, started)
        return decision

    async def get_rate_limit_status(
        self,
        action: "str | RateLimitAction",
        identifier: str,
    ) -> Optional[RateLimitDecision]:
        """
        Peek at the pair's quota without counting a request.

        Only reads live windows, so repeated calls with no check in between
        return the same decision. Returns None if the store cannot answer.
        """
        key = action_name(action)
        config = get_action_config(key, self.configs)
        now = self.clock()

        try:
            summary = await self.store.sum_live_count(identifier, key, now)
        except Exception as e:
            logger.error(f"Error getting rate limit status for {key} ({identifier}): {e}")
            return None

        remaining = max(0, config.max_requests - summary.total)
        reset_at = summary.earliest_window_end or now + config.window_ms
        allowed = remaining > 0
        return RateLimitDecision(
            allowed=allowed,
            limit=config.max_requests,
            remaining=remaining,
            reset_at_epoch_ms=reset_at,
            retry_after_seconds=None if allowed else retry_after_seconds(reset_at, now),
        )

    async def get_all_statuses(self, identifier: str) -> dict[str, RateLimitDecision]:
        """Peek every configured action; actions the store cannot answer are left out."""
        statuses = {}
        for key in self.configs:
            status = await self.get_rate_limit_status(key, identifier)
            if status is not None:
                statuses[key] = status
        return statuses

    async def reset_rate_limit(self, action: "str | RateLimitAction", identifier: str) -> bool:
        """Drop every window of the pair. Returns True if anything was removed."""
        key = action_name(action)
        get_action_config(key, self.configs)
        try:
            return await self.store.delete(identifier, key) > 0
        except Exception as e:
            logger.error(f"Error resetting rate limit for {key} ({identifier}): {e}")
            return False

    async def get_stats(self) -> dict[str, Any]:
        """
        Store statistics plus the catalog.

        Raises:
            StoreUnavailableError: If the store cannot be read
        """
        stats = await self.store.stats()
        return {
            **stats.model_dump(),
            "configs": {key: config.model_dump() for key, config in self.configs.items()},
        }

    async def cleanup_expired(self) -> int:
        """Delete every expired window (background sweep)."""
        removed = await self.store.purge_expired(self.clock())
        if removed:
            logger.info(f"Cleaned up {removed} expired rate limit entries")
        return removed

    async def ping(self) -> bool:
        return await self.store.ping()

    def _record(
        self,
        action: str,
        identifier: str,
        success: bool,
        started: float,
        error: Optional[Exception] = None,
    ) -> None:
        if self.monitor is None:
            return
        latency_ms = (time.perf_counter() - started) * 1000
        self.monitor.record_operation(action, identifier, success, latency_ms, error=error)
