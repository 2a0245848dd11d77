"""
Client tier of the rate limiter: remote limiter client with local fallback.
"""

from typing import Optional

from app.client.remote import RemoteLimiterClient
from app.client.resilient import LimiterState, ResilientRateLimitClient
from app.core.setting import Settings
from app.services.health_monitor import HealthMonitor
from app.services.local_state import LocalStateStore

__all__ = [
    "LimiterState",
    "RemoteLimiterClient",
    "ResilientRateLimitClient",
    "create_client",
]


def create_client(identifier: str, settings: Optional[Settings] = None) -> ResilientRateLimitClient:
    """Build a client for `identifier` from the client-tier settings."""
    if settings is None:
        from app.core.setting import settings

    remote = None
    if settings.REMOTE_LIMITER_URL:
        remote = RemoteLimiterClient(
            settings.REMOTE_LIMITER_URL,
            token=settings.REMOTE_LIMITER_TOKEN,
            timeout=settings.REMOTE_LIMITER_TIMEOUT_SECONDS,
            probe_timeout=settings.HEALTH_PROBE_TIMEOUT_SECONDS,
        )

    state = LocalStateStore(settings.CLIENT_STATE_PATH)
    monitor = HealthMonitor(
        state=state,
        probe=remote.ping if remote is not None else None,
        probe_timeout=settings.HEALTH_PROBE_TIMEOUT_SECONDS,
        health_check_interval=settings.HEALTH_CHECK_INTERVAL_SECONDS,
        incident_retention_days=settings.INCIDENT_RETENTION_DAYS,
    )
    return ResilientRateLimitClient(
        identifier,
        remote=remote,
        state=state,
        monitor=monitor,
        cache_ttl=settings.STATUS_CACHE_TTL_SECONDS,
    )
