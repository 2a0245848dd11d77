"""
Background Task Helpers

Periodic work that runs beside request handling:
- RateLimitCleanupTask: sweeps expired rate limit windows

The sweep only deletes windows whose window_end has already passed, so it
can run while requests are incrementing live windows.
"""

import asyncio
import logging
from typing import Optional

from app.services.rate_limiter import RateLimiterService

logger = logging.getLogger(__name__)


async def cleanup_expired_windows(rate_limiter: RateLimiterService) -> int:
    """
    Run one sweep, logging instead of raising on failure.

    Returns:
        Number of windows removed (0 on failure)
    """
    try:
        return await rate_limiter.cleanup_expired()
    except Exception as e:
        logger.error(
            f"Error cleaning up expired rate limit entries: {str(e)}",
            exc_info=True
        )
        return 0


class RateLimitCleanupTask:
    """
    Runs cleanup_expired_windows every `interval` seconds.

    Args:
        rate_limiter: Engine whose store is swept
        interval: Seconds between sweeps (default: 5 minutes)
    """

    def __init__(self, rate_limiter: RateLimiterService, interval: float = 300.0):
        self.rate_limiter = rate_limiter
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            logger.warning("Rate limit cleanup task already running")
            return
        self._task = asyncio.create_task(self._run())
        logger.info(f"Rate limit cleanup scheduled every {self.interval}s")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await cleanup_expired_windows(self.rate_limiter)
