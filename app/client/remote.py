"""
Remote Limiter Client

httpx client for a remote limiter speaking the /rate-limit protocol:

- POST {base}/rate-limit/consume/{action}   count one request
- GET  {base}/rate-limit/info               per-action quota (no counting)
- GET  {base}/rate-limit/ping               reachability probe

Every call is bounded by a timeout so a hung remote never stalls the caller.
A 429 is a decision, not an error. Anything else that is not a 2xx is
raised as RemoteLimiterUnreachableError, with a message the health monitor
can classify.
"""

import logging
from typing import Optional

import httpx
from pydantic import ValidationError

from app.api.schemas import ActionStatus, ConsumeResponse, RateLimitInfoResponse
from app.core.exceptions import RemoteLimiterUnreachableError
from app.core.rate_limit import RateLimitDecision, now_ms, retry_after_seconds

logger = logging.getLogger(__name__)


class RemoteLimiterClient:
    """
    Args:
        base_url: Root the /rate-limit routes hang off (e.g. http://host/api)
        token: Bearer token for the remote
        timeout: Seconds allowed for consume and info calls
        probe_timeout: Seconds allowed for the ping
        transport: Optional httpx transport (tests mount MockTransport or ASGITransport)
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 1.0,
        probe_timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self.probe_timeout = probe_timeout
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise RemoteLimiterUnreachableError(f"Remote limiter timeout on {url}: {e}") from e
        except httpx.TransportError as e:
            raise RemoteLimiterUnreachableError(f"Remote limiter network error on {url}: {e}") from e

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        code = response.status_code
        if code in (401, 403):
            raise RemoteLimiterUnreachableError(f"Remote limiter unauthorized (HTTP {code})", code)
        if code == 503:
            raise RemoteLimiterUnreachableError("Remote limiter service unavailable (HTTP 503)", code)
        if code >= 400:
            raise RemoteLimiterUnreachableError(f"Remote limiter returned HTTP {code}", code)

    async def consume(self, action: str) -> RateLimitDecision:
        """
        Count one request of `action` on the remote.

        Raises:
            RemoteLimiterUnreachableError: Remote failed or answered garbage
        """
        response = await self._request("POST", f"/rate-limit/consume/{action}")

        if response.status_code == 429:
            try:
                info = response.json().get("rateLimitInfo") or {}
                reset = int(info.get("reset", now_ms()))
                retry_after = info.get("retryAfter")
                if retry_after is None:
                    retry_after = retry_after_seconds(reset, now_ms())
                return RateLimitDecision(
                    allowed=False,
                    limit=int(info.get("limit", 0)),
                    remaining=0,
                    reset_at_epoch_ms=reset,
                    retry_after_seconds=int(retry_after),
                )
            except (ValueError, TypeError, AttributeError, ValidationError) as e:
                raise RemoteLimiterUnreachableError(f"Remote limiter sent an unreadable rejection: {e}") from e

        self._raise_for_status(response)
        try:
            body = ConsumeResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise RemoteLimiterUnreachableError(f"Remote limiter sent an unreadable decision: {e}") from e

        return RateLimitDecision(
            allowed=body.success,
            limit=body.limit,
            remaining=max(0, body.remaining),
            reset_at_epoch_ms=body.reset,
            retry_after_seconds=None if body.success else body.retry_after,
        )

    async def get_info(self) -> dict[str, ActionStatus]:
        """Per-action quota of the caller, as the remote sees it."""
        response = await self._request("GET", "/rate-limit/info")
        self._raise_for_status(response)
        try:
            body = RateLimitInfoResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise RemoteLimiterUnreachableError(f"Remote limiter sent unreadable info: {e}") from e
        return body.data.rate_limits

    async def ping(self) -> bool:
        try:
            response = await self._client.get("/rate-limit/ping", timeout=self.probe_timeout)
        except httpx.HTTPError as e:
            logger.warning(f"Remote limiter ping failed: {e}")
            return False
        return response.status_code == 200
