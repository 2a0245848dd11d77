"""
Rate Limit Guard

HTTP adapter for the limiter engine, used as a FastAPI dependency bound to
one action per route (or per router for the global limit).

For every request the guard:
1. Resolves the identifier: explicit extractor > user:<id> > ip:<addr>
2. Asks the engine for a decision
3. Sets X-RateLimit-Limit / -Remaining / -Reset (epoch ms); the app's
   exception handlers copy them onto error responses as well
4. Stores the decision on request.state.rate_limit_info
5. Raises RateLimitExceededError when over quota (rendered as HTTP 429)

If the engine itself raises, the guard logs a warning and lets the request
through: limiter infrastructure must never become a user-facing outage.

Usage:
    @router.post("/", dependencies=[Depends(asset_add_rate_limit)])
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse

from app.core.exceptions import RateLimitExceededError
from app.core.rate_limit import RateLimitAction, RateLimitDecision, action_name, get_action_config
from app.core.validators import sanitize_identifier
from app.middleware.logging import get_client_ip

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitInfo:
    """Decision attached to the request for downstream handlers."""
    action: str
    identifier: str
    decision: RateLimitDecision


def apply_rate_limit_headers(response: Response, decision: RateLimitDecision) -> None:
    response.headers["X-RateLimit-Limit"] = str(decision.limit)
    response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
    response.headers["X-RateLimit-Reset"] = str(decision.reset_at_epoch_ms)


def apply_request_rate_limit_headers(request: Request, response: Response) -> None:
    """Copy the decision stored on the request (if any) onto `response`."""
    info = getattr(request.state, "rate_limit_info", None)
    if info is not None:
        apply_rate_limit_headers(response, info.decision)


class RateLimitGuard:
    """
    FastAPI dependency enforcing one action's quota.

    Args:
        action: Action to limit; validated against the catalog immediately
        get_identifier: Optional extractor overriding user/IP resolution
    """

    def __init__(
        self,
        action: "str | RateLimitAction",
        get_identifier: Optional[Callable[[Request], str]] = None,
    ):
        self.action = action_name(action)
        get_action_config(self.action)
        self.get_identifier = get_identifier

    def resolve_identifier(self, request: Request) -> str:
        if self.get_identifier is not None:
            identifier = sanitize_identifier(self.get_identifier(request))
            if identifier:
                return identifier

        user_id = getattr(request.state, "user_id", None)
        if user_id:
            return f"user:{user_id}"

        return f"ip:{get_client_ip(request)}"

    async def __call__(self, request: Request, response: Response) -> None:
        identifier = "unknown"
        try:
            identifier = self.resolve_identifier(request)
            decision = await request.app.state.rate_limiter.check_rate_limit(self.action, identifier)
        except Exception as e:
            logger.warning(
                f"Rate limiting service error for {self.action} ({identifier}), "
                f"allowing request: {e}"
            )
            return

        request.state.rate_limit_info = RateLimitInfo(
            action=self.action,
            identifier=identifier,
            decision=decision,
        )
        apply_rate_limit_headers(response, decision)

        if not decision.allowed:
            raise RateLimitExceededError(decision, self.action, identifier)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceededError) -> JSONResponse:
    """Render an over-quota rejection as HTTP 429."""
    decision = exc.decision
    response = JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={
            "success": False,
            "error": "Rate limit exceeded",
            "rateLimitInfo": {
                "limit": decision.limit,
                "remaining": decision.remaining,
                "reset": decision.reset_at_epoch_ms,
                "retryAfter": decision.retry_after_seconds,
            },
        },
    )
    apply_rate_limit_headers(response, decision)
    if decision.retry_after_seconds is not None:
        response.headers["Retry-After"] = str(decision.retry_after_seconds)
    return response


# Global per-user limit, applied to every protected route
global_rate_limit = RateLimitGuard(RateLimitAction.GLOBAL)

# Authentication attempts are always keyed by address
auth_rate_limit = RateLimitGuard(
    RateLimitAction.AUTH,
    get_identifier=lambda request: f"auth:{get_client_ip(request)}",
)

asset_add_rate_limit = RateLimitGuard(RateLimitAction.ADD_ASSET)
asset_update_rate_limit = RateLimitGuard(RateLimitAction.UPDATE_ASSET)

debt_add_rate_limit = RateLimitGuard(RateLimitAction.ADD_DEBT)
debt_update_rate_limit = RateLimitGuard(RateLimitAction.UPDATE_DEBT)

# Shared by asset and debt deletion
delete_rate_limit = RateLimitGuard(RateLimitAction.DELETE_ITEM)
