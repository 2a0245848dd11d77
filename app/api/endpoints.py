"""
Rate Limit Endpoints

Introspection and remote-limiter routes, mounted under /api behind the
authentication dependency.

- GET  /rate-limit/info            per-action quota of the caller (no counting)
- GET  /rate-limit/stats           operator view of the window store
- GET  /rate-limit/health          health monitor report
- POST /rate-limit/consume/{action} count one request for the caller
- GET  /rate-limit/ping            reachability probe (not rate limited)

The consume/info/ping trio is the protocol spoken by the remote limiter
client, so any deployment of this API can serve as the client's remote.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from app.api.deps import get_rate_limiter
from app.api.schemas import (
    ActionConfigOut,
    ActionStatus,
    ConsumeResponse,
    RateLimitInfoData,
    RateLimitInfoResponse,
    RateLimitStatsData,
    RateLimitStatsResponse,
)
from app.core.exceptions import RateLimitExceededError
from app.core.rate_limit import now_ms
from app.middleware.rate_limit import apply_rate_limit_headers
from app.services.rate_limiter import RateLimiterService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rate-limit")

# Separate router so the probe does not spend global quota
probe_router = APIRouter(prefix="/rate-limit")


@router.get(
    "/info",
    response_model=RateLimitInfoResponse,
    summary="Current rate limit status",
    description="Remaining quota and reset time of every action for the caller"
)
async def get_rate_limit_info(
    request: Request,
    rate_limiter: RateLimiterService = Depends(get_rate_limiter),
) -> RateLimitInfoResponse:
    identifier = f"user:{request.state.user_id}"
    statuses = await rate_limiter.get_all_statuses(identifier)

    return RateLimitInfoResponse(
        data=RateLimitInfoData(
            identifier=identifier,
            rate_limits={
                action: ActionStatus(
                    limit=decision.limit,
                    remaining=decision.remaining,
                    reset=decision.reset_at_epoch_ms,
                    window_ms=rate_limiter.configs[action].window_ms,
                )
                for action, decision in statuses.items()
            },
            timestamp=now_ms(),
        )
    )


@router.get(
    "/stats",
    response_model=RateLimitStatsResponse,
    summary="Rate limit store statistics",
    description="Total entries, entries by action and oldest entry of the window store"
)
async def get_rate_limit_stats(
    rate_limiter: RateLimiterService = Depends(get_rate_limiter),
) -> RateLimitStatsResponse:
    try:
        stats = await rate_limiter.get_stats()
    except Exception as e:
        logger.error(f"Error getting rate limit stats: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get rate limit statistics"
        )

    return RateLimitStatsResponse(
        data=RateLimitStatsData(
            total_entries=stats["total_entries"],
            entries_by_action=stats["entries_by_action"],
            oldest_entry=stats["oldest_entry"],
            timestamp=now_ms(),
            configs={
                action: ActionConfigOut(**config)
                for action, config in stats["configs"].items()
            },
        )
    )


@router.get(
    "/health",
    summary="Rate limiter health report",
)
async def get_rate_limit_health(request: Request) -> dict:
    monitor = request.app.state.health_monitor
    report = monitor.generate_health_report()
    return {"success": True, "data": report.model_dump(mode="json")}


@router.post(
    "/consume/{action}",
    response_model=ConsumeResponse,
    summary="Count one request",
    description="Remote limiter protocol: checks and counts one request of the caller"
)
async def consume_rate_limit(
    action: str,
    request: Request,
    response: Response,
    rate_limiter: RateLimiterService = Depends(get_rate_limiter),
) -> ConsumeResponse:
    if action not in rate_limiter.configs:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown rate limit action '{action}'"
        )

    identifier = f"user:{request.state.user_id}"
    decision = await rate_limiter.check_rate_limit(action, identifier)
    if not decision.allowed:
        raise RateLimitExceededError(decision, action, identifier)

    apply_rate_limit_headers(response, decision)
    return ConsumeResponse(
        success=True,
        limit=decision.limit,
        remaining=decision.remaining,
        reset=decision.reset_at_epoch_ms,
    )


@probe_router.get("/ping", summary="Rate limiter reachability probe")
async def ping_rate_limiter(
    rate_limiter: RateLimiterService = Depends(get_rate_limiter),
) -> dict:
    if not await rate_limiter.ping():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Rate limit store unavailable"
        )
    return {"result": "PONG"}
