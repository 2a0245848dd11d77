"""
FastAPI Application Entry Point

This module builds the FastAPI application and configures:
- API routes (public health routes, authenticated /api routes)
- Middleware (logging, CORS)
- Exception handlers (429 rate limit, 401, 403, 404, 422, 500); every error
  response carries the X-RateLimit-* headers of the request's decision
- Service lifecycle (window store, cleanup sweep, health monitor)

Design Decisions:
- Services are constructed explicitly and hung off app.state; create_app(...)
  takes overrides for each of them
- Every /api route pays the global per-user limit; mutating item routes
  add their own action limit on top
"""

import logging
from typing import Mapping, Optional

from fastapi import APIRouter, Depends, FastAPI, Request, status
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from app.api import auth, endpoints, items
from app.api.deps import authenticate_user
from app.core.exceptions import (
    AuthenticationError,
    DocumentNotFoundError,
    ForbiddenError,
    RateLimitExceededError,
)
from app.core.setting import Settings
from app.db.session import Database
from app.db.sqlite_adapter import get_database_adapter
from app.middleware.logging import add_logging_middleware, configure_logging
from app.middleware.rate_limit import (
    apply_request_rate_limit_headers,
    global_rate_limit,
    rate_limit_exceeded_handler,
)
from app.services.background_tasks import RateLimitCleanupTask
from app.services.document_store import DocumentStore, InMemoryDocumentStore
from app.services.health_monitor import HealthMonitor
from app.services.item_service import ItemService
from app.services.local_state import LocalStateStore
from app.services.rate_limiter import RateLimiterService
from app.services.sqlite_window_store import SQLiteWindowStore
from app.services.token_verifier import StaticTokenVerifier, TokenVerifier

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


def _error_response(request: Request, status_code: int, message: str) -> JSONResponse:
    response = JSONResponse(status_code=status_code, content={"success": False, "error": message})
    apply_request_rate_limit_headers(request, response)
    return response


async def authentication_error_handler(request: Request, exc: AuthenticationError) -> JSONResponse:
    return _error_response(request, status.HTTP_401_UNAUTHORIZED, exc.reason)


async def not_found_handler(request: Request, exc: DocumentNotFoundError) -> JSONResponse:
    return _error_response(request, status.HTTP_404_NOT_FOUND, str(exc))


async def forbidden_handler(request: Request, exc: ForbiddenError) -> JSONResponse:
    return _error_response(request, status.HTTP_403_FORBIDDEN, str(exc))


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return _error_response(request, exc.status_code, str(exc.detail))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """FastAPI's default 422 body, plus the rate limit headers."""
    response = await request_validation_exception_handler(request, exc)
    apply_request_rate_limit_headers(request, response)
    return response


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return _error_response(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


def build_rate_limiter(settings: Settings) -> RateLimiterService:
    """SQLite-backed limiter engine for the configured database URL."""
    database = Database(
        settings.RATE_LIMIT_DATABASE_URL,
        adapter=get_database_adapter(settings.RATE_LIMIT_DB_BUSY_TIMEOUT_SECONDS),
    )
    return RateLimiterService(SQLiteWindowStore(database))


def create_app(
    settings: Optional[Settings] = None,
    rate_limiter: Optional[RateLimiterService] = None,
    token_verifier: Optional[TokenVerifier] = None,
    documents: Optional[DocumentStore] = None,
    health_monitor: Optional[HealthMonitor] = None,
    auth_tokens: Optional[Mapping[str, str]] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Settings; the module-level settings by default
        rate_limiter: Limiter engine; SQLite-backed from settings by default
        token_verifier: Bearer token verifier; StaticTokenVerifier(AUTH_TOKENS) by default
        documents: Document store for assets/debts; in memory by default
        health_monitor: Monitor attached to the engine; one probing the store by default
        auth_tokens: Shortcut for a StaticTokenVerifier with these tokens
    """
    if settings is None:
        from app.core.setting import settings

    configure_logging(settings.LOG_LEVEL)

    if rate_limiter is None:
        rate_limiter = build_rate_limiter(settings)
    if health_monitor is None:
        health_monitor = HealthMonitor(
            state=LocalStateStore(),
            probe=rate_limiter.ping,
            probe_timeout=settings.HEALTH_PROBE_TIMEOUT_SECONDS,
            health_check_interval=settings.HEALTH_CHECK_INTERVAL_SECONDS,
            incident_retention_days=settings.INCIDENT_RETENTION_DAYS,
        )
    if rate_limiter.monitor is None:
        rate_limiter.monitor = health_monitor
    if token_verifier is None:
        token_verifier = StaticTokenVerifier(
            auth_tokens if auth_tokens is not None else settings.AUTH_TOKENS
        )

    # Title and description are used in auto-generated API documentation
    app = FastAPI(
        title="Net Worth Tracker API",
        description="Assets, debts and net worth history behind a SQLite-backed rate limiter",
        version=VERSION,
        docs_url="/docs",  # Swagger UI documentation
        redoc_url="/redoc",  # ReDoc documentation
    )

    app.state.settings = settings
    app.state.rate_limiter = rate_limiter
    app.state.health_monitor = health_monitor
    app.state.token_verifier = token_verifier
    app.state.item_service = ItemService(documents or InMemoryDocumentStore())
    app.state.cleanup_task = RateLimitCleanupTask(
        rate_limiter,
        interval=settings.RATE_LIMIT_CLEANUP_INTERVAL_SECONDS,
    )

    app.add_exception_handler(RateLimitExceededError, rate_limit_exceeded_handler)
    app.add_exception_handler(AuthenticationError, authentication_error_handler)
    app.add_exception_handler(DocumentNotFoundError, not_found_handler)
    app.add_exception_handler(ForbiddenError, forbidden_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    add_logging_middleware(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.FRONTEND_URL],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/", tags=["Health"])
    async def root():
        """
        Root endpoint for health checks.

        Returns:
            Simple JSON response indicating service is running
        """
        return {
            "message": "Net Worth Tracker API",
            "version": VERSION,
            "docs": "/docs"
        }

    @app.get("/health", tags=["Health"])
    async def health_check():
        """Liveness plus a reachability check of the rate limit store."""
        store_ok = await rate_limiter.ping()
        return {
            "status": "healthy" if store_ok else "degraded",
            "rateLimitStore": "ok" if store_ok else "unavailable",
        }

    # Authenticated routes; the global limit keys on user:<id> set by authenticate_user
    api = APIRouter(
        prefix="/api",
        dependencies=[Depends(authenticate_user), Depends(global_rate_limit)],
    )
    api.include_router(endpoints.router, tags=["Rate Limit"])
    api.include_router(items.assets_router)
    api.include_router(items.debts_router)
    api.include_router(items.networth_router)
    app.include_router(api)

    # Authenticated but not rate limited
    app.include_router(
        endpoints.probe_router,
        prefix="/api",
        tags=["Rate Limit"],
        dependencies=[Depends(authenticate_user)],
    )
    app.include_router(auth.router, prefix="/api")

    @app.on_event("startup")
    async def startup_event():
        """Open the window store and start background work."""
        await rate_limiter.open()
        app.state.cleanup_task.start()
        health_monitor.start()
        logger.info("Rate limiting service initialized")

    @app.on_event("shutdown")
    async def shutdown_event():
        """Cleanup on shutdown."""
        await app.state.cleanup_task.stop()
        await health_monitor.close()
        await rate_limiter.close()

    return app


app = create_app()
