"""
api/main.py -- FastAPI application entry point for Newsdesk.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for the admin front end (credentials allowed)
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan handles startup (stores, auth service, reset notifier, view
throttle, admin seed, publish task) and shutdown (cancel publish task, close
DB engines) symmetrically. Everything a route needs lives on app.state, so
tests can swap any piece before the first request.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.dashboard import router as dashboard_router
from api.routes.v1.posts import admin_router as posts_admin_router
from api.routes.v1.posts import router as posts_router
from auth.notify import LoggingResetNotifier
from auth.service import AuthService
from auth.store import AccountStore
from cache.throttle import ViewThrottle
from content.store import ContentStore
from core.config import get_settings
from core.errors import AccountLocked, NewsdeskError, StorageFailure

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("newsdesk.api")

_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Background publish task
# ---------------------------------------------------------------------------


async def _publish_loop(app: FastAPI, interval: float) -> None:
    """Promote due scheduled posts and trim the view throttle on a timer.

    Runs as a background asyncio task started in lifespan startup. The store
    call is synchronous, so it runs in a worker thread to keep the event loop
    free. A failed pass is logged and the loop carries on with the next tick.
    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(app.state.content_store.publish_due)
        except StorageFailure:
            logger.warning("Scheduled publish pass skipped: storage unavailable")
        app.state.view_throttle.purge_expired()


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Stores first -- the auth service and the seed need them.
      2. Admin seed -- only when ADMIN_EMAIL and ADMIN_PASSWORD are both set.
      3. Publish task last -- references content_store and view_throttle.
    """
    settings = get_settings()
    logger.info("Newsdesk API starting up")
    app.state.account_store = AccountStore(settings.database_url, settings.storage_timeout_seconds)
    app.state.content_store = ContentStore(settings.database_url, settings.storage_timeout_seconds)
    app.state.auth_service = AuthService.from_settings(app.state.account_store, settings)
    app.state.reset_notifier = LoggingResetNotifier()
    app.state.view_throttle = ViewThrottle(settings.view_throttle_seconds, settings.view_throttle_max_entries)
    logger.info("Stores initialized")

    if settings.admin_email and settings.admin_password:
        app.state.auth_service.seed_admin(settings.admin_email, settings.admin_password, settings.admin_name)
    elif not app.state.account_store.has_accounts():
        logger.warning("No accounts exist and ADMIN_EMAIL/ADMIN_PASSWORD are not set -- run 'main.py seed-admin'")

    app.state.publish_task = asyncio.create_task(_publish_loop(app, settings.publish_interval_seconds))

    yield

    # Shutdown
    app.state.publish_task.cancel()
    app.state.content_store.close()
    app.state.account_store.close()
    logger.info("Newsdesk API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

_settings = get_settings()

app = FastAPI(
    title="Newsdesk API",
    description="Blog and news publishing backend: admin sessions, posts, and daily traffic summaries.",
    version=_VERSION,
    lifespan=lifespan,
    # Interactive docs only in dev mode.
    docs_url="/docs" if _settings.debug else None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

# allow_credentials is required for the browser to send the refresh cookie.
app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, tags=["Auth"])
app.include_router(posts_router, tags=["Posts"])
app.include_router(posts_admin_router, tags=["Admin"])
app.include_router(dashboard_router, tags=["Admin"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(NewsdeskError)
async def newsdesk_error_handler(request: Request, exc: NewsdeskError) -> JSONResponse:
    """Render a domain error with its status, code and client-safe message.

    StorageFailure and AccountLocked add Retry-After. Authentication errors add
    Cache-Control: no-store so a rejected token response is never cached.
    """
    response = JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message)).model_dump(exclude_none=True),
    )
    if isinstance(exc, (StorageFailure, AccountLocked)) and exc.retry_after:
        response.headers["Retry-After"] = str(exc.retry_after)
    if request.url.path.startswith("/auth/"):
        response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Retry-After tells clients how many seconds to wait before retrying.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation.

    Only field locations and messages are echoed back; the submitted values
    (which may include a password) are not.
    """
    problems = "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg', 'invalid')}" for err in exc.errors()
    )
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=problems,
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with detail=ErrorDetail(...).model_dump()
    (a dict). When detail is already a structured dict, use it directly as the
    error field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and whether the account store answers."""
    try:
        request.app.state.account_store.has_accounts()
        database = "ok"
    except StorageFailure:
        database = "error"
    return HealthResponse(
        status="healthy" if database == "ok" else "degraded",
        version=_VERSION,
        components={"app": "ok", "database": database},
    )
