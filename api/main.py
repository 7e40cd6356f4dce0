"""
api/main.py -- FastAPI application entry point for the school newspaper.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- allows the site's own origin, with credentials
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan handles startup (page cache, rate limiters, stores, migrations,
purge task) and shutdown (cancel purge task, close stores) symmetrically.

Without DATABASE_URL the app still starts: user_store and post_store are
None, routes that need them answer 503, and the legacy admin password is the
only way to log in.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from urllib.parse import urlparse

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.auth import router as auth_router
from api.routes.posts import router as posts_router
from api.routes.public import router as public_router
from api.routes.setup import router as setup_router
from api.routes.upload import router as upload_router
from api.routes.users import router as users_router
from auth.ratelimit import RateLimited, RateLimiters
from auth.store import UserStore
from cache.store import PageCache
from core.config import get_settings
from core.log import configure_logging
from db.migrations import run_migrations
from posts.store import PostStore

VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

settings = get_settings()
configure_logging(debug=settings.debug)
logger = logging.getLogger("schoolpaper.api")

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------

_PURGE_INTERVAL = 10 * 60


async def _purge_loop(app: FastAPI) -> None:
    """Drop expired page-cache entries and rate-limit windows every 10 minutes.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(_PURGE_INTERVAL)
        pages = app.state.cache.purge_expired()
        windows = app.state.rate_limiters.purge_expired()
        logger.debug("Purged %d cached pages and %d rate-limit windows", pages, windows)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Page cache first -- PostStore invalidates through it.
      2. Rate limiters -- in-process counters, one set per worker.
      3. Stores, then pending migrations, only when a database is configured.
      4. Purge task last -- references the cache and the limiters.
    """
    settings = get_settings()
    logger.info("Newspaper API starting up")
    app.state.cache = PageCache(ttl=settings.page_cache_ttl)
    app.state.rate_limiters = RateLimiters()

    if settings.database_configured:
        app.state.user_store = UserStore(settings.database_url)
        app.state.post_store = PostStore(settings.database_url, cache=app.state.cache)
        if settings.auto_migrate:
            for line in run_migrations(app.state.post_store.engine):
                logger.info(line)
        logger.info("Database stores initialized")
    else:
        app.state.user_store = None
        app.state.post_store = None
        logger.warning("DATABASE_URL not set -- running in legacy admin-only mode")

    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    if app.state.post_store is not None:
        app.state.post_store.close()
    if app.state.user_store is not None:
        app.state.user_store.close()
    app.state.cache.close()
    logger.info("Newspaper API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="School Newspaper API",
    description="Articles, accounts and archives for the school newspaper.",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

_site_host = urlparse(settings.site_url).hostname or "localhost"
_allowed_hosts = sorted({_site_host, "localhost", "127.0.0.1", "*.localhost"})
if settings.debug:
    # Starlette's TestClient sends Host: testserver.
    _allowed_hosts.append("testserver")

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=sorted({settings.site_url.rstrip("/"), "http://localhost:3000"}),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
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

app.include_router(auth_router, prefix="/api", tags=["Auth"])
app.include_router(posts_router, prefix="/api", tags=["Posts"])
app.include_router(users_router, prefix="/api", tags=["Users"])
app.include_router(upload_router, prefix="/api", tags=["Upload"])
app.include_router(setup_router, prefix="/api", tags=["Setup"])
app.include_router(public_router, prefix="/api", tags=["Public"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 from slowapi (login / register)."""
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


@app.exception_handler(RateLimited)
async def rate_limited_handler(request: Request, exc: RateLimited) -> JSONResponse:
    """429 from an injected RateLimiter, with the window's reset time."""
    result = exc.result
    reset_at = datetime.fromtimestamp(result.reset_at / 1000, tz=timezone.utc).isoformat()
    logger.warning("Rate limit hit on %s", request.url.path)
    return JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(code="rate_limited", message=exc.message, detail={"resetAt": reset_at})
        ).model_dump(),
        headers={
            "Retry-After": str(result.retry_after_seconds()),
            "X-RateLimit-Remaining": str(result.remaining),
            "X-RateLimit-Reset": str(result.reset_at),
        },
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """400 with {field: message} when the body or query fails schema validation."""
    fields = {}
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        fields[".".join(loc) or "body"] = err.get("msg", "Invalid value")
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=fields,
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
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The traceback goes to the log. The response carries the exception text
    only in debug mode.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
                detail=str(exc) if get_settings().debug else None,
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/api/health", tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return API liveness, version and whether a database is attached."""
    return HealthResponse(version=VERSION, database=getattr(request.app.state, "post_store", None) is not None)
