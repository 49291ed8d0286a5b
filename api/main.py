"""
api/main.py -- FastAPI application entry point for the login center.

Exposes the authorization-code protocol to client backends (token exchange,
session verification, public logout, setup-code claim) and the management
API used by project owners and operators.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- per-route limits for hub and admin routes
  4. SessionMiddleware     -- authlib keeps the OAuth state value here

Client-facing endpoints are throttled by the database limiter in
security/rate_limit.py instead of slowapi, because their budget must be
shared by every worker process.

Lifespan opens every store on startup, starts the retention task, and
closes everything again on shutdown.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from starlette.middleware.sessions import SessionMiddleware

from api.limiter import limiter
from api.models import ErrorResponse, HealthCheck, HealthResponse
from api.routes.v1.admin import router as admin_router
from api.routes.v1.audit import router as audit_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.exchange import router as exchange_router
from api.routes.v1.projects import router as projects_router
from api.routes.v1.public import router as public_router
from auth.oauth import get_enabled_providers
from auth.oauth import oauth as oauth_client
from auth.store import UserStore
from auth.tokens import _SECRET_KEY
from core.config import get_settings
from core.db import get_engine
from core.errors import HubError
from oauth2.codes import authorization_codes_repo, setup_codes_repo
from projects.store import ProjectStore
from security.audit import AuditLogger
from security.models import AuditAction
from security.rate_limit import RateLimiter
from security.retention import perform_retention_cleanup

APP_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("logincenter.api")

settings = get_settings()

# ---------------------------------------------------------------------------
# Background retention task
# ---------------------------------------------------------------------------


def run_retention_once(app: FastAPI) -> None:
    """One hygiene pass: old audit entries, expired windows, expired codes."""
    state = app.state
    result = perform_retention_cleanup(state.audit, state.rate_limiter, get_settings().audit_retention_days)
    codes_deleted = state.auth_codes.purge_expired() + state.setup_codes.purge_expired()
    state.audit.log_success(
        AuditAction.RETENTION_CLEANUP,
        metadata={
            "auditLogsDeleted": result.audit_logs_deleted,
            "rateLimitsDeleted": result.rate_limits_deleted,
            "codesDeleted": codes_deleted,
            "retentionDays": result.retention_days,
            "trigger": "scheduler",
        },
    )


async def _retention_loop(app: FastAPI) -> None:
    """Run retention every RETENTION_INTERVAL_HOURS.

    asyncio.sleep yields to the event loop between passes. CancelledError
    from task.cancel() during shutdown propagates out of asyncio.sleep and
    unwinds the coroutine. A failed pass is logged and the loop carries on;
    cleanup is hygiene, never correctness.
    """
    interval = get_settings().retention_interval_hours * 60 * 60
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(run_retention_once, app)
        except Exception:
            logger.exception("Scheduled retention cleanup failed")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open stores on startup and close them on shutdown.

    All stores share one engine per DATABASE_URL (core.db.get_engine), so
    the tables are created once by whichever store opens first.
    """
    logger.info("Login center starting up")
    app.state.user_store = UserStore()
    app.state.project_store = ProjectStore()
    app.state.auth_codes = authorization_codes_repo()
    app.state.setup_codes = setup_codes_repo()
    app.state.audit = AuditLogger()
    app.state.rate_limiter = RateLimiter()
    app.state.oauth = oauth_client
    providers = [p["name"] for p in get_enabled_providers()]
    if providers:
        logger.info("Identity providers enabled: %s", ", ".join(providers))
    else:
        logger.warning("No identity provider configured -- hub login is unavailable")
    app.state.retention_task = asyncio.create_task(_retention_loop(app))

    yield

    app.state.retention_task.cancel()
    app.state.rate_limiter.close()
    app.state.audit.close()
    app.state.setup_codes.close()
    app.state.auth_codes.close()
    app.state.project_store.close()
    app.state.user_store.close()
    logger.info("Login center shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Login Center API",
    description="Centralized sign-in hub: authorization codes, session verification and project access control.",
    version=APP_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI -> Session.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_host_list)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-API-Key"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# authlib stores the OAuth state value in the Starlette session between the
# redirect to the provider and the callback; the callback verifies it.
app.add_middleware(SessionMiddleware, secret_key=_SECRET_KEY, https_only=settings.secure_cookies)

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

app.include_router(exchange_router, prefix="/api/v1", tags=["Client API"])
app.include_router(public_router, prefix="/api/v1", tags=["Client API"])
app.include_router(projects_router, prefix="/api/v1", tags=["Projects"])
app.include_router(audit_router, prefix="/api/v1", tags=["Audit"])
app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(admin_router, prefix="/api/v1", tags=["Admin"])
# Web UI router is mounted by asgi.py, not here.
# api/ and web/ are independent layers -- only the top-level asgi.py imports both.


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same {"error": message, "code": code} envelope so
# client SDKs can parse errors without branching on the status code.
# ---------------------------------------------------------------------------


def _error(status_code: int, message: str, code: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=message, code=code).model_dump())


@app.exception_handler(HubError)
async def hub_error_handler(request: Request, exc: HubError) -> JSONResponse:
    """Render any service-layer error. 429s carry Retry-After in seconds."""
    response = _error(exc.status_code, exc.message, exc.code)
    retry_after = getattr(exc, "retry_after_seconds", None)
    if retry_after is not None:
        response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """slowapi limit hit on a hub or admin route."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, "Too many requests. Please try again later.", "rate_limited")
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies and query params are 400, like every other bad request."""
    first = exc.errors()[0] if exc.errors() else {}
    message = str(first.get("msg", "Request validation failed."))
    return _error(400, message, "validation_error")


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return _error(exc.status_code, str(exc.detail), f"http_{exc.status_code}")


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "Internal Server Error", "internal_error")


# ---------------------------------------------------------------------------
# Health endpoint
#
# No rate limit -- load balancers and uptime monitors must not be throttled.
# ---------------------------------------------------------------------------


def _check_database() -> HealthCheck:
    start = time.perf_counter()
    try:
        with get_engine(get_settings().database_url).connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as exc:
        logger.error("Health check: database unreachable: %s", exc)
        return HealthCheck(status="error", message="Database unreachable")
    latency = round((time.perf_counter() - start) * 1000)
    return HealthCheck(status="ok", latency_ms=latency)


def _check_auth_config() -> HealthCheck:
    if get_enabled_providers():
        return HealthCheck(status="ok")
    return HealthCheck(status="error", message="No identity provider configured")


@app.get("/api/v1/health", tags=["Health"])
@app.get("/api/health", include_in_schema=False)
def health() -> JSONResponse:
    """Report operational / degraded / outage. 503 on outage."""
    checks = {"database": _check_database(), "auth": _check_auth_config()}
    if checks["database"].status != "ok":
        status = "outage"
    elif any(c.status != "ok" for c in checks.values()):
        status = "degraded"
    else:
        status = "operational"

    body = HealthResponse(
        status=status,
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=APP_VERSION,
        checks=checks,
    )
    response = JSONResponse(
        status_code=503 if status == "outage" else 200,
        content=body.model_dump(by_alias=True, exclude_none=True),
    )
    response.headers["Cache-Control"] = "no-store"
    return response
