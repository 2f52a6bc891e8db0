"""
api/main.py -- FastAPI application entry point for the IT user console API.

Run with:      python manage.py serve
               uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for the dashboard origin(s)
  3. SlowAPIMiddleware     -- rate limiting from api.limiter

Lifespan opens the user store (bounded connection pool), verifies the
database answers, and builds the mailer; shutdown disposes the pool.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import install_rate_limiting, limiter
from api.models import HealthResponse
from api.responses import error
from api.routes.v1.auth import router as auth_router
from api.routes.v1.users import router as users_router
from auth.store import UserStore
from core.config import get_settings
from core.errors import AppError, Internal, ValidationError
from core.mailer import Mailer

API_VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("itums.api")

_settings = get_settings()

# Pydantic error types that mean "field absent or empty".
_MISSING_ERROR_TYPES = {"missing", "string_too_short", "too_short", "blank"}


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. A database that does not answer at startup is fatal -- serving
    every request as a 500 is worse than not starting.
    """
    logger.info("IT user console API starting up")
    app.state.user_store = UserStore(
        _settings.database_url,
        pool_size=_settings.db_pool_size,
        pool_timeout=_settings.db_pool_timeout,
    )
    if not app.state.user_store.ping():
        app.state.user_store.close()
        raise RuntimeError("Database connection failed. Server not started.")
    logger.info("User store initialized")
    app.state.mailer = Mailer(_settings)
    if not app.state.mailer.enabled:
        logger.warning("SMTP not configured -- verification links will be logged instead of emailed")

    yield

    app.state.user_store.close()
    logger.info("IT user console API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="IT User Management API",
    description="Registration, email verification, login, and bulk user administration.",
    version=API_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Starlette wraps middleware in reverse registration order: the LAST
# add_middleware() call is the outermost layer. Register innermost first.
# ---------------------------------------------------------------------------

install_rate_limiting(app, limiter)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[_settings.frontend_url, *_settings.cors_origins],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler. Wall-clock time before and after call_next gives per-request
# latency.
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

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same error envelope so the dashboard can parse
# errors uniformly without inspecting status codes to choose a schema.
# The 429 handler is registered by install_rate_limiting().
# ---------------------------------------------------------------------------


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render any core.errors.AppError raised by routes or the auth pipeline."""
    return error(exc)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 when the body, path, or query fails validation.

    Absent or blank fields are reported together ("Missing required fields:
    name, email"); any other failure reports the first validator message,
    e.g. "Invalid email format".
    """
    errors = exc.errors()
    missing: list[str] = []
    for err in errors:
        field = str(err["loc"][-1]) if err.get("loc") else ""
        if err.get("type") in _MISSING_ERROR_TYPES and field and field not in missing:
            missing.append(field)
    if missing:
        message = f"Missing required fields: {', '.join(missing)}"
    elif errors:
        message = str(errors[0].get("msg", "")).removeprefix("Value error, ") or ValidationError.default_message
    else:
        message = ValidationError.default_message
    return error(ValidationError(message))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return the envelope for framework-raised HTTP errors (unknown route, bad method)."""
    if exc.status_code == 404:
        message = f"Route {request.url.path} not found"
    else:
        message = str(exc.detail)
    err = AppError(message)
    err.status_code = exc.status_code
    err.code = f"http_{exc.status_code}"
    response = error(err)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors (including an unreachable database).

    The traceback goes to the log only. Outside DEBUG the client receives a
    generic message; in DEBUG the exception text is included as detail.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return error(Internal(), detail=repr(exc) if _settings.debug else None)


# ---------------------------------------------------------------------------
# Health and banner
#
# Defined directly in main.py (not in a router) so they are always reachable
# regardless of router registration state. No rate limit applied -- health
# checks from load balancers must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and database reachability."""
    database_ok = request.app.state.user_store.ping()
    return HealthResponse(
        status="healthy" if database_ok else "degraded",
        version=API_VERSION,
        components={"app": "ok", "database": "ok" if database_ok else "error"},
    )


@app.get("/", include_in_schema=False)
async def root() -> dict:
    return {
        "status": "OK",
        "message": "IT User Management API is running",
        "documentation": "/docs",
        "healthCheck": "/api/v1/health",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
