"""
api/limiter.py -- Shared slowapi rate limiter for the sensitive auth endpoints.

Import `limiter` in api/routes/v1/auth.py (per-route limits via
@limiter.limit(AUTH_RATE_LIMIT)) and let api/main.py call
install_rate_limiting(app, limiter).

Using a single shared instance ensures all routes share the same counter
store. If this were instantiated in each module separately, each module
would get its own isolated counter and limits would never trigger.

Semantics: fixed window keyed by client address. The first request from a
key opens a window of AUTH_RATE_LIMIT_WINDOW_SECONDS with count 1; each
further request in the window increments the count; the (N+1)-th request is
rejected with 429 until the window elapses and the count starts over.

Storage: RATE_LIMIT_STORAGE_URI selects the backend ("memory://" default,
"redis://host:6379" for a shared store). Expired windows are dropped by the
storage itself. The in-memory default is per-process and best effort -- two
workers each enforce their own limit.

Known limitation: the limit is checked inside the route wrapper, which
FastAPI only calls after the request body has validated. A request rejected
with 400 for a malformed body therefore never reaches the counter and is not
counted against the client.
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from api.responses import error
from core.config import get_settings
from core.errors import RateLimited

_settings = get_settings()


def build_limiter(storage_uri: str = "memory://") -> Limiter:
    """Return a fixed-window limiter keyed by client address."""
    return Limiter(key_func=get_remote_address, storage_uri=storage_uri, strategy="fixed-window")


limiter = build_limiter(_settings.rate_limit_storage_uri)

AUTH_RATE_LIMIT = (
    f"{_settings.auth_rate_limit_max_requests} per {_settings.auth_rate_limit_window_seconds} seconds"
)


def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 in the standard error envelope with a Retry-After header.

    Retry-After is the full window length: with a fixed window the client
    cannot know how much of it is left, and waiting the whole window is
    always enough.
    """
    item = getattr(getattr(exc, "limit", None), "limit", None)
    retry_after = int(item.get_expiry()) if item is not None else _settings.auth_rate_limit_window_seconds
    response = error(RateLimited())
    response.headers["Retry-After"] = str(retry_after)
    return response


def install_rate_limiting(app: FastAPI, app_limiter: Limiter) -> None:
    """Attach a limiter to an app: state, middleware, and the 429 handler.

    SlowAPI looks for app.state.limiter by convention.
    """
    app.state.limiter = app_limiter
    app.add_middleware(SlowAPIMiddleware)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
