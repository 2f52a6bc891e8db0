"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Both helpers run an auth/pipeline.py step list against the request's
Authorization: Bearer header and the shared UserStore on app.state:

  get_current_user()    -- AUTHENTICATED: valid session token + live,
                           non-blocked account. Raises 401/403.
  require_active_user() -- ACTIVE_ACCOUNT: the above plus status == active.
                           Used on every administrative mutation.

The live User and the decoded claims are attached to request.state so
middleware and handlers can read them without re-running the pipeline.

Layer rule: auth/dependencies.py may import from fastapi (for Request)
because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Sequence

from fastapi import Request

from auth.models import User
from auth.pipeline import ACTIVE_ACCOUNT, AUTHENTICATED, AuthContext, AuthStep, run_pipeline


def _authorize(request: Request, steps: Sequence[AuthStep]) -> User:
    ctx = run_pipeline(
        steps,
        AuthContext(authorization=request.headers.get("Authorization")),
        request.app.state.user_store,
    )
    request.state.user = ctx.user
    request.state.claims = ctx.claims
    return ctx.user


def get_current_user(request: Request) -> User:
    """Require a valid session for a live, non-blocked account.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    return _authorize(request, AUTHENTICATED)


def require_active_user(request: Request) -> User:
    """Require a verified (active) account. Unverified users may read but not mutate.

    Use as a FastAPI dependency:
        @router.patch("/admin-action")
        def route(user: User = Depends(require_active_user)): ...
    """
    return _authorize(request, ACTIVE_ACCOUNT)
