"""
auth/pipeline.py -- Request authorization as an explicit ordered list of steps.

Each step takes an immutable AuthContext and returns a new one, or raises a
terminal AppError (Unauthorized / Forbidden). run_pipeline() folds the steps
left to right; the first raise stops the chain. Steps never write to the
store -- the only side effect of a successful run is the context it returns.

    AUTHENTICATED  = extract_bearer_token -> verify_session_token -> load_live_user
    ACTIVE_ACCOUNT = AUTHENTICATED -> require_active

Invariant: after load_live_user, ctx.user is the row as it is NOW, not as it
was when the token was signed. Every later decision reads ctx.user.status and
never ctx.claims.status, because an account can be blocked between token
issue and use.

Layer rule: no imports from api/ or fastapi. auth/dependencies.py adapts this
module to FastAPI.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace

from auth.models import TokenClaims, TokenPurpose, User, UserStatus
from auth.store import UserStore
from auth.tokens import ExpiredTokenError, InvalidTokenError, verify_token
from core.errors import Forbidden, Unauthorized

logger = logging.getLogger("itums.auth.pipeline")


@dataclass(frozen=True)
class AuthContext:
    """State threaded through the pipeline. Each step fills in one more field."""

    authorization: str | None = None  # raw Authorization header
    token: str | None = None
    claims: TokenClaims | None = None
    user: User | None = None


AuthStep = Callable[[AuthContext, UserStore], AuthContext]


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------


def extract_bearer_token(ctx: AuthContext, store: UserStore) -> AuthContext:
    header = (ctx.authorization or "").strip()
    scheme, _, token = header.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise Unauthorized("Access token required")
    return replace(ctx, token=token)


def verify_session_token(ctx: AuthContext, store: UserStore) -> AuthContext:
    """Verify signature and expiry, and refuse verification-purpose tokens."""
    try:
        claims = verify_token(ctx.token or "")
    except (InvalidTokenError, ExpiredTokenError) as exc:
        raise Unauthorized("Invalid or expired token") from exc
    if claims.purpose is not TokenPurpose.session:
        logger.warning("Rejected %s token presented as session credential", claims.purpose.value)
        raise Unauthorized("Invalid or expired token")
    return replace(ctx, claims=claims)


def load_live_user(ctx: AuthContext, store: UserStore) -> AuthContext:
    """Re-fetch the account row named by the token and refuse blocked accounts."""
    user = store.get_by_id(ctx.claims.user_id)
    if user is None:
        raise Unauthorized("User no longer exists")
    if user.status is UserStatus.blocked:
        logger.info("Blocked account %s denied access", user.id)
        raise Forbidden("Account has been blocked")
    return replace(ctx, user=user)


def require_active(ctx: AuthContext, store: UserStore) -> AuthContext:
    if ctx.user is None or ctx.user.status is not UserStatus.active:
        raise Forbidden("Active account required for this action")
    return ctx


AUTHENTICATED: tuple[AuthStep, ...] = (extract_bearer_token, verify_session_token, load_live_user)
ACTIVE_ACCOUNT: tuple[AuthStep, ...] = (*AUTHENTICATED, require_active)


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


def run_pipeline(steps: Sequence[AuthStep], ctx: AuthContext, store: UserStore) -> AuthContext:
    """Apply steps in order and return the final context.

    Raises whatever AppError the first failing step raises.
    """
    for step in steps:
        ctx = step(ctx, store)
    return ctx
