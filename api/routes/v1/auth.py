"""
api/routes/v1/auth.py -- Account lifecycle REST endpoints.

Routes:
  POST /api/v1/auth/register         -- create an unverified account, email a verification link
  POST /api/v1/auth/login            -- password login; returns a session token
  GET  /api/v1/auth/verify/{token}   -- activate an unverified account
  POST /api/v1/auth/refresh          -- exchange a (possibly expired) session token for a new one
  GET  /api/v1/auth/me               -- live account behind the session (requires auth)

Security:
  [H2] register and login are rate-limited per client address (AUTH_RATE_LIMIT).
  [C1] authenticate_user() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on responses that carry a token.
  Login answers "Invalid email or password" for both unknown email and wrong
  password. A blocked account answers 403 before its password is checked.
  Verification tokens are refused by refresh and by every protected route;
  refresh re-reads the live row before issuing anything.

No `from __future__ import annotations` here: slowapi wraps the limited
handlers, and FastAPI resolves string annotations against the wrapper's
module globals, not this module's.
"""

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.limiter import AUTH_RATE_LIMIT, limiter
from api.models import LoginRequest, RefreshRequest, RegisterRequest, UserRow, UserSummary
from api.responses import success
from auth.dependencies import get_current_user
from auth.models import TokenPurpose, User
from auth.store import UserStore
from auth.tokens import (
    AccountBlockedError,
    ExpiredTokenError,
    InvalidTokenError,
    authenticate_user,
    create_session_token,
    create_verification_token,
    hash_password,
    verify_token,
)
from core.config import get_settings
from core.errors import Conflict, Forbidden, NotFound, Unauthorized, ValidationError
from core.mailer import Mailer

logger = logging.getLogger("itums.api.auth")

_settings = get_settings()

# Auth policy:
# - POST /api/v1/auth/register:      public, rate-limited
# - POST /api/v1/auth/login:         public, rate-limited
# - GET  /api/v1/auth/verify/{token}: public -- the token is the credential
# - POST /api/v1/auth/refresh:       public -- the token in the body is the credential
# - GET  /api/v1/auth/me:            requires auth (get_current_user)
router = APIRouter()


def _no_store(resp: JSONResponse) -> JSONResponse:
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", status_code=201)
@limiter.limit(AUTH_RATE_LIMIT)  # [H2]
def register(request: Request, body: RegisterRequest, background_tasks: BackgroundTasks) -> JSONResponse:
    """Create an unverified account and schedule the verification email.

    The email goes out as a background task after the 201 is written.
    Mailer.send_verification_email() never raises; on failure it logs the
    link instead.
    """
    user_store: UserStore = request.app.state.user_store
    mailer: Mailer = request.app.state.mailer

    new_user = User(name=body.name, email=body.email, password_hash=hash_password(body.password))
    try:
        user_id = user_store.create_user(new_user)
    except IntegrityError as exc:
        raise Conflict("Email already exists") from exc

    user = user_store.get_by_id(user_id)
    token = create_verification_token(user)
    background_tasks.add_task(mailer.send_verification_email, user.email, user.name, token)
    if _settings.debug:
        logger.info("Verification link for %s: %s", user.email, mailer.verification_url(token))
    logger.info("Registered user %s", user.id)

    return success(
        "User registered successfully. Please check your email for verification.",
        {"user": UserSummary.from_user(user).model_dump()},
        status_code=201,
    )


@router.post("/auth/login")
@limiter.limit(AUTH_RATE_LIMIT)  # [H2]
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; return a session token.

    Uses authenticate_user() which includes timing equalization [C1]. Do NOT
    inline get_by_email() + verify_password() -- that re-introduces the
    timing attack.
    """
    user_store: UserStore = request.app.state.user_store
    try:
        user = authenticate_user(user_store, body.email, body.password)
    except AccountBlockedError as exc:
        logger.info("Blocked account %s attempted login", exc)
        raise Forbidden("Account has been blocked") from exc
    if user is None:
        logger.info("Failed login from %s", request.client.host if request.client else "unknown")
        raise Unauthorized("Invalid email or password")

    user_store.update_last_login(user.id)
    token = create_session_token(user)
    return _no_store(
        success("Login successful", {"token": token, "user": UserSummary.from_user(user).model_dump()})
    )


@router.get("/auth/verify/{token}")
def verify_email(request: Request, token: str) -> JSONResponse:
    """Activate the account named by a verification token.

    Replays are harmless: an active account stays active (200), a blocked
    account stays blocked (403), a deleted account is 404.
    """
    try:
        claims = verify_token(token)
    except (InvalidTokenError, ExpiredTokenError) as exc:
        raise ValidationError("Invalid or expired verification token") from exc
    if claims.purpose is not TokenPurpose.verification:
        raise ValidationError("Invalid token type")

    user_store: UserStore = request.app.state.user_store
    user = user_store.activate(claims.user_id)
    if user is None:
        raise NotFound("User not found")
    if user.is_blocked:
        raise Forbidden("Account is blocked")

    return success("Email verified successfully", {"user": UserSummary.from_user(user).model_dump()})


@router.post("/auth/refresh")
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Issue a fresh session token.

    Expiry of the presented token is ignored; the signature and purpose are
    not. The new token is built from the live row, so a status change since
    the old token was issued is reflected in the new claims.
    """
    try:
        claims = verify_token(body.token, ignore_expiry=True)
    except (InvalidTokenError, ExpiredTokenError) as exc:
        raise Unauthorized("Invalid token") from exc
    if claims.purpose is not TokenPurpose.session:
        raise Unauthorized("Invalid token")

    user_store: UserStore = request.app.state.user_store
    user = user_store.get_by_id(claims.user_id)
    if user is None:
        raise Unauthorized("User not found")
    if user.is_blocked:
        raise Forbidden("Account has been blocked")

    token = create_session_token(user)
    return _no_store(
        success("Token refreshed successfully", {"token": token, "user": UserSummary.from_user(user).model_dump()})
    )


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me")
def me(current_user: User = Depends(get_current_user)) -> JSONResponse:
    """Return the live account behind the presented session token."""
    return success("Current user", {"user": UserRow.from_user(current_user).model_dump()})
