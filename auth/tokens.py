"""
auth/tokens.py -- JWT issue/verify and password hashing.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       sub (user id), email, purpose, and expiry; session tokens also carry
       the status at issue time. Tokens are stateless -- there is no
       blacklist. A session token is revoked only by blocking or deleting
       the account, which the auth pipeline checks against the live row on
       every protected request.

  Purpose tag: "verification" tokens prove email ownership and nothing else.
       The pipeline and refresh path refuse anything but "session", so a
       leaked verification link never grants API access.

  Errors: verify_token() raises InvalidTokenError (bad signature, malformed,
       missing claims) or ExpiredTokenError (signature fine, exp passed).
       Callers map both onto the HTTP taxonomy in core/errors.py.

  Passwords: bcrypt directly (no passlib wrapper), cost from BCRYPT_ROUNDS.
       The _DUMMY_HASH constant enables timing equalization in
       authenticate_user() so response time does not reveal whether an email
       is registered [C1].

Layer rule: no imports from api/. Import from core/ is allowed -- core/ is
the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from auth.models import TokenClaims, TokenPurpose, User, UserStatus
from core.config import get_settings

if TYPE_CHECKING:
    from auth.store import UserStore

logger = logging.getLogger("itums.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton [M6]
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"


class InvalidTokenError(Exception):
    """Token signature is wrong, the token is malformed, or claims are missing."""


class ExpiredTokenError(Exception):
    """Token signature is valid but its exp claim has passed."""


class AccountBlockedError(Exception):
    """The account exists but is blocked. Raised before the password is checked."""


# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    bcrypt only uses the first 72 bytes of input, and bcrypt 5.x raises on
    anything longer, so the encoded password is cut at 72 bytes here and in
    verify_password(). The API layer caps passwords at 128 characters.
    """
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8")[:72], salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8")[:72], hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash in the store -- treat as a failed match.
        return False


# Timing equalization dummy hash [C1]. Computed once at module load with the
# configured cost so unknown-email logins take as long as wrong passwords.
_DUMMY_HASH: str = hash_password("itums_timing_dummy")


def authenticate_user(store: UserStore, email: str, password: str) -> User | None:
    """Check email + password with timing equalization. Returns the User or None.

    Order: unknown email -> None, blocked -> AccountBlockedError, then the
    password. A blocked account is refused whatever password was sent.

    Unknown emails still run bcrypt against _DUMMY_HASH so they cost the same
    as a wrong password [C1].
    """
    user = store.get_by_email(email)
    if user is None:
        # Equalize timing -- do NOT return early before running bcrypt [C1]
        verify_password(password, _DUMMY_HASH)
        return None
    if user.is_blocked:
        raise AccountBlockedError(user.id)
    if not verify_password(password, user.password_hash):
        return None
    return user


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def issue_token(
    user_id: str,
    email: str,
    purpose: TokenPurpose,
    ttl_seconds: int,
    status: UserStatus | None = None,
) -> str:
    """Encode a signed JWT.

    Args:
        user_id:     Account UUID, stored as the sub claim.
        email:       Normalised account email.
        purpose:     TokenPurpose.session or TokenPurpose.verification.
        ttl_seconds: Lifetime from now. Negative values produce an
                     already-expired token (used by tests).
        status:      Optional account status at issue time.
    """
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "email": email,
        "purpose": TokenPurpose(purpose).value,
        "iat": now,
        "exp": now + timedelta(seconds=ttl_seconds),
    }
    if status is not None:
        payload["status"] = UserStatus(status).value
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def create_session_token(user: User) -> str:
    """Issue a session token for a user (default lifetime 7 days)."""
    return issue_token(
        user.id,
        user.email,
        TokenPurpose.session,
        _settings.session_token_expire_seconds,
        status=user.status,
    )


def create_verification_token(user: User) -> str:
    """Issue a single-purpose email verification token (24 hours)."""
    return issue_token(
        user.id,
        user.email,
        TokenPurpose.verification,
        _settings.verification_token_expire_seconds,
    )


def verify_token(token: str, ignore_expiry: bool = False) -> TokenClaims:
    """Decode and verify a JWT, returning its claims.

    ignore_expiry is reserved for the refresh path, which re-validates the
    live account before issuing anything new.

    Raises:
        ExpiredTokenError: signature valid but exp has passed.
        InvalidTokenError: any other failure, including unknown purpose.
    """
    try:
        payload = jwt.decode(
            token,
            _settings.secret_key,
            algorithms=[_ALGORITHM],
            options={"verify_exp": not ignore_expiry},
        )
    except ExpiredSignatureError as exc:
        raise ExpiredTokenError("Token has expired") from exc
    except JWTError as exc:
        raise InvalidTokenError("Token is invalid") from exc

    try:
        return TokenClaims(
            user_id=str(payload["sub"]),
            email=str(payload["email"]),
            purpose=TokenPurpose(payload["purpose"]),
            expires_at=int(payload["exp"]),
            status=UserStatus(payload["status"]) if payload.get("status") else None,
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise InvalidTokenError("Token claims are incomplete") from exc
