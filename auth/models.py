"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own the
domain shape; the store and routes do the work.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class UserStatus(str, Enum):
    """Account lifecycle state.

    unverified --(email verification)--> active
    active | unverified --(admin block)--> blocked
    blocked --(admin unblock)--> active
    """

    unverified = "unverified"
    active = "active"
    blocked = "blocked"


class TokenPurpose(str, Enum):
    session = "session"
    verification = "verification"


@dataclass
class User:
    """A registered account.

    id is a UUID string assigned by the store at insert. email is always
    stored lowercased and trimmed, so lookups normalise their input the same
    way. password_hash never leaves the process -- response models are built
    field by field and omit it.
    """

    name: str
    email: str
    password_hash: str
    status: UserStatus = UserStatus.unverified
    id: str | None = None
    created_at: str | None = None
    last_login: str | None = None  # ISO 8601, None until the first login

    @property
    def is_blocked(self) -> bool:
        return self.status is UserStatus.blocked

    @property
    def is_active(self) -> bool:
        return self.status is UserStatus.active


@dataclass(frozen=True)
class TokenClaims:
    """Decoded JWT payload.

    status is None for verification tokens -- the account status at issue
    time is irrelevant to proving email ownership. Authorization never reads
    status from here; the pipeline re-fetches the live row.
    """

    user_id: str
    email: str
    purpose: TokenPurpose
    expires_at: int
    status: UserStatus | None = None
