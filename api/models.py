"""
API request and response models for the user console REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Key casing follows the dashboard's contract: request bodies use `userIds`,
pagination metadata is camelCase, user rows keep their column names.

Every response uses one envelope:
    success: {"status": "success", "message": str, "data": {...}}
    error:   {"status": "error",   "message": str, "code": str, "detail"?: str}
"""

import re
from enum import Enum
from typing import Annotated, Any, Literal, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, StringConstraints, field_validator
from pydantic_core import PydanticCustomError

from auth.models import User

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"
UUID_PATTERN = r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$"

_EMAIL_RE = re.compile(EMAIL_PATTERN)

# Annotated type that applies the UUID pattern to every element in a list.
_UserId = Annotated[str, Field(pattern=UUID_PATTERN)]


def _reject_blank(value: str) -> str:
    if not value.strip():
        raise PydanticCustomError("blank", "Field must not be blank")
    return value


# Name and email are trimmed; a blank value fails min_length and reads as missing.
_Trimmed = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)]

# Passwords are hashed exactly as sent. All-whitespace is refused, never trimmed.
_Password = Annotated[str, Field(min_length=1, max_length=128), AfterValidator(_reject_blank)]


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class SortField(str, Enum):
    name = "name"
    email = "email"
    last_login = "last_login"
    created_at = "created_at"
    status = "status"


class StatusFilter(str, Enum):
    all = "all"
    active = "active"
    unverified = "unverified"
    blocked = "blocked"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register.

    Name and email are trimmed before validation. The password is kept
    byte for byte; surrounding spaces are part of the secret.
    """

    name: _Trimmed
    email: _Trimmed
    password: _Password

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        """Lowercase, then apply the simple email pattern."""
        value = value.lower()
        if not _EMAIL_RE.match(value):
            raise ValueError("Invalid email format")
        return value


class LoginRequest(BaseModel):
    email: _Trimmed
    password: _Password


class RefreshRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    token: str = Field(min_length=1)


class UserIdsRequest(BaseModel):
    """Request body for the bulk block / unblock / delete endpoints.

    The field_validator lowercases and deduplicates ids before Pydantic
    applies the per-item UUID pattern, so mixed-case or repeated ids from the
    dashboard's checkbox table are accepted.
    """

    model_config = ConfigDict(populate_by_name=True)

    user_ids: list[_UserId] = Field(alias="userIds", min_length=1)

    @field_validator("user_ids", mode="before")
    @classmethod
    def normalize_ids(cls, values: Any) -> Any:
        if not isinstance(values, list):
            return values
        seen: set[str] = set()
        result: list[str] = []
        for v in values:
            normalized = str(v).strip().lower()
            if normalized not in seen:
                seen.add(normalized)
                result.append(normalized)
        return result


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserSummary(BaseModel):
    """Public view of an account. password_hash is never part of it."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    email: str
    status: str

    @classmethod
    def from_user(cls, user: User) -> "UserSummary":
        return cls(id=user.id, name=user.name, email=user.email, status=user.status.value)


class UserRow(UserSummary):
    """One row of the admin user table."""

    created_at: Optional[str] = None
    last_login: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserRow":
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            status=user.status.value,
            created_at=user.created_at,
            last_login=user.last_login,
        )


class Pagination(BaseModel):
    model_config = ConfigDict(frozen=True)

    currentPage: int
    totalPages: int
    totalUsers: int
    hasNextPage: bool
    hasPrevPage: bool
    limit: int


class Sorting(BaseModel):
    model_config = ConfigDict(frozen=True)

    sortBy: SortField
    sortOrder: Literal["ASC", "DESC"]


class UserStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int = 0
    active: int = 0
    unverified: int = 0
    blocked: int = 0


class SuccessResponse(BaseModel):
    """Top-level success envelope."""

    status: Literal["success"] = "success"
    message: str
    data: dict[str, Any] = {}


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    status: Literal["error"] = "error"
    message: str
    code: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
