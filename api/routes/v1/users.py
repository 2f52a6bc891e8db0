"""
api/routes/v1/users.py -- Administrative user management endpoints.

Routes:
  GET    /api/v1/users                    -- paginated, sortable, filterable list (requires auth)
  GET    /api/v1/users/stats              -- counts by status (requires auth)
  PATCH  /api/v1/users/block              -- block users by id (requires active account)
  PATCH  /api/v1/users/unblock            -- unblock users by id (requires active account)
  DELETE /api/v1/users/delete             -- hard-delete users by id (requires active account)
  DELETE /api/v1/users/delete-unverified  -- remove every unverified account (requires active account)

Security:
  Every route re-validates the caller against the live row (auth pipeline).
  Mutations additionally require status == active, so an account that has
  not verified its email can look but not act.
  Self-block and self-delete are rejected before any row is touched,
  regardless of how many other ids the request carries.
"""

from __future__ import annotations

import logging
import math

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from api.models import (
    Pagination,
    SortField,
    Sorting,
    StatusFilter,
    UserIdsRequest,
    UserRow,
    UserStats,
    UserSummary,
)
from api.responses import success
from auth.dependencies import get_current_user, require_active_user
from auth.models import User, UserStatus
from auth.store import UserStore
from core.errors import ValidationError

logger = logging.getLogger("itums.api.users")

_MAX_PAGE_SIZE = 100
# Keeps (page - 1) * limit inside a signed 64-bit OFFSET on every backend.
_MAX_PAGE = 1_000_000_000

# Auth policy:
# - GET    /api/v1/users, /users/stats:          requires auth (get_current_user)
# - PATCH  /api/v1/users/block, /users/unblock:  requires active account (require_active_user)
# - DELETE /api/v1/users/delete*:                requires active account (require_active_user)
router = APIRouter()


@router.get("/users")
def list_users(
    request: Request,
    page: int = Query(1),
    limit: int = Query(10),
    sort_by: str = Query("last_login", alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder"),
    status: str = Query("all"),
    current_user: User = Depends(get_current_user),
) -> JSONResponse:
    """List users one page at a time.

    Out-of-range paging values are clamped (1 <= page <= 10**9,
    1 <= limit <= 100) and unknown sortBy / status values fall back to the
    defaults instead of failing, so a stale dashboard URL still renders.
    """
    user_store: UserStore = request.app.state.user_store

    page = min(_MAX_PAGE, max(1, page))
    limit = min(_MAX_PAGE_SIZE, max(1, limit))
    try:
        sort_field = SortField(sort_by)
    except ValueError:
        sort_field = SortField.last_login
    order = "asc" if sort_order.lower() == "asc" else "desc"
    try:
        status_filter = StatusFilter(status)
    except ValueError:
        status_filter = StatusFilter.all
    status_value = None if status_filter is StatusFilter.all else UserStatus(status_filter.value)

    users, total = user_store.list_users(
        page=page,
        limit=limit,
        sort_by=sort_field.value,
        sort_order=order,
        status=status_value,
    )
    total_pages = math.ceil(total / limit)

    return success(
        "Users retrieved successfully",
        {
            "users": [UserRow.from_user(u).model_dump() for u in users],
            "pagination": Pagination(
                currentPage=page,
                totalPages=total_pages,
                totalUsers=total,
                hasNextPage=page < total_pages,
                hasPrevPage=page > 1,
                limit=limit,
            ).model_dump(),
            "sorting": Sorting(sortBy=sort_field, sortOrder=order.upper()).model_dump(mode="json"),
        },
    )


@router.get("/users/stats")
def user_stats(request: Request, current_user: User = Depends(get_current_user)) -> JSONResponse:
    """Return account counts by status plus the overall total."""
    user_store: UserStore = request.app.state.user_store
    stats = UserStats(**user_store.status_counts())
    return success("User statistics retrieved", {"stats": stats.model_dump()})


@router.patch("/users/block")
def block_users(
    request: Request,
    body: UserIdsRequest,
    current_user: User = Depends(require_active_user),
) -> JSONResponse:
    """Block active or unverified accounts. Blocked accounts lose access on their next request."""
    if current_user.id in body.user_ids:
        raise ValidationError("Cannot block your own account")

    user_store: UserStore = request.app.state.user_store
    blocked = user_store.block_users(body.user_ids)
    if not blocked:
        raise ValidationError("No users were blocked (users may already be blocked or not exist)")

    logger.info("User %s blocked %d user(s)", current_user.id, len(blocked))
    return success(
        f"Successfully blocked {len(blocked)} user(s)",
        {"blockedUsers": [UserSummary.from_user(u).model_dump() for u in blocked]},
    )


@router.patch("/users/unblock")
def unblock_users(
    request: Request,
    body: UserIdsRequest,
    current_user: User = Depends(require_active_user),
) -> JSONResponse:
    """Return blocked accounts to active."""
    user_store: UserStore = request.app.state.user_store
    unblocked = user_store.unblock_users(body.user_ids)
    if not unblocked:
        raise ValidationError("No users were unblocked (users may not be blocked or not exist)")

    logger.info("User %s unblocked %d user(s)", current_user.id, len(unblocked))
    return success(
        f"Successfully unblocked {len(unblocked)} user(s)",
        {"unblockedUsers": [UserSummary.from_user(u).model_dump() for u in unblocked]},
    )


@router.delete("/users/delete")
def delete_users(
    request: Request,
    body: UserIdsRequest,
    current_user: User = Depends(require_active_user),
) -> JSONResponse:
    """Permanently delete accounts. Outstanding tokens for them stop working immediately."""
    if current_user.id in body.user_ids:
        raise ValidationError("Cannot delete your own account")

    user_store: UserStore = request.app.state.user_store
    deleted = user_store.delete_users(body.user_ids)
    if not deleted:
        raise ValidationError("No users were deleted (users may not exist)")

    logger.warning("User %s deleted %d user(s)", current_user.id, len(deleted))
    return success(
        f"Successfully deleted {len(deleted)} user(s)",
        {
            "deletedCount": len(deleted),
            "deletedUsers": [UserSummary.from_user(u).model_dump() for u in deleted],
        },
    )


@router.delete("/users/delete-unverified")
def delete_unverified_users(request: Request, current_user: User = Depends(require_active_user)) -> JSONResponse:
    """Remove every account that never verified its email."""
    user_store: UserStore = request.app.state.user_store
    deleted_count = user_store.delete_unverified()
    if deleted_count == 0:
        return success("No unverified users to delete", {"deletedCount": 0})

    logger.warning("User %s deleted %d unverified user(s)", current_user.id, deleted_count)
    return success(f"Successfully deleted {deleted_count} unverified user(s)", {"deletedCount": deleted_count})
