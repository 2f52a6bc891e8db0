"""
core/errors.py -- Application error taxonomy.

Every expected failure in the request path is one of these. Each class knows
its HTTP status and machine-readable code, so the single exception handler
in api/main.py can render the error envelope without a lookup table:

    ValidationError  400  bad input shape or format
    Unauthorized     401  missing/invalid/expired token or bad credentials
    Forbidden        403  blocked account or insufficient status
    NotFound         404  referenced record does not exist
    Conflict         409  duplicate email
    RateLimited      429  too many requests from one client
    Internal         500  unexpected failure (store unavailable, etc.)

Layer rule: core/ is the kernel. auth/ raises these; api/ renders them.
"""

from __future__ import annotations


class AppError(Exception):
    """Base class for errors that map directly onto an HTTP response."""

    status_code: int = 500
    code: str = "internal_error"
    default_message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = 400
    code = "validation_error"
    default_message = "Request validation failed."


class Unauthorized(AppError):
    status_code = 401
    code = "unauthorized"
    default_message = "Authentication required."


class Forbidden(AppError):
    status_code = 403
    code = "forbidden"
    default_message = "Access denied."


class NotFound(AppError):
    status_code = 404
    code = "not_found"
    default_message = "Not found."


class Conflict(AppError):
    status_code = 409
    code = "conflict"
    default_message = "Resource already exists."


class RateLimited(AppError):
    status_code = 429
    code = "rate_limited"
    default_message = "Too many requests, please try again later."


class Internal(AppError):
    pass
