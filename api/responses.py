"""
api/responses.py -- Envelope builders shared by route handlers and exception handlers.

Handlers return success(...) directly; errors are raised as core.errors
AppError subclasses and rendered by error(...) in the exception handlers, so
every body the dashboard sees has the same {status, message, ...} shape.
"""

from __future__ import annotations

from typing import Any

from fastapi.responses import JSONResponse

from api.models import ErrorResponse, SuccessResponse
from core.errors import AppError


def success(message: str, data: dict[str, Any] | None = None, status_code: int = 200) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=SuccessResponse(message=message, data=data or {}).model_dump(mode="json"),
    )


def error(exc: AppError, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(message=exc.message, code=exc.code, detail=detail).model_dump(exclude_none=True),
    )
