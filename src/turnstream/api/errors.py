"""Shared error-handling utilities for API routes.

Provides a single ``http_exception`` helper so that every route module
produces the same standardized ``ErrorResponse`` payload with the
``X-Turnstream-Error: 1`` header.
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException

from turnstream.api.schemas.errors import ErrorResponse
from turnstream.core.domain.errors import (
    AccessDeniedError,
    ConfigError,
    LLMError,
    NotFoundError,
    TurnstreamError,
    ValidationError,
)

ERROR_HEADER = "X-Turnstream-Error"


def http_exception(
    *,
    status_code: int,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> HTTPException:
    """Build a standardized HTTPException with ErrorResponse payload.

    Args:
        status_code: HTTP status code.
        code: Machine-readable error code (e.g. ``"session_not_found"``).
        message: Human-readable error description.
        details: Optional structured error details.

    Returns:
        HTTPException ready to be raised from a route handler.
    """
    return HTTPException(
        status_code=status_code,
        detail=ErrorResponse(
            code=code, message=message, details=details, detail=message
        ).model_dump(exclude_none=True),
        headers={ERROR_HEADER: "1"},
    )


def turnstream_status_code(error: TurnstreamError) -> int:
    if error.status_code is not None:
        return error.status_code
    if isinstance(error, (ConfigError, ValidationError)):
        return 400
    if isinstance(error, AccessDeniedError):
        return 403
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, LLMError):
        return 502
    return 500


def to_http_exception(error: TurnstreamError) -> HTTPException:
    """Map a domain error onto the standardized HTTP error."""
    return http_exception(
        status_code=turnstream_status_code(error),
        code=error.code,
        message=error.message,
        details=error.details or None,
    )
