"""Domain-specific exception types for turnstream."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict


@dataclass
class TurnstreamError(Exception):
    """Base exception for turnstream domain errors."""

    message: str
    code: str = "turnstream_error"
    details: Dict[str, Any] | None = None
    status_code: int | None = None

    def __post_init__(self) -> None:
        super().__init__(self.message)
        if self.details is None:
            self.details = {}


class AccessDeniedError(TurnstreamError):
    """Error raised when the caller may not read the requested scope."""

    def __init__(self, message: str, *, details: Dict[str, Any] | None = None) -> None:
        super().__init__(
            message=message, code="access_denied", details=details, status_code=403
        )


class LLMError(TurnstreamError):
    """Error raised for LLM invocation failures."""

    def __init__(self, message: str, *, details: Dict[str, Any] | None = None) -> None:
        super().__init__(message=message, code="llm_error", details=details)


class ToolError(TurnstreamError):
    """Error raised for tool invocation failures."""

    def __init__(
        self,
        message: str,
        *,
        tool_name: str | None = None,
        details: Dict[str, Any] | None = None,
    ) -> None:
        details = dict(details or {})
        if tool_name:
            details.setdefault("tool_name", tool_name)
        self.tool_name = tool_name
        super().__init__(message=message, code="tool_error", details=details)


class ConfigError(TurnstreamError):
    """Error raised for configuration failures."""

    def __init__(self, message: str, *, details: Dict[str, Any] | None = None) -> None:
        super().__init__(message=message, code="config_error", details=details)


class CancelledError(TurnstreamError):
    """Error raised when a turn is cancelled."""

    def __init__(self, message: str, *, details: Dict[str, Any] | None = None) -> None:
        super().__init__(message=message, code="cancelled", details=details)


class NotFoundError(TurnstreamError):
    """Error raised when a resource is not found."""

    def __init__(self, message: str, *, details: Dict[str, Any] | None = None) -> None:
        super().__init__(
            message=message, code="not_found", details=details, status_code=404
        )


class ValidationError(TurnstreamError):
    """Error raised for validation failures."""

    def __init__(self, message: str, *, details: Dict[str, Any] | None = None) -> None:
        super().__init__(
            message=message, code="validation_error", details=details, status_code=400
        )


class SessionStoreError(TurnstreamError):
    """Error raised when session or message persistence fails."""

    def __init__(self, message: str, *, details: Dict[str, Any] | None = None) -> None:
        super().__init__(message=message, code="session_store_error", details=details)


def tool_error_payload(
    error: ToolError, extra: Dict[str, Any] | None = None
) -> Dict[str, Any]:
    """Convert a ToolError into a standardized tool response payload."""
    payload = {
        "success": False,
        "error": str(error),
        "error_type": type(error).__name__,
        "details": error.details or {},
    }
    if extra:
        payload.update(extra)
    return payload
