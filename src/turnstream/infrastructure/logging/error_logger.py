"""Structlog-backed implementation of ErrorLoggerProtocol."""

from __future__ import annotations

import traceback
from typing import Any

import structlog


class StructlogErrorLogger:
    """
    Emit one ``error_logged`` event per reported error.

    A failure while building the event is reported as
    ``error_logger_failed`` instead of reaching the caller.
    """

    def __init__(self, include_traceback: bool = False) -> None:
        self._include_traceback = include_traceback
        self.logger = structlog.get_logger(__name__)

    async def log_error(
        self,
        error: BaseException | str,
        *,
        endpoint: str,
        operation_type: str,
        user_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        try:
            fields: dict[str, Any] = {
                "endpoint": endpoint,
                "operation_type": operation_type,
                "user_id": user_id,
                "error_type": type(error).__name__ if isinstance(error, BaseException) else "str",
                "error": str(error)[:500],
                **{k: v for k, v in (metadata or {}).items() if v is not None},
            }
            if self._include_traceback and isinstance(error, BaseException):
                fields["traceback"] = "".join(
                    traceback.format_exception(type(error), error, error.__traceback__)
                )
            self.logger.error("error_logged", **fields)
        except Exception as e:
            self.logger.warning("error_logger_failed", error=str(e))
