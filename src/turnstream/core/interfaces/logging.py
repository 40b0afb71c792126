"""
Logging Protocol Interfaces for Core Domain.

``LoggerProtocol`` abstracts the structured logger so core code stays
independent of structlog. ``ErrorLoggerProtocol`` is the error-logging sink
every internal failure of a chat turn is reported to.
"""

from typing import Any, Protocol


class LoggerProtocol(Protocol):
    """Protocol for logging operations in Core domain."""

    def info(self, event: str, **kwargs: Any) -> None:
        """Log an informational message."""
        ...

    def warning(self, event: str, **kwargs: Any) -> None:
        """Log a warning message."""
        ...

    def error(self, event: str, **kwargs: Any) -> None:
        """Log an error message."""
        ...

    def debug(self, event: str, **kwargs: Any) -> None:
        """Log a debug message."""
        ...


class ErrorLoggerProtocol(Protocol):
    """
    Sink for internal errors with structured metadata.

    Implementations must never raise: a failing sink must not turn a
    recoverable error into a fatal one.
    """

    async def log_error(
        self,
        error: BaseException | str,
        *,
        endpoint: str,
        operation_type: str,
        user_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """
        Record an error.

        Args:
            error: The exception (or a message) that occurred.
            endpoint: API endpoint the turn was served on.
            operation_type: One of the ``ErrorOperation`` values.
            user_id: Calling user, if known.
            metadata: Session and context identifiers.
        """
        ...
