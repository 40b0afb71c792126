"""Unit tests for StructlogErrorLogger."""

import pytest
from structlog.testing import capture_logs

from turnstream.infrastructure.logging.error_logger import StructlogErrorLogger


class TestStructlogErrorLogger:
    """Tests for StructlogErrorLogger.log_error."""

    @pytest.mark.asyncio
    async def test_logs_exception_with_metadata(self):
        """Exceptions are logged with their type and non-null metadata."""
        error_logger = StructlogErrorLogger()

        with capture_logs() as logs:
            await error_logger.log_error(
                RuntimeError("database down"),
                endpoint="/api/v1/chat/stream",
                operation_type="context_load",
                user_id="user-1",
                metadata={"session_id": "sess-1", "entity_id": None},
            )

        [entry] = logs
        assert entry["event"] == "error_logged"
        assert entry["log_level"] == "error"
        assert entry["error_type"] == "RuntimeError"
        assert entry["error"] == "database down"
        assert entry["operation_type"] == "context_load"
        assert entry["session_id"] == "sess-1"
        assert "entity_id" not in entry
        assert "traceback" not in entry

    @pytest.mark.asyncio
    async def test_logs_plain_message(self):
        """String errors are accepted."""
        with capture_logs() as logs:
            await StructlogErrorLogger().log_error(
                "Tool execution failed", endpoint="/x", operation_type="tool_execution"
            )

        assert logs[0]["error_type"] == "str"
        assert logs[0]["user_id"] is None

    @pytest.mark.asyncio
    async def test_traceback_included_when_enabled(self):
        """Tracebacks are attached on request."""
        try:
            raise ValueError("bad")
        except ValueError as e:
            error = e

        with capture_logs() as logs:
            await StructlogErrorLogger(include_traceback=True).log_error(
                error, endpoint="/x", operation_type="stream"
            )

        assert "ValueError: bad" in logs[0]["traceback"]
