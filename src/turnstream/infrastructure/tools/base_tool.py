"""Base tool class that reduces boilerplate for ToolProtocol implementations.

Provides:
- Class-level attributes for ``name``, ``description``, ``parameters_schema``,
  ``keywords`` and ``contexts`` instead of ``@property`` methods on every tool.
- A default ``validate_params`` that checks types and enum values from the
  schema (the gateway already checks required parameters).
- An ``_execute_safe`` wrapper that catches unexpected exceptions and returns
  a standardised error payload via ``tool_error_payload``.

This class lives in the **infrastructure** layer and does NOT modify
``ToolProtocol`` in ``core/interfaces``.
"""

from __future__ import annotations

from typing import Any

import structlog

from turnstream.core.domain.errors import ToolError, tool_error_payload
from turnstream.core.domain.models import ServiceContext

logger = structlog.get_logger(__name__)

# Type mapping from JSON Schema type names to Python built-in types.
_JSON_SCHEMA_TYPE_MAP: dict[str, type | tuple[type, ...]] = {
    "string": str,
    "integer": int,
    "number": (int, float),
    "boolean": bool,
    "array": list,
    "object": dict,
}


class BaseTool:
    """Convenience base class for tools that satisfy ``ToolProtocol``.

    Subclasses must set at minimum:
      - ``tool_name``  (``str``)
      - ``tool_description`` (``str``)
      - ``tool_parameters_schema`` (``dict``)

    And override ``_execute`` with the actual tool logic.
    """

    tool_name: str = ""
    """Unique snake_case identifier for the tool (e.g. ``"list_tasks"``)."""

    tool_description: str = ""
    """Human-readable description used by the LLM for tool selection."""

    tool_parameters_schema: dict[str, Any] = {}
    """OpenAI function-calling compatible JSON Schema for parameters."""

    tool_keywords: tuple[str, ...] = ()
    """Words in a user message that make the tool relevant."""

    tool_contexts: tuple[str, ...] = ()
    """Context types the tool is always offered in."""

    @property
    def name(self) -> str:
        return self.tool_name

    @property
    def description(self) -> str:
        return self.tool_description

    @property
    def parameters_schema(self) -> dict[str, Any]:
        return self.tool_parameters_schema

    @property
    def keywords(self) -> tuple[str, ...]:
        return self.tool_keywords

    @property
    def contexts(self) -> tuple[str, ...]:
        return self.tool_contexts

    def validate_params(self, **kwargs: Any) -> tuple[bool, str | None]:
        """Validate parameter types and enum values against ``parameters_schema``.

        Returns:
            ``(True, None)`` when valid, ``(False, "error message")`` otherwise.
        """
        properties = (self.parameters_schema or {}).get("properties", {})

        for param_name, value in kwargs.items():
            if param_name not in properties or value is None:
                continue
            prop_schema = properties[param_name]

            expected_type_name = prop_schema.get("type")
            expected_types = _JSON_SCHEMA_TYPE_MAP.get(expected_type_name or "")
            if expected_types and not isinstance(value, expected_types):
                return False, f"Parameter '{param_name}' must be a {expected_type_name}"

            allowed_values = prop_schema.get("enum")
            if allowed_values is not None and value not in allowed_values:
                return False, f"Parameter '{param_name}' must be one of {allowed_values}"

        return True, None

    async def execute(self, context: ServiceContext, **kwargs: Any) -> dict[str, Any]:
        """Validate, then delegate to ``_execute`` with error handling."""
        valid, error = self.validate_params(**kwargs)
        if not valid:
            return {"success": False, "error": error}
        return await self._execute_safe(context, **kwargs)

    async def _execute(self, context: ServiceContext, **kwargs: Any) -> dict[str, Any]:
        """Actual tool logic to be implemented by subclasses.

        Returns:
            Result dictionary. Must include ``success: bool``.
        """
        raise NotImplementedError(f"{type(self).__name__} must implement _execute()")

    async def _execute_safe(self, context: ServiceContext, **kwargs: Any) -> dict[str, Any]:
        try:
            return await self._execute(context, **kwargs)
        except Exception as exc:
            logger.error(
                "tool.execute_failed",
                tool=self.name,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            tool_error = ToolError(
                f"{self.name} failed: {exc}",
                tool_name=self.name,
                details={"kwargs": _sanitize_kwargs(kwargs)},
            )
            return tool_error_payload(tool_error)


def _sanitize_kwargs(kwargs: dict[str, Any], max_str_len: int = 200) -> dict[str, Any]:
    """Loggable copy of kwargs with long strings truncated."""
    sanitized: dict[str, Any] = {}
    for key, value in kwargs.items():
        if isinstance(value, str) and len(value) > max_str_len:
            sanitized[key] = value[:max_str_len] + "..."
        else:
            sanitized[key] = value
    return sanitized
