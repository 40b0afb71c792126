"""
Application Layer - Tool Gateway

Uniform call/result boundary in front of every tool. The gateway checks the
turn's allow-list, parses and validates arguments, times the call, converts
failures into ``ToolResult(success=False)`` and lifts side-channel metadata
(entity counts, entity updates, accessed ids, context shift) out of the raw
payload. ``execute`` never raises, except to propagate task cancellation.
"""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Collection, Iterable
from typing import Any

import structlog

from turnstream.core.domain.models import (
    ContextShift,
    ServiceContext,
    ToolCall,
    ToolResult,
    ToolSideEffects,
)
from turnstream.core.domain.tool_summaries import (
    build_entity_counts,
    build_entity_updates,
    extract_entities_accessed,
)
from turnstream.core.interfaces.tools import ToolProtocol

PROJECT_ID_PARAM = "project_id"


class ToolRegistry:
    """Name to tool mapping for every tool the service knows."""

    def __init__(self, tools: Iterable[ToolProtocol] = ()) -> None:
        self._tools: dict[str, ToolProtocol] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: ToolProtocol) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def get(self, name: str) -> ToolProtocol | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def all(self) -> list[ToolProtocol]:
        return list(self._tools.values())

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)


def required_parameters(tool: ToolProtocol | None) -> list[str]:
    """Names listed in the tool schema's ``required`` array."""
    if tool is None:
        return []
    required = (tool.parameters_schema or {}).get("required") or []
    return [name for name in required if isinstance(name, str)]


def inject_project_id(tool_call: ToolCall, tool: ToolProtocol | None, project_id: str | None) -> ToolCall:
    """
    Fill a missing ``project_id`` argument from the turn's effective scope.

    Only tools whose schema requires ``project_id`` are patched. Arguments
    that are not a JSON object, and calls that already carry a non-empty
    ``project_id`` string, are returned unchanged.
    """
    if not project_id or PROJECT_ID_PARAM not in required_parameters(tool):
        return tool_call
    try:
        args = json.loads(tool_call.arguments or "{}")
    except json.JSONDecodeError:
        return tool_call
    if not isinstance(args, dict):
        return tool_call
    existing = args.get(PROJECT_ID_PARAM)
    if isinstance(existing, str) and existing.strip():
        return tool_call
    args[PROJECT_ID_PARAM] = project_id
    return ToolCall(id=tool_call.id, name=tool_call.name, arguments=json.dumps(args))


def extract_context_shift(payload: Any) -> ContextShift | None:
    """Typed context shift from a ``context_shift`` key or a top-level ``new_context``."""
    if not isinstance(payload, dict):
        return None
    nested = ContextShift.from_payload(payload.get("context_shift"))
    if nested is not None:
        return nested
    return ContextShift.from_payload(payload)


def extract_side_effects(payload: Any) -> ToolSideEffects:
    """Lift side-channel metadata out of a raw tool payload."""
    return ToolSideEffects(
        context_shift=extract_context_shift(payload),
        entity_counts=build_entity_counts(payload),
        entity_updates=build_entity_updates(payload),
        entities_accessed=extract_entities_accessed(payload),
    )


def _payload_failed(payload: Any) -> tuple[bool, str | None]:
    if not isinstance(payload, dict):
        return False, None
    if payload.get("success") is False:
        return True, str(payload.get("error") or "Tool execution failed")
    if "success" not in payload and payload.get("error"):
        return True, str(payload["error"])
    return False, None


class ToolGateway:
    """Validate, run and normalize tool calls for a turn."""

    def __init__(
        self,
        registry: ToolRegistry,
        *,
        timeout_seconds: float | None = 60.0,
    ) -> None:
        self._registry = registry
        self._timeout_seconds = timeout_seconds
        self._logger = structlog.get_logger(__name__)

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    async def execute(
        self,
        tool_call: ToolCall,
        service_context: ServiceContext,
        allowed_tools: Collection[str],
    ) -> ToolResult:
        """
        Execute one tool call.

        Args:
            tool_call: Call as produced by the LLM (arguments as a JSON string).
            service_context: Caller and effective scope passed to the tool.
            allowed_tools: Tool names offered to the LLM this turn.

        Returns:
            ToolResult; failures carry ``success=False`` and an error message.
        """
        start = time.perf_counter()

        def failure(error: str) -> ToolResult:
            return ToolResult(
                tool_call_id=tool_call.id,
                tool_name=tool_call.name,
                success=False,
                error=error,
                duration_ms=int((time.perf_counter() - start) * 1000),
            )

        tool = self._registry.get(tool_call.name)
        if tool is None or tool_call.name not in allowed_tools:
            self._logger.warning("tool_not_allowed", tool=tool_call.name)
            return failure(f"Tool not allowed in this turn: {tool_call.name}")

        try:
            args = json.loads(tool_call.arguments or "{}")
        except json.JSONDecodeError as e:
            self._logger.warning(
                "tool_args_parse_failed", tool=tool_call.name, raw_args=tool_call.arguments
            )
            return failure(f"Invalid tool arguments: {e.msg}")
        if not isinstance(args, dict):
            return failure("Invalid tool arguments: expected a JSON object")

        for name in required_parameters(tool):
            if name not in args:
                self._logger.warning("tool_validation_failed", tool=tool_call.name, missing=name)
                return failure(f"Missing required parameter: {name}")

        self._logger.info(
            "tool_execute",
            tool=tool_call.name,
            args_keys=list(args.keys()),
            session_id=service_context.session_id,
        )
        try:
            if self._timeout_seconds:
                payload = await asyncio.wait_for(
                    tool.execute(service_context, **args), timeout=self._timeout_seconds
                )
            else:
                payload = await tool.execute(service_context, **args)
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            self._logger.error("tool_timeout", tool=tool_call.name, timeout=self._timeout_seconds)
            return failure(f"Tool timed out after {self._timeout_seconds}s")
        except Exception as e:
            self._logger.error("tool_exception", tool=tool_call.name, error=str(e))
            return failure(str(e) or type(e).__name__)

        duration_ms = int((time.perf_counter() - start) * 1000)
        failed, error = _payload_failed(payload)
        self._logger.info(
            "tool_complete", tool=tool_call.name, success=not failed, duration_ms=duration_ms
        )
        return ToolResult(
            tool_call_id=tool_call.id,
            tool_name=tool_call.name,
            success=not failed,
            result=payload,
            error=error,
            duration_ms=duration_ms,
            side_effects=extract_side_effects(payload) if not failed else ToolSideEffects(),
        )
