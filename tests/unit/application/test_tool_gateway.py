"""
Unit tests for ToolGateway.

Tests verify:
- Allow-list, argument parsing and required-parameter checks
- Timeouts and exceptions become failed results
- Side effects (context shift, counts, updates) are lifted from payloads
- project_id injection from the effective scope
"""

import asyncio
import json
from typing import Any

import pytest

from turnstream.application.tool_gateway import (
    ToolGateway,
    ToolRegistry,
    inject_project_id,
)
from turnstream.core.domain.enums import ContextType
from turnstream.core.domain.models import ServiceContext, ToolCall


class FakeTool:
    """Minimal tool double returning a canned payload."""

    def __init__(self, name: str, payload: Any = None, required: list[str] | None = None,
                 delay: float = 0.0, error: Exception | None = None):
        self._name = name
        self._payload = payload if payload is not None else {"success": True}
        self._required = required or []
        self._delay = delay
        self._error = error
        self.calls: list[dict[str, Any]] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return f"{self._name} tool"

    @property
    def parameters_schema(self) -> dict[str, Any]:
        props = {name: {"type": "string"} for name in self._required}
        return {"type": "object", "properties": props, "required": self._required}

    @property
    def keywords(self) -> tuple[str, ...]:
        return ()

    @property
    def contexts(self) -> tuple[str, ...]:
        return ()

    async def execute(self, context: ServiceContext, **kwargs: Any) -> dict[str, Any]:
        self.calls.append(kwargs)
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error:
            raise self._error
        return self._payload


@pytest.fixture
def service_context():
    return ServiceContext(
        user_id="user-1",
        session_id="sess-1",
        context_type=ContextType.PROJECT,
        entity_id="proj_123",
        project_id="proj_123",
    )


def _gateway(*tools: FakeTool, timeout: float | None = 60.0) -> ToolGateway:
    return ToolGateway(ToolRegistry(tools), timeout_seconds=timeout)


def _call(name: str, arguments: str = "{}") -> ToolCall:
    return ToolCall(id="call_1", name=name, arguments=arguments)


class TestToolRegistry:
    """Tests for ToolRegistry."""

    def test_duplicate_registration_rejected(self):
        """Registering the same name twice raises."""
        registry = ToolRegistry([FakeTool("list_tasks")])

        with pytest.raises(ValueError):
            registry.register(FakeTool("list_tasks"))

    def test_lookup(self):
        """Registered tools are found by name."""
        tool = FakeTool("list_tasks")
        registry = ToolRegistry([tool])

        assert registry.get("list_tasks") is tool
        assert "list_tasks" in registry
        assert registry.names() == ["list_tasks"]
        assert len(registry) == 1


class TestToolGatewayExecute:
    """Tests for ToolGateway.execute."""

    @pytest.mark.asyncio
    async def test_successful_call(self, service_context):
        """Parsed arguments reach the tool and the payload is returned."""
        tool = FakeTool("list_tasks", payload={"tasks": [{"id": "task_1"}, {"id": "task_2"}]},
                        required=["project_id"])
        gateway = _gateway(tool)

        result = await gateway.execute(
            _call("list_tasks", '{"project_id": "proj_123"}'), service_context, ["list_tasks"]
        )

        assert result.success is True
        assert result.tool_call_id == "call_1"
        assert tool.calls == [{"project_id": "proj_123"}]
        assert result.side_effects.entity_counts == {"task": 2}

    @pytest.mark.asyncio
    async def test_tool_not_in_allow_list(self, service_context):
        """Registered tools outside the turn's allow-list are refused."""
        tool = FakeTool("create_task")
        gateway = _gateway(tool)

        result = await gateway.execute(_call("create_task"), service_context, ["list_tasks"])

        assert result.success is False
        assert "not allowed" in result.error
        assert tool.calls == []

    @pytest.mark.asyncio
    async def test_unknown_tool(self, service_context):
        """Unknown tool names fail without raising."""
        result = await _gateway().execute(_call("nope"), service_context, ["nope"])

        assert result.success is False

    @pytest.mark.asyncio
    async def test_invalid_json_arguments(self, service_context):
        """Unparseable arguments fail before the tool runs."""
        tool = FakeTool("list_tasks")

        result = await _gateway(tool).execute(
            _call("list_tasks", "{not json"), service_context, ["list_tasks"]
        )

        assert result.success is False
        assert result.error.startswith("Invalid tool arguments")
        assert tool.calls == []

    @pytest.mark.asyncio
    async def test_non_object_arguments(self, service_context):
        """A JSON array is not a valid argument object."""
        result = await _gateway(FakeTool("list_tasks")).execute(
            _call("list_tasks", "[1, 2]"), service_context, ["list_tasks"]
        )

        assert result.success is False

    @pytest.mark.asyncio
    async def test_missing_required_parameter(self, service_context):
        """Missing required parameters are reported by name."""
        tool = FakeTool("create_task", required=["project_id", "title"])

        result = await _gateway(tool).execute(
            _call("create_task", '{"project_id": "proj_123"}'), service_context, ["create_task"]
        )

        assert result.success is False
        assert result.error == "Missing required parameter: title"

    @pytest.mark.asyncio
    async def test_timeout(self, service_context):
        """Slow tools are cut off and reported as failures."""
        tool = FakeTool("slow", delay=1.0)

        result = await _gateway(tool, timeout=0.01).execute(_call("slow"), service_context, ["slow"])

        assert result.success is False
        assert "timed out" in result.error

    @pytest.mark.asyncio
    async def test_exception_becomes_failure(self, service_context):
        """Tool exceptions never escape the gateway."""
        tool = FakeTool("boom", error=RuntimeError("kaboom"))

        result = await _gateway(tool).execute(_call("boom"), service_context, ["boom"])

        assert result.success is False
        assert result.error == "kaboom"

    @pytest.mark.asyncio
    async def test_payload_reporting_failure(self, service_context):
        """A ``success: false`` payload is a failed result with its error."""
        tool = FakeTool("denied", payload={"success": False, "error": "Access denied"})

        result = await _gateway(tool).execute(_call("denied"), service_context, ["denied"])

        assert result.success is False
        assert result.error == "Access denied"
        assert result.side_effects.context_shift is None

    @pytest.mark.asyncio
    async def test_context_shift_is_lifted(self, service_context):
        """Nested context_shift payloads become a typed side effect."""
        payload = {
            "success": True,
            "context_shift": {
                "new_context": "project",
                "entity_id": "proj_999",
                "entity_name": "Zeus",
                "entity_type": "project",
                "message": "Switched to Zeus",
            },
        }
        tool = FakeTool("change_context", payload=payload)

        result = await _gateway(tool).execute(
            _call("change_context"), service_context, ["change_context"]
        )

        shift = result.side_effects.context_shift
        assert shift is not None
        assert shift.new_context is ContextType.PROJECT
        assert shift.entity_id == "proj_999"
        assert shift.message == "Switched to Zeus"

    @pytest.mark.asyncio
    async def test_entity_updates_and_accessed_ids(self, service_context):
        """Singular records and accessed id lists are extracted."""
        payload = {
            "success": True,
            "task": {"id": "task_7", "title": "Draft"},
            "_entities_accessed": ["proj_123", "task_7"],
        }
        tool = FakeTool("create_task", payload=payload)

        result = await _gateway(tool).execute(_call("create_task"), service_context, ["create_task"])

        updates = [update.to_dict() for update in result.side_effects.entity_updates]
        assert updates == [{"id": "task_7", "kind": "task", "name": "Draft"}]
        assert result.side_effects.entities_accessed == ["proj_123", "task_7"]

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, service_context):
        """Task cancellation is not converted into a failed result."""
        tool = FakeTool("slow", delay=5.0)
        gateway = _gateway(tool)

        task = asyncio.create_task(gateway.execute(_call("slow"), service_context, ["slow"]))
        await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task


class TestInjectProjectId:
    """Tests for inject_project_id."""

    def test_fills_missing_project_id(self):
        """A required but missing project_id is filled from the scope."""
        tool = FakeTool("create_task", required=["project_id", "title"])

        patched = inject_project_id(_call("create_task", '{"title": "Review"}'), tool, "proj_123")

        assert json.loads(patched.arguments) == {"title": "Review", "project_id": "proj_123"}
        assert patched.id == "call_1"

    def test_fills_blank_project_id(self):
        """An empty project_id string counts as missing."""
        tool = FakeTool("create_task", required=["project_id"])

        patched = inject_project_id(_call("create_task", '{"project_id": ""}'), tool, "proj_123")

        assert json.loads(patched.arguments)["project_id"] == "proj_123"

    def test_keeps_explicit_project_id(self):
        """A project_id chosen by the model is left alone."""
        tool = FakeTool("create_task", required=["project_id"])
        call = _call("create_task", '{"project_id": "proj_999"}')

        assert inject_project_id(call, tool, "proj_123") is call

    def test_ignores_tools_without_project_id(self):
        """Tools that do not require project_id are untouched."""
        tool = FakeTool("list_projects")
        call = _call("list_projects")

        assert inject_project_id(call, tool, "proj_123") is call

    def test_ignores_missing_scope(self):
        """Without an effective project nothing is injected."""
        tool = FakeTool("create_task", required=["project_id"])
        call = _call("create_task")

        assert inject_project_id(call, tool, None) is call
