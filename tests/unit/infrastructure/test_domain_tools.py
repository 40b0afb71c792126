"""
Unit tests for the demo domain tools and BaseTool.

Tests verify:
- Parameter validation (types and enums) before execution
- Access checks on project-bound tools
- Payload shapes consumed by the gateway (records, id lists, context shifts)
"""

import json
from typing import Any

import pytest

from turnstream.core.domain.enums import ContextType
from turnstream.core.domain.models import ServiceContext
from turnstream.infrastructure.persistence.file_domain_store import FileDomainStore
from turnstream.infrastructure.tools.base_tool import BaseTool
from turnstream.infrastructure.tools.domain_tools import (
    ChangeContextTool,
    CreateTaskTool,
    GetProjectTool,
    ListProjectsTool,
    ListTasksTool,
    build_domain_tools,
)

DOCUMENT = {
    "projects": [
        {"id": "proj_1", "name": "Apollo", "owner_id": "owner", "members": ["member"]},
        {"id": "proj_2", "name": "Zeus", "owner_id": "other"},
    ],
    "tasks": [
        {"id": "task_1", "project_id": "proj_1", "title": "Kickoff", "status": "done"},
        {"id": "task_2", "project_id": "proj_1", "title": "Draft", "status": "todo"},
    ],
    "goals": [{"id": "goal_1", "project_id": "proj_1", "name": "Launch"}],
    "daily_briefs": [
        {"id": "brief_own", "user_id": "owner", "date": "2025-03-01"},
        {"id": "brief_other", "user_id": "other", "date": "2025-03-01"},
    ],
}


@pytest.fixture
def store(tmp_path):
    (tmp_path / "domain.json").write_text(json.dumps(DOCUMENT), encoding="utf-8")
    return FileDomainStore(work_dir=tmp_path)


def _context(user_id: str = "owner") -> ServiceContext:
    return ServiceContext(user_id=user_id, session_id="sess-1")


class EchoTool(BaseTool):
    tool_name = "echo"
    tool_description = "Echo the arguments back."
    tool_parameters_schema = {
        "type": "object",
        "properties": {
            "text": {"type": "string"},
            "count": {"type": "integer"},
            "mode": {"type": "string", "enum": ["loud", "quiet"]},
        },
        "required": ["text"],
    }

    async def _execute(self, context: ServiceContext, **kwargs: Any) -> dict[str, Any]:
        if kwargs.get("text") == "explode":
            raise RuntimeError("kaboom")
        return {"success": True, "echo": kwargs}


class TestBaseTool:
    """Tests for BaseTool validation and error wrapping."""

    def test_properties_come_from_class_attributes(self):
        """ToolProtocol properties read the class attributes."""
        tool = EchoTool()

        assert tool.name == "echo"
        assert tool.description == "Echo the arguments back."
        assert tool.parameters_schema["required"] == ["text"]
        assert tool.keywords == ()
        assert tool.contexts == ()

    def test_validate_params(self):
        """Types and enum values are checked; unknown keys are ignored."""
        tool = EchoTool()

        assert tool.validate_params(text="hi", count=2, extra=object()) == (True, None)
        assert tool.validate_params(count="two")[0] is False
        valid, error = tool.validate_params(mode="shouty")
        assert valid is False
        assert "mode" in error

    @pytest.mark.asyncio
    async def test_invalid_params_short_circuit(self):
        """Invalid parameters never reach _execute."""
        result = await EchoTool().execute(_context(), text=42)

        assert result == {"success": False, "error": "Parameter 'text' must be a string"}

    @pytest.mark.asyncio
    async def test_exceptions_become_error_payloads(self):
        """Unexpected exceptions are converted to tool error payloads."""
        result = await EchoTool().execute(_context(), text="explode")

        assert result["success"] is False
        assert result["error_type"] == "ToolError"
        assert "kaboom" in result["error"]
        assert result["details"]["tool_name"] == "echo"


class TestDomainTools:
    """Tests for the demo tools."""

    def test_build_domain_tools_order(self, store):
        """Tools are built in selection priority order."""
        names = [tool.name for tool in build_domain_tools(store)]

        assert names == ["change_context", "get_project", "list_tasks", "create_task", "list_projects"]

    @pytest.mark.asyncio
    async def test_list_projects(self, store):
        """Only readable projects are listed, with accessed ids."""
        result = await ListProjectsTool(store).execute(_context("member"))

        assert [p["id"] for p in result["projects"]] == ["proj_1"]
        assert result["_entities_accessed"] == ["proj_1"]

    @pytest.mark.asyncio
    async def test_get_project_excludes_done_tasks(self, store):
        """The project view carries goals and open tasks."""
        result = await GetProjectTool(store).execute(_context(), project_id="proj_1")

        assert result["success"] is True
        assert result["project"]["name"] == "Apollo"
        assert [t["id"] for t in result["tasks"]] == ["task_2"]
        assert result["_entities_accessed"] == ["proj_1", "goal_1", "task_2"]

    @pytest.mark.asyncio
    async def test_get_project_denied(self, store):
        """Unreadable projects fail without leaking data."""
        result = await GetProjectTool(store).execute(_context(), project_id="proj_2")

        assert result["success"] is False
        assert "project" not in result

    @pytest.mark.asyncio
    async def test_list_tasks_status_enum(self, store):
        """The status filter is validated and applied."""
        tool = ListTasksTool(store)

        done = await tool.execute(_context(), project_id="proj_1", status="done")
        invalid = await tool.execute(_context(), project_id="proj_1", status="blocked")

        assert [t["id"] for t in done["tasks"]] == ["task_1"]
        assert invalid["success"] is False

    @pytest.mark.asyncio
    async def test_create_task_requires_owner(self, store):
        """Members can read but not add tasks."""
        tool = CreateTaskTool(store)

        denied = await tool.execute(_context("member"), project_id="proj_1", title="Nope")
        created = await tool.execute(_context("owner"), project_id="proj_1", title=" Review ")

        assert denied["success"] is False
        assert created["success"] is True
        assert created["task"]["title"] == "Review"
        assert created["task"]["status"] == "todo"
        assert created["task"]["id"].startswith("task_")

    @pytest.mark.asyncio
    async def test_create_task_blank_title(self, store):
        """Whitespace-only titles are rejected."""
        result = await CreateTaskTool(store).execute(_context(), project_id="proj_1", title="  ")

        assert result == {"success": False, "error": "Task title must not be empty"}

    @pytest.mark.asyncio
    async def test_change_context_to_project(self, store):
        """Switching to a readable project returns a context shift."""
        result = await ChangeContextTool(store).execute(
            _context(), context_type="project", entity_id="proj_1"
        )

        assert result["context_shift"] == {
            "new_context": "project",
            "entity_id": "proj_1",
            "entity_name": "Apollo",
            "entity_type": "project",
            "message": "Switched to Apollo",
        }

    @pytest.mark.asyncio
    async def test_change_context_to_global(self, store):
        """Returning to global drops the entity id."""
        result = await ChangeContextTool(store).execute(
            _context(), context_type=ContextType.GLOBAL.value, entity_id="proj_1"
        )

        assert result["context_shift"]["new_context"] == "global"
        assert result["context_shift"]["entity_id"] is None

    @pytest.mark.asyncio
    async def test_change_context_requires_entity(self, store):
        """Entity-bound scopes need an entity id."""
        result = await ChangeContextTool(store).execute(_context(), context_type="project")

        assert result["success"] is False

    @pytest.mark.asyncio
    async def test_change_context_denied(self, store):
        """Unreadable projects cannot be opened."""
        result = await ChangeContextTool(store).execute(
            _context(), context_type="project", entity_id="proj_2"
        )

        assert result["success"] is False
        assert "context_shift" not in result

    @pytest.mark.asyncio
    async def test_change_context_to_foreign_brief_denied(self, store):
        """Daily briefs of other users cannot be opened."""
        result = await ChangeContextTool(store).execute(
            _context(), context_type="daily_brief", entity_id="brief_other"
        )

        assert result["success"] is False
        assert "context_shift" not in result

    @pytest.mark.asyncio
    async def test_change_context_to_own_brief(self, store):
        """The caller's own brief is an access-checked target."""
        result = await ChangeContextTool(store).execute(
            _context(), context_type="daily_brief", entity_id="brief_own"
        )

        assert result["context_shift"]["new_context"] == "daily_brief"
        assert result["context_shift"]["entity_id"] == "brief_own"
        assert result["context_shift"]["entity_type"] == "daily_brief"
