"""Demo tools backed by the file domain store.

- ``list_projects``: projects the caller can read
- ``get_project``: one project with its goals and open tasks
- ``list_tasks``: tasks of a project, optionally filtered by status
- ``create_task``: add a task to a project
- ``change_context``: move the conversation to another scope
"""

from __future__ import annotations

from typing import Any

from turnstream.core.domain.enums import PROJECT_CONTEXTS, ContextType
from turnstream.core.domain.models import ServiceContext
from turnstream.infrastructure.persistence.file_domain_store import FileDomainStore
from turnstream.infrastructure.tools.base_tool import BaseTool

_PROJECT_CONTEXT_VALUES = tuple(ctx.value for ctx in PROJECT_CONTEXTS)
_TASK_STATUSES = ["todo", "in_progress", "done"]


class DomainTool(BaseTool):
    """Tool with access to the domain store."""

    def __init__(self, store: FileDomainStore) -> None:
        self._store = store

    async def _denied(self, context: ServiceContext, project_id: str) -> dict[str, Any] | None:
        if await self._store.has_access(context.user_id, project_id):
            return None
        return {"success": False, "error": f"Project not found or not accessible: {project_id}"}


class ListProjectsTool(DomainTool):
    tool_name = "list_projects"
    tool_description = "List the projects the user can access, with their status."
    tool_parameters_schema = {"type": "object", "properties": {}}
    tool_keywords = ("projects", "portfolio")
    tool_contexts = (ContextType.GLOBAL.value,)

    async def _execute(self, context: ServiceContext, **kwargs: Any) -> dict[str, Any]:
        projects = await self._store.list_projects(context.user_id)
        return {
            "success": True,
            "projects": [
                {"id": p.get("id"), "name": p.get("name"), "status": p.get("status")}
                for p in projects
            ],
            "_entities_accessed": [p["id"] for p in projects if p.get("id")],
        }


class GetProjectTool(DomainTool):
    tool_name = "get_project"
    tool_description = "Read a project with its goals and open tasks."
    tool_parameters_schema = {
        "type": "object",
        "properties": {"project_id": {"type": "string", "description": "Project id"}},
        "required": ["project_id"],
    }
    tool_keywords = ("project", "status", "overview")
    tool_contexts = _PROJECT_CONTEXT_VALUES

    async def _execute(self, context: ServiceContext, **kwargs: Any) -> dict[str, Any]:
        project_id = kwargs["project_id"]
        denied = await self._denied(context, project_id)
        if denied:
            return denied
        project = await self._store.get_project(project_id)
        goals = await self._store.list_entities("goals", project_id)
        tasks = [
            t for t in await self._store.list_entities("tasks", project_id)
            if t.get("status") != "done"
        ]
        return {
            "success": True,
            "project": project,
            "goals": goals,
            "tasks": tasks,
            "_entities_accessed": [project_id, *(g["id"] for g in goals), *(t["id"] for t in tasks)],
        }


class ListTasksTool(DomainTool):
    tool_name = "list_tasks"
    tool_description = "List the tasks of a project, optionally filtered by status."
    tool_parameters_schema = {
        "type": "object",
        "properties": {
            "project_id": {"type": "string", "description": "Project id"},
            "status": {"type": "string", "enum": _TASK_STATUSES},
        },
        "required": ["project_id"],
    }
    tool_keywords = ("task", "tasks", "todo", "todos")
    tool_contexts = _PROJECT_CONTEXT_VALUES

    async def _execute(self, context: ServiceContext, **kwargs: Any) -> dict[str, Any]:
        project_id = kwargs["project_id"]
        denied = await self._denied(context, project_id)
        if denied:
            return denied
        tasks = await self._store.list_entities("tasks", project_id, kwargs.get("status"))
        return {
            "success": True,
            "tasks": tasks,
            "_entities_accessed": [t["id"] for t in tasks if t.get("id")],
        }


class CreateTaskTool(DomainTool):
    tool_name = "create_task"
    tool_description = "Create a task in a project."
    tool_parameters_schema = {
        "type": "object",
        "properties": {
            "project_id": {"type": "string", "description": "Project id"},
            "title": {"type": "string", "description": "Short task title"},
            "description": {"type": "string"},
            "due_date": {"type": "string", "description": "ISO 8601 date"},
        },
        "required": ["project_id", "title"],
    }
    tool_keywords = ("task", "add", "create", "todo")
    tool_contexts = _PROJECT_CONTEXT_VALUES

    async def _execute(self, context: ServiceContext, **kwargs: Any) -> dict[str, Any]:
        project_id = kwargs["project_id"]
        if not await self._store.has_access(context.user_id, project_id, "write"):
            return {"success": False, "error": f"Not allowed to add tasks to {project_id}"}
        title = str(kwargs["title"]).strip()
        if not title:
            return {"success": False, "error": "Task title must not be empty"}
        task = await self._store.create_entity(
            "tasks",
            {
                "project_id": project_id,
                "title": title,
                "description": kwargs.get("description"),
                "due_date": kwargs.get("due_date"),
                "status": "todo",
            },
        )
        return {"success": True, "task": task}


class ChangeContextTool(DomainTool):
    tool_name = "change_context"
    tool_description = (
        "Switch the conversation to another scope, e.g. open a project by id "
        "or return to the global overview."
    )
    tool_parameters_schema = {
        "type": "object",
        "properties": {
            "context_type": {
                "type": "string",
                "enum": [ctx.value for ctx in ContextType],
            },
            "entity_id": {"type": "string", "description": "Project or brief id"},
        },
        "required": ["context_type"],
    }
    tool_keywords = ("switch", "open", "context")
    tool_contexts = tuple(ctx.value for ctx in ContextType)

    async def _execute(self, context: ServiceContext, **kwargs: Any) -> dict[str, Any]:
        new_context = ContextType.normalize(kwargs["context_type"])
        entity_id = kwargs.get("entity_id")
        if new_context.requires_entity and not entity_id:
            return {"success": False, "error": f"entity_id is required for {new_context.value}"}

        entity_name = None
        entity_type = None
        if new_context.requires_entity:
            if not await self._store.has_access(context.user_id, entity_id):
                return {
                    "success": False,
                    "error": f"Not found or not accessible: {entity_id}",
                }
        if new_context.is_project_like:
            project = await self._store.get_project(entity_id)
            entity_name = (project or {}).get("name")
            entity_type = "project"
        elif new_context is ContextType.DAILY_BRIEF:
            entity_type = "daily_brief"
        elif new_context is ContextType.GLOBAL:
            entity_id = None

        label = entity_name or entity_id or "global overview"
        return {
            "success": True,
            "context_shift": {
                "new_context": new_context.value,
                "entity_id": entity_id,
                "entity_name": entity_name,
                "entity_type": entity_type,
                "message": f"Switched to {label}",
            },
        }


def build_domain_tools(store: FileDomainStore) -> list[BaseTool]:
    """All demo tools, in selection priority order."""
    return [
        ChangeContextTool(store),
        GetProjectTool(store),
        ListTasksTool(store),
        CreateTaskTool(store),
        ListProjectsTool(store),
    ]
