"""Compact summaries of what a turn read and touched.

Two consumers:

- The Tool Gateway uses the payload extractors to fill
  ``ToolResult.side_effects`` (entity counts, ``{id, kind, name}`` updates,
  accessed id lists).
- The Turn Orchestrator turns the loaded prompt context and the turn's tool
  executions into ``ToolSummary`` records for the agent-state reconciler,
  and into read-only ``operation`` events for the UI.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence

from turnstream.core.domain.enums import ContextType, OperationAction
from turnstream.core.domain.models import EntityUpdate, PromptContext, ToolExecution

TOOL_ENTITY_KEYS: tuple[str, ...] = (
    "project",
    "task",
    "goal",
    "plan",
    "document",
    "milestone",
    "risk",
    "requirement",
    "event",
)
CONTEXT_SNAPSHOT_TOOL = "context_snapshot"
CONTEXT_ENTITY_LIMIT = 6
LINKED_ENTITY_LIMIT = 4
MAX_OPERATION_LISTS = 6
_LABEL_KEYS = ("title", "name", "text", "summary", "goal", "milestone")
_CONTEXT_LIST_KINDS = (
    ("goals", "goal"),
    ("milestones", "milestone"),
    ("plans", "plan"),
    ("tasks", "task"),
    ("documents", "document"),
    ("events", "event"),
)


@dataclass
class ToolSummary:
    """What one tool call (or the context load) contributed to a turn."""

    tool_name: str
    success: bool
    summary: str
    error: str | None = None
    entity_counts: dict[str, int] = field(default_factory=dict)
    entity_updates: list[EntityUpdate] = field(default_factory=list)
    entities_accessed: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "tool_name": self.tool_name,
            "success": self.success,
            "summary": self.summary,
        }
        if self.error:
            data["error"] = self.error
        if self.entity_counts:
            data["entity_counts"] = dict(self.entity_counts)
        if self.entity_updates:
            data["entity_updates"] = [update.to_dict() for update in self.entity_updates]
        if self.entities_accessed:
            data["entities_accessed"] = list(self.entities_accessed)
        return data


def extract_entity_label(record: Any, fallback: str | None = None) -> str | None:
    """Best display label of a domain record."""
    if not isinstance(record, dict):
        return fallback
    for key in _LABEL_KEYS:
        candidate = record.get(key)
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return fallback


def build_entity_counts(payload: Any) -> dict[str, int]:
    """Count plural entity collections (``tasks``, ``goals``, ...) in a payload."""
    if not isinstance(payload, dict):
        return {}
    counts: dict[str, int] = {}
    for key in TOOL_ENTITY_KEYS:
        collection = payload.get(f"{key}s")
        if isinstance(collection, list):
            counts[key] = len(collection)
    return counts


def build_entity_updates(payload: Any) -> list[EntityUpdate]:
    """Collect singular entity records (``task: {id, ...}``) from a payload."""
    if not isinstance(payload, dict):
        return []
    updates: list[EntityUpdate] = []
    for key in TOOL_ENTITY_KEYS:
        record = payload.get(key)
        if not isinstance(record, dict):
            continue
        entity_id = record.get("id")
        if isinstance(entity_id, str) and entity_id:
            updates.append(EntityUpdate(id=entity_id, kind=key, name=extract_entity_label(record)))
    return updates


def extract_entities_accessed(payload: Any) -> list[str]:
    """Return the ``_entities_accessed`` (or ``entities_accessed``) id list."""
    if not isinstance(payload, dict):
        return []
    for key in ("_entities_accessed", "entities_accessed"):
        value = payload.get(key)
        if isinstance(value, list):
            return [entry for entry in value if isinstance(entry, str) and entry]
    return []


def build_tool_result_summaries(executions: Sequence[ToolExecution]) -> list[ToolSummary]:
    """Summarize each tool execution of the turn."""
    summaries: list[ToolSummary] = []
    for execution in executions:
        name = execution.tool_call.name
        result = execution.result
        effects = result.side_effects
        if result.success:
            counts = ", ".join(f"{key}:{count}" for key, count in effects.entity_counts.items())
            text = f"Executed {name} ({counts})." if counts else f"Executed {name}."
        else:
            text = f"Failed {name}: {result.error or 'unknown error'}"
        summaries.append(
            ToolSummary(
                tool_name=name,
                success=result.success,
                summary=text,
                error=result.error,
                entity_counts=dict(effects.entity_counts),
                entity_updates=list(effects.entity_updates),
                entities_accessed=list(effects.entities_accessed),
            )
        )
    return summaries


def build_context_tool_summary(context: PromptContext | None) -> list[ToolSummary]:
    """Describe the loaded context snapshot as a pseudo tool summary."""
    if context is None or not isinstance(context.data, dict):
        return []
    data = context.data
    counts: dict[str, int] = {}
    updates: list[EntityUpdate] = []

    def add_entities(items: list[Any], kind: str, limit: int = CONTEXT_ENTITY_LIMIT) -> None:
        counts[kind] = len(items)
        for item in items[:limit]:
            if isinstance(item, dict) and isinstance(item.get("id"), str) and item["id"]:
                updates.append(EntityUpdate(id=item["id"], kind=kind, name=extract_entity_label(item)))

    project = data.get("project")
    if isinstance(project, dict) and isinstance(project.get("id"), str):
        updates.append(
            EntityUpdate(
                id=project["id"],
                kind="project",
                name=extract_entity_label(project, context.project_name or "Project"),
            )
        )
        counts["project"] = 1

    if context.context_type is ContextType.GLOBAL and isinstance(data.get("projects"), list):
        add_entities(data["projects"], "project")

    for key, kind in _CONTEXT_LIST_KINDS:
        if isinstance(data.get(key), list):
            add_entities(data[key], kind)

    linked = data.get("linked_entities")
    if isinstance(linked, dict):
        for kind, items in linked.items():
            if isinstance(items, list) and items:
                add_entities(items, kind, LINKED_ENTITY_LIMIT)

    if not counts and not updates:
        return []

    if context.context_type is ContextType.GLOBAL:
        text = "Loaded global context snapshot."
    elif context.project_name:
        text = f"Loaded context snapshot for {context.project_name}."
    else:
        text = "Loaded project context snapshot."

    return [
        ToolSummary(
            tool_name=CONTEXT_SNAPSHOT_TOOL,
            success=True,
            summary=text,
            entity_counts=counts,
            entity_updates=updates,
        )
    ]


def _operation(action: OperationAction, entity_type: str, entity_name: str) -> dict[str, Any]:
    return {
        "action": action.value,
        "entity_type": entity_type,
        "entity_name": entity_name,
        "status": "success",
    }


def build_context_operations(context: PromptContext | None) -> list[dict[str, Any]]:
    """Read-only activity entries describing what context the turn loaded."""
    if context is None or not isinstance(context.data, dict):
        return []
    data = context.data

    if context.context_type is ContextType.GLOBAL and isinstance(data.get("projects"), list):
        return [
            _operation(OperationAction.LIST, "project", f"All projects ({len(data['projects'])})")
        ]

    operations: list[dict[str, Any]] = []
    project = data.get("project")
    if isinstance(project, dict):
        name = context.project_name or extract_entity_label(project, "Project") or "Project"
        operations.append(_operation(OperationAction.READ, "project", name))

    if context.focus_entity_type and context.focus_entity_type in TOOL_ENTITY_KEYS:
        label = (context.focus_entity_name or "").strip() or context.focus_entity_type
        operations.append(_operation(OperationAction.READ, context.focus_entity_type, label))

    lists: list[tuple[str, int]] = []
    for key, kind in _CONTEXT_LIST_KINDS:
        if kind == "event":
            continue
        if isinstance(data.get(key), list):
            lists.append((kind, len(data[key])))
    linked = data.get("linked_entities")
    if isinstance(linked, dict):
        for kind, items in linked.items():
            if kind in TOOL_ENTITY_KEYS and isinstance(items, list) and items:
                lists.append((kind, len(items)))

    for kind, count in lists[:MAX_OPERATION_LISTS]:
        if count > 0:
            operations.append(_operation(OperationAction.LIST, kind, f"{kind}s ({count})"))
    return operations
