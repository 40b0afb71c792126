"""Last-turn context builder.

Distills a completed turn into the small ``LastTurnContext`` handed back to
the client, which echoes it on the next request as a continuity hint.
"""

from __future__ import annotations

from typing import Any, Sequence

from turnstream.core.domain.entity_ids import (
    classify_by_prefix,
    is_valid_entity_id,
    normalize_kind,
)
from turnstream.core.domain.models import (
    ContextScope,
    ContextShift,
    LastTurnContext,
    LastTurnEntities,
    ToolExecution,
)

SUMMARY_MAX_CHARS = 160
FALLBACK_SUMMARY = "Continued the conversation."
_MAX_DEPTH = 6

_ID_KEY_KINDS = {
    "project_id": "project",
    "task_id": "task",
    "goal_id": "goal",
    "plan_id": "plan",
    "document_id": "document",
}
_ID_LIST_KEY_KINDS = {
    "task_ids": "task",
    "goal_ids": "goal",
    "project_ids": "project",
}
_TYPE_LABEL_KEYS = ("entity_type", "type", "kind")


def _truncate(text: str, max_chars: int = SUMMARY_MAX_CHARS) -> str:
    text = " ".join(text.split())
    if len(text) <= max_chars:
        return text
    return text[: max_chars - 3].rstrip() + "..."


def _assign(entities: LastTurnEntities, kind: str | None, entity_id: Any) -> None:
    """Place a validated id into its slot; single-valued slots keep the first id."""
    if not kind or not is_valid_entity_id(entity_id):
        return
    entity_id = entity_id.strip()
    if kind == "project":
        entities.project_id = entities.project_id or entity_id
    elif kind == "task":
        if entity_id not in entities.task_ids:
            entities.task_ids.append(entity_id)
    elif kind == "goal":
        if entity_id not in entities.goal_ids:
            entities.goal_ids.append(entity_id)
    elif kind == "plan":
        entities.plan_id = entities.plan_id or entity_id
    elif kind == "document":
        entities.document_id = entities.document_id or entity_id


class _EntityWalker:
    """Walk tool payloads and slot every recognizable entity id."""

    def __init__(self, entities: LastTurnEntities, use_prefixes: bool) -> None:
        self._entities = entities
        self._use_prefixes = use_prefixes

    def walk(self, value: Any, depth: int = 0, implied_kind: str | None = None) -> None:
        if depth > _MAX_DEPTH:
            return
        if isinstance(value, list):
            for entry in value:
                self.walk(entry, depth + 1, implied_kind)
            return
        if isinstance(value, dict):
            self._walk_record(value, depth, implied_kind)

    def _walk_record(self, record: dict[str, Any], depth: int, implied_kind: str | None) -> None:
        record_id = record.get("id")
        if record_id is not None:
            labelled = next(
                (normalize_kind(record.get(key)) for key in _TYPE_LABEL_KEYS if record.get(key)),
                None,
            )
            kind = labelled or implied_kind
            if kind is None and self._use_prefixes:
                kind = classify_by_prefix(record_id)
            _assign(self._entities, kind, record_id)

        for key, value in record.items():
            if key in _ID_KEY_KINDS:
                _assign(self._entities, _ID_KEY_KINDS[key], value)
            elif key in _ID_LIST_KEY_KINDS and isinstance(value, list):
                for entry in value:
                    _assign(self._entities, _ID_LIST_KEY_KINDS[key], entry)
            elif key in ("_entities_accessed", "entities_accessed") and isinstance(value, list):
                if self._use_prefixes:
                    for entry in value:
                        _assign(self._entities, classify_by_prefix(entry), entry)
            elif isinstance(value, (dict, list)):
                self.walk(value, depth + 1, normalize_kind(key))


def build_last_turn_context(
    *,
    assistant_text: str,
    user_message: str,
    scope: ContextScope,
    context_shift: ContextShift | None = None,
    tool_executions: Sequence[ToolExecution] = (),
    use_prefix_classification: bool = True,
    timestamp: str | None = None,
) -> LastTurnContext:
    """Build the last-turn context for a completed turn.

    Args:
        assistant_text: Final assistant text of the turn.
        user_message: The user's message for this turn.
        scope: Effective (possibly shifted) scope at the end of the turn.
        context_shift: The last context shift applied during the turn.
        tool_executions: Tool call/result pairs in execution order.
        use_prefix_classification: Classify unlabeled ids by their prefix.
        timestamp: Override for the timestamp (ISO string).

    Returns:
        LastTurnContext with a non-empty summary.
    """
    entities = LastTurnEntities()

    if scope.project_id:
        _assign(entities, "project", scope.project_id)
    if context_shift and context_shift.entity_id:
        _assign(entities, normalize_kind(context_shift.entity_type), context_shift.entity_id)

    walker = _EntityWalker(entities, use_prefix_classification)
    data_accessed: list[str] = []
    for execution in tool_executions:
        name = execution.tool_call.name
        if name and name not in data_accessed:
            data_accessed.append(name)
        if execution.result.success:
            walker.walk(execution.result.result)
        if use_prefix_classification:
            for entity_id in execution.result.side_effects.entities_accessed:
                _assign(entities, classify_by_prefix(entity_id), entity_id)

    if assistant_text and assistant_text.strip():
        summary = _truncate(assistant_text)
    elif context_shift and context_shift.message and context_shift.message.strip():
        summary = _truncate(context_shift.message)
    elif user_message and user_message.strip():
        summary = _truncate(user_message)
    else:
        summary = FALLBACK_SUMMARY

    context = LastTurnContext(
        summary=summary,
        entities=entities,
        context_type=scope.context_type,
        data_accessed=data_accessed,
    )
    if timestamp:
        context.timestamp = timestamp
    return context
