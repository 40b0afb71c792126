"""Unit tests for the last-turn context builder."""

from turnstream.core.domain.enums import ContextType
from turnstream.core.domain.last_turn_context import FALLBACK_SUMMARY, build_last_turn_context
from turnstream.core.domain.models import (
    ContextScope,
    ContextShift,
    ToolCall,
    ToolExecution,
    ToolResult,
    ToolSideEffects,
)


def _execution(name: str, payload: dict, accessed: list[str] | None = None) -> ToolExecution:
    return ToolExecution(
        tool_call=ToolCall(id=f"call_{name}", name=name, arguments="{}"),
        result=ToolResult(
            tool_call_id=f"call_{name}",
            tool_name=name,
            success=True,
            result=payload,
            side_effects=ToolSideEffects(entities_accessed=accessed or []),
        ),
    )


class TestBuildLastTurnContext:
    """Tests for build_last_turn_context."""

    def test_project_scope_fills_project_slot(self):
        """The effective project scope is always carried forward."""
        context = build_last_turn_context(
            assistant_text="Done.",
            user_message="add a task",
            scope=ContextScope(ContextType.PROJECT, "proj_123"),
        )

        assert context.entities.project_id == "proj_123"
        assert context.context_type is ContextType.PROJECT

    def test_tool_payload_entities_are_slotted(self):
        """Labelled records and id keys in tool payloads fill the slots."""
        executions = [
            _execution("create_task", {"success": True, "task": {"id": "task_1", "title": "Review"}}),
            _execution("get_project", {"goals": [{"id": "goal_2"}], "plan_id": "plan_3"}),
        ]

        context = build_last_turn_context(
            assistant_text="Created it.",
            user_message="add a task",
            scope=ContextScope(ContextType.PROJECT, "proj_123"),
            tool_executions=executions,
        )

        assert context.entities.task_ids == ["task_1"]
        assert context.entities.goal_ids == ["goal_2"]
        assert context.entities.plan_id == "plan_3"
        assert context.data_accessed == ["create_task", "get_project"]

    def test_prefix_classification_can_be_disabled(self):
        """Unlabelled ids are only classified by prefix when enabled."""
        executions = [_execution("list_tasks", {"items": []}, accessed=["task_9"])]

        enabled = build_last_turn_context(
            assistant_text="x",
            user_message="y",
            scope=ContextScope(),
            tool_executions=executions,
        )
        disabled = build_last_turn_context(
            assistant_text="x",
            user_message="y",
            scope=ContextScope(),
            tool_executions=executions,
            use_prefix_classification=False,
        )

        assert enabled.entities.task_ids == ["task_9"]
        assert disabled.entities.task_ids == []

    def test_invalid_ids_are_dropped(self):
        """Malformed ids never reach the entity slots."""
        executions = [_execution("create_task", {"task": {"id": "half-an-id"}})]

        context = build_last_turn_context(
            assistant_text="x", user_message="y", scope=ContextScope(), tool_executions=executions
        )

        assert context.entities.to_dict() == {}

    def test_summary_fallbacks(self):
        """Summary falls back to the shift message, then the user message."""
        shift = ContextShift(new_context=ContextType.GLOBAL, message="Switched to overview")

        from_shift = build_last_turn_context(
            assistant_text="", user_message="go back", scope=ContextScope(), context_shift=shift
        )
        from_user = build_last_turn_context(
            assistant_text=" ", user_message="go back", scope=ContextScope()
        )
        fallback = build_last_turn_context(assistant_text="", user_message="", scope=ContextScope())

        assert from_shift.summary == "Switched to overview"
        assert from_user.summary == "go back"
        assert fallback.summary == FALLBACK_SUMMARY

    def test_long_summary_is_truncated(self):
        """Summaries are capped and end with an ellipsis."""
        context = build_last_turn_context(
            assistant_text="word " * 100, user_message="", scope=ContextScope()
        )

        assert len(context.summary) <= 160
        assert context.summary.endswith("...")

    def test_ids_are_stored_stripped(self):
        """Surrounding whitespace is removed before an id is slotted."""
        shift = ContextShift(
            new_context=ContextType.PROJECT, entity_id="proj_5 ", entity_type="project"
        )
        executions = [_execution("list_tasks", {"tasks": [{"id": " task_7"}]})]

        context = build_last_turn_context(
            assistant_text="Listed.",
            user_message="tasks?",
            scope=ContextScope(),
            context_shift=shift,
            tool_executions=executions,
        )

        assert context.entities.project_id == "proj_5"
        assert context.entities.task_ids == ["task_7"]

    def test_blank_shift_message_is_skipped(self):
        """A whitespace-only shift message never becomes the summary."""
        shift = ContextShift(new_context=ContextType.GLOBAL, message="   ")

        with_user = build_last_turn_context(
            assistant_text="", user_message="go back", scope=ContextScope(), context_shift=shift
        )
        without_user = build_last_turn_context(
            assistant_text="", user_message="", scope=ContextScope(), context_shift=shift
        )

        assert with_user.summary == "go back"
        assert without_user.summary == FALLBACK_SUMMARY
