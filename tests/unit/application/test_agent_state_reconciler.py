"""
Unit tests for AgentStateReconciler.

Tests verify:
- Deltas from the LLM are merged and persisted
- Tool entity updates are merged even when the LLM call fails
- Detached runs never raise and are reported to the error sink
"""

import json
from unittest.mock import AsyncMock

import pytest

from turnstream.application.agent_state_reconciler import AGENT_STATE_KEY, AgentStateReconciler
from turnstream.core.domain.enums import ContextType, ErrorOperation
from turnstream.core.domain.models import EntityUpdate
from turnstream.core.domain.tool_summaries import ToolSummary

MESSAGES = [
    {"role": "user", "content": "add a task to review the draft"},
    {"role": "assistant", "content": "Created the task."},
]


@pytest.fixture
def llm_provider():
    provider = AsyncMock()
    provider.complete = AsyncMock(
        return_value={
            "success": True,
            "content": json.dumps(
                {
                    "agent_state_item_updates": [
                        {"op": "add", "item": {"kind": "task", "title": "Review draft"}}
                    ],
                    "agent_state_updates": {},
                }
            ),
        }
    )
    return provider


@pytest.fixture
def session_store():
    store = AsyncMock()
    store.update_agent_metadata = AsyncMock(return_value={})
    return store


@pytest.fixture
def error_logger():
    logger = AsyncMock()
    logger.log_error = AsyncMock()
    return logger


@pytest.fixture
def reconciler(llm_provider, session_store, error_logger):
    return AgentStateReconciler(
        llm_provider=llm_provider, session_store=session_store, error_logger=error_logger
    )


def _summaries() -> list[ToolSummary]:
    return [
        ToolSummary(
            tool_name="create_task",
            success=True,
            summary="Executed create_task.",
            entity_updates=[EntityUpdate(id="task_7", kind="task", name="Review draft")],
        )
    ]


def _kwargs(**overrides):
    kwargs = {
        "session_id": "sess-1",
        "user_id": "user-1",
        "context_type": ContextType.PROJECT,
        "prior_state": None,
        "messages": MESSAGES,
        "tool_summaries": _summaries(),
    }
    kwargs.update(overrides)
    return kwargs


class TestAgentStateReconciler:
    """Tests for AgentStateReconciler.reconcile and schedule."""

    @pytest.mark.asyncio
    async def test_reconcile_merges_and_persists(self, reconciler, llm_provider, session_store):
        """The LLM delta and tool entity updates land in the stored state."""
        state = await reconciler.reconcile(**_kwargs())

        assert [item["title"] for item in state["items"]] == ["Review draft"]
        assert state["current_understanding"]["entities"] == [
            {"id": "task_7", "kind": "task", "name": "Review draft"}
        ]
        assert "last_summarized_at" in state
        session_store.update_agent_metadata.assert_awaited_once_with(
            "sess-1", {AGENT_STATE_KEY: state}
        )
        call_kwargs = llm_provider.complete.await_args.kwargs
        assert call_kwargs["model"] == "fast"
        assert call_kwargs["response_format"] == {"type": "json_object"}

    @pytest.mark.asyncio
    async def test_llm_failure_still_merges_entities(
        self, reconciler, llm_provider, session_store, error_logger
    ):
        """A failed LLM call keeps the tool-derived entities."""
        llm_provider.complete.return_value = {"success": False, "error": "rate limited"}

        state = await reconciler.reconcile(**_kwargs())

        assert state["items"] == []
        assert state["current_understanding"]["entities"][0]["id"] == "task_7"
        session_store.update_agent_metadata.assert_awaited_once()
        kwargs = error_logger.log_error.await_args.kwargs
        assert kwargs["operation_type"] == ErrorOperation.AGENT_STATE_RECONCILIATION.value

    @pytest.mark.asyncio
    async def test_invalid_delta_is_ignored(self, reconciler, llm_provider):
        """Non-JSON LLM output leaves the state unchanged apart from entities."""
        llm_provider.complete.return_value = {"success": True, "content": "sure thing!"}

        state = await reconciler.reconcile(**_kwargs(tool_summaries=[]))

        assert state["items"] == []
        assert state["current_understanding"]["entities"] == []

    @pytest.mark.asyncio
    async def test_prior_state_is_sanitized(self, reconciler):
        """Malformed ids in the stored state are dropped before merging."""
        prior = {
            "current_understanding": {
                "entities": [
                    {"id": "proj_1", "kind": "project", "name": "Apollo"},
                    {"id": "made up", "kind": "task"},
                ]
            }
        }

        state = await reconciler.reconcile(**_kwargs(prior_state=prior, tool_summaries=[]))

        assert [e["id"] for e in state["current_understanding"]["entities"]] == ["proj_1"]

    @pytest.mark.asyncio
    async def test_nothing_to_reconcile(self, reconciler, llm_provider, session_store):
        """No messages and no tool summaries means no work."""
        result = await reconciler.reconcile(**_kwargs(messages=[], tool_summaries=[]))

        assert result is None
        llm_provider.complete.assert_not_awaited()
        session_store.update_agent_metadata.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_scheduled_failure_is_contained(self, reconciler, session_store, error_logger):
        """A detached run that fails is logged and never raises."""
        session_store.update_agent_metadata.side_effect = RuntimeError("disk full")

        task = reconciler.schedule(**_kwargs())
        await reconciler.drain()

        assert task.result() is None
        assert reconciler.pending_tasks == 0
        error_logger.log_error.assert_awaited_once()
