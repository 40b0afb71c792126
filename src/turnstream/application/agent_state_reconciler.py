"""
Application Layer - Agent-State Reconciler

Best-effort post-turn step that folds a turn's message pair and tool
outcomes into the session's durable agent state. It runs detached from the
request (``schedule``), may fail, and never blocks or breaks a turn: every
failure is logged and the stored state stays at its last good value.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Sequence
from typing import Any

import structlog

from turnstream.core.domain.agent_state import (
    merge_agent_state,
    parse_agent_state_delta,
    sanitize_agent_state,
)
from turnstream.core.domain.enums import ContextType, ErrorOperation
from turnstream.core.domain.tool_summaries import ToolSummary
from turnstream.core.interfaces.llm import LLMProviderProtocol
from turnstream.core.interfaces.logging import ErrorLoggerProtocol
from turnstream.core.interfaces.sessions import SessionStoreProtocol
from turnstream.core.utils.time import utc_now_iso

AGENT_STATE_KEY = "agent_state"

RECONCILER_SYSTEM_PROMPT = "\n".join(
    [
        "You are updating the agent_state for a project assistant chat.",
        "Use ONLY the provided messages, tool results, and current agent_state.",
        "Return structured deltas only. Do not invent facts or expand beyond evidence.",
        'If there are no updates, return {"agent_state_item_updates":[],"agent_state_updates":{}}.',
        "Output valid JSON only (no markdown or extra text).",
        "Schema:",
        "{",
        '  "agent_state_item_updates": [',
        '    {"op":"add","item":{"id?":string,"kind":"task|doc|note|idea|question","title":string,'
        '"details?":string,"status":"active|resolved|discarded","relatedEntityIds?":[string]}}',
        '    {"op":"update","id":string,"patch":{...}}',
        '    {"op":"remove","id":string}',
        "  ],",
        '  "agent_state_updates": {',
        '    "current_understanding": { "entities": [{"id":string,"kind":string,"name?":string}],'
        ' "dependencies": [{"from":string,"to":string,"rel?":string}] },',
        '    "assumptions": [{ "id?":string,"hypothesis":string,"confidence?":number,"evidence?":[string] }],',
        '    "expectations": [{ "id?":string,"action":string,"expected_outcome":string,'
        '"expected_ids?":[string],"status?":"pending|confirmed|failed" }],',
        '    "tentative_hypotheses": [{ "id?":string,"hypothesis":string,"reason?":string }]',
        "  }",
        "}",
    ]
)


class AgentStateReconciler:
    """Merge turn outcomes into the session's agent state."""

    def __init__(
        self,
        *,
        llm_provider: LLMProviderProtocol,
        session_store: SessionStoreProtocol,
        error_logger: ErrorLoggerProtocol,
        model: str | None = "fast",
        temperature: float = 0.25,
        endpoint: str = "/api/v1/chat/stream",
    ) -> None:
        self._llm_provider = llm_provider
        self._session_store = session_store
        self._error_logger = error_logger
        self._model = model
        self._temperature = temperature
        self._endpoint = endpoint
        self._background_tasks: set[asyncio.Task[Any]] = set()
        self._logger = structlog.get_logger(__name__)

    @property
    def pending_tasks(self) -> int:
        return len(self._background_tasks)

    def schedule(self, **kwargs: Any) -> asyncio.Task[Any]:
        """Run ``reconcile`` detached from the caller; the task is tracked until done."""
        task = asyncio.create_task(self._run_detached(**kwargs))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every scheduled reconciliation (used on shutdown and in tests)."""
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    async def _run_detached(self, **kwargs: Any) -> dict[str, Any] | None:
        try:
            return await self.reconcile(**kwargs)
        except Exception as e:
            self._logger.error(
                "agent_state_reconciliation_failed",
                session_id=kwargs.get("session_id"),
                error=str(e),
            )
            await self._log(e, kwargs)
            return None

    async def reconcile(
        self,
        *,
        session_id: str,
        user_id: str,
        context_type: ContextType,
        prior_state: Any,
        messages: Sequence[dict[str, Any]],
        tool_summaries: Sequence[ToolSummary],
    ) -> dict[str, Any] | None:
        """
        Reconcile and persist the agent state for one turn.

        Args:
            session_id: Session whose state is updated.
            user_id: Owning user (for error logging).
            context_type: Effective context type at the end of the turn.
            prior_state: Stored agent state (may be missing or malformed).
            messages: Recent history plus the turn's user/assistant pair.
            tool_summaries: Context snapshot summary first, then per-tool summaries.

        Returns:
            The persisted agent state, or None when there was nothing to do.
        """
        if not messages and not tool_summaries:
            return None

        state = sanitize_agent_state(prior_state, session_id)
        delta = await self._request_delta(
            session_id=session_id,
            user_id=user_id,
            context_type=context_type,
            state=state,
            messages=messages,
            tool_summaries=tool_summaries,
        )

        entity_updates = [
            update.to_dict() for summary in tool_summaries for update in summary.entity_updates
        ]
        merged = merge_agent_state(state, delta, entity_updates, now=utc_now_iso())
        await self._session_store.update_agent_metadata(session_id, {AGENT_STATE_KEY: merged})
        self._logger.info(
            "agent_state_reconciled",
            session_id=session_id,
            delta_applied=delta is not None,
            entities=len(merged["current_understanding"]["entities"]),
            items=len(merged["items"]),
        )
        return merged

    async def _request_delta(
        self,
        *,
        session_id: str,
        user_id: str,
        context_type: ContextType,
        state: dict[str, Any],
        messages: Sequence[dict[str, Any]],
        tool_summaries: Sequence[ToolSummary],
    ) -> dict[str, Any] | None:
        payload = {
            "context_type": context_type.value,
            "agent_state": state,
            "recent_messages": list(messages),
            "tool_results": [summary.to_dict() for summary in tool_summaries],
        }
        user_prompt = "Context JSON:\n" + json.dumps(
            payload, ensure_ascii=False, indent=2, default=str
        )
        result = await self._llm_provider.complete(
            messages=[
                {"role": "system", "content": RECONCILER_SYSTEM_PROMPT},
                {"role": "user", "content": user_prompt},
            ],
            model=self._model,
            temperature=self._temperature,
            response_format={"type": "json_object"},
        )
        if not result.get("success"):
            self._logger.warning(
                "agent_state_llm_failed", session_id=session_id, error=result.get("error")
            )
            await self._log(
                result.get("error") or "Agent state LLM call failed",
                {"session_id": session_id, "user_id": user_id, "context_type": context_type},
            )
            return None

        delta = parse_agent_state_delta(result.get("content"))
        if delta is None:
            preview = str(result.get("content") or "")[:200]
            self._logger.warning(
                "agent_state_invalid_delta", session_id=session_id, response_preview=preview
            )
        return delta

    async def _log(self, error: BaseException | str, kwargs: dict[str, Any]) -> None:
        context_type = kwargs.get("context_type")
        await self._error_logger.log_error(
            error,
            endpoint=self._endpoint,
            operation_type=ErrorOperation.AGENT_STATE_RECONCILIATION.value,
            user_id=kwargs.get("user_id"),
            metadata={
                "session_id": kwargs.get("session_id"),
                "context_type": getattr(context_type, "value", context_type),
                "message_count": len(kwargs.get("messages") or ()),
                "tool_count": len(kwargs.get("tool_summaries") or ()),
            },
        )
