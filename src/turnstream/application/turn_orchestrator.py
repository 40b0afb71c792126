"""
Application Layer - Turn Orchestrator

Drives one chat turn from request to terminal ``done`` event:

1. Access check for entity-bound scopes (fail closed on denial, open on error)
2. Session resolution, then the ``session`` event
3. Context load in parallel with the history snapshot and the user-message persist
4. ``operation`` and ``context_usage`` events
5. LLM streaming with tool rounds: ``text_delta``, ``tool_call``,
   ``tool_result`` and ``context_shift`` events
6. Finalization: assistant persist, session stats, ``last_turn_context``,
   ``done``, then the detached agent-state reconciliation

Once the stream has opened, errors never escape it: any failure becomes an
``error`` event followed by ``done(finished_reason="error")``. Cancellation
persists the partial assistant text and propagates.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

import structlog

from turnstream.application.agent_state_reconciler import AGENT_STATE_KEY, AgentStateReconciler
from turnstream.application.context_loader import ContextLoader, ContextLoadResult
from turnstream.application.tool_converter import (
    assistant_tool_calls_to_message,
    tool_result_to_message,
    tools_to_openai_format,
)
from turnstream.application.tool_gateway import ToolGateway, inject_project_id
from turnstream.application.tool_selection import select_tools
from turnstream.core.domain.agent_state import sanitize_agent_state
from turnstream.core.domain.context_usage import (
    DEFAULT_TOKEN_BUDGET,
    build_context_usage_snapshot,
)
from turnstream.core.domain.enums import (
    ErrorOperation,
    FinishReason,
    LLMStreamEventType,
    MessageRole,
    StreamEventType,
)
from turnstream.core.domain.errors import LLMError
from turnstream.core.domain.history_composer import HistoryComposerSettings, compose_history
from turnstream.core.domain.last_turn_context import build_last_turn_context
from turnstream.core.domain.models import (
    ChatMessage,
    ChatSession,
    ContextScope,
    ContextShift,
    PromptContext,
    ServiceContext,
    StreamEvent,
    TokenUsage,
    ToolCall,
    ToolExecution,
    TurnRequest,
)
from turnstream.core.domain.prompt_builder import PromptBuilder
from turnstream.core.domain.tool_summaries import (
    build_context_operations,
    build_context_tool_summary,
    build_tool_result_summaries,
)
from turnstream.core.interfaces.domain_data import AccessCheckerProtocol
from turnstream.core.interfaces.llm import LLMProviderProtocol
from turnstream.core.interfaces.logging import ErrorLoggerProtocol
from turnstream.core.interfaces.sessions import SessionStoreProtocol
from turnstream.core.interfaces.tools import ToolProtocol

ACCESS_DENIED_MESSAGE = "Access denied for the selected project."
STREAM_ERROR_MESSAGE = "An error occurred while streaming."
REPETITION_NOTICE = (
    "\n\nI stopped calling tools because the same tool sequence kept repeating. "
    "Please rephrase or narrow the request."
)


@dataclass
class TurnSettings:
    """Tunables of a chat turn."""

    model: str | None = "main"
    history_limit: int = 10
    token_budget: int = DEFAULT_TOKEN_BUDGET
    max_tool_rounds: int = 8
    repetition_limit: int = 3
    max_tools_per_turn: int = 12
    reconciler_enabled: bool = True
    prefix_classification: bool = True
    history: HistoryComposerSettings = field(default_factory=HistoryComposerSettings)
    endpoint: str = "/api/v1/chat/stream"


@dataclass
class _TurnState:
    """Mutable bookkeeping of one turn."""

    user_id: str
    request: TurnRequest
    scope: ContextScope
    session: ChatSession | None = None
    text_parts: list[str] = field(default_factory=list)
    usage: TokenUsage = field(default_factory=TokenUsage)
    executions: list[ToolExecution] = field(default_factory=list)
    last_shift: ContextShift | None = None
    finish_reason: str = FinishReason.STOP.value
    user_persist: asyncio.Task[Any] | None = None
    done_emitted: bool = False

    @property
    def assistant_text(self) -> str:
        return "".join(self.text_parts).strip()

    @property
    def project_id(self) -> str | None:
        if self.scope.project_id:
            return self.scope.project_id
        focus = self.request.project_focus
        if focus and focus.project_id and self.scope.context_type.is_project_like:
            return focus.project_id
        return None

    def service_context(self) -> ServiceContext:
        return ServiceContext(
            user_id=self.user_id,
            session_id=self.session.id if self.session else None,
            context_type=self.scope.context_type,
            entity_id=self.scope.entity_id,
            project_id=self.project_id,
        )

    def log_metadata(self) -> dict[str, Any]:
        return {
            "session_id": self.session.id if self.session else None,
            "context_type": self.scope.context_type.value,
            "entity_id": self.scope.entity_id,
        }


@dataclass
class _RoundResult:
    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    finish_reason: str | None = None


def _event(event_type: StreamEventType, **data: Any) -> StreamEvent:
    return StreamEvent(event_type=event_type, data=data)


def _session_payload(session: ChatSession) -> dict[str, Any]:
    payload = session.to_dict()
    payload.pop("agent_metadata", None)
    return payload


def _canonical_arguments(arguments: str) -> str:
    try:
        return json.dumps(json.loads(arguments or "{}"), sort_keys=True)
    except json.JSONDecodeError:
        return arguments or ""


def _shifted_scope(current: ContextScope, shift: ContextShift) -> ContextScope:
    entity_id = shift.entity_id
    if entity_id is None and shift.new_context.is_project_like and current.context_type.is_project_like:
        entity_id = current.entity_id
    if not shift.new_context.requires_entity:
        entity_id = None
    return ContextScope(shift.new_context, entity_id)


class TurnOrchestrator:
    """
    Stream one chat turn as a sequence of ``StreamEvent`` objects.

    Collaborators are injected as protocols; see ``TurnFactory`` for the
    default wiring.
    """

    def __init__(
        self,
        *,
        llm_provider: LLMProviderProtocol,
        session_store: SessionStoreProtocol,
        context_loader: ContextLoader,
        tool_gateway: ToolGateway,
        access_checker: AccessCheckerProtocol,
        error_logger: ErrorLoggerProtocol,
        reconciler: AgentStateReconciler | None = None,
        prompt_builder: PromptBuilder | None = None,
        settings: TurnSettings | None = None,
    ) -> None:
        self._llm_provider = llm_provider
        self._session_store = session_store
        self._context_loader = context_loader
        self._tool_gateway = tool_gateway
        self._access_checker = access_checker
        self._error_logger = error_logger
        self._reconciler = reconciler
        self._prompt_builder = prompt_builder or PromptBuilder()
        self.settings = settings or TurnSettings()
        self.logger = structlog.get_logger(__name__)

    @property
    def reconciler(self) -> AgentStateReconciler | None:
        return self._reconciler

    async def stream_turn(self, request: TurnRequest, user_id: str) -> AsyncIterator[StreamEvent]:
        """
        Run one turn and yield its events in causal order.

        Args:
            request: Validated chat request.
            user_id: Authenticated caller.

        Yields:
            StreamEvent objects; the last one is always ``done`` unless the
            turn was cancelled.
        """
        turn = _TurnState(
            user_id=user_id,
            request=request,
            scope=ContextScope(request.context_type, request.resolved_entity_id),
        )
        self.logger.info(
            "turn_started",
            user_id=user_id,
            session_id=request.session_id,
            context_type=turn.scope.context_type.value,
            entity_id=turn.scope.entity_id,
        )

        try:
            if turn.scope.requires_access_check and not await self._check_access(turn):
                self.logger.warning(
                    "turn_access_denied",
                    user_id=user_id,
                    context_type=turn.scope.context_type.value,
                    entity_id=turn.scope.entity_id,
                )
                yield _event(StreamEventType.ERROR, error=ACCESS_DENIED_MESSAGE)
                turn.done_emitted = True
                yield _event(
                    StreamEventType.DONE,
                    usage=TokenUsage().to_dict(),
                    finished_reason=FinishReason.ERROR.value,
                )
                return

            async for event in self._run_turn(turn):
                yield event

        except (asyncio.CancelledError, GeneratorExit):
            self.logger.info(
                "turn_cancelled", **turn.log_metadata(), partial_chars=len(turn.assistant_text)
            )
            await asyncio.shield(self._persist_partial(turn))
            raise

        except Exception as e:
            self.logger.error("turn_failed", **turn.log_metadata(), error=str(e), error_type=type(e).__name__)
            await self._error_logger.log_error(
                e,
                endpoint=self.settings.endpoint,
                operation_type=ErrorOperation.STREAM.value,
                user_id=user_id,
                metadata=turn.log_metadata(),
            )
            if turn.user_persist is not None:
                await turn.user_persist
            if not turn.done_emitted:
                yield _event(StreamEventType.ERROR, error=STREAM_ERROR_MESSAGE)
                turn.done_emitted = True
                yield _event(
                    StreamEventType.DONE,
                    usage=turn.usage.to_dict(),
                    finished_reason=FinishReason.ERROR.value,
                )

        finally:
            self.logger.info(
                "turn_closed",
                **turn.log_metadata(),
                done_emitted=turn.done_emitted,
                tool_calls=len(turn.executions),
            )

    async def _run_turn(self, turn: _TurnState) -> AsyncIterator[StreamEvent]:
        request = turn.request
        session = await self._resolve_session(turn)
        turn.session = session
        yield _event(StreamEventType.SESSION, session=_session_payload(session))

        # History is snapshotted before the user message lands so the model
        # never sees the current message twice.
        context_task = asyncio.create_task(self._load_context(turn))
        try:
            history = await self._load_history(turn)
            turn.user_persist = asyncio.create_task(self._persist_user_message(turn))
            context_result = await context_task
        finally:
            if not context_task.done():
                context_task.cancel()
        context = context_result.context if context_result else None

        for operation in build_context_operations(context):
            yield _event(StreamEventType.OPERATION, operation=operation)

        system_prompt = await self._build_system_prompt(turn, context)
        composed = compose_history(
            history,
            continuity_hint=request.last_turn_context,
            session_summary=session.summary,
            settings=self.settings.history,
        )
        usage_snapshot = build_context_usage_snapshot(
            system_prompt=system_prompt,
            history=composed.history_for_model,
            user_message=request.message,
            token_budget=self.settings.token_budget,
        )
        yield _event(StreamEventType.CONTEXT_USAGE, usage=usage_snapshot.to_dict())

        messages: list[dict[str, Any]] = [
            {"role": MessageRole.SYSTEM.value, "content": system_prompt},
            *composed.history_for_model,
            {"role": MessageRole.USER.value, "content": request.message},
        ]

        async for event in self._run_tool_rounds(turn, messages):
            yield event

        async for event in self._finalize(turn, history, context):
            yield event

    async def _run_tool_rounds(
        self, turn: _TurnState, messages: list[dict[str, Any]]
    ) -> AsyncIterator[StreamEvent]:
        tools = select_tools(
            self._tool_gateway.registry,
            turn.scope.context_type,
            turn.request.message,
            self.settings.max_tools_per_turn,
        )
        previous_signature: list[tuple[str, str]] | None = None
        repeat_count = 0

        for round_index in range(self.settings.max_tool_rounds):
            round_result = _RoundResult()
            async for event in self._stream_round(turn, messages, tools, round_result):
                yield event

            if not round_result.tool_calls:
                turn.finish_reason = round_result.finish_reason or FinishReason.STOP.value
                return

            calls = round_result.tool_calls
            signature = [(call.name, _canonical_arguments(call.arguments)) for call in calls]
            repeat_count = repeat_count + 1 if signature == previous_signature else 1
            previous_signature = signature
            if repeat_count >= self.settings.repetition_limit:
                self.logger.warning(
                    "tool_repetition_limit",
                    **turn.log_metadata(),
                    round=round_index,
                    tools=[name for name, _ in signature],
                )
                turn.text_parts.append(REPETITION_NOTICE)
                yield _event(StreamEventType.TEXT_DELTA, content=REPETITION_NOTICE)
                turn.finish_reason = FinishReason.TOOL_REPETITION_LIMIT.value
                return

            self.logger.info(
                "tool_round",
                **turn.log_metadata(),
                round=round_index,
                tools=[call.name for call in calls],
            )
            assistant_message = assistant_tool_calls_to_message(calls)
            if round_result.text:
                assistant_message["content"] = round_result.text
            messages.append(assistant_message)

            allowed = {tool.name for tool in tools}
            for index, raw_call in enumerate(calls):
                # Injection uses the scope as of this call, so a shift earlier
                # in the round applies to the calls after it.
                call = inject_project_id(
                    raw_call, self._tool_gateway.registry.get(raw_call.name), turn.project_id
                )
                assistant_message["tool_calls"][index] = call.to_dict()
                yield _event(StreamEventType.TOOL_CALL, tool_call=call.to_dict())
                result = await self._tool_gateway.execute(call, turn.service_context(), allowed)
                turn.executions.append(ToolExecution(tool_call=call, result=result))
                yield _event(StreamEventType.TOOL_RESULT, result=result.to_event_payload())
                messages.append(tool_result_to_message(result))

                if not result.success:
                    await self._error_logger.log_error(
                        result.error or "Tool execution failed",
                        endpoint=self.settings.endpoint,
                        operation_type=ErrorOperation.TOOL_EXECUTION.value,
                        user_id=turn.user_id,
                        metadata={**turn.log_metadata(), "tool_name": call.name},
                    )

                shift = result.side_effects.context_shift
                if shift is not None:
                    yield _event(StreamEventType.CONTEXT_SHIFT, context_shift=shift.to_dict())
                    turn.scope = _shifted_scope(turn.scope, shift)
                    turn.last_shift = shift
                    tools = select_tools(
                        self._tool_gateway.registry,
                        turn.scope.context_type,
                        turn.request.message,
                        self.settings.max_tools_per_turn,
                    )
                    allowed = {tool.name for tool in tools}
                    self.logger.info(
                        "context_shifted",
                        **turn.log_metadata(),
                        tool=call.name,
                        project_id=turn.project_id,
                    )

        turn.finish_reason = FinishReason.MAX_TOOL_ROUNDS.value
        self.logger.warning("max_tool_rounds_reached", **turn.log_metadata())

    async def _stream_round(
        self,
        turn: _TurnState,
        messages: list[dict[str, Any]],
        tools: list[ToolProtocol],
        round_result: _RoundResult,
    ) -> AsyncIterator[StreamEvent]:
        openai_tools = tools_to_openai_format(tools) if tools else None
        accumulated: dict[int, dict[str, str]] = {}
        text_parts: list[str] = []

        async for chunk in self._llm_provider.complete_stream(
            messages=messages,
            model=self.settings.model,
            tools=openai_tools,
            tool_choice="auto" if openai_tools else None,
        ):
            chunk_type = chunk.get("type")

            if chunk_type == LLMStreamEventType.TOKEN.value:
                content = chunk.get("content") or ""
                if content:
                    text_parts.append(content)
                    turn.text_parts.append(content)
                    yield _event(StreamEventType.TEXT_DELTA, content=content)

            elif chunk_type == LLMStreamEventType.TOOL_CALL_START.value:
                index = chunk.get("index", 0)
                accumulated[index] = {
                    "id": chunk.get("id") or "",
                    "name": chunk.get("name") or "",
                    "arguments": "",
                }

            elif chunk_type == LLMStreamEventType.TOOL_CALL_DELTA.value:
                index = chunk.get("index", 0)
                if index in accumulated:
                    accumulated[index]["arguments"] += chunk.get("arguments_delta") or ""

            elif chunk_type == LLMStreamEventType.TOOL_CALL_END.value:
                index = chunk.get("index", 0)
                entry = accumulated.setdefault(
                    index, {"id": chunk.get("id") or "", "name": chunk.get("name") or "", "arguments": ""}
                )
                entry["arguments"] = chunk.get("arguments", entry["arguments"])

            elif chunk_type == LLMStreamEventType.DONE.value:
                turn.usage = turn.usage + TokenUsage.from_dict(chunk.get("usage"))
                round_result.finish_reason = chunk.get("finish_reason")

            elif chunk_type == LLMStreamEventType.ERROR.value:
                raise LLMError(chunk.get("message") or "LLM stream failed")

        round_result.text = "".join(text_parts)
        round_result.tool_calls = [
            ToolCall(
                id=entry["id"] or f"call_{uuid.uuid4().hex[:12]}",
                name=entry["name"],
                arguments=entry["arguments"] or "{}",
            )
            for _, entry in sorted(accumulated.items())
            if entry["name"]
        ]

    async def _finalize(
        self,
        turn: _TurnState,
        history: list[ChatMessage],
        context: PromptContext | None,
    ) -> AsyncIterator[StreamEvent]:
        session = turn.session
        assert session is not None
        if turn.user_persist is not None:
            await turn.user_persist

        assistant_text = turn.assistant_text
        await self._persist_message(
            turn,
            MessageRole.ASSISTANT,
            assistant_text,
            usage=turn.usage.to_dict(),
            metadata={"finished_reason": turn.finish_reason},
        )
        await self._update_session_stats(turn)

        last_turn = build_last_turn_context(
            assistant_text=assistant_text,
            user_message=turn.request.message,
            scope=turn.scope,
            context_shift=turn.last_shift,
            tool_executions=turn.executions,
            use_prefix_classification=self.settings.prefix_classification,
        )
        yield _event(StreamEventType.LAST_TURN_CONTEXT, context=last_turn.to_dict())
        turn.done_emitted = True
        yield _event(
            StreamEventType.DONE,
            usage=turn.usage.to_dict(),
            finished_reason=turn.finish_reason,
        )
        self.logger.info(
            "turn_completed",
            **turn.log_metadata(),
            finished_reason=turn.finish_reason,
            total_tokens=turn.usage.total_tokens,
            tool_calls=len(turn.executions),
        )

        if self._reconciler is not None and self.settings.reconciler_enabled:
            recent = [message.to_llm_message() for message in history]
            recent.append({"role": MessageRole.USER.value, "content": turn.request.message})
            recent.append({"role": MessageRole.ASSISTANT.value, "content": assistant_text})
            self._reconciler.schedule(
                session_id=session.id,
                user_id=turn.user_id,
                context_type=turn.scope.context_type,
                prior_state=session.agent_metadata.get(AGENT_STATE_KEY),
                messages=recent,
                tool_summaries=[
                    *build_context_tool_summary(context),
                    *build_tool_result_summaries(turn.executions),
                ],
            )

    async def _check_access(self, turn: _TurnState) -> bool:
        try:
            return bool(
                await self._access_checker.has_access(turn.user_id, turn.scope.entity_id, "read")
            )
        except Exception as e:
            self.logger.warning(
                "access_check_failed_open",
                user_id=turn.user_id,
                entity_id=turn.scope.entity_id,
                error=str(e),
            )
            await self._error_logger.log_error(
                e,
                endpoint=self.settings.endpoint,
                operation_type=ErrorOperation.ACCESS_CHECK.value,
                user_id=turn.user_id,
                metadata=turn.log_metadata(),
            )
            return True

    async def _resolve_session(self, turn: _TurnState) -> ChatSession:
        session_id = turn.request.session_id
        if session_id:
            session = await self._session_store.get_session(session_id)
            if session is not None and session.user_id == turn.user_id:
                return session
            self.logger.info("session_not_resolved", session_id=session_id, user_id=turn.user_id)
        session = await self._session_store.create_session(
            turn.user_id, turn.scope.context_type, turn.scope.entity_id
        )
        self.logger.info("session_created", session_id=session.id, user_id=turn.user_id)
        return session

    async def _load_context(self, turn: _TurnState) -> ContextLoadResult | None:
        assert turn.session is not None
        try:
            return await self._context_loader.load(
                turn.session, turn.scope, turn.request.project_focus
            )
        except Exception as e:
            self.logger.warning("context_load_failed", **turn.log_metadata(), error=str(e))
            await self._error_logger.log_error(
                e,
                endpoint=self.settings.endpoint,
                operation_type=ErrorOperation.CONTEXT_LOAD.value,
                user_id=turn.user_id,
                metadata=turn.log_metadata(),
            )
            return None

    async def _load_history(self, turn: _TurnState) -> list[ChatMessage]:
        assert turn.session is not None
        try:
            return await self._session_store.load_recent_messages(
                turn.session.id, self.settings.history_limit
            )
        except Exception as e:
            self.logger.warning("history_load_failed", **turn.log_metadata(), error=str(e))
            await self._error_logger.log_error(
                e,
                endpoint=self.settings.endpoint,
                operation_type=ErrorOperation.CONTEXT_LOAD.value,
                user_id=turn.user_id,
                metadata=turn.log_metadata(),
            )
            return []

    async def _build_system_prompt(self, turn: _TurnState, context: PromptContext | None) -> str:
        assert turn.session is not None
        try:
            if context is None:
                context = PromptContext(
                    context_type=turn.scope.context_type, entity_id=turn.scope.entity_id
                )
            stored_state = turn.session.agent_metadata.get(AGENT_STATE_KEY)
            if stored_state:
                context.agent_state = sanitize_agent_state(stored_state, turn.session.id)
            context.conversation_summary = turn.session.summary
            return self._prompt_builder.build_system_prompt(context)
        except Exception as e:
            self.logger.warning("context_build_failed", **turn.log_metadata(), error=str(e))
            await self._error_logger.log_error(
                e,
                endpoint=self.settings.endpoint,
                operation_type=ErrorOperation.CONTEXT_BUILD.value,
                user_id=turn.user_id,
                metadata=turn.log_metadata(),
            )
            return self._prompt_builder.base_system_prompt

    async def _persist_user_message(self, turn: _TurnState) -> ChatMessage | None:
        metadata = None
        if turn.request.voice_note_group_id:
            metadata = {"voice_note_group_id": turn.request.voice_note_group_id}
        return await self._persist_message(
            turn, MessageRole.USER, turn.request.message, metadata=metadata
        )

    async def _persist_message(
        self,
        turn: _TurnState,
        role: MessageRole,
        content: str,
        *,
        usage: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ChatMessage | None:
        assert turn.session is not None
        try:
            return await self._session_store.persist_message(
                turn.session.id, role.value, content, usage=usage, metadata=metadata
            )
        except Exception as e:
            self.logger.warning(
                "message_persist_failed", **turn.log_metadata(), role=role.value, error=str(e)
            )
            await self._error_logger.log_error(
                e,
                endpoint=self.settings.endpoint,
                operation_type=ErrorOperation.PERSIST_MESSAGE.value,
                user_id=turn.user_id,
                metadata={**turn.log_metadata(), "role": role.value},
            )
            return None

    async def _update_session_stats(self, turn: _TurnState) -> None:
        assert turn.session is not None
        try:
            await self._session_store.update_session_stats(
                turn.session.id,
                message_delta=2,
                usage=turn.usage,
                context_type=turn.scope.context_type,
                entity_id=turn.scope.entity_id,
            )
        except Exception as e:
            self.logger.warning("session_stats_update_failed", **turn.log_metadata(), error=str(e))
            await self._error_logger.log_error(
                e,
                endpoint=self.settings.endpoint,
                operation_type=ErrorOperation.UPDATE_SESSION.value,
                user_id=turn.user_id,
                metadata=turn.log_metadata(),
            )

    async def _persist_partial(self, turn: _TurnState) -> None:
        """Save whatever the user and the model said before cancellation."""
        if turn.session is None:
            return
        if turn.user_persist is not None and not turn.user_persist.done():
            await turn.user_persist
        text = turn.assistant_text
        if text:
            await self._persist_message(
                turn,
                MessageRole.ASSISTANT,
                text,
                usage=turn.usage.to_dict(),
                metadata={"cancelled": True},
            )
