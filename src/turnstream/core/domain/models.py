"""
Core Domain Models

This module defines the data models that flow through a chat turn: sessions
and messages, context scopes and focus, tool calls and results (with their
typed side effects), prompt context and its cache entry, the last-turn
context handed back to the client, and the stream events emitted on the wire.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from turnstream.core.domain.entity_ids import is_valid_entity_id
from turnstream.core.domain.enums import ContextType, MessageRole, StreamEventType
from turnstream.core.utils.time import parse_iso, utc_now, utc_now_iso


@dataclass(frozen=True)
class ContextScope:
    """Declared subject of a conversation.

    Attributes:
        context_type: The scope variant (global, project, daily_brief, ...).
        entity_id: Identifier needed to re-fetch the scope's data, if any.
    """

    context_type: ContextType = ContextType.GLOBAL
    entity_id: str | None = None

    @property
    def project_id(self) -> str | None:
        """Project id for project-like scopes, otherwise None."""
        if self.context_type.is_project_like and self.entity_id:
            return self.entity_id
        return None

    @property
    def requires_access_check(self) -> bool:
        """True when the scope is entity-bound and an entity id is present."""
        return self.context_type.requires_entity and bool(self.entity_id)

    def to_dict(self) -> dict[str, Any]:
        return {"context_type": self.context_type.value, "entity_id": self.entity_id}


@dataclass(frozen=True)
class ProjectFocus:
    """Optional sub-focus inside a project scope."""

    project_id: str | None = None
    project_name: str | None = None
    focus_type: str | None = None
    focus_entity_id: str | None = None
    focus_entity_name: str | None = None

    @property
    def effective_focus_type(self) -> str | None:
        """Focus type, treating ``project-wide`` as no focus."""
        if self.focus_type and self.focus_type != "project-wide":
            return self.focus_type
        return None

    @property
    def effective_focus_entity_id(self) -> str | None:
        return self.focus_entity_id if self.effective_focus_type else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "project_id": self.project_id,
            "project_name": self.project_name,
            "focus_type": self.focus_type,
            "focus_entity_id": self.focus_entity_id,
            "focus_entity_name": self.focus_entity_name,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ProjectFocus | None:
        """Create from a snake_case or camelCase dictionary."""
        if not data:
            return None

        def pick(snake: str, camel: str) -> Any:
            return data.get(snake, data.get(camel))

        return cls(
            project_id=pick("project_id", "projectId"),
            project_name=pick("project_name", "projectName"),
            focus_type=pick("focus_type", "focusType"),
            focus_entity_id=pick("focus_entity_id", "focusEntityId"),
            focus_entity_name=pick("focus_entity_name", "focusEntityName"),
        )


@dataclass
class TokenUsage:
    """Token usage statistics for LLM calls."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: TokenUsage) -> TokenUsage:
        """Combine two TokenUsage instances (e.g. across tool rounds)."""
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )

    def to_dict(self) -> dict[str, int]:
        """Convert to dictionary."""
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> TokenUsage:
        """Create from dictionary, deriving total_tokens when missing."""
        data = data or {}
        prompt = int(data.get("prompt_tokens") or 0)
        completion = int(data.get("completion_tokens") or 0)
        total = int(data.get("total_tokens") or (prompt + completion))
        return cls(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)


@dataclass
class ChatSession:
    """
    A durable conversation.

    ``agent_metadata`` carries the agent state (``agent_state``) and the
    context cache entry (``context_cache``). Sessions are never hard-deleted
    by the turn orchestrator.
    """

    id: str
    user_id: str
    context_type: ContextType = ContextType.GLOBAL
    entity_id: str | None = None
    message_count: int = 0
    total_tokens: int = 0
    agent_metadata: dict[str, Any] = field(default_factory=dict)
    summary: str | None = None
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: str = field(default_factory=utc_now_iso)
    last_message_at: str | None = None

    @property
    def scope(self) -> ContextScope:
        return ContextScope(self.context_type, self.entity_id)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "context_type": self.context_type.value,
            "entity_id": self.entity_id,
            "message_count": self.message_count,
            "total_tokens": self.total_tokens,
            "agent_metadata": self.agent_metadata,
            "summary": self.summary,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "last_message_at": self.last_message_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatSession:
        """Create from a persisted dictionary."""
        return cls(
            id=data["id"],
            user_id=data.get("user_id", ""),
            context_type=ContextType.normalize(data.get("context_type")),
            entity_id=data.get("entity_id"),
            message_count=int(data.get("message_count") or 0),
            total_tokens=int(data.get("total_tokens") or 0),
            agent_metadata=dict(data.get("agent_metadata") or {}),
            summary=data.get("summary"),
            created_at=data.get("created_at") or utc_now_iso(),
            updated_at=data.get("updated_at") or utc_now_iso(),
            last_message_at=data.get("last_message_at"),
        )


@dataclass
class ChatMessage:
    """One turn-half. Immutable once persisted."""

    id: str
    session_id: str
    role: MessageRole
    content: str
    usage: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None
    created_at: str = field(default_factory=utc_now_iso)

    def to_llm_message(self) -> dict[str, str]:
        """Render as an OpenAI-style chat message."""
        return {"role": self.role.value, "content": self.content}

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "role": self.role.value,
            "content": self.content,
            "usage": self.usage,
            "metadata": self.metadata,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatMessage:
        return cls(
            id=data["id"],
            session_id=data.get("session_id", ""),
            role=MessageRole(data.get("role", MessageRole.USER.value)),
            content=data.get("content") or "",
            usage=data.get("usage"),
            metadata=data.get("metadata"),
            created_at=data.get("created_at") or utc_now_iso(),
        )


@dataclass
class ToolCall:
    """A tool invocation requested by the LLM.

    ``arguments`` is the raw JSON string exactly as streamed by the model.
    """

    id: str
    name: str
    arguments: str = "{}"

    def to_dict(self) -> dict[str, Any]:
        """Render in OpenAI function-calling shape."""
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


@dataclass
class ContextShift:
    """Tool-triggered change of the conversation's effective scope."""

    new_context: ContextType
    entity_id: str | None = None
    entity_name: str | None = None
    entity_type: str | None = None
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "new_context": self.new_context.value,
            "entity_id": self.entity_id,
            "entity_name": self.entity_name,
            "entity_type": self.entity_type,
            "message": self.message,
        }

    @classmethod
    def from_payload(cls, payload: Any) -> ContextShift | None:
        """Build from a tool payload fragment, or None if it is not a shift."""
        if not isinstance(payload, dict):
            return None
        raw_context = payload.get("new_context")
        if not isinstance(raw_context, str) or not raw_context:
            return None

        def text(key: str) -> str | None:
            value = payload.get(key)
            return value if isinstance(value, str) and value else None

        return cls(
            new_context=ContextType.normalize(raw_context),
            entity_id=text("entity_id"),
            entity_name=text("entity_name"),
            entity_type=text("entity_type"),
            message=text("message"),
        )


@dataclass
class EntityUpdate:
    """A ``{id, kind, name}`` record extracted from a tool payload."""

    id: str
    kind: str
    name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "kind": self.kind, "name": self.name}


@dataclass
class ToolSideEffects:
    """Side-channel metadata lifted out of a tool's raw payload."""

    context_shift: ContextShift | None = None
    entity_counts: dict[str, int] = field(default_factory=dict)
    entity_updates: list[EntityUpdate] = field(default_factory=list)
    entities_accessed: list[str] = field(default_factory=list)


@dataclass
class ToolResult:
    """Normalized outcome of one tool call."""

    tool_call_id: str
    tool_name: str
    success: bool
    result: Any = None
    error: str | None = None
    duration_ms: int = 0
    side_effects: ToolSideEffects = field(default_factory=ToolSideEffects)

    def to_event_payload(self) -> dict[str, Any]:
        """Payload of the ``tool_result`` wire event."""
        payload: dict[str, Any] = {
            "tool_call_id": self.tool_call_id,
            "tool_name": self.tool_name,
            "success": self.success,
            "data": self.result,
            "duration_ms": self.duration_ms,
        }
        if self.error:
            payload["error"] = self.error
        return payload

    def to_llm_content(self) -> dict[str, Any]:
        """Content handed back to the model as the ``tool`` message."""
        if self.success:
            return {"success": True, "result": self.result}
        return {"success": False, "error": self.error or "Tool execution failed"}


@dataclass
class ToolExecution:
    """A tool call paired with its result."""

    tool_call: ToolCall
    result: ToolResult


@dataclass
class PromptContext:
    """Scope, resolved names and the data snapshot used to build the prompt."""

    context_type: ContextType
    entity_id: str | None = None
    project_id: str | None = None
    project_name: str | None = None
    focus_entity_type: str | None = None
    focus_entity_id: str | None = None
    focus_entity_name: str | None = None
    data: dict[str, Any] | None = None
    agent_state: dict[str, Any] | None = None
    conversation_summary: str | None = None

    def to_cache_dict(self) -> dict[str, Any]:
        """Serializable snapshot stored in the context cache.

        Agent state and conversation summary are per-turn inputs and are not
        cached.
        """
        return {
            "context_type": self.context_type.value,
            "entity_id": self.entity_id,
            "project_id": self.project_id,
            "project_name": self.project_name,
            "focus_entity_type": self.focus_entity_type,
            "focus_entity_id": self.focus_entity_id,
            "focus_entity_name": self.focus_entity_name,
            "data": self.data,
        }

    @classmethod
    def from_cache_dict(cls, data: dict[str, Any]) -> PromptContext:
        return cls(
            context_type=ContextType.normalize(data.get("context_type")),
            entity_id=data.get("entity_id"),
            project_id=data.get("project_id"),
            project_name=data.get("project_name"),
            focus_entity_type=data.get("focus_entity_type"),
            focus_entity_id=data.get("focus_entity_id"),
            focus_entity_name=data.get("focus_entity_name"),
            data=data.get("data"),
        )


@dataclass
class ContextCacheEntry:
    """Cached prompt context attached to a session's metadata."""

    version: int
    key: str
    created_at: str
    context: dict[str, Any]

    def is_fresh(self, ttl_seconds: float, now: datetime | None = None) -> bool:
        """True when ``created_at`` lies within the TTL window."""
        created = parse_iso(self.created_at)
        if created is None:
            return False
        now = now or utc_now()
        age = now - created
        return timedelta(0) <= age <= timedelta(seconds=ttl_seconds)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "key": self.key,
            "created_at": self.created_at,
            "context": self.context,
        }

    @classmethod
    def from_dict(cls, data: Any) -> ContextCacheEntry | None:
        """Parse a stored entry; malformed entries yield None."""
        if not isinstance(data, dict):
            return None
        context = data.get("context")
        if not isinstance(context, dict):
            return None
        try:
            version = int(data.get("version"))
        except (TypeError, ValueError):
            return None
        return cls(
            version=version,
            key=str(data.get("key") or ""),
            created_at=str(data.get("created_at") or ""),
            context=context,
        )


@dataclass
class LastTurnEntities:
    """Fixed entity-reference slots of a last-turn context."""

    project_id: str | None = None
    task_ids: list[str] = field(default_factory=list)
    goal_ids: list[str] = field(default_factory=list)
    plan_id: str | None = None
    document_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Only populated slots are serialized."""
        result: dict[str, Any] = {}
        if self.project_id:
            result["project_id"] = self.project_id
        if self.task_ids:
            result["task_ids"] = list(self.task_ids)
        if self.goal_ids:
            result["goal_ids"] = list(self.goal_ids)
        if self.plan_id:
            result["plan_id"] = self.plan_id
        if self.document_id:
            result["document_id"] = self.document_id
        return result


@dataclass
class LastTurnContext:
    """Compact carry-forward of a completed turn."""

    summary: str
    entities: LastTurnEntities
    context_type: ContextType
    data_accessed: list[str] = field(default_factory=list)
    timestamp: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": self.summary,
            "entities": self.entities.to_dict(),
            "context_type": self.context_type.value,
            "data_accessed": list(self.data_accessed),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> LastTurnContext | None:
        """Parse a client-echoed hint (snake_case or camelCase)."""
        if not isinstance(data, dict):
            return None
        raw_entities = data.get("entities") or {}
        if not isinstance(raw_entities, dict):
            raw_entities = {}

        def str_list(value: Any) -> list[str]:
            if not isinstance(value, list):
                return []
            return [v for v in value if isinstance(v, str) and v]

        # Echoed ids reach the prompt; malformed ones are dropped.
        def entity_id(value: Any) -> str | None:
            return value.strip() if is_valid_entity_id(value) else None

        def entity_ids(value: Any) -> list[str]:
            return [v.strip() for v in str_list(value) if is_valid_entity_id(v)]

        entities = LastTurnEntities(
            project_id=entity_id(raw_entities.get("project_id")),
            task_ids=entity_ids(raw_entities.get("task_ids")),
            goal_ids=entity_ids(raw_entities.get("goal_ids")),
            plan_id=entity_id(raw_entities.get("plan_id")),
            document_id=entity_id(raw_entities.get("document_id")),
        )
        return cls(
            summary=str(data.get("summary") or ""),
            entities=entities,
            context_type=ContextType.normalize(
                data.get("context_type", data.get("contextType"))
            ),
            data_accessed=str_list(data.get("data_accessed", data.get("dataAccessed"))),
            timestamp=str(data.get("timestamp") or utc_now_iso()),
        )


@dataclass
class TurnRequest:
    """One inbound chat request, already validated at the API boundary."""

    message: str
    context_type: ContextType = ContextType.GLOBAL
    entity_id: str | None = None
    session_id: str | None = None
    project_focus: ProjectFocus | None = None
    last_turn_context: LastTurnContext | None = None
    voice_note_group_id: str | None = None

    @property
    def resolved_entity_id(self) -> str | None:
        """Entity id from the request, else the focused project."""
        if self.entity_id:
            return self.entity_id
        if self.project_focus and self.project_focus.project_id:
            return self.project_focus.project_id
        return None


@dataclass
class StreamEvent:
    """
    Event emitted during a streaming chat turn.

    Serialized on the wire as ``{"type": <event_type>, **data}``.

    Attributes:
        event_type: The type of event (see StreamEventType enum)
        data: Event-specific payload
    """

    event_type: StreamEventType
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire dictionary."""
        return {"type": self.event_type.value, **self.data}


@dataclass(frozen=True)
class ServiceContext:
    """Caller identity and effective scope handed to every tool call."""

    user_id: str
    session_id: str | None = None
    context_type: ContextType = ContextType.GLOBAL
    entity_id: str | None = None
    project_id: str | None = None
