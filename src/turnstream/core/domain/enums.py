"""
Core Domain Enums

Defines context types, stream event types, finish reasons and agent-state
vocabularies to eliminate magic strings throughout the codebase.
"""

from enum import Enum


class ContextType(str, Enum):
    """Declared subject of a conversation."""

    GLOBAL = "global"
    PROJECT = "project"
    PROJECT_AUDIT = "project_audit"
    PROJECT_FORECAST = "project_forecast"
    DAILY_BRIEF = "daily_brief"

    @classmethod
    def normalize(cls, value: "str | ContextType | None") -> "ContextType":
        """Map an incoming context type string to a known value (default: global)."""
        if isinstance(value, ContextType):
            return value
        try:
            return cls(value) if value else cls.GLOBAL
        except ValueError:
            return cls.GLOBAL

    @property
    def is_project_like(self) -> bool:
        """True for scopes anchored on a single project."""
        return self in PROJECT_CONTEXTS

    @property
    def requires_entity(self) -> bool:
        """True for scopes that need an access-checked entity id."""
        return self in PROJECT_CONTEXTS or self is ContextType.DAILY_BRIEF


PROJECT_CONTEXTS = frozenset(
    {ContextType.PROJECT, ContextType.PROJECT_AUDIT, ContextType.PROJECT_FORECAST}
)


class StreamEventType(str, Enum):
    """Types of events emitted to the client during a chat turn."""

    SESSION = "session"
    TEXT_DELTA = "text_delta"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    CONTEXT_SHIFT = "context_shift"
    CONTEXT_USAGE = "context_usage"
    LAST_TURN_CONTEXT = "last_turn_context"
    OPERATION = "operation"
    ERROR = "error"
    DONE = "done"


class LLMStreamEventType(str, Enum):
    """Types of events from LLM streaming responses."""

    TOKEN = "token"
    TOOL_CALL_START = "tool_call_start"
    TOOL_CALL_DELTA = "tool_call_delta"
    TOOL_CALL_END = "tool_call_end"
    DONE = "done"
    ERROR = "error"


class FinishReason(str, Enum):
    """Terminal reasons reported in the ``done`` event."""

    STOP = "stop"
    ERROR = "error"
    MAX_TOOL_ROUNDS = "max_tool_rounds"
    TOOL_REPETITION_LIMIT = "tool_repetition_limit"


class MessageRole(str, Enum):
    """Roles for messages in conversation history."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


class HistoryStrategy(str, Enum):
    """How stored history was handed to the model."""

    RAW = "raw"
    COMPRESSED = "compressed"


class UsageStatus(str, Enum):
    """Prompt budget status reported in ``context_usage``."""

    OK = "ok"
    NEAR_LIMIT = "near_limit"
    OVER_BUDGET = "over_budget"


class OperationAction(str, Enum):
    """Actions reported in read-only ``operation`` events."""

    LIST = "list"
    READ = "read"


class AgentStateItemKind(str, Enum):
    """Kinds of tracked work items in the agent state."""

    TASK = "task"
    DOC = "doc"
    NOTE = "note"
    IDEA = "idea"
    QUESTION = "question"


class AgentStateItemStatus(str, Enum):
    """Lifecycle status of tracked work items."""

    ACTIVE = "active"
    RESOLVED = "resolved"
    DISCARDED = "discarded"


class ErrorOperation(str, Enum):
    """Operation types reported to the error-logging sink."""

    STREAM = "stream"
    ACCESS_CHECK = "access_check"
    CONTEXT_LOAD = "context_load"
    CONTEXT_BUILD = "context_build"
    PERSIST_MESSAGE = "persist_message"
    UPDATE_SESSION = "update_session"
    UPDATE_METADATA = "update_metadata"
    TOOL_EXECUTION = "tool_execution"
    AGENT_STATE_RECONCILIATION = "agent_state_reconciliation"
