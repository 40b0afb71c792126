"""
Domain Models and Business Logic

This package contains the core domain of turnstream:
- Sessions, messages, scopes and stream events
- History composition and last-turn context building
- Agent-state merging and entity id validation
- Configuration schemas
"""

from turnstream.core.domain.enums import ContextType, FinishReason, StreamEventType
from turnstream.core.domain.errors import TurnstreamError
from turnstream.core.domain.models import (
    ChatMessage,
    ChatSession,
    ContextScope,
    StreamEvent,
    ToolCall,
    ToolResult,
    TurnRequest,
)

__all__ = [
    "ChatMessage",
    "ChatSession",
    "ContextScope",
    "ContextType",
    "FinishReason",
    "StreamEvent",
    "StreamEventType",
    "ToolCall",
    "ToolResult",
    "TurnRequest",
    "TurnstreamError",
]
