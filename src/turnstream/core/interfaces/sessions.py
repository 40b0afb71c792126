"""
Session Store Protocol

Persistence of chat sessions and their messages.

Thread Safety:
    Implementations must handle concurrent writes to the same session
    safely (locks or transactions). Metadata updates are read-merge-write
    of top-level keys; the last write wins.
"""

from typing import Any, Protocol

from turnstream.core.domain.enums import ContextType
from turnstream.core.domain.models import ChatMessage, ChatSession, TokenUsage


class SessionStoreProtocol(Protocol):
    """Contract for session and message persistence."""

    async def get_session(self, session_id: str) -> ChatSession | None:
        """Return the session or None if it does not exist."""
        ...

    async def create_session(
        self,
        user_id: str,
        context_type: ContextType = ContextType.GLOBAL,
        entity_id: str | None = None,
    ) -> ChatSession:
        """Create and persist a new session."""
        ...

    async def load_recent_messages(
        self, session_id: str, limit: int = 10
    ) -> list[ChatMessage]:
        """Return the newest ``limit`` messages in chronological order."""
        ...

    async def persist_message(
        self,
        session_id: str,
        role: str,
        content: str,
        *,
        usage: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ChatMessage:
        """Append a message to the session."""
        ...

    async def update_session_stats(
        self,
        session_id: str,
        *,
        message_delta: int,
        usage: TokenUsage,
        context_type: ContextType | None = None,
        entity_id: str | None = None,
    ) -> ChatSession | None:
        """Bump counters and record the resulting scope after a turn."""
        ...

    async def update_agent_metadata(
        self, session_id: str, updates: dict[str, Any]
    ) -> ChatSession | None:
        """Merge ``updates`` into ``agent_metadata`` (top-level keys)."""
        ...

    async def list_sessions(self, user_id: str | None = None) -> list[ChatSession]:
        """List sessions, newest first, optionally for one user."""
        ...
