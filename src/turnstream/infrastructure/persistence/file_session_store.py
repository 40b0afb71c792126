"""
File-Based Session Store

This module provides a file-based implementation of the SessionStoreProtocol,
using JSON files for sessions and JSONL files for messages. It's designed for
development and single-node deployments where database setup is not required.

The implementation provides:
- Async file I/O using aiofiles
- Session versioning (``_version``) bumped on every write
- Atomic writes (write to temp file, then rename)
- Concurrent access safety via per-session asyncio locks

Layout::

    {work_dir}/sessions/{session_id}.json
    {work_dir}/messages/{session_id}.jsonl
"""

import asyncio
import json
import uuid
from pathlib import Path
from typing import Any

import aiofiles
import structlog

from turnstream.core.domain.enums import ContextType, MessageRole
from turnstream.core.domain.errors import SessionStoreError
from turnstream.core.domain.models import ChatMessage, ChatSession, TokenUsage
from turnstream.core.interfaces.sessions import SessionStoreProtocol
from turnstream.core.utils.time import utc_now_iso


class FileSessionStore(SessionStoreProtocol):
    """
    File-based session and message persistence.

    Thread Safety:
        Uses asyncio locks per session_id so read-merge-write cycles on the
        same session never interleave within one process.

    Example:
        >>> store = FileSessionStore(work_dir=".turnstream")
        >>> session = await store.create_session("user-1")
        >>> await store.persist_message(session.id, "user", "Hello")
        >>> [m.content for m in await store.load_recent_messages(session.id)]
        ['Hello']
    """

    def __init__(self, work_dir: str | Path = ".turnstream"):
        self.work_dir = Path(work_dir)
        self.sessions_dir = self.work_dir / "sessions"
        self.messages_dir = self.work_dir / "messages"
        self.sessions_dir.mkdir(parents=True, exist_ok=True)
        self.messages_dir.mkdir(parents=True, exist_ok=True)
        self.locks: dict[str, asyncio.Lock] = {}
        self.logger = structlog.get_logger(__name__)

    def _get_lock(self, session_id: str) -> asyncio.Lock:
        if session_id not in self.locks:
            self.locks[session_id] = asyncio.Lock()
        return self.locks[session_id]

    def _session_file(self, session_id: str) -> Path:
        return self.sessions_dir / f"{session_id}.json"

    def _messages_file(self, session_id: str) -> Path:
        return self.messages_dir / f"{session_id}.jsonl"

    # ------------------------------------------------------------------
    # Raw file access
    # ------------------------------------------------------------------

    async def _read_session(self, session_id: str) -> dict[str, Any] | None:
        session_file = self._session_file(session_id)
        if not session_file.exists():
            return None
        try:
            async with aiofiles.open(session_file, encoding="utf-8") as f:
                return json.loads(await f.read())
        except (OSError, json.JSONDecodeError) as e:
            self.logger.error("session_load_failed", session_id=session_id, error=str(e))
            raise SessionStoreError(
                f"Failed to read session {session_id}: {e}",
                details={"session_id": session_id},
            ) from e

    async def _write_session(self, data: dict[str, Any]) -> None:
        """Atomic write: temp file, then rename."""
        session_id = data["id"]
        session_file = self._session_file(session_id)
        temp_file = self.sessions_dir / f"{session_id}.json.tmp"

        data["_version"] = int(data.get("_version", 0)) + 1
        try:
            async with aiofiles.open(temp_file, "w", encoding="utf-8") as f:
                await f.write(json.dumps(data, indent=2, ensure_ascii=False, default=str))
            temp_file.replace(session_file)
        except OSError as e:
            self.logger.error("session_save_failed", session_id=session_id, error=str(e))
            raise SessionStoreError(
                f"Failed to write session {session_id}: {e}",
                details={"session_id": session_id},
            ) from e

        self.logger.debug("session_saved", session_id=session_id, version=data["_version"])

    # ------------------------------------------------------------------
    # SessionStoreProtocol
    # ------------------------------------------------------------------

    async def get_session(self, session_id: str) -> ChatSession | None:
        data = await self._read_session(session_id)
        return ChatSession.from_dict(data) if data else None

    async def create_session(
        self,
        user_id: str,
        context_type: ContextType = ContextType.GLOBAL,
        entity_id: str | None = None,
    ) -> ChatSession:
        session = ChatSession(
            id=str(uuid.uuid4()),
            user_id=user_id,
            context_type=context_type,
            entity_id=entity_id,
        )
        async with self._get_lock(session.id):
            await self._write_session(session.to_dict())
        self.logger.info(
            "session_created",
            session_id=session.id,
            user_id=user_id,
            context_type=context_type.value,
        )
        return session

    async def load_recent_messages(self, session_id: str, limit: int = 10) -> list[ChatMessage]:
        """Return the newest ``limit`` messages, oldest first."""
        messages_file = self._messages_file(session_id)
        if limit <= 0 or not messages_file.exists():
            return []
        try:
            async with aiofiles.open(messages_file, encoding="utf-8") as f:
                content = await f.read()
        except OSError as e:
            raise SessionStoreError(
                f"Failed to read messages for {session_id}: {e}",
                details={"session_id": session_id},
            ) from e

        messages: list[ChatMessage] = []
        for line in content.splitlines():
            if not line.strip():
                continue
            try:
                messages.append(ChatMessage.from_dict(json.loads(line)))
            except (json.JSONDecodeError, KeyError, ValueError):
                self.logger.warning("message_line_skipped", session_id=session_id)
        return messages[-limit:]

    async def persist_message(
        self,
        session_id: str,
        role: str,
        content: str,
        *,
        usage: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ChatMessage:
        message = ChatMessage(
            id=str(uuid.uuid4()),
            session_id=session_id,
            role=MessageRole(role),
            content=content,
            usage=usage,
            metadata=metadata,
        )
        async with self._get_lock(session_id):
            try:
                async with aiofiles.open(
                    self._messages_file(session_id), "a", encoding="utf-8"
                ) as f:
                    await f.write(json.dumps(message.to_dict(), ensure_ascii=False) + "\n")
            except OSError as e:
                self.logger.error("message_persist_failed", session_id=session_id, error=str(e))
                raise SessionStoreError(
                    f"Failed to persist message for {session_id}: {e}",
                    details={"session_id": session_id, "role": role},
                ) from e

        self.logger.debug("message_persisted", session_id=session_id, role=role)
        return message

    async def update_session_stats(
        self,
        session_id: str,
        *,
        message_delta: int,
        usage: TokenUsage,
        context_type: ContextType | None = None,
        entity_id: str | None = None,
    ) -> ChatSession | None:
        async with self._get_lock(session_id):
            data = await self._read_session(session_id)
            if data is None:
                return None
            now = utc_now_iso()
            data["message_count"] = int(data.get("message_count") or 0) + message_delta
            data["total_tokens"] = int(data.get("total_tokens") or 0) + usage.total_tokens
            if context_type is not None:
                data["context_type"] = context_type.value
                data["entity_id"] = entity_id
            data["updated_at"] = now
            data["last_message_at"] = now
            await self._write_session(data)
        return ChatSession.from_dict(data)

    async def update_agent_metadata(
        self, session_id: str, updates: dict[str, Any]
    ) -> ChatSession | None:
        async with self._get_lock(session_id):
            data = await self._read_session(session_id)
            if data is None:
                return None
            metadata = dict(data.get("agent_metadata") or {})
            metadata.update(updates)
            data["agent_metadata"] = metadata
            data["updated_at"] = utc_now_iso()
            await self._write_session(data)
        self.logger.debug(
            "agent_metadata_updated", session_id=session_id, keys=sorted(updates.keys())
        )
        return ChatSession.from_dict(data)

    async def list_sessions(self, user_id: str | None = None) -> list[ChatSession]:
        sessions: list[ChatSession] = []
        for session_file in self.sessions_dir.glob("*.json"):
            try:
                async with aiofiles.open(session_file, encoding="utf-8") as f:
                    data = json.loads(await f.read())
            except (OSError, json.JSONDecodeError) as e:
                self.logger.warning("session_list_skip", file=session_file.name, error=str(e))
                continue
            if user_id is not None and data.get("user_id") != user_id:
                continue
            sessions.append(ChatSession.from_dict(data))
        sessions.sort(key=lambda s: s.updated_at, reverse=True)
        return sessions
