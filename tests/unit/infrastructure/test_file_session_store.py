"""
Unit tests for FileSessionStore.

Tests verify:
- Session create/get round trip and ownership fields
- Message append and recent-window loading
- Stats and metadata updates (last write wins per key)
- Listing and error handling for corrupt files
"""

import json

import pytest

from turnstream.core.domain.enums import ContextType, MessageRole
from turnstream.core.domain.errors import SessionStoreError
from turnstream.core.domain.models import TokenUsage
from turnstream.infrastructure.persistence.file_session_store import FileSessionStore


@pytest.fixture
def store(tmp_path):
    return FileSessionStore(work_dir=tmp_path)


class TestFileSessionStoreSessions:
    """Session lifecycle."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, store):
        """A created session can be read back."""
        created = await store.create_session("user-1", ContextType.PROJECT, "proj_123")

        loaded = await store.get_session(created.id)

        assert loaded.id == created.id
        assert loaded.user_id == "user-1"
        assert loaded.context_type is ContextType.PROJECT
        assert loaded.entity_id == "proj_123"
        assert loaded.message_count == 0

    @pytest.mark.asyncio
    async def test_get_missing_session(self, store):
        """Unknown ids yield None."""
        assert await store.get_session("missing") is None

    @pytest.mark.asyncio
    async def test_corrupt_session_file(self, store):
        """Unreadable session files raise SessionStoreError."""
        (store.sessions_dir / "broken.json").write_text("{not json", encoding="utf-8")

        with pytest.raises(SessionStoreError):
            await store.get_session("broken")

    @pytest.mark.asyncio
    async def test_writes_bump_version(self, store):
        """Every write increments the stored version counter."""
        session = await store.create_session("user-1")
        await store.update_agent_metadata(session.id, {"a": 1})

        data = json.loads((store.sessions_dir / f"{session.id}.json").read_text(encoding="utf-8"))

        assert data["_version"] == 2

    @pytest.mark.asyncio
    async def test_list_sessions_filters_and_sorts(self, store):
        """Listing filters by user and returns the most recently updated first."""
        first = await store.create_session("user-1")
        second = await store.create_session("user-1")
        await store.create_session("user-2")
        await store.update_agent_metadata(first.id, {"touched": True})

        sessions = await store.list_sessions("user-1")

        assert [s.id for s in sessions] == [first.id, second.id]
        assert len(await store.list_sessions()) == 3


class TestFileSessionStoreMessages:
    """Message persistence."""

    @pytest.mark.asyncio
    async def test_persist_and_load_recent(self, store):
        """Only the newest messages are returned, oldest first."""
        session = await store.create_session("user-1")
        for index in range(5):
            await store.persist_message(session.id, "user", f"message {index}")

        recent = await store.load_recent_messages(session.id, 2)

        assert [m.content for m in recent] == ["message 3", "message 4"]
        assert all(m.role is MessageRole.USER for m in recent)

    @pytest.mark.asyncio
    async def test_usage_and_metadata_are_kept(self, store):
        """Assistant usage and metadata survive the round trip."""
        session = await store.create_session("user-1")
        await store.persist_message(
            session.id,
            "assistant",
            "Done.",
            usage={"total_tokens": 12},
            metadata={"finished_reason": "stop"},
        )

        [message] = await store.load_recent_messages(session.id, 10)

        assert message.usage == {"total_tokens": 12}
        assert message.metadata == {"finished_reason": "stop"}

    @pytest.mark.asyncio
    async def test_zero_limit_and_missing_file(self, store):
        """A zero window or a session without messages yields nothing."""
        session = await store.create_session("user-1")

        assert await store.load_recent_messages(session.id, 10) == []
        await store.persist_message(session.id, "user", "hi")
        assert await store.load_recent_messages(session.id, 0) == []

    @pytest.mark.asyncio
    async def test_bad_lines_are_skipped(self, store):
        """Corrupt JSONL lines do not hide the valid ones."""
        session = await store.create_session("user-1")
        await store.persist_message(session.id, "user", "hi")
        with open(store.messages_dir / f"{session.id}.jsonl", "a", encoding="utf-8") as f:
            f.write("garbage\n")

        messages = await store.load_recent_messages(session.id, 10)

        assert [m.content for m in messages] == ["hi"]


class TestFileSessionStoreUpdates:
    """Stats and metadata updates."""

    @pytest.mark.asyncio
    async def test_update_session_stats(self, store):
        """Counters accumulate and the effective scope is recorded."""
        session = await store.create_session("user-1")

        await store.update_session_stats(
            session.id, message_delta=2, usage=TokenUsage(10, 5, 15)
        )
        updated = await store.update_session_stats(
            session.id,
            message_delta=2,
            usage=TokenUsage(1, 1, 2),
            context_type=ContextType.PROJECT,
            entity_id="proj_9",
        )

        assert updated.message_count == 4
        assert updated.total_tokens == 17
        assert updated.context_type is ContextType.PROJECT
        assert updated.entity_id == "proj_9"
        assert updated.last_message_at is not None

    @pytest.mark.asyncio
    async def test_update_agent_metadata_merges_keys(self, store):
        """Metadata updates replace only the keys they name."""
        session = await store.create_session("user-1")
        await store.update_agent_metadata(session.id, {"context_cache": {"v": 1}})
        await store.update_agent_metadata(session.id, {"agent_state": {"items": []}})
        updated = await store.update_agent_metadata(session.id, {"context_cache": {"v": 2}})

        assert updated.agent_metadata == {
            "context_cache": {"v": 2},
            "agent_state": {"items": []},
        }

    @pytest.mark.asyncio
    async def test_updates_on_missing_session(self, store):
        """Updating an unknown session is a no-op returning None."""
        assert await store.update_agent_metadata("missing", {"a": 1}) is None
        assert (
            await store.update_session_stats("missing", message_delta=1, usage=TokenUsage())
            is None
        )
