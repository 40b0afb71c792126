"""Tests for the chat stream route (SSE framing and request validation)."""

import json

import pytest

pytest.importorskip("fastapi")

from fastapi.testclient import TestClient

from turnstream.api.dependencies import get_orchestrator, get_user_id
from turnstream.api.server import create_app
from turnstream.core.domain.enums import ContextType, StreamEventType
from turnstream.core.domain.models import StreamEvent


class FakeOrchestrator:
    """Records requests and replays a fixed event sequence."""

    def __init__(self):
        self.calls = []

    async def stream_turn(self, request, user_id):
        self.calls.append((request, user_id))
        yield StreamEvent(StreamEventType.SESSION, {"session": {"id": "sess-1"}})
        yield StreamEvent(StreamEventType.TEXT_DELTA, {"content": "Hällo"})
        yield StreamEvent(StreamEventType.DONE, {"usage": {}, "finished_reason": "stop"})


@pytest.fixture
def orchestrator():
    return FakeOrchestrator()


@pytest.fixture
def client(orchestrator):
    app = create_app()
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_user_id] = lambda: "user-1"
    return TestClient(app)


def _events(body: str) -> list[dict]:
    return [
        json.loads(frame[len("data: "):])
        for frame in body.split("\n\n")
        if frame.startswith("data: ")
    ]


class TestChatStreamRoute:
    """Tests for POST /api/v1/chat/stream."""

    def test_streams_events_as_sse(self, client):
        """Each event is one ``data:`` frame in order."""
        response = client.post("/api/v1/chat/stream", json={"message": "hi"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = _events(response.text)
        assert [e["type"] for e in events] == ["session", "text_delta", "done"]
        assert events[1]["content"] == "Hällo"

    def test_camel_case_body(self, client, orchestrator):
        """camelCase keys map onto the turn request."""
        client.post(
            "/api/v1/chat/stream",
            json={
                "message": "  open it  ",
                "contextType": "project",
                "entityId": "proj_1",
                "sessionId": "sess-9",
            },
        )

        request, user_id = orchestrator.calls[0]
        assert user_id == "user-1"
        assert request.message == "open it"
        assert request.context_type is ContextType.PROJECT
        assert request.entity_id == "proj_1"
        assert request.session_id == "sess-9"

    def test_unknown_context_type_falls_back_to_global(self, client, orchestrator):
        """Unrecognized scopes are treated as global."""
        client.post("/api/v1/chat/stream", json={"message": "hi", "context_type": "galaxy"})

        assert orchestrator.calls[0][0].context_type is ContextType.GLOBAL

    def test_empty_message_rejected(self, client, orchestrator):
        """Blank messages fail before the stream opens."""
        response = client.post("/api/v1/chat/stream", json={"message": "   "})

        assert response.status_code == 400
        assert response.headers["X-Turnstream-Error"] == "1"
        assert response.json()["code"] == "validation_error"
        assert orchestrator.calls == []

    def test_missing_message_is_422(self, client):
        """The body schema requires a message."""
        response = client.post("/api/v1/chat/stream", json={"context_type": "global"})

        assert response.status_code == 422
