"""Session inspection routes."""

from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from turnstream.api.dependencies import get_session_store, get_user_id
from turnstream.api.errors import http_exception
from turnstream.application.agent_state_reconciler import AGENT_STATE_KEY
from turnstream.core.domain.models import ChatSession
from turnstream.core.interfaces.sessions import SessionStoreProtocol

router = APIRouter()


class SessionSummary(BaseModel):
    id: str
    user_id: str
    context_type: str
    entity_id: Optional[str] = None
    message_count: int
    total_tokens: int
    created_at: str
    updated_at: str
    last_message_at: Optional[str] = None


class SessionDetail(SessionSummary):
    summary: Optional[str] = None
    agent_state: Optional[dict[str, Any]] = None


class MessageResponse(BaseModel):
    id: str
    role: str
    content: str
    usage: Optional[dict[str, Any]] = None
    metadata: Optional[dict[str, Any]] = None
    created_at: str


def _summary(session: ChatSession) -> SessionSummary:
    data = session.to_dict()
    data.pop("agent_metadata", None)
    return SessionSummary(**data)


async def _owned_session(
    store: SessionStoreProtocol, session_id: str, user_id: str
) -> ChatSession:
    session = await store.get_session(session_id)
    if session is None or session.user_id != user_id:
        raise http_exception(
            status_code=404,
            code="session_not_found",
            message=f"Session not found: {session_id}",
            details={"session_id": session_id},
        )
    return session


@router.get("/sessions", response_model=List[SessionSummary])
async def list_sessions(
    user_id: Optional[str] = Query(default=None, description="Defaults to the caller"),
    caller: str = Depends(get_user_id),
    store: SessionStoreProtocol = Depends(get_session_store),
):
    """List sessions, newest first."""
    sessions = await store.list_sessions(user_id or caller)
    return [_summary(s) for s in sessions]


@router.get("/sessions/{session_id}", response_model=SessionDetail)
async def get_session(
    session_id: str,
    caller: str = Depends(get_user_id),
    store: SessionStoreProtocol = Depends(get_session_store),
):
    """Session detail including the reconciled agent state."""
    session = await _owned_session(store, session_id, caller)
    agent_state = session.agent_metadata.get(AGENT_STATE_KEY)
    return SessionDetail(
        **_summary(session).model_dump(),
        summary=session.summary,
        agent_state=agent_state if isinstance(agent_state, dict) else None,
    )


@router.get("/sessions/{session_id}/messages", response_model=List[MessageResponse])
async def get_session_messages(
    session_id: str,
    limit: int = Query(default=20, ge=1, le=200),
    caller: str = Depends(get_user_id),
    store: SessionStoreProtocol = Depends(get_session_store),
):
    """Most recent messages, oldest first."""
    await _owned_session(store, session_id, caller)
    messages = await store.load_recent_messages(session_id, limit=limit)
    return [
        MessageResponse(
            id=m.id,
            role=m.role.value,
            content=m.content,
            usage=m.usage,
            metadata=m.metadata,
            created_at=m.created_at,
        )
        for m in messages
    ]
