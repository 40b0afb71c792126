"""
Chat Stream API Route
=====================

``POST /chat/stream`` runs one chat turn and streams its events as
Server-Sent Events::

    data: {"type": "session", "session": {...}}

    data: {"type": "text_delta", "content": "..."}

    data: {"type": "done", "usage": {...}, "finished_reason": "stop"}

A malformed body is rejected before the stream opens (422 from pydantic,
400 ``validation_error`` for an empty message). Once open, the stream
always ends with a ``done`` event.
"""

import json

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from turnstream.api.dependencies import get_orchestrator, get_user_id
from turnstream.api.errors import to_http_exception
from turnstream.api.schemas.chat import ChatStreamRequest
from turnstream.application.turn_orchestrator import TurnOrchestrator
from turnstream.core.domain.errors import ValidationError

router = APIRouter()
logger = structlog.get_logger(__name__)


@router.post("/chat/stream")
async def chat_stream(
    body: ChatStreamRequest,
    user_id: str = Depends(get_user_id),
    orchestrator: TurnOrchestrator = Depends(get_orchestrator),
):
    """Stream one chat turn via Server-Sent Events."""
    try:
        turn_request = body.to_turn_request()
    except ValidationError as e:
        raise to_http_exception(e)

    async def event_generator():
        async for event in orchestrator.stream_turn(turn_request, user_id):
            data = json.dumps(event.to_dict(), default=str, ensure_ascii=False)
            yield f"data: {data}\n\n"

    logger.info(
        "chat_stream_opened",
        user_id=user_id,
        context_type=turn_request.context_type.value,
        session_id=turn_request.session_id,
    )
    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
