"""Request schemas for the chat stream endpoint."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from turnstream.core.domain.enums import ContextType
from turnstream.core.domain.errors import ValidationError
from turnstream.core.domain.models import LastTurnContext, ProjectFocus, TurnRequest


class ChatStreamRequest(BaseModel):
    """Request body for ``POST /chat/stream``.

    Accepts snake_case and camelCase keys. Unknown context types fall back
    to ``global``.

    Example::

        {
            "message": "add a task to review the draft",
            "context_type": "project",
            "entity_id": "proj_123",
            "lastTurnContext": {"summary": "...", "entities": {"project_id": "proj_123"}}
        }
    """

    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(..., description="The user's message.")
    context_type: str = Field(
        default=ContextType.GLOBAL.value,
        alias="contextType",
        description="Declared scope of the conversation.",
        examples=["global", "project", "daily_brief"],
    )
    entity_id: Optional[str] = Field(
        default=None, alias="entityId", description="Project or brief id for the scope."
    )
    session_id: Optional[str] = Field(
        default=None, alias="sessionId", description="Session to continue. New if omitted."
    )
    project_focus: Optional[dict[str, Any]] = Field(default=None, alias="projectFocus")
    last_turn_context: Optional[dict[str, Any]] = Field(default=None, alias="lastTurnContext")
    voice_note_group_id: Optional[str] = Field(default=None, alias="voiceNoteGroupId")

    def to_turn_request(self) -> TurnRequest:
        """Convert to the domain request.

        Raises:
            ValidationError: If the message is empty after stripping.
        """
        message = self.message.strip()
        if not message:
            raise ValidationError("Message must not be empty", details={"field": "message"})
        return TurnRequest(
            message=message,
            context_type=ContextType.normalize(self.context_type),
            entity_id=self.entity_id or None,
            session_id=self.session_id or None,
            project_focus=ProjectFocus.from_dict(self.project_focus),
            last_turn_context=LastTurnContext.from_dict(self.last_turn_context),
            voice_note_group_id=self.voice_note_group_id,
        )
