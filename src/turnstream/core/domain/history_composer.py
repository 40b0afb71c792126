"""History composition for the model prompt.

``compose_history`` decides whether the stored message log is passed to the
LLM verbatim or compressed into a rolling tail plus one synthesized summary
turn. It is a pure function: identical inputs and settings always produce
identical output.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence

from turnstream.core.domain.entity_ids import is_valid_entity_id
from turnstream.core.domain.enums import HistoryStrategy, MessageRole
from turnstream.core.domain.models import ChatMessage, LastTurnContext

SUMMARY_PREFIX = "[Conversation summary]"
_DIGEST_SNIPPET_CHARS = 80


@dataclass(frozen=True)
class HistoryComposerSettings:
    """Thresholds and budgets for history compression."""

    compression_threshold: int = 8
    tail_messages: int = 4
    summary_max_chars: int = 1200
    hint_max_chars: int = 600


@dataclass
class ComposedHistory:
    """Result of ``compose_history``.

    ``raw_history_count`` is the length of the stored log as given; the
    compression decision counts only the messages that survive filtering.
    """

    history_for_model: list[dict[str, str]]
    strategy: HistoryStrategy
    compressed: bool
    raw_history_count: int
    tail_messages_kept: int
    continuity_hint_used: bool
    metadata: dict[str, Any] = field(default_factory=dict)


def _truncate(text: str, max_chars: int) -> str:
    text = text.strip()
    if max_chars <= 0:
        return ""
    if len(text) <= max_chars:
        return text
    if max_chars <= 3:
        return text[:max_chars]
    return text[: max_chars - 3].rstrip() + "..."


def _as_llm_messages(raw_history: Sequence[ChatMessage | dict[str, Any]]) -> list[dict[str, str]]:
    """Keep non-empty user/assistant messages, in order."""
    allowed = {MessageRole.USER.value, MessageRole.ASSISTANT.value}
    messages: list[dict[str, str]] = []
    for entry in raw_history:
        if isinstance(entry, ChatMessage):
            role, content = entry.role.value, entry.content
        else:
            role, content = str(entry.get("role", "")), entry.get("content") or ""
        if role in allowed and isinstance(content, str) and content.strip():
            messages.append({"role": role, "content": content})
    return messages


def render_continuity_hint(hint: LastTurnContext) -> str:
    """Render a last-turn context as a short plain-text hint."""
    parts = [f"Previous turn ({hint.context_type.value}): {hint.summary}".strip()]
    rendered_entities = []
    for key, value in hint.entities.to_dict().items():
        ids = [v for v in (value if isinstance(value, list) else [value]) if is_valid_entity_id(v)]
        if ids:
            rendered_entities.append(f"{key}={','.join(ids)}")
    if rendered_entities:
        parts.append(f"Entities: {', '.join(rendered_entities)}")
    if hint.data_accessed:
        parts.append(f"Tools used: {', '.join(hint.data_accessed)}")
    return "\n".join(parts)


def _digest(dropped: list[dict[str, str]], max_chars: int) -> str:
    lines = [
        f"{message['role']}: {' '.join(message['content'].split())[:_DIGEST_SNIPPET_CHARS]}"
        for message in dropped
    ]
    return _truncate("\n".join(lines), max_chars)


def compose_history(
    raw_history: Sequence[ChatMessage | dict[str, Any]],
    continuity_hint: LastTurnContext | None = None,
    session_summary: str | None = None,
    settings: HistoryComposerSettings | None = None,
) -> ComposedHistory:
    """Compose the history handed to the model.

    Args:
        raw_history: Stored messages in chronological order.
        continuity_hint: Last-turn context echoed back by the client.
        session_summary: Rolling summary stored on the session.
        settings: Compression thresholds and budgets.

    Returns:
        ComposedHistory with ``strategy`` ``raw`` when the history length is
        at or below the threshold, otherwise ``compressed`` with at most
        ``tail_messages_kept + 1`` messages.
    """
    settings = settings or HistoryComposerSettings()
    messages = _as_llm_messages(raw_history)
    raw_count = len(messages)

    if raw_count <= settings.compression_threshold:
        return ComposedHistory(
            history_for_model=messages,
            strategy=HistoryStrategy.RAW,
            compressed=False,
            raw_history_count=len(raw_history),
            tail_messages_kept=raw_count,
            continuity_hint_used=False,
        )

    tail_size = max(0, min(settings.tail_messages, raw_count))
    split = raw_count - tail_size
    dropped, tail = messages[:split], messages[split:]

    sections: list[str] = []
    summary_text = (session_summary or "").strip()
    if summary_text:
        sections.append(_truncate(summary_text, settings.summary_max_chars))

    hint_used = False
    if continuity_hint is not None:
        hint_text = _truncate(render_continuity_hint(continuity_hint), settings.hint_max_chars)
        if hint_text:
            sections.append(f"Continuity: {hint_text}")
            hint_used = True

    if not sections:
        sections.append(_digest(dropped, settings.summary_max_chars))

    summary_turn = {
        "role": MessageRole.ASSISTANT.value,
        "content": f"{SUMMARY_PREFIX}\n" + "\n\n".join(section for section in sections if section),
    }

    return ComposedHistory(
        history_for_model=[summary_turn, *tail],
        strategy=HistoryStrategy.COMPRESSED,
        compressed=True,
        raw_history_count=len(raw_history),
        tail_messages_kept=len(tail),
        continuity_hint_used=hint_used,
        metadata={"dropped_messages": len(dropped)},
    )
