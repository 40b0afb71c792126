"""Per-turn tool selection.

A tool is offered when the effective context type is one of its
``contexts``, or when a keyword of the tool appears in the user's message.
Registry order is kept and the list is capped at ``max_tools``.
"""

from __future__ import annotations

import re

from turnstream.application.tool_gateway import ToolRegistry
from turnstream.core.domain.enums import ContextType
from turnstream.core.interfaces.tools import ToolProtocol

_WORD_RE = re.compile(r"[a-z0-9_]+")


def _message_words(message: str) -> set[str]:
    return set(_WORD_RE.findall((message or "").lower()))


def select_tools(
    registry: ToolRegistry,
    context_type: ContextType,
    message: str,
    max_tools: int = 12,
) -> list[ToolProtocol]:
    """Choose the tools offered to the LLM for this turn."""
    words = _message_words(message)
    selected: list[ToolProtocol] = []
    for tool in registry.all():
        in_context = context_type.value in tool.contexts
        keyword_hit = any(keyword in words for keyword in tool.keywords)
        if in_context or keyword_hit:
            selected.append(tool)
        if len(selected) >= max_tools:
            break
    return selected
