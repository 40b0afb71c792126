"""System prompt builder for chat turns."""

from __future__ import annotations

import json
from typing import Any

from turnstream.core.domain.entity_ids import is_valid_entity_id
from turnstream.core.domain.enums import ContextType
from turnstream.core.domain.models import PromptContext

BASE_SYSTEM_PROMPT = (
    "You are a project assistant embedded in a planning workspace. "
    "Answer concisely, ground every statement in the context below, and use the "
    "available tools to read or change data instead of guessing. "
    "Never invent identifiers: only use ids that appear in the context or in tool results."
)

MAX_CONTEXT_DATA_CHARS = 12000
MAX_AGENT_STATE_CHARS = 4000

_SCOPE_DESCRIPTIONS = {
    ContextType.GLOBAL: "The user is looking at all of their projects.",
    ContextType.PROJECT: "The user is working inside a single project.",
    ContextType.PROJECT_AUDIT: "The user is auditing a single project for gaps and risks.",
    ContextType.PROJECT_FORECAST: "The user is forecasting a single project's outcomes.",
    ContextType.DAILY_BRIEF: "The user is reading a daily brief.",
}


def _compact_json(value: Any, max_chars: int) -> str:
    text = json.dumps(value, ensure_ascii=False, default=str, separators=(",", ":"))
    if len(text) > max_chars:
        return text[:max_chars] + "...(truncated)"
    return text


class PromptBuilder:
    """
    Build the system preamble from a prompt context.

    Sections are appended only when they carry information, so a degraded
    context still produces a usable prompt.
    """

    def __init__(self, base_system_prompt: str = BASE_SYSTEM_PROMPT) -> None:
        self._base_system_prompt = base_system_prompt

    @property
    def base_system_prompt(self) -> str:
        return self._base_system_prompt

    def build_system_prompt(self, context: PromptContext) -> str:
        """
        Render the full system prompt.

        Args:
            context: Loaded prompt context including agent state and summary.

        Returns:
            Complete system prompt string.
        """
        prompt = self._base_system_prompt
        prompt += self._build_scope_section(context)

        if context.data:
            prompt += (
                "\n\n## CONTEXT DATA\n"
                f"{_compact_json(context.data, MAX_CONTEXT_DATA_CHARS)}"
            )

        if context.agent_state:
            prompt += (
                "\n\n## AGENT STATE\n"
                "Carried-forward understanding from earlier turns:\n"
                f"{_compact_json(context.agent_state, MAX_AGENT_STATE_CHARS)}"
            )

        if context.conversation_summary:
            prompt += f"\n\n## CONVERSATION SUMMARY\n{context.conversation_summary.strip()}"

        return prompt

    def _build_scope_section(self, context: PromptContext) -> str:
        lines = [_SCOPE_DESCRIPTIONS.get(context.context_type, "")]
        if context.project_name or context.project_id:
            label = context.project_name or "Unnamed project"
            if is_valid_entity_id(context.project_id):
                label += f" (project_id: {context.project_id})"
            lines.append(f"Project: {label}")
        if context.context_type is ContextType.DAILY_BRIEF and is_valid_entity_id(
            context.entity_id
        ):
            lines.append(f"Brief id: {context.entity_id}")
        if context.focus_entity_type:
            focus = context.focus_entity_name or context.focus_entity_type
            if is_valid_entity_id(context.focus_entity_id):
                focus += f" ({context.focus_entity_type}_id: {context.focus_entity_id})"
            lines.append(f"Focus: {context.focus_entity_type} {focus}")
        body = "\n".join(line for line in lines if line)
        return f"\n\n## SCOPE\n{body}" if body else ""
