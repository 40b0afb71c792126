"""
Tool Execution Protocol

This module defines the protocol interface for tool implementations.
Tools are the capabilities the LLM may invoke mid-turn (read a project,
list tasks, create a task, change the conversation's context, ...).

Protocol implementations must provide:
- Tool metadata (name, description, parameter schema)
- Selection hints (keywords, contexts the tool is offered in)
- Async execution that returns a result dictionary
"""

from typing import Any, Protocol

from turnstream.core.domain.models import ServiceContext


class ToolProtocol(Protocol):
    """
    Protocol defining the contract for tool implementations.

    Parameter Schema:
        Tools must provide OpenAI function calling compatible parameter schemas:
        {
            "type": "object",
            "properties": {"project_id": {"type": "string"}},
            "required": ["project_id"]
        }

    Result Format:
        ``execute`` returns a dict. ``success: False`` (or an ``error`` key
        without ``success``) marks a failure. A payload may embed a
        ``context_shift`` object and an ``_entities_accessed`` id list.

    Error Handling:
        Tools should return ``{"success": False, "error": "..."}`` rather than
        raising. The Tool Gateway still converts raised exceptions into failed
        results.
    """

    @property
    def name(self) -> str:
        """Unique snake_case identifier for the tool."""
        ...

    @property
    def description(self) -> str:
        """Human-readable description used by the LLM for tool selection."""
        ...

    @property
    def parameters_schema(self) -> dict[str, Any]:
        """OpenAI function-calling compatible JSON Schema for parameters."""
        ...

    @property
    def keywords(self) -> tuple[str, ...]:
        """Lowercase words that make the tool relevant to a user message."""
        ...

    @property
    def contexts(self) -> tuple[str, ...]:
        """Context types the tool is always offered in (empty: keyword only)."""
        ...

    async def execute(self, context: ServiceContext, **kwargs: Any) -> dict[str, Any]:
        """
        Execute the tool.

        Args:
            context: Caller identity and effective scope of the turn.
            **kwargs: Parameters matching ``parameters_schema``.

        Returns:
            Result dictionary.
        """
        ...
