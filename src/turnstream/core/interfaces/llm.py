"""
LLM Provider Protocol

This module defines the protocol interface for LLM service implementations.
LLM providers abstract access to language models (OpenAI, Azure OpenAI, Anthropic, etc.)
with unified interfaces for completion and streaming.

Protocol implementations must handle:
- Model alias resolution (e.g., "main" -> "gpt-4.1")
- Retry logic with exponential backoff for non-streaming calls
- Structured logging with token usage tracking
- Streaming support for real-time token delivery
"""

from collections.abc import AsyncIterator
from typing import Any, Protocol


class LLMProviderProtocol(Protocol):
    """
    Protocol defining the contract for LLM service providers.

    Thread Safety:
        Implementations must be safe for concurrent use across multiple
        async tasks (no shared mutable state without synchronization).

    Error Handling:
        ``complete`` returns a dict with ``"success": bool``. On failure it
        carries ``"error"`` and ``"error_type"``. ``complete_stream`` yields
        an ``error`` event instead of raising.
    """

    async def complete(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        tools: list[dict[str, Any]] | None = None,
        tool_choice: str | dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """
        Perform a chat completion with retry logic.

        Args:
            messages: List of message dicts with 'role' and 'content' keys.
            model: Model alias (e.g., "main", "fast") or None for default.
            tools: Optional tool definitions in OpenAI function calling format.
            tool_choice: Optional tool choice strategy.
            **kwargs: Additional parameters (temperature, response_format, ...).

        Returns:
            Dictionary with:
            - success: bool
            - content: str | None
            - tool_calls: list[dict] | None
            - usage: dict with total_tokens, prompt_tokens, completion_tokens
            - model: str - Actual model name used
            - latency_ms: int
            - error / error_type (if failed)
        """
        ...

    async def complete_stream(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        tools: list[dict[str, Any]] | None = None,
        tool_choice: str | dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> AsyncIterator[dict[str, Any]]:
        """
        Stream a chat completion with real-time token delivery.

        Yields:
            Normalized event dictionaries:

            - {"type": "token", "content": "..."}
            - {"type": "tool_call_start", "id": "...", "name": "...", "index": N}
            - {"type": "tool_call_delta", "id": "...", "arguments_delta": "...", "index": N}
            - {"type": "tool_call_end", "id": "...", "name": "...", "arguments": "...", "index": N}
            - {"type": "done", "usage": {...}, "finish_reason": "..."}
            - {"type": "error", "message": "..."}

        Note:
            - Errors are yielded as events, NOT raised as exceptions
            - No automatic retry logic for streaming
            - Tool calls arrive progressively: start -> delta(s) -> end
        """
        # Yield required for AsyncIterator type hint
        yield {}  # pragma: no cover
