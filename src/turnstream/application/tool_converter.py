"""
Tool Converter - OpenAI function calling format conversion.

Converts registered tools into the schema list handed to the LLM, and tool
calls/results into the chat messages that continue a tool round.
"""

import json
from collections.abc import Iterable
from typing import Any

from turnstream.core.domain.models import ToolCall, ToolResult
from turnstream.core.interfaces.tools import ToolProtocol

MAX_TOOL_CONTENT_CHARS = 20000


def tools_to_openai_format(tools: Iterable[ToolProtocol]) -> list[dict[str, Any]]:
    """
    Convert tools to OpenAI function calling format.

    Returns:
        [{"type": "function", "function": {"name", "description", "parameters"}}, ...]
    """
    return [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.parameters_schema,
            },
        }
        for tool in tools
    ]


def assistant_tool_calls_to_message(tool_calls: list[ToolCall]) -> dict[str, Any]:
    """Assistant message announcing the round's tool calls."""
    return {
        "role": "assistant",
        "content": None,
        "tool_calls": [call.to_dict() for call in tool_calls],
    }


def tool_result_to_message(
    result: ToolResult, max_output_chars: int = MAX_TOOL_CONTENT_CHARS
) -> dict[str, Any]:
    """
    Convert a tool result to an OpenAI ``tool`` message.

    Content larger than ``max_output_chars`` is truncated with an overflow
    marker to protect the context window.
    """
    content = json.dumps(result.to_llm_content(), ensure_ascii=False, default=str)
    if len(content) > max_output_chars:
        overflow = len(content) - max_output_chars
        content = content[:max_output_chars] + f"\n\n[... TRUNCATED - {overflow} more chars ...]"
    return {
        "role": "tool",
        "tool_call_id": result.tool_call_id,
        "name": result.tool_name,
        "content": content,
    }
