"""
Unified LLM Service using LiteLLM for multi-provider support.

The provider is determined by the model string prefix (e.g. "anthropic/",
"azure/", "ollama/"), so there are no provider-specific code paths.

Key features:
- Model alias resolution from YAML configuration ("main", "fast", ...)
- Per-model default parameters with merge semantics
- Retry with exponential backoff for non-streaming completions
- Streaming with normalized token / tool-call / done / error events
- Optional JSONL tracing of interactions

Environment variables are read natively by LiteLLM per provider
(OPENAI_API_KEY, ANTHROPIC_API_KEY, AZURE_API_KEY, ...).
"""

import asyncio
import json
import logging
import os
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass
from pathlib import Path
from typing import Any

# Suppress LiteLLM verbose logging before import
os.environ.setdefault("LITELLM_LOG_LEVEL", "ERROR")
os.environ.setdefault("LITELLM_LOGGING", "off")

for _ln in ["LiteLLM", "litellm", "httpcore", "httpx", "openai"]:
    logging.getLogger(_ln).setLevel(logging.ERROR)

import aiofiles  # noqa: E402
import litellm  # noqa: E402
import structlog  # noqa: E402
import yaml  # noqa: E402

from turnstream.core.utils.time import utc_now_iso  # noqa: E402

litellm.suppress_debug_info = True
litellm.drop_params = True

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[2] / "configs" / "llm_config.yaml"

# Error type names that indicate transient failures worth retrying
_RETRYABLE_ERROR_TYPES = frozenset(
    {"RateLimitError", "APIConnectionError", "Timeout", "ServiceUnavailableError"}
)

# Keywords in error messages that indicate transient failures
_RETRYABLE_KEYWORDS = ("rate limit", "timeout", "503", "502", "429", "overloaded")

# Keywords that indicate permanent failures (never retry)
_NON_RETRYABLE_KEYWORDS = (
    "invalid api key",
    "authentication",
    "not found",
    "invalid model",
    "invalid request",
)


@dataclass
class RetryPolicy:
    """Retry policy configuration for LLM API calls."""

    max_attempts: int = 3
    backoff_multiplier: float = 2.0
    timeout: int = 60


def _usage_from(raw_usage: Any) -> dict[str, int]:
    """Normalize a usage object or dict; non-numeric fields are ignored."""
    if raw_usage is None:
        return {}
    usage: dict[str, int] = {}
    for key in ("prompt_tokens", "completion_tokens", "total_tokens"):
        value = raw_usage.get(key) if isinstance(raw_usage, dict) else getattr(raw_usage, key, None)
        if isinstance(value, int) and not isinstance(value, bool):
            usage[key] = value
    return usage


class LiteLLMService:
    """
    Provider-agnostic LLM service powered by LiteLLM.

    Implements LLMProviderProtocol. Configuration comes from a YAML file with
    model aliases, per-model parameters, a retry policy and tracing options.

    Args:
        config_path: Path to YAML configuration file.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        ValueError: If config is invalid (empty or missing models section).
    """

    def __init__(self, config_path: str | Path = DEFAULT_CONFIG_PATH) -> None:
        self.logger = structlog.get_logger(__name__)
        self._trace_tasks: set[asyncio.Task[None]] = set()
        self._load_config(config_path)

        self.logger.info(
            "llm_service_initialized",
            default_model=self.default_model,
            model_aliases=list(self.models.keys()),
        )

    def _load_config(self, config_path: str | Path) -> None:
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"LLM config not found: {config_path}")

        with open(config_file, encoding="utf-8") as f:
            config = yaml.safe_load(f)

        if not config:
            raise ValueError(f"Config file is empty or invalid: {config_path}")

        self.default_model: str = config.get("default_model", "main")
        self.models: dict[str, str] = config.get("models", {})
        self.model_params: dict[str, dict[str, Any]] = config.get("model_params", {})
        self.default_params: dict[str, Any] = config.get("default_params", {})

        if not self.models:
            raise ValueError("Config must define at least one model in 'models' section")

        retry_cfg = config.get("retry", config.get("retry_policy", {}))
        self.retry_policy = RetryPolicy(
            max_attempts=retry_cfg.get("max_attempts", 3),
            backoff_multiplier=retry_cfg.get("backoff_multiplier", 2.0),
            timeout=retry_cfg.get("timeout", 60),
        )

        self.logging_config: dict[str, Any] = config.get("logging", {})
        self.tracing_config: dict[str, Any] = config.get("tracing", {})

    def _resolve_model(self, model_alias: str | None) -> str:
        """Resolve a model alias; unknown aliases pass through as model strings."""
        alias = model_alias or self.default_model
        resolved = self.models.get(alias, alias)
        self.logger.debug("model_resolved", alias=alias, resolved=resolved)
        return resolved

    def _get_params(self, model_alias: str, **kwargs: Any) -> dict[str, Any]:
        """Merge default_params, model_params (alias, model, prefix) and call kwargs."""
        params: dict[str, Any] = {**self.default_params}

        resolved = self.models.get(model_alias, model_alias)
        if model_alias in self.model_params:
            params.update(self.model_params[model_alias])
        elif resolved in self.model_params:
            params.update(self.model_params[resolved])
        else:
            for key, model_cfg in self.model_params.items():
                if resolved.startswith(key):
                    params.update(model_cfg)
                    break

        params.update({k: v for k, v in kwargs.items() if v is not None})
        return params

    def _build_kwargs(
        self,
        messages: list[dict[str, Any]],
        model: str | None,
        tools: list[dict[str, Any]] | None,
        tool_choice: str | dict[str, Any] | None,
        **kwargs: Any,
    ) -> tuple[str, dict[str, Any]]:
        alias = model or self.default_model
        resolved_model = self._resolve_model(model)
        litellm_kwargs: dict[str, Any] = {
            "model": resolved_model,
            "messages": messages,
            "timeout": self.retry_policy.timeout,
            "drop_params": True,
            **self._get_params(alias, **kwargs),
        }
        if tools:
            litellm_kwargs["tools"] = tools
            litellm_kwargs["tool_choice"] = tool_choice or "auto"
        return resolved_model, litellm_kwargs

    async def complete(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        tools: list[dict[str, Any]] | None = None,
        tool_choice: str | dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """Perform a chat completion with retry logic.

        Returns:
            Dict with success, content, tool_calls, usage, model, latency_ms.
            On failure: success=False, error, error_type.
        """
        resolved_model, litellm_kwargs = self._build_kwargs(
            messages, model, tools, tool_choice, **kwargs
        )

        last_error: Exception | None = None
        for attempt in range(self.retry_policy.max_attempts):
            start_time = time.time()
            try:
                self.logger.info(
                    "llm_completion_started",
                    model=resolved_model,
                    attempt=attempt + 1,
                    message_count=len(messages),
                    tools_count=len(tools) if tools else 0,
                )

                response = await litellm.acompletion(**litellm_kwargs)
                latency_ms = int((time.time() - start_time) * 1000)
                result = self._parse_response(response, resolved_model, latency_ms)

                if self.logging_config.get("log_token_usage", True):
                    self.logger.info(
                        "llm_completion_success",
                        model=resolved_model,
                        tokens=result["usage"].get("total_tokens", 0),
                        latency_ms=latency_ms,
                    )

                self._schedule_trace(
                    messages=messages,
                    response_content=result.get("content"),
                    model=resolved_model,
                    token_stats=result["usage"],
                    latency_ms=latency_ms,
                    success=True,
                )
                return result

            except Exception as e:
                last_error = e
                if attempt < self.retry_policy.max_attempts - 1 and self._should_retry(e):
                    backoff_time = self.retry_policy.backoff_multiplier**attempt
                    self.logger.warning(
                        "llm_completion_retry",
                        model=resolved_model,
                        error_type=type(e).__name__,
                        attempt=attempt + 1,
                        backoff_seconds=backoff_time,
                    )
                    await asyncio.sleep(backoff_time)
                else:
                    self.logger.error(
                        "llm_completion_failed",
                        model=resolved_model,
                        error_type=type(e).__name__,
                        error=str(e)[:200],
                        attempts=attempt + 1,
                    )
                    self._schedule_trace(
                        messages=messages,
                        response_content=None,
                        model=resolved_model,
                        token_stats={},
                        latency_ms=int((time.time() - start_time) * 1000),
                        success=False,
                        error=str(e),
                    )
                    break

        return {
            "success": False,
            "error": str(last_error),
            "error_type": type(last_error).__name__ if last_error else "Unknown",
            "model": resolved_model,
        }

    def _parse_response(self, response: Any, model: str, latency_ms: int) -> dict[str, Any]:
        """Extract a normalized result from a LiteLLM response."""
        choice = response.choices[0]
        message = choice.message
        content = message.content or ""

        tool_calls_raw = getattr(message, "tool_calls", None)
        tool_calls = None
        if tool_calls_raw:
            tool_calls = [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {"name": tc.function.name, "arguments": tc.function.arguments},
                }
                for tc in tool_calls_raw
            ]

        return {
            "success": True,
            "content": content or None,
            "tool_calls": tool_calls,
            "usage": _usage_from(getattr(response, "usage", None)),
            "finish_reason": getattr(choice, "finish_reason", None),
            "model": model,
            "latency_ms": latency_ms,
        }

    async def complete_stream(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        tools: list[dict[str, Any]] | None = None,
        tool_choice: str | dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> AsyncIterator[dict[str, Any]]:
        """Stream a completion with real-time token delivery.

        Yields normalized events as chunks arrive. Errors are yielded as
        events, NOT raised as exceptions. Cancellation propagates.

        Yields:
            Event dicts: token, tool_call_start, tool_call_delta,
            tool_call_end, done (usage, finish_reason), error.
        """
        resolved_model, litellm_kwargs = self._build_kwargs(
            messages, model, tools, tool_choice, **kwargs
        )
        litellm_kwargs["stream"] = True
        litellm_kwargs.setdefault("stream_options", {"include_usage": True})

        self.logger.debug(
            "llm_stream_started",
            model=resolved_model,
            message_count=len(messages),
            tools_count=len(tools) if tools else 0,
        )

        start_time = time.time()
        try:
            response = await litellm.acompletion(**litellm_kwargs)

            current_tool_calls: dict[int, dict[str, Any]] = {}
            content_accumulated = ""
            usage: dict[str, int] = {}
            finish_reason: str | None = None

            async for chunk in response:
                chunk_usage = _usage_from(getattr(chunk, "usage", None))
                if chunk_usage:
                    usage = chunk_usage
                if not chunk.choices:
                    continue

                delta = chunk.choices[0].delta
                chunk_finish = chunk.choices[0].finish_reason

                if getattr(delta, "content", None):
                    content_accumulated += delta.content
                    yield {"type": "token", "content": delta.content}

                for tc in getattr(delta, "tool_calls", None) or []:
                    idx = tc.index
                    function = getattr(tc, "function", None)

                    if idx not in current_tool_calls:
                        tool_id = getattr(tc, "id", None) or ""
                        tool_name = (getattr(function, "name", None) or "") if function else ""
                        current_tool_calls[idx] = {"id": tool_id, "name": tool_name, "arguments": ""}
                        if tool_id or tool_name:
                            yield {
                                "type": "tool_call_start",
                                "id": tool_id,
                                "name": tool_name,
                                "index": idx,
                            }

                    if getattr(tc, "id", None):
                        current_tool_calls[idx]["id"] = tc.id
                    if function and getattr(function, "name", None):
                        current_tool_calls[idx]["name"] = function.name

                    args_delta = getattr(function, "arguments", None) if function else None
                    if args_delta:
                        current_tool_calls[idx]["arguments"] += args_delta
                        yield {
                            "type": "tool_call_delta",
                            "id": current_tool_calls[idx]["id"],
                            "arguments_delta": args_delta,
                            "index": idx,
                        }

                if chunk_finish:
                    finish_reason = chunk_finish
                    for tc_idx, tc_data in current_tool_calls.items():
                        yield {
                            "type": "tool_call_end",
                            "id": tc_data["id"],
                            "name": tc_data["name"],
                            "arguments": tc_data["arguments"],
                            "index": tc_idx,
                        }
                    current_tool_calls = {}

            latency_ms = int((time.time() - start_time) * 1000)
            self.logger.info(
                "llm_stream_completed",
                model=resolved_model,
                latency_ms=latency_ms,
                finish_reason=finish_reason,
                tokens=usage.get("total_tokens", 0),
            )
            self._schedule_trace(
                messages=messages,
                response_content=content_accumulated or None,
                model=resolved_model,
                token_stats=usage,
                latency_ms=latency_ms,
                success=True,
            )

            yield {"type": "done", "usage": usage, "finish_reason": finish_reason}

        except Exception as e:
            self.logger.error(
                "llm_stream_failed",
                model=resolved_model,
                error_type=type(e).__name__,
                error=str(e)[:200],
            )
            self._schedule_trace(
                messages=messages,
                response_content=None,
                model=resolved_model,
                token_stats={},
                latency_ms=int((time.time() - start_time) * 1000),
                success=False,
                error=str(e),
            )
            yield {"type": "error", "message": str(e)}

    @staticmethod
    def _should_retry(error: Exception) -> bool:
        """Check if an error is transient and worth retrying."""
        error_msg = str(error).lower()

        if any(kw in error_msg for kw in _NON_RETRYABLE_KEYWORDS):
            return False
        if type(error).__name__ in _RETRYABLE_ERROR_TYPES:
            return True
        return any(kw in error_msg for kw in _RETRYABLE_KEYWORDS)

    # ------------------------------------------------------------------
    # Tracing
    # ------------------------------------------------------------------

    def _schedule_trace(self, **trace_kwargs: Any) -> None:
        if not self.tracing_config.get("enabled", False):
            return
        if self.tracing_config.get("mode", "file") not in ("file", "both"):
            return
        task = asyncio.create_task(self._trace_interaction(**trace_kwargs))
        self._trace_tasks.add(task)
        task.add_done_callback(self._trace_tasks.discard)

    async def _trace_interaction(
        self,
        messages: list[dict[str, Any]],
        response_content: str | None,
        model: str,
        token_stats: dict[str, int],
        latency_ms: int,
        success: bool,
        error: str | None = None,
    ) -> None:
        """Append one interaction to the JSONL trace file."""
        trace_data = {
            "timestamp": utc_now_iso(),
            "model": model,
            "messages": messages,
            "response": response_content,
            "usage": token_stats,
            "latency_ms": latency_ms,
            "success": success,
            "error": error,
        }
        try:
            file_config = self.tracing_config.get("file_config", {})
            path = Path(file_config.get("path", "traces/llm_traces.jsonl"))
            path.parent.mkdir(parents=True, exist_ok=True)

            async with aiofiles.open(path, mode="a", encoding="utf-8") as f:
                await f.write(json.dumps(trace_data, default=str) + "\n")
        except Exception as e:
            self.logger.error("trace_file_write_failed", error=str(e))
