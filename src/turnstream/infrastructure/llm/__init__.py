"""LLM provider adapters."""

from turnstream.infrastructure.llm.litellm_service import LiteLLMService, RetryPolicy

__all__ = ["LiteLLMService", "RetryPolicy"]
