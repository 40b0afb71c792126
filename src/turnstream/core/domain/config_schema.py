"""
Configuration Schema Validation

Pydantic models for validating the turnstream YAML configuration.
Provides clear error messages with file and field context.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from turnstream.core.domain.errors import ConfigError


class PersistenceConfigSchema(BaseModel):
    """Where sessions, messages and demo domain data live."""

    model_config = ConfigDict(extra="forbid")

    work_dir: str = Field(".turnstream", description="Root directory for JSON files")


class LLMConfigSchema(BaseModel):
    """LLM service wiring."""

    model_config = ConfigDict(extra="forbid")

    config_path: str = Field(
        "configs/llm_config.yaml",
        description="LiteLLM service YAML (aliases, params, retry policy)",
    )
    model: str = Field("main", description="Model alias used for chat turns")
    reconciler_model: str = Field(
        "fast", description="Model alias used for agent-state reconciliation"
    )


class ContextConfigSchema(BaseModel):
    """Context loading, history window and prompt budget."""

    model_config = ConfigDict(extra="forbid")

    cache_ttl_seconds: float = Field(120.0, ge=0, description="Context cache freshness window")
    history_limit: int = Field(10, ge=0, le=200, description="Messages loaded per turn")
    token_budget: int = Field(16000, gt=0, description="Prompt token budget for usage reports")


class HistoryConfigSchema(BaseModel):
    """History compression thresholds."""

    model_config = ConfigDict(extra="forbid")

    compression_threshold: int = Field(8, ge=0)
    tail_messages: int = Field(4, ge=0)
    summary_max_chars: int = Field(1200, ge=0)
    hint_max_chars: int = Field(600, ge=0)


class ToolsConfigSchema(BaseModel):
    """Tool loop limits."""

    model_config = ConfigDict(extra="forbid")

    max_tool_rounds: int = Field(8, gt=0, le=50)
    repetition_limit: int = Field(3, ge=2, le=20)
    tool_timeout_seconds: Optional[float] = Field(60.0, gt=0)
    max_tools_per_turn: int = Field(12, gt=0)


class ReconcilerConfigSchema(BaseModel):
    """Agent-state reconciliation settings."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    temperature: float = Field(0.25, ge=0, le=2)


class LastTurnConfigSchema(BaseModel):
    """Last-turn context settings."""

    model_config = ConfigDict(extra="forbid")

    prefix_classification: bool = Field(
        True, description="Classify unlabeled ids by prefix (proj_, task_, ...)"
    )


class LoggingConfigSchema(BaseModel):
    """Logging settings."""

    model_config = ConfigDict(extra="forbid")

    level: str = Field("INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")


class TurnstreamConfig(BaseModel):
    """Root configuration."""

    model_config = ConfigDict(extra="forbid")

    persistence: PersistenceConfigSchema = Field(default_factory=PersistenceConfigSchema)
    llm: LLMConfigSchema = Field(default_factory=LLMConfigSchema)
    context: ContextConfigSchema = Field(default_factory=ContextConfigSchema)
    history: HistoryConfigSchema = Field(default_factory=HistoryConfigSchema)
    tools: ToolsConfigSchema = Field(default_factory=ToolsConfigSchema)
    reconciler: ReconcilerConfigSchema = Field(default_factory=ReconcilerConfigSchema)
    last_turn: LastTurnConfigSchema = Field(default_factory=LastTurnConfigSchema)
    logging: LoggingConfigSchema = Field(default_factory=LoggingConfigSchema)


def validate_config(
    data: dict[str, Any],
    file_path: Optional[Path] = None,
) -> TurnstreamConfig:
    """
    Validate configuration data.

    Args:
        data: Configuration dictionary
        file_path: Optional file path for error messages

    Returns:
        Validated TurnstreamConfig

    Raises:
        ConfigError: If validation fails
    """
    try:
        return TurnstreamConfig(**data)
    except PydanticValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        field_path = ".".join(str(part) for part in first.get("loc", ()))
        details: dict[str, Any] = {"errors": len(e.errors())}
        if file_path:
            details["file"] = str(file_path)
        if field_path:
            details["field"] = field_path
        parts = [f"File: {file_path}"] if file_path else []
        if field_path:
            parts.append(f"Field: {field_path}")
        parts.append(first.get("msg", str(e)))
        raise ConfigError(" | ".join(parts), details=details) from e
