import os
from pathlib import Path

from fastapi import APIRouter, status
from pydantic import BaseModel

from turnstream import __version__
from turnstream.api.errors import http_exception
from turnstream.application.config_loader import ConfigLoader
from turnstream.core.domain.errors import ConfigError

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    checks: dict[str, str] | None = None


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Liveness probe - is the service running?"""
    return HealthResponse(status="healthy", version=__version__)


@router.get("/health/ready", response_model=HealthResponse)
async def readiness_check() -> HealthResponse:
    """Readiness probe - can the service handle requests?

    Verifies that the configuration validates and the LLM config exists.
    """
    checks: dict[str, str] = {}

    try:
        config = ConfigLoader().load()
        checks["config"] = "ok"
    except ConfigError as e:
        checks["config"] = f"failed: {e.message}"
        raise http_exception(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            code="not_ready",
            message="Configuration invalid",
            details=checks,
        )

    if Path(config.llm.config_path).exists():
        checks["llm_config"] = "ok"
    else:
        checks["llm_config"] = "missing"
        raise http_exception(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            code="not_ready",
            message="LLM configuration missing",
            details=checks,
        )

    # Check LLM API key availability (without making a call)
    llm_key_set = bool(
        os.getenv("OPENAI_API_KEY")
        or os.getenv("ANTHROPIC_API_KEY")
        or os.getenv("AZURE_API_KEY")
    )
    checks["llm_api_key"] = "ok" if llm_key_set else "not set"

    return HealthResponse(status="ready", version=__version__, checks=checks)
