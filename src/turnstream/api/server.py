import logging
import os
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from turnstream import __version__
from turnstream.api.dependencies import get_factory
from turnstream.api.errors import ERROR_HEADER, to_http_exception
from turnstream.api.routes import chat, health, sessions
from turnstream.core.domain.errors import TurnstreamError

# Configure logging based on LOGLEVEL environment variable
loglevel = os.getenv("LOGLEVEL", "INFO").upper()
log_level_map = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}
log_level = log_level_map.get(loglevel, logging.INFO)

logging.basicConfig(level=log_level, format="%(message)s")

for _ln in ["LiteLLM", "litellm", "httpcore", "httpx", "openai"]:
    logging.getLogger(_ln).setLevel(logging.ERROR)

structlog.configure(
    wrapper_class=structlog.make_filtering_bound_logger(log_level),
)

logger = structlog.get_logger()


async def turnstream_http_exception_handler(
    request: Request,
    exc: HTTPException,
) -> JSONResponse:
    """Return standardized error responses for turnstream exceptions."""
    if exc.headers and exc.headers.get(ERROR_HEADER) == "1" and isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content=exc.detail, headers=exc.headers)
    return await http_exception_handler(request, exc)


async def turnstream_error_handler(request: Request, exc: TurnstreamError) -> JSONResponse:
    """Domain errors that escape a route before a stream opens."""
    http_exc = to_http_exception(exc)
    return JSONResponse(
        status_code=http_exc.status_code, content=http_exc.detail, headers=http_exc.headers
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for FastAPI startup/shutdown events."""
    await logger.ainfo("fastapi.startup", message="turnstream API starting...")
    yield
    # Let detached agent-state reconciliations finish before exit
    if get_factory.cache_info().currsize:
        orchestrator = get_factory().get_orchestrator()
        if orchestrator.reconciler is not None:
            await orchestrator.reconciler.drain()
    await logger.ainfo("fastapi.shutdown", message="turnstream API shutting down...")


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    app = FastAPI(
        title="turnstream Chat API",
        description="Streaming chat turns with tools, context scopes and agent state",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_exception_handler(HTTPException, turnstream_http_exception_handler)
    app.add_exception_handler(TurnstreamError, turnstream_error_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(chat.router, prefix="/api/v1", tags=["chat"])
    app.include_router(sessions.router, prefix="/api/v1", tags=["sessions"])
    app.include_router(health.router, prefix="/api/v1", tags=["health"])
    return app


app = create_app()
