"""FastAPI dependency injection providers.

Centralizes dependency creation for API routes via ``Depends()``; tests swap
them through ``app.dependency_overrides``.
"""

from __future__ import annotations

from functools import lru_cache

from fastapi import Header

from turnstream.application.factory import TurnFactory
from turnstream.application.turn_orchestrator import TurnOrchestrator
from turnstream.core.interfaces.sessions import SessionStoreProtocol

DEFAULT_USER_ID = "local-user"


@lru_cache(maxsize=1)
def get_factory() -> TurnFactory:
    """Provide a shared TurnFactory (reset with ``get_factory.cache_clear()``)."""
    return TurnFactory()


def get_orchestrator() -> TurnOrchestrator:
    return get_factory().get_orchestrator()


def get_session_store() -> SessionStoreProtocol:
    return get_factory().session_store()


def get_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Caller identity from ``X-User-Id``; authentication happens upstream."""
    return (x_user_id or "").strip() or DEFAULT_USER_ID
