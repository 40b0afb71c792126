"""
Application Layer - Context Loader

Builds the ``PromptContext`` for a turn from the session's declared scope and
optional project focus. Snapshots are cached on the session's
``agent_metadata["context_cache"]`` with a short TTL keyed by scope identity.

Fetch failures never abort a turn: the loader reports them to the error
sink and returns a degraded context.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Any

import structlog

from turnstream.core.domain.enums import ContextType, ErrorOperation
from turnstream.core.domain.models import (
    ChatSession,
    ContextCacheEntry,
    ContextScope,
    ProjectFocus,
    PromptContext,
)
from turnstream.core.domain.tool_summaries import extract_entity_label
from turnstream.core.interfaces.domain_data import DomainDataFetcherProtocol
from turnstream.core.interfaces.logging import ErrorLoggerProtocol
from turnstream.core.interfaces.sessions import SessionStoreProtocol
from turnstream.core.utils.time import utc_now_iso

CONTEXT_CACHE_VERSION = 1
CONTEXT_CACHE_KEY = "context_cache"
DEFAULT_CACHE_TTL_SECONDS = 120.0
_CACHE_KEY_PREFIX = "v2|ctx"
_CACHE_KEY_LENGTH = 32


@dataclass
class ContextLoadResult:
    """Outcome of ``ContextLoader.load``."""

    context: PromptContext
    from_cache: bool
    cache_key: str
    degraded: bool = False


def build_context_cache_key(scope: ContextScope, focus: ProjectFocus | None = None) -> str:
    """Deterministic hash of scope type, project id and sub-focus."""
    project_id = (focus.project_id if focus else None) or scope.project_id
    focus_type = focus.effective_focus_type if focus else None
    focus_entity_id = focus.effective_focus_entity_id if focus else None
    raw = "|".join(
        [
            _CACHE_KEY_PREFIX,
            scope.context_type.value,
            project_id or "none",
            focus_type or "none",
            focus_entity_id or "none",
        ]
    )
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:_CACHE_KEY_LENGTH]


class ContextLoader:
    """Load (or reuse) the data snapshot behind a context scope."""

    def __init__(
        self,
        *,
        data_fetcher: DomainDataFetcherProtocol,
        session_store: SessionStoreProtocol,
        error_logger: ErrorLoggerProtocol,
        cache_ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        endpoint: str = "/api/v1/chat/stream",
    ) -> None:
        self._data_fetcher = data_fetcher
        self._session_store = session_store
        self._error_logger = error_logger
        self._cache_ttl_seconds = cache_ttl_seconds
        self._endpoint = endpoint
        self._logger = structlog.get_logger(__name__)

    async def load(
        self,
        session: ChatSession,
        scope: ContextScope,
        focus: ProjectFocus | None = None,
    ) -> ContextLoadResult:
        """
        Return the prompt context for ``scope``.

        A cache entry is reused only when its version, key and age all match.
        Otherwise the data is fetched fresh and a new entry is written back to
        the session metadata.

        Args:
            session: Session whose metadata carries the cache entry.
            scope: Effective context scope of the turn.
            focus: Optional sub-focus within a project.

        Returns:
            ContextLoadResult; ``degraded`` is True when the fetch failed.
        """
        cache_key = build_context_cache_key(scope, focus)
        cached = self._read_cache(session, cache_key)
        if cached is not None:
            self._logger.debug(
                "context_cache_hit",
                session_id=session.id,
                context_type=scope.context_type.value,
                cache_key=cache_key,
            )
            return ContextLoadResult(context=cached, from_cache=True, cache_key=cache_key)

        context = self._base_context(scope, focus)
        if not self._needs_fetch(scope, context):
            return ContextLoadResult(context=context, from_cache=False, cache_key=cache_key)

        try:
            data = await self._data_fetcher.fetch(session.user_id, scope, focus)
        except Exception as e:
            self._logger.warning(
                "context_fetch_failed",
                session_id=session.id,
                context_type=scope.context_type.value,
                entity_id=scope.entity_id,
                error=str(e),
            )
            await self._error_logger.log_error(
                e,
                endpoint=self._endpoint,
                operation_type=ErrorOperation.CONTEXT_LOAD.value,
                user_id=session.user_id,
                metadata={
                    "session_id": session.id,
                    "context_type": scope.context_type.value,
                    "entity_id": scope.entity_id,
                },
            )
            return ContextLoadResult(
                context=context, from_cache=False, cache_key=cache_key, degraded=True
            )

        self._apply_data(context, data, focus)
        await self._write_cache(session, cache_key, context)
        self._logger.info(
            "context_loaded",
            session_id=session.id,
            context_type=scope.context_type.value,
            has_data=context.data is not None,
        )
        return ContextLoadResult(context=context, from_cache=False, cache_key=cache_key)

    def _read_cache(self, session: ChatSession, cache_key: str) -> PromptContext | None:
        entry = ContextCacheEntry.from_dict(session.agent_metadata.get(CONTEXT_CACHE_KEY))
        if entry is None:
            return None
        if entry.version != CONTEXT_CACHE_VERSION or entry.key != cache_key:
            return None
        if not entry.is_fresh(self._cache_ttl_seconds):
            return None
        return PromptContext.from_cache_dict(entry.context)

    async def _write_cache(
        self, session: ChatSession, cache_key: str, context: PromptContext
    ) -> None:
        entry = ContextCacheEntry(
            version=CONTEXT_CACHE_VERSION,
            key=cache_key,
            created_at=utc_now_iso(),
            context=context.to_cache_dict(),
        )
        session.agent_metadata[CONTEXT_CACHE_KEY] = entry.to_dict()
        try:
            await self._session_store.update_agent_metadata(
                session.id, {CONTEXT_CACHE_KEY: entry.to_dict()}
            )
        except Exception as e:
            self._logger.warning("context_cache_write_failed", session_id=session.id, error=str(e))
            await self._error_logger.log_error(
                e,
                endpoint=self._endpoint,
                operation_type=ErrorOperation.UPDATE_METADATA.value,
                user_id=session.user_id,
                metadata={"session_id": session.id, "key": CONTEXT_CACHE_KEY},
            )

    @staticmethod
    def _base_context(scope: ContextScope, focus: ProjectFocus | None) -> PromptContext:
        project_id = scope.project_id or (focus.project_id if focus else None)
        return PromptContext(
            context_type=scope.context_type,
            entity_id=scope.entity_id,
            project_id=project_id,
            project_name=focus.project_name if focus else None,
            focus_entity_type=focus.effective_focus_type if focus else None,
            focus_entity_id=focus.effective_focus_entity_id if focus else None,
            focus_entity_name=focus.focus_entity_name if focus else None,
        )

    @staticmethod
    def _needs_fetch(scope: ContextScope, context: PromptContext) -> bool:
        if scope.context_type.is_project_like:
            return bool(context.project_id)
        if scope.context_type is ContextType.DAILY_BRIEF:
            return bool(scope.entity_id)
        return True

    @staticmethod
    def _apply_data(
        context: PromptContext, data: dict[str, Any] | None, focus: ProjectFocus | None
    ) -> None:
        context.data = data
        if not isinstance(data, dict):
            return
        project = data.get("project")
        if isinstance(project, dict) and isinstance(project.get("name"), str):
            context.project_name = project["name"]
        elif focus and focus.project_name:
            context.project_name = focus.project_name
        focus_entity = data.get("focus_entity")
        if isinstance(focus_entity, dict):
            context.focus_entity_name = extract_entity_label(
                focus_entity, context.focus_entity_name
            )
