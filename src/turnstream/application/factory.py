"""Application Layer - Turn Factory.

Dependency injection factory that wires configuration into the concrete
infrastructure adapters and returns a ready ``TurnOrchestrator``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import structlog

from turnstream.application.agent_state_reconciler import AgentStateReconciler
from turnstream.application.config_loader import ConfigLoader
from turnstream.application.context_loader import ContextLoader
from turnstream.application.tool_gateway import ToolGateway, ToolRegistry
from turnstream.application.turn_orchestrator import TurnOrchestrator, TurnSettings
from turnstream.core.domain.config_schema import TurnstreamConfig
from turnstream.core.domain.history_composer import HistoryComposerSettings
from turnstream.core.interfaces.llm import LLMProviderProtocol
from turnstream.core.interfaces.logging import ErrorLoggerProtocol
from turnstream.core.interfaces.sessions import SessionStoreProtocol
from turnstream.core.interfaces.tools import ToolProtocol


class TurnFactory:
    """Factory for creating TurnOrchestrator instances with dependency injection.

    Infrastructure adapters are built lazily and cached, so the API and the
    CLI share one session store and one LLM service per factory.

    Args:
        config: Validated configuration. Loaded via ``ConfigLoader`` when None.
        config_path: Explicit config file, used only when ``config`` is None.
    """

    def __init__(
        self,
        config: TurnstreamConfig | None = None,
        config_path: str | Path | None = None,
    ) -> None:
        self.config = config or ConfigLoader().load(config_path)
        self.logger = structlog.get_logger().bind(component="turn_factory")
        self._llm_provider: LLMProviderProtocol | None = None
        self._session_store: SessionStoreProtocol | None = None
        self._domain_store: Any = None
        self._error_logger: ErrorLoggerProtocol | None = None
        self._orchestrator: TurnOrchestrator | None = None

    # ------------------------------------------------------------------
    # Infrastructure
    # ------------------------------------------------------------------

    def llm_provider(self) -> LLMProviderProtocol:
        if self._llm_provider is None:
            from turnstream.infrastructure.llm.litellm_service import LiteLLMService

            self._llm_provider = LiteLLMService(self.config.llm.config_path)
        return self._llm_provider

    def session_store(self) -> SessionStoreProtocol:
        if self._session_store is None:
            from turnstream.infrastructure.persistence.file_session_store import FileSessionStore

            self._session_store = FileSessionStore(self.config.persistence.work_dir)
        return self._session_store

    def domain_store(self) -> Any:
        """File domain store; serves data fetches, access checks and tools."""
        if self._domain_store is None:
            from turnstream.infrastructure.persistence.file_domain_store import FileDomainStore

            self._domain_store = FileDomainStore(self.config.persistence.work_dir)
        return self._domain_store

    def error_logger(self) -> ErrorLoggerProtocol:
        if self._error_logger is None:
            from turnstream.infrastructure.logging.error_logger import StructlogErrorLogger

            self._error_logger = StructlogErrorLogger()
        return self._error_logger

    def tools(self) -> list[ToolProtocol]:
        from turnstream.infrastructure.tools.domain_tools import build_domain_tools

        return list(build_domain_tools(self.domain_store()))

    # ------------------------------------------------------------------
    # Application services
    # ------------------------------------------------------------------

    def turn_settings(self) -> TurnSettings:
        cfg = self.config
        return TurnSettings(
            model=cfg.llm.model,
            history_limit=cfg.context.history_limit,
            token_budget=cfg.context.token_budget,
            max_tool_rounds=cfg.tools.max_tool_rounds,
            repetition_limit=cfg.tools.repetition_limit,
            max_tools_per_turn=cfg.tools.max_tools_per_turn,
            reconciler_enabled=cfg.reconciler.enabled,
            prefix_classification=cfg.last_turn.prefix_classification,
            history=HistoryComposerSettings(
                compression_threshold=cfg.history.compression_threshold,
                tail_messages=cfg.history.tail_messages,
                summary_max_chars=cfg.history.summary_max_chars,
                hint_max_chars=cfg.history.hint_max_chars,
            ),
        )

    def create_orchestrator(
        self,
        *,
        llm_provider: LLMProviderProtocol | None = None,
        tools: list[ToolProtocol] | None = None,
    ) -> TurnOrchestrator:
        """
        Build a TurnOrchestrator.

        Args:
            llm_provider: Override the configured LLM service.
            tools: Override the default tool set.

        Returns:
            A new orchestrator sharing this factory's stores.
        """
        cfg = self.config
        provider = llm_provider or self.llm_provider()
        store = self.session_store()
        domain = self.domain_store()
        error_logger = self.error_logger()

        registry = ToolRegistry(tools if tools is not None else self.tools())
        gateway = ToolGateway(registry, timeout_seconds=cfg.tools.tool_timeout_seconds)
        context_loader = ContextLoader(
            data_fetcher=domain,
            session_store=store,
            error_logger=error_logger,
            cache_ttl_seconds=cfg.context.cache_ttl_seconds,
        )
        reconciler = None
        if cfg.reconciler.enabled:
            reconciler = AgentStateReconciler(
                llm_provider=provider,
                session_store=store,
                error_logger=error_logger,
                model=cfg.llm.reconciler_model,
                temperature=cfg.reconciler.temperature,
            )

        self.logger.info(
            "orchestrator_created",
            tools=registry.names(),
            model=cfg.llm.model,
            reconciler=reconciler is not None,
        )
        return TurnOrchestrator(
            llm_provider=provider,
            session_store=store,
            context_loader=context_loader,
            tool_gateway=gateway,
            access_checker=domain,
            error_logger=error_logger,
            reconciler=reconciler,
            settings=self.turn_settings(),
        )

    def get_orchestrator(self) -> TurnOrchestrator:
        """Shared orchestrator instance (created on first use)."""
        if self._orchestrator is None:
            self._orchestrator = self.create_orchestrator()
        return self._orchestrator
