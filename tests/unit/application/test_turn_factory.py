"""Unit tests for TurnFactory wiring."""

from unittest.mock import AsyncMock

from turnstream.application.factory import TurnFactory
from turnstream.application.turn_orchestrator import TurnOrchestrator
from turnstream.core.domain.config_schema import validate_config


def _factory(tmp_path, **overrides):
    data = {"persistence": {"work_dir": str(tmp_path)}}
    data.update(overrides)
    return TurnFactory(config=validate_config(data))


class TestTurnFactory:
    """Tests for TurnFactory."""

    def test_settings_follow_config(self, tmp_path):
        """Turn settings mirror the configuration sections."""
        factory = _factory(
            tmp_path,
            tools={"max_tool_rounds": 3, "repetition_limit": 4},
            history={"compression_threshold": 6, "tail_messages": 2},
            last_turn={"prefix_classification": False},
        )

        settings = factory.turn_settings()

        assert settings.max_tool_rounds == 3
        assert settings.repetition_limit == 4
        assert settings.history.compression_threshold == 6
        assert settings.history.tail_messages == 2
        assert settings.prefix_classification is False

    def test_stores_are_cached(self, tmp_path):
        """Adapters are built once per factory."""
        factory = _factory(tmp_path)

        assert factory.session_store() is factory.session_store()
        assert factory.domain_store() is factory.domain_store()
        assert factory.error_logger() is factory.error_logger()

    def test_create_orchestrator_with_injected_provider(self, tmp_path):
        """An injected LLM provider is used for turns and reconciliation."""
        provider = AsyncMock()
        factory = _factory(tmp_path)

        orchestrator = factory.create_orchestrator(llm_provider=provider)

        assert isinstance(orchestrator, TurnOrchestrator)
        assert orchestrator.reconciler is not None
        assert orchestrator._tool_gateway.registry.names() == [
            "change_context",
            "get_project",
            "list_tasks",
            "create_task",
            "list_projects",
        ]

    def test_reconciler_can_be_disabled(self, tmp_path):
        """With reconciliation disabled no reconciler is wired."""
        factory = _factory(tmp_path, reconciler={"enabled": False})

        orchestrator = factory.create_orchestrator(llm_provider=AsyncMock())

        assert orchestrator.reconciler is None
        assert orchestrator.settings.reconciler_enabled is False

    def test_tools_override(self, tmp_path):
        """An explicit tool list replaces the demo tools."""
        factory = _factory(tmp_path)

        orchestrator = factory.create_orchestrator(llm_provider=AsyncMock(), tools=[])

        assert orchestrator._tool_gateway.registry.names() == []
