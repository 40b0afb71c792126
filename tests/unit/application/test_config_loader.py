"""
Unit tests for ConfigLoader.

Tests verify:
- Bundled defaults load and validate
- Explicit paths and environment overrides
- Clear errors for missing or invalid files
"""

from pathlib import Path

import pytest
import yaml

from turnstream.application.config_loader import (
    CONFIG_ENV_VAR,
    LLM_CONFIG_ENV_VAR,
    WORK_DIR_ENV_VAR,
    ConfigLoader,
)
from turnstream.core.domain.errors import ConfigError


@pytest.fixture
def config_dir(tmp_path):
    """Config directory with a minimal turnstream.yaml and llm_config.yaml."""
    (tmp_path / "llm_config.yaml").write_text(
        yaml.safe_dump({"default_model": "main", "models": {"main": "gpt-4.1"}}),
        encoding="utf-8",
    )
    (tmp_path / "turnstream.yaml").write_text(
        yaml.safe_dump(
            {
                "persistence": {"work_dir": str(tmp_path / "data")},
                "llm": {"config_path": "llm_config.yaml"},
                "tools": {"max_tool_rounds": 4},
            }
        ),
        encoding="utf-8",
    )
    return tmp_path


class TestConfigLoader:
    """Tests for ConfigLoader.load."""

    def test_bundled_config_loads(self):
        """The packaged configuration validates as-is."""
        config = ConfigLoader(environ={}).load()

        assert config.llm.model == "main"
        assert Path(config.llm.config_path).name == "llm_config.yaml"
        assert Path(config.llm.config_path).exists()

    def test_loads_from_config_dir(self, config_dir):
        """Values come from the directory's turnstream.yaml."""
        config = ConfigLoader(config_dir=config_dir, environ={}).load()

        assert config.tools.max_tool_rounds == 4
        assert config.tools.repetition_limit == 3
        assert Path(config.llm.config_path) == config_dir / "llm_config.yaml"

    def test_defaults_without_file(self, tmp_path):
        """An empty config directory falls back to built-in defaults."""
        config = ConfigLoader(config_dir=tmp_path, environ={}).load()

        assert config.persistence.work_dir == ".turnstream"
        assert config.context.cache_ttl_seconds == 120.0

    def test_env_var_selects_file(self, config_dir, tmp_path_factory):
        """TURNSTREAM_CONFIG points at an explicit file."""
        other = tmp_path_factory.mktemp("other") / "custom.yaml"
        other.write_text(yaml.safe_dump({"tools": {"max_tool_rounds": 2}}), encoding="utf-8")

        config = ConfigLoader(config_dir=config_dir, environ={CONFIG_ENV_VAR: str(other)}).load()

        assert config.tools.max_tool_rounds == 2

    def test_env_overrides(self, config_dir):
        """Work dir and LLM config can be overridden from the environment."""
        environ = {WORK_DIR_ENV_VAR: "/srv/turnstream", LLM_CONFIG_ENV_VAR: "/etc/llm.yaml"}

        config = ConfigLoader(config_dir=config_dir, environ=environ).load()

        assert config.persistence.work_dir == "/srv/turnstream"
        assert config.llm.config_path == "/etc/llm.yaml"

    def test_missing_explicit_file(self, config_dir):
        """A missing explicit file is a ConfigError naming the file."""
        with pytest.raises(ConfigError) as exc_info:
            ConfigLoader(config_dir=config_dir, environ={}).load(config_dir / "nope.yaml")

        assert "nope.yaml" in exc_info.value.message

    def test_invalid_yaml(self, tmp_path):
        """Broken YAML is reported with the file path."""
        path = tmp_path / "broken.yaml"
        path.write_text("tools: [unclosed", encoding="utf-8")

        with pytest.raises(ConfigError) as exc_info:
            ConfigLoader(config_dir=tmp_path, environ={}).load(path)

        assert exc_info.value.details["file"] == str(path)

    def test_non_mapping_yaml(self, tmp_path):
        """A YAML list at the top level is rejected."""
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")

        with pytest.raises(ConfigError):
            ConfigLoader(config_dir=tmp_path, environ={}).load(path)

    def test_schema_violation(self, tmp_path):
        """Out-of-range values fail validation with the field path."""
        path = tmp_path / "bad.yaml"
        path.write_text(yaml.safe_dump({"tools": {"repetition_limit": 1}}), encoding="utf-8")

        with pytest.raises(ConfigError) as exc_info:
            ConfigLoader(config_dir=tmp_path, environ={}).load(path)

        assert exc_info.value.details["field"] == "tools.repetition_limit"
