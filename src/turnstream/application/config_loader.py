"""
Config Loader
=============

Loads and validates the turnstream YAML configuration.

Search order:
1. ``$TURNSTREAM_CONFIG`` (explicit path)
2. The bundled ``configs/turnstream.yaml``
3. Built-in defaults

``TURNSTREAM_WORK_DIR`` and ``TURNSTREAM_LLM_CONFIG`` override the
corresponding settings after the file is read.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import structlog
import yaml

from turnstream.core.domain.config_schema import TurnstreamConfig, validate_config
from turnstream.core.domain.errors import ConfigError

logger = structlog.get_logger(__name__)

CONFIG_ENV_VAR = "TURNSTREAM_CONFIG"
WORK_DIR_ENV_VAR = "TURNSTREAM_WORK_DIR"
LLM_CONFIG_ENV_VAR = "TURNSTREAM_LLM_CONFIG"

BUNDLED_CONFIG_DIR = Path(__file__).resolve().parent.parent / "configs"


class ConfigLoader:
    """Resolve, read and validate the service configuration.

    Args:
        config_dir: Directory holding ``turnstream.yaml`` and
            ``llm_config.yaml``. Defaults to the bundled configs.
        environ: Environment mapping (defaults to ``os.environ``).
    """

    def __init__(
        self,
        config_dir: Path | None = None,
        environ: dict[str, str] | None = None,
    ) -> None:
        self._config_dir = config_dir or BUNDLED_CONFIG_DIR
        self._environ = environ if environ is not None else dict(os.environ)
        self._logger = logger.bind(component="config_loader")

    @property
    def config_dir(self) -> Path:
        return self._config_dir

    def load(self, path: Path | str | None = None) -> TurnstreamConfig:
        """Load the configuration.

        Args:
            path: Explicit config file; overrides the search order.

        Returns:
            Validated TurnstreamConfig.

        Raises:
            ConfigError: If an explicit file is missing, unreadable or invalid.
        """
        config_path = self._resolve_path(path)
        data: dict[str, Any] = {}
        if config_path is not None:
            data = self._read_yaml(config_path)

        config = validate_config(data, file_path=config_path)
        config = self._apply_env_overrides(config)
        config.llm.config_path = str(self._resolve_llm_config(config.llm.config_path, config_path))

        self._logger.debug(
            "config_loaded",
            path=str(config_path) if config_path else None,
            work_dir=config.persistence.work_dir,
            llm_config=config.llm.config_path,
        )
        return config

    def _resolve_path(self, path: Path | str | None) -> Path | None:
        explicit = path or self._environ.get(CONFIG_ENV_VAR)
        if explicit:
            explicit_path = Path(explicit)
            if not explicit_path.exists():
                raise ConfigError(
                    f"Config file not found: {explicit_path}",
                    details={"file": str(explicit_path)},
                )
            return explicit_path

        bundled = self._config_dir / "turnstream.yaml"
        if bundled.exists():
            return bundled
        self._logger.info("config_using_defaults", config_dir=str(self._config_dir))
        return None

    @staticmethod
    def _read_yaml(path: Path) -> dict[str, Any]:
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"File: {path} | Invalid YAML: {e}", details={"file": str(path)}) from e
        if not isinstance(data, dict):
            raise ConfigError(
                f"File: {path} | Top-level YAML must be a mapping", details={"file": str(path)}
            )
        return data

    def _apply_env_overrides(self, config: TurnstreamConfig) -> TurnstreamConfig:
        work_dir = self._environ.get(WORK_DIR_ENV_VAR)
        if work_dir:
            config.persistence.work_dir = work_dir
        llm_config = self._environ.get(LLM_CONFIG_ENV_VAR)
        if llm_config:
            config.llm.config_path = llm_config
        return config

    def _resolve_llm_config(self, value: str, config_path: Path | None) -> Path:
        """Resolve a relative LLM config path (cwd, then config file dir, then bundled)."""
        candidate = Path(value)
        if candidate.is_absolute() or candidate.exists():
            return candidate
        bases = [config_path.parent] if config_path else []
        bases.append(self._config_dir)
        for base in bases:
            for option in (base / candidate, base / candidate.name):
                if option.exists():
                    return option
        return candidate
