"""Configuration management for jdorg."""

from __future__ import annotations

import os
import textwrap
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

import yaml

from .exceptions import ConfigError
from .models import JdorgConfig
from .resolver import (
    ENV_PREFIX,
    env_to_overrides,
    flatten_for_env,
    parse_assignments,
    resolve_with_precedence,
)

DEFAULT_CONFIG_PATH = Path("~/.jdorg/config.yaml")
_CONFIG_HEADER = textwrap.dedent(
    """\
    # jdorg configuration file
    # Generated automatically; manage via `jdorg config set` or edit by hand.
    # Quote index keys such as "11.01" so YAML keeps them as strings.
    """
)


class ConfigManager:
    """Load and persist configuration data, applying precedence rules."""

    def __init__(
        self,
        config_path: Path | None = None,
        *,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self._config_path = (config_path or DEFAULT_CONFIG_PATH).expanduser()
        self._env = env if env is not None else os.environ

    @property
    def config_path(self) -> Path:
        """Return the resolved configuration path."""
        return self._config_path

    def load(
        self,
        *,
        cli_overrides: Mapping[str, Any] | None = None,
        include_env: bool = True,
        ensure_file: bool = True,
    ) -> JdorgConfig:
        """Load configuration data from disk, applying precedence rules.

        Args:
            cli_overrides: Dotted-key overrides with the highest precedence.
            include_env: Whether ``JDORG__`` environment variables are applied.
            ensure_file: Whether to create a default file when none exists.

        Returns:
            JdorgConfig: Validated configuration.
        """
        if ensure_file:
            self.ensure_exists()

        env_data = env_to_overrides(self._env) if include_env else None
        return resolve_with_precedence(
            defaults=JdorgConfig(),
            file_overrides=self._read_file(),
            env_overrides=env_data or None,
            cli_overrides=cli_overrides,
        )

    def load_file_overrides(self) -> dict[str, Any]:
        """Return raw overrides stored on disk."""
        return self._read_file()

    def save(self, config: JdorgConfig | Mapping[str, Any]) -> None:
        """Persist configuration data to disk."""
        if isinstance(config, JdorgConfig):
            data = config.model_dump(mode="python")
        else:
            data = dict(config)
        self._write_file(data)

    def set_values(self, assignments: Mapping[str, Any]) -> JdorgConfig:
        """Apply dotted assignments to the file layer and persist the result.

        Args:
            assignments: Dotted keys mapped to new values.

        Returns:
            JdorgConfig: Configuration resolved from the updated file.

        Raises:
            ConfigError: If the updated values do not validate.
        """
        file_data = self._read_file()
        updated = resolve_with_precedence(
            defaults=JdorgConfig(),
            file_overrides=file_data,
            cli_overrides=assignments,
        )
        self.save(updated)
        return updated

    def ensure_exists(self) -> Path:
        """Create a configuration file with defaults if one does not exist."""
        if not self._config_path.exists():
            self._write_file(JdorgConfig().model_dump(mode="python"))
        return self._config_path

    def read_text(self) -> str:
        """Return the current configuration file contents."""
        if not self._config_path.exists():
            return ""
        return self._config_path.read_text(encoding="utf-8")

    # Internal helpers -------------------------------------------------

    def _read_file(self) -> dict[str, Any]:
        if not self._config_path.exists():
            return {}

        try:
            raw = yaml.safe_load(self._config_path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Failed to parse configuration file: {exc}") from exc

        if not isinstance(raw, dict):
            raise ConfigError("Configuration file must contain a mapping at the top level.")
        return raw

    def _write_file(self, data: Mapping[str, Any]) -> None:
        self._config_path.parent.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        body = yaml.safe_dump(dict(data), sort_keys=False)
        self._config_path.write_text(
            f"{_CONFIG_HEADER}# Last updated: {stamp}\n{body}", encoding="utf-8"
        )


__all__ = [
    "ConfigManager",
    "DEFAULT_CONFIG_PATH",
    "ENV_PREFIX",
    "JdorgConfig",
    "resolve_with_precedence",
    "flatten_for_env",
    "parse_assignments",
    "ConfigError",
]
