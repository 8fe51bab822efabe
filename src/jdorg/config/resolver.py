"""Configuration resolution helpers."""

from __future__ import annotations

from collections.abc import Mapping as MappingABC
from copy import deepcopy
from typing import Any, Dict, Iterable, Mapping

import yaml
from pydantic import ValidationError

from .exceptions import ConfigError
from .models import JdorgConfig

ENV_PREFIX = "JDORG__"


def resolve_with_precedence(
    *,
    defaults: JdorgConfig,
    file_overrides: Mapping[str, Any] | None = None,
    env_overrides: Mapping[str, Any] | None = None,
    cli_overrides: Mapping[str, Any] | None = None,
) -> JdorgConfig:
    """Merge configuration sources in order: defaults, file, environment, CLI.

    Args:
        defaults: Baseline configuration.
        file_overrides: Values read from the YAML file.
        env_overrides: Nested values derived from ``JDORG__`` variables.
        cli_overrides: Dotted-key overrides supplied on the command line.

    Returns:
        JdorgConfig: Validated configuration.

    Raises:
        ConfigError: If a source is malformed or the merged values are invalid.
    """
    merged = defaults.model_dump(mode="python")
    sources = (
        ("file", file_overrides),
        ("environment", env_overrides),
        ("cli", cli_overrides),
    )
    for name, source in sources:
        if source is not None:
            merged = _deep_merge(merged, _expand_dotted(source, source_name=name))

    try:
        return JdorgConfig.model_validate(merged)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration values: {exc}") from exc


def env_to_overrides(env: Mapping[str, str]) -> dict[str, Any]:
    """Translate ``JDORG__SECTION__KEY`` variables into a nested mapping.

    Values are parsed as YAML so booleans, numbers, and lists keep their types.

    Args:
        env: Environment mapping to inspect.

    Returns:
        dict[str, Any]: Nested overrides keyed by lower-cased segments.
    """
    overrides: dict[str, Any] = {}
    for key, raw_value in env.items():
        if not key.startswith(ENV_PREFIX):
            continue
        segments = [part.lower() for part in key[len(ENV_PREFIX) :].split("__") if part]
        if not segments:
            continue
        try:
            value: Any = yaml.safe_load(raw_value)
        except yaml.YAMLError:
            value = raw_value
        _assign(overrides, segments, value, source_name="environment")
    return overrides


def flatten_for_env(config: JdorgConfig) -> Dict[str, str]:
    """Flatten the config into ``JDORG__SECTION__KEY`` environment variable mappings."""
    flat: Dict[str, str] = {}

    def _walk(prefix: list[str], value: Any) -> None:
        if isinstance(value, dict) and value:
            for key, child in value.items():
                _walk(prefix + [str(key)], child)
            return
        env_key = ENV_PREFIX + "__".join(part.upper() for part in prefix)
        if isinstance(value, (dict, list)):
            flat[env_key] = yaml.safe_dump(value, default_flow_style=True).strip()
        else:
            flat[env_key] = "null" if value is None else str(value)

    for section, payload in config.model_dump(mode="python").items():
        _walk([section], payload)
    return flat


def parse_assignments(pairs: Iterable[str]) -> dict[str, Any]:
    """Parse ``section.key=value`` strings into dotted overrides.

    Args:
        pairs: Assignment strings as typed on the command line.

    Returns:
        dict[str, Any]: Dotted keys mapped to YAML-parsed values.

    Raises:
        ConfigError: If an assignment is missing its ``=`` separator.
    """
    result: dict[str, Any] = {}
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        if not sep or not key.strip():
            raise ConfigError(f"Expected KEY=VALUE, got {pair!r}.")
        try:
            result[key.strip()] = yaml.safe_load(raw)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Unable to parse value for {key.strip()}: {exc}") from exc
    return result


def _expand_dotted(source: Mapping[str, Any], *, source_name: str) -> dict[str, Any]:
    if not isinstance(source, MappingABC):
        raise ConfigError(f"{source_name.capitalize()} overrides must be a mapping.")

    result: dict[str, Any] = {}
    for key, value in source.items():
        if not isinstance(key, str):
            raise ConfigError(f"{source_name.capitalize()} override keys must be strings.")
        _assign(result, key.split("."), value, source_name=source_name)
    return result


def _assign(target: dict[str, Any], path: list[str], value: Any, *, source_name: str) -> None:
    node = target
    for segment in path[:-1]:
        child = node.setdefault(segment, {})
        if not isinstance(child, dict):
            raise ConfigError(
                f"{source_name.capitalize()} override for {'.'.join(path)} conflicts with "
                "an existing value."
            )
        node = child
    leaf = path[-1]
    if isinstance(value, MappingABC):
        # Nested keys stay literal: index folder numbers contain dots.
        existing = node.get(leaf)
        node[leaf] = _deep_merge(existing if isinstance(existing, dict) else {}, value)
    else:
        node[leaf] = value


def _deep_merge(base: Mapping[str, Any], overrides: Mapping[str, Any]) -> dict[str, Any]:
    merged = {key: deepcopy(value) for key, value in base.items()}
    for key, value in overrides.items():
        current = merged.get(key)
        if isinstance(value, MappingABC) and isinstance(current, MappingABC):
            merged[key] = _deep_merge(current, value)
        else:
            merged[key] = deepcopy(value)
    return merged


__all__ = [
    "ENV_PREFIX",
    "resolve_with_precedence",
    "env_to_overrides",
    "flatten_for_env",
    "parse_assignments",
]
