"""
YAML configuration loading with environment variable overrides.

Overrides use the form PROCSUP_<SECTION>_<KEY>: the first component after
the prefix names the top-level section, the rest is the key within it, so
PROCSUP_SUPERVISOR_WORKER_COUNT=4 sets supervisor.worker_count.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from ..exceptions import ConfigError

DEFAULT_ENV_PREFIX = "PROCSUP_"

# Maximum config file size (1MB)
MAX_CONFIG_SIZE_BYTES = 1024 * 1024


def _check_file_size(path: Path) -> None:
    size = path.stat().st_size
    if size > MAX_CONFIG_SIZE_BYTES:
        raise ConfigError(
            "configuration file too large",
            path=str(path),
            size=size,
            limit=MAX_CONFIG_SIZE_BYTES,
        )


def convert_env_value(value: str) -> bool | int | float | str | list[Any] | None:
    """
    Convert an environment variable string to the matching YAML-ish type.

    "null"/"none"/"" become None, "true"/"false" booleans, comma-separated
    values lists, and numeric strings ints or floats.
    """
    lowered = value.lower()
    if lowered in ("null", "none", ""):
        return None

    if lowered in ("true", "false"):
        return lowered == "true"

    if "," in value:
        return [convert_env_value(v.strip()) for v in value.split(",")]

    try:
        if "." in value:
            return float(value)
        return int(value)
    except ValueError:
        pass

    return value


def env_key_to_path(env_key: str, prefix: str = DEFAULT_ENV_PREFIX) -> list[str]:
    """
    Convert an environment variable name to a [section, key] path.

    Example:
        >>> env_key_to_path("PROCSUP_SUPERVISOR_WORKER_COUNT")
        ['supervisor', 'worker_count']
    """
    remainder = env_key[len(prefix) :].lower()
    section, _, key = remainder.partition("_")
    return [section, key] if key else [section]


def get_env_overrides(
    prefix: str = DEFAULT_ENV_PREFIX, environ: Mapping[str, str] | None = None
) -> dict[str, Any]:
    """
    Collect the overrides the environment would apply, keyed by dotted path.
    """
    environ = environ if environ is not None else os.environ
    overrides = {}
    for name, value in environ.items():
        if not name.startswith(prefix) or len(name) == len(prefix):
            continue
        overrides[".".join(env_key_to_path(name, prefix))] = convert_env_value(value)
    return overrides


def apply_env_overrides(
    data: dict[str, Any],
    prefix: str = DEFAULT_ENV_PREFIX,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Apply environment overrides to a configuration dictionary in place."""
    for dotted, value in get_env_overrides(prefix, environ).items():
        path = dotted.split(".")
        current = data
        for part in path[:-1]:
            if not isinstance(current.get(part), dict):
                current[part] = {}
            current = current[part]
        current[path[-1]] = value
    return data


def load_config(
    path: str | Path | None = None,
    env_prefix: str | None = DEFAULT_ENV_PREFIX,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """
    Load a YAML configuration file and apply environment overrides.

    Args:
        path: YAML file; None starts from an empty configuration
        env_prefix: Override prefix, or None to disable overrides
        environ: Environment to read (default: os.environ)

    Returns:
        Configuration dictionary

    Raises:
        ConfigError: If the file is missing, too large or not valid YAML
    """
    data: dict[str, Any] = {}
    if path is not None:
        path = Path(path)
        if not path.is_file():
            raise ConfigError("configuration file not found", path=str(path))
        _check_file_size(path)
        try:
            with open(path, encoding="utf-8") as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError("invalid YAML", path=str(path)) from e
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ConfigError(
                "configuration root must be a mapping",
                path=str(path),
                type=type(loaded).__name__,
            )
        data = loaded

    if env_prefix:
        apply_env_overrides(data, env_prefix, environ)
    return data
