"""
Configuration for the logging system.

LogConfig is immutable so a logger, its handler and its formatter always agree
on the settings they were created with.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class LogConfig:
    """
    Immutable logger configuration.

    Attributes:
        level: Numeric level, or False to disable logging
        micros: Append microseconds to timestamps
        colors: Emit ANSI colors
    """

    level: int | bool = logging.INFO
    micros: bool = False
    colors: bool = True

    @staticmethod
    def _resolve_level(level: str | int | bool) -> int | bool:
        """Resolve level parameter to int or False."""
        from .constants import LogConstants
        from ..exceptions import InvalidLogLevelError

        if isinstance(level, bool):
            return False if not level else logging.INFO
        elif isinstance(level, str):
            if level.isnumeric():
                return int(level)
            elif level.lower() in LogConstants.LEVEL_NAMES:
                return LogConstants.LEVEL_NAMES[level.lower()]
            else:
                raise InvalidLogLevelError(level)
        return level

    @classmethod
    def from_params(
        cls,
        level: str | int | bool,
        micros: bool = False,
        colors: bool = True,
    ) -> LogConfig:
        """
        Create LogConfig from individual parameters.

        Args:
            level: Log level (string name, numeric value, or False to disable logging)
            micros: Whether to show microsecond precision
            colors: Whether to enable colored output

        Returns:
            LogConfig instance
        """
        return cls(level=cls._resolve_level(level), micros=micros, colors=colors)

    @staticmethod
    def _navigate_to_section(config_dict: dict, section: str) -> dict:
        """Navigate to specified section in config dict."""
        current: Any = config_dict
        for part in section.split("."):
            if isinstance(current, dict) and part in current:
                current = current[part]
            else:
                return {}
        return current if isinstance(current, dict) else {}

    @classmethod
    def from_config(cls, config_dict: dict, section: str = "logging") -> LogConfig:
        """
        Create LogConfig from a configuration dictionary.

        Args:
            config_dict: Configuration dictionary (e.g., from load_config())
            section: Dotted path of the logging section (default: "logging")

        Returns:
            LogConfig instance

        Example:
            config = load_config("etc/procsup.yaml")
            log_config = LogConfig.from_config(config, "logging")
        """
        current = cls._navigate_to_section(config_dict, section)

        level = current.get("level", "info")
        micros = current.get("microseconds", current.get("micros", False))
        colors = current.get("colors", True)
        if isinstance(colors, dict):
            colors = colors.get("enabled", True)

        if level == "false":
            level = False

        return cls.from_params(level=level, micros=micros, colors=colors)
