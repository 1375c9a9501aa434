"""
Logging for procsup.

Extends Python's standard logging with:
- A TRACE level below DEBUG
- Structured extra fields rendered as [key:value]
- Colored console output
- Derived "view" loggers sharing the root's handlers
- Complete disabling with level=False or level="false"
"""

import logging

from .config import LogConfig
from .constants import LogConstants
from ..exceptions import InvalidLogLevelError
from .factory import LoggerFactory
from .formatters import LogFormatter
from .logger import Logger

logging.TRACE = LogConstants.CUSTOM_LEVELS["TRACE"]  # type: ignore[attr-defined]
logging.addLevelName(logging.TRACE, "TRACE")  # type: ignore[attr-defined]
LogConstants.LEVEL_NAMES["trace"] = logging.TRACE  # type: ignore[attr-defined]


def resolve_level(s: str | int | bool) -> int | bool:
    """
    Resolve log level from string, numeric value, or boolean.

    Raises:
        InvalidLogLevelError: If the log level is invalid
    """
    if isinstance(s, bool):
        return s

    if str(s).isnumeric():
        return int(s)

    if isinstance(s, str) and s.lower() in LogConstants.LEVEL_NAMES:
        return LogConstants.LEVEL_NAMES[s.lower()]

    raise InvalidLogLevelError(s)


def create_root_lg(
    level: str | int = "info",
    micros: bool = False,
    colors: bool = True,
) -> Logger:
    """
    Create the "/" root logger.

    Example:
        >>> lg = create_root_lg("debug", colors=False)
    """
    config = LogConfig.from_params(level, micros=micros, colors=colors)
    return LoggerFactory.create_root(config)


def create_lg(
    name: str,
    level: str | int | bool = "info",
    micros: bool = False,
    colors: bool = True,
) -> Logger:
    """
    Create a logger with its own console handler.

    Example:
        >>> lg = create_lg("/proc", "debug")
    """
    config = LogConfig.from_params(level, micros=micros, colors=colors)
    return LoggerFactory.create(name, config)


def derive_lg(lg: Logger, tags: str | list[str]) -> Logger:
    """
    Derive a view logger with tags from a parent logger.

    Example:
        >>> child_lg = derive_lg(parent_lg, "reaper")
    """
    return LoggerFactory.derive(lg, tags)


def default_lg(name: str) -> Logger:
    """
    Logger used by core classes when the caller does not pass one.

    Derived from a shared "/procsup" logger at warning level so library use
    stays quiet unless the caller wires in its own logger.
    """
    base = LoggerFactory.create(
        "/procsup", LogConfig.from_params("warning", colors=False)
    )
    return LoggerFactory.derive(base, name)


__all__ = [
    "Logger",
    "LoggerFactory",
    "LogConfig",
    "LogConstants",
    "LogFormatter",
    "InvalidLogLevelError",
    "resolve_level",
    "create_root_lg",
    "create_lg",
    "derive_lg",
    "default_lg",
]
