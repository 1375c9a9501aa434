"""
Log formatter for the logging system.

Output layout:
    [12:34:56,789] [I] spawned process          [pid:4242] [4241] [/proc]

The message is padded to a fixed rule width so extra fields line up, then
the process id and logger name are appended.
"""

import collections
import logging
import re
from typing import Any

from .config import LogConfig
from .constants import LogConstants
from .logger import EXTRA_ATTR

# Pattern to match ANSI escape sequences
_ANSI_PATTERN = re.compile(r"\x1b\[[0-9;]*m")


def _visual_len(text: str) -> int:
    """Calculate visual width of text, excluding ANSI escape codes."""
    if "\x1b" not in text:
        return len(text)
    return len(_ANSI_PATTERN.sub("", text))


def _gray(level: int) -> str:
    level = max(0, min(level, LogConstants.GRAY_MAX_LEVELS - 1))
    return f"\x1b[38;5;{LogConstants.GRAY_BASE + level}"


def _ordered_keys(extra: dict[str, Any]) -> list[str]:
    if isinstance(extra, collections.OrderedDict):
        return list(extra.keys())
    return sorted(extra.keys())


def _render_value(value: Any) -> str:
    if isinstance(value, BaseException):
        return f"{value.__class__.__name__}: {value}"
    if isinstance(value, (list, tuple, set)):
        return ",".join(str(v) for v in value)
    return str(value)


class PreFormatter(logging.Formatter):
    """Standard formatter with optional microsecond suffix on timestamps."""

    def __init__(self, fmt: str, micros: bool) -> None:
        self._micros = micros
        super().__init__(fmt)

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        s = super().formatTime(record)
        if self._micros:
            micros = int((record.created % 1) * 1000000) % 1000
            s += f".{micros:03d}"
        return s


class LogFormatter(logging.Formatter):
    """
    Formatter with structured extra fields and optional ANSI colors.

    Extra fields are rendered sorted by key unless the record carries an
    OrderedDict, in which case insertion order is kept.
    """

    def __init__(self, config: LogConfig):
        """
        Initialize the log formatter.

        Args:
            config: Logger configuration
        """
        super().__init__()
        self._config = config
        self._pre_formatter = PreFormatter(LogConstants.DEFAULT_FORMAT, config.micros)

    @property
    def config(self) -> LogConfig:
        return self._config

    def format(self, record: logging.LogRecord) -> str:
        """
        Format a log record.

        Args:
            record: Log record to format

        Returns:
            Formatted log message
        """
        width = self._calculate_width(record)
        if self._config.colors:
            fmt = self._format_colored(record, width)
        else:
            fmt = self._format_plain(record, width)

        self._pre_formatter._fmt = fmt
        self._pre_formatter._style._fmt = fmt
        return self._pre_formatter.format(record)

    def _calculate_width(self, record: logging.LogRecord) -> int:
        # "[" + timestamp + "] [" + level + "] " + message
        timestamp_len = 16 if self._config.micros else 12
        return 1 + timestamp_len + 4 + 1 + 2 + _visual_len(record.getMessage())

    def _padding(self, width: int) -> str:
        rule = (
            LogConstants.MICRO_RULE_WIDTH
            if self._config.micros
            else LogConstants.DEFAULT_RULE_WIDTH
        )
        return " " * max(1, rule - width)

    def _extra_fields(self, record: logging.LogRecord) -> list[tuple[str, str]]:
        extra = getattr(record, EXTRA_ATTR, None)
        if not extra:
            return []
        # Escape % so the rendered values survive the second formatting pass
        return [
            (key, _render_value(extra[key]).replace("%", "%%"))
            for key in _ordered_keys(extra)
        ]

    def _format_plain(self, record: logging.LogRecord, width: int) -> str:
        fmt = LogConstants.DEFAULT_FORMAT + self._padding(width)
        fields = self._extra_fields(record)
        if fields:
            fmt += " ".join(f"[{k}:{v}]" for k, v in fields) + " "
        fmt += "[%(process)d] [%(name)s]"
        return fmt

    def _format_colored(self, record: logging.LogRecord, width: int) -> str:
        col = (
            LogConstants.LEVEL_COLORS.get(record.levelno) or LogConstants.DEFAULT_COLOR
        )
        bold = col + ";1m"
        col += "m"
        reset = LogConstants.RESET

        fmt = col + "[%(asctime)s] [" + bold + "%(levelname).1s" + reset + col + "] "
        fmt += bold + "%(message)s" + reset + col
        fmt += self._padding(width)

        fields = self._extra_fields(record)
        if fields:
            fmt += " ".join(
                f"{col}{k}[{bold}{v}{reset}{col}]" for k, v in fields
            )
            fmt += " "

        meta = _gray(9) + "m"
        fmt += f"{meta}[%(process)d] [%(name)s]{reset}"
        return fmt
