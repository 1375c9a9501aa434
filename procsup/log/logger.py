"""
Logger class with structured extra fields.

Every record produced by Logger carries the merged extra mapping (logger-level
fields plus per-call fields) under the ``__procsup__extra`` attribute, which
the formatter renders as ``[key:value]`` pairs. Supervisors and handles log
pids, worker ids and signals this way instead of formatting them into the
message.
"""

import collections
import logging
import sys
from typing import Any

from .config import LogConfig
from .constants import LogConstants

EXTRA_ATTR = "__procsup__extra"

# Longest message prefix echoed when a record cannot be formatted
_PREVIEW_LEN = 80

ExtraMapping = dict[str, Any] | collections.OrderedDict


class Logger(logging.Logger):
    """
    Logger with pre-populated extra fields, a TRACE level and a hard off switch.

    Example:
        lg = LoggerFactory.derive(root, "supervisor", extra={"pool": "web"})
        lg.info("forked worker", extra={"worker": 0, "pid": 4242})
    """

    def __init__(
        self,
        name: str,
        config: LogConfig | None = None,
        extra: ExtraMapping | None = None,
    ):
        config = config if config is not None else LogConfig.from_params("info")
        self._logging_disabled = config.level is False
        level = logging.CRITICAL + 1 if self._logging_disabled else config.level
        super().__init__(name, level)

        self._config = config
        self._extra: ExtraMapping = extra or {}
        # Set by LoggerFactory.derive(); records go to this logger's handlers
        self._root_logger: Logger | None = None

    @property
    def config(self) -> LogConfig:
        return self._config

    @property
    def extra(self) -> dict[str, Any]:
        """Pre-populated extra fields (copy)."""
        return dict(self._extra)

    def get_level(self) -> int | bool:
        """Configured level; False when logging is disabled."""
        return self._config.level

    def _merge_extra(self, extra: ExtraMapping | None) -> ExtraMapping:
        ordered = isinstance(self._extra, collections.OrderedDict) or isinstance(
            extra, collections.OrderedDict
        )
        merged = collections.OrderedDict(self._extra) if ordered else dict(self._extra)
        merged.update(extra or {})
        return merged

    def makeRecord(  # type: ignore[override]
        self,
        name: str,
        level: int,
        fn: str,
        lno: int,
        msg: str,
        args: tuple,
        exc_info: Any | None,
        func: str | None = None,
        extra: dict[str, Any] | None = None,
        sinfo: str | None = None,
    ) -> logging.LogRecord:
        record = super().makeRecord(
            name, level, fn, lno, msg, args, exc_info, func=func, sinfo=sinfo
        )
        setattr(record, EXTRA_ATTR, self._merge_extra(extra))
        return record

    def trace(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log at TRACE level, below DEBUG."""
        level = LogConstants.CUSTOM_LEVELS["TRACE"]
        if self.isEnabledFor(level):
            self._log(level, msg, args, **kwargs)

    def _log(  # type: ignore[override]
        self, level: int, msg: str, args: tuple, **kwargs: Any
    ) -> None:
        if self._logging_disabled:
            return
        try:
            super()._log(level, msg, args, **kwargs)
        except (TypeError, ValueError) as e:
            text = str(msg)
            preview = text[:_PREVIEW_LEN] + ("..." if len(text) > _PREVIEW_LEN else "")
            sys.stderr.write(
                f"procsup: log format error in {self.name}: "
                f"{type(e).__name__}: {e} (msg={preview!r} args={args!r})\n"
            )

    def callHandlers(self, record: logging.LogRecord) -> None:
        """Hand the record to this logger's handlers, or the root's for views."""
        if self._root_logger is None:
            super().callHandlers(record)
            return
        for handler in self._root_logger.handlers:
            if record.levelno >= handler.level:
                handler.handle(record)
