"""
Factory for creating and configuring loggers.

Loggers are named with "/"-separated paths ("/", "/proc", "/supervisor/reaper").
Root loggers own a console handler; derived loggers are views that share the
root's handlers.
"""

import collections
import logging
import sys
from typing import Any, TextIO, cast

from .config import LogConfig
from .formatters import LogFormatter
from .logger import Logger


class LoggerFactory:
    """Factory for creating and configuring loggers."""

    @staticmethod
    def create_root(config: LogConfig, logger_class: type[Logger] = Logger) -> Logger:
        """
        Create a root logger with the specified configuration.

        Example:
            >>> config = LogConfig.from_params(level="info", colors=False)
            >>> lg = LoggerFactory.create_root(config)
            >>> lg.info("supervisor started")
            [12:34:56,789] [I] supervisor started [1234] [/]
        """
        return LoggerFactory.create("/", config, logger_class)

    @staticmethod
    def _setup_console_handler(
        config: LogConfig, stream: TextIO | None = None
    ) -> logging.Handler:
        handler = logging.StreamHandler(stream if stream is not None else sys.stdout)
        if config.level is not False:
            handler.setLevel(config.level)
        handler.setFormatter(LogFormatter(config))
        return handler

    @staticmethod
    def _check_existing_logger(name: str) -> Logger | None:
        existing = logging.root.manager.loggerDict.get(name)
        if isinstance(existing, Logger):
            return existing
        return None

    @staticmethod
    def create(
        name: str,
        config: LogConfig,
        logger_class: type[Logger] = Logger,
        extra: dict[str, Any] | collections.OrderedDict | None = None,
        stream: TextIO | None = None,
    ) -> Logger:
        """
        Create a logger with its own console handler.

        Returns the existing logger when one with the same name was already
        created.

        Args:
            name: Logger name
            config: Logger configuration
            logger_class: Logger class to use
            extra: Pre-populated extra fields to include in all log records
            stream: Output stream for the console handler (default: stdout)

        Returns:
            Configured logger instance
        """
        existing = LoggerFactory._check_existing_logger(name)
        if existing:
            return existing

        lg = logger_class(name, config, extra)
        lg.addHandler(LoggerFactory._setup_console_handler(config, stream))
        lg.propagate = False
        lg.parent = logging.root

        logging.root.manager.loggerDict[name] = lg
        lg.trace(
            "created logger",
            extra={"level": logging.getLevelName(lg.level), "micros": config.micros},
        )
        return lg

    @staticmethod
    def derive(
        parent: Logger,
        tags: str | list[str],
        extra: dict[str, Any] | None = None,
    ) -> Logger:
        """
        Derive a "view" logger that delegates to root's handlers.

        Examples:
            >>> derived = LoggerFactory.derive(root, ["supervisor", "reaper"])
            >>> derived.name
            '/supervisor/reaper'

        Args:
            parent: Parent logger instance
            tags: Single tag string OR list of tag strings to form hierarchy
            extra: Extra fields added on top of the parent's

        Returns:
            Derived logger instance with inherited configuration
        """
        if isinstance(tags, str):
            tags = [tags]

        prefix = parent.name if parent.name == "/" else parent.name + "/"
        name = prefix + "/".join(tags)

        existing = LoggerFactory._check_existing_logger(name)
        if existing:
            return existing

        root = parent._root_logger if parent._root_logger else parent
        merged = parent.extra
        merged.update(extra or {})

        lg = cast(Logger, parent.__class__(name, parent.config, merged))
        lg._root_logger = root
        lg.parent = parent
        lg.propagate = False

        logging.root.manager.loggerDict[name] = lg
        lg.trace("derived logger", extra={"root": root.name})
        return lg
