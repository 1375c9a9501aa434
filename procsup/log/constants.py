"""
Constants for the logging system.

Format strings, rule widths, custom level numbers and ANSI sequences used by
the formatter.
"""

import logging


class LogConstants:
    """Constants for the logging system."""

    DEFAULT_FORMAT: str = "[%(asctime)s] [%(levelname).1s] %(message)s"

    # Rule widths: extra fields start at this column when the message is short
    DEFAULT_RULE_WIDTH: int = 70
    MICRO_RULE_WIDTH: int = 74

    CUSTOM_LEVELS: dict[str, int] = {"TRACE": 5}

    # Populated with custom levels in procsup.log.__init__
    LEVEL_NAMES: dict[str, int | bool] = {
        "critical": logging.CRITICAL,
        "error": logging.ERROR,
        "warning": logging.WARNING,
        "info": logging.INFO,
        "debug": logging.DEBUG,
        "false": False,  # Special value to disable all logging
    }

    RESET: str = "\x1b[0m"

    # Gray ramp used for process/logger metadata
    GRAY_BASE: int = 232
    GRAY_MAX_LEVELS: int = 24

    LEVEL_COLORS: dict[int, str] = {
        5: "\x1b[38;5;240",  # TRACE
        logging.DEBUG: "\x1b[38;5;32",
        logging.INFO: "\x1b[36",
        logging.WARNING: "\x1b[33",
        logging.ERROR: "\x1b[31",
        logging.CRITICAL: "\x1b[35",
    }
    DEFAULT_COLOR: str = "\x1b[38"
