"""
Exception hierarchy for process spawning and supervision.

Every error raised by procsup derives from ProcError, so callers can catch
all library failures with a single except clause while still telling spawn,
pipe, fork and signal failures apart.
"""

from typing import Any


class ProcError(Exception):
    """
    Base exception for all procsup errors.

    Example:
        try:
            handle.open()
        except ProcError as e:
            lg.error("process failure", extra={"exception": e})
    """

    def __init__(self, message: str, **context: Any) -> None:
        """
        Initialize the exception with a message and optional context.

        Args:
            message: Human-readable error message
            **context: Additional context information (stored in self.context)
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        """String representation with context if available."""
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} ({context_str})"
        return self.message


class SpawnError(ProcError):
    """
    Process or channel creation was refused by the OS.

    Examples:
        - Working directory does not exist
        - Redirect file cannot be opened
        - Too many open files while allocating pipes
    """

    pass


class PipeError(ProcError):
    """
    Operation on a missing, closed or wrong-direction channel.

    Examples:
        - Reading a channel that was already drained and closed
        - Reading a channel the parent only writes to
        - Channel index not present in the descriptor spec
    """

    pass


class CloseError(ProcError):
    """Close requested with no underlying process resource."""

    pass


class ForkError(ProcError):
    """
    The fork primitive failed part way through a worker loop.

    The context carries the worker index that failed and the pids that were
    already forked before the failure.
    """

    pass


class SignalTimeoutError(ProcError):
    """
    Retried signal delivery exceeded its timeout.

    The target is still alive. Callers usually escalate to a forceful
    signal when they see this.
    """

    def __init__(self, message: str, pid: int, signum: int, timeout: float) -> None:
        super().__init__(message, pid=pid, signal=signum, timeout=timeout)
        self.pid = pid
        self.signum = signum
        self.timeout = timeout


class UnsupportedPlatformError(ProcError):
    """Fork or signal features requested where the platform provides none."""

    pass


class ConfigError(ProcError):
    """
    Configuration-related errors.

    Examples:
        - Config file not found
        - Invalid YAML syntax
        - Worker count not a positive integer
    """

    pass


class InvalidLogLevelError(ConfigError):
    """Log level name or value that logging does not know."""

    def __init__(self, level: Any) -> None:
        super().__init__("invalid log level", level=level)
        self.level = level
