"""
Supervisor configuration.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from ..exceptions import ConfigError
from ..signals.names import resolve_signal

# Worker entry, fork-error and exit callbacks; see supervisor.worker
Callback = Callable[..., Any]

_BOOL_STRINGS = {
    "true": True,
    "yes": True,
    "1": True,
    "false": False,
    "no": False,
    "0": False,
}


def _as_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in _BOOL_STRINGS:
        return _BOOL_STRINGS[value.lower()]
    if isinstance(value, int):
        return bool(value)
    raise ConfigError("expected a boolean", key=name, value=value)


def _as_number(name: str, value: Any, cast: type) -> Any:
    if isinstance(value, bool):
        raise ConfigError("expected a number", key=name, value=value)
    try:
        return cast(value)
    except (TypeError, ValueError):
        raise ConfigError("expected a number", key=name, value=value) from None


@dataclass(frozen=True)
class SupervisorConfig:
    """
    Immutable supervisor configuration.

    Attributes:
        worker_count: Number of workers forked by run()
        title: Process title prefix; workers get "<title>: worker <id>"
        daemon: Detach before forking workers
        on_start: Worker entry point, called in the child as (pid, worker_id)
        on_error: Called with -1 in the parent when a fork fails
        on_exit: Called as (pid, exit_code, raw_status) for each reaped worker
        stop_signal: Signal sent by stop_workers() and shutdown()
        stop_timeout: Seconds shutdown() waits before escalating to KILL
        reap_interval: Sleep between reap polls
        blocking_reap: Block on pidfds instead of polling
        rollback_on_error: Kill and reap already-forked workers on fork failure
        pid_file: Where a daemonized supervisor stores its pid
    """

    worker_count: int = 1
    title: str | None = None
    daemon: bool = False
    on_start: Callback | None = None
    on_error: Callback | None = None
    on_exit: Callback | None = None
    stop_signal: str = "TERM"
    stop_timeout: float = 3.0
    reap_interval: float = 0.05
    blocking_reap: bool = False
    rollback_on_error: bool = True
    pid_file: str | None = None

    def __post_init__(self) -> None:
        count = self.worker_count
        if isinstance(count, bool) or not isinstance(count, int):
            raise ConfigError("worker_count must be an integer", value=count)
        if count <= 0:
            raise ConfigError("worker_count must be positive", value=count)
        if self.stop_timeout < 0:
            raise ConfigError("stop_timeout is negative", value=self.stop_timeout)
        if self.reap_interval <= 0:
            raise ConfigError("reap_interval not positive", value=self.reap_interval)
        try:
            resolve_signal(self.stop_signal)
        except ValueError:
            raise ConfigError("unknown stop_signal", value=self.stop_signal) from None
        for name in ("on_start", "on_error", "on_exit"):
            callback = getattr(self, name)
            if callback is not None and not callable(callback):
                raise ConfigError(
                    f"{name} must be callable", type=type(callback).__name__
                )

    def with_callbacks(
        self,
        on_start: Callback | None = None,
        on_error: Callback | None = None,
        on_exit: Callback | None = None,
    ) -> SupervisorConfig:
        """Return a copy with the given callbacks set (None keeps the current one)."""
        return dataclasses.replace(
            self,
            on_start=on_start or self.on_start,
            on_error=on_error or self.on_error,
            on_exit=on_exit or self.on_exit,
        )

    @classmethod
    def from_params(cls, worker_count: int = 1, **kwargs: Any) -> SupervisorConfig:
        """
        Create a SupervisorConfig, coercing string values from files or env.

        Raises:
            ConfigError: On unknown keys or invalid values
        """
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(kwargs) - known)
        if unknown:
            raise ConfigError("unknown supervisor settings", keys=unknown)

        values: dict[str, Any] = dict(kwargs)
        values["worker_count"] = _as_number("worker_count", worker_count, int)
        for name in ("daemon", "blocking_reap", "rollback_on_error"):
            if name in values:
                values[name] = _as_bool(name, values[name])
        for name in ("stop_timeout", "reap_interval"):
            if name in values:
                values[name] = _as_number(name, values[name], float)
        if "stop_signal" in values:
            values["stop_signal"] = str(values["stop_signal"])
        return cls(**values)

    @classmethod
    def from_config(
        cls, config_dict: dict, section: str = "supervisor", **callbacks: Any
    ) -> SupervisorConfig:
        """
        Create a SupervisorConfig from a configuration dictionary.

        Callbacks cannot be expressed in YAML and are passed as keywords.

        Example:
            config = load_config("etc/procsup.yaml")
            sup_config = SupervisorConfig.from_config(config, on_start=serve)
        """
        current: Any = config_dict
        for part in section.split("."):
            current = current.get(part, {}) if isinstance(current, dict) else {}
        if current is None:
            current = {}
        if not isinstance(current, dict):
            raise ConfigError("section must be a mapping", section=section)

        values = dict(current)
        values.update(callbacks)
        return cls.from_params(**values)
