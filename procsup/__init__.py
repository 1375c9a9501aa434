"""
procsup - process spawning and pre-fork worker supervision.

Spawn shell commands with configurable descriptor channels, fork and reap
worker pools, and install or send signals, with structured logging and YAML
configuration.

Example:
    from procsup import ProcessHandle

    with ProcessHandle("printf hello").open() as proc:
        print(proc.read(1))
"""

from importlib.metadata import PackageNotFoundError, version

from .config import SupervisorConfig, load_config
from .exceptions import (
    CloseError,
    ConfigError,
    ForkError,
    PipeError,
    ProcError,
    SignalTimeoutError,
    SpawnError,
    UnsupportedPlatformError,
)
from .identity import change_owner, current_user, get_title, set_title
from .proc import (
    File,
    Inherit,
    Pipe,
    ProcessHandle,
    ProcessOptions,
    ProcessStatus,
    Pty,
    default_descriptors,
)
from .signals import SignalController
from .supervisor import (
    ExitEvent,
    PidFile,
    ProcessSupervisor,
    Reaper,
    WorkerRecord,
    daemonize,
)

try:
    __version__ = version("procsup")
except PackageNotFoundError:
    # Package not installed (running from source)
    __version__ = "0.1.0-dev"

__all__ = [
    "__version__",
    # Errors
    "ProcError",
    "SpawnError",
    "PipeError",
    "CloseError",
    "ForkError",
    "SignalTimeoutError",
    "UnsupportedPlatformError",
    "ConfigError",
    # Processes
    "ProcessHandle",
    "ProcessOptions",
    "ProcessStatus",
    "Pipe",
    "File",
    "Inherit",
    "Pty",
    "default_descriptors",
    # Supervision
    "ProcessSupervisor",
    "SupervisorConfig",
    "Reaper",
    "ExitEvent",
    "WorkerRecord",
    "PidFile",
    "daemonize",
    # Signals
    "SignalController",
    # Identity
    "set_title",
    "get_title",
    "current_user",
    "change_owner",
    # Config
    "load_config",
]
