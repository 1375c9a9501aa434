"""
Pre-fork worker supervision: fork, signal and reap worker processes.
"""

from .fork import daemonize, spawn
from .pidfile import PidFile
from .reaper import ExitEvent, Reaper
from .supervisor import ProcessSupervisor
from .worker import ErrorCallback, ExitCallback, WorkerEntry, WorkerRecord

__all__ = [
    "ProcessSupervisor",
    "Reaper",
    "ExitEvent",
    "PidFile",
    "WorkerRecord",
    "WorkerEntry",
    "ErrorCallback",
    "ExitCallback",
    "spawn",
    "daemonize",
]
