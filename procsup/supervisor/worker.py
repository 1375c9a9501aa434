"""
Per-worker bookkeeping kept by the supervisor.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

# Called in the child with (pid, worker_id); an int result becomes the exit code
WorkerEntry = Callable[[int, int], Any]

# Called in the parent with -1 when the fork primitive fails
ErrorCallback = Callable[[int], Any]

# Called with (pid, exit_code, raw_status) for every reaped worker
ExitCallback = Callable[[int, int, int], Any]


@dataclass(frozen=True)
class WorkerRecord:
    """A forked worker as seen from the parent."""

    worker_id: int
    pid: int
    start_time: float
