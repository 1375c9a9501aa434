"""
Status snapshot of a spawned process.
"""

from __future__ import annotations

import signal
from dataclasses import dataclass


@dataclass(frozen=True)
class ProcessStatus:
    """
    Fixed-field status snapshot.

    exit_code is only meaningful when running is False; it is -1 while the
    process runs. A process killed by a signal has signaled=True, a
    negative exit_code (-signum) and term_signal set.
    """

    pid: int
    running: bool
    signaled: bool = False
    stopped: bool = False
    exit_code: int = -1
    term_signal: int = 0
    stop_signal: int = 0

    @classmethod
    def from_returncode(cls, pid: int, returncode: int | None) -> ProcessStatus:
        """Build a snapshot from a subprocess-style return code."""
        if returncode is None:
            return cls(pid=pid, running=True)
        if returncode < 0:
            return cls(
                pid=pid,
                running=False,
                signaled=True,
                exit_code=returncode,
                term_signal=-returncode,
            )
        return cls(pid=pid, running=False, exit_code=returncode)

    def describe(self) -> str:
        """One-word state: running, stopped, signaled or exited."""
        if self.running:
            return "stopped" if self.stopped else "running"
        if self.signaled:
            try:
                return f"signaled({signal.Signals(self.term_signal).name})"
            except ValueError:
                return f"signaled({self.term_signal})"
        return f"exited({self.exit_code})"
