"""
Pid file handling for daemonized supervisors.
"""

from __future__ import annotations

import contextlib
import os
from pathlib import Path
from typing import Any

from ..exceptions import ProcError
from ..signals import SignalController


class PidFile:
    """
    A file holding the pid of a running process.

    Example:
        with PidFile("/run/procsup.pid"):
            supervisor.supervise()
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def read(self, check_live: bool = True) -> int:
        """
        Read the stored pid.

        Files with unparseable content, and with check_live those naming a
        process that no longer runs, are stale: they are removed and 0 is
        returned.

        Returns:
            The stored pid, or 0 if there is none
        """
        try:
            content = self._path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return 0

        try:
            pid = int(content)
        except ValueError:
            pid = 0

        if pid > 0 and (not check_live or SignalController.is_running(pid)):
            return pid

        self.remove()
        return 0

    def write(self, pid: int | None = None) -> int:
        """
        Store a pid (default: the current process), replacing the file atomically.

        Raises:
            ProcError: If the file cannot be written
        """
        pid = pid if pid is not None else os.getpid()
        tmp = self._path.with_name(f".{self._path.name}.{os.getpid()}.tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(f"{pid}\n", encoding="utf-8")
            os.replace(tmp, self._path)
        except OSError as e:
            with contextlib.suppress(OSError):
                tmp.unlink()
            raise ProcError("could not write pid file", path=str(self._path)) from e
        return pid

    def remove(self) -> bool:
        """Delete the file; returns False if it did not exist."""
        try:
            self._path.unlink()
        except FileNotFoundError:
            return False
        return True

    def __enter__(self) -> PidFile:
        self.write()
        return self

    def __exit__(self, *exc: Any) -> None:
        self.remove()
