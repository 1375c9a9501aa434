"""
Fork primitives: spawn a worker running a callable, and daemonize.

Both functions return only in the parent (spawn) or the surviving child
(daemonize). A forked worker never returns into the caller's code; it runs
its entry point and leaves through os._exit() so no parent-side cleanup
(atexit hooks, finalizers, buffered handlers) runs twice.
"""

from __future__ import annotations

import os
import sys
import time
from collections.abc import Callable
from typing import Any, NoReturn

from ..exceptions import ForkError, ProcError, UnsupportedPlatformError
from ..identity import set_title
from ..log import Logger, default_lg
from ..platform import has_fork
from ..signals import SignalController
from .worker import ErrorCallback, WorkerEntry, WorkerRecord


def _flush_std_streams() -> None:
    for stream in (sys.stdout, sys.stderr):
        try:
            stream.flush()
        except (OSError, ValueError):
            pass


def _exit_code(result: Any) -> int:
    if isinstance(result, bool) or not isinstance(result, int):
        return 0
    return result & 0xFF


def _run_child(
    entry: WorkerEntry, worker_id: int, title: str | None, lg: Logger
) -> NoReturn:
    code = 1
    try:
        SignalController.after_fork()
        if title:
            set_title(title)
        code = _exit_code(entry(os.getpid(), worker_id))
    except SystemExit as e:
        code = e.code if isinstance(e.code, int) else (0 if e.code is None else 1)
    except BaseException:
        lg.exception("worker entry failed", extra={"worker": worker_id})
        code = 1
    finally:
        _flush_std_streams()
        os._exit(code)


def spawn(
    entry: WorkerEntry,
    worker_id: int = 0,
    on_error: ErrorCallback | None = None,
    title: str | None = None,
    lg: Logger | None = None,
) -> WorkerRecord:
    """
    Fork one worker that runs entry(pid, worker_id) and exits.

    The entry's return value becomes the worker's exit status when it is an
    int (masked to 0-255); any other result exits 0, an uncaught exception
    exits 1.

    Args:
        entry: Callable run in the child
        worker_id: Index handed to the entry point
        on_error: Called with -1 in the parent if the fork fails
        title: Process title for the child
        lg: Logger (child-side failures are logged through it)

    Returns:
        Record of the forked worker (parent only)

    Raises:
        UnsupportedPlatformError: If the platform cannot fork
        ForkError: If the fork primitive fails
    """
    if not has_fork():
        raise UnsupportedPlatformError("fork not supported on this platform")
    lg = lg if lg is not None else default_lg("fork")

    _flush_std_streams()
    try:
        pid = os.fork()
    except OSError as e:
        lg.error("fork failed", extra={"worker": worker_id, "exception": e})
        if on_error is not None:
            on_error(-1)
        raise ForkError("fork failed", worker_id=worker_id) from e

    if pid == 0:
        _run_child(entry, worker_id, title, lg)

    return WorkerRecord(worker_id=worker_id, pid=pid, start_time=time.time())


def daemonize(before_quit: Callable[[int], Any] | None = None) -> int:
    """
    Detach from the controlling terminal.

    The calling process forks; the parent runs before_quit(child_pid) and
    exits with status 0, the child becomes a session leader and carries on.

    Returns:
        The pid of the daemonized process (in the child)

    Raises:
        UnsupportedPlatformError: If the platform cannot fork
        ForkError: If the fork primitive fails
        ProcError: If a new session cannot be created
    """
    if not has_fork():
        raise UnsupportedPlatformError("fork not supported on this platform")

    _flush_std_streams()
    try:
        pid = os.fork()
    except OSError as e:
        raise ForkError("daemon fork failed") from e

    if pid > 0:
        if before_quit is not None:
            before_quit(pid)
        _flush_std_streams()
        os._exit(0)

    try:
        os.setsid()
    except OSError as e:
        raise ProcError("could not create a new session") from e
    return os.getpid()
