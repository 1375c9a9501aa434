"""
Child reaper.

Collects the exit status of forked children so they do not linger as
zombies, reporting each one through an exit callback. The reaper either
watches an explicit set of pids or, when constructed without one, any
child of the current process.
"""

from __future__ import annotations

import os
import select
import time
from collections.abc import Iterable
from typing import NamedTuple

from ..exceptions import UnsupportedPlatformError
from ..log import Logger, default_lg
from ..platform import has_fork, has_pidfd
from .worker import ExitCallback

REAP_INTERVAL_SECS = 0.05


class ExitEvent(NamedTuple):
    """
    One reaped child.

    exit_code follows the subprocess convention: the exit status for a
    normal exit, -signum for a child killed by a signal. raw_status is the
    undecoded wait status.
    """

    pid: int
    exit_code: int
    raw_status: int


class Reaper:
    """
    Non-blocking child reaper with an optional blocking wait.

    Example:
        reaper = Reaper(lg, pids=[record.pid for record in records])
        reaper.wait(lambda pid, code, status: print(pid, code))
    """

    def __init__(
        self,
        lg: Logger | None = None,
        pids: Iterable[int] | None = None,
        interval: float = REAP_INTERVAL_SECS,
        blocking: bool = False,
    ) -> None:
        """
        Initialize the reaper.

        Args:
            lg: Logger instance
            pids: Pids to watch; None watches any child of this process
            interval: Sleep between polls when no child is ready
            blocking: Block on pidfds (Linux) or waitpid instead of sleeping
        """
        self._lg = lg if lg is not None else default_lg("reaper")
        self._tracked: set[int] | None = set(pids) if pids is not None else None
        self._interval = interval
        self._blocking = blocking
        self._children_left = True
        self._backlog: list[ExitEvent] = []

    @property
    def any_child(self) -> bool:
        """True when the reaper watches every child instead of a pid set."""
        return self._tracked is None

    @property
    def tracked(self) -> frozenset[int]:
        return frozenset(self._tracked or ())

    def track(self, pid: int) -> None:
        """Watch a pid (switches an any-child reaper to tracked mode)."""
        if self._tracked is None:
            self._tracked = set()
        self._tracked.add(pid)

    @property
    def pending(self) -> frozenset[int]:
        """Pids reaped but not yet reported through wait() or poll()."""
        return frozenset(event.pid for event in self._backlog)

    def untrack(self, pid: int) -> bool:
        if self._tracked is None or pid not in self._tracked:
            return False
        self._tracked.discard(pid)
        return True

    def has_children(self) -> bool:
        """Check whether anything is left to reap."""
        if self._backlog:
            return True
        if self._tracked is not None:
            return bool(self._tracked)
        return self._children_left

    # -- reaping ---------------------------------------------------------

    def _event(self, pid: int, status: int) -> ExitEvent:
        if self._tracked is not None:
            self._tracked.discard(pid)
        return ExitEvent(pid, os.waitstatus_to_exitcode(status), status)

    def _reap_pid(self, pid: int) -> ExitEvent | None:
        try:
            rpid, status = os.waitpid(pid, os.WNOHANG)
        except ChildProcessError:
            # Reaped elsewhere or never ours
            self._lg.warning("dropping pid that is not a child", extra={"pid": pid})
            self.untrack(pid)
            return None
        if rpid == 0:
            return None
        return self._event(rpid, status)

    def _reap_any(self) -> list[ExitEvent]:
        events = []
        while True:
            try:
                pid, status = os.waitpid(-1, os.WNOHANG)
            except ChildProcessError:
                self._children_left = False
                break
            if pid == 0:
                self._children_left = True
                break
            events.append(self._event(pid, status))
        return events

    def poll(self) -> list[ExitEvent]:
        """
        Reap every child that has already exited, without blocking.

        Returns:
            Exit events in reap order (empty if nothing was ready)
        """
        events, self._backlog = self._backlog, []
        if self._tracked is None:
            events.extend(self._reap_any())
            return events

        for pid in sorted(self._tracked):
            event = self._reap_pid(pid)
            if event is not None:
                events.append(event)
        return events

    def _block_until_ready(self, timeout: float | None) -> None:
        """Block until some watched child is likely reapable, or timeout."""
        if self._tracked is None:
            if timeout is not None:
                self._sleep(timeout)
                return
            try:
                pid, status = os.waitpid(-1, 0)
            except ChildProcessError:
                self._children_left = False
                return
            self._backlog.append(self._event(pid, status))
            return

        if not has_pidfd():
            self._sleep(timeout)
            return

        fds: list[int] = []
        try:
            for pid in self._tracked:
                try:
                    fds.append(os.pidfd_open(pid))
                except ProcessLookupError:
                    # Already gone; the next poll sorts it out
                    return
            poller = select.poll()
            for fd in fds:
                poller.register(fd, select.POLLIN)
            poller.poll(None if timeout is None else int(timeout * 1000))
        finally:
            for fd in fds:
                os.close(fd)

    def wait(
        self, on_exit: ExitCallback | None = None, timeout: float | None = None
    ) -> int:
        """
        Reap children until none are left or the timeout expires.

        Args:
            on_exit: Called with (pid, exit_code, raw_status) per reaped child
            timeout: Seconds to wait; None waits for every child

        Returns:
            Number of children reaped

        Raises:
            UnsupportedPlatformError: If the platform has no child processes
        """
        if not has_fork():
            raise UnsupportedPlatformError("child reaping not supported")

        deadline = None if timeout is None else time.monotonic() + timeout
        count = 0
        while self.has_children():
            remaining = None
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break

            events = self.poll()
            for i, event in enumerate(events):
                count += 1
                self._lg.debug(
                    "reaped child",
                    extra={"pid": event.pid, "exit_code": event.exit_code},
                )
                if on_exit is None:
                    continue
                try:
                    on_exit(event.pid, event.exit_code, event.raw_status)
                except BaseException:
                    # Already reaped; keep the rest for the next wait()/poll()
                    self._backlog[:0] = events[i + 1 :]
                    raise

            if events or not self.has_children():
                continue
            if self._blocking:
                self._block_until_ready(remaining)
            else:
                self._sleep(remaining)

        return count

    def _sleep(self, remaining: float | None) -> None:
        if remaining is None:
            time.sleep(self._interval)
        else:
            time.sleep(min(self._interval, remaining))
