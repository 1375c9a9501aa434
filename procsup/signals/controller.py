"""
Process-wide signal handler table.

The OS delivers signals asynchronously. SignalController installs a single
low-level handler per bound signal that only queues the signal number; the
host calls dispatch() at points of its own choosing to run the bound
handlers synchronously. Hosts that want immediate delivery switch it on with
async_signals(True).

Bindings live for the lifetime of the process unless uninstall() is called.
"""

from __future__ import annotations

import collections
import os
import signal
import threading
import time
from collections.abc import Callable
from types import FrameType
from typing import Any, Optional

import psutil

from ..exceptions import SignalTimeoutError, UnsupportedPlatformError
from ..log import Logger, default_lg
from ..platform import has_posix_signals
from .names import SUPPORTED, SignalLike, describe, resolve_signal

SignalHandler = Callable[[int], Any]

# Fixed interval between re-deliveries while waiting for a target to go away
RETRY_INTERVAL_SECS = 0.01


def _resolve(sig: SignalLike) -> signal.Signals:
    """Resolve a signal, reporting known-but-missing signals as unsupported."""
    try:
        return resolve_signal(sig)
    except ValueError:
        name = str(sig).upper().removeprefix("SIG")
        if name in SUPPORTED:
            raise UnsupportedPlatformError(
                "signal not available on this platform", signal=name
            ) from None
        raise


class SignalController:
    """
    Process-scoped signal bindings with cooperative dispatch.

    One handler per signal number; installing a second handler for the same
    signal replaces the first. Handlers are called with the signal number.

    Example:
        controller = SignalController.get_instance()
        controller.install("TERM", lambda signum: stop.set())

        while not stop.is_set():
            do_work()
            controller.dispatch()
    """

    _instance: Optional["SignalController"] = None
    _lock_class = threading.Lock()

    def __init__(
        self, lg: Logger | None = None, retry_interval: float = RETRY_INTERVAL_SECS
    ) -> None:
        """Initialize the controller (use get_instance() for the shared one)."""
        self._lg = lg if lg is not None else default_lg("signals")
        self._retry_interval = retry_interval
        self._bindings: dict[signal.Signals, SignalHandler] = {}
        self._original: dict[signal.Signals, Any] = {}
        self._pending: collections.deque[int] = collections.deque()
        self._async = False
        self._lock = threading.RLock()

    @classmethod
    def get_instance(cls) -> SignalController:
        """
        Get the process-wide controller.

        Thread-safe lazy initialization.
        """
        if cls._instance is None:
            with cls._lock_class:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """
        Drop the process-wide controller, restoring its original handlers.

        Warning:
            Intended for test cleanup.
        """
        with cls._lock_class:
            if cls._instance is not None:
                cls._instance.uninstall_all()
            cls._instance = None

    # -- bindings --------------------------------------------------------

    def install(self, sig: SignalLike, handler: SignalHandler) -> None:
        """
        Bind a handler to a signal, replacing any prior binding.

        Must be called from the main thread, as required by signal.signal().

        Args:
            sig: Signal number, name ("TERM", "SIGTERM") or enum member
            handler: Callable invoked with the signal number

        Raises:
            UnsupportedPlatformError: If the platform lacks the signal
            ValueError: If the signal is unknown or not called from the main thread
            OSError: If the signal cannot be caught (KILL, STOP)
        """
        signum = _resolve(sig)
        if not callable(handler):
            raise ValueError(f"handler must be callable, got {type(handler)}")

        with self._lock:
            previous = signal.signal(signum, self._on_signal)
            self._original.setdefault(signum, previous)
            replaced = signum in self._bindings
            self._bindings[signum] = handler

        self._lg.debug(
            "installed signal handler",
            extra={"signal": signum.name, "replaced": replaced},
        )

    def uninstall(self, sig: SignalLike) -> bool:
        """
        Remove a binding and restore the handler that was active before it.

        Pending, undispatched deliveries of the signal are discarded.

        Returns:
            True if a binding was removed, False if none existed
        """
        signum = _resolve(sig)
        with self._lock:
            if signum not in self._bindings:
                return False
            del self._bindings[signum]
            original = self._original.pop(signum, signal.SIG_DFL)
            signal.signal(signum, original if original is not None else signal.SIG_DFL)
            self._pending = collections.deque(
                s for s in self._pending if s != signum
            )

        self._lg.debug("uninstalled signal handler", extra={"signal": signum.name})
        return True

    def uninstall_all(self) -> None:
        """Remove every binding installed through this controller."""
        for signum in list(self._bindings):
            self.uninstall(signum)

    def get_handler(self, sig: SignalLike) -> SignalHandler | None:
        """Return the handler bound to a signal, or None."""
        return self._bindings.get(_resolve(sig))

    @property
    def bindings(self) -> dict[signal.Signals, SignalHandler]:
        """Current bindings (copy)."""
        with self._lock:
            return dict(self._bindings)

    # -- delivery --------------------------------------------------------

    def _on_signal(self, signum: int, frame: FrameType | None) -> None:
        """Low-level handler: queue the signal, or run it in async mode."""
        if self._async:
            self._invoke(signum)
        else:
            self._pending.append(signum)

    def _invoke(self, signum: int) -> bool:
        handler = self._bindings.get(signal.Signals(signum))
        if handler is None:
            return False
        handler(signum)
        return True

    @property
    def pending(self) -> tuple[int, ...]:
        """Signal numbers received but not yet dispatched."""
        return tuple(self._pending)

    def dispatch(self) -> int:
        """
        Run the handlers of all pending signals on the caller's thread.

        Returns:
            Number of handler invocations performed
        """
        count = 0
        while self._pending:
            signum = self._pending.popleft()
            if self._invoke(signum):
                count += 1
        if count:
            self._lg.trace("dispatched signals", extra={"count": count})
        return count

    def async_signals(self, on: bool | None = None) -> bool:
        """
        Query or switch immediate (pre-emptive) delivery.

        Switching it on dispatches anything already pending.

        Args:
            on: True for immediate delivery, False for queued, None to query

        Returns:
            The previous setting
        """
        previous = self._async
        if on is not None:
            self._async = on
            if on:
                self.dispatch()
        return previous

    def reset_after_fork(self, restore: bool = True) -> None:
        """
        Prepare the controller for use in a freshly forked child.

        Signals queued in the parent are forgotten. With restore=True the
        dispositions that were active before each binding are put back, so
        a worker reacts to TERM and INT the default way until it installs
        its own handlers.
        """
        # The parent's lock may have been held by another thread at fork time
        self._lock = threading.RLock()
        self._pending.clear()
        self._async = False
        if restore:
            self.uninstall_all()

    @classmethod
    def after_fork(cls, restore: bool = True) -> None:
        """Reset the process-wide controller in a forked child, if one exists."""
        if cls._instance is not None:
            cls._instance.reset_after_fork(restore)

    # -- sending ---------------------------------------------------------

    @staticmethod
    def is_running(pid: int) -> bool:
        """
        Check whether a process exists and has not exited.

        Exited-but-unreaped (zombie) processes count as not running.
        """
        if pid <= 0:
            return False
        try:
            return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
        except psutil.NoSuchProcess:
            return False
        except psutil.AccessDenied:
            return True

    @staticmethod
    def _deliver(pid: int, signum: signal.Signals) -> bool:
        try:
            os.kill(pid, signum)
        except ProcessLookupError:
            return False
        return True

    def send_signal(
        self, pid: int, sig: SignalLike = signal.SIGTERM, timeout: float = 0.0
    ) -> bool:
        """
        Send a signal to a process, optionally retrying until it is gone.

        With timeout <= 0 exactly one delivery is attempted and the call
        returns immediately. With timeout > 0 the signal is re-delivered
        every retry interval while the target is still running.

        Args:
            pid: Target process id (must be positive)
            sig: Signal to send (default: TERM)
            timeout: Seconds to keep retrying while the target survives

        Returns:
            True if the signal was delivered, False if the target did not exist

        Raises:
            SignalTimeoutError: If the target outlived the timeout
            UnsupportedPlatformError: If the platform cannot signal pids
            ValueError: If pid is not positive
        """
        if pid <= 0:
            raise ValueError(f"refusing to signal pid {pid}")
        if not has_posix_signals():
            raise UnsupportedPlatformError("signals not supported on this platform")

        signum = _resolve(sig)
        if not self._deliver(pid, signum):
            self._lg.debug(
                "signal target not found", extra={"pid": pid, "signal": signum.name}
            )
            return False

        self._lg.debug("sent signal", extra={"pid": pid, "signal": signum.name})
        if timeout <= 0:
            return True

        deadline = time.monotonic() + timeout
        while self.is_running(pid):
            if time.monotonic() >= deadline:
                raise SignalTimeoutError(
                    "process still running after signal", pid, int(signum), timeout
                )
            time.sleep(self._retry_interval)
            self._deliver(pid, signum)

        return True

    def kill(self, pid: int, force: bool = False, timeout: float = 3.0) -> bool:
        """Send TERM (or KILL when forced) with retry."""
        sig = signal.SIGKILL if force else signal.SIGTERM
        return self.send_signal(pid, sig, timeout)

    def kill_and_wait(
        self,
        pid: int,
        force: bool = False,
        wait_time: float = 10.0,
        name: str = "process",
    ) -> bool:
        """
        Send a stop signal once and wait for the process to disappear.

        Args:
            pid: Target process id
            force: Use KILL instead of TERM
            wait_time: Seconds to wait; <= 0 returns right after sending
            name: Display name used in log messages

        Returns:
            True once the process is gone (or the signal was sent and
            wait_time <= 0); False if it did not exist

        Raises:
            SignalTimeoutError: If the process outlived wait_time
        """
        sig = signal.SIGKILL if force else signal.SIGTERM
        if not self.send_signal(pid, sig):
            return False
        if wait_time <= 0:
            return True

        self._lg.info(
            f"stopping {name}", extra={"pid": pid, "signal": describe(sig)}
        )
        deadline = time.monotonic() + wait_time
        while self.is_running(pid):
            if time.monotonic() >= deadline:
                raise SignalTimeoutError(
                    f"stopping {name} timed out", pid, int(sig), wait_time
                )
            time.sleep(min(0.1, wait_time))

        self._lg.info(f"{name} stopped", extra={"pid": pid})
        return True

    # -- alarms ----------------------------------------------------------

    def after(self, seconds: int, handler: SignalHandler) -> int:
        """
        Run a handler once ALRM fires after the given number of seconds.

        The handler runs on the next dispatch() (or immediately in async
        mode).

        Returns:
            Seconds remaining on any previously scheduled alarm
        """
        if not hasattr(signal, "alarm"):
            raise UnsupportedPlatformError("alarm not supported on this platform")
        self.install(signal.SIGALRM, handler)
        return signal.alarm(seconds)

    def clear_alarm(self) -> int:
        """Cancel a scheduled alarm, returning the seconds it had left."""
        if not hasattr(signal, "alarm"):
            raise UnsupportedPlatformError("alarm not supported on this platform")
        return signal.alarm(0)
