"""
Tests for SignalController.

Covers:
- install / uninstall / replace of handlers
- cooperative dispatch and async delivery
- send_signal with and without timeout against real children
- kill helpers and alarms
"""

import os
import signal
import subprocess
import sys
import time
from unittest.mock import patch

import psutil
import pytest

from procsup.exceptions import SignalTimeoutError, UnsupportedPlatformError
from procsup.signals import SignalController

# Child that ignores TERM so retried delivery cannot stop it
_IGNORE_TERM = (
    "import signal, time; signal.signal(signal.SIGTERM, signal.SIG_IGN); "
    "print('ready', flush=True); time.sleep(30)"
)


def _spawn_sleeper(code: str = "import time; time.sleep(30)") -> subprocess.Popen:
    proc = subprocess.Popen(
        [sys.executable, "-c", code], stdout=subprocess.PIPE, text=True
    )
    return proc


@pytest.mark.posix
class TestBindings:
    """Test handler installation."""

    def test_install_and_get_handler(self, controller):
        handler = lambda signum: None  # noqa: E731

        controller.install("USR1", handler)

        assert controller.get_handler(signal.SIGUSR1) is handler
        assert signal.getsignal(signal.SIGUSR1) == controller._on_signal

    def test_install_replaces_previous(self, controller):
        first = lambda signum: None  # noqa: E731
        second = lambda signum: None  # noqa: E731

        controller.install("USR1", first)
        controller.install("USR1", second)

        assert controller.get_handler("USR1") is second
        assert len(controller.bindings) == 1

    def test_uninstall_restores_original(self, controller):
        original = signal.getsignal(signal.SIGUSR2)
        controller.install("USR2", lambda signum: None)

        assert controller.uninstall("USR2") is True
        assert signal.getsignal(signal.SIGUSR2) == original
        assert controller.uninstall("USR2") is False

    def test_non_callable_handler(self, controller):
        with pytest.raises(ValueError, match="callable"):
            controller.install("USR1", "not callable")

    def test_unknown_signal(self, controller):
        with pytest.raises(ValueError):
            controller.install("BOGUS", lambda signum: None)

    def test_singleton(self):
        assert SignalController.get_instance() is SignalController.get_instance()

    def test_reset_instance_restores_handlers(self):
        original = signal.getsignal(signal.SIGUSR1)
        SignalController.get_instance().install("USR1", lambda signum: None)

        SignalController.reset_instance()

        assert signal.getsignal(signal.SIGUSR1) == original


@pytest.mark.posix
class TestDispatch:
    """Test queued and async delivery."""

    def test_signal_queued_until_dispatch(self, controller):
        received = []
        controller.install("USR1", received.append)

        os.kill(os.getpid(), signal.SIGUSR1)

        assert received == []
        assert controller.pending == (signal.SIGUSR1,)
        assert controller.dispatch() == 1
        assert received == [signal.SIGUSR1]
        assert controller.pending == ()

    def test_dispatch_without_pending(self, controller):
        assert controller.dispatch() == 0

    def test_async_delivery(self, controller):
        received = []
        controller.install("USR1", received.append)

        assert controller.async_signals(True) is False
        os.kill(os.getpid(), signal.SIGUSR1)

        assert received == [signal.SIGUSR1]
        assert controller.async_signals() is True
        controller.async_signals(False)

    def test_enabling_async_flushes_pending(self, controller):
        received = []
        controller.install("USR2", received.append)
        os.kill(os.getpid(), signal.SIGUSR2)

        controller.async_signals(True)

        assert received == [signal.SIGUSR2]
        controller.async_signals(False)

    def test_uninstall_drops_pending(self, controller):
        controller.install("USR1", lambda signum: None)
        os.kill(os.getpid(), signal.SIGUSR1)

        controller.uninstall("USR1")

        assert controller.pending == ()

    def test_reset_after_fork(self, controller):
        controller.install("USR1", lambda signum: None)
        os.kill(os.getpid(), signal.SIGUSR1)

        controller.reset_after_fork()

        assert controller.pending == ()
        assert controller.bindings == {}


@pytest.mark.posix
@pytest.mark.integration
class TestSendSignal:
    """Test signal delivery to real processes."""

    def test_refuses_non_positive_pid(self, controller):
        with pytest.raises(ValueError):
            controller.send_signal(0)
        with pytest.raises(ValueError):
            controller.send_signal(-1)

    def test_single_delivery_no_timeout(self, controller):
        proc = _spawn_sleeper()
        try:
            assert controller.send_signal(proc.pid, "TERM", timeout=0) is True
            assert proc.wait(timeout=5) == -signal.SIGTERM
        finally:
            proc.kill()
            proc.wait()

    def test_missing_target(self, controller):
        proc = _spawn_sleeper("pass")
        proc.wait()

        assert controller.send_signal(proc.pid, "TERM") is False

    def test_retry_until_gone(self, controller):
        proc = _spawn_sleeper()
        try:
            # Zombies count as gone, so no reaping is needed for this to return
            assert controller.send_signal(proc.pid, "TERM", timeout=5.0) is True
        finally:
            proc.kill()
            proc.wait()
        assert proc.returncode == -signal.SIGTERM

    def test_timeout_raises(self, controller):
        proc = _spawn_sleeper(_IGNORE_TERM)
        try:
            assert proc.stdout.readline().strip() == "ready"
            started = time.monotonic()
            with pytest.raises(SignalTimeoutError) as exc_info:
                controller.send_signal(proc.pid, "TERM", timeout=0.2)
            assert time.monotonic() - started >= 0.2
            assert exc_info.value.pid == proc.pid
            assert exc_info.value.signum == signal.SIGTERM
        finally:
            proc.kill()
            proc.wait()

    def test_kill_forced(self, controller):
        proc = _spawn_sleeper(_IGNORE_TERM)
        try:
            proc.stdout.readline()
            assert controller.kill(proc.pid, force=True, timeout=5.0) is True
        finally:
            proc.wait()
        assert proc.returncode == -signal.SIGKILL

    def test_kill_and_wait_timeout(self, controller):
        proc = _spawn_sleeper(_IGNORE_TERM)
        try:
            proc.stdout.readline()
            with pytest.raises(SignalTimeoutError):
                controller.kill_and_wait(proc.pid, wait_time=0.2)
        finally:
            proc.kill()
            proc.wait()

    def test_unsupported_platform(self, controller):
        with patch("procsup.signals.controller.has_posix_signals", return_value=False):
            with pytest.raises(UnsupportedPlatformError):
                controller.send_signal(12345, "TERM")


@pytest.mark.unit
class TestIsRunning:
    """Test liveness checks."""

    def test_current_process(self):
        assert SignalController.is_running(os.getpid()) is True

    def test_non_positive(self):
        assert SignalController.is_running(0) is False

    def test_no_such_process(self):
        with patch(
            "procsup.signals.controller.psutil.Process",
            side_effect=psutil.NoSuchProcess(99999),
        ):
            assert SignalController.is_running(99999) is False

    def test_zombie(self):
        with patch("procsup.signals.controller.psutil.Process") as mock_proc:
            mock_proc.return_value.status.return_value = psutil.STATUS_ZOMBIE
            assert SignalController.is_running(4242) is False

    def test_access_denied_counts_as_running(self):
        with patch(
            "procsup.signals.controller.psutil.Process",
            side_effect=psutil.AccessDenied(1),
        ):
            assert SignalController.is_running(1) is True


@pytest.mark.posix
class TestAlarm:
    """Test ALRM scheduling."""

    def test_after_and_clear(self, controller):
        fired = []

        assert controller.after(30, fired.append) == 0
        assert controller.clear_alarm() > 0
        assert controller.get_handler("ALRM") is not None
        assert fired == []
