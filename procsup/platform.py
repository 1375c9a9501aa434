"""
Platform capability checks.

Fork, POSIX signals, extra descriptors and pseudo-terminals only exist on
POSIX systems. Callers check these predicates instead of sprinkling
``sys.platform`` tests around.
"""

import os
import signal
import sys
from functools import lru_cache


def is_windows() -> bool:
    """Check whether we run on Windows."""
    return sys.platform == "win32"


def is_posix() -> bool:
    """Check whether the platform is POSIX-like."""
    return os.name == "posix"


def has_fork() -> bool:
    """Check whether the fork primitive is available."""
    return is_posix() and hasattr(os, "fork")


def has_posix_signals() -> bool:
    """Check whether arbitrary signals can be delivered to arbitrary pids."""
    return is_posix() and hasattr(signal, "SIGKILL")


def has_waitid() -> bool:
    """Check whether waitid() with WNOWAIT is available for status peeks."""
    return hasattr(os, "waitid") and hasattr(os, "WNOWAIT")


def has_pidfd() -> bool:
    """Check whether pidfd_open() is available (Linux 5.3+)."""
    return hasattr(os, "pidfd_open")


@lru_cache(maxsize=1)
def is_pty_supported() -> bool:
    """Check whether pseudo-terminal pairs can be allocated."""
    if not is_posix() or not hasattr(os, "openpty"):
        return False
    try:
        master, slave = os.openpty()
    except OSError:
        return False
    os.close(master)
    os.close(slave)
    return True


@lru_cache(maxsize=1)
def is_tty_supported() -> bool:
    """Check whether the controlling terminal (/dev/tty) can be opened."""
    if not is_posix():
        return False
    try:
        fd = os.open("/dev/tty", os.O_RDWR)
    except OSError:
        return False
    os.close(fd)
    return True
