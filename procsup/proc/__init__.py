"""
Single-process handles: spawn, channel I/O, status and close.
"""

from .descriptors import (
    SECRET_CHANNEL,
    STDERR,
    STDIN,
    STDOUT,
    Descriptor,
    File,
    Inherit,
    Pipe,
    Pty,
    default_descriptors,
    filter_for_platform,
    tty_descriptors,
)
from .handle import ProcessHandle, ProcessOptions
from .status import ProcessStatus

__all__ = [
    "ProcessHandle",
    "ProcessOptions",
    "ProcessStatus",
    "Descriptor",
    "Pipe",
    "File",
    "Inherit",
    "Pty",
    "STDIN",
    "STDOUT",
    "STDERR",
    "SECRET_CHANNEL",
    "default_descriptors",
    "filter_for_platform",
    "tty_descriptors",
]
