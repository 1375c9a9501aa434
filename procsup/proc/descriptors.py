"""
Descriptor specification for spawned processes.

A descriptor spec maps a channel index (the child's file descriptor number)
to what that channel is connected to. Directions are given from the child's
point of view, as in a shell: ``Pipe("r")`` is a pipe the child reads from
(the parent writes), ``Pipe("w")`` one the child writes to.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from ..platform import is_posix

STDIN = 0
STDOUT = 1
STDERR = 2

# Reserved for feeding secrets to the child without touching argv or env
SECRET_CHANNEL = 3


@dataclass(frozen=True)
class Descriptor:
    """Base class for channel descriptors."""

    @property
    def posix_only(self) -> bool:
        return False


@dataclass(frozen=True)
class Pipe(Descriptor):
    """Anonymous pipe; mode is "r" (child reads) or "w" (child writes)."""

    mode: str = "w"

    def __post_init__(self) -> None:
        if self.mode not in ("r", "w"):
            raise ValueError(f"pipe mode must be 'r' or 'w', got {self.mode!r}")

    @property
    def child_reads(self) -> bool:
        return self.mode == "r"


@dataclass(frozen=True)
class File(Descriptor):
    """Redirect the channel to a file opened with the given mode."""

    path: str
    mode: str = "r"


@dataclass(frozen=True)
class Inherit(Descriptor):
    """Child inherits the caller's descriptor of the same index."""


@dataclass(frozen=True)
class Pty(Descriptor):
    """Pseudo-terminal; the parent keeps the master side."""

    @property
    def posix_only(self) -> bool:
        return True


DescriptorSpec = Mapping[int, Descriptor]


def default_descriptors() -> dict[int, Descriptor]:
    """
    Default spec: stdin/stdout/stderr pipes plus the secret channel.

    The secret channel is left out on non-POSIX platforms.
    """
    spec: dict[int, Descriptor] = {
        STDIN: Pipe("r"),
        STDOUT: Pipe("w"),
        STDERR: Pipe("w"),
        SECRET_CHANNEL: Pipe("r"),
    }
    return filter_for_platform(spec)


def tty_descriptors() -> dict[int, Descriptor]:
    """Spec wiring all three standard channels to the controlling terminal."""
    return {
        STDIN: File("/dev/tty", "r"),
        STDOUT: File("/dev/tty", "w"),
        STDERR: File("/dev/tty", "w"),
    }


def is_supported(index: int, descriptor: Descriptor, posix: bool) -> bool:
    """Check whether a channel can be honoured on the given platform."""
    if posix:
        return True
    return index <= STDERR and not descriptor.posix_only


def filter_for_platform(
    spec: DescriptorSpec, posix: bool | None = None
) -> dict[int, Descriptor]:
    """
    Drop the channels the platform rejects.

    Non-POSIX platforms only support channels 0-2 and no pseudo-terminals.

    Args:
        spec: Descriptor spec to filter
        posix: Override platform detection (for tests)
    """
    if posix is None:
        posix = is_posix()
    return {i: d for i, d in sorted(spec.items()) if is_supported(i, d, posix)}


def validate(spec: DescriptorSpec) -> None:
    """
    Check channel indexes and descriptor types.

    Raises:
        ValueError: On negative indexes or unknown descriptor types
    """
    for index, descriptor in spec.items():
        if not isinstance(index, int) or index < 0:
            raise ValueError(f"invalid channel index: {index!r}")
        if not isinstance(descriptor, Descriptor):
            raise ValueError(
                f"channel {index}: expected a Descriptor, "
                f"got {type(descriptor).__name__}"
            )
