"""
Signal name resolution.

The supported named signals are INT, TERM, KILL, STOP and ALRM. Any other
name known to the ``signal`` module is accepted too, so the set extends with
the platform.
"""

import signal

# Human-readable descriptions reported to stop hooks
DESCRIPTIONS: dict[str, str] = {
    "SIGINT": "SIGINT(Ctrl+C)",
    "SIGTERM": "SIGTERM",
    "SIGKILL": "SIGKILL",
    "SIGSTOP": "SIGSTOP",
    "SIGALRM": "SIGALRM",
}

SUPPORTED = ("INT", "TERM", "KILL", "STOP", "ALRM")

SignalLike = int | str | signal.Signals


def resolve_signal(sig: SignalLike) -> signal.Signals:
    """
    Resolve a signal given by number, name or enum member.

    Accepts "TERM", "term", "SIGTERM", 15 and signal.SIGTERM alike.

    Raises:
        ValueError: If the platform does not know the signal
    """
    if isinstance(sig, signal.Signals):
        return sig

    if isinstance(sig, str):
        name = sig.strip().upper()
        if name.isdigit():
            return resolve_signal(int(name))
        if not name.startswith("SIG"):
            name = "SIG" + name
        try:
            return signal.Signals[name]
        except KeyError:
            raise ValueError(f"unknown signal: {sig}") from None

    try:
        return signal.Signals(sig)
    except ValueError:
        raise ValueError(f"unknown signal number: {sig}") from None


def describe(sig: SignalLike) -> str:
    """Return the display name of a signal, e.g. "SIGINT(Ctrl+C)"."""
    resolved = resolve_signal(sig)
    return DESCRIPTIONS.get(resolved.name, resolved.name)


def is_forceful(sig: SignalLike) -> bool:
    """Check whether the target cannot catch or ignore the signal."""
    resolved = resolve_signal(sig)
    return resolved.name in ("SIGKILL", "SIGSTOP")
