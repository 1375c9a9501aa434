"""
Signal installation, cooperative dispatch and delivery.
"""

from .controller import SignalController, SignalHandler
from .names import SUPPORTED, describe, is_forceful, resolve_signal

__all__ = [
    "SignalController",
    "SignalHandler",
    "SUPPORTED",
    "describe",
    "is_forceful",
    "resolve_signal",
]
