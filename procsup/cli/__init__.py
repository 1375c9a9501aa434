"""
Command-line interface for procsup.
"""

from .cli import main
from .output import BufferedOutput, ConsoleOutput, OutputWriter

__all__ = ["main", "BufferedOutput", "ConsoleOutput", "OutputWriter"]
