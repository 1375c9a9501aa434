"""
Output abstraction for CLI commands.

Commands write through an OutputWriter so they can be tested without
capturing stdout. Tables are rendered with rich.
"""

from __future__ import annotations

import io
import sys
from collections.abc import Iterable, Sequence
from typing import Any, Protocol, TextIO

from rich.console import Console
from rich.table import Table


class OutputWriter(Protocol):
    """Protocol for CLI output writing."""

    def write(self, text: str = "") -> None:
        """Write text with trailing newline."""
        ...

    def write_raw(self, text: str) -> None:
        """Write text without trailing newline."""
        ...

    def table(
        self, title: str, columns: Sequence[str], rows: Iterable[Sequence[Any]]
    ) -> None:
        """Write a table."""
        ...


def build_table(
    title: str, columns: Sequence[str], rows: Iterable[Sequence[Any]]
) -> Table:
    table = Table(title=title)
    for column in columns:
        table.add_column(column)
    for row in rows:
        table.add_row(*("" if v is None else str(v) for v in row))
    return table


def render_table(
    title: str,
    columns: Sequence[str],
    rows: Iterable[Sequence[Any]],
    width: int = 100,
) -> str:
    """Render a table to plain text."""
    buffer = io.StringIO()
    console = Console(file=buffer, no_color=True, width=width)
    console.print(build_table(title, columns, rows))
    return buffer.getvalue()


class ConsoleOutput:
    """
    Output writer for a stream (stdout by default).

    Example:
        out = ConsoleOutput()
        out.write("started 4 workers")
    """

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream if stream is not None else sys.stdout

    def write(self, text: str = "") -> None:
        print(text, file=self._stream)

    def write_raw(self, text: str) -> None:
        print(text, end="", file=self._stream)

    def table(
        self, title: str, columns: Sequence[str], rows: Iterable[Sequence[Any]]
    ) -> None:
        Console(file=self._stream).print(build_table(title, columns, rows))

    def flush(self) -> None:
        self._stream.flush()


class BufferedOutput:
    """
    Output writer that captures output to a list of lines.

    Example:
        out = BufferedOutput()
        out.write("Line 1")
        assert out.lines == ["Line 1"]
    """

    def __init__(self) -> None:
        self._lines: list[str] = []
        self._raw_parts: list[str] = []

    def write(self, text: str = "") -> None:
        if self._raw_parts:
            text = "".join(self._raw_parts) + text
            self._raw_parts.clear()
        self._lines.append(text)

    def write_raw(self, text: str) -> None:
        """Buffer text without newline (prefixed to the next write)."""
        self._raw_parts.append(text)

    def table(
        self, title: str, columns: Sequence[str], rows: Iterable[Sequence[Any]]
    ) -> None:
        rendered = render_table(title, columns, rows)
        self._lines.extend(rendered.rstrip("\n").splitlines())

    def flush(self) -> None:
        pass

    @property
    def lines(self) -> list[str]:
        """Captured lines, including any pending raw text."""
        if self._raw_parts:
            return self._lines + ["".join(self._raw_parts)]
        return list(self._lines)

    @property
    def text(self) -> str:
        return "".join(f"{line}\n" for line in self.lines)
