"""Coloured console logging."""

from __future__ import annotations

import sys
from enum import Enum
from typing import TextIO

__all__ = ["Color", "ConsoleLog"]


class Color(Enum):
    BLACK = 0
    WHITE = 1
    RED = 2
    GREEN = 3
    BLUE = 4
    YELLOW = 5


_ANSI = {
    Color.BLACK: "\x1b[30m",
    Color.WHITE: "\x1b[37m",
    Color.RED: "\x1b[91m",
    Color.GREEN: "\x1b[92m",
    Color.BLUE: "\x1b[94m",
    Color.YELLOW: "\x1b[93m",
}


class ConsoleLog:
    """Writes printf-style messages in colour to standard output or error.

    Colour codes are emitted only when the target stream is a terminal; the
    colour is set back to white after every message.
    """

    def __init__(self, stdout: TextIO | None = None, stderr: TextIO | None = None) -> None:
        self._stdout = stdout
        self._stderr = stderr

    def write_stdout(self, color: Color, fmt: str | None, *args) -> None:
        """Write ``fmt % args`` to standard output in ``color``."""
        self._write(self._stdout or sys.stdout, color, fmt, args)

    def write_stderr(self, color: Color, fmt: str | None, *args) -> None:
        """Write ``fmt % args`` to standard error in ``color``."""
        self._write(self._stderr or sys.stderr, color, fmt, args)

    @staticmethod
    def _write(stream: TextIO, color: Color, fmt: str | None, args: tuple) -> None:
        if fmt is None:
            return
        text = fmt % args if args else fmt
        isatty = getattr(stream, "isatty", None)
        colored = bool(isatty and isatty())
        if colored:
            stream.write(_ANSI[color])
        stream.write(text)
        stream.flush()
        if colored:
            stream.write(_ANSI[Color.WHITE])
            stream.flush()