"""Local terminal surfaces the client renders into and reads keys from."""

from __future__ import annotations

import asyncio
import codecs
import logging
import os
import shutil
import signal
import sys
import termios
import tty
from typing import AsyncIterator, Protocol, TextIO

logger = logging.getLogger(__name__)


class TerminalSurface(Protocol):
    """What the client adapter needs from a local terminal."""

    def size(self) -> tuple[int, int]:
        """Current ``(cols, rows)``."""
        ...

    def write(self, text: str) -> None: ...

    def write_line(self, text: str) -> None: ...

    def clear(self) -> None: ...

    def input_chunks(self) -> AsyncIterator[str]:
        """Keystrokes/pastes as they arrive. Ends when input is exhausted."""
        ...

    def resizes(self) -> AsyncIterator[tuple[int, int]]:
        """New ``(cols, rows)`` after each viewport change."""
        ...


class RawTerminalSurface:
    """The process's own controlling terminal, in raw mode.

    Use as a context manager: entering puts stdin in raw mode and starts
    watching it and SIGWINCH on the running loop; leaving restores
    everything. Keys typed while detached are not forwarded.
    """

    def __init__(self, stdin: TextIO | None = None, stdout: TextIO | None = None) -> None:
        self._stdin = stdin or sys.stdin
        self._stdout = stdout or sys.stdout
        self._fd = self._stdin.fileno()
        self._saved_attrs: list | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._keys: asyncio.Queue[str | None] = asyncio.Queue()
        self._sizes: asyncio.Queue[tuple[int, int]] = asyncio.Queue()
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def __enter__(self) -> RawTerminalSurface:
        self._loop = asyncio.get_running_loop()
        if os.isatty(self._fd):
            self._saved_attrs = termios.tcgetattr(self._fd)
            tty.setraw(self._fd)
        self._loop.add_reader(self._fd, self._on_stdin)
        self._loop.add_signal_handler(signal.SIGWINCH, self._on_winch)
        return self

    def __exit__(self, *exc_info: object) -> None:
        assert self._loop is not None
        self._loop.remove_reader(self._fd)
        self._loop.remove_signal_handler(signal.SIGWINCH)
        if self._saved_attrs is not None:
            termios.tcsetattr(self._fd, termios.TCSADRAIN, self._saved_attrs)
            self._saved_attrs = None
        self._loop = None

    def _on_stdin(self) -> None:
        try:
            data = os.read(self._fd, 4096)
        except OSError as e:
            logger.debug("stdin read failed: %s", e)
            data = b""
        if not data:
            assert self._loop is not None
            self._loop.remove_reader(self._fd)
            self._keys.put_nowait(None)
            return
        text = self._decoder.decode(data)
        if text:
            self._keys.put_nowait(text)

    def _on_winch(self) -> None:
        self._sizes.put_nowait(self.size())

    def size(self) -> tuple[int, int]:
        columns, lines = shutil.get_terminal_size()
        return columns, lines

    def write(self, text: str) -> None:
        self._stdout.write(text)
        self._stdout.flush()

    def write_line(self, text: str) -> None:
        self.write(text + "\r\n")

    def clear(self) -> None:
        self.write("\x1b[2J\x1b[3J\x1b[H")

    async def input_chunks(self) -> AsyncIterator[str]:
        while True:
            chunk = await self._keys.get()
            if chunk is None:
                return
            yield chunk

    async def resizes(self) -> AsyncIterator[tuple[int, int]]:
        while True:
            yield await self._sizes.get()
