"""
Child process output handling.

``LineSplitter`` turns raw pipe chunks into text lines. ``ChildOutputProtocol``
feeds one splitter per pipe and reports two separate events:

- ``exited``: the child process itself has exited
- ``closed``: every pipe reached EOF

The two can be far apart: a grandchild that inherited stdout/stderr keeps the
pipes open after the child is gone.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from e2e_runner.models.run_state import LogStream

logger = logging.getLogger(__name__)

STDOUT_FD = 1
STDERR_FD = 2

_FD_STREAMS = {STDOUT_FD: LogStream.STDOUT, STDERR_FD: LogStream.STDERR}


class LineSplitter:
    """
    Split an append-only byte stream into text lines.

    Bytes after the last newline are kept until the next chunk (or ``flush``),
    so a multi-byte character or a line split across reads is never broken.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._encoding = encoding
        self._buffer = bytearray()

    def feed(self, chunk: bytes) -> list[str]:
        self._buffer.extend(chunk)
        *complete, rest = self._buffer.split(b"\n")
        self._buffer = bytearray(rest)
        return [self._decode(line) for line in complete]

    def flush(self) -> Optional[str]:
        if not self._buffer:
            return None
        line = self._decode(bytes(self._buffer))
        self._buffer.clear()
        return line

    @property
    def pending(self) -> int:
        return len(self._buffer)

    def _decode(self, raw: bytes) -> str:
        return raw.decode(self._encoding, errors="replace")


class ChildOutputProtocol(asyncio.SubprocessProtocol):
    """Line-buffered stdout/stderr delivery for ``loop.subprocess_exec``."""

    def __init__(self, on_line: Callable[[str, LogStream], None]) -> None:
        loop = asyncio.get_running_loop()
        self._on_line = on_line
        self._splitters = {fd: LineSplitter() for fd in _FD_STREAMS}
        self.exited: asyncio.Future[None] = loop.create_future()
        self.closed: asyncio.Future[None] = loop.create_future()

    def pipe_data_received(self, fd: int, data: bytes) -> None:
        splitter = self._splitters.get(fd)
        if splitter is None:
            return
        for line in splitter.feed(data):
            self._on_line(line, _FD_STREAMS[fd])

    def pipe_connection_lost(self, fd: int, exc: Optional[Exception]) -> None:
        if exc is not None:
            logger.warning("Child pipe %d closed with error: %s", fd, exc)
        self._flush(fd)

    def process_exited(self) -> None:
        if not self.exited.done():
            self.exited.set_result(None)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        for fd in self._splitters:
            self._flush(fd)
        if not self.exited.done():
            self.exited.set_result(None)
        if not self.closed.done():
            self.closed.set_result(None)

    def _flush(self, fd: int) -> None:
        splitter = self._splitters.get(fd)
        if splitter is None:
            return
        tail = splitter.flush()
        if tail:
            self._on_line(tail, _FD_STREAMS[fd])
