"""Sentinel framing over the engine's output streams."""

from __future__ import annotations

import asyncio
import codecs
from collections.abc import AsyncIterator

DEFAULT_CHUNK_SIZE = 64 * 1024


class FrameExtractor:
    """Accumulate stream bytes and cut out head/tail delimited frames.

    Both sentinels are located independently, so a tail that shows up before
    its head yields garbage. The encoder guarantees head-before-tail.
    """

    def __init__(self, head: str, tail: str) -> None:
        if not head or not tail:
            raise ValueError("sentinels must be non-empty")
        self._head = head.encode("utf-8")
        self._tail = tail.encode("utf-8")
        self._buffer = bytearray()

    @property
    def pending(self) -> bytes:
        """Bytes received but not yet emitted as part of a frame."""
        return bytes(self._buffer)

    def feed(self, chunk: bytes) -> list[str]:
        """Append one chunk and return every frame it completes, in order."""
        self._buffer.extend(chunk)
        frames: list[str] = []
        while self._tail in self._buffer:
            frames.append(self._extract().decode("utf-8", errors="replace"))
        return frames

    def _extract(self) -> bytes:
        head_idx = self._buffer.find(self._head)
        tail_idx = self._buffer.find(self._tail)
        data = bytes(self._buffer[head_idx + len(self._head) : tail_idx])
        del self._buffer[: tail_idx + len(self._tail)]
        return data


async def read_frames(
    reader: asyncio.StreamReader,
    extractor: FrameExtractor,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> AsyncIterator[str]:
    """Yield frame payloads from ``reader`` until EOF."""
    while True:
        chunk = await reader.read(chunk_size)
        if not chunk:
            return
        for frame in extractor.feed(chunk):
            yield frame


async def read_diagnostics(
    reader: asyncio.StreamReader,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> AsyncIterator[str]:
    """Yield diagnostic lines from ``reader`` until EOF.

    Lines are reassembled across reads, so one message is one item however
    the engine's writes were split. A trailing line without a newline is
    flushed at EOF. Blank lines are skipped.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    partial = ""
    while True:
        chunk = await reader.read(chunk_size)
        *lines, partial = (partial + decoder.decode(chunk, final=not chunk)).split("\n")
        if not chunk:
            lines.append(partial)
        for line in lines:
            line = line.rstrip("\r")
            if line.strip():
                yield line
        if not chunk:
            return
