"""Backpressure-aware writes to the engine's input stream."""

from __future__ import annotations

from typing import Protocol

from loguru import logger

from pwshpipe.errors import TransportError


class WritableStream(Protocol):
    """The subset of ``asyncio.StreamWriter`` used for engine input."""

    def write(self, data: bytes) -> None: ...

    async def drain(self) -> None: ...


class TransportWriter:
    """Write encoded commands, waiting for the transport to drain when congested."""

    def __init__(self, stream: WritableStream) -> None:
        self._stream = stream

    async def write(self, text: str) -> None:
        data = text.encode("utf-8")
        try:
            self._stream.write(data)
            # Returns at once unless the transport paused writing; then waits for drain.
            await self._stream.drain()
        except OSError as exc:
            logger.error("transport.write.error bytes={} error={!s}", len(data), exc)
            raise TransportError(f"engine input stream failed: {exc!s}") from exc
        logger.debug("transport.write bytes={}", len(data))
