"""Public entry point: drive one engine process as an RPC target."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from contextlib import suppress
from types import TracebackType

from loguru import logger

from pwshpipe.channels import ChannelRegistry, Handler
from pwshpipe.command_queue import CommandQueue, QueueState
from pwshpipe.config import Settings, load_settings
from pwshpipe.demux import Demultiplexer
from pwshpipe.encoder import Encoder, wrap
from pwshpipe.errors import PipelineClosedError
from pwshpipe.framing import FrameExtractor, read_diagnostics, read_frames
from pwshpipe.process import EngineProcess
from pwshpipe.transport import TransportWriter
from pwshpipe.types import Category, Decoded, Format, QueuedCommand, ResultEnvelope

# How long to wait for the exit status once the engine closes stdout.
EXIT_STATUS_TIMEOUT = 5.0


class EnginePipeline:
    """Submit commands to one engine process and receive categorized results.

    Results arrive in submission order. Besides each call's future, every
    non-empty category is broadcast on ``channels``, before that future
    resolves. Anything the engine writes to stderr is broadcast on the
    ``error`` channel and never fails a call.
    """

    def __init__(
        self,
        process: EngineProcess,
        settings: Settings | None = None,
        *,
        encoder: Encoder = wrap,
    ) -> None:
        self.settings = settings or load_settings()
        self.channels = ChannelRegistry()
        self._process = process
        self._encoder = encoder
        self._extractor = FrameExtractor(self.settings.head_sentinel, self.settings.tail_sentinel)
        self._queue = CommandQueue(TransportWriter(process.stdin), Demultiplexer(self.channels))
        self._tasks: list[asyncio.Task[None]] = []
        self._started = False
        self._closed = False

    @classmethod
    async def launch(cls, settings: Settings | None = None, *, encoder: Encoder = wrap) -> EnginePipeline:
        """Spawn the engine and start the pipeline; raises ``SpawnError``."""
        settings = settings or load_settings()
        process = await EngineProcess.start(settings.executable, args=settings.engine_args)
        pipeline = cls(process, settings, encoder=encoder)
        await pipeline.start()
        return pipeline

    @property
    def process(self) -> EngineProcess:
        return self._process

    @property
    def queue(self) -> CommandQueue:
        return self._queue

    @property
    def closed(self) -> bool:
        return self._closed

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        self._queue.start()
        self._tasks.append(asyncio.create_task(self._pump_frames(), name="pwshpipe.stdout"))
        self._tasks.append(asyncio.create_task(self._pump_diagnostics(), name="pwshpipe.stderr"))

    def submit(self, command: str, format: Format = "json") -> asyncio.Future[ResultEnvelope]:
        """Queue ``command`` and return a future for its envelope; never blocks.

        ``format`` governs how the success category is decoded; ``None``
        returns the raw success text.
        """
        if self._closed or self._queue.state is QueueState.SHUT_DOWN:
            raise PipelineClosedError("pipeline is shut down")
        wrapped = self._encoder(
            command,
            self.settings.head_sentinel,
            self.settings.tail_sentinel,
            format,
            self.settings.scratch_dir,
        )
        future: asyncio.Future[ResultEnvelope] = asyncio.get_running_loop().create_future()
        self._queue.submit(QueuedCommand(command=command, wrapped=wrapped, future=future, format=format))
        return future

    async def call(self, command: str, format: Format = "json") -> ResultEnvelope:
        return await self.submit(command, format)

    def on(self, category: Category | str, handler: Handler) -> Callable[[], None]:
        """Subscribe to one category's broadcast channel."""
        return self.channels.subscribe(category, handler)

    async def shutdown(self) -> None:
        """Stop the pipeline and terminate the engine.

        Futures of commands still pending are not settled.
        """
        if self._closed:
            return
        self._closed = True
        await self._queue.shutdown()
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with suppress(asyncio.CancelledError):
                await task
        self._tasks.clear()
        self._process.terminate()

    async def __aenter__(self) -> EnginePipeline:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.shutdown()

    async def _pump_frames(self) -> None:
        async for payload in read_frames(self._process.stdout, self._extractor, self.settings.read_chunk_size):
            self._queue.frame_arrived(payload)
        returncode: int | None = None
        try:
            returncode = await asyncio.wait_for(self._process.wait(), EXIT_STATUS_TIMEOUT)
        except TimeoutError:
            logger.warning("engine.exit.timeout seconds={}", EXIT_STATUS_TIMEOUT)
        logger.warning("engine.stdout.closed returncode={}", returncode)
        self._queue.engine_exited(returncode)

    async def _pump_diagnostics(self) -> None:
        async for text in read_diagnostics(self._process.stderr, self.settings.read_chunk_size):
            logger.debug("engine.stderr size={}", len(text))
            self.channels.publish(Category.ERROR, Decoded([text]))
