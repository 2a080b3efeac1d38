"""Single-flight command queue.

Only one command is ever in flight against the engine. Submissions, frame
arrivals and engine exit all land in one inbox consumed by one task, so the
readiness state is only ever touched from that task:

    IDLE --submit--> DISPATCHING --frame--> IDLE (dispatches the next backlog entry)

A frame that fails to parse rejects the in-flight command and the queue moves
on to the next one. Shutdown leaves pending futures unsettled; transport
failure, engine exit and any unexpected error inside the queue task reject
them and close the queue.
"""

from __future__ import annotations

import asyncio
from collections import deque
from contextlib import suppress
from dataclasses import dataclass
from enum import StrEnum

from loguru import logger

from pwshpipe.demux import Demultiplexer
from pwshpipe.errors import EngineExitedError, ParseError, PipelineClosedError, PipelineError, TransportError
from pwshpipe.transport import TransportWriter
from pwshpipe.types import QueuedCommand, ResultEnvelope


class QueueState(StrEnum):
    IDLE = "idle"
    DISPATCHING = "dispatching"
    SHUT_DOWN = "shut_down"


@dataclass(frozen=True)
class _Submitted:
    command: QueuedCommand


@dataclass(frozen=True)
class _FrameArrived:
    payload: str


@dataclass(frozen=True)
class _EngineExited:
    returncode: int | None


type _Event = _Submitted | _FrameArrived | _EngineExited


def _resolve(command: QueuedCommand, envelope: ResultEnvelope) -> None:
    if not command.future.done():
        command.future.set_result(envelope)


def _reject(command: QueuedCommand, error: PipelineError) -> None:
    if not command.future.done():
        command.future.set_exception(error)


class CommandQueue:
    """Serialize commands so the engine only ever sees one at a time."""

    def __init__(self, writer: TransportWriter, demux: Demultiplexer) -> None:
        self._writer = writer
        self._demux = demux
        self._inbox: asyncio.Queue[_Event] = asyncio.Queue()
        self._backlog: deque[QueuedCommand] = deque()
        self._in_flight: QueuedCommand | None = None
        self._state = QueueState.IDLE
        self._task: asyncio.Task[None] | None = None

    @property
    def state(self) -> QueueState:
        return self._state

    @property
    def ready(self) -> bool:
        """Readiness token: whether the next command may be dispatched."""
        return self._state is QueueState.IDLE

    @property
    def in_flight(self) -> QueuedCommand | None:
        return self._in_flight

    @property
    def backlog_size(self) -> int:
        return len(self._backlog)

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name="pwshpipe.command_queue")

    def submit(self, command: QueuedCommand) -> None:
        if self._state is QueueState.SHUT_DOWN:
            raise PipelineClosedError("pipeline is shut down")
        self._inbox.put_nowait(_Submitted(command))

    def frame_arrived(self, payload: str) -> None:
        self._inbox.put_nowait(_FrameArrived(payload))

    def engine_exited(self, returncode: int | None) -> None:
        self._inbox.put_nowait(_EngineExited(returncode))

    async def shutdown(self) -> None:
        """Stop processing; pending futures are left unsettled."""
        self._state = QueueState.SHUT_DOWN
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _run(self) -> None:
        while self._state is not QueueState.SHUT_DOWN:
            event = await self._inbox.get()
            try:
                await self._handle(event)
            except Exception as exc:
                logger.exception("queue.crashed event={}", type(event).__name__)
                error = PipelineError(f"command queue failed: {exc!r}")
                error.__cause__ = exc
                self._fail_pending(error)

    async def _handle(self, event: _Event) -> None:
        if isinstance(event, _Submitted):
            self._backlog.append(event.command)
        elif isinstance(event, _FrameArrived):
            self._complete(event.payload)
        else:
            self._fail_pending(EngineExitedError(event.returncode))
            return
        await self._dispatch_next()

    async def _dispatch_next(self) -> None:
        if self._state is not QueueState.IDLE or not self._backlog:
            return
        command = self._backlog.popleft()
        self._in_flight = command
        self._state = QueueState.DISPATCHING
        logger.info(
            "queue.dispatch command={!r} format={} backlog={}",
            command.command,
            command.format or "raw",
            len(self._backlog),
        )
        try:
            await self._writer.write(command.wrapped)
        except TransportError as exc:
            self._fail_pending(exc)

    def _complete(self, payload: str) -> None:
        command = self._in_flight
        if self._state is not QueueState.DISPATCHING or command is None:
            logger.warning("queue.frame.unexpected size={}", len(payload))
            return
        # Keep the command in flight until it is settled; a crash while
        # demultiplexing must still reject it.
        self._state = QueueState.IDLE
        try:
            envelope = self._demux.demultiplex(payload)
        except ParseError as exc:
            logger.warning("queue.frame.parse_error command={!r} error={!s}", command.command, exc)
            self._in_flight = None
            _reject(command, exc)
            return
        self._in_flight = None
        logger.info("queue.complete command={!r}", command.command)
        _resolve(command, envelope)

    def _fail_pending(self, error: PipelineError) -> None:
        pending = [self._in_flight] if self._in_flight is not None else []
        pending.extend(self._backlog)
        logger.error("queue.fatal pending={} error={!s}", len(pending), error)
        self._in_flight = None
        self._backlog.clear()
        self._state = QueueState.SHUT_DOWN
        for command in pending:
            _reject(command, error)
        while not self._inbox.empty():
            event = self._inbox.get_nowait()
            if isinstance(event, _Submitted):
                _reject(event.command, error)
