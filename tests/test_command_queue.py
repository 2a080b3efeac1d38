from __future__ import annotations

import asyncio

import pytest
from loguru import logger

from fakes import FakeStdin, envelope_payload, settle
from pwshpipe.channels import ChannelRegistry
from pwshpipe.command_queue import CommandQueue, QueueState
from pwshpipe.demux import Demultiplexer
from pwshpipe.errors import EngineExitedError, ParseError, PipelineClosedError, PipelineError, TransportError
from pwshpipe.transport import TransportWriter
from pwshpipe.types import Decoded, QueuedCommand, ResultEnvelope


def _command(text: str) -> QueuedCommand:
    future: asyncio.Future[ResultEnvelope] = asyncio.get_running_loop().create_future()
    return QueuedCommand(command=text, wrapped=f"{text}\n", future=future)


def _queue(stdin: FakeStdin) -> CommandQueue:
    queue = CommandQueue(TransportWriter(stdin), Demultiplexer(ChannelRegistry()))
    queue.start()
    return queue


@pytest.mark.asyncio
async def test_queue_starts_ready_and_dispatches_immediately() -> None:
    stdin = FakeStdin()
    queue = _queue(stdin)
    assert queue.ready is True

    command = _command("Get-Date")
    queue.submit(command)
    await settle()

    assert stdin.commands == ["Get-Date"]
    assert queue.state is QueueState.DISPATCHING
    assert queue.ready is False
    assert queue.in_flight is command
    await queue.shutdown()


@pytest.mark.asyncio
async def test_single_flight_and_fifo_completion() -> None:
    stdin = FakeStdin()
    queue = _queue(stdin)
    commands = [_command(f"cmd-{index}") for index in range(4)]
    for command in commands:
        queue.submit(command)

    for index, command in enumerate(commands):
        await settle()
        assert stdin.commands == [f"cmd-{i}" for i in range(index + 1)]
        assert queue.backlog_size == len(commands) - index - 1
        queue.frame_arrived(envelope_payload([index]))
        envelope = await asyncio.wait_for(command.future, timeout=1)
        assert envelope.success == Decoded([index])

    await settle()
    assert queue.state is QueueState.IDLE
    await queue.shutdown()


@pytest.mark.asyncio
async def test_parse_error_rejects_command_and_queue_continues() -> None:
    stdin = FakeStdin()
    queue = _queue(stdin)
    broken, following = _command("broken"), _command("following")
    queue.submit(broken)
    queue.submit(following)
    await settle()

    queue.frame_arrived("definitely not json")
    with pytest.raises(ParseError):
        await asyncio.wait_for(broken.future, timeout=1)

    await settle()
    assert stdin.commands == ["broken", "following"]
    queue.frame_arrived(envelope_payload(["ok"]))
    assert (await asyncio.wait_for(following.future, timeout=1)).success == Decoded(["ok"])
    await queue.shutdown()


@pytest.mark.asyncio
async def test_frame_without_command_in_flight_is_dropped() -> None:
    stdin = FakeStdin()
    queue = _queue(stdin)
    queue.frame_arrived(envelope_payload(["stray"]))
    await settle()

    command = _command("Get-Date")
    queue.submit(command)
    await settle()
    assert not command.future.done()
    assert queue.state is QueueState.DISPATCHING
    await queue.shutdown()


@pytest.mark.asyncio
async def test_cancelled_future_does_not_break_the_queue() -> None:
    stdin = FakeStdin()
    queue = _queue(stdin)
    first, second = _command("first"), _command("second")
    queue.submit(first)
    queue.submit(second)
    await settle()

    first.future.cancel()
    queue.frame_arrived(envelope_payload([1]))
    await settle()
    queue.frame_arrived(envelope_payload([2]))

    assert (await asyncio.wait_for(second.future, timeout=1)).success == Decoded([2])
    await queue.shutdown()


@pytest.mark.asyncio
async def test_transport_failure_rejects_pending_commands() -> None:
    stdin = FakeStdin()
    stdin.error = BrokenPipeError()
    queue = _queue(stdin)
    first, second = _command("first"), _command("second")
    queue.submit(first)
    queue.submit(second)

    with pytest.raises(TransportError):
        await asyncio.wait_for(first.future, timeout=1)
    with pytest.raises(TransportError):
        await asyncio.wait_for(second.future, timeout=1)
    assert queue.state is QueueState.SHUT_DOWN
    with pytest.raises(PipelineClosedError):
        queue.submit(_command("third"))


@pytest.mark.asyncio
async def test_engine_exit_rejects_in_flight_and_backlog() -> None:
    stdin = FakeStdin()
    queue = _queue(stdin)
    first, second = _command("first"), _command("second")
    queue.submit(first)
    queue.submit(second)
    await settle()

    queue.engine_exited(3)

    for command in (first, second):
        with pytest.raises(EngineExitedError) as exc_info:
            await asyncio.wait_for(command.future, timeout=1)
        assert exc_info.value.returncode == 3
    assert queue.state is QueueState.SHUT_DOWN


@pytest.mark.asyncio
async def test_shutdown_leaves_pending_futures_unsettled() -> None:
    stdin = FakeStdin()
    queue = _queue(stdin)
    first, second = _command("first"), _command("second")
    queue.submit(first)
    queue.submit(second)
    await settle()

    await queue.shutdown()

    assert queue.state is QueueState.SHUT_DOWN
    assert not first.future.done()
    assert not second.future.done()
    with pytest.raises(PipelineClosedError):
        queue.submit(_command("late"))


@pytest.mark.asyncio
async def test_deeply_nested_frame_rejects_only_its_command() -> None:
    stdin = FakeStdin()
    queue = _queue(stdin)
    nested, following = _command("nested"), _command("following")
    queue.submit(nested)
    queue.submit(following)
    await settle()

    queue.frame_arrived(envelope_payload().replace('"warning": "[]"', f'"warning": "{"[" * 100000}"'))
    with pytest.raises(ParseError):
        await asyncio.wait_for(nested.future, timeout=1)

    await settle()
    assert stdin.commands == ["nested", "following"]
    queue.frame_arrived(envelope_payload(["ok"]))
    assert (await asyncio.wait_for(following.future, timeout=1)).success == Decoded(["ok"])
    await queue.shutdown()


class _CrashingDemux:
    def demultiplex(self, frame: str) -> ResultEnvelope:
        raise RuntimeError("demux bug")


@pytest.mark.asyncio
async def test_unexpected_error_rejects_pending_and_closes_queue() -> None:
    stdin = FakeStdin()
    queue = CommandQueue(TransportWriter(stdin), _CrashingDemux())  # type: ignore[arg-type]
    queue.start()
    first, second = _command("first"), _command("second")
    queue.submit(first)
    queue.submit(second)
    await settle()

    queue.frame_arrived(envelope_payload([1]))

    for command in (first, second):
        with pytest.raises(PipelineError, match="demux bug") as exc_info:
            await asyncio.wait_for(command.future, timeout=1)
        assert isinstance(exc_info.value.__cause__, RuntimeError)
    assert queue.state is QueueState.SHUT_DOWN
    assert queue.in_flight is None
    with pytest.raises(PipelineClosedError):
        queue.submit(_command("third"))


@pytest.mark.asyncio
async def test_dispatch_log_names_the_requested_format() -> None:
    messages: list[str] = []
    sink_id = logger.add(lambda message: messages.append(message.record["message"]), level="INFO")
    try:
        stdin = FakeStdin()
        queue = _queue(stdin)
        future: asyncio.Future[ResultEnvelope] = asyncio.get_running_loop().create_future()
        queue.submit(QueuedCommand(command="Get-Date", wrapped="Get-Date\n", future=future, format=None))
        queue.submit(_command("Get-Host"))
        await settle()
        queue.frame_arrived(envelope_payload("Monday", format=None))
        await settle()
        await queue.shutdown()
    finally:
        logger.remove(sink_id)

    dispatches = [message for message in messages if message.startswith("queue.dispatch")]
    assert dispatches == [
        "queue.dispatch command='Get-Date' format=raw backlog=0",
        "queue.dispatch command='Get-Host' format=json backlog=0",
    ]
