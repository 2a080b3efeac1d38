"""Engine subprocess lifecycle."""

from __future__ import annotations

import asyncio
import sys
from contextlib import suppress
from pathlib import Path

from loguru import logger

from pwshpipe.errors import SpawnError

DEFAULT_ENGINE_ARGS: tuple[str, ...] = ("-NoLogo", "-NoExit", "-Command", "-")


def default_executable() -> str:
    """Return the engine executable for the host platform."""
    return "powershell" if sys.platform == "win32" else "pwsh"


class EngineProcess:
    """Own one interactive engine subprocess and its three pipes."""

    def __init__(self, process: asyncio.subprocess.Process, executable: str) -> None:
        if process.stdin is None or process.stdout is None or process.stderr is None:
            raise SpawnError(executable, "engine pipes are not attached")
        self._process = process
        self.executable = executable

    @classmethod
    async def start(
        cls,
        executable: str | None = None,
        *,
        args: tuple[str, ...] | list[str] = DEFAULT_ENGINE_ARGS,
        cwd: Path | None = None,
        env: dict[str, str] | None = None,
    ) -> EngineProcess:
        """Spawn the engine with piped stdio; failures raise ``SpawnError``."""
        exe = executable or default_executable()
        try:
            process = await asyncio.create_subprocess_exec(
                exe,
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd) if cwd is not None else None,
                env=env,
            )
        except (OSError, ValueError) as exc:
            logger.error("engine.spawn.error executable={} error={!s}", exe, exc)
            raise SpawnError(exe, str(exc)) from exc
        if not process.pid:
            raise SpawnError(exe, "no process id obtained")
        logger.info("engine.spawn executable={} pid={}", exe, process.pid)
        return cls(process, exe)

    @property
    def stdin(self) -> asyncio.StreamWriter:
        return self._process.stdin  # type: ignore[return-value]

    @property
    def stdout(self) -> asyncio.StreamReader:
        return self._process.stdout  # type: ignore[return-value]

    @property
    def stderr(self) -> asyncio.StreamReader:
        return self._process.stderr  # type: ignore[return-value]

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    @property
    def alive(self) -> bool:
        return self._process.returncode is None

    def terminate(self) -> None:
        """Send the termination signal without waiting for the exit."""
        if not self.alive:
            return
        logger.info("engine.terminate pid={}", self.pid)
        with suppress(ProcessLookupError):
            self._process.terminate()

    async def wait(self) -> int:
        return await self._process.wait()
