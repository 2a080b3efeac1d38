"""Exception types raised by the engine pipeline."""

from __future__ import annotations


class PipelineError(Exception):
    """Base exception for pwshpipe."""


class SpawnError(PipelineError):
    """Raised when the engine process cannot be started."""

    def __init__(self, executable: str, reason: str) -> None:
        super().__init__(f"could not start engine '{executable}': {reason}")
        self.executable = executable
        self.reason = reason


class ParseError(PipelineError):
    """Raised when a frame payload does not match the result envelope."""

    def __init__(self, message: str, frame: str) -> None:
        super().__init__(message)
        self.frame = frame


class TransportError(PipelineError):
    """Raised when writing to the engine's input stream fails."""


class EngineExitedError(PipelineError):
    """Raised for pending commands when the engine's output stream closes."""

    def __init__(self, returncode: int | None) -> None:
        super().__init__(f"engine exited (returncode={returncode})")
        self.returncode = returncode


class PipelineClosedError(PipelineError):
    """Raised when submitting to a pipeline that has shut down."""
