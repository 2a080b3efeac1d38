"""Drive a long-lived PowerShell engine as an RPC target."""

__version__ = "0.1.0"

from pwshpipe.channels import ChannelRegistry
from pwshpipe.config import Settings, load_settings
from pwshpipe.encoder import wrap
from pwshpipe.errors import (
    EngineExitedError,
    ParseError,
    PipelineClosedError,
    PipelineError,
    SpawnError,
    TransportError,
)
from pwshpipe.pipeline import EnginePipeline
from pwshpipe.process import EngineProcess
from pwshpipe.types import Category, CategoryValue, Decoded, Format, Raw, ResultEnvelope

__all__ = [
    "Category",
    "CategoryValue",
    "ChannelRegistry",
    "Decoded",
    "EngineExitedError",
    "EngineProcess",
    "EnginePipeline",
    "Format",
    "ParseError",
    "PipelineClosedError",
    "PipelineError",
    "Raw",
    "ResultEnvelope",
    "Settings",
    "SpawnError",
    "TransportError",
    "load_settings",
    "wrap",
]
