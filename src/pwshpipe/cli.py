"""pwshpipe command line."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import typer
from loguru import logger
from rich.console import Console

from pwshpipe.config import Settings, load_settings
from pwshpipe.errors import PipelineError
from pwshpipe.logging_utils import configure_logging
from pwshpipe.pipeline import EnginePipeline
from pwshpipe.types import OUTPUT_FORMATS, Decoded, Format, ResultEnvelope

app = typer.Typer(name="pwshpipe", help="Drive a PowerShell engine over stdio.", add_completion=False)
console = Console()


@app.callback()
def main_callback() -> None:
    """Drive a PowerShell engine over stdio."""


def _parse_format(value: str) -> Format:
    value = value.strip().lower()
    if value == "raw":
        return None
    if value not in OUTPUT_FORMATS:
        raise typer.BadParameter(f"expected one of {', '.join((*OUTPUT_FORMATS, 'raw'))}")
    return value  # type: ignore[return-value]


def _render(command: str, envelope: ResultEnvelope) -> None:
    console.rule(command)
    categories = envelope.non_empty()
    if not categories:
        console.print("(no output)", style="dim")
        return
    for category, value in categories.items():
        console.print(f"[bold]{category.value}[/bold]")
        if isinstance(value, Decoded) and not isinstance(value.value, str):
            console.print_json(json.dumps(value.value, default=str))
        else:
            console.print(value.value, markup=False, highlight=False)


async def _run_commands(settings: Settings, commands: list[str], format: Format, timeout: float | None) -> None:
    async with await EnginePipeline.launch(settings) as pipeline:
        futures = [pipeline.submit(command, format) for command in commands]
        for command, future in zip(commands, futures, strict=True):
            envelope = await asyncio.wait_for(future, timeout=timeout)
            _render(command, envelope)


@app.command("run")
def run(
    commands: list[str] = typer.Argument(..., help="Commands to run, in order"),  # noqa: B008
    output_format: str = typer.Option("json", "--format", "-f", help="json, string, csv, html or raw"),
    executable: str | None = typer.Option(None, "--executable", "-e", help="Engine executable"),
    scratch_dir: Path | None = typer.Option(None, "--scratch-dir", help="Directory for command scripts"),  # noqa: B008
    timeout: float | None = typer.Option(None, "--timeout", help="Seconds to wait for each command"),
    log_level: str | None = typer.Option(None, "--log-level", help="Log level"),
) -> None:
    """Run commands through one engine and print each result."""

    fmt = _parse_format(output_format)
    settings = load_settings(executable=executable, scratch_dir=scratch_dir, log_level=log_level)
    configure_logging(settings.log_level)
    try:
        asyncio.run(_run_commands(settings, commands, fmt, timeout))
    except TimeoutError:
        logger.error("cli.run.timeout timeout={}", timeout)
        typer.echo(f"error: command timed out after {timeout}s", err=True)
        raise typer.Exit(1) from None
    except PipelineError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(1) from exc
