"""Render a command as a PowerShell statement that prints one result frame.

The rendered statement runs the command with every stream merged into the
output (``*>&1``), splits the records back out by type, serializes each
category and writes ``head + {"result": {...}} + tail`` to stdout.

Everything is emitted on a single line: with ``-Command -`` the engine
executes its input line by line.
"""

from __future__ import annotations

import base64
import uuid
from pathlib import Path
from typing import Final, Protocol

from pwshpipe.types import OUTPUT_FORMATS, Format

_NS: Final[str] = "System.Management.Automation"
_RECORD_TYPES: Final[dict[str, str]] = {
    "error": f"[{_NS}.ErrorRecord]",
    "warning": f"[{_NS}.WarningRecord]",
    "verbose": f"[{_NS}.VerboseRecord]",
    "debug": f"[{_NS}.DebugRecord]",
    "info": f"[{_NS}.InformationRecord]",
}
_SUCCESS_EXPRESSIONS: Final[dict[str | None, str]] = {
    "json": "ConvertTo-Json -Compress -Depth 4 -InputObject $__pp_ok",
    "string": "ConvertTo-Json -Compress -InputObject ($__pp_ok | Out-String)",
    "csv": "ConvertTo-Json -Compress -InputObject @($__pp_ok | ConvertTo-Csv -NoTypeInformation)",
    "html": 'ConvertTo-Json -Compress -InputObject (($__pp_ok | ConvertTo-Html) -join "`n")',
    None: "($__pp_ok | Out-String)",
}


class Encoder(Protocol):
    def __call__(
        self,
        command: str,
        head: str,
        tail: str,
        format: Format = "json",
        scratch_dir: Path | None = None,
    ) -> str: ...


def quote(text: str) -> str:
    """Quote ``text`` as a single-quoted PowerShell literal."""
    return "'" + text.replace("'", "''") + "'"


def split_literal(text: str) -> str:
    """Render ``text`` as a concatenation so the script never contains it verbatim."""
    if len(text) < 2:
        return quote(text)
    middle = len(text) // 2
    return f"({quote(text[:middle])} + {quote(text[middle:])})"


def _invocation(command: str, scratch_dir: Path | None) -> tuple[str, str | None]:
    if scratch_dir is None:
        encoded = base64.b64encode(command.encode("utf-8")).decode("ascii")
        source = f"[Text.Encoding]::UTF8.GetString([Convert]::FromBase64String('{encoded}'))"
        return f"& ([ScriptBlock]::Create({source}))", None
    scratch_dir.mkdir(parents=True, exist_ok=True)
    script = scratch_dir / f"pwshpipe-{uuid.uuid4().hex}.ps1"
    # BOM so Windows PowerShell reads the file as UTF-8.
    script.write_text(command, encoding="utf-8-sig")
    path = quote(str(script))
    return f"& {path}", f"Remove-Item -LiteralPath {path} -Force -ErrorAction SilentlyContinue"


def wrap(
    command: str,
    head: str,
    tail: str,
    format: Format = "json",
    scratch_dir: Path | None = None,
) -> str:
    """Return the engine input that runs ``command`` and prints its frame."""
    if format not in _SUCCESS_EXPRESSIONS:
        raise ValueError(f"unsupported format: {format!r}; expected one of {OUTPUT_FORMATS} or None")

    invocation, cleanup = _invocation(command, scratch_dir)
    is_record = " -or ".join(f"$_ -is {record}" for record in _RECORD_TYPES.values())
    fields = [f"success = {_SUCCESS_EXPRESSIONS[format]}"]
    for name, record in _RECORD_TYPES.items():
        picked = f"(& $__pp_pick ({record}))"
        if name in ("verbose", "debug"):
            fields.append(f'{name} = ConvertTo-Json -Compress -InputObject ({picked} -join "`n")')
        else:
            fields.append(f"{name} = ConvertTo-Json -Compress -InputObject @{picked}")
    fields.append(f"format = {quote(format) if format is not None else '$null'}")

    statements = [
        f"$__pp_all = @({invocation} *>&1)",
        "$__pp_pick = { param($type) @($__pp_all | Where-Object { $_ -is $type } | ForEach-Object { $_.ToString() }) }",
        f"$__pp_ok = @($__pp_all | Where-Object {{ -not ({is_record}) }})",
        f"$__pp_result = [ordered]@{{ {'; '.join(fields)} }}",
    ]
    if cleanup is not None:
        statements.append(cleanup)
    statements.extend(
        [
            f"$__pp_frame = {split_literal(head)} + "
            "(ConvertTo-Json -Compress -Depth 3 -InputObject @{ result = $__pp_result }) + "
            f"{split_literal(tail)}",
            "[Console]::Out.Write($__pp_frame)",
            "[Console]::Out.Flush()",
        ]
    )
    return "& { " + "; ".join(statements) + " }\n"
