"""Split one frame payload into its output categories."""

from __future__ import annotations

import json
from typing import Final

from loguru import logger
from pydantic import BaseModel, ConfigDict, ValidationError

from pwshpipe.channels import ChannelRegistry
from pwshpipe.errors import ParseError
from pwshpipe.types import Category, CategoryValue, Decoded, Format, Raw, ResultEnvelope

# Categories whose encoding does not depend on the requested format.
FIXED_FORMATS: Final[dict[Category, Format]] = {
    Category.ERROR: "json",
    Category.WARNING: "json",
    Category.INFO: "json",
    Category.VERBOSE: "string",
    Category.DEBUG: "string",
}


class _RawStreams(BaseModel):
    model_config = ConfigDict(extra="ignore")

    success: str
    error: str
    warning: str
    verbose: str
    debug: str
    info: str
    format: str | None


class _RawFrame(BaseModel):
    model_config = ConfigDict(extra="ignore")

    result: _RawStreams


def decode_category(text: str, format: Format) -> CategoryValue:
    """Decode one category's text; ``None`` keeps it raw."""
    if format is None:
        return Raw(text)
    return Decoded(json.loads(text))


def parse_envelope(frame: str) -> ResultEnvelope:
    """Parse a frame payload without publishing anything."""
    try:
        raw = _RawFrame.model_validate_json(frame).result
    except ValidationError as exc:
        raise ParseError(f"invalid result envelope: {exc.error_count()} error(s)", frame) from exc

    values: dict[str, CategoryValue] = {}
    for category in Category:
        fmt = FIXED_FORMATS.get(category, raw.format)
        try:
            values[category.value] = decode_category(getattr(raw, category.value), fmt)
        except (ValueError, RecursionError) as exc:
            raise ParseError(f"category '{category.value}' is not valid JSON: {exc}", frame) from exc
    return ResultEnvelope(**values, format=raw.format)  # type: ignore[arg-type]


class Demultiplexer:
    """Parse frames and republish non-empty categories on their channels."""

    def __init__(self, channels: ChannelRegistry) -> None:
        self._channels = channels

    def demultiplex(self, frame: str) -> ResultEnvelope:
        envelope = parse_envelope(frame)
        published = []
        for category, value in envelope.items():
            if value.empty:
                continue
            self._channels.publish(category, value)
            published.append(category.value)
        logger.debug("demux.frame size={} published={}", len(frame), ",".join(published) or "-")
        return envelope
