"""Result and command data types."""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Literal

type OutputFormat = Literal["json", "string", "csv", "html"]
type Format = OutputFormat | None

OUTPUT_FORMATS: tuple[str, ...] = ("json", "string", "csv", "html")


class Category(StrEnum):
    """Output categories carried by one result envelope."""

    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"
    VERBOSE = "verbose"
    DEBUG = "debug"
    INFO = "info"


@dataclass(frozen=True, slots=True)
class Raw:
    """Category text passed through without decoding."""

    value: str

    @property
    def empty(self) -> bool:
        return not self.value


@dataclass(frozen=True, slots=True)
class Decoded:
    """Category text decoded from JSON."""

    value: Any

    @property
    def empty(self) -> bool:
        if self.value is None:
            return True
        if isinstance(self.value, (str, list, dict)):
            return len(self.value) == 0
        return False


type CategoryValue = Raw | Decoded


@dataclass(frozen=True)
class ResultEnvelope:
    """Decoded result of one command, one value per category."""

    success: CategoryValue
    error: CategoryValue
    warning: CategoryValue
    verbose: CategoryValue
    debug: CategoryValue
    info: CategoryValue
    format: Format = "json"

    def get(self, category: Category | str) -> CategoryValue:
        return getattr(self, Category(category).value)

    def items(self) -> Iterator[tuple[Category, CategoryValue]]:
        for category in Category:
            yield category, self.get(category)

    def non_empty(self) -> dict[Category, CategoryValue]:
        return {category: value for category, value in self.items() if not value.empty}


@dataclass(frozen=True)
class QueuedCommand:
    """One submitted command waiting for its frame."""

    command: str
    wrapped: str
    future: asyncio.Future[ResultEnvelope]
    format: Format = "json"
