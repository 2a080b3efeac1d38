"""Signal-based broadcast channels, one per output category."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from blinker import Signal
from loguru import logger

from pwshpipe.types import Category, CategoryValue

Handler = Callable[[CategoryValue], None]


class ChannelRegistry:
    """Publish/subscribe registry backed by blinker signals."""

    def __init__(self) -> None:
        self._signals: dict[Category, Signal] = {
            category: Signal(f"pwshpipe.{category.value}") for category in Category
        }

    def subscribe(self, category: Category | str, handler: Handler) -> Callable[[], None]:
        """Register ``handler`` and return a callable that unregisters it."""
        signal = self._signals[Category(category)]

        def _receiver(sender: Any, *, value: CategoryValue) -> None:
            handler(value)

        signal.connect(_receiver, weak=False)
        return lambda: signal.disconnect(_receiver)

    def publish(self, category: Category | str, value: CategoryValue) -> None:
        category = Category(category)
        signal = self._signals[category]
        for receiver in signal.receivers_for(self):
            try:
                receiver(self, value=value)
            except Exception:
                logger.exception("channel.{}.receiver.error", category.value)

    def receiver_count(self, category: Category | str) -> int:
        return len(self._signals[Category(category)].receivers)
