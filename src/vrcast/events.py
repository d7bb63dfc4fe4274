"""
Callback fan-out for listener events.
"""

from collections.abc import Callable
from typing import Any

from loguru import logger


class EventHandler:
    """Ordered list of callbacks fired together."""

    def __init__(self, name: str = "event"):
        self.name = name
        self._callbacks: list[Callable[..., Any]] = []

    def add_listener(self, callback: Callable[..., Any]) -> Callable[[], None]:
        """Register a callback. Returns a function that unregisters it."""
        self._callbacks.append(callback)
        return lambda: self.remove_listener(callback)

    def remove_listener(self, callback: Callable[..., Any]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def invoke(self, *args: Any, **kwargs: Any) -> None:
        """Call every listener; a failing listener is logged and skipped."""
        for callback in list(self._callbacks):
            try:
                callback(*args, **kwargs)
            except Exception:
                logger.exception(f"Listener {callback!r} for {self.name} failed")

    def __len__(self) -> int:
        return len(self._callbacks)
