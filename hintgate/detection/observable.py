"""Minimal observer list for state containers."""
from typing import Callable, List
from hintgate.core.logging import logger

Listener = Callable[[], None]


class Observable:
    """Notifies subscribers after every state change."""

    def __init__(self):
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception as e:
                logger.error(f"State listener {listener!r} failed: {e}", exc_info=True)
