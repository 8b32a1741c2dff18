"""Clock and cancellable deferred-call abstractions."""
import asyncio
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional


def wall_clock_ms() -> float:
    """Current Unix time in milliseconds."""
    return time.time() * 1000.0


class Scheduler(ABC):
    """Runs a callback after a delay; every scheduled call can be cancelled."""

    @abstractmethod
    def schedule(self, delay_ms: float, callback: Callable[[], None]) -> Any:
        """Arm a deferred call and return its handle."""

    @abstractmethod
    def cancel(self, handle: Any) -> None:
        """Disarm a deferred call. Cancelling a fired or cancelled handle is a no-op."""


class AsyncioScheduler(Scheduler):
    """Scheduler backed by ``loop.call_later``."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def schedule(self, delay_ms: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(max(0.0, delay_ms) / 1000.0, callback)

    def cancel(self, handle: asyncio.TimerHandle) -> None:
        handle.cancel()
