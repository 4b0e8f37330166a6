"""Cancellable timers and task helpers for the editor controllers."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Coroutine, Protocol

__all__ = ["TimerHandle", "Scheduler", "LoopScheduler", "Debouncer", "spawn"]

LOGGER = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


class Scheduler(Protocol):
    """Anything able to run a callback after a delay, like an event loop."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        ...


class LoopScheduler:
    """Scheduler backed by an asyncio event loop.

    The loop is resolved lazily so controllers can be built before the loop
    starts running.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return self.loop.call_later(max(0.0, delay), callback)


class Debouncer:
    """Runs ``callback`` once input has been quiet for ``delay`` seconds.

    Every :meth:`trigger` cancels the pending timer and starts a fresh one,
    so the window is always measured from the latest call.
    """

    def __init__(self, scheduler: Scheduler, delay: float, callback: Callable[[], None]) -> None:
        self._scheduler = scheduler
        self._delay = delay
        self._callback = callback
        self._handle: TimerHandle | None = None

    @property
    def delay(self) -> float:
        return self._delay

    @delay.setter
    def delay(self, value: float) -> None:
        self._delay = max(0.0, float(value))

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self) -> None:
        self.cancel()
        self._handle = self._scheduler.call_later(self._delay, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def flush(self) -> bool:
        """Run the pending callback immediately; return False when idle."""

        if self._handle is None:
            return False
        self.cancel()
        self._callback()
        return True

    def _fire(self) -> None:
        self._handle = None
        self._callback()


def spawn(coro: Coroutine[Any, Any, Any], *, name: str | None = None) -> asyncio.Task[Any]:
    """Schedule ``coro`` on the running loop and log unexpected failures."""

    task = asyncio.get_running_loop().create_task(coro, name=name)
    task.add_done_callback(_log_task_failure)
    return task


def _log_task_failure(task: asyncio.Task[Any]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        LOGGER.error("Background task %s failed", task.get_name(), exc_info=exc)
