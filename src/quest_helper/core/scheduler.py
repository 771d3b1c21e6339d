"""Cancellable periodic timers on the running event loop.

A :class:`PeriodicTimer` wraps one asyncio task that sleeps for a fixed
interval and then invokes a callback, forever, until cancelled. Its
lifecycle is explicit: ``start()`` arms it and ``cancel()`` disarms it.
``cancel()`` on a timer that was never armed, or was already disarmed, is a
no-op.

Example:
    >>> timer = PeriodicTimer(0.25, simulator.tick, name="progress-tick")
    >>> timer.start()
    >>> ...
    >>> timer.cancel()
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[None] | None]


def _current_task() -> asyncio.Task | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class PeriodicTimer:
    """Invoke a callback every ``interval`` seconds until cancelled.

    The callback may be a plain function or a coroutine function. A
    coroutine callback is awaited before the next sleep begins, so ticks
    never overlap. Exceptions raised by the callback are logged and the
    timer keeps running.

    Attributes:
        interval: Seconds between invocations.
        name: Name used for the asyncio task and in log messages.
    """

    def __init__(self, interval: float, callback: TimerCallback, name: str = "timer") -> None:
        if interval <= 0:
            raise ValueError(f"Timer interval must be positive, got {interval}")
        self.interval = interval
        self.name = name
        self._callback = callback
        self._task: asyncio.Task[None] | None = None
        self._token: object | None = None

    @property
    def armed(self) -> bool:
        """Check if the timer is scheduled to fire."""
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Arm the timer, re-arming it if it is already running.

        Must be called from within a running event loop.
        """
        self.cancel()
        token = object()
        self._token = token
        self._task = asyncio.get_running_loop().create_task(self._run(token), name=self.name)

    def cancel(self) -> None:
        """Disarm the timer. No-op when not armed.

        Calling this from inside the timer's own callback ends the loop once
        the callback returns instead of cancelling the running task.
        """
        self._token = None
        task = self._task
        self._task = None
        if task is None or task.done() or task is _current_task():
            return
        task.cancel()

    async def _run(self, token: object) -> None:
        while self._token is token:
            await asyncio.sleep(self.interval)
            if self._token is not token:
                break
            try:
                result = self._callback()
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Timer %s callback failed", self.name)


__all__ = ["PeriodicTimer", "TimerCallback"]
