"""Event subscription and the orchestrator's internal signal channel.

Executors push three kinds of events (progress, complete, error) through a
subscribe/unsubscribe interface. The orchestrator never reacts inside those
callbacks: each callback only posts a :class:`Signal` tagged with the
generation of the session that subscribed. A single pump task delivers the
signals, in arrival order, to the state machine, which drops signals from
stale generations.

Unsubscribe handles are kept in :class:`ListenerSlots`, one typed slot per
event, so releasing them at teardown is a fixed checklist.

Example:
    >>> emitter = EventEmitter()
    >>> unsubscribe = emitter.subscribe("progress", print)
    >>> emitter.emit("progress", 42.0)
    42.0
    >>> unsubscribe()
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

Unsubscribe = Callable[[], None]

EVENT_PROGRESS = "progress"
EVENT_COMPLETE = "complete"
EVENT_ERROR = "error"


class EventEmitter:
    """Named-event listener registry.

    Listener failures are logged and never reach the emitter or the other
    listeners.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Callable[..., None]]] = defaultdict(list)

    def subscribe(self, event: str, listener: Callable[..., None]) -> Unsubscribe:
        """Register a listener.

        Args:
            event: Event name.
            listener: Callable invoked with the event arguments.

        Returns:
            Handle that removes the listener; calling it twice is harmless.
        """
        self._listeners[event].append(listener)

        def unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners[event].remove(listener)

        return unsubscribe

    def emit(self, event: str, *args: Any) -> None:
        """Invoke every listener of an event."""
        for listener in list(self._listeners.get(event, ())):
            try:
                listener(*args)
            except Exception as e:
                logger.warning(f"Listener for {event!r} failed: {e}")

    def listener_count(self, event: str) -> int:
        """Number of listeners registered for an event."""
        return len(self._listeners.get(event, ()))


@dataclass
class ListenerSlots:
    """Unsubscribe handles of the active session, one slot per event."""

    progress: Unsubscribe | None = None
    complete: Unsubscribe | None = None
    error: Unsubscribe | None = None

    @property
    def armed(self) -> bool:
        """Check if any slot still holds a handle."""
        return any(h is not None for h in (self.progress, self.complete, self.error))

    def release(self) -> None:
        """Call and clear every handle. No-op for empty slots."""
        for slot in (EVENT_PROGRESS, EVENT_COMPLETE, EVENT_ERROR):
            handle = getattr(self, slot)
            setattr(self, slot, None)
            if handle is None:
                continue
            try:
                handle()
            except Exception as e:
                logger.warning(f"Failed to release {slot} listener: {e}")


class SignalKind(Enum):
    """Kinds of signals routed to the state machine."""

    PROGRESS = "progress"
    COMPLETE = "complete"
    ERROR = "error"
    AUTO_DETECTED = "auto_detected"


@dataclass(frozen=True)
class Signal:
    """A message for the state machine.

    Attributes:
        kind: What happened.
        generation: Session generation the signal belongs to.
        payload: Progress percentage or error message, when relevant.
    """

    kind: SignalKind
    generation: int
    payload: Any = None


SignalHandler = Callable[[Signal], Awaitable[None]]


class SignalChannel:
    """Ordered, single-consumer delivery of signals.

    ``post`` must be called from the event loop thread. The pump task is
    started lazily on the first post.
    """

    def __init__(self, handler: SignalHandler) -> None:
        self._handler = handler
        self._queue: asyncio.Queue[Signal] = asyncio.Queue()
        self._pump: asyncio.Task[None] | None = None

    @property
    def pending(self) -> int:
        """Number of signals waiting for delivery."""
        return self._queue.qsize()

    def post(self, signal: Signal) -> None:
        """Queue a signal for delivery."""
        if self._pump is None or self._pump.done():
            self._pump = asyncio.get_running_loop().create_task(
                self._run(), name="signal-channel"
            )
        self._queue.put_nowait(signal)

    async def join(self) -> None:
        """Wait until every posted signal has been handled."""
        await self._queue.join()

    async def close(self) -> None:
        """Stop the pump. Undelivered signals are discarded."""
        pump = self._pump
        self._pump = None
        if pump is None or pump.done():
            return
        pump.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await pump

    async def _run(self) -> None:
        while True:
            signal = await self._queue.get()
            try:
                await self._handler(signal)
            except Exception:
                logger.exception("Signal %s handling failed", signal.kind.value)
            finally:
                self._queue.task_done()


__all__ = [
    "EVENT_COMPLETE",
    "EVENT_ERROR",
    "EVENT_PROGRESS",
    "EventEmitter",
    "ListenerSlots",
    "Signal",
    "SignalChannel",
    "SignalHandler",
    "SignalKind",
    "Unsubscribe",
]
