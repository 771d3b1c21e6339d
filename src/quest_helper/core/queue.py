"""Sequential batch processing of queued tasks.

A :class:`QueueDriver` feeds its tasks to the session state machine one at
a time. Two instances exist, one for video tasks and one for game tasks;
they differ only in the start coroutine they call.

The driver learns that its head task is finished through the state
machine's session-end listeners. Natural endings (completion, detected
completion, executor error) advance the queue after a settle delay that
lets the backend register the transition. User stops and preemption halt
the queue and empty it.

Example:
    >>> queue = QueueDriver("video", machine, orchestrator.start_video)
    >>> queue.enqueue(task_a)
    >>> queue.enqueue(task_b)
    >>> await queue.start()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from quest_helper.core.session import SessionStateMachine
from quest_helper.core.types import StopReason, Task
from quest_helper.utils.constants import DEFAULT_SETTLE_DELAY

logger = logging.getLogger(__name__)

StartCallback = Callable[[Task], Awaitable[None]]


class QueueDriver:
    """FIFO of tasks processed through the single session.

    While ``running`` is set, the head of the queue is the task of the
    active session.

    Args:
        name: Queue name used in logs ("video" or "play").
        machine: Session state machine to observe.
        start: Starts one task; raises on failure.
        settle_delay: Seconds to wait between a finished task and the next.
    """

    def __init__(
        self,
        name: str,
        machine: SessionStateMachine,
        start: StartCallback,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
    ) -> None:
        self.name = name
        self.settle_delay = settle_delay
        self.running = False
        self._machine = machine
        self._start = start
        self._queue: list[Task] = []
        self._serving: str | None = None
        self._advance_task: asyncio.Task[None] | None = None
        self._peers: list[QueueDriver] = []
        self._remove_listener = machine.add_end_listener(self._on_session_end)

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def head(self) -> Task | None:
        return self._queue[0] if self._queue else None

    @property
    def serving(self) -> str | None:
        """Id of the task this driver has started and not yet seen end."""
        return self._serving

    def snapshot(self) -> tuple[Task, ...]:
        """Get the queued tasks in order."""
        return tuple(self._queue)

    def link(self, other: QueueDriver) -> None:
        """Make two drivers mutually exclusive: starting one halts the other."""
        if other is self:
            return
        if other not in self._peers:
            self._peers.append(other)
        if self not in other._peers:
            other._peers.append(self)

    def enqueue(self, task: Task) -> bool:
        """Append a task unless one with the same id is queued.

        Returns:
            True if the task was added.
        """
        if any(t.id == task.id for t in self._queue):
            logger.debug(f"Task {task.id} already in {self.name} queue")
            return False
        self._queue.append(task)
        logger.info(f"Queued task {task.id} ({len(self._queue)} in {self.name} queue)")
        return True

    async def start(self) -> None:
        """Begin processing from the head.

        Halts any linked driver first. Returns once the head task is active,
        or once the queue turned out to be empty.
        """
        for peer in self._peers:
            if peer.running:
                logger.info(f"Halting {peer.name} queue for {self.name} queue")
                peer.halt()

        self.running = True
        await self._process_next()

    def halt(self) -> None:
        """Stop processing and empty the queue. The session is left alone."""
        self.running = False
        self._serving = None
        self._queue.clear()
        self._cancel_advance()

    async def clear(self) -> None:
        """Empty the queue and stop any active session."""
        logger.info(f"Clearing {self.name} queue")
        self.halt()
        await self._machine.stop(StopReason.QUEUE_CLEARED)

    async def join(self) -> None:
        """Wait for a pending advance to the next task to finish."""
        while self._advance_task is not None and not self._advance_task.done():
            await asyncio.wait({self._advance_task})

    async def _process_next(self) -> None:
        while self.running:
            if not self._queue:
                logger.info(f"{self.name.capitalize()} queue finished")
                self.running = False
                return

            head = self._queue[0]
            if head.is_completed:
                logger.info(f"Skipping completed task {head.id}")
                self._queue.pop(0)
                continue

            try:
                await self._start(head)
            except Exception as e:
                logger.error(f"Failed to start queued task {head.id}, skipping: {e}")
                self._dequeue(head.id)
                continue

            if not self.running:
                # Halted while the start was in flight
                return
            self._serving = head.id
            return

    def _on_session_end(self, task_id: str, reason: StopReason) -> None:
        if not self.running or task_id != self._serving:
            return

        self._serving = None
        if not reason.advances_queue:
            logger.info(f"{self.name.capitalize()} queue halted ({reason.value})")
            self.halt()
            return

        self._dequeue(task_id)
        logger.info(f"Queue item finished: {task_id}. Remaining: {len(self._queue)}")
        self._advance_task = asyncio.get_running_loop().create_task(
            self._advance(), name=f"{self.name}-queue-advance"
        )

    async def _advance(self) -> None:
        if self.settle_delay > 0:
            await asyncio.sleep(self.settle_delay)
        if self.running:
            await self._process_next()

    def _dequeue(self, task_id: str) -> None:
        if self._queue and self._queue[0].id == task_id:
            self._queue.pop(0)

    def _cancel_advance(self) -> None:
        task = self._advance_task
        self._advance_task = None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()

    def detach(self) -> None:
        """Stop observing the state machine."""
        self.halt()
        self._remove_listener()


__all__ = ["QueueDriver", "StartCallback"]
