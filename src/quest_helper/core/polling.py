"""Periodic authoritative-status refresh for the active session.

Game sessions have no native progress push, so their progress and
completion are learned by polling the task list. Video and stream sessions
can optionally be polled as well, as a fallback for lost push signals.

The controller never stops a session itself. A completion it detects is
reported through ``on_completed``, which the state machine turns into a
signal handled outside of the timer callback.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence

from quest_helper.core.scheduler import PeriodicTimer
from quest_helper.core.types import Session, Task
from quest_helper.utils.constants import DEFAULT_POLLING_INTERVAL, PROGRESS_MAX

logger = logging.getLogger(__name__)

RefreshCallback = Callable[[], Awaitable[Sequence[Task]]]


class PollingController:
    """Poll the task list while a session is active.

    Args:
        session: Live session record, read on every poll.
        refresh: Silently refreshes and returns the task snapshot.
        on_progress: Receives recomputed authoritative progress (0-100).
        on_completed: Called with the task id once completion is seen.
        interval: Seconds between polls.
    """

    def __init__(
        self,
        session: Session,
        refresh: RefreshCallback,
        on_progress: Callable[[float], None],
        on_completed: Callable[[str], None],
        interval: float = DEFAULT_POLLING_INTERVAL,
    ) -> None:
        self._session = session
        self._refresh = refresh
        self._on_progress = on_progress
        self._on_completed = on_completed
        self._timer = PeriodicTimer(interval, self.poll, name="status-polling")

    @property
    def armed(self) -> bool:
        return self._timer.armed

    @property
    def interval(self) -> float:
        return self._timer.interval

    def set_interval(self, seconds: float) -> None:
        """Change the polling interval, re-arming a running timer."""
        if seconds <= 0:
            raise ValueError(f"Polling interval must be positive, got {seconds}")
        self._timer.interval = seconds
        if self._timer.armed:
            self._timer.start()

    def arm(self) -> None:
        self._timer.start()
        logger.debug(f"Polling armed every {self._timer.interval}s")

    def disarm(self) -> None:
        """Stop polling. No-op when not armed."""
        self._timer.cancel()

    async def poll(self) -> None:
        """Refresh once and report what the authoritative status shows."""
        task_id = self._session.task_id
        if task_id is None:
            self.disarm()
            return

        try:
            tasks = await self._refresh()
        except Exception as e:
            logger.warning(f"Status refresh failed, will retry: {e}")
            return

        if self._session.task_id != task_id:
            # Session changed while the refresh was in flight
            return

        task = next((t for t in tasks if t.id == task_id), None)
        if task is None:
            logger.debug(f"Task {task_id} not in refreshed list")
            return

        if task.is_completed:
            logger.info(f"Completion detected by polling for task {task_id}")
            self.disarm()
            self._on_completed(task_id)
            return

        target = self._session.target_seconds
        if target > 0:
            pct = min(PROGRESS_MAX, task.progress_seconds / target * 100.0)
            self._on_progress(pct)


__all__ = ["PollingController", "RefreshCallback"]
