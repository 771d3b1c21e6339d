"""Orchestrator for the quest lifecycle.

This module implements the central Orchestrator class. One instance is
constructed at startup and passed to every caller (CLI, tests). It owns the
task snapshot, the session state machine, the video and play queue drivers,
the session snapshot store and the user-facing ``error`` and ``loading``
flags.

Example:
    >>> from quest_helper.backends import LocalBackend
    >>> from quest_helper.core.orchestrator import Orchestrator
    >>>
    >>> orchestrator = Orchestrator(LocalBackend.from_files(tasks, catalog))
    >>> await orchestrator.recover_interrupted()
    >>> await orchestrator.refresh_tasks()
    >>>
    >>> task = orchestrator.find_task("1234")
    >>> await orchestrator.start_video(task)
    >>>
    >>> # Or process several tasks unattended
    >>> for task in orchestrator.tasks:
    ...     orchestrator.video_queue.enqueue(task)
    >>> await orchestrator.video_queue.start()
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from quest_helper.core.config import Config, GameConfig, PollingConfig, SimulationConfig
from quest_helper.core.queue import QueueDriver
from quest_helper.core.recovery import SessionStore
from quest_helper.core.session import SessionStateMachine
from quest_helper.core.types import (
    GameMode,
    Session,
    StopReason,
    Task,
    TeardownReport,
)

if TYPE_CHECKING:
    from quest_helper.backends.base import TaskBackend

logger = logging.getLogger(__name__)


@dataclass
class AcceptSummary:
    """Outcome of accepting several tasks.

    Attributes:
        accepted: Ids enrolled successfully.
        failed: Ids whose enrollment failed.
    """

    accepted: list[str]
    failed: list[str]

    @property
    def all_accepted(self) -> bool:
        return not self.failed


class Orchestrator:
    """Single entry point for task, session and queue operations.

    Args:
        backend: Remote executor and status gateway.
        config: User settings. Defaults to the loaded configuration.
        store: Session snapshot store. Defaults to one under
            ``config.paths.state_dir``.
        persist_settings: Write preference changes to the config file.
        settings_path: Config file to write. Defaults to the loaded one.
        clock: Monotonic clock for the progress simulator.
    """

    def __init__(
        self,
        backend: TaskBackend,
        config: Config | None = None,
        store: SessionStore | None = None,
        persist_settings: bool = True,
        settings_path: Path | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.backend = backend
        self.config = config or Config.load()
        self.store = store or SessionStore(self.config.paths.state_dir)
        self._persist_settings = persist_settings
        self._settings_path = settings_path

        self.tasks: tuple[Task, ...] = ()
        self.loading = False
        self.error: str | None = None

        self.machine = SessionStateMachine(
            backend,
            self.config,
            store=self.store,
            tasks=lambda: self.tasks,
            refresh=self._silent_refresh,
            clock=clock,
        )

        settle_delay = self.config.queue.settle_delay
        self.video_queue = QueueDriver("video", self.machine, self.start_video, settle_delay)
        self.play_queue = QueueDriver("play", self.machine, self.start_play, settle_delay)
        self.video_queue.link(self.play_queue)

        self._refresh_task: asyncio.Task[tuple[Task, ...]] | None = None
        self._remove_end_listener = self.machine.add_end_listener(self._on_session_end)

    @property
    def session(self) -> Session:
        """The live session record (read-only for callers)."""
        return self.machine.session

    @property
    def queue_running(self) -> bool:
        return self.video_queue.running or self.play_queue.running

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def refresh_tasks(self, silent: bool = False) -> tuple[Task, ...]:
        """Fetch the task list.

        Args:
            silent: Do not toggle the loading flag or record errors.

        Returns:
            The new snapshot, or the previous one if the fetch failed.
        """
        if not silent:
            self.loading = True
            self.error = None
        try:
            tasks = await self.backend.list_tasks()
        except Exception as e:
            logger.error(f"Failed to fetch tasks: {e}")
            if not silent:
                self.error = str(e)
            return self.tasks
        finally:
            if not silent:
                self.loading = False

        self.tasks = tuple(tasks)
        logger.debug(f"Fetched {len(self.tasks)} tasks")
        return self.tasks

    async def _silent_refresh(self) -> tuple[Task, ...]:
        return await self.refresh_tasks(silent=True)

    def find_task(self, task_id: str) -> Task | None:
        """Look a task up in the current snapshot."""
        return next((t for t in self.tasks if t.id == task_id), None)

    async def accept_task(self, task_id: str) -> None:
        """Enroll in a task and patch the snapshot.

        Raises:
            Exception: Whatever the backend raised; also recorded in ``error``.
        """
        try:
            await self.backend.enroll_in_task(task_id)
        except Exception as e:
            logger.error(f"Failed to accept task {task_id}: {e}")
            self.error = str(e)
            raise

        enrolled_at = datetime.now(timezone.utc).isoformat()
        self.tasks = tuple(
            t.with_enrollment(enrolled_at) if t.id == task_id else t for t in self.tasks
        )
        logger.info(f"Accepted task {task_id}")

    async def accept_all(self, task_ids: Iterable[str]) -> AcceptSummary:
        """Enroll in several tasks one after another.

        Failures do not stop the batch; a summary is recorded in ``error``
        when any enrollment fails.
        """
        summary = AcceptSummary(accepted=[], failed=[])
        for index, task_id in enumerate(task_ids):
            if index > 0 and self.config.queue.enroll_delay > 0:
                await asyncio.sleep(self.config.queue.enroll_delay)
            try:
                await self.accept_task(task_id)
                summary.accepted.append(task_id)
            except Exception:
                summary.failed.append(task_id)

        if summary.failed:
            self.error = (
                f"Accepted {len(summary.accepted)} tasks, {len(summary.failed)} failed"
            )
        return summary

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def start_video(self, task: Task) -> None:
        """Start a video task from its snapshot."""
        await self._guarded_start(
            self.machine.start_video(task.id, task.target_seconds, task.progress_seconds)
        )

    async def start_stream(self, task: Task, stream_key: str) -> None:
        """Start a stream task from its snapshot."""
        await self._guarded_start(
            self.machine.start_stream(
                task.id, stream_key, task.target_seconds, task.progress_seconds
            )
        )

    async def start_play(self, task: Task) -> None:
        """Start a game task from its snapshot in the configured mode."""
        await self._guarded_start(
            self.machine.start_game(task, task.target_seconds, task.progress_seconds)
        )

    async def _guarded_start(self, start: Awaitable[None]) -> None:
        self.error = None
        try:
            await start
        except Exception as e:
            self.error = str(e)
            raise

    async def stop(self) -> TeardownReport | None:
        """Stop the active session at the user's request.

        A running queue is halted as well. No-op when nothing is active.
        """
        if not self.machine.is_active:
            return None
        for queue in (self.video_queue, self.play_queue):
            if queue.running:
                logger.info(f"Manual stop halts the {queue.name} queue")
                queue.halt()
        return await self.machine.stop(StopReason.USER)

    def _on_session_end(self, task_id: str, reason: StopReason) -> None:
        if reason is StopReason.ERROR and self.machine.last_error is not None:
            self.error = str(self.machine.last_error)
        if reason in (StopReason.COMPLETED, StopReason.AUTO_DETECTED):
            if self._refresh_task is None or self._refresh_task.done():
                self._refresh_task = asyncio.get_running_loop().create_task(
                    self._silent_refresh(), name="post-completion-refresh"
                )

    async def recover_interrupted(self) -> TeardownReport | None:
        """Tear down a session left over by a previous run.

        Best-effort: returns the teardown report, or None when there was no
        leftover session.
        """
        leftover = self.store.load()
        if leftover is None:
            return None
        if not self.tasks:
            await self.refresh_tasks(silent=True)
        return await self.machine.recover(leftover, self.tasks)

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    def set_speed_multiplier(self, value: int) -> None:
        """Set the video speed multiplier used by the next video start.

        Raises:
            pydantic.ValidationError: If the value is out of range.
        """
        self.config.simulation = SimulationConfig.model_validate(
            {**self.config.simulation.model_dump(), "speed_multiplier": value}
        )
        self._save_settings()

    def set_heartbeat_interval(self, seconds: int) -> None:
        """Set the video heartbeat interval used by the next video start."""
        self.config.simulation = SimulationConfig.model_validate(
            {**self.config.simulation.model_dump(), "heartbeat_interval": seconds}
        )
        self._save_settings()

    def set_polling_interval(self, seconds: int) -> None:
        """Set the polling interval, applied immediately if polling is armed."""
        self.config.polling = PollingConfig.model_validate(
            {**self.config.polling.model_dump(), "interval_seconds": seconds}
        )
        self.machine.polling.set_interval(seconds)
        self._save_settings()

    def set_game_mode(self, mode: GameMode) -> None:
        """Set how the next game task is started."""
        self.config.game = GameConfig.model_validate(
            {**self.config.game.model_dump(), "mode": mode}
        )
        self._save_settings()

    def _save_settings(self) -> None:
        if not self._persist_settings:
            return
        try:
            self.config.save(self._settings_path)
        except OSError as e:
            logger.error(f"Failed to save settings: {e}")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Halt the queues, stop the session and release the backend."""
        self.video_queue.detach()
        self.play_queue.detach()
        self._remove_end_listener()
        await self.machine.close()
        if self._refresh_task is not None and not self._refresh_task.done():
            self._refresh_task.cancel()
        await self.backend.close()


__all__ = ["AcceptSummary", "Orchestrator"]
