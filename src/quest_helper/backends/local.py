"""In-process simulation of the remote task executor.

:class:`LocalBackend` keeps a task list and a detectable-applications
catalog in memory, typically loaded from JSON fixtures in the remote
format, and plays the remote side of every request:

- Video tasks advance ``speed x interval`` seconds per heartbeat and push
  progress and completion.
- Stream tasks send one heartbeat per 30 seconds and push progress and
  completion.
- Game tasks are credited server-side only, at real-time speed, either by
  direct heartbeat or while a launched fake executable has an open
  activity presence. Completion must be discovered by polling.

Sleeps are multiplied by ``time_scale`` so tests and demos can run faster
than real time.

Example:
    >>> backend = LocalBackend.from_files(Path("tasks.json"), Path("catalog.json"))
    >>> tasks = await backend.list_tasks()
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import math
from collections.abc import Callable, Coroutine, Iterable
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from quest_helper.backends.base import TaskBackend
from quest_helper.core.events import (
    EVENT_COMPLETE,
    EVENT_ERROR,
    EVENT_PROGRESS,
    EventEmitter,
    Unsubscribe,
)
from quest_helper.core.types import DetectableApplication, ProgressCounter, Task, UserStatus
from quest_helper.utils.constants import (
    PRESENCE_CONNECT,
    PROCESS_HEARTBEAT_INTERVAL,
    PROGRESS_MAX,
    STREAM_HEARTBEAT_INTERVAL,
)

logger = logging.getLogger(__name__)


class LocalBackendError(Exception):
    """Raised when the simulated remote side rejects a request."""

    pass


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class LocalBackend(TaskBackend):
    """Task backend simulated in memory.

    Args:
        tasks: Initial task snapshot.
        catalog: Detectable applications.
        time_scale: Factor applied to every sleep.

    Attributes:
        calls: Names of the request methods invoked, in order.
        submissions: (task id, seconds) pairs received by force-submit.
        presence: Last activity payload opened, None after disconnect.
        running_executables: Executable name to application id.
    """

    def __init__(
        self,
        tasks: Iterable[Task] = (),
        catalog: Iterable[DetectableApplication] = (),
        time_scale: float = 1.0,
    ) -> None:
        self._tasks: dict[str, Task] = {t.id: t for t in tasks}
        self._catalog = list(catalog)
        self.time_scale = time_scale

        self.calls: list[str] = []
        self.submissions: list[tuple[str, float]] = []
        self.presence: dict[str, Any] | None = None
        self.disconnects = 0
        self.running_executables: dict[str, str] = {}

        self._events = EventEmitter()
        self._runner: asyncio.Task[None] | None = None
        self._failures: dict[str, str] = {}

    @classmethod
    def from_files(
        cls,
        tasks_file: Path,
        catalog_file: Path | None = None,
        time_scale: float = 1.0,
    ) -> LocalBackend:
        """Load fixtures in the remote JSON format.

        Args:
            tasks_file: JSON list of tasks.
            catalog_file: JSON list of detectable applications.
            time_scale: Factor applied to every sleep.

        Raises:
            OSError: If a file cannot be read.
            ValueError: If a file is not valid JSON.
        """
        with open(tasks_file, encoding="utf-8") as f:
            raw_tasks = json.load(f)
        raw_catalog: list[dict[str, Any]] = []
        if catalog_file is not None:
            with open(catalog_file, encoding="utf-8") as f:
                raw_catalog = json.load(f)

        return cls(
            tasks=[Task.from_dict(d) for d in raw_tasks],
            catalog=[DetectableApplication.from_dict(d) for d in raw_catalog],
            time_scale=time_scale,
        )

    # ------------------------------------------------------------------
    # Test hooks
    # ------------------------------------------------------------------

    def fail(self, method: str, message: str = "rejected") -> None:
        """Make every later call of a request method raise.

        ``"heartbeat"`` makes a running video loop push an error instead.
        """
        self._failures[method] = message

    def recover(self, method: str) -> None:
        """Undo :meth:`fail`."""
        self._failures.pop(method, None)

    def push_error(self, message: str) -> None:
        """Push an error event as if the executor failed."""
        self._events.emit(EVENT_ERROR, message)

    @property
    def busy(self) -> bool:
        """Check if a task loop is running."""
        return self._runner is not None and not self._runner.done()

    def _enter(self, method: str) -> None:
        self.calls.append(method)
        if method in self._failures:
            raise LocalBackendError(f"{method}: {self._failures[method]}")

    # ------------------------------------------------------------------
    # Status gateway
    # ------------------------------------------------------------------

    async def list_tasks(self) -> list[Task]:
        self._enter("list_tasks")
        return list(self._tasks.values())

    async def list_detectable_applications(self) -> list[DetectableApplication]:
        self._enter("list_detectable_applications")
        return list(self._catalog)

    async def enroll_in_task(self, task_id: str) -> None:
        self._enter("enroll_in_task")
        task = self._task(task_id)
        self._tasks[task_id] = task.with_enrollment(_now())

    def _task(self, task_id: str) -> Task:
        try:
            return self._tasks[task_id]
        except KeyError:
            raise LocalBackendError(f"Unknown task {task_id}") from None

    def _credit(self, task_id: str, seconds: float) -> None:
        task = self._tasks[task_id]
        status = task.user_status or UserStatus()
        name = task.task_type or "PROGRESS"
        if seconds <= status.first_progress_value and status.progress:
            return
        others = tuple(c for c in status.progress if c.name != name)
        status = replace(status, progress=(ProgressCounter(name, seconds), *others))
        if task.target_seconds and seconds >= task.target_seconds and not status.completed_at:
            status = replace(status, completed_at=_now())
        self._tasks[task_id] = replace(task, user_status=status)

    # ------------------------------------------------------------------
    # Task execution
    # ------------------------------------------------------------------

    async def start_duration_task(
        self,
        task_id: str,
        target_seconds: int,
        initial_progress_pct: float,
        speed_multiplier: int,
        heartbeat_interval: int,
    ) -> None:
        self._enter("start_duration_task")
        self._task(task_id)
        await self._cancel_runner()
        self._spawn(
            self._video_loop(
                task_id, target_seconds, initial_progress_pct, speed_multiplier, heartbeat_interval
            )
        )

    async def start_stream_task(
        self,
        task_id: str,
        stream_key: str,
        target_seconds: int,
        initial_progress_pct: float,
    ) -> None:
        self._enter("start_stream_task")
        self._task(task_id)
        await self._cancel_runner()
        logger.debug(f"Streaming {task_id} with key {stream_key}")
        self._spawn(self._stream_loop(task_id, target_seconds, initial_progress_pct))

    async def start_process_heartbeat_task(
        self,
        task_id: str,
        application_id: str,
        target_seconds: int,
        initial_progress_pct: float,
    ) -> None:
        self._enter("start_process_heartbeat_task")
        self._task(task_id)
        await self._cancel_runner()
        self._spawn(
            self._play_loop(task_id, target_seconds, initial_progress_pct, executable=None)
        )

    async def stop_task(self) -> None:
        self._enter("stop_task")
        await self._cancel_runner()

    async def force_submit_progress(self, task_id: str, elapsed_seconds: float) -> None:
        self._enter("force_submit_progress")
        self._task(task_id)
        self.submissions.append((task_id, elapsed_seconds))
        self._credit(task_id, elapsed_seconds)

    def _spawn(self, loop_coro: Coroutine[Any, Any, None]) -> None:
        self._runner = asyncio.get_running_loop().create_task(loop_coro, name="local-backend")

    async def _cancel_runner(self) -> None:
        runner = self._runner
        self._runner = None
        if runner is None or runner.done():
            return
        runner.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await runner

    async def _sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds * self.time_scale)

    async def _video_loop(
        self,
        task_id: str,
        target_seconds: int,
        initial_pct: float,
        speed: int,
        interval: int,
    ) -> None:
        current = initial_pct / 100.0 * target_seconds
        while True:
            if "heartbeat" in self._failures:
                self._events.emit(EVENT_ERROR, f"heartbeat: {self._failures['heartbeat']}")
                return
            current += speed * interval
            timestamp = min(current, float(target_seconds))
            self._credit(task_id, timestamp)
            pct = PROGRESS_MAX
            if target_seconds:
                pct = min(PROGRESS_MAX, timestamp / target_seconds * 100.0)
            self._events.emit(EVENT_PROGRESS, pct)
            if timestamp >= target_seconds:
                self._events.emit(EVENT_COMPLETE)
                return
            await self._sleep(interval)

    async def _stream_loop(self, task_id: str, target_seconds: int, initial_pct: float) -> None:
        total = max(1, math.ceil(target_seconds / STREAM_HEARTBEAT_INTERVAL))
        first = int(initial_pct / 100.0 * total)
        for beat in range(first, total):
            pct = (beat + 1) / total * 100.0
            self._credit(task_id, pct / 100.0 * target_seconds)
            self._events.emit(EVENT_PROGRESS, pct)
            if beat + 1 == total:
                self._events.emit(EVENT_COMPLETE)
                return
            await self._sleep(STREAM_HEARTBEAT_INTERVAL)

    async def _play_loop(
        self,
        task_id: str,
        target_seconds: int,
        initial_pct: float,
        executable: str | None,
    ) -> None:
        current = initial_pct / 100.0 * target_seconds
        while executable is None or executable in self.running_executables:
            await self._sleep(PROCESS_HEARTBEAT_INTERVAL)
            if executable is not None and executable not in self.running_executables:
                return
            current += PROCESS_HEARTBEAT_INTERVAL
            self._credit(task_id, min(current, float(target_seconds)))
            if current >= target_seconds:
                return

    # ------------------------------------------------------------------
    # Fake executables and presence
    # ------------------------------------------------------------------

    async def create_fake_executable(
        self, install_dir: Path, executable_name: str, application_id: str
    ) -> None:
        self._enter("create_fake_executable")
        path = Path(install_dir) / executable_name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(f"placeholder for application {application_id}\n", encoding="utf-8")
        logger.debug(f"Created fake executable at {path}")

    async def launch_fake_executable(
        self, name: str, install_dir: Path, executable_name: str, application_id: str
    ) -> None:
        self._enter("launch_fake_executable")
        path = Path(install_dir) / executable_name
        if not path.exists():
            raise LocalBackendError(f"Executable not found: {path}")
        self.running_executables[executable_name] = application_id
        logger.info(f"Launched {name} ({executable_name})")

    async def terminate_fake_executable(self, executable_name: str) -> None:
        self._enter("terminate_fake_executable")
        if self.running_executables.pop(executable_name, None) is None:
            raise LocalBackendError(f"{executable_name} is not running")

    async def open_activity_presence(self, activity_json: str, action: str) -> None:
        self._enter("open_activity_presence")
        payload = json.loads(activity_json)
        if action != PRESENCE_CONNECT:
            raise LocalBackendError(f"Unsupported presence action: {action}")
        self.presence = payload

        application_id = str(payload.get("app_id"))
        executable = next(
            (exe for exe, app in self.running_executables.items() if app == application_id), None
        )
        task = next(
            (
                t
                for t in self._tasks.values()
                if t.application_id == application_id and not t.is_completed
            ),
            None,
        )
        if executable is None or task is None:
            return

        await self._cancel_runner()
        initial_pct = 0.0
        if task.target_seconds:
            initial_pct = task.progress_seconds / task.target_seconds * 100.0
        self._spawn(self._play_loop(task.id, task.target_seconds, initial_pct, executable))

    def emit_disconnect(self) -> None:
        self.calls.append("emit_disconnect")
        self.presence = None
        self.disconnects += 1

    # ------------------------------------------------------------------
    # Push subscriptions
    # ------------------------------------------------------------------

    def on_progress(self, listener: Callable[[float], None]) -> Unsubscribe:
        return self._events.subscribe(EVENT_PROGRESS, listener)

    def on_complete(self, listener: Callable[[], None]) -> Unsubscribe:
        return self._events.subscribe(EVENT_COMPLETE, listener)

    def on_error(self, listener: Callable[[str], None]) -> Unsubscribe:
        return self._events.subscribe(EVENT_ERROR, listener)

    def listener_count(self) -> int:
        """Total number of subscribed listeners."""
        return sum(
            self._events.listener_count(event)
            for event in (EVENT_PROGRESS, EVENT_COMPLETE, EVENT_ERROR)
        )

    async def close(self) -> None:
        await self._cancel_runner()


__all__ = ["LocalBackend", "LocalBackendError"]
