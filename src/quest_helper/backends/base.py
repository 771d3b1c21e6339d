"""Base interface of the remote task executor and status gateway.

The orchestrator never performs the remote work itself. Every request it
needs (listing tasks, starting and stopping the three task flavours, the
detectable-applications catalog, fake executables, activity presence and
enrollment) goes through a :class:`TaskBackend`. Backends also push three
events back to the orchestrator through subscribe/unsubscribe handles.

Example:
    >>> from quest_helper.backends.base import TaskBackend
    >>>
    >>> class HttpBackend(TaskBackend):
    ...     async def list_tasks(self) -> list[Task]:
    ...         return [Task.from_dict(d) for d in await self._get("/quests/@me")]
    ...     ...
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path

from quest_helper.core.events import Unsubscribe
from quest_helper.core.types import DetectableApplication, Task


class TaskBackend(ABC):
    """Abstract remote executor.

    All request methods are coroutines. Implementations raise an exception
    (any subclass of ``Exception``) when the remote side rejects a request;
    the orchestrator classifies it.

    Push subscriptions must invoke listeners on the event loop thread.
    """

    @abstractmethod
    async def list_tasks(self) -> list[Task]:
        """Fetch every task with its authoritative user status."""
        ...

    @abstractmethod
    async def start_duration_task(
        self,
        task_id: str,
        target_seconds: int,
        initial_progress_pct: float,
        speed_multiplier: int,
        heartbeat_interval: int,
    ) -> None:
        """Begin a video task that reports progress by push.

        Args:
            task_id: Task to start.
            target_seconds: Duration needed for completion.
            initial_progress_pct: Progress already credited (0-100).
            speed_multiplier: Playback speed.
            heartbeat_interval: Seconds between progress heartbeats.
        """
        ...

    @abstractmethod
    async def start_stream_task(
        self,
        task_id: str,
        stream_key: str,
        target_seconds: int,
        initial_progress_pct: float,
    ) -> None:
        """Begin a stream task keyed by a stream identifier."""
        ...

    @abstractmethod
    async def start_process_heartbeat_task(
        self,
        task_id: str,
        application_id: str,
        target_seconds: int,
        initial_progress_pct: float,
    ) -> None:
        """Begin a game task by heartbeating directly, without a process."""
        ...

    @abstractmethod
    async def stop_task(self) -> None:
        """Stop whatever is running. No-op when nothing runs."""
        ...

    @abstractmethod
    async def force_submit_progress(self, task_id: str, elapsed_seconds: float) -> None:
        """Flush accumulated progress for a task."""
        ...

    @abstractmethod
    async def list_detectable_applications(self) -> list[DetectableApplication]:
        """Fetch the detectable-applications catalog."""
        ...

    @abstractmethod
    async def create_fake_executable(
        self, install_dir: Path, executable_name: str, application_id: str
    ) -> None:
        """Materialize a placeholder executable under ``install_dir``."""
        ...

    @abstractmethod
    async def launch_fake_executable(
        self, name: str, install_dir: Path, executable_name: str, application_id: str
    ) -> None:
        """Run a previously created placeholder executable."""
        ...

    @abstractmethod
    async def terminate_fake_executable(self, executable_name: str) -> None:
        """Terminate a running placeholder executable."""
        ...

    @abstractmethod
    async def open_activity_presence(self, activity_json: str, action: str) -> None:
        """Send an activity presence update.

        Args:
            activity_json: JSON encoded activity payload.
            action: Presence action, e.g. ``"connect"``.
        """
        ...

    @abstractmethod
    async def enroll_in_task(self, task_id: str) -> None:
        """Enroll the user in a task."""
        ...

    @abstractmethod
    def emit_disconnect(self) -> None:
        """Signal the activity presence channel to disconnect."""
        ...

    @abstractmethod
    def on_progress(self, listener: Callable[[float], None]) -> Unsubscribe:
        """Subscribe to progress pushes (percentage 0-100)."""
        ...

    @abstractmethod
    def on_complete(self, listener: Callable[[], None]) -> Unsubscribe:
        """Subscribe to completion pushes."""
        ...

    @abstractmethod
    def on_error(self, listener: Callable[[str], None]) -> Unsubscribe:
        """Subscribe to error pushes carrying a message."""
        ...

    async def close(self) -> None:
        """Release backend resources. Default does nothing."""
        return None


__all__ = ["TaskBackend"]
