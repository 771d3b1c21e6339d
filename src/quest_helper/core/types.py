"""Core type definitions for the quest lifecycle.

This module defines the data classes shared by the orchestrator and its
collaborators: the remote task snapshot, the detectable application
catalog, the live session record and the teardown report.

Tasks are immutable snapshots owned by the remote status gateway. Updates
such as an optimistic enrollment patch produce a new Task instead of
mutating the one other components may still hold.

Example:
    >>> from quest_helper.core.types import Task
    >>> task = Task.from_dict({
    ...     "id": "1234",
    ...     "config": {
    ...         "messages": {"quest_name": "Watch the trailer"},
    ...         "task_config_v2": {"tasks": {"WATCH_VIDEO": {"target": 600}}},
    ...     },
    ...     "user_status": {"progress": {"WATCH_VIDEO": {"value": 150}}},
    ... })
    >>> task.target_seconds, task.progress_seconds
    (600, 150.0)
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Literal

from quest_helper.core.errors import QuestError
from quest_helper.utils.constants import (
    PLAY_TASK_TYPES,
    STREAM_TASK_TYPES,
    VIDEO_TASK_TYPES,
)

GameMode = Literal["simulate", "heartbeat"]


class TaskKind(Enum):
    """Kind of the task driven by a session.

    Attributes:
        VIDEO: Duration-based video watch, pushed progress.
        STREAM: Duration-based stream heartbeat, pushed progress.
        GAME_SIMULATED: Fake executable plus activity presence.
        GAME_HEARTBEAT: Direct remote heartbeat for a game, no process.
    """

    VIDEO = "video"
    STREAM = "stream"
    GAME_SIMULATED = "game-simulated"
    GAME_HEARTBEAT = "game-heartbeat"

    @property
    def is_process_backed(self) -> bool:
        """Whether the kind is a game task without native progress push."""
        return self in (TaskKind.GAME_SIMULATED, TaskKind.GAME_HEARTBEAT)


class SessionPhase(Enum):
    """Phase of the session state machine."""

    IDLE = "idle"
    STARTING = "starting"
    ACTIVE = "active"
    STOPPING = "stopping"


class StopReason(Enum):
    """Why a session is being torn down.

    Attributes:
        USER: Stop requested by the user.
        COMPLETED: Executor pushed a completion signal.
        ERROR: Executor pushed an error signal.
        AUTO_DETECTED: Polling saw a completion timestamp.
        PREEMPTED: Another task was started over this one.
        QUEUE_CLEARED: The owning queue was cleared.
        RECOVERY: Leftover session from a previous run.
    """

    USER = "user"
    COMPLETED = "completed"
    ERROR = "error"
    AUTO_DETECTED = "auto_detected"
    PREEMPTED = "preempted"
    QUEUE_CLEARED = "queue_cleared"
    RECOVERY = "recovery"

    @property
    def submits_progress(self) -> bool:
        """Whether accumulated video progress is flushed on this stop."""
        return self not in (StopReason.COMPLETED, StopReason.ERROR)

    @property
    def advances_queue(self) -> bool:
        """Whether a queue driver moves on to its next entry."""
        return self in (StopReason.COMPLETED, StopReason.AUTO_DETECTED, StopReason.ERROR)


@dataclass(frozen=True)
class ProgressCounter:
    """A named sub-progress counter from the remote user status.

    Attributes:
        name: Counter name (e.g. "WATCH_VIDEO").
        value: Counter value in seconds, if reported.
    """

    name: str
    value: float | None = None


@dataclass(frozen=True)
class UserStatus:
    """Authoritative per-user status of a task.

    Attributes:
        completed_at: Completion timestamp, if completed.
        claimed_at: Reward claim timestamp, if claimed.
        enrolled_at: Enrollment timestamp, if enrolled.
        progress: Progress counters in mapping order.
    """

    completed_at: str | None = None
    claimed_at: str | None = None
    enrolled_at: str | None = None
    progress: tuple[ProgressCounter, ...] = ()

    @property
    def is_completed(self) -> bool:
        """Check if the task has a completion timestamp."""
        return bool(self.completed_at)

    @property
    def is_enrolled(self) -> bool:
        """Check if the user is enrolled in the task."""
        return bool(self.enrolled_at)

    @property
    def first_progress_value(self) -> float:
        """Value of the first progress counter, 0 when absent."""
        if not self.progress:
            return 0.0
        value = self.progress[0].value
        return float(value) if value else 0.0

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> UserStatus | None:
        """Create from the remote JSON shape."""
        if not data:
            return None

        raw_progress = data.get("progress") or {}
        counters = []
        if isinstance(raw_progress, dict):
            for name, counter in raw_progress.items():
                value = counter.get("value") if isinstance(counter, dict) else None
                counters.append(ProgressCounter(name=name, value=value))

        return cls(
            completed_at=data.get("completed_at"),
            claimed_at=data.get("claimed_at"),
            enrolled_at=data.get("enrolled_at"),
            progress=tuple(counters),
        )


@dataclass(frozen=True)
class Task:
    """Immutable snapshot of a remote task.

    Attributes:
        id: Task identifier.
        name: Display name.
        game_title: Title of the game the task promotes.
        reward_names: Display names of the rewards.
        task_targets: (counter name, target seconds) pairs in config order.
        application_id: External application identifier for game tasks.
        application_name: External application display name.
        stream_minutes: Stream duration requirement in minutes, if any.
        expires_at: Expiry timestamp.
        user_status: Authoritative user status, None if never touched.
    """

    id: str
    name: str = ""
    game_title: str = ""
    reward_names: tuple[str, ...] = ()
    task_targets: tuple[tuple[str, int], ...] = ()
    application_id: str | None = None
    application_name: str | None = None
    stream_minutes: int | None = None
    expires_at: str | None = None
    user_status: UserStatus | None = None

    @property
    def target_seconds(self) -> int:
        """Duration needed for 100% progress, 0 when unknown."""
        if not self.task_targets:
            return 0
        return self.task_targets[0][1] or 0

    @property
    def task_type(self) -> str:
        """Name of the first task counter (e.g. "WATCH_VIDEO")."""
        if not self.task_targets:
            return ""
        return self.task_targets[0][0]

    @property
    def progress_seconds(self) -> float:
        """Existing authoritative progress in seconds."""
        if self.user_status is None:
            return 0.0
        return self.user_status.first_progress_value

    @property
    def is_completed(self) -> bool:
        """Check if the remote status shows completion."""
        return self.user_status is not None and self.user_status.is_completed

    @property
    def is_enrolled(self) -> bool:
        """Check if the user is enrolled."""
        return self.user_status is not None and self.user_status.is_enrolled

    @property
    def is_video(self) -> bool:
        return self.task_type in VIDEO_TASK_TYPES

    @property
    def is_stream(self) -> bool:
        return self.task_type in STREAM_TASK_TYPES

    @property
    def is_play(self) -> bool:
        return self.task_type in PLAY_TASK_TYPES

    def with_enrollment(self, enrolled_at: str) -> Task:
        """Return a copy of this task marked as enrolled.

        Args:
            enrolled_at: ISO timestamp of the enrollment.

        Returns:
            A new Task; this instance is left untouched.
        """
        status = self.user_status or UserStatus()
        return replace(self, user_status=replace(status, enrolled_at=enrolled_at))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Task:
        """Create from the remote JSON shape.

        Task targets are read from ``task_config_v2`` and fall back to
        ``task_config`` when the former has no tasks.
        """
        config = data.get("config") or {}
        messages = config.get("messages") or {}
        application = config.get("application") or {}

        targets: list[tuple[str, int]] = []
        for key in ("task_config_v2", "task_config"):
            tasks = (config.get(key) or {}).get("tasks") or {}
            if tasks:
                for name, entry in tasks.items():
                    target = entry.get("target") if isinstance(entry, dict) else None
                    targets.append((name, int(target or 0)))
                break

        rewards = (config.get("rewards_config") or {}).get("rewards") or []
        reward_names = tuple(
            (reward.get("messages") or {}).get("name", "") for reward in rewards
        )

        return cls(
            id=str(data["id"]),
            name=messages.get("quest_name", ""),
            game_title=messages.get("game_title", ""),
            reward_names=reward_names,
            task_targets=tuple(targets),
            application_id=application.get("id"),
            application_name=application.get("name"),
            stream_minutes=config.get("stream_duration_requirement_minutes"),
            expires_at=config.get("expires_at"),
            user_status=UserStatus.from_dict(data.get("user_status")),
        )


@dataclass(frozen=True)
class Executable:
    """Platform executable descriptor of a detectable application."""

    name: str
    os: str


@dataclass(frozen=True)
class DetectableApplication:
    """An entry of the remote detectable-applications catalog.

    Attributes:
        id: Application identifier.
        name: Display name.
        executables: Known executables, one or more per platform.
    """

    id: str
    name: str
    executables: tuple[Executable, ...] = ()

    def executable_for(self, os_name: str) -> Executable | None:
        """Find the first executable declared for a platform.

        Args:
            os_name: Platform identifier (e.g. "win32").

        Returns:
            The matching executable, or None.
        """
        for executable in self.executables:
            if executable.os == os_name:
                return executable
        return None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DetectableApplication:
        """Create from the remote JSON shape."""
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            executables=tuple(
                Executable(name=e["name"], os=e.get("os", ""))
                for e in data.get("executables") or []
            ),
        )


@dataclass
class Session:
    """The single live session record.

    Only the session state machine writes these fields; every other
    component reads them.

    Attributes:
        task_id: Identity of the in-flight task, None when idle.
        kind: Kind of the in-flight task, None when idle.
        authoritative_progress_pct: Last known remote progress (0-100).
        local_progress_pct: Simulated progress, never below authoritative.
        target_seconds: Duration needed for 100%; 0 skips percentage math.
        process_handle: Executable name of a simulated game, if spawned.
        application_id: External application of a game session.
        started_at: When the session became active.
    """

    task_id: str | None = None
    kind: TaskKind | None = None
    authoritative_progress_pct: float = 0.0
    local_progress_pct: float = 0.0
    target_seconds: int = 0
    process_handle: str | None = None
    application_id: str | None = None
    started_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        """Check if a task is bound to this session."""
        return self.task_id is not None

    @property
    def elapsed_seconds(self) -> float:
        """Seconds of progress represented by the local estimate."""
        if self.target_seconds <= 0:
            return 0.0
        return self.local_progress_pct / 100.0 * self.target_seconds

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "task_id": self.task_id,
            "kind": self.kind.value if self.kind else None,
            "authoritative_progress_pct": self.authoritative_progress_pct,
            "local_progress_pct": self.local_progress_pct,
            "target_seconds": self.target_seconds,
            "process_handle": self.process_handle,
            "application_id": self.application_id,
            "started_at": self.started_at.isoformat() if self.started_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Session:
        """Create from dictionary."""
        return cls(
            task_id=data.get("task_id"),
            kind=TaskKind(data["kind"]) if data.get("kind") else None,
            authoritative_progress_pct=data.get("authoritative_progress_pct", 0.0),
            local_progress_pct=data.get("local_progress_pct", 0.0),
            target_seconds=data.get("target_seconds", 0),
            process_handle=data.get("process_handle"),
            application_id=data.get("application_id"),
            started_at=(
                datetime.fromisoformat(data["started_at"]) if data.get("started_at") else None
            ),
        )


@dataclass
class TeardownReport:
    """Outcome of a session teardown.

    Attributes:
        reason: Why the session was stopped.
        task_id: Task the session was serving.
        submitted_seconds: Elapsed seconds force-submitted, if any.
        terminated_handle: Executable that was terminated, if any.
        failures: Swallowed failures of individual teardown steps.
    """

    reason: StopReason
    task_id: str | None = None
    submitted_seconds: float | None = None
    terminated_handle: str | None = None
    failures: list[QuestError] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        """Check if every teardown step succeeded."""
        return not self.failures


__all__ = [
    "GameMode",
    "TaskKind",
    "SessionPhase",
    "StopReason",
    "ProgressCounter",
    "UserStatus",
    "Task",
    "Executable",
    "DetectableApplication",
    "Session",
    "TeardownReport",
]
