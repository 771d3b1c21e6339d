"""Shared pytest fixtures for quest_helper tests.

This module provides common fixtures used across all test modules: an
isolated configuration, task factories in the remote JSON shape, a mocked
task backend with a working push emitter, and a controllable clock.

Example:
    async def test_start(machine, mock_backend):
        await machine.start_video("1", 600, 150)
        mock_backend.start_duration_task.assert_awaited_once()
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING, Any
from unittest.mock import MagicMock

import pytest

import quest_helper.core.config as config_module
from quest_helper.backends.base import TaskBackend
from quest_helper.core.config import (
    Config,
    GameConfig,
    PathsConfig,
    PollingConfig,
    QueueConfig,
    SimulationConfig,
)
from quest_helper.core.events import EventEmitter
from quest_helper.core.session import SessionStateMachine
from quest_helper.core.types import DetectableApplication, Executable, Task

if TYPE_CHECKING:
    from collections.abc import Callable, Generator


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def task_data(
    task_id: str,
    task_type: str = "WATCH_VIDEO",
    target: int = 600,
    progress: float | None = None,
    completed: bool = False,
    enrolled: bool = True,
    application_id: str | None = None,
    name: str | None = None,
) -> dict[str, Any]:
    """Build a task in the remote JSON shape."""
    config: dict[str, Any] = {
        "messages": {"quest_name": name or f"Task {task_id}", "game_title": "Test Game"},
        "task_config_v2": {"tasks": {task_type: {"target": target}}},
        "rewards_config": {"rewards": [{"messages": {"name": "Orb"}}]},
        "expires_at": "2030-01-01T00:00:00+00:00",
    }
    if application_id is not None:
        config["application"] = {"id": application_id, "name": "Test Game"}

    user_status: dict[str, Any] | None = None
    if enrolled or progress is not None or completed:
        user_status = {
            "enrolled_at": "2026-01-01T00:00:00+00:00" if enrolled else None,
            "completed_at": "2026-01-02T00:00:00+00:00" if completed else None,
            "progress": {task_type: {"value": progress}} if progress is not None else {},
        }

    return {"id": task_id, "config": config, "user_status": user_status}


@pytest.fixture(autouse=True)
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[Path, None, None]:
    """Keep tests away from the user's config file and environment.

    Yields:
        Path: The config file location used during the test.
    """
    config_file = tmp_path / "config" / "config.json"
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_FILE", config_file)
    for name in [n for n in os.environ if n.startswith("QUEST_HELPER_")]:
        monkeypatch.delenv(name)
    Config.reset()
    yield config_file
    Config.reset()


@pytest.fixture
def config(tmp_path: Path) -> Config:
    """Provide a configuration tuned for tests.

    Timers are slow enough never to fire on their own during a test, and
    queue delays are zero.
    """
    return Config(
        simulation=SimulationConfig(speed_multiplier=7, heartbeat_interval=3, tick_interval=5.0),
        polling=PollingConfig(interval_seconds=3600),
        game=GameConfig(mode="simulate", install_dir=tmp_path / "games"),
        queue=QueueConfig(settle_delay=0.0, enroll_delay=0.0),
        paths=PathsConfig(state_dir=tmp_path / "state"),
    )


@pytest.fixture
def make_task() -> Callable[..., Task]:
    """Provide a factory for Task snapshots.

    Returns:
        Callable accepting the keyword arguments of :func:`task_data`.
    """

    def factory(task_id: str = "1", **kwargs: Any) -> Task:
        return Task.from_dict(task_data(task_id, **kwargs))

    return factory


@pytest.fixture
def catalog() -> list[DetectableApplication]:
    """Provide a detectable-applications catalog with one game."""
    return [
        DetectableApplication(
            id="123",
            name="Test Game",
            executables=(
                Executable(name="testgame", os="darwin"),
                Executable(name="game/testgame.exe", os="win32"),
            ),
        )
    ]


@pytest.fixture
def mock_backend(catalog: list[DetectableApplication]) -> MagicMock:
    """Provide a mocked TaskBackend.

    Request methods are AsyncMocks. Subscriptions go through a real
    EventEmitter exposed as ``mock_backend.events`` so tests can push.

    Returns:
        MagicMock: Backend mock with ``spec=TaskBackend``.
    """
    backend = MagicMock(spec=TaskBackend)
    events = EventEmitter()
    backend.events = events
    backend.list_tasks.return_value = []
    backend.list_detectable_applications.return_value = catalog
    backend.on_progress.side_effect = lambda listener: events.subscribe("progress", listener)
    backend.on_complete.side_effect = lambda listener: events.subscribe("complete", listener)
    backend.on_error.side_effect = lambda listener: events.subscribe("error", listener)
    return backend


@pytest.fixture
def clock() -> FakeClock:
    """Provide a hand-driven monotonic clock."""
    return FakeClock()


@pytest.fixture
def machine(mock_backend: MagicMock, config: Config, clock: FakeClock) -> SessionStateMachine:
    """Provide a session state machine without persistence."""
    return SessionStateMachine(mock_backend, config, clock=clock)


@pytest.fixture
def raw_task() -> Callable[..., dict[str, Any]]:
    """Provide :func:`task_data` for tests that need the JSON shape."""
    return task_data


@pytest.fixture
def call_names() -> Callable[[MagicMock], list[str]]:
    """Provide a helper listing the methods called on a mock, in order."""

    def names(mock: MagicMock) -> list[str]:
        return [name for name, _args, _kwargs in mock.mock_calls if name]

    return names
