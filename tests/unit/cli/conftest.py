"""CLI-specific test fixtures.

This module provides fixtures for testing CLI commands using Click's
CliRunner against the local backend, with logs, session state and config
kept inside a temporary directory.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

import pytest
from click.testing import CliRunner

import quest_helper.core.logger as logger_module
from quest_helper.core.logger import ROOT_LOGGER_NAME

if TYPE_CHECKING:
    from collections.abc import Callable, Generator


@pytest.fixture(autouse=True)
def isolated_cli(
    isolated_config: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> Generator[Path, None, None]:
    """Keep log files and session snapshots under ``tmp_path``.

    Yields:
        Path: The session state directory.
    """
    state_dir = tmp_path / "state"
    monkeypatch.setattr(logger_module, "_log_dir", tmp_path / "logs")
    monkeypatch.setenv("QUEST_HELPER_PATHS__STATE_DIR", str(state_dir))
    monkeypatch.setenv("QUEST_HELPER_QUEUE__SETTLE_DELAY", "0")
    monkeypatch.setenv("QUEST_HELPER_QUEUE__ENROLL_DELAY", "0")
    monkeypatch.setenv("QUEST_HELPER_GAME__INSTALL_DIR", str(tmp_path / "games"))
    yield state_dir
    root = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
    root.setLevel(logging.NOTSET)


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Click CLI test runner.

    Returns:
        CliRunner: CLI runner.
    """
    return CliRunner()


@pytest.fixture
def tasks_file(tmp_path: Path, raw_task: Callable[..., dict[str, Any]]) -> Path:
    """Write a task list with one task of each flavour.

    Returns:
        Path: JSON file in the remote task format.
    """
    path = tmp_path / "tasks.json"
    path.write_text(
        json.dumps(
            [
                raw_task("100", target=60, name="Trailer"),
                raw_task("200", task_type="STREAM_ON_DESKTOP", target=60, name="Stream it"),
                raw_task(
                    "300",
                    task_type="PLAY_ON_DESKTOP",
                    target=60,
                    application_id="123",
                    name="Play it",
                ),
                raw_task("400", target=60, completed=True, name="Old news"),
                raw_task("500", target=60, enrolled=False, name="Fresh"),
            ]
        )
    )
    return path


@pytest.fixture
def catalog_file(tmp_path: Path) -> Path:
    """Write a detectable-applications catalog with the test game."""
    path = tmp_path / "catalog.json"
    path.write_text(
        json.dumps(
            [
                {
                    "id": "123",
                    "name": "Test Game",
                    "executables": [{"name": "game/testgame.exe", "os": "win32"}],
                }
            ]
        )
    )
    return path


@pytest.fixture
def base_args(tasks_file: Path, catalog_file: Path) -> list[str]:
    """Global options pointing the CLI at the fixtures, with fast waits."""
    return [
        "--tasks-file",
        str(tasks_file),
        "--catalog-file",
        str(catalog_file),
        "--time-scale",
        "0.001",
    ]
