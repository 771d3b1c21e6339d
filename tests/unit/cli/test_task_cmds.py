"""Tests for the task CLI commands.

Commands run against the local backend with the fixtures from conftest and
a tiny time scale, so each task finishes in milliseconds.
"""

from __future__ import annotations

import json
from pathlib import Path

from click.testing import CliRunner

from quest_helper.__main__ import main
from quest_helper.core.recovery import SessionStore
from quest_helper.core.types import Session, TaskKind


class TestTaskSource:
    """Tests for the task source options."""

    def test_missing_tasks_file(self, cli_runner: CliRunner) -> None:
        """Test commands fail without a task source."""
        result = cli_runner.invoke(main, ["tasks"])

        assert result.exit_code == 1
        assert "No task source configured" in result.output

    def test_tasks_file_from_environment(
        self, cli_runner: CliRunner, tasks_file: Path, monkeypatch
    ) -> None:
        """Test the task source can come from the environment."""
        monkeypatch.setenv("QUEST_HELPER_TASKS_FILE", str(tasks_file))

        result = cli_runner.invoke(main, ["tasks"])

        assert result.exit_code == 0
        assert "100" in result.output


class TestTasksCommand:
    """Tests for the tasks command."""

    def test_lists_unfinished(self, cli_runner: CliRunner, base_args: list[str]) -> None:
        """Test completed tasks are hidden by default."""
        result = cli_runner.invoke(main, [*base_args, "tasks"])

        assert result.exit_code == 0
        for task_id in ("100", "200", "300", "500"):
            assert task_id in result.output
        assert "400" not in result.output

    def test_all(self, cli_runner: CliRunner, base_args: list[str]) -> None:
        """Test --all includes completed tasks."""
        result = cli_runner.invoke(main, [*base_args, "tasks", "--all"])

        assert result.exit_code == 0
        assert "400" in result.output


class TestSingleTaskCommands:
    """Tests for watch, stream and play."""

    def test_watch_completes(self, cli_runner: CliRunner, base_args: list[str]) -> None:
        """Test a video task runs to completion."""
        result = cli_runner.invoke(main, [*base_args, "-q", "watch", "100"])

        assert result.exit_code == 0
        assert "finished" in result.output

    def test_stream_completes(self, cli_runner: CliRunner, base_args: list[str]) -> None:
        """Test a stream task runs to completion with a generated key."""
        result = cli_runner.invoke(main, [*base_args, "-q", "stream", "200"])

        assert result.exit_code == 0
        assert "finished" in result.output

    def test_unknown_task(self, cli_runner: CliRunner, base_args: list[str]) -> None:
        """Test an unknown id exits with an error."""
        result = cli_runner.invoke(main, [*base_args, "watch", "999"])

        assert result.exit_code == 1
        assert "Unknown task: 999" in result.output

    def test_already_completed(self, cli_runner: CliRunner, base_args: list[str]) -> None:
        """Test a completed task is reported without starting."""
        result = cli_runner.invoke(main, [*base_args, "watch", "400"])

        assert result.exit_code == 0
        assert "already completed" in result.output

    def test_play_without_application(self, cli_runner: CliRunner, base_args: list[str]) -> None:
        """Test a start failure is reported."""
        result = cli_runner.invoke(main, [*base_args, "play", "100"])

        assert result.exit_code == 1
        assert "Failed to start task" in result.output

    def test_play_catalog_miss(
        self, cli_runner: CliRunner, tasks_file: Path, tmp_path: Path
    ) -> None:
        """Test a game missing from the catalog fails to start."""
        empty_catalog = tmp_path / "empty.json"
        empty_catalog.write_text("[]")

        result = cli_runner.invoke(
            main,
            ["--tasks-file", str(tasks_file), "--catalog-file", str(empty_catalog), "play", "300"],
        )

        assert result.exit_code == 1
        assert "not found in detectable list" in result.output


class TestQueueCommand:
    """Tests for the queue command."""

    def test_video_queue(self, cli_runner: CliRunner, base_args: list[str]) -> None:
        """Test every unfinished video task is processed in turn."""
        result = cli_runner.invoke(main, [*base_args, "-q", "queue"])

        assert result.exit_code == 0
        assert "Processing 2 video task(s)" in result.output
        assert "100: completed" in result.output
        assert "500: completed" in result.output
        assert "Video queue done" in result.output

    def test_nothing_to_queue(self, cli_runner: CliRunner, base_args: list[str]) -> None:
        """Test unknown ids leave nothing to do."""
        result = cli_runner.invoke(main, [*base_args, "queue", "999"])

        assert result.exit_code == 0
        assert "Nothing to queue" in result.output


class TestAcceptCommand:
    """Tests for the accept command."""

    def test_accept(self, cli_runner: CliRunner, base_args: list[str]) -> None:
        """Test enrollment in a known task."""
        result = cli_runner.invoke(main, [*base_args, "accept", "500"])

        assert result.exit_code == 0
        assert "Accepted 500" in result.output

    def test_accept_partial_failure(self, cli_runner: CliRunner, base_args: list[str]) -> None:
        """Test a failed enrollment sets a non-zero exit code."""
        result = cli_runner.invoke(main, [*base_args, "accept", "500", "999"])

        assert result.exit_code == 1
        assert "Accepted 500" in result.output
        assert "Failed to accept 999" in result.output


class TestRecoverCommand:
    """Tests for the recover command."""

    def test_nothing_to_recover(self, cli_runner: CliRunner, base_args: list[str]) -> None:
        """Test recovery without a leftover session."""
        result = cli_runner.invoke(main, [*base_args, "recover"])

        assert result.exit_code == 0
        assert "No interrupted session" in result.output

    def test_recover_leftover(
        self, cli_runner: CliRunner, base_args: list[str], isolated_cli: Path
    ) -> None:
        """Test a leftover video session is cleaned up."""
        store = SessionStore(isolated_cli)
        store.save(
            Session(task_id="100", kind=TaskKind.VIDEO, local_progress_pct=50.0, target_seconds=60)
        )

        result = cli_runner.invoke(main, [*base_args, "recover"])

        assert result.exit_code == 0
        assert "Recovered task 100" in result.output
        assert not store.state_file_path.exists()

    def test_recover_snapshot_contents(self, isolated_cli: Path) -> None:
        """Test the snapshot format read by recover."""
        store = SessionStore(isolated_cli)
        store.save(Session(task_id="300", kind=TaskKind.GAME_SIMULATED, application_id="123"))

        data = json.loads(store.state_file_path.read_text())

        assert data["kind"] == "game-simulated"
        assert data["process_handle"] is None
