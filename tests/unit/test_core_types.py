"""Unit tests for core type definitions."""

from __future__ import annotations

from datetime import datetime

import pytest

from quest_helper.core.types import (
    DetectableApplication,
    ProgressCounter,
    Session,
    StopReason,
    Task,
    TaskKind,
    TeardownReport,
    UserStatus,
)


class TestTaskKind:
    """Tests for TaskKind enum."""

    def test_values(self) -> None:
        """Test enum values match their wire names."""
        assert TaskKind.VIDEO.value == "video"
        assert TaskKind.STREAM.value == "stream"
        assert TaskKind.GAME_SIMULATED.value == "game-simulated"
        assert TaskKind.GAME_HEARTBEAT.value == "game-heartbeat"

    def test_process_backed(self) -> None:
        """Test only game kinds are process backed."""
        assert TaskKind.GAME_SIMULATED.is_process_backed
        assert TaskKind.GAME_HEARTBEAT.is_process_backed
        assert not TaskKind.VIDEO.is_process_backed
        assert not TaskKind.STREAM.is_process_backed


class TestStopReason:
    """Tests for StopReason policies."""

    @pytest.mark.parametrize(
        "reason",
        [StopReason.USER, StopReason.AUTO_DETECTED, StopReason.PREEMPTED, StopReason.QUEUE_CLEARED],
    )
    def test_submits_progress(self, reason: StopReason) -> None:
        """Test progress is flushed unless the executor ended the session."""
        assert reason.submits_progress

    @pytest.mark.parametrize("reason", [StopReason.COMPLETED, StopReason.ERROR])
    def test_no_submit_after_executor_end(self, reason: StopReason) -> None:
        """Test completion and error skip the progress flush."""
        assert not reason.submits_progress

    def test_advances_queue(self) -> None:
        """Test which reasons move a queue forward."""
        advancing = {r for r in StopReason if r.advances_queue}
        assert advancing == {StopReason.COMPLETED, StopReason.AUTO_DETECTED, StopReason.ERROR}


class TestUserStatus:
    """Tests for UserStatus parsing."""

    def test_from_none(self) -> None:
        """Test a missing status parses to None."""
        assert UserStatus.from_dict(None) is None
        assert UserStatus.from_dict({}) is None

    def test_first_counter_wins(self) -> None:
        """Test progress comes from the first counter in mapping order."""
        status = UserStatus.from_dict(
            {
                "progress": {
                    "PLAY_ON_DESKTOP": {"value": 120},
                    "STREAM_ON_DESKTOP": {"value": 900},
                }
            }
        )
        assert status is not None
        assert status.first_progress_value == 120.0
        assert status.progress[1] == ProgressCounter("STREAM_ON_DESKTOP", 900)

    def test_counter_without_value(self) -> None:
        """Test a counter without a value counts as zero."""
        status = UserStatus.from_dict({"progress": {"WATCH_VIDEO": {}}})
        assert status is not None
        assert status.first_progress_value == 0.0

    def test_flags(self) -> None:
        """Test completion and enrollment flags."""
        status = UserStatus(completed_at="2026-01-01T00:00:00Z", enrolled_at="2025-12-01T00:00:00Z")
        assert status.is_completed
        assert status.is_enrolled
        assert not UserStatus().is_completed


class TestTask:
    """Tests for Task snapshots."""

    def test_from_dict(self, raw_task) -> None:
        """Test parsing the remote JSON shape."""
        task = Task.from_dict(raw_task("42", target=600, progress=150))

        assert task.id == "42"
        assert task.name == "Task 42"
        assert task.game_title == "Test Game"
        assert task.reward_names == ("Orb",)
        assert task.target_seconds == 600
        assert task.task_type == "WATCH_VIDEO"
        assert task.progress_seconds == 150.0
        assert task.is_video
        assert not task.is_play
        assert task.is_enrolled
        assert not task.is_completed

    def test_falls_back_to_task_config(self) -> None:
        """Test targets are read from task_config when v2 is empty."""
        task = Task.from_dict(
            {
                "id": 7,
                "config": {
                    "task_config_v2": {"tasks": {}},
                    "task_config": {"tasks": {"PLAY_ON_DESKTOP": {"target": 900}}},
                    "application": {"id": "123", "name": "Game"},
                },
            }
        )
        assert task.id == "7"
        assert task.target_seconds == 900
        assert task.is_play
        assert task.application_id == "123"
        assert task.user_status is None
        assert task.progress_seconds == 0.0

    def test_prefers_task_config_v2(self) -> None:
        """Test v2 targets win when both configs are present."""
        task = Task.from_dict(
            {
                "id": "8",
                "config": {
                    "task_config": {"tasks": {"WATCH_VIDEO": {"target": 300}}},
                    "task_config_v2": {"tasks": {"WATCH_VIDEO": {"target": 900}}},
                },
            }
        )
        assert task.target_seconds == 900

    def test_no_targets(self) -> None:
        """Test a task without targets has an undefined duration."""
        task = Task.from_dict({"id": "1", "config": {}})
        assert task.target_seconds == 0
        assert task.task_type == ""

    def test_with_enrollment_is_copy_on_write(self, make_task) -> None:
        """Test enrollment returns a new task and leaves the original alone."""
        original = make_task("1", enrolled=False)
        snapshot = (original,)

        enrolled = original.with_enrollment("2026-02-01T00:00:00+00:00")

        assert enrolled is not original
        assert enrolled.is_enrolled
        assert not original.is_enrolled
        assert snapshot[0] is original

    def test_immutable(self, make_task) -> None:
        """Test tasks cannot be mutated in place."""
        task = make_task("1")
        with pytest.raises(AttributeError):
            task.name = "changed"  # type: ignore[misc]


class TestDetectableApplication:
    """Tests for the detectable-applications catalog entries."""

    def test_executable_for(self) -> None:
        """Test executable lookup by platform."""
        app = DetectableApplication.from_dict(
            {
                "id": 123,
                "name": "Game",
                "executables": [
                    {"name": "game", "os": "linux"},
                    {"name": "bin/game.exe", "os": "win32"},
                ],
            }
        )
        assert app.id == "123"
        executable = app.executable_for("win32")
        assert executable is not None
        assert executable.name == "bin/game.exe"
        assert app.executable_for("darwin") is None


class TestSession:
    """Tests for the live session record."""

    def test_defaults(self) -> None:
        """Test a fresh session is idle."""
        session = Session()
        assert not session.is_active
        assert session.kind is None
        assert session.elapsed_seconds == 0.0

    def test_elapsed_seconds(self) -> None:
        """Test elapsed time is derived from local progress."""
        session = Session(task_id="1", kind=TaskKind.VIDEO, local_progress_pct=40.0, target_seconds=600)
        assert session.elapsed_seconds == pytest.approx(240.0)

    def test_elapsed_without_target(self) -> None:
        """Test a zero target skips percentage math."""
        session = Session(task_id="1", kind=TaskKind.VIDEO, local_progress_pct=40.0, target_seconds=0)
        assert session.elapsed_seconds == 0.0

    def test_roundtrip(self) -> None:
        """Test persistence through to_dict/from_dict."""
        session = Session(
            task_id="9",
            kind=TaskKind.GAME_SIMULATED,
            authoritative_progress_pct=10.0,
            local_progress_pct=12.5,
            target_seconds=900,
            process_handle="game/testgame.exe",
            application_id="123",
            started_at=datetime(2026, 1, 1, 12, 0, 0),
        )
        restored = Session.from_dict(session.to_dict())
        assert restored == session


class TestTeardownReport:
    """Tests for TeardownReport."""

    def test_clean(self) -> None:
        """Test a report without failures is clean."""
        report = TeardownReport(reason=StopReason.USER, task_id="1")
        assert report.clean
        report.failures.append(Exception("boom"))  # type: ignore[arg-type]
        assert not report.clean
