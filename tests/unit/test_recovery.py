"""Unit tests for session teardown and the session snapshot store."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from quest_helper.core.errors import RecoveryMiss, StopFailure
from quest_helper.core.recovery import SessionStore, StopController
from quest_helper.core.types import Session, StopReason, TaskKind


def video_session(pct: float = 40.0) -> Session:
    return Session(
        task_id="1",
        kind=TaskKind.VIDEO,
        authoritative_progress_pct=pct,
        local_progress_pct=pct,
        target_seconds=600,
    )


def game_session(handle: str | None = None) -> Session:
    return Session(
        task_id="3",
        kind=TaskKind.GAME_SIMULATED,
        target_seconds=900,
        process_handle=handle,
        application_id="123",
    )


class TestTeardown:
    """Tests for StopController.teardown()."""

    @pytest.mark.asyncio
    async def test_step_order(self, mock_backend, call_names) -> None:
        """Test submit, terminate, disconnect and stop run in order."""
        controller = StopController(mock_backend)
        session = Session(
            task_id="1",
            kind=TaskKind.VIDEO,
            local_progress_pct=50.0,
            target_seconds=600,
            process_handle="game.exe",
        )

        await controller.teardown(session, StopReason.USER)

        assert call_names(mock_backend) == [
            "force_submit_progress",
            "terminate_fake_executable",
            "emit_disconnect",
            "stop_task",
        ]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "reason",
        [StopReason.USER, StopReason.PREEMPTED, StopReason.QUEUE_CLEARED, StopReason.RECOVERY],
    )
    async def test_submits_for_interrupting_reasons(self, mock_backend, reason) -> None:
        """Test video progress is flushed when the session is interrupted."""
        report = await StopController(mock_backend).teardown(video_session(), reason)

        mock_backend.force_submit_progress.assert_awaited_once()
        assert report.submitted_seconds == pytest.approx(240.0)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reason", [StopReason.COMPLETED, StopReason.ERROR])
    async def test_no_submit_after_executor_end(self, mock_backend, reason) -> None:
        """Test completion and error skip the flush."""
        report = await StopController(mock_backend).teardown(video_session(), reason)

        mock_backend.force_submit_progress.assert_not_awaited()
        assert report.submitted_seconds is None

    @pytest.mark.asyncio
    async def test_no_submit_for_stream(self, mock_backend) -> None:
        """Test only video sessions flush progress."""
        session = Session(task_id="2", kind=TaskKind.STREAM, local_progress_pct=40.0, target_seconds=600)

        await StopController(mock_backend).teardown(session, StopReason.USER)

        mock_backend.force_submit_progress.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_submit_without_target(self, mock_backend) -> None:
        """Test a zero target means nothing to flush."""
        session = Session(task_id="1", kind=TaskKind.VIDEO, local_progress_pct=40.0, target_seconds=0)

        await StopController(mock_backend).teardown(session, StopReason.USER)

        mock_backend.force_submit_progress.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_every_step_runs_despite_failures(self, mock_backend) -> None:
        """Test a failing step is recorded and the rest still run."""
        mock_backend.force_submit_progress.side_effect = RuntimeError("rate limited")
        mock_backend.emit_disconnect.side_effect = RuntimeError("socket closed")
        session = video_session()

        report = await StopController(mock_backend).teardown(session, StopReason.USER)

        mock_backend.stop_task.assert_awaited_once()
        assert len(report.failures) == 2
        assert all(isinstance(f, StopFailure) for f in report.failures)
        assert isinstance(report.failures[0].__cause__, RuntimeError)
        assert report.submitted_seconds is None
        assert not report.clean

    @pytest.mark.asyncio
    async def test_stop_task_failure_recorded(self, mock_backend, caplog) -> None:
        """Test a remote stop failure is recorded at debug level."""
        mock_backend.stop_task.side_effect = RuntimeError("nothing running")

        with caplog.at_level("DEBUG", logger="quest_helper.core.recovery"):
            report = await StopController(mock_backend).teardown(video_session(0.0), StopReason.USER)

        assert len(report.failures) == 1
        record = next(r for r in caplog.records if "Remote stop failed" in r.getMessage())
        assert record.levelname == "DEBUG"

    @pytest.mark.asyncio
    async def test_session_not_modified(self, mock_backend) -> None:
        """Test teardown only reads the session."""
        session = game_session("game/testgame.exe")
        before = session.to_dict()

        await StopController(mock_backend).teardown(session, StopReason.USER)

        assert session.to_dict() == before


class TestResolveProcessHandle:
    """Tests for process handle reconstruction."""

    @pytest.mark.asyncio
    async def test_bound_handle_used(self, mock_backend) -> None:
        """Test a bound handle is returned without a catalog lookup."""
        controller = StopController(mock_backend)

        handle = await controller.resolve_process_handle(game_session("bound.exe"))

        assert handle == "bound.exe"
        mock_backend.list_detectable_applications.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_non_game_has_no_handle(self, mock_backend) -> None:
        """Test video sessions have no process."""
        assert await StopController(mock_backend).resolve_process_handle(video_session()) is None

    @pytest.mark.asyncio
    async def test_rebuilt_from_task_application(self, mock_backend, make_task) -> None:
        """Test the handle is derived from the task's application."""
        session = Session(task_id="3", kind=TaskKind.GAME_SIMULATED)
        tasks = [make_task("3", task_type="PLAY_ON_DESKTOP", application_id="123")]

        handle = await StopController(mock_backend, platform="darwin").resolve_process_handle(
            session, tasks
        )

        assert handle == "testgame"

    @pytest.mark.asyncio
    async def test_rebuilt_from_session_application(self, mock_backend) -> None:
        """Test the session's application is used when the task is unknown."""
        handle = await StopController(mock_backend).resolve_process_handle(game_session())
        assert handle == "game/testgame.exe"

    @pytest.mark.asyncio
    async def test_unknown_application(self, mock_backend) -> None:
        """Test a session without any application id cannot be rebuilt."""
        session = Session(task_id="3", kind=TaskKind.GAME_SIMULATED)

        with pytest.raises(RecoveryMiss):
            await StopController(mock_backend).resolve_process_handle(session)

    @pytest.mark.asyncio
    async def test_catalog_failure(self, mock_backend) -> None:
        """Test a catalog failure becomes a RecoveryMiss."""
        mock_backend.list_detectable_applications.side_effect = RuntimeError("offline")

        with pytest.raises(RecoveryMiss, match="offline"):
            await StopController(mock_backend).resolve_process_handle(game_session())

    @pytest.mark.asyncio
    async def test_missing_platform(self, mock_backend) -> None:
        """Test an application without an executable for the platform."""
        with pytest.raises(RecoveryMiss, match="linux"):
            await StopController(mock_backend, platform="linux").resolve_process_handle(
                game_session()
            )

    @pytest.mark.asyncio
    async def test_teardown_continues_on_miss(self, mock_backend) -> None:
        """Test a lost handle skips termination but not the other steps."""
        mock_backend.list_detectable_applications.return_value = []

        report = await StopController(mock_backend).teardown(game_session(), StopReason.RECOVERY)

        mock_backend.terminate_fake_executable.assert_not_awaited()
        mock_backend.emit_disconnect.assert_called_once()
        mock_backend.stop_task.assert_awaited_once()
        assert isinstance(report.failures[0], RecoveryMiss)


class TestSessionStore:
    """Tests for SessionStore."""

    def test_save_and_load(self, tmp_path: Path) -> None:
        """Test a saved session is loaded back."""
        store = SessionStore(tmp_path)
        session = game_session("game/testgame.exe")

        store.save(session)
        loaded = store.load()

        assert loaded == session

    def test_load_missing(self, tmp_path: Path) -> None:
        """Test loading without a snapshot."""
        assert SessionStore(tmp_path).load() is None

    def test_load_corrupt_discards(self, tmp_path: Path) -> None:
        """Test an unreadable snapshot is removed."""
        store = SessionStore(tmp_path)
        store.state_file_path.write_text("{not json")

        assert store.load() is None
        assert not store.state_file_path.exists()

    @pytest.mark.parametrize("content", ["[]", "null", '"x"', "3.5"])
    def test_load_non_object_discards(self, tmp_path: Path, content: str) -> None:
        """Test valid JSON that is not an object is removed."""
        store = SessionStore(tmp_path)
        store.state_file_path.write_text(content)

        assert store.load() is None
        assert not store.state_file_path.exists()

    def test_load_bad_field_type_discards(self, tmp_path: Path) -> None:
        """Test a snapshot with a mistyped field is removed."""
        store = SessionStore(tmp_path)
        store.state_file_path.write_text(
            json.dumps({"task_id": "1", "kind": "video", "started_at": 12})
        )

        assert store.load() is None
        assert not store.state_file_path.exists()

    def test_load_unknown_kind_discards(self, tmp_path: Path) -> None:
        """Test a snapshot with an unknown kind is removed."""
        store = SessionStore(tmp_path)
        store.state_file_path.write_text(json.dumps({"task_id": "1", "kind": "quantum"}))

        assert store.load() is None
        assert not store.state_file_path.exists()

    def test_load_idle_snapshot(self, tmp_path: Path) -> None:
        """Test a snapshot without a task is not a leftover."""
        store = SessionStore(tmp_path)
        store.save(Session())

        assert store.load() is None

    def test_clear(self, tmp_path: Path) -> None:
        """Test clear removes the file and tolerates a missing one."""
        store = SessionStore(tmp_path)
        store.save(video_session())

        store.clear()
        store.clear()

        assert not store.state_file_path.exists()

    def test_save_failure_logged(self, tmp_path: Path, caplog) -> None:
        """Test a write failure is logged instead of raised."""
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        store = SessionStore(blocker / "state")

        store.save(video_session())

        assert "Failed to save session state" in caplog.text
