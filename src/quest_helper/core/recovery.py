"""Session teardown and orphaned-process recovery.

Teardown is best-effort and always runs to the end. Each step that fails is
logged and recorded on the returned :class:`TeardownReport`; nothing is
raised to the caller. Steps run in a fixed order:

    1. Flush accumulated video progress (not after completion or error).
    2. Terminate the fake executable of a simulated game.
    3. Disconnect the activity presence channel.
    4. Stop the remote task.

The binding between a session and its fake executable can be lost, for
example when the application restarts mid-session. :class:`SessionStore`
keeps a JSON snapshot of the live session so the next run can find the
leftover session, and the handle is re-derived from the catalog when the
snapshot does not carry it.

Example:
    >>> controller = StopController(backend, platform="win32")
    >>> report = await controller.teardown(session, StopReason.USER, tasks)
    >>> if not report.clean:
    ...     print(report.failures)
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING

from quest_helper.core.errors import RecoveryMiss, StopFailure
from quest_helper.core.types import Session, StopReason, Task, TaskKind, TeardownReport
from quest_helper.utils.constants import (
    DEFAULT_GAME_PLATFORM,
    DEFAULT_STATE_DIR,
    SESSION_STATE_FILE,
)

if TYPE_CHECKING:
    from quest_helper.backends.base import TaskBackend

logger = logging.getLogger(__name__)


class StopController:
    """Runs the teardown steps of a session against a backend.

    Args:
        backend: Remote executor.
        platform: Platform identifier used to re-derive executables.
    """

    def __init__(self, backend: TaskBackend, platform: str = DEFAULT_GAME_PLATFORM) -> None:
        self._backend = backend
        self.platform = platform

    async def teardown(
        self,
        session: Session,
        reason: StopReason,
        tasks: Sequence[Task] = (),
    ) -> TeardownReport:
        """Tear down the remote side of a session.

        The session record is only read; clearing it is the caller's job.

        Args:
            session: Session being stopped.
            reason: Why it is being stopped.
            tasks: Latest task snapshot, used for handle reconstruction.

        Returns:
            What was done and which steps failed.
        """
        report = TeardownReport(reason=reason, task_id=session.task_id)
        logger.info(f"Tearing down task {session.task_id} ({reason.value})")

        await self._flush_progress(session, reason, report)

        try:
            handle = await self.resolve_process_handle(session, tasks)
        except RecoveryMiss as e:
            logger.warning(f"Proceeding without process handle: {e}")
            report.failures.append(e)
            handle = None

        if handle:
            try:
                await self._backend.terminate_fake_executable(handle)
                report.terminated_handle = handle
            except Exception as e:
                self._record(report, f"Failed to terminate {handle}", e)

        try:
            self._backend.emit_disconnect()
        except Exception as e:
            self._record(report, "Failed to disconnect activity presence", e)

        try:
            await self._backend.stop_task()
        except Exception as e:
            # "Nothing running" is the usual cause
            self._record(report, "Remote stop failed", e, level=logging.DEBUG)

        return report

    async def _flush_progress(
        self, session: Session, reason: StopReason, report: TeardownReport
    ) -> None:
        if session.kind is not TaskKind.VIDEO or session.task_id is None:
            return
        if not reason.submits_progress:
            return

        elapsed = session.elapsed_seconds
        if elapsed <= 0:
            return

        try:
            await self._backend.force_submit_progress(session.task_id, elapsed)
            report.submitted_seconds = elapsed
            logger.info(f"Submitted {elapsed:.1f}s of progress for {session.task_id}")
        except Exception as e:
            self._record(report, "Progress submission failed", e)

    async def resolve_process_handle(
        self, session: Session, tasks: Sequence[Task] = ()
    ) -> str | None:
        """Find the executable to terminate for a session.

        Returns the bound handle when there is one. A simulated game session
        without a handle gets it re-derived from the catalog using the task's
        application id.

        Args:
            session: Session being stopped.
            tasks: Latest task snapshot.

        Returns:
            Executable name, or None when the session has no process.

        Raises:
            RecoveryMiss: If the handle of a simulated game cannot be rebuilt.
        """
        if session.process_handle:
            return session.process_handle
        if session.task_id is None or session.kind is not TaskKind.GAME_SIMULATED:
            return None

        task = next((t for t in tasks if t.id == session.task_id), None)
        application_id = (task.application_id if task else None) or session.application_id
        if not application_id:
            raise RecoveryMiss(f"No application id known for task {session.task_id}")

        try:
            catalog = await self._backend.list_detectable_applications()
        except Exception as e:
            raise RecoveryMiss(f"Catalog lookup failed: {e}") from e

        application = next((a for a in catalog if a.id == application_id), None)
        if application is None:
            raise RecoveryMiss(f"Application {application_id} not in catalog")

        executable = application.executable_for(self.platform)
        if executable is None:
            raise RecoveryMiss(f"No {self.platform} executable for application {application_id}")

        logger.info(f"Recovered executable name: {executable.name}")
        return executable.name

    @staticmethod
    def _record(
        report: TeardownReport,
        message: str,
        error: Exception,
        level: int = logging.WARNING,
    ) -> None:
        failure = StopFailure(f"{message}: {error}")
        failure.__cause__ = error
        logger.log(level, str(failure))
        report.failures.append(failure)


class SessionStore:
    """JSON snapshot of the live session.

    The snapshot is written when a session becomes active and removed when
    it returns to idle. A snapshot found at startup belongs to a session
    that was interrupted.

    Args:
        state_dir: Directory holding the snapshot file.
    """

    def __init__(self, state_dir: Path | None = None) -> None:
        self.state_dir = (state_dir or DEFAULT_STATE_DIR).expanduser()

    @property
    def state_file_path(self) -> Path:
        """Get the path to the snapshot file."""
        return self.state_dir / SESSION_STATE_FILE

    def save(self, session: Session) -> None:
        """Write the snapshot. Failures are logged, not raised."""
        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
            with open(self.state_file_path, "w", encoding="utf-8") as f:
                json.dump(session.to_dict(), f, indent=2)
            logger.debug(f"Saved session state to {self.state_file_path}")
        except OSError as e:
            logger.error(f"Failed to save session state: {e}")

    def load(self) -> Session | None:
        """Read a leftover snapshot.

        Returns:
            The snapshot session, or None when there is none or it is
            unreadable.
        """
        state_file = self.state_file_path
        if not state_file.exists():
            return None

        try:
            with open(state_file, encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError(f"expected an object, got {type(data).__name__}")
            session = Session.from_dict(data)
        except (json.JSONDecodeError, KeyError, TypeError, ValueError, OSError) as e:
            logger.warning(f"Discarding unreadable session state: {e}")
            self.clear()
            return None

        if not session.is_active:
            return None
        return session

    def clear(self) -> None:
        """Remove the snapshot if present."""
        try:
            self.state_file_path.unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Failed to remove session state: {e}")


__all__ = ["SessionStore", "StopController"]
