"""Session state machine for the single active task.

The state machine is the only writer of the live :class:`Session` record.
It moves through ``Idle -> Starting -> Active -> Stopping -> Idle``:

- Starting issues the remote start call. A failure propagates to the caller
  and leaves the machine Idle; nothing was armed, so nothing is torn down.
- Active arms the executor listeners, the progress simulator and, where the
  task has no reliable push, status polling. A snapshot is persisted and
  refreshed as progress moves.
- Stopping disarms everything, runs the teardown steps and returns to Idle.
  Concurrent stop requests share one in-flight teardown.

Executor pushes are posted to an internal :class:`SignalChannel` tagged with
the generation of the session that subscribed. Signals for an older
generation, or received outside of Active, are dropped.

Example:
    >>> machine = SessionStateMachine(backend, config)
    >>> await machine.start_video("1234", target_seconds=600, initial_progress_seconds=150)
    >>> machine.session.authoritative_progress_pct
    25.0
    >>> await machine.stop()
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime
from typing import TYPE_CHECKING

from quest_helper.core.config import Config
from quest_helper.core.errors import (
    CatalogMiss,
    ExecutorError,
    SessionStateError,
    StartFailure,
    StopFailure,
)
from quest_helper.core.events import (
    ListenerSlots,
    Signal,
    SignalChannel,
    SignalKind,
    Unsubscribe,
)
from quest_helper.core.logger import bind_task, unbind_task
from quest_helper.core.polling import PollingController, RefreshCallback
from quest_helper.core.recovery import SessionStore, StopController
from quest_helper.core.simulator import ProgressSimulator
from quest_helper.core.types import (
    DetectableApplication,
    Session,
    SessionPhase,
    StopReason,
    Task,
    TaskKind,
    TeardownReport,
)
from quest_helper.utils.constants import (
    PRESENCE_CONNECT,
    PROGRESS_MAX,
    PROGRESS_MIN,
    SNAPSHOT_SAVE_INTERVAL,
)

if TYPE_CHECKING:
    from quest_helper.backends.base import TaskBackend

logger = logging.getLogger(__name__)

EndListener = Callable[[str, StopReason], None]


def initial_progress_pct(target_seconds: int, initial_progress_seconds: float) -> float:
    """Convert existing progress to a percentage of the target.

    Returns 0 when the target is unknown.
    """
    if target_seconds <= 0:
        return 0.0
    pct = initial_progress_seconds / target_seconds * 100.0
    return max(PROGRESS_MIN, min(PROGRESS_MAX, pct))


def activity_payload(application: DetectableApplication) -> str:
    """Build the JSON activity shown while a simulated game runs."""
    return json.dumps(
        {
            "app_id": application.id,
            "state": "In Game",
            "details": f"Playing {application.name}",
            "largeImageKey": "logo",
            "largeImageText": application.name,
            "timestamp": int(time.time() * 1000),
        }
    )


async def _no_tasks() -> Sequence[Task]:
    return ()


class SessionStateMachine:
    """Owns the live session and drives its phase transitions.

    Args:
        backend: Remote executor.
        config: Settings read at every start (speed, heartbeat, game mode,
            polling). Defaults to the loaded user configuration.
        store: Snapshot persistence. None disables persistence.
        tasks: Returns the latest task snapshot, used during teardown.
        refresh: Silently refreshes the task list, used by polling.
        clock: Monotonic clock for the simulator and snapshot throttling.
    """

    def __init__(
        self,
        backend: TaskBackend,
        config: Config | None = None,
        store: SessionStore | None = None,
        tasks: Callable[[], Sequence[Task]] = tuple,
        refresh: RefreshCallback = _no_tasks,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._backend = backend
        self._config = config or Config.load()
        self._store = store
        self._tasks = tasks
        self._clock = clock
        self._last_save_time: float | None = None

        self.session = Session()
        self.phase = SessionPhase.IDLE
        self.last_error: ExecutorError | None = None
        self.last_report: TeardownReport | None = None

        self._generation = 0
        self._slots = ListenerSlots()
        self._channel = SignalChannel(self._handle_signal)
        self._stopping: asyncio.Future[TeardownReport] | None = None
        self._end_listeners: list[EndListener] = []

        self._stop_controller = StopController(backend, platform=self._config.game.platform)
        self._simulator = ProgressSimulator(
            self.session,
            self._publish_local,
            tick_interval=self._config.simulation.tick_interval,
            clock=clock,
        )
        self._polling = PollingController(
            self.session,
            refresh,
            on_progress=self.record_authoritative,
            on_completed=self._on_auto_detected,
            interval=self._config.polling.interval_seconds,
        )

    @property
    def is_active(self) -> bool:
        return self.phase is SessionPhase.ACTIVE

    @property
    def simulator(self) -> ProgressSimulator:
        return self._simulator

    @property
    def polling(self) -> PollingController:
        return self._polling

    @property
    def listeners_armed(self) -> bool:
        """Check if executor listeners are subscribed."""
        return self._slots.armed

    @property
    def stop_controller(self) -> StopController:
        return self._stop_controller

    # ------------------------------------------------------------------
    # Starting
    # ------------------------------------------------------------------

    async def start_video(
        self,
        task_id: str,
        target_seconds: int,
        initial_progress_seconds: float = 0.0,
    ) -> None:
        """Start a video task.

        Args:
            task_id: Task to start.
            target_seconds: Duration needed for completion.
            initial_progress_seconds: Progress already credited.

        Raises:
            StartFailure: If the backend rejects the start.
            SessionStateError: If another start or stop is in flight.
        """
        pct = initial_progress_pct(target_seconds, initial_progress_seconds)
        simulation = self._config.simulation

        async def begin() -> str | None:
            await self._backend.start_duration_task(
                task_id,
                target_seconds,
                pct,
                simulation.speed_multiplier,
                simulation.heartbeat_interval,
            )
            return None

        await self._start(task_id, TaskKind.VIDEO, target_seconds, pct, begin)

    async def start_stream(
        self,
        task_id: str,
        stream_key: str,
        target_seconds: int,
        initial_progress_seconds: float = 0.0,
    ) -> None:
        """Start a stream task keyed by ``stream_key``."""
        pct = initial_progress_pct(target_seconds, initial_progress_seconds)

        async def begin() -> str | None:
            await self._backend.start_stream_task(task_id, stream_key, target_seconds, pct)
            return None

        await self._start(task_id, TaskKind.STREAM, target_seconds, pct, begin)

    async def start_game(
        self,
        task: Task,
        target_seconds: int,
        initial_progress_seconds: float = 0.0,
    ) -> None:
        """Start a game task in the configured mode.

        In heartbeat mode the backend heartbeats directly. In simulate mode a
        fake executable is created and launched and an activity presence is
        opened; any failure terminates an already created executable before
        re-raising.

        Raises:
            CatalogMiss: If the application or its executable is unknown.
            StartFailure: If the task has no application or a step fails.
            SessionStateError: If another start or stop is in flight.
        """
        application_id = task.application_id
        if not application_id:
            raise StartFailure(f"Task {task.id} has no application id")

        pct = initial_progress_pct(target_seconds, initial_progress_seconds)

        if self._config.game.mode == "heartbeat":

            async def heartbeat() -> str | None:
                await self._backend.start_process_heartbeat_task(
                    task.id, application_id, target_seconds, pct
                )
                return None

            await self._start(
                task.id,
                TaskKind.GAME_HEARTBEAT,
                target_seconds,
                pct,
                heartbeat,
                application_id=application_id,
            )
            return

        async def simulate() -> str | None:
            return await self._launch_simulated_game(application_id)

        await self._start(
            task.id,
            TaskKind.GAME_SIMULATED,
            target_seconds,
            pct,
            simulate,
            application_id=application_id,
        )

    async def _launch_simulated_game(self, application_id: str) -> str:
        game = self._config.game

        try:
            catalog = await self._backend.list_detectable_applications()
        except Exception as e:
            raise StartFailure(f"Failed to fetch detectable applications: {e}") from e

        application = next((a for a in catalog if a.id == application_id), None)
        if application is None:
            raise CatalogMiss(f"Game not found in detectable list (application {application_id})")

        executable = application.executable_for(game.platform)
        if executable is None:
            raise CatalogMiss(f"No {game.platform} executable for game {application.name}")

        logger.info(f"Starting simulated game {application.name} ({executable.name})")
        created = False
        try:
            await self._backend.create_fake_executable(
                game.install_dir, executable.name, application.id
            )
            created = True
            await self._backend.launch_fake_executable(
                application.name, game.install_dir, executable.name, application.id
            )
            await self._backend.open_activity_presence(
                activity_payload(application), PRESENCE_CONNECT
            )
        except Exception as e:
            if created:
                try:
                    await self._backend.terminate_fake_executable(executable.name)
                except Exception as cleanup_error:
                    logger.warning(f"Cleanup of {executable.name} failed: {cleanup_error}")
            raise StartFailure(f"Failed to launch {executable.name}: {e}") from e

        return executable.name

    async def _start(
        self,
        task_id: str,
        kind: TaskKind,
        target_seconds: int,
        pct: float,
        begin: Callable[[], Awaitable[str | None]],
        application_id: str | None = None,
    ) -> None:
        if self.phase in (SessionPhase.STARTING, SessionPhase.STOPPING):
            raise SessionStateError(f"Cannot start {task_id} while {self.phase.value}")

        if self.phase is SessionPhase.ACTIVE:
            logger.info(f"Preempting task {self.session.task_id} for {task_id}")
            await self.stop(StopReason.PREEMPTED)
            if self.phase is not SessionPhase.IDLE:
                raise SessionStateError(f"Cannot start {task_id} while {self.phase.value}")

        self.phase = SessionPhase.STARTING
        self.last_error = None
        bind_task(task_id)
        logger.info(f"Starting {kind.value} task {task_id} at {pct:.1f}%")

        try:
            handle = await begin()
        except StartFailure:
            self.phase = SessionPhase.IDLE
            unbind_task()
            raise
        except Exception as e:
            self.phase = SessionPhase.IDLE
            unbind_task()
            raise StartFailure(f"Failed to start task {task_id}: {e}") from e
        except BaseException:
            self.phase = SessionPhase.IDLE
            unbind_task()
            raise

        self._activate(task_id, kind, target_seconds, pct, handle, application_id)

    def _activate(
        self,
        task_id: str,
        kind: TaskKind,
        target_seconds: int,
        pct: float,
        handle: str | None,
        application_id: str | None,
    ) -> None:
        self._generation += 1
        generation = self._generation

        session = self.session
        session.task_id = task_id
        session.kind = kind
        session.authoritative_progress_pct = pct
        session.local_progress_pct = pct
        session.target_seconds = target_seconds
        session.process_handle = handle
        session.application_id = application_id
        session.started_at = datetime.now()
        self.phase = SessionPhase.ACTIVE

        self._arm_listeners(generation)

        speed = self._config.simulation.speed_multiplier if kind is TaskKind.VIDEO else 1
        self._simulator.arm(speed)

        if kind.is_process_backed or self._config.polling.poll_push_sessions:
            self._polling.set_interval(self._config.polling.interval_seconds)
            self._polling.arm()

        self._persist(force=True)

        logger.info(f"Task {task_id} active")

    def _arm_listeners(self, generation: int) -> None:
        post = self._channel.post
        self._slots.progress = self._backend.on_progress(
            lambda pct: post(Signal(SignalKind.PROGRESS, generation, pct))
        )
        self._slots.complete = self._backend.on_complete(
            lambda: post(Signal(SignalKind.COMPLETE, generation))
        )
        self._slots.error = self._backend.on_error(
            lambda message: post(Signal(SignalKind.ERROR, generation, message))
        )

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    def record_authoritative(self, pct: float) -> None:
        """Record authoritative progress.

        Lower values than the current one are ignored. Local progress is
        raised to match when it is behind.
        """
        if not self.is_active:
            return
        pct = max(PROGRESS_MIN, min(PROGRESS_MAX, pct))
        session = self.session
        if pct <= session.authoritative_progress_pct:
            return
        session.authoritative_progress_pct = pct
        if session.local_progress_pct < pct:
            session.local_progress_pct = pct
        self._persist(force=True)

    def _publish_local(self, pct: float) -> None:
        if not self.is_active:
            return
        session = self.session
        session.local_progress_pct = max(
            session.local_progress_pct,
            session.authoritative_progress_pct,
            min(PROGRESS_MAX, pct),
        )
        self._persist()

    def _persist(self, force: bool = False) -> None:
        """Write the live session snapshot.

        Args:
            force: Save even if the save interval has not elapsed.
        """
        if self._store is None or not self.is_active:
            return
        now = self._clock()
        if not force and self._last_save_time is not None:
            if now - self._last_save_time < SNAPSHOT_SAVE_INTERVAL:
                return
        self._store.save(self.session)
        self._last_save_time = now

    def _on_auto_detected(self, task_id: str) -> None:
        if self.is_active and self.session.task_id == task_id:
            self._channel.post(Signal(SignalKind.AUTO_DETECTED, self._generation))

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    async def _handle_signal(self, signal: Signal) -> None:
        if signal.generation != self._generation or not self.is_active:
            logger.debug(f"Ignoring stale {signal.kind.value} signal")
            return

        if signal.kind is SignalKind.PROGRESS:
            self.record_authoritative(float(signal.payload))
        elif signal.kind is SignalKind.COMPLETE:
            logger.info(f"Task {self.session.task_id} completed")
            await self.stop(StopReason.COMPLETED)
        elif signal.kind is SignalKind.ERROR:
            self.last_error = ExecutorError(str(signal.payload))
            logger.error(f"Executor error on task {self.session.task_id}: {signal.payload}")
            await self.stop(StopReason.ERROR)
        elif signal.kind is SignalKind.AUTO_DETECTED:
            await self.stop(StopReason.AUTO_DETECTED)

    async def drain(self) -> None:
        """Wait until every posted executor signal has been handled."""
        await self._channel.join()

    # ------------------------------------------------------------------
    # Stopping
    # ------------------------------------------------------------------

    async def stop(self, reason: StopReason = StopReason.USER) -> TeardownReport | None:
        """Tear the active session down.

        No-op when nothing is active. A call made while a teardown is in
        flight waits for that teardown and returns its report.

        Args:
            reason: Why the session is stopped.

        Returns:
            The teardown report, or None if there was nothing to stop.
        """
        if self._stopping is not None:
            return await asyncio.shield(self._stopping)
        if self.phase is not SessionPhase.ACTIVE:
            logger.debug(f"Stop ({reason.value}) ignored while {self.phase.value}")
            return None

        future: asyncio.Future[TeardownReport] = asyncio.get_running_loop().create_future()
        self._stopping = future
        self.phase = SessionPhase.STOPPING
        task_id = self.session.task_id or ""

        self._simulator.disarm()
        self._polling.disarm()
        self._slots.release()

        report: TeardownReport | None = None
        try:
            report = await self._stop_controller.teardown(self.session, reason, self._tasks())
        except Exception as e:
            logger.error(f"Teardown of task {task_id} failed: {e}")
            report = TeardownReport(
                reason=reason, task_id=task_id, failures=[StopFailure(str(e))]
            )
        finally:
            self._finish_stop(future, report)

        self._notify_end(task_id, reason)
        return report

    def _finish_stop(
        self, future: asyncio.Future[TeardownReport], report: TeardownReport | None
    ) -> None:
        session = self.session
        session.task_id = None
        session.kind = None
        session.authoritative_progress_pct = 0.0
        session.local_progress_pct = 0.0
        session.target_seconds = 0
        session.process_handle = None
        session.application_id = None
        session.started_at = None

        self._last_save_time = None
        if self._store is not None:
            self._store.clear()

        self.phase = SessionPhase.IDLE
        self.last_report = report
        self._stopping = None
        unbind_task()

        if future.done():
            return
        if report is None:
            future.cancel()
        else:
            future.set_result(report)

    def add_end_listener(self, listener: EndListener) -> Unsubscribe:
        """Register a callback invoked with ``(task_id, reason)`` after teardown."""
        self._end_listeners.append(listener)

        def remove() -> None:
            if listener in self._end_listeners:
                self._end_listeners.remove(listener)

        return remove

    def _notify_end(self, task_id: str, reason: StopReason) -> None:
        for listener in list(self._end_listeners):
            try:
                listener(task_id, reason)
            except Exception as e:
                logger.warning(f"Session end listener error: {e}")

    async def recover(self, leftover: Session, tasks: Sequence[Task] = ()) -> TeardownReport:
        """Tear down a session left over from a previous run.

        Only valid while Idle; the leftover record is never installed as the
        live session.

        Raises:
            SessionStateError: If a session is live.
        """
        if self.phase is not SessionPhase.IDLE:
            raise SessionStateError("Cannot recover while a session is live")

        logger.warning(f"Recovering interrupted task {leftover.task_id}")
        report = await self._stop_controller.teardown(leftover, StopReason.RECOVERY, tasks)
        if self._store is not None:
            self._store.clear()
        return report

    async def close(self) -> None:
        """Stop any active session and shut the signal pump down."""
        await self.stop(StopReason.USER)
        await self._channel.close()


__all__ = [
    "EndListener",
    "SessionStateMachine",
    "activity_payload",
    "initial_progress_pct",
]
