"""Local progress interpolation between authoritative updates.

Remote progress arrives coarsely, on poll cadence or on sparse pushes. The
:class:`ProgressSimulator` advances a local estimate on a fixed tick so a
progress display keeps moving between updates.

The simulator only reads the session. New values are handed to a publish
callback owned by the session state machine, which is the single writer of
session fields and enforces ``authoritative <= local <= 100``.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from quest_helper.core.scheduler import PeriodicTimer
from quest_helper.core.types import Session
from quest_helper.utils.constants import DEFAULT_TICK_INTERVAL, PROGRESS_MAX

logger = logging.getLogger(__name__)


def advance(local_pct: float, authoritative_pct: float, increment: float) -> float:
    """Compute the next local value.

    Args:
        local_pct: Current local estimate.
        authoritative_pct: Latest authoritative progress.
        increment: Percentage points to add.

    Returns:
        ``max(authoritative, min(100, local + increment))``.
    """
    return max(authoritative_pct, min(PROGRESS_MAX, local_pct + increment))


class ProgressSimulator:
    """Cooperative per-tick estimator of local progress.

    Args:
        session: Live session record, read on every tick.
        publish: Receives each new local percentage.
        tick_interval: Seconds between ticks.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        session: Session,
        publish: Callable[[float], None],
        tick_interval: float = DEFAULT_TICK_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._session = session
        self._publish = publish
        self._clock = clock
        self._timer = PeriodicTimer(tick_interval, self.tick, name="progress-simulator")
        self._speed = 1.0
        self._last_tick: float | None = None

    @property
    def armed(self) -> bool:
        """Check if the simulator is ticking."""
        return self._timer.armed

    @property
    def speed(self) -> float:
        return self._speed

    def arm(self, speed: float = 1.0) -> None:
        """Start ticking at the given speed multiplier."""
        self._speed = speed
        self._last_tick = self._clock()
        self._timer.start()
        logger.debug(f"Simulator armed at {speed}x")

    def disarm(self) -> None:
        """Stop ticking. No-op when not armed."""
        self._timer.cancel()
        self._last_tick = None

    def tick(self) -> None:
        """Advance the local estimate by the wall-clock time since last tick."""
        session = self._session
        if not session.is_active or session.local_progress_pct >= PROGRESS_MAX:
            self.disarm()
            return

        now = self._clock()
        delta = now - (self._last_tick if self._last_tick is not None else now)
        self._last_tick = now

        if session.target_seconds <= 0:
            return

        increment = delta * self._speed / session.target_seconds * 100.0
        self._publish(
            advance(
                session.local_progress_pct,
                session.authoritative_progress_pct,
                increment,
            )
        )

        if session.local_progress_pct >= PROGRESS_MAX:
            self.disarm()


__all__ = ["ProgressSimulator", "advance"]
