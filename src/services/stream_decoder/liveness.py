"""Heartbeat that notices when a stream stops producing data."""

from __future__ import annotations

import logging
from collections.abc import Callable

from apscheduler.jobstores.base import JobLookupError  # type: ignore[import-untyped]
from apscheduler.schedulers.base import BaseScheduler  # type: ignore[import-untyped]
from apscheduler.triggers.interval import IntervalTrigger  # type: ignore[import-untyped]

from services.stream_decoder.types import StallStage


logger = logging.getLogger(__name__)


def stage_for(elapsed: float, warn_after: float) -> StallStage:
    """Stage a session with `elapsed` seconds of silence should be in."""
    if elapsed >= 3 * warn_after:
        return StallStage.FORCED_RECOVERY
    if elapsed >= 2 * warn_after:
        return StallStage.FIRST_RECOVERY_ATTEMPTED
    if elapsed >= warn_after:
        return StallStage.WARNED
    return StallStage.HEALTHY


def next_stage(current: StallStage, elapsed: float, warn_after: float) -> StallStage:
    """Advance at most one stage towards where `elapsed` says we should be.

    Never moves backwards; only new data (handled by the decoder) resets a
    session to HEALTHY.
    """
    target = stage_for(elapsed, warn_after)
    if target <= current:
        return current
    return StallStage(current + 1)


class LivenessMonitor:
    """Per-session interval job that calls back into the decoder.

    The monitor owns no session state. Each tick hands the current time to
    `on_tick`, which compares it against the session's last activity under
    the decoder lock.
    """

    def __init__(
        self,
        session_id: str,
        on_tick: Callable[[float], None],
        clock: Callable[[], float],
        interval: float,
        scheduler: BaseScheduler | None = None,
    ):
        self.session_id = session_id
        self.job_id = f"liveness-{session_id}"
        self._on_tick = on_tick
        self._clock = clock
        self._interval = interval
        self._scheduler = scheduler
        self._armed = False

    @property
    def armed(self) -> bool:
        return self._armed

    def arm(self) -> None:
        if self._armed:
            return
        self._armed = True
        if self._scheduler is None:
            return
        self._scheduler.add_job(
            self.tick,
            IntervalTrigger(seconds=self._interval),
            id=self.job_id,
            replace_existing=True,
        )
        logger.debug(f"Armed liveness job {self.job_id} every {self._interval}s")

    def disarm(self) -> None:
        """Remove the job. Safe to call more than once or from inside a tick."""
        if not self._armed:
            return
        self._armed = False
        if self._scheduler is None:
            return
        try:
            self._scheduler.remove_job(self.job_id)
        except JobLookupError:
            logger.debug(f"Liveness job {self.job_id} already gone")

    def tick(self, now: float | None = None) -> None:
        if not self._armed:
            return
        self._on_tick(self._clock() if now is None else now)
