"""
Exclusive Playback Coordinator - keeps previews quiet during full-screen playback.

While one stream plays full-screen no background preview or snapshot
connection may compete for decoder resources. The coordinator is a single
boolean switch over both subsystems: calling suspend_all() twice still needs
only one resume_snapshots(), and resume_snapshots() without a suspend is a
harmless no-op, because the full-screen player has several exit paths.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Tuple

from obtv_preview.core.admission_controller import PreviewAdmissionController
from obtv_preview.core.logging_utils import LoggerLike, ensure_structured_logger
from obtv_preview.core.snapshot_scheduler import SchedulerState, SnapshotScheduler


@dataclass
class SuspensionState:
    """Process-wide suspension flag plus what was running when it was set."""

    suspended: bool = False
    slots_at_suspension: Tuple[str, ...] = ()
    scheduler_was_active: bool = False


class ExclusivePlaybackCoordinator:
    """Suspends and resumes all preview activity around exclusive playback."""

    def __init__(
        self,
        admission: PreviewAdmissionController,
        scheduler: SnapshotScheduler,
        *,
        logger: LoggerLike = None,
    ):
        self.logger = ensure_structured_logger(logger, fallback_name="ExclusivePlayback")
        self._admission = admission
        self._scheduler = scheduler
        self._state = SuspensionState()

    @property
    def is_suspended(self) -> bool:
        return self._state.suspended

    @property
    def state(self) -> SuspensionState:
        return SuspensionState(
            suspended=self._state.suspended,
            slots_at_suspension=self._state.slots_at_suspension,
            scheduler_was_active=self._state.scheduler_was_active,
        )

    def suspend_all(self) -> None:
        """Revoke every preview slot and halt snapshot capture.

        Runs to completion synchronously; call it before opening the
        exclusive connection.
        """
        if self._state.suspended:
            self.logger.debug("Already suspended")
            return

        self._state = SuspensionState(
            suspended=True,
            slots_at_suspension=self._admission.active_stream_ids(),
            scheduler_was_active=self._scheduler.state is SchedulerState.ACTIVE,
        )
        self._admission.suspend_all()
        self._scheduler.suspend()
        self.logger.info(
            "Suspended all preview activity for exclusive playback (%d slot(s) revoked)",
            len(self._state.slots_at_suspension),
        )

    def resume_snapshots(self) -> None:
        """Re-enable admission control and snapshot capture."""
        if not self._state.suspended:
            self.logger.debug("Resume requested while not suspended, ignoring")
            return

        previous = self._state
        self._state = SuspensionState()
        self._admission.resume()
        self._scheduler.resume()
        self.logger.info(
            "Resumed preview activity (scheduler was %s)",
            "active" if previous.scheduler_was_active else "idle",
        )

    @asynccontextmanager
    async def exclusive_playback(self) -> AsyncIterator["ExclusivePlaybackCoordinator"]:
        """Hold exclusive playback for the duration of the block.

        Previews are resumed on every exit path, including failures and
        cancellation of the playback attempt.
        """
        self.suspend_all()
        try:
            yield self
        finally:
            self.resume_snapshots()


__all__ = ["ExclusivePlaybackCoordinator", "SuspensionState"]
