"""
Snapshot Scheduler - periodically refreshes still images of visible streams.

Visible tiles register here cheaply (registration is uncapped). A single
timer drives capture passes over the registered set; inside a pass every
stream is captured strictly one after another, because each capture briefly
opens a full decode session.

States:
- IDLE: no registrants, no timer
- ACTIVE: timer running, cycling every ``interval`` seconds
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Optional, Set, Tuple

from obtv_preview.core.asyncio_utils import create_logged_task
from obtv_preview.core.clock import Clock, MonotonicClock
from obtv_preview.core.logging_utils import LoggerLike, ensure_structured_logger
from obtv_preview.core.snapshot_capture import Snapshot, SnapshotCapturer
from obtv_preview.core.stream_ids import canonical_stream_id

SnapshotCallback = Callable[[Snapshot], None]


class SchedulerState(Enum):
    IDLE = "idle"
    ACTIVE = "active"


@dataclass
class SnapshotRegistration:
    """One visible feed and the tiles waiting for its image."""

    canonical_id: str
    source_url: str
    callbacks: Dict[str, SnapshotCallback] = field(default_factory=dict)


class SnapshotScheduler:
    """Drives sequential snapshot capture over the visible stream set."""

    def __init__(
        self,
        capturer: SnapshotCapturer,
        *,
        clock: Optional[Clock] = None,
        interval: float = 30.0,
        initial_delay: float = 1.0,
        inter_item_delay: float = 0.5,
        logger: LoggerLike = None,
    ):
        self.logger = ensure_structured_logger(logger, fallback_name="SnapshotScheduler")
        self._capturer = capturer
        self._clock = clock or MonotonicClock()
        self._interval = interval
        self._initial_delay = initial_delay
        self._inter_item_delay = inter_item_delay

        # canonical id -> registration, in registration order
        self._registrations: Dict[str, SnapshotRegistration] = {}
        # caller stream id -> canonical id
        self._aliases: Dict[str, str] = {}

        self._timer_task: Optional[asyncio.Task] = None
        self._cycle_task: Optional[asyncio.Task] = None
        # cancelled timer/cycle tasks that have not finished unwinding yet
        self._retired: Set[asyncio.Task] = set()
        self._cycle_in_progress = False
        self._suspended = False
        self.cycles_completed = 0

    # ------------------------------------------------------------------
    # Introspection

    @property
    def state(self) -> SchedulerState:
        if self._timer_task is not None and not self._timer_task.done():
            return SchedulerState.ACTIVE
        return SchedulerState.IDLE

    @property
    def is_suspended(self) -> bool:
        return self._suspended

    @property
    def cycle_in_progress(self) -> bool:
        return self._cycle_in_progress

    def registered_streams(self) -> Tuple[str, ...]:
        """Canonical ids in capture order."""
        return tuple(self._registrations)

    def get_status(self) -> dict:
        return {
            "state": self.state.value,
            "snapshotStreams": len(self._registrations),
            "suspended": self._suspended,
            "cycleInProgress": self._cycle_in_progress,
            "cyclesCompleted": self.cycles_completed,
        }

    # ------------------------------------------------------------------
    # Tile-facing operations

    def register_stream_for_snapshot(
        self,
        stream_id: str,
        source_url: str,
        on_snapshot: SnapshotCallback,
    ) -> None:
        canonical_id = canonical_stream_id(stream_id, source_url)
        previous = self._aliases.get(stream_id)
        if previous is not None and previous != canonical_id:
            self._drop_alias(stream_id)

        registration = self._registrations.get(canonical_id)
        if registration is None:
            registration = SnapshotRegistration(canonical_id=canonical_id, source_url=source_url)
            self._registrations[canonical_id] = registration

        registration.callbacks[stream_id] = on_snapshot
        self._aliases[stream_id] = canonical_id

        self.logger.debug(
            "Registered %s (canonical: %s) for snapshots (%d streams, %d callbacks)",
            stream_id, canonical_id, len(self._registrations), len(registration.callbacks),
        )
        self._ensure_timer()

    def unregister_stream_from_snapshot(self, stream_id: str) -> None:
        if self._drop_alias(stream_id):
            self.logger.debug(
                "Unregistered %s from snapshots (%d streams)", stream_id, len(self._registrations)
            )
        if not self._registrations:
            self._stop_timer()

    def _drop_alias(self, stream_id: str) -> bool:
        canonical_id = self._aliases.pop(stream_id, None)
        if canonical_id is None:
            return False
        registration = self._registrations.get(canonical_id)
        if registration is not None:
            registration.callbacks.pop(stream_id, None)
            if not registration.callbacks:
                del self._registrations[canonical_id]
        return True

    # ------------------------------------------------------------------
    # Timer management

    def _ensure_timer(self) -> None:
        if self._suspended or not self._registrations:
            return
        if self.state is SchedulerState.ACTIVE:
            return
        self.logger.info("Starting snapshot timer (%.0f second intervals)", self._interval)
        self._timer_task = create_logged_task(
            self._timer_loop(), logger=self.logger, context="snapshot-timer"
        )

    def _stop_timer(self) -> None:
        timer, self._timer_task = self._timer_task, None
        if timer is not None and not timer.done():
            timer.cancel()
            self._retire(timer)
            self.logger.info("Stopped snapshot timer")

    def _cancel_cycle(self) -> None:
        cycle, self._cycle_task = self._cycle_task, None
        if cycle is not None and not cycle.done():
            cycle.cancel()
            self._retire(cycle)
        self._capturer.abort_active()

    def _retire(self, task: asyncio.Task) -> None:
        self._retired.add(task)
        task.add_done_callback(self._retired.discard)

    async def _timer_loop(self) -> None:
        # Fixed-rate ticks; a tick that lands on a running cycle is skipped.
        next_tick = self._clock.now() + self._initial_delay
        while True:
            await self._clock.sleep(next_tick - self._clock.now())
            next_tick += self._interval
            if self._cycle_in_progress:
                self.logger.debug("Previous snapshot cycle still running, skipping tick")
                continue
            self._cycle_task = create_logged_task(
                self.run_cycle(), logger=self.logger, context="snapshot-cycle"
            )

    # ------------------------------------------------------------------
    # Capture cycle

    async def run_cycle(self) -> int:
        """Capture every registered stream once. Returns snapshots delivered."""
        if self._cycle_in_progress or self._suspended:
            return 0

        self._cycle_in_progress = True
        delivered = 0
        try:
            batch = list(self._registrations.values())
            if not batch:
                return 0
            self.logger.debug("Capturing snapshots for %d streams", len(batch))

            for index, registration in enumerate(batch):
                if index > 0 and self._inter_item_delay > 0:
                    await self._clock.sleep(self._inter_item_delay)
                if self._suspended:
                    break
                if self._registrations.get(registration.canonical_id) is not registration:
                    continue

                try:
                    snapshot = await self._capturer.capture(
                        registration.canonical_id, registration.source_url
                    )
                except Exception as e:
                    self.logger.warning(
                        "Failed to capture snapshot for %s: %s", registration.canonical_id, e
                    )
                    continue

                if snapshot is not None and self._deliver(registration, snapshot):
                    delivered += 1

            self.cycles_completed += 1
            self.logger.debug("Completed snapshot batch (%d delivered)", delivered)
            return delivered
        finally:
            self._cycle_in_progress = False

    def _deliver(self, registration: SnapshotRegistration, snapshot: Snapshot) -> bool:
        # Tiles may have unregistered while the capture was in flight.
        callbacks = list(registration.callbacks.items())
        for stream_id, callback in callbacks:
            try:
                callback(snapshot)
            except Exception as e:
                self.logger.error("Snapshot callback for %s failed: %s", stream_id, e)
        return bool(callbacks)

    # ------------------------------------------------------------------
    # Suspension (driven by ExclusivePlaybackCoordinator)

    def suspend(self) -> None:
        """Stop the timer and abandon any in-flight capture immediately."""
        if self._suspended:
            return
        self._suspended = True
        self._stop_timer()
        self._cancel_cycle()
        self.logger.info("Snapshot capture suspended")

    def resume(self) -> None:
        if not self._suspended:
            return
        self._suspended = False
        self.logger.info("Snapshot capture resumed (%d streams)", len(self._registrations))
        self._ensure_timer()

    async def shutdown(self) -> None:
        """Cancel the timer and any cycle, including ones retired by suspend(), and wait for them."""
        self._stop_timer()
        self._cancel_cycle()
        pending = [task for task in self._retired if task is not asyncio.current_task()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._registrations.clear()
        self._aliases.clear()


__all__ = [
    "SchedulerState",
    "SnapshotCallback",
    "SnapshotRegistration",
    "SnapshotScheduler",
]
