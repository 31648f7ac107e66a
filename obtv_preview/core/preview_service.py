"""Composition root wiring the preview core together.

One PreviewService is built per process by the application edge and handed
to the view layer; the components themselves hold no global state.
"""

from __future__ import annotations

from typing import Optional

from .admission_controller import PreviewAdmissionController
from .clock import Clock, MonotonicClock
from .config_loader import PreviewConfig
from .exclusive_playback import ExclusivePlaybackCoordinator
from .ffmpeg_connection import default_connection_factory
from .logging_utils import get_module_logger
from .media import ConnectionFactory
from .snapshot_capture import SnapshotCapturer
from .snapshot_scheduler import SnapshotScheduler


class PreviewService:
    """Owns the admission controller, snapshot scheduler and coordinator."""

    def __init__(
        self,
        config: PreviewConfig,
        connection_factory: Optional[ConnectionFactory] = None,
        *,
        clock: Optional[Clock] = None,
    ):
        self.logger = get_module_logger("PreviewService")
        self.config = config
        self.clock = clock or MonotonicClock()

        self.admission = PreviewAdmissionController(
            config.max_concurrent,
            logger=get_module_logger("PreviewAdmission"),
        )
        self.capturer = SnapshotCapturer(
            connection_factory or default_connection_factory,
            clock=self.clock,
            timeout=config.capture_timeout,
            max_width=config.snapshot_max_width,
            jpeg_quality=config.jpeg_quality,
            logger=get_module_logger("SnapshotCapturer"),
        )
        self.scheduler = SnapshotScheduler(
            self.capturer,
            clock=self.clock,
            interval=config.snapshot_interval,
            initial_delay=config.initial_snapshot_delay,
            inter_item_delay=config.inter_item_delay,
            logger=get_module_logger("SnapshotScheduler"),
        )
        self.coordinator = ExclusivePlaybackCoordinator(
            self.admission,
            self.scheduler,
            logger=get_module_logger("ExclusivePlayback"),
        )

        self.logger.info(
            "Preview service ready (max_concurrent=%d, constrained=%s)",
            config.max_concurrent, config.device_is_constrained,
        )

    def get_status(self) -> dict:
        status = self.admission.get_status().to_dict()
        status.update(self.scheduler.get_status())
        status["isTV"] = self.config.device_is_constrained
        status["exclusivePlayback"] = self.coordinator.is_suspended
        return status

    async def shutdown(self) -> None:
        self.coordinator.suspend_all()
        await self.scheduler.shutdown()
        self.logger.info("Preview service stopped")


__all__ = ["PreviewService"]
