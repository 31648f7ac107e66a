"""Unit test fixtures for isolated, fast test execution.

Everything here runs on a VirtualClock with fake media connections: no
ffmpeg, no network and no real waiting.

This file provides:
- clock / connection_factory: time and media doubles
- capturer / scheduler / admission / coordinator: wired preview components
- snapshot_sink: records delivered snapshots per caller
"""

from __future__ import annotations

from typing import Dict, List
from unittest.mock import MagicMock

import pytest

from obtv_preview.core.admission_controller import PreviewAdmissionController
from obtv_preview.core.exclusive_playback import ExclusivePlaybackCoordinator
from obtv_preview.core.snapshot_capture import Snapshot, SnapshotCapturer
from obtv_preview.core.snapshot_scheduler import SnapshotScheduler
from tests.infrastructure.mocks import FakeConnectionFactory, VirtualClock


@pytest.fixture
def clock() -> VirtualClock:
    return VirtualClock()


@pytest.fixture
def connection_factory(clock: VirtualClock) -> FakeConnectionFactory:
    return FakeConnectionFactory(clock, frame_delay=0.2)


@pytest.fixture
def capturer(connection_factory, clock) -> SnapshotCapturer:
    return SnapshotCapturer(connection_factory, clock=clock, timeout=10.0)


@pytest.fixture
def scheduler(capturer, clock) -> SnapshotScheduler:
    return SnapshotScheduler(
        capturer,
        clock=clock,
        interval=30.0,
        initial_delay=1.0,
        inter_item_delay=0.5,
    )


@pytest.fixture
def admission() -> PreviewAdmissionController:
    return PreviewAdmissionController(2)


@pytest.fixture
def coordinator(admission, scheduler) -> ExclusivePlaybackCoordinator:
    return ExclusivePlaybackCoordinator(admission, scheduler)


class SnapshotSink:
    """Collects snapshots delivered to named callbacks."""

    def __init__(self) -> None:
        self.received: Dict[str, List[Snapshot]] = {}

    def callback(self, name: str):
        def _on_snapshot(snapshot: Snapshot) -> None:
            self.received.setdefault(name, []).append(snapshot)
        return _on_snapshot

    def count(self, name: str) -> int:
        return len(self.received.get(name, []))


@pytest.fixture
def snapshot_sink() -> SnapshotSink:
    return SnapshotSink()


@pytest.fixture
def listener_factory():
    """Create MagicMock revocation listeners."""

    def factory() -> MagicMock:
        listener = MagicMock()
        listener.on_revoked = MagicMock()
        return listener

    return factory
