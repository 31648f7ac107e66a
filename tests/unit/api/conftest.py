"""Pytest fixtures for API unit tests.

Provides a mock worker pool and aiohttp app factory so the HTTP routes can be
tested without spawning ffmpeg.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Coroutine, Dict, List, Optional, TypeVar

import pytest
from aiohttp import web

from obtv_preview.api.controller import APIController
from obtv_preview.api.server import APIServer
from obtv_preview.core.stream_ids import sanitize_stream_id


T = TypeVar("T")

CATALOG = {
    "cam1": "http://media:8080/live/cam1.m3u8",
    "cam2": "http://media:1985/rtc/v1/whep/?app=live&stream=cam2",
}


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Run an async coroutine synchronously for testing."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


class MockWorkerPool:
    """Mock SnapshotWorkerPool backed by a snapshot directory."""

    def __init__(self, snapshot_dir: Path):
        self.snapshot_dir = snapshot_dir
        self.snapshot_dir.mkdir(parents=True, exist_ok=True)
        self.registered: List[tuple] = []
        self.fail_health = False

    async def register_stream(self, stream_id: str, stream_url: Optional[str] = None) -> bool:
        self.registered.append((stream_id, stream_url))
        return True

    def active_worker_count(self) -> int:
        if self.fail_health:
            raise RuntimeError("pool exploded")
        return len({sid for sid, _ in self.registered})

    def get_snapshot_path(self, stream_id: str) -> Path:
        return self.snapshot_dir / f"{sanitize_stream_id(stream_id)}.jpg"

    def write_snapshot(self, stream_id: str, payload: bytes = b"\xff\xd8" + b"\x00" * 256 + b"\xff\xd9") -> Path:
        path = self.get_snapshot_path(stream_id)
        path.write_bytes(payload)
        return path


def create_test_app(controller: APIController) -> web.Application:
    """Create a test aiohttp application with middleware and all routes."""
    return APIServer(controller).create_app()


@pytest.fixture
def mock_pool(tmp_path: Path) -> MockWorkerPool:
    return MockWorkerPool(tmp_path / "snapshots")


@pytest.fixture
def api_controller(mock_pool: MockWorkerPool) -> APIController:
    return APIController(mock_pool, CATALOG)


@pytest.fixture
def catalog() -> Dict[str, str]:
    return dict(CATALOG)
