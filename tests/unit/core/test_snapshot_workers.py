"""Unit tests for SnapshotWorkerPool.

Workers are spawned through a FakeSpawner, and the pool runs on a
VirtualClock so TTLs, backoff and grace periods elapse instantly.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from obtv_preview.core.snapshot_workers import SnapshotWorkerPool, restart_backoff
from tests.infrastructure.mocks import FakeSpawner


@pytest.fixture
def spawner() -> FakeSpawner:
    return FakeSpawner()


@pytest.fixture
def pool(tmp_path: Path, spawner, clock) -> SnapshotWorkerPool:
    return SnapshotWorkerPool(tmp_path / "snapshots", spawner=spawner, clock=clock)


HLS_URL = "http://media:8080/live/cam1.m3u8"


class TestRegistration:
    """Tests for register_stream / unregister_stream."""

    @pytest.mark.asyncio
    async def test_register_starts_worker(self, pool, spawner, tmp_path):
        assert await pool.register_stream("cam1", HLS_URL) is True

        assert pool.worker_ids() == ["cam1"]
        assert pool.active_worker_count() == 1
        cmd = spawner.commands[0]
        assert cmd[0] == "ffmpeg"
        assert cmd[cmd.index("-i") + 1] == HLS_URL
        assert cmd[cmd.index("-vf") + 1] == "fps=1/30,scale=320:-1"
        assert cmd[-1] == str(tmp_path / "snapshots" / "cam1.jpg")
        assert "-update" in cmd
        await pool.shutdown()

    @pytest.mark.asyncio
    async def test_reregister_extends_ttl(self, pool, spawner, clock):
        await pool.register_stream("cam1", HLS_URL)
        await clock.advance(60)

        assert await pool.register_stream("cam1", HLS_URL) is True

        assert len(spawner.calls) == 1
        assert pool.workers["cam1"].last_activity == pytest.approx(60)
        await pool.shutdown()

    @pytest.mark.asyncio
    async def test_whep_url_translated(self, pool, spawner):
        await pool.register_stream("cam1", "http://media:1985/rtc/v1/whep/?app=live&stream=cam1")

        cmd = spawner.commands[0]
        assert cmd[cmd.index("-i") + 1] == "http://media:1985/live/cam1.m3u8"
        await pool.shutdown()

    @pytest.mark.asyncio
    async def test_hls_base_fallback(self, tmp_path, spawner, clock):
        pool = SnapshotWorkerPool(
            tmp_path, hls_base="http://media:8080/", spawner=spawner, clock=clock
        )
        assert await pool.register_stream("cam2") is True

        cmd = spawner.commands[0]
        assert cmd[cmd.index("-i") + 1] == "http://media:8080/live/cam2.m3u8"
        await pool.shutdown()

    @pytest.mark.asyncio
    async def test_no_input_url_rejected(self, pool, spawner):
        assert await pool.register_stream("cam1") is False
        assert pool.worker_ids() == []
        assert spawner.calls == []

    @pytest.mark.asyncio
    async def test_ids_are_sanitized(self, pool):
        await pool.register_stream("../cam 1", HLS_URL)
        assert pool.worker_ids() == ["cam1"]
        assert pool.get_snapshot_path("../cam 1").name == "cam1.jpg"
        await pool.shutdown()

    @pytest.mark.asyncio
    async def test_empty_id_rejected(self, pool):
        assert await pool.register_stream("///", HLS_URL) is False

    @pytest.mark.asyncio
    async def test_unregister_terminates(self, pool, spawner, clock):
        await pool.register_stream("cam1", HLS_URL)
        process = spawner.processes[0]

        await pool.unregister_stream("cam1")
        await clock.advance(60)

        assert process.terminate_calls == 1
        assert pool.worker_ids() == []
        assert len(spawner.calls) == 1

    @pytest.mark.asyncio
    async def test_stubborn_process_killed_after_grace(self, tmp_path, clock):
        spawner = FakeSpawner(ignore_terminate=True)
        pool = SnapshotWorkerPool(tmp_path, spawner=spawner, clock=clock)
        await pool.register_stream("cam1", HLS_URL)
        process = spawner.processes[0]

        task = asyncio.ensure_future(pool.unregister_stream("cam1"))
        await clock.advance(4)
        assert process.kill_calls == 0

        await clock.advance(2)
        await task
        assert process.kill_calls == 1

    @pytest.mark.asyncio
    async def test_spawn_failure_leaves_worker_inactive(self, tmp_path, clock):
        spawner = FakeSpawner(error=FileNotFoundError("ffmpeg"))
        pool = SnapshotWorkerPool(tmp_path, spawner=spawner, clock=clock)

        await pool.register_stream("cam1", HLS_URL)

        assert pool.active_worker_count() == 0


class TestRestarts:
    """Tests for crash restarts with exponential backoff."""

    def test_backoff_schedule(self):
        assert [restart_backoff(n) for n in range(1, 8)] == [1, 2, 4, 8, 16, 30, 30]

    @pytest.mark.asyncio
    async def test_crashed_worker_restarts_after_backoff(self, pool, spawner, clock):
        await pool.register_stream("cam1", HLS_URL)
        spawner.processes[0].exit(1)
        await clock.settle()
        assert pool.active_worker_count() == 0

        await clock.advance(0.9)
        assert len(spawner.calls) == 1

        await clock.advance(0.2)
        assert len(spawner.calls) == 2
        assert pool.active_worker_count() == 1

        spawner.processes[1].exit(1)
        await clock.advance(1.5)
        assert len(spawner.calls) == 2
        await clock.advance(1)
        assert len(spawner.calls) == 3
        await pool.shutdown()

    @pytest.mark.asyncio
    async def test_stops_after_max_restarts(self, tmp_path, spawner, clock):
        pool = SnapshotWorkerPool(tmp_path, spawner=spawner, clock=clock, max_restarts=2)
        await pool.register_stream("cam1", HLS_URL)

        spawner.processes[0].exit(1)
        await clock.advance(2)
        spawner.processes[1].exit(1)
        await clock.advance(120)

        assert len(spawner.calls) == 2
        assert pool.active_worker_count() == 0

    @pytest.mark.asyncio
    async def test_error_lines_do_not_stop_worker(self, pool, spawner, clock):
        await pool.register_stream("cam1", HLS_URL)
        spawner.processes[0].stderr.push(b"Connection failed: timed out\n")
        await clock.settle()

        assert pool.active_worker_count() == 1
        await pool.shutdown()


class TestHealthCheck:
    """Tests for TTL expiry and stale snapshot detection."""

    @pytest.mark.asyncio
    async def test_idle_worker_expires(self, pool, spawner, clock):
        await pool.register_stream("cam1", HLS_URL)
        await clock.advance(121)

        expired = await pool.check_health()

        assert expired == ["cam1"]
        assert pool.worker_ids() == []
        assert spawner.processes[0].terminate_calls == 1

    @pytest.mark.asyncio
    async def test_fresh_worker_not_restarted(self, pool, spawner, clock):
        await pool.register_stream("cam1", HLS_URL)
        await clock.advance(30)

        assert await pool.check_health() == []
        assert len(spawner.calls) == 1
        await pool.shutdown()

    @pytest.mark.asyncio
    async def test_stale_worker_restarted(self, pool, spawner, clock):
        await pool.register_stream("cam1", HLS_URL)
        await clock.advance(91)
        pool.workers["cam1"].last_activity = clock.now()

        await pool.check_health()

        assert spawner.processes[0].terminate_calls == 1
        assert len(spawner.calls) == 2
        assert pool.workers["cam1"].restart_count == 1
        await pool.shutdown()

    @pytest.mark.asyncio
    async def test_recent_snapshot_keeps_worker(self, pool, spawner, clock):
        await pool.register_stream("cam1", HLS_URL)
        pool.get_snapshot_path("cam1").write_bytes(b"\xff\xd8" + b"\x00" * 200)
        await clock.advance(91)
        pool.workers["cam1"].last_activity = clock.now()

        await pool.check_health()

        assert len(spawner.calls) == 1
        assert pool.has_recent_snapshot("cam1")
        await pool.shutdown()

    @pytest.mark.asyncio
    async def test_health_loop_runs_periodically(self, pool, spawner, clock):
        await pool.register_stream("cam1", HLS_URL)
        pool.start()

        await clock.advance(151)

        assert pool.worker_ids() == []
        await pool.shutdown()

    def test_missing_snapshot_not_recent(self, pool):
        assert pool.has_recent_snapshot("nothing") is False
