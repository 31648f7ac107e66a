"""
Snapshot Worker Pool - server-side snapshot generation.

Instead of each browser opening decode sessions, the server keeps one
long-lived ffmpeg process per registered stream that rewrites
``<stream>.jpg`` every snapshot interval. Clients keep workers alive by
re-registering; idle workers expire after a TTL.

Worker lifecycle:
1. register_stream() creates the worker and spawns ffmpeg
2. ffmpeg exits -> restart with exponential backoff while restarts remain
3. health check -> expire idle workers, restart workers with stale images
4. unregister_stream() / shutdown() -> terminate, then kill after a grace period
"""

import asyncio
import contextlib
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional

from obtv_preview.core.asyncio_utils import cancel_task, create_logged_task
from obtv_preview.core.clock import Clock, MonotonicClock
from obtv_preview.core.logging_utils import get_module_logger
from obtv_preview.core.stream_ids import is_whep_url, sanitize_stream_id, whep_to_hls_url

ProcessSpawner = Callable[..., Awaitable[asyncio.subprocess.Process]]

MAX_RESTART_COUNT = 5
WORKER_TTL = 120.0
HEALTH_CHECK_INTERVAL = 30.0
STALE_SNAPSHOT_AGE = 90.0
MAX_BACKOFF = 30.0
STOP_GRACE_PERIOD = 5.0


@dataclass
class StreamWorker:
    stream_id: str
    stream_url: Optional[str]
    last_activity: float
    process: Optional[asyncio.subprocess.Process] = None
    restart_count: int = 0
    is_active: bool = False
    started_at: float = 0.0
    monitor_task: Optional[asyncio.Task] = None
    restart_task: Optional[asyncio.Task] = None


def restart_backoff(restart_count: int) -> float:
    """Seconds to wait before restart attempt ``restart_count + 1``."""
    return min(1.0 * 2 ** max(restart_count - 1, 0), MAX_BACKOFF)


class SnapshotWorkerPool:
    """Keeps one ffmpeg snapshot worker per registered stream."""

    def __init__(
        self,
        snapshot_dir: Path,
        *,
        hls_base: str = "",
        force_https: bool = False,
        snapshot_interval: float = 30.0,
        snapshot_width: int = 320,
        worker_ttl: float = WORKER_TTL,
        health_check_interval: float = HEALTH_CHECK_INTERVAL,
        max_restarts: int = MAX_RESTART_COUNT,
        ffmpeg_binary: str = "ffmpeg",
        spawner: Optional[ProcessSpawner] = None,
        clock: Optional[Clock] = None,
    ):
        self.logger = get_module_logger("SnapshotWorkerPool")
        self.snapshot_dir = Path(snapshot_dir)
        self.snapshot_dir.mkdir(parents=True, exist_ok=True)
        self._hls_base = hls_base.rstrip("/")
        self._force_https = force_https
        self._snapshot_interval = snapshot_interval
        self._snapshot_width = snapshot_width
        self._worker_ttl = worker_ttl
        self._health_check_interval = health_check_interval
        self._max_restarts = max_restarts
        self._ffmpeg_binary = ffmpeg_binary
        self._spawn = spawner or asyncio.create_subprocess_exec
        self._clock = clock or MonotonicClock()

        self.workers: Dict[str, StreamWorker] = {}
        self._health_task: Optional[asyncio.Task] = None
        self._pending: set[asyncio.Task] = set()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Start the periodic health check."""
        if self._health_task is not None and not self._health_task.done():
            return
        self._health_task = create_logged_task(
            self._health_loop(), logger=self.logger, context="snapshot-health-check"
        )
        self.logger.info("Snapshot worker pool started: %s", self.snapshot_dir)

    async def shutdown(self) -> None:
        self.logger.info("Shutting down...")
        await cancel_task(self._health_task)
        self._health_task = None

        workers = list(self.workers.values())
        self.workers.clear()
        await asyncio.gather(*(self._stop_worker(w) for w in workers), return_exceptions=True)
        for task in list(self._pending):
            task.cancel()
        await asyncio.gather(*self._pending, return_exceptions=True)
        self.logger.info("Shutdown complete")

    # =========================================================================
    # Registration
    # =========================================================================

    async def register_stream(self, stream_id: str, stream_url: Optional[str] = None) -> bool:
        """Register (or keep alive) a stream. Returns False if it cannot be served."""
        sanitized = sanitize_stream_id(stream_id)
        if not sanitized:
            self.logger.warning("Rejecting empty stream id %r", stream_id)
            return False

        existing = self.workers.get(sanitized)
        if existing is not None:
            existing.last_activity = self._clock.now()
            self.logger.debug("Extended TTL for %s", sanitized)
            return True

        if self._input_url(sanitized, stream_url) is None:
            self.logger.info("Skipping worker for %s - no valid stream URL", sanitized)
            return False

        worker = StreamWorker(
            stream_id=sanitized,
            stream_url=stream_url,
            last_activity=self._clock.now(),
        )
        self.workers[sanitized] = worker
        await self._start_worker(worker)
        self.logger.info("Registered new stream %s", sanitized)
        return True

    async def unregister_stream(self, stream_id: str) -> None:
        sanitized = sanitize_stream_id(stream_id)
        worker = self.workers.pop(sanitized, None)
        if worker is not None:
            await self._stop_worker(worker)
            self.logger.info("Unregistered stream %s", sanitized)

    def get_snapshot_path(self, stream_id: str) -> Path:
        return self.snapshot_dir / f"{sanitize_stream_id(stream_id)}.jpg"

    def has_recent_snapshot(self, stream_id: str, max_age: float = 60.0) -> bool:
        path = self.get_snapshot_path(stream_id)
        try:
            age = time.time() - path.stat().st_mtime
        except FileNotFoundError:
            return False
        except OSError as e:
            self.logger.error("Error checking snapshot %s: %s", stream_id, e)
            return False
        return age < max_age

    def active_worker_count(self) -> int:
        return sum(1 for w in self.workers.values() if w.is_active)

    def worker_ids(self) -> List[str]:
        return list(self.workers)

    # =========================================================================
    # Worker processes
    # =========================================================================

    def _input_url(self, stream_id: str, stream_url: Optional[str]) -> Optional[str]:
        if stream_url and is_whep_url(stream_url):
            return whep_to_hls_url(stream_url, stream_id, force_https=self._force_https)
        if stream_url:
            return stream_url
        if self._hls_base:
            return f"{self._hls_base}/live/{stream_id}.m3u8"
        return None

    def build_command(self, input_url: str, output_path: Path) -> List[str]:
        return [
            self._ffmpeg_binary,
            "-hide_banner",
            "-loglevel", "error",
            "-reconnect", "1",
            "-reconnect_streamed", "1",
            "-reconnect_on_network_error", "1",
            "-i", input_url,
            "-vf", f"fps=1/{self._snapshot_interval:g},scale={self._snapshot_width}:-1",
            "-q:v", "5",
            "-f", "image2",
            "-update", "1",
            "-y",
            str(output_path),
        ]

    async def _start_worker(self, worker: StreamWorker) -> None:
        if worker.process is not None or worker.restart_count >= self._max_restarts:
            return

        input_url = self._input_url(worker.stream_id, worker.stream_url)
        if input_url is None:
            self.logger.info("Skipping worker for %s - no valid stream URL", worker.stream_id)
            return

        output_path = self.get_snapshot_path(worker.stream_id)
        cmd = self.build_command(input_url, output_path)
        self.logger.info("Starting worker for %s (input %s)", worker.stream_id, input_url)

        try:
            process = await self._spawn(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            self.logger.error("Failed to start worker for %s: %s", worker.stream_id, e)
            worker.process = None
            worker.is_active = False
            return

        worker.process = process
        worker.is_active = True
        worker.started_at = self._clock.now()
        worker.restart_count += 1
        worker.monitor_task = create_logged_task(
            self._monitor_worker(worker, process),
            logger=self.logger,
            context=f"snapshot-worker:{worker.stream_id}",
            pending=self._pending,
        )

    async def _monitor_worker(self, worker: StreamWorker, process: asyncio.subprocess.Process) -> None:
        stderr_lines: List[str] = []
        if process.stderr is not None:
            async for raw in process.stderr:
                message = raw.decode(errors="replace").strip()
                if "error" in message.lower() or "failed" in message.lower():
                    stderr_lines.append(message)
                    self.logger.error("[%s] %s", worker.stream_id, message)

        code = await process.wait()
        if worker.process is not process:
            # Stopped or replaced on purpose
            return

        self.logger.info("Worker %s exited with code %s", worker.stream_id, code)
        worker.process = None
        worker.is_active = False

        if worker.restart_count < self._max_restarts:
            backoff = restart_backoff(worker.restart_count)
            self.logger.info(
                "Restarting %s in %.1fs (attempt %d)",
                worker.stream_id, backoff, worker.restart_count + 1,
            )
            worker.restart_task = create_logged_task(
                self._restart_later(worker, backoff),
                logger=self.logger,
                context=f"snapshot-restart:{worker.stream_id}",
                pending=self._pending,
            )
        else:
            self.logger.error("Max restart attempts exceeded for %s", worker.stream_id)

    async def _restart_later(self, worker: StreamWorker, delay: float) -> None:
        await self._clock.sleep(delay)
        if self.workers.get(worker.stream_id) is worker:
            await self._start_worker(worker)

    async def _stop_worker(self, worker: StreamWorker) -> None:
        if worker.restart_task is not None:
            worker.restart_task.cancel()
            worker.restart_task = None

        process, worker.process = worker.process, None
        worker.is_active = False
        if process is None or process.returncode is not None:
            return

        self.logger.info("Stopping worker for %s", worker.stream_id)
        with contextlib.suppress(ProcessLookupError):
            process.terminate()
        try:
            await self._clock.wait_for(process.wait(), STOP_GRACE_PERIOD)
        except asyncio.TimeoutError:
            self.logger.warning("Worker %s did not terminate, killing...", worker.stream_id)
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()

    # =========================================================================
    # Health check
    # =========================================================================

    async def _health_loop(self) -> None:
        while True:
            await self._clock.sleep(self._health_check_interval)
            await self.check_health()

    async def check_health(self) -> List[str]:
        """Expire idle workers and restart stale ones. Returns expired ids."""
        now = self._clock.now()
        expired: List[str] = []

        for stream_id, worker in list(self.workers.items()):
            if now - worker.last_activity > self._worker_ttl:
                expired.append(stream_id)
                continue

            # A fresh worker has not written its first image yet
            warmed_up = now - worker.started_at > STALE_SNAPSHOT_AGE
            if worker.is_active and warmed_up and not self.has_recent_snapshot(stream_id, STALE_SNAPSHOT_AGE):
                self.logger.warning("No recent snapshot for %s, restarting worker", stream_id)
                await self._stop_worker(worker)
                worker.restart_count = 0
                await self._start_worker(worker)

        for stream_id in expired:
            self.logger.info("TTL expired for %s", stream_id)
            worker = self.workers.pop(stream_id, None)
            if worker is not None:
                await self._stop_worker(worker)

        if expired or self.workers:
            self.logger.info("Health check complete. Active workers: %d", len(self.workers))
        return expired


__all__ = ["SnapshotWorkerPool", "StreamWorker", "restart_backoff"]
