"""
API Controller - business logic behind the snapshot API routes.

Wraps the snapshot worker pool, the stream catalog (stream id -> playback
URL) and, when the process also runs client-side previews, the
PreviewService.
"""

import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, Optional

from obtv_preview.core.logging_utils import get_module_logger
from obtv_preview.core.preview_service import PreviewService
from obtv_preview.core.snapshot_workers import SnapshotWorkerPool
from obtv_preview.core.stream_ids import sanitize_stream_id

SNAPSHOT_CACHE_BUCKET = 30


class APIController:
    """Thin facade used by the route handlers."""

    def __init__(
        self,
        pool: SnapshotWorkerPool,
        catalog: Dict[str, str],
        *,
        preview_service: Optional[PreviewService] = None,
    ):
        self.logger = get_module_logger("APIController")
        self.pool = pool
        self.catalog = dict(catalog)
        self.preview_service = preview_service
        self._started = time.monotonic()

    def health_check(self) -> dict:
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": round(time.monotonic() - self._started, 3),
            "snapshotWorkers": self.pool.active_worker_count(),
        }

    def preview_status(self) -> Optional[dict]:
        if self.preview_service is None:
            return None
        return self.preview_service.get_status()

    async def register_streams(self, stream_ids: Iterable[str]) -> dict:
        registered = []
        for stream_id in stream_ids:
            url = self.catalog.get(stream_id)
            if url is None:
                self.logger.debug("Unknown stream %s, not registering", stream_id)
                continue
            if await self.pool.register_stream(stream_id, url):
                registered.append(stream_id)

        return {
            "registered": len(registered),
            "streamIds": registered,
            "activeWorkers": self.pool.active_worker_count(),
        }

    def snapshot_redirect_url(self, stream_id: str) -> Optional[str]:
        """Cache-busted URL of the stream's snapshot, or None if none exists."""
        if not self.pool.get_snapshot_path(stream_id).exists():
            return None
        bucket = int(time.time() // SNAPSHOT_CACHE_BUCKET)
        return f"/snapshots/{sanitize_stream_id(stream_id)}.jpg?t={bucket}"

    def snapshot_file(self, name: str) -> Optional[Path]:
        stem = name[:-4] if name.endswith(".jpg") else name
        sanitized = sanitize_stream_id(stem)
        if not sanitized or sanitized != stem:
            return None
        path = self.pool.get_snapshot_path(sanitized)
        return path if path.is_file() else None
