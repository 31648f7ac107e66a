"""Persist delivered snapshots to disk for the ``capture`` command."""

import asyncio
from pathlib import Path
from typing import Dict, Optional

import aiofiles
import aiofiles.os

from obtv_preview.core.asyncio_utils import create_logged_task
from obtv_preview.core.logging_utils import LoggerLike, ensure_structured_logger
from obtv_preview.core.snapshot_capture import Snapshot
from obtv_preview.core.stream_ids import sanitize_stream_id


class SnapshotWriter:
    """Writes each stream's latest snapshot to ``<output_dir>/<id>.jpg``.

    Scheduler callbacks are synchronous, so ``on_snapshot`` only schedules the
    write; ``flush()`` waits for everything scheduled so far.
    """

    def __init__(self, output_dir: Path, *, logger: LoggerLike = None):
        self.logger = ensure_structured_logger(logger, fallback_name="SnapshotWriter")
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.written: Dict[str, int] = {}
        self._pending: set[asyncio.Task] = set()

    def path_for(self, stream_id: str) -> Path:
        return self.output_dir / f"{sanitize_stream_id(stream_id)}.jpg"

    def on_snapshot(self, snapshot: Snapshot) -> None:
        create_logged_task(
            self.write(snapshot),
            logger=self.logger,
            context=f"snapshot-write:{snapshot.stream_id}",
            pending=self._pending,
        )

    async def write(self, snapshot: Snapshot) -> Optional[Path]:
        target = self.path_for(snapshot.stream_id)
        partial = target.with_suffix(".jpg.part")
        try:
            async with aiofiles.open(partial, "wb") as f:
                await f.write(snapshot.image)
            await aiofiles.os.replace(partial, target)
        except OSError as e:
            self.logger.error("Failed to write snapshot %s: %s", target, e)
            return None

        self.written[snapshot.stream_id] = self.written.get(snapshot.stream_id, 0) + 1
        self.logger.info(
            "Wrote %s (%dx%d, %d bytes)", target.name, snapshot.width, snapshot.height, len(snapshot.image)
        )
        return target

    async def flush(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
