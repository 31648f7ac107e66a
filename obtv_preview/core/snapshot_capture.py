"""Single still-frame capture from a short-lived media connection."""

from __future__ import annotations

import asyncio
import base64
from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np

from .clock import Clock, MonotonicClock
from .logging_utils import LoggerLike, ensure_structured_logger
from .media import (
    CaptureError,
    ConnectionFactory,
    ConnectionOpenError,
    EmptyFrameError,
    FirstFrameSink,
    Frame,
    MediaConnection,
    frame_has_pixels,
)

MIN_IMAGE_BYTES = 100


@dataclass(frozen=True)
class Snapshot:
    """One encoded still image for a stream."""

    stream_id: str
    image: bytes
    width: int
    height: int
    captured_at: float
    content_type: str = "image/jpeg"

    @property
    def data_url(self) -> str:
        encoded = base64.b64encode(self.image).decode("ascii")
        return f"data:{self.content_type};base64,{encoded}"


def encode_frame(frame: Frame, *, max_width: int, quality: int) -> tuple[bytes, int, int]:
    """Downscale ``frame`` to ``max_width`` and JPEG-encode it.

    Returns ``(jpeg_bytes, width, height)`` of the encoded image.
    """
    if not frame_has_pixels(frame):
        raise EmptyFrameError("frame has zero width or height")

    image = frame if frame.dtype == np.uint8 else frame.astype(np.uint8)
    height, width = image.shape[:2]
    if width > max_width:
        scaled_height = max(1, round(height * max_width / width))
        image = cv2.resize(image, (max_width, scaled_height), interpolation=cv2.INTER_AREA)
        height, width = image.shape[:2]

    ok, buffer = cv2.imencode(".jpg", image, [cv2.IMWRITE_JPEG_QUALITY, quality])
    if not ok:
        raise CaptureError("JPEG encoding failed")
    payload = buffer.tobytes()
    if len(payload) < MIN_IMAGE_BYTES:
        raise CaptureError(f"captured image data too small ({len(payload)} bytes)")
    return payload, width, height


class SnapshotCapturer:
    """Opens a connection, grabs its first frame and closes it again.

    Only one capture runs at a time per capturer; the scheduler drives it
    sequentially. Capture failures never propagate: they are logged and
    reported as ``None``.
    """

    def __init__(
        self,
        connection_factory: ConnectionFactory,
        *,
        clock: Optional[Clock] = None,
        timeout: float = 10.0,
        max_width: int = 320,
        jpeg_quality: int = 80,
        logger: LoggerLike = None,
    ) -> None:
        self._connection_factory = connection_factory
        self._clock = clock or MonotonicClock()
        self._timeout = timeout
        self._max_width = max_width
        self._jpeg_quality = jpeg_quality
        self.logger = ensure_structured_logger(logger, fallback_name="SnapshotCapturer")
        self._active: Optional[MediaConnection] = None

    @property
    def is_capturing(self) -> bool:
        return self._active is not None

    async def capture(self, stream_id: str, source_url: str) -> Optional[Snapshot]:
        try:
            connection = self._connection_factory(source_url)
        except Exception as exc:
            self.logger.warning("No media connection for %s: %s", stream_id, exc)
            return None

        self._active = connection
        try:
            frame = await self._clock.wait_for(
                self._first_frame(connection, source_url), self._timeout
            )
            image, width, height = encode_frame(
                frame, max_width=self._max_width, quality=self._jpeg_quality
            )
        except asyncio.TimeoutError:
            self.logger.warning(
                "Snapshot timeout for %s after %.1fs", stream_id, self._timeout
            )
            return None
        except CaptureError as exc:
            self.logger.warning("Failed to capture snapshot for %s: %s", stream_id, exc)
            return None
        except (OSError, ValueError, RuntimeError, cv2.error) as exc:
            self.logger.warning("Snapshot error for %s: %s", stream_id, exc)
            return None
        finally:
            if self._active is connection:
                self._release(connection)

        self.logger.debug("Captured snapshot for %s (%dx%d)", stream_id, width, height)
        return Snapshot(
            stream_id=stream_id,
            image=image,
            width=width,
            height=height,
            captured_at=self._clock.now(),
        )

    async def _first_frame(self, connection: MediaConnection, source_url: str) -> Frame:
        sink = FirstFrameSink()
        connection.attach_frame_sink(sink)
        connection.attach_error_sink(sink.fail)
        try:
            await connection.open(source_url)
        except CaptureError:
            raise
        except (OSError, ValueError, RuntimeError) as exc:
            raise ConnectionOpenError(str(exc)) from exc
        return await sink.wait()

    def abort_active(self) -> bool:
        """Force-close the in-flight connection, if any."""
        connection = self._active
        if connection is None:
            return False
        self.logger.info("Aborting in-flight snapshot connection")
        self._release(connection)
        return True

    def _release(self, connection: MediaConnection) -> None:
        self._active = None
        try:
            connection.attach_frame_sink(None)
            connection.attach_error_sink(None)
            connection.close()
        except Exception as exc:
            self.logger.warning("Error closing snapshot connection: %s", exc)


__all__ = ["Snapshot", "SnapshotCapturer", "encode_frame", "MIN_IMAGE_BYTES"]
