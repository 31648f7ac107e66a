"""ffmpeg-backed media connection.

ffmpeg pulls the stream (HLS, FLV, RTMP, ...) and re-emits it as an MJPEG
byte stream on stdout. Frames are split on JPEG start/end markers, decoded
with OpenCV and handed to the attached sink.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Optional, Sequence

import cv2
import numpy as np

from .asyncio_utils import create_logged_task
from .logging_utils import get_module_logger
from .media import ConnectionFactory, ConnectionOpenError, FrameSink, MediaConnection
from .stream_ids import is_whep_url, whep_to_hls_url

JPEG_SOI = b"\xff\xd8"
JPEG_EOI = b"\xff\xd9"
READ_CHUNK_SIZE = 64 * 1024
# Drop the buffer if ffmpeg emits garbage without frame markers
MAX_BUFFER_BYTES = 8 * 1024 * 1024

FFMPEG_BINARY = "ffmpeg"


def build_ffmpeg_args(url: str, *, fps: float = 2.0, width: Optional[int] = None) -> list[str]:
    video_filter = f"fps={fps}"
    if width:
        video_filter += f",scale={width}:-2"
    return [
        "-hide_banner",
        "-loglevel", "error",
        "-i", url,
        "-an",
        "-vf", video_filter,
        "-f", "image2pipe",
        "-vcodec", "mjpeg",
        "-q:v", "5",
        "pipe:1",
    ]


def extract_jpeg_frames(buffer: bytearray) -> list[bytes]:
    """Pop every complete JPEG image from the front of ``buffer``."""
    frames: list[bytes] = []
    while True:
        start = buffer.find(JPEG_SOI)
        if start < 0:
            # keep a trailing 0xff, it may open a marker split across reads
            tail = buffer[-1:] if buffer.endswith(b"\xff") else b""
            buffer[:] = tail
            break
        end = buffer.find(JPEG_EOI, start + 2)
        if end < 0:
            if start > 0:
                del buffer[:start]
            break
        frames.append(bytes(buffer[start:end + 2]))
        del buffer[:end + 2]
    return frames


class FfmpegMediaConnection(MediaConnection):
    """Decode session running in an ffmpeg subprocess."""

    def __init__(
        self,
        *,
        binary: str = FFMPEG_BINARY,
        fps: float = 2.0,
        width: Optional[int] = None,
        extra_args: Sequence[str] = (),
    ):
        self.logger = get_module_logger("FfmpegConnection")
        self._binary = binary
        self._fps = fps
        self._width = width
        self._extra_args = list(extra_args)

        self.process: Optional[asyncio.subprocess.Process] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._sink: Optional[FrameSink] = None
        self._closed = False
        self.url: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.process is not None and not self._closed

    def attach_frame_sink(self, sink: Optional[FrameSink]) -> None:
        self._sink = sink

    async def open(self, url: str) -> "FfmpegMediaConnection":
        if self._closed:
            raise ConnectionOpenError("connection already closed")
        if self.process is not None:
            return self

        cmd = [self._binary, *self._extra_args, *build_ffmpeg_args(url, fps=self._fps, width=self._width)]
        try:
            self.process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (FileNotFoundError, PermissionError) as exc:
            raise ConnectionOpenError(f"cannot start {self._binary}: {exc}") from exc

        if self._closed:
            # close() raced with process startup
            self._kill()
            raise ConnectionOpenError("connection closed while opening")

        self.url = url
        self.logger.debug("ffmpeg started for %s (pid %d)", url, self.process.pid)
        self._reader_task = create_logged_task(
            self._stdout_reader(), logger=self.logger, context=f"ffmpeg-reader:{self.process.pid}"
        )
        return self

    async def _stdout_reader(self) -> None:
        process = self.process
        if process is None or process.stdout is None:
            return
        buffer = bytearray()
        while True:
            chunk = await process.stdout.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            buffer.extend(chunk)
            for payload in extract_jpeg_frames(buffer):
                self._dispatch(payload)
            if len(buffer) > MAX_BUFFER_BYTES:
                self.logger.warning("Discarding %d undecodable bytes", len(buffer))
                buffer.clear()

        returncode = await process.wait()
        if self._closed:
            return
        detail = ""
        if returncode:
            stderr = b""
            if process.stderr is not None:
                stderr = await process.stderr.read()
            detail = stderr.decode(errors="replace").strip()
            self.logger.warning(
                "ffmpeg exited with code %s for %s: %s", returncode, self.url, detail
            )
        message = f"ffmpeg stream ended with exit code {returncode}"
        if detail:
            message = f"{message}: {detail}"
        self._report_error(ConnectionOpenError(message))

    def _dispatch(self, payload: bytes) -> None:
        sink = self._sink
        if sink is None:
            return
        frame = cv2.imdecode(np.frombuffer(payload, dtype=np.uint8), cv2.IMREAD_COLOR)
        if frame is None:
            self.logger.debug("Skipping undecodable frame (%d bytes)", len(payload))
            return
        sink(frame)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._sink = None
        self._error_sink = None
        if self._reader_task is not None and not self._reader_task.done():
            self._reader_task.cancel()
        self._reader_task = None
        self._kill()

    def _kill(self) -> None:
        if self.process is None or self.process.returncode is not None:
            return
        with contextlib.suppress(ProcessLookupError):
            self.process.kill()
        # Reap the child so it does not linger as a zombie.
        with contextlib.suppress(RuntimeError):
            create_logged_task(self.process.wait(), logger=self.logger, context="ffmpeg-reap")


class _BoundFfmpegConnection(FfmpegMediaConnection):
    """ffmpeg connection that always opens its translated URL."""

    def __init__(self, resolved_url: str, **kwargs):
        super().__init__(**kwargs)
        self._resolved_url = resolved_url

    async def open(self, url: str) -> "FfmpegMediaConnection":
        return await super().open(self._resolved_url)


def resolve_playback_url(url: str) -> str:
    """WHEP playback cannot be pulled by ffmpeg; use the server's HLS output."""
    if not is_whep_url(url):
        return url
    hls_url = whep_to_hls_url(url, "")
    if hls_url is None:
        raise ValueError(f"cannot derive HLS URL from {url}")
    return hls_url


def make_ffmpeg_connection_factory(
    *,
    width: Optional[int] = None,
    fps: float = 2.0,
    binary: str = FFMPEG_BINARY,
) -> ConnectionFactory:
    def factory(url: str) -> MediaConnection:
        return _BoundFfmpegConnection(resolve_playback_url(url), binary=binary, fps=fps, width=width)

    return factory


def default_connection_factory(url: str) -> MediaConnection:
    """Full-size ffmpeg connection at the default frame rate."""
    return _BoundFfmpegConnection(resolve_playback_url(url))


__all__ = [
    "FfmpegMediaConnection",
    "build_ffmpeg_args",
    "default_connection_factory",
    "extract_jpeg_frames",
    "make_ffmpeg_connection_factory",
    "resolve_playback_url",
]
