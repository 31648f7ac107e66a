"""Media connection capability consumed by the preview core.

The core only opens, closes and receives frames from a connection. Which
transport is used for a URL (WebRTC, HLS, FLV, ffmpeg) is decided by the
:data:`ConnectionFactory` supplied at the application edge.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Callable, Optional

import numpy as np

Frame = np.ndarray
FrameSink = Callable[[Frame], None]
ErrorSink = Callable[[BaseException], None]


class CaptureError(Exception):
    """A snapshot capture attempt failed."""


class ConnectionOpenError(CaptureError):
    """The media connection could not be opened."""


class EmptyFrameError(CaptureError):
    """A decoded frame had no pixels."""


def frame_has_pixels(frame: Optional[Frame]) -> bool:
    return (
        frame is not None
        and getattr(frame, "ndim", 0) >= 2
        and frame.shape[0] > 0
        and frame.shape[1] > 0
    )


class MediaConnection(ABC):
    """One live decode session.

    ``close()`` is synchronous and idempotent so that suspension can tear a
    connection down without yielding to the event loop.
    """

    _error_sink: Optional[ErrorSink] = None

    @abstractmethod
    async def open(self, url: str) -> "MediaConnection":
        """Start the session for ``url``. Raises on failure."""

    @abstractmethod
    def attach_frame_sink(self, sink: Optional[FrameSink]) -> None:
        """Route decoded frames to ``sink`` (None detaches)."""

    @abstractmethod
    def close(self) -> None:
        """Release the session."""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        ...

    def attach_error_sink(self, sink: Optional[ErrorSink]) -> None:
        """Route a connection that dies before or while streaming to ``sink``."""
        self._error_sink = sink

    def _report_error(self, exc: BaseException) -> None:
        sink = self._error_sink
        if sink is not None:
            sink(exc)


ConnectionFactory = Callable[[str], MediaConnection]


class FirstFrameSink:
    """Frame sink that resolves with the first frame that has pixels.

    Frames reporting zero width or height are ignored, matching a video
    element whose dimensions are not known yet.
    """

    def __init__(self) -> None:
        self._future: asyncio.Future[Frame] = asyncio.get_running_loop().create_future()

    def __call__(self, frame: Frame) -> None:
        if self._future.done() or not frame_has_pixels(frame):
            return
        self._future.set_result(frame)

    def fail(self, exc: BaseException) -> None:
        if not self._future.done():
            self._future.set_exception(exc)

    async def wait(self) -> Frame:
        return await self._future


__all__ = [
    "CaptureError",
    "ConnectionFactory",
    "ConnectionOpenError",
    "EmptyFrameError",
    "ErrorSink",
    "FirstFrameSink",
    "Frame",
    "FrameSink",
    "MediaConnection",
    "frame_has_pixels",
]
