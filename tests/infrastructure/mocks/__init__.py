"""Mock implementations for hardware-free testing."""

from .clock_mocks import VirtualClock
from .media_mocks import FakeConnectionFactory, FakeMediaConnection, make_frame
from .process_mocks import FakeProcess, FakeSpawner

__all__ = [
    "FakeConnectionFactory",
    "FakeMediaConnection",
    "FakeProcess",
    "FakeSpawner",
    "VirtualClock",
    "make_frame",
]
