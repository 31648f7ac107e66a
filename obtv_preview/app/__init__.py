"""Command-line application: ``capture`` and ``serve``."""

from .main import build_parser, main
from .snapshot_writer import SnapshotWriter

__all__ = ["SnapshotWriter", "build_parser", "main"]
