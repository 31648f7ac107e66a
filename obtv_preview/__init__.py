"""Live preview orchestration: bounded live slots and sequential snapshots."""

from __future__ import annotations

import asyncio
from importlib import metadata
from typing import Optional, Sequence

from .app.main import main
from .core import __version__ as _core_version

try:
    __version__ = metadata.version("obtv-preview")
except metadata.PackageNotFoundError:  # pragma: no cover - local dev
    __version__ = _core_version


def run(argv: Optional[Sequence[str]] = None) -> int:
    """Convenience wrapper that runs the async entry point."""
    return asyncio.run(main(list(argv) if argv is not None else None))


__all__ = ["__version__", "main", "run"]
