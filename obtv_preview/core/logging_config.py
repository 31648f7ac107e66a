"""Root logging setup for the capture and serve commands."""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterable, List, Optional, Union

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

LOG_FILE_MAX_BYTES = 1024 * 1024
LOG_FILE_BACKUPS = 3

# aiohttp.access repeats what the request logging middleware already records
NOISY_LOGGERS = ("aiohttp.access", "asyncio")

_installed: List[logging.Handler] = []


def _level_from(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.strip().upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level '{level}'")
    return value


def _build_handlers(
    console: bool,
    log_file: Optional[Union[str, Path]],
    max_bytes: int,
    backup_count: int,
) -> List[logging.Handler]:
    handlers: List[logging.Handler] = []
    if console:
        handlers.append(logging.StreamHandler(sys.stdout))
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
        )
    return handlers


def configure_logging(
    level: Union[int, str] = logging.INFO,
    *,
    force: bool = False,
    console: bool = True,
    log_file: Optional[Union[str, Path]] = None,
    max_bytes: int = LOG_FILE_MAX_BYTES,
    backup_count: int = LOG_FILE_BACKUPS,
    quiet: Iterable[str] = NOISY_LOGGERS,
) -> None:
    """Install stdout and rotating-file handlers on the root logger.

    Calling again without ``force`` only adjusts the level; handlers are
    rebuilt when ``force`` is set. Loggers named in ``quiet`` are raised to
    ERROR either way.
    """

    numeric_level = _level_from(level)
    root = logging.getLogger()
    root.setLevel(numeric_level)

    if not _installed or force:
        for handler in _installed:
            root.removeHandler(handler)
            handler.close()
        _installed.clear()

        formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)
        for handler in _build_handlers(console, log_file, max_bytes, backup_count):
            handler.setFormatter(formatter)
            root.addHandler(handler)
            _installed.append(handler)

    for handler in _installed:
        handler.setLevel(numeric_level)
    for name in quiet:
        logging.getLogger(name).setLevel(logging.ERROR)


__all__ = ["LOG_DATEFMT", "LOG_FORMAT", "NOISY_LOGGERS", "configure_logging"]
