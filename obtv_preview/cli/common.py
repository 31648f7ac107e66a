from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
from pathlib import Path
from typing import Any, Optional, Tuple

from obtv_preview.core.logging_config import configure_logging
from obtv_preview.core.logging_utils import get_module_logger


LOG_LEVELS: dict[str, int] = {
    "critical": logging.CRITICAL,
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


def add_common_cli_arguments(
    parser: argparse.ArgumentParser,
    *,
    include_config: bool = True,
    include_console_control: bool = True,
    default_console_output: bool = True,
) -> None:
    parser.add_argument(
        "--log-level",
        choices=sorted(LOG_LEVELS.keys()),
        default="info",
        help="Logging verbosity",
    )

    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Optional path to write logs (rotated)",
    )

    if include_config:
        parser.add_argument(
            "--config",
            type=Path,
            default=None,
            help="Optional key = value file overriding the device defaults",
        )

    parser.add_argument(
        "--user-agent",
        type=str,
        default=None,
        help="User agent used to classify the device (default: $OBTV_USER_AGENT)",
    )

    parser.add_argument(
        "--stream",
        dest="streams",
        metavar="ID=URL",
        type=parse_stream_spec,
        action="append",
        default=[],
        help="Stream to preview; repeat for several streams",
    )

    if include_console_control:
        console_group = parser.add_mutually_exclusive_group()
        console_group.add_argument(
            "--console",
            dest="console_output",
            action="store_true",
            default=default_console_output,
            help="Log to console (default)",
        )
        console_group.add_argument(
            "--no-console",
            dest="console_output",
            action="store_false",
            help="No console output (use with --log-file)",
        )


def parse_stream_spec(value: str) -> Tuple[str, str]:
    stream_id, sep, url = value.partition("=")
    stream_id, url = stream_id.strip(), url.strip()
    if not sep or not stream_id or not url:
        raise argparse.ArgumentTypeError(f"Stream must be given as ID=URL, got '{value}'")
    return stream_id, url


def _positive_number(value: str, typ: type, name: str):
    """Generic positive number validator for argparse."""
    try:
        parsed = typ(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Value must be a {name}") from exc
    if parsed <= 0:
        raise argparse.ArgumentTypeError("Value must be positive")
    return parsed

def positive_int(value: str) -> int:
    return _positive_number(value, int, "integer")

def positive_float(value: str) -> float:
    return _positive_number(value, float, "number")


def setup_cli_logging(args: Any, name: str = "obtv_preview"):
    configure_logging(
        args.log_level,
        force=True,
        console=getattr(args, "console_output", True),
        log_file=getattr(args, "log_file", None),
    )
    return get_module_logger(name)


def install_signal_handlers(
    stop_event: asyncio.Event,
    logger: Any,
    loop: Optional[asyncio.AbstractEventLoop] = None,
) -> None:
    loop = loop or asyncio.get_running_loop()

    def _request_stop(sig: signal.Signals) -> None:
        logger.info("Received %s, shutting down", sig.name)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        # add_signal_handler is unavailable on Windows event loops
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, _request_stop, sig)
