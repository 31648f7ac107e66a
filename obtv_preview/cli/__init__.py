"""Shared command-line helpers."""

from .common import (
    LOG_LEVELS,
    add_common_cli_arguments,
    install_signal_handlers,
    parse_stream_spec,
    positive_float,
    positive_int,
    setup_cli_logging,
)

__all__ = [
    "LOG_LEVELS",
    "add_common_cli_arguments",
    "install_signal_handlers",
    "parse_stream_spec",
    "positive_float",
    "positive_int",
    "setup_cli_logging",
]
