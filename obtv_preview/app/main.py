import argparse
import asyncio
from pathlib import Path
from typing import Optional

from obtv_preview.api import APIController, APIServer
from obtv_preview.cli.common import (
    add_common_cli_arguments,
    install_signal_handlers,
    positive_float,
    positive_int,
    setup_cli_logging,
)
from obtv_preview.core.config_loader import PreviewConfig, load_preview_config
from obtv_preview.core.device_profile import detect_device_profile
from obtv_preview.core.ffmpeg_connection import make_ffmpeg_connection_factory
from obtv_preview.core.logging_utils import get_module_logger
from obtv_preview.core.preview_service import PreviewService
from obtv_preview.core.snapshot_workers import SnapshotWorkerPool

from .snapshot_writer import SnapshotWriter


logger = get_module_logger("Main")

CYCLE_POLL_INTERVAL = 0.25


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="obtv-preview",
        description="Live preview orchestration: bounded live slots and periodic stream snapshots",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    capture = subparsers.add_parser(
        "capture",
        help="Capture snapshots of the given streams on the scheduler cadence",
    )
    add_common_cli_arguments(capture)
    capture.add_argument(
        "--output-dir",
        type=Path,
        default=Path("snapshots"),
        help="Directory where <stream>.jpg files are written",
    )
    capture.add_argument(
        "--cycles",
        type=positive_int,
        default=None,
        help="Stop after this many capture cycles (default: run until interrupted)",
    )

    serve = subparsers.add_parser(
        "serve",
        help="Run server-side snapshot workers behind the HTTP API",
    )
    add_common_cli_arguments(serve)
    serve.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    serve.add_argument("--port", type=positive_int, default=8080, help="Port to bind to")
    serve.add_argument(
        "--snapshot-dir",
        type=Path,
        default=Path("snapshots"),
        help="Directory the snapshot workers write into",
    )
    serve.add_argument(
        "--hls-base",
        default="",
        help="Base URL used to derive <base>/live/<id>.m3u8 for streams without a URL",
    )
    serve.add_argument(
        "--force-https",
        action="store_true",
        default=False,
        help="Use https when translating WHEP URLs to HLS",
    )
    serve.add_argument(
        "--worker-ttl",
        type=positive_float,
        default=120.0,
        help="Seconds a worker lives without re-registration",
    )
    serve.add_argument(
        "--with-preview",
        action="store_true",
        default=False,
        help="Also run the client-side preview core and expose /api/preview/status",
    )
    serve.add_argument("--debug", action="store_true", default=False, help="Verbose API errors")

    return parser


def resolve_config(args: argparse.Namespace) -> PreviewConfig:
    profile = detect_device_profile(args.user_agent)
    return load_preview_config(args.config, profile)


async def wait_for_stop(stop_event: asyncio.Event, service: PreviewService, cycles: Optional[int]) -> None:
    while not stop_event.is_set():
        if cycles is not None and service.scheduler.cycles_completed >= cycles:
            logger.info("Completed %d capture cycles", service.scheduler.cycles_completed)
            return
        try:
            await asyncio.wait_for(stop_event.wait(), CYCLE_POLL_INTERVAL)
        except asyncio.TimeoutError:
            continue


async def run_capture(args: argparse.Namespace, stop_event: asyncio.Event) -> int:
    if not args.streams:
        logger.error("No streams given (use --stream ID=URL)")
        return 2

    config = resolve_config(args)
    service = PreviewService(
        config,
        make_ffmpeg_connection_factory(width=config.snapshot_max_width),
    )
    writer = SnapshotWriter(args.output_dir, logger=get_module_logger("SnapshotWriter"))

    for stream_id, url in args.streams:
        service.scheduler.register_stream_for_snapshot(stream_id, url, writer.on_snapshot)
    logger.info("Capturing %d streams into %s", len(args.streams), args.output_dir)

    try:
        await wait_for_stop(stop_event, service, args.cycles)
    finally:
        await service.shutdown()
        await writer.flush()

    logger.info("Wrote %d snapshots", sum(writer.written.values()))
    return 0


async def run_serve(args: argparse.Namespace, stop_event: asyncio.Event) -> int:
    config = resolve_config(args)
    pool = SnapshotWorkerPool(
        args.snapshot_dir,
        hls_base=args.hls_base,
        force_https=args.force_https,
        snapshot_interval=config.snapshot_interval,
        snapshot_width=config.snapshot_max_width,
        worker_ttl=args.worker_ttl,
    )

    preview_service = None
    if args.with_preview:
        preview_service = PreviewService(
            config,
            make_ffmpeg_connection_factory(width=config.snapshot_max_width),
        )

    controller = APIController(pool, dict(args.streams), preview_service=preview_service)
    server = APIServer(controller, host=args.host, port=args.port, debug=args.debug)

    pool.start()
    try:
        async with server:
            await stop_event.wait()
    finally:
        await pool.shutdown()
        if preview_service is not None:
            await preview_service.shutdown()
    return 0


async def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_cli_logging(args)

    stop_event = asyncio.Event()
    install_signal_handlers(stop_event, logger)

    if args.command == "capture":
        return await run_capture(args, stop_event)
    return await run_serve(args, stop_event)
