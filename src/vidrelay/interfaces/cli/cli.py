from __future__ import annotations

import argparse
import asyncio
import os
import signal
import sys
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import httpx
import structlog
import uvicorn

from vidrelay.domain.entities import ContentRef
from vidrelay.domain.exceptions import VidrelayError
from vidrelay.infrastructure.config import AppConfig, load_config
from vidrelay.infrastructure.download.client import ClientDownloader, ProgressStream
from vidrelay.infrastructure.download.filenames import build_filename
from vidrelay.infrastructure.download.transmux import PyAvTransmuxer
from vidrelay.infrastructure.logging.setup import configure_logging
from vidrelay.interfaces.app import create_app

log = structlog.get_logger(__name__)


def _add_config_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", default=None, help="Path to YAML config file.")
    parser.add_argument("--dotenv", default=None, help="Path to .env file.")
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override log level.",
    )
    parser.add_argument(
        "--log-format",
        default=None,
        choices=["json", "console"],
        help="Override log format.",
    )


def _episode_list(value: str) -> list[int]:
    try:
        return [int(part) for part in value.split(",") if part.strip()]
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"expected comma-separated numbers: {value!r}") from e


def _parse_args(argv: Iterable[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="vidrelay")
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the HTTP service (default).")
    serve.add_argument("--host", default=None, help="Bind host (overrides HOST env).")
    serve.add_argument(
        "--port", default=None, type=int, help="Bind port (overrides PORT env)."
    )
    serve.add_argument("--cache-dir", default=None, help="Override cache directory.")
    serve.add_argument("--ffmpeg", default=None, help="Override remux binary path.")
    _add_config_flags(serve)

    dl = sub.add_parser("download", help="Download through a running service.")
    dl.add_argument(
        "--api",
        default=os.getenv("VIDRELAY_API", "http://127.0.0.1:7979"),
        help="Service base URL (VIDRELAY_API env).",
    )
    source = dl.add_mutually_exclusive_group(required=True)
    source.add_argument("--id", type=int, help="Numeric catalog id (segmented source).")
    source.add_argument("--url", help="Direct file URL (single-file source).")
    dl.add_argument("--season", type=int, default=None)
    dl.add_argument("--episode", type=int, default=None)
    dl.add_argument("--audio", type=int, default=None, help="Audio track index.")
    dl.add_argument(
        "--season-episodes",
        type=_episode_list,
        default=None,
        help="Download these episodes of --season in order, e.g. 1,2,3.",
    )
    dl.add_argument("--title", default="video", help="Title used for the filename.")
    dl.add_argument("--out", default=".", help="Output directory.")
    _add_config_flags(dl)

    argv = list(argv) if argv is not None else sys.argv[1:]
    if not argv or argv[0] not in ("serve", "download", "-h", "--help"):
        argv = ["serve", *argv]
    return parser.parse_args(argv)


def _load(args: argparse.Namespace, extra: dict[str, Any] | None = None) -> AppConfig:
    cli_overrides: dict[str, Any] = dict(extra or {})
    if args.log_level:
        cli_overrides["log_level"] = args.log_level
    if args.log_format:
        cli_overrides["log_format"] = args.log_format

    return load_config(
        config_path=Path(args.config) if args.config else None,
        dotenv_path=Path(args.dotenv) if args.dotenv else None,
        cli_overrides=cli_overrides,
    )


def _serve(args: argparse.Namespace) -> int:
    host = args.host or os.getenv("HOST", "0.0.0.0")
    port = int(args.port or os.getenv("PORT", "7979"))

    extra: dict[str, Any] = {}
    if args.cache_dir:
        extra["cache_dir"] = args.cache_dir
    if args.ffmpeg:
        extra["ffmpeg_path"] = args.ffmpeg
    config = _load(args, extra)
    log_config = configure_logging(config)

    uvicorn.run(create_app(config), host=host, port=port, log_config=log_config)
    return 0


async def _report(progress: ProgressStream) -> None:
    async for event in progress:
        log.info(
            "download_progress",
            phase=event.phase,
            percent=event.percent,
            detail=event.detail,
        )


async def _run_download(args: argparse.Namespace, config: AppConfig) -> list[Path]:
    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel.set)
    except NotImplementedError:
        pass

    progress = ProgressStream()
    reporter = asyncio.ensure_future(_report(progress))
    out_dir = Path(args.out)

    async with httpx.AsyncClient(
        base_url=args.api,
        timeout=httpx.Timeout(config.http_timeout_seconds * 4),
    ) as http_client:
        downloader = ClientDownloader(
            http_client,
            PyAvTransmuxer(),
            concurrency=config.download.client_concurrency,
            segment_retries=config.download.segment_retries,
            backoff_seconds=config.download.segment_backoff_seconds,
            season_delay_seconds=config.download.season_delay_seconds,
        )
        try:
            if args.url:
                dest = out_dir / build_filename(args.title, ext="mp4")
                return [
                    await downloader.download_direct(
                        args.url, dest, progress=progress, cancel=cancel
                    )
                ]
            if args.season_episodes:
                if args.season is None:
                    raise VidrelayError("--season-episodes requires --season")
                return await downloader.download_season(
                    args.id,
                    args.season,
                    args.season_episodes,
                    title=args.title,
                    out_dir=out_dir,
                    audio_index=args.audio,
                    progress=progress,
                    cancel=cancel,
                )
            ref = ContentRef(args.id, args.season, args.episode, args.audio)
            dest = out_dir / build_filename(args.title, args.season, args.episode, "mp4")
            return [
                await downloader.download_segmented(
                    ref, dest, progress=progress, cancel=cancel
                )
            ]
        finally:
            progress.close()
            await reporter


def _download(args: argparse.Namespace) -> int:
    config = _load(args)
    configure_logging(config)
    try:
        saved = asyncio.run(_run_download(args, config))
    except VidrelayError as e:
        log.error("download_failed", error_type=type(e).__name__, error=str(e))
        return 1
    for path in saved:
        print(path)
    return 0


def start(argv: Iterable[str] | None = None) -> int:
    """Process entrypoint: load config exactly once, then dispatch."""
    args = _parse_args(argv)
    if args.command == "download":
        return _download(args)
    return _serve(args)


if __name__ == "__main__":
    raise SystemExit(start())
