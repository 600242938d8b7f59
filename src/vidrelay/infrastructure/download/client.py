"""Client-side download pipeline against the service's own HTTP API.

Segmented sources are fetched segment by segment (``/download?...&seg=i``)
by a small worker pool, stored by index, transmuxed in-process and moved
into place atomically. Direct sources are streamed straight to disk.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import tempfile
from collections.abc import AsyncIterator, Iterable
from pathlib import Path

import httpx
import structlog

from vidrelay.domain.entities import ContentRef, SegmentRef
from vidrelay.domain.entities.progress import (
    FINALIZED,
    TRANSMUX_FINISHED,
    TRANSMUX_STARTED,
    ProgressEvent,
    ProgressPhase,
    fetch_percent,
)
from vidrelay.domain.exceptions import (
    DownloadCancelled,
    NoStreamsFound,
    UpstreamUnavailable,
    VidrelayError,
)
from vidrelay.domain.ports.remux import TransmuxerPort
from vidrelay.infrastructure.download.filenames import build_filename
from vidrelay.infrastructure.download.segments import fetch_segment_with_retry

log = structlog.get_logger(__name__)


class ProgressStream:
    """Queue-backed progress events; iterate until the producer closes it."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[ProgressEvent | None] = asyncio.Queue()
        self.last: ProgressEvent | None = None

    def emit(self, phase: ProgressPhase, percent: int, detail: str = "") -> None:
        event = ProgressEvent(phase, percent, detail)
        self.last = event
        self._queue.put_nowait(event)

    def close(self) -> None:
        self._queue.put_nowait(None)

    async def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event


def _check_cancel(cancel: asyncio.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise DownloadCancelled("download cancelled")


def _report_failure(progress: ProgressStream | None, error: VidrelayError) -> None:
    if progress is None:
        return
    percent = progress.last.percent if progress.last is not None else 0
    progress.emit("error", percent, str(error))


def _write_atomic(dest: Path, data: bytes) -> None:
    dest.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{dest.name}.", suffix=".part", dir=dest.parent)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
        os.replace(tmp_name, dest)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp_name)
        raise


def _ref_params(ref: ContentRef) -> dict[str, str]:
    params = {"id": str(ref.catalog_id)}
    if ref.season is not None:
        params["season"] = str(ref.season)
    if ref.episode is not None:
        params["episode"] = str(ref.episode)
    if ref.audio_index is not None:
        params["audio"] = str(ref.audio_index)
    return params


class ClientDownloader:
    """Downloads through a running service instance.

    ``http_client`` must carry the service's ``base_url``.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        transmuxer: TransmuxerPort,
        *,
        concurrency: int = 3,
        segment_retries: int = 3,
        backoff_seconds: float = 0.5,
        season_delay_seconds: float = 2.0,
    ) -> None:
        self._http = http_client
        self._transmuxer = transmuxer
        self._concurrency = concurrency
        self._retries = segment_retries
        self._backoff = backoff_seconds
        self._season_delay = season_delay_seconds

    async def resolve_total(self, ref: ContentRef) -> int:
        params = {**_ref_params(ref), "resolve": "1"}
        try:
            resp = await self._http.get("/download", params=params)
        except httpx.HTTPError as e:
            raise UpstreamUnavailable("/download?resolve=1") from e
        if resp.status_code != 200:
            raise UpstreamUnavailable("/download?resolve=1", resp.status_code)
        total = int(resp.json().get("total", 0))
        if total <= 0:
            raise NoStreamsFound(f"no segments for catalog id {ref.catalog_id}")
        return total

    async def _fetch_segment_bytes(self, params: dict[str, str]) -> bytes:
        label = f"/download?seg={params['seg']}"
        try:
            resp = await self._http.get("/download", params=params)
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(label) from e
        if resp.status_code != 200:
            raise UpstreamUnavailable(label, resp.status_code)
        return resp.content

    async def fetch_segments(
        self,
        ref: ContentRef,
        total: int,
        *,
        progress: ProgressStream | None = None,
        cancel: asyncio.Event | None = None,
    ) -> list[bytes]:
        """Fetch ``total`` segments with a worker pool into index slots."""
        buffers: list[bytes | None] = [None] * total
        base_params = _ref_params(ref)
        next_index = 0
        completed = 0

        async def worker() -> None:
            nonlocal next_index, completed
            while True:
                _check_cancel(cancel)
                index = next_index
                if index >= total:
                    return
                next_index += 1
                params = {**base_params, "seg": str(index)}
                buffers[index] = await fetch_segment_with_retry(
                    lambda _url, p=params: self._fetch_segment_bytes(p),
                    SegmentRef(index, f"seg:{index}"),
                    attempts=self._retries,
                    backoff_seconds=self._backoff,
                )
                completed += 1
                if progress is not None:
                    progress.emit("fetch", fetch_percent(completed, total), f"{completed}/{total}")

        workers = [
            asyncio.ensure_future(worker()) for _ in range(min(self._concurrency, total))
        ]
        try:
            await asyncio.gather(*workers)
        finally:
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)

        assert all(b is not None for b in buffers)
        return [b for b in buffers if b is not None]

    async def download_segmented(
        self,
        ref: ContentRef,
        dest: Path,
        *,
        progress: ProgressStream | None = None,
        cancel: asyncio.Event | None = None,
    ) -> Path:
        try:
            return await self._download_segmented(ref, dest, progress, cancel)
        except VidrelayError as e:
            _report_failure(progress, e)
            raise

    async def _download_segmented(
        self,
        ref: ContentRef,
        dest: Path,
        progress: ProgressStream | None,
        cancel: asyncio.Event | None,
    ) -> Path:
        if progress is not None:
            progress.emit("resolve", 0)
        total = await self.resolve_total(ref)
        log.info("client_download_started", catalog_id=ref.catalog_id, segments=total)

        segments = await self.fetch_segments(ref, total, progress=progress, cancel=cancel)
        _check_cancel(cancel)

        if progress is not None:
            progress.emit("transmux", TRANSMUX_STARTED)
        container = await self._transmuxer.transmux(segments)
        if progress is not None:
            progress.emit("transmux", TRANSMUX_FINISHED)
        _check_cancel(cancel)

        if progress is not None:
            progress.emit("save", TRANSMUX_FINISHED, str(dest))
        await asyncio.to_thread(_write_atomic, dest, container)
        if progress is not None:
            progress.emit("done", FINALIZED, str(dest))
        log.info("client_download_saved", path=str(dest), bytes=len(container))
        return dest

    async def download_direct(
        self,
        url: str,
        dest: Path,
        *,
        progress: ProgressStream | None = None,
        cancel: asyncio.Event | None = None,
    ) -> Path:
        """Stream a single-file source through ``/download?url=`` to ``dest``."""
        try:
            return await self._download_direct(url, dest, progress, cancel)
        except VidrelayError as e:
            _report_failure(progress, e)
            raise

    async def _download_direct(
        self,
        url: str,
        dest: Path,
        progress: ProgressStream | None,
        cancel: asyncio.Event | None,
    ) -> Path:
        params = {"url": url, "filename": dest.name}
        dest.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{dest.name}.", suffix=".part", dir=dest.parent)
        received = 0
        try:
            with os.fdopen(fd, "wb") as handle:
                async with self._http.stream("GET", "/download", params=params) as resp:
                    if resp.status_code != 200:
                        raise UpstreamUnavailable(url, resp.status_code)
                    length = int(resp.headers.get("content-length") or 0)
                    async for chunk in resp.aiter_bytes():
                        _check_cancel(cancel)
                        await asyncio.to_thread(handle.write, chunk)
                        received += len(chunk)
                        if progress is not None and length:
                            progress.emit("fetch", fetch_percent(received, length))
            os.replace(tmp_name, dest)
        except httpx.HTTPError as e:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(tmp_name)
            raise UpstreamUnavailable(url) from e
        except BaseException:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(tmp_name)
            raise

        if progress is not None:
            progress.emit("done", FINALIZED, str(dest))
        log.info("client_download_saved", path=str(dest), bytes=received)
        return dest

    async def download_season(
        self,
        catalog_id: int,
        season: int,
        episodes: Iterable[int],
        *,
        title: str,
        out_dir: Path,
        audio_index: int | None = None,
        progress: ProgressStream | None = None,
        cancel: asyncio.Event | None = None,
    ) -> list[Path]:
        """Download episodes one after another, in episode order, pausing
        between them."""
        ordered = sorted(set(episodes))
        saved: list[Path] = []
        for position, episode in enumerate(ordered):
            _check_cancel(cancel)
            ref = ContentRef(catalog_id, season, episode, audio_index)
            dest = out_dir / build_filename(title, season, episode, "mp4")
            log.info(
                "season_episode_started",
                season=season,
                episode=episode,
                position=position + 1,
                total=len(ordered),
            )
            saved.append(
                await self.download_segmented(ref, dest, progress=progress, cancel=cancel)
            )
            if position < len(ordered) - 1:
                await asyncio.sleep(self._season_delay)
        return saved
