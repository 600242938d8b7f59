"""Server-side download: HLS -> ordered segments -> remux -> byte stream."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator, Awaitable, Callable
from enum import Enum

import structlog

from vidrelay.domain.entities import DownloadJob, SegmentRef
from vidrelay.domain.exceptions import NoStreamsFound, SubprocessFailure
from vidrelay.domain.ports.remux import RemuxProcessPort
from vidrelay.infrastructure.download.segments import (
    OrderedPrefetcher,
    fetch_segment_with_retry,
)
from vidrelay.infrastructure.hls.fetcher import HlsFetcher
from vidrelay.infrastructure.hls.playlist import extract_segments, select_variant

log = structlog.get_logger(__name__)

RemuxFactory = Callable[[], Awaitable[RemuxProcessPort]]


class SegmentPolicy(str, Enum):
    """What a segment lost after all retries does to the job."""

    LENIENT = "lenient"  # skip it, keep going
    STRICT = "strict"  # abort the job


class ServerDownloadPipeline:
    def __init__(
        self,
        fetcher: HlsFetcher,
        remux_factory: RemuxFactory,
        *,
        prefetch_depth: int = 8,
        segment_retries: int = 3,
        backoff_seconds: float = 0.5,
        policy: SegmentPolicy = SegmentPolicy.LENIENT,
    ) -> None:
        self._fetcher = fetcher
        self._remux_factory = remux_factory
        self._prefetch_depth = prefetch_depth
        self._retries = segment_retries
        self._backoff = backoff_seconds
        self._policy = policy

    async def prepare(self, manifest_url: str, provider: str | None = None) -> DownloadJob:
        """Pick the best variant and list its segments.

        Raises:
            UpstreamUnavailable: a manifest could not be fetched.
            NoStreamsFound: the media playlist lists no segments.
        """
        master = await self._fetcher.fetch_text(manifest_url, provider)
        variant_url = select_variant(master, manifest_url)
        media = master if variant_url == manifest_url else await self._fetcher.fetch_text(
            variant_url, provider
        )
        segments = extract_segments(media, variant_url)
        if not segments:
            raise NoStreamsFound(f"no segments in {variant_url}")
        log.info(
            "download_prepared",
            variant_url=variant_url,
            segments=len(segments),
        )
        return DownloadJob(variant_url=variant_url, segments=segments)

    async def fetch_segment(self, segment: SegmentRef, provider: str | None = None) -> bytes:
        return await fetch_segment_with_retry(
            lambda url: self._fetcher.fetch_bytes(url, provider),
            segment,
            attempts=self._retries,
            backoff_seconds=self._backoff,
        )

    async def _feed(
        self, job: DownloadJob, process: RemuxProcessPort, provider: str | None
    ) -> None:
        prefetcher: OrderedPrefetcher[SegmentRef, bytes] = OrderedPrefetcher(
            job.segments,
            lambda segment: self.fetch_segment(segment, provider),
            depth=self._prefetch_depth,
        )
        results = aiter(prefetcher)
        try:
            async with contextlib.aclosing(results):
                async for result in results:
                    if result.error is not None:
                        job.lost_segments.append(result.item.index)
                        if self._policy is SegmentPolicy.STRICT:
                            log.error(
                                "download_aborted_segment_lost",
                                index=result.item.index,
                                url=result.item.absolute_url,
                            )
                            await process.kill()
                            return
                        log.warning(
                            "segment_skipped",
                            index=result.item.index,
                            url=result.item.absolute_url,
                        )
                        continue
                    assert result.value is not None
                    await process.write(result.value)
        except (BrokenPipeError, ConnectionResetError):
            log.warning("remux_input_closed", variant_url=job.variant_url)
        finally:
            await process.close_input()

    async def start_remux(self) -> RemuxProcessPort:
        """Spawn the remux process.

        Callers spawn it before committing a response so a missing or broken
        binary still gets a structured error.

        Raises:
            SubprocessFailure: the process could not be started.
        """
        try:
            return await self._remux_factory()
        except OSError as e:
            log.error("remux_spawn_failed", error=str(e))
            raise SubprocessFailure(-1, str(e)) from e

    async def stream(
        self,
        job: DownloadJob,
        provider: str | None = None,
        *,
        process: RemuxProcessPort | None = None,
    ) -> AsyncIterator[bytes]:
        """Yield the remuxed container as it is produced.

        Closing the generator (client disconnect) kills the subprocess and
        cancels outstanding segment fetches.
        """
        if process is None:
            process = await self.start_remux()
        feeder = asyncio.ensure_future(self._feed(job, process, provider))
        finished = False
        try:
            async for chunk in process.output():
                job.bytes_written += len(chunk)
                yield chunk
            await feeder
            returncode = await process.wait()
            finished = True
            if returncode != 0:
                failure = SubprocessFailure(returncode, process.stderr_tail)
                log.error(
                    "remux_failed",
                    returncode=returncode,
                    stderr=failure.stderr_tail,
                    bytes_written=job.bytes_written,
                )
            else:
                log.info(
                    "download_completed",
                    variant_url=job.variant_url,
                    bytes_written=job.bytes_written,
                    lost_segments=len(job.lost_segments),
                )
        finally:
            if not feeder.done():
                feeder.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await feeder
            if not finished:
                log.info(
                    "download_cancelled",
                    variant_url=job.variant_url,
                    bytes_written=job.bytes_written,
                )
                await process.kill()
