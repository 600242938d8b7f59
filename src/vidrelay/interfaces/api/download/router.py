"""Download endpoint: direct attachment proxy and server-side remux.

Modes (selected by query parameters):
    ``url=``                          single-file passthrough
    ``id=...``                        remuxed fragmented MP4 of the best variant
    ``id=...&resolve=1``              ``{"total": <segment count>}``
    ``id=...&seg=<i>``                raw bytes of segment ``i``
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import cast
from urllib.parse import unquote, urlparse

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse

from vidrelay.domain.entities import ContentRef, DownloadJob, SegmentRef
from vidrelay.domain.entities.streams import is_absolute_url
from vidrelay.domain.exceptions import (
    NoStreamsFound,
    SegmentLoss,
    SubprocessFailure,
    UpstreamUnavailable,
)
from vidrelay.infrastructure.download.filenames import (
    build_filename,
    content_disposition,
    sanitize_filename,
)
from vidrelay.infrastructure.graceful_shutdown import GracefulShutdown
from vidrelay.interfaces.api.responses import error_response, parse_int
from vidrelay.interfaces.api.stream.router import parse_content_ref
from vidrelay.interfaces.app_state import AppState

log = structlog.get_logger(__name__)

router = APIRouter(tags=["download"])

_SEGMENT_LIST_TTL = 600


def _job_cache_key(ref: ContentRef) -> str:
    return f"download:segments:{ref.catalog_id}:{ref.season}:{ref.episode}:{ref.audio_index}"


def _default_filename(url: str) -> str:
    name = unquote(urlparse(url).path.rsplit("/", 1)[-1])
    return name or "video.mp4"


async def _tracked(
    body: AsyncIterator[bytes], gs: GracefulShutdown
) -> AsyncIterator[bytes]:
    gs.download_started()
    try:
        async for chunk in body:
            yield chunk
    finally:
        gs.download_finished()


async def _prepare_job(state: AppState, ref: ContentRef) -> DownloadJob:
    """Locate and expand the playlist, reusing a cached segment list.

    Raises:
        NoStreamsFound: nothing to download for ``ref``.
        UpstreamUnavailable: a manifest could not be fetched.
    """
    key = _job_cache_key(ref)
    cached = await state.cache.get(key)
    if cached is not None:
        return DownloadJob(
            variant_url=cached["variant_url"],
            segments=[SegmentRef(i, u) for i, u in enumerate(cached["segments"])],
            content_ref=ref,
        )

    manifest_url = await state.resolve_streams_uc.locate_manifest(ref)
    if manifest_url is None:
        raise NoStreamsFound(f"no playlist for catalog id {ref.catalog_id}")

    job = await state.download_pipeline.prepare(manifest_url)
    job.content_ref = ref
    await state.cache.set(
        key,
        {
            "variant_url": job.variant_url,
            "segments": [s.absolute_url for s in job.segments],
        },
        ttl=_SEGMENT_LIST_TTL,
    )
    return job


async def _download_direct(
    state: AppState, url: str, filename: str | None, provider: str | None
) -> Response:
    if not is_absolute_url(url):
        return error_response(400, "url must be an absolute http(s) URL")
    try:
        upstream = await state.hls_fetcher.open_stream(url, provider)
    except UpstreamUnavailable as e:
        log.warning("direct_download_failed", url=url, status=e.status)
        return error_response(502, "Upstream file unavailable")

    name = sanitize_filename(filename, default=_default_filename(url))
    headers = dict(upstream.headers)
    media_type = headers.pop("content-type", "application/octet-stream")
    headers["Content-Disposition"] = content_disposition(name)
    log.info("direct_download_started", url=url, filename=name)
    return StreamingResponse(
        _tracked(upstream.body, state.graceful_shutdown),
        media_type=media_type,
        headers=headers,
    )


@router.get("/download")
async def download(
    request: Request,
    url: str | None = None,
    filename: str | None = None,
    provider: str | None = None,
    id: str | None = None,  # noqa: A002
    season: str | None = None,
    episode: str | None = None,
    audio: str | None = None,
    resolve: str | None = None,
    seg: str | None = None,
) -> Response:
    state = cast(AppState, request.app.state)

    if url:
        return await _download_direct(state, url, filename, provider)

    ref = parse_content_ref(id, season, episode, audio)
    if ref is None:
        return error_response(400, "Either url or a valid id is required")
    try:
        seg_index = parse_int(seg)
    except ValueError:
        return error_response(400, "seg must be an integer")

    try:
        job = await _prepare_job(state, ref)
    except NoStreamsFound:
        return error_response(404, "No downloadable stream found")
    except UpstreamUnavailable as e:
        log.warning("download_prepare_failed", catalog_id=ref.catalog_id, status=e.status)
        return error_response(502, "Upstream playlist unavailable")

    if resolve == "1":
        return JSONResponse(content={"total": job.total})

    if seg_index is not None:
        if not 0 <= seg_index < job.total:
            return error_response(400, f"seg out of range (0..{job.total - 1})")
        try:
            data = await state.download_pipeline.fetch_segment(job.segments[seg_index])
        except SegmentLoss:
            return error_response(502, f"Segment {seg_index} unavailable")
        return Response(content=data, media_type="video/mp2t")

    name = sanitize_filename(
        filename, default=build_filename("video", ref.season, ref.episode, "mp4")
    )
    try:
        process = await state.download_pipeline.start_remux()
    except SubprocessFailure:
        return error_response(503, "Remux unavailable")

    log.info(
        "server_download_started",
        catalog_id=ref.catalog_id,
        segments=job.total,
        filename=name,
    )
    return StreamingResponse(
        _tracked(
            state.download_pipeline.stream(job, process=process),
            state.graceful_shutdown,
        ),
        media_type="video/mp4",
        headers={"Content-Disposition": content_disposition(name)},
    )
