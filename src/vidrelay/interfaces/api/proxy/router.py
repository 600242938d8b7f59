"""HLS rewrite proxy: manifests are rewritten, segments are passed through."""

from __future__ import annotations

from typing import cast

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import Response, StreamingResponse

from vidrelay.domain.entities.streams import is_absolute_url
from vidrelay.domain.exceptions import UpstreamUnavailable
from vidrelay.infrastructure.hls.playlist import (
    MANIFEST_CONTENT_TYPE,
    ProxyUrlBuilder,
    rewrite_manifest,
)
from vidrelay.interfaces.api.responses import CORS_HEADERS, error_response
from vidrelay.interfaces.app_state import AppState

log = structlog.get_logger(__name__)

router = APIRouter(prefix="/proxy", tags=["proxy"])


@router.options("/manifest")
@router.options("/segment")
async def proxy_preflight() -> Response:
    return Response(status_code=204, headers=CORS_HEADERS)


@router.get("/manifest")
async def proxy_manifest(
    request: Request,
    url: str | None = None,
    provider: str | None = None,
) -> Response:
    state = cast(AppState, request.app.state)
    if not url or not is_absolute_url(url):
        return error_response(400, "url must be an absolute http(s) URL", cors=True)

    try:
        content = await state.hls_fetcher.fetch_text(url, provider)
    except UpstreamUnavailable as e:
        if e.status is not None:
            return error_response(e.status, f"Upstream returned {e.status}", cors=True)
        return error_response(502, "Upstream unreachable", cors=True)

    proxy = ProxyUrlBuilder(
        str(request.base_url),
        provider=provider,
        default_provider=state.config.providers.default_headers,
    )
    body = rewrite_manifest(content, url, proxy)
    log.debug("manifest_rewritten", url=url, provider=provider, bytes=len(body))
    return Response(
        content=body,
        media_type=MANIFEST_CONTENT_TYPE,
        headers={**CORS_HEADERS, "Cache-Control": "no-cache"},
    )


@router.get("/segment")
async def proxy_segment(
    request: Request,
    url: str | None = None,
    provider: str | None = None,
) -> Response:
    state = cast(AppState, request.app.state)
    if not url or not is_absolute_url(url):
        return error_response(400, "url must be an absolute http(s) URL", cors=True)

    try:
        upstream = await state.hls_fetcher.open_stream(
            url, provider, range_header=request.headers.get("range")
        )
    except UpstreamUnavailable as e:
        log.warning("segment_proxy_failed", url=url, status=e.status)
        return error_response(502, "Upstream segment unavailable", cors=True)

    headers = {**CORS_HEADERS, **upstream.headers}
    media_type = headers.pop("content-type", "video/mp2t")
    return StreamingResponse(
        upstream.body,
        status_code=upstream.status_code,
        media_type=media_type,
        headers=headers,
    )
