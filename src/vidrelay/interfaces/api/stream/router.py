"""Stream resolution endpoint (embed-API decoder + iframe players)."""

from __future__ import annotations

from typing import cast

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from vidrelay.domain.entities import ContentRef
from vidrelay.domain.exceptions import NoStreamsFound
from vidrelay.infrastructure.hls.playlist import ProxyUrlBuilder
from vidrelay.interfaces.api.responses import error_response, parse_int
from vidrelay.interfaces.app_state import AppState

log = structlog.get_logger(__name__)

router = APIRouter(tags=["stream"])


def parse_content_ref(
    raw_id: str | None,
    season: str | None = None,
    episode: str | None = None,
    audio: str | None = None,
) -> ContentRef | None:
    """Build a ContentRef from query strings; None when any part is invalid."""
    if not raw_id:
        return None
    try:
        catalog_id = int(raw_id)
        ref = ContentRef(
            catalog_id=catalog_id,
            season=parse_int(season),
            episode=parse_int(episode),
            audio_index=parse_int(audio),
        )
    except ValueError:
        return None
    if catalog_id <= 0:
        return None
    return ref


@router.get("/stream")
async def get_streams(
    request: Request,
    id: str | None = None,  # noqa: A002
    season: str | None = None,
    episode: str | None = None,
    audio: str | None = None,
) -> JSONResponse:
    state = cast(AppState, request.app.state)

    ref = parse_content_ref(id, season, episode, audio)
    if ref is None:
        return error_response(400, "Invalid or missing id")

    log.info(
        "stream_request",
        catalog_id=ref.catalog_id,
        season=ref.season,
        episode=ref.episode,
        audio=ref.audio_index,
    )

    proxy = ProxyUrlBuilder(str(request.base_url))
    try:
        result = await state.resolve_streams_uc.execute(ref, proxy)
    except NoStreamsFound:
        return error_response(404, "No streams found, try another source")

    return JSONResponse(content=result.to_dict())
