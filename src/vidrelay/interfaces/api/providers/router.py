"""Direct provider endpoints: URL-pattern decode, page scraping, anime episodes."""

from __future__ import annotations

from typing import cast

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from vidrelay.domain.exceptions import NoStreamsFound
from vidrelay.infrastructure.providers.kodik import parse_embed_url
from vidrelay.interfaces.api.responses import error_response
from vidrelay.interfaces.app_state import AppState

log = structlog.get_logger(__name__)

router = APIRouter(tags=["providers"])


class ParseRequest(BaseModel):
    url: str | None = None


class RezkaSearchRequest(BaseModel):
    title: str | None = None
    year: int | None = None


class RezkaStreamRequest(BaseModel):
    url: str | None = None
    translation_id: int | None = None


@router.post("/kodik/parse")
@router.post("/providerA/parse")
async def parse_kodik(request: Request, payload: ParseRequest) -> JSONResponse:
    state = cast(AppState, request.app.state)
    if not payload.url or parse_embed_url(payload.url) is None:
        return error_response(400, "A valid player URL is required")

    links = await state.kodik.resolve(payload.url)
    if not links:
        return error_response(404, "No links could be decoded")
    return JSONResponse(content={"links": [link.to_dict() for link in links]})


@router.post("/rezka/search")
async def rezka_search(request: Request, payload: RezkaSearchRequest) -> JSONResponse:
    state = cast(AppState, request.app.state)
    title = (payload.title or "").strip()
    if not title:
        return error_response(400, "title is required")

    results = await state.rezka.search(title, payload.year)
    return JSONResponse(
        content={
            "results": [
                {"url": r.url, "title": r.title, "year": r.year} for r in results
            ]
        }
    )


@router.post("/rezka/stream")
async def rezka_stream(request: Request, payload: RezkaStreamRequest) -> JSONResponse:
    state = cast(AppState, request.app.state)
    if not payload.url:
        return error_response(400, "url is required")

    stream = await state.rezka.resolve_stream(payload.url, payload.translation_id)
    if stream is None or not stream.qualities:
        return error_response(404, "Could not extract stream")

    return JSONResponse(
        content={
            "streams": {
                "qualities": stream.qualities,
                "translations": [
                    {"id": t.id, "title": t.title} for t in stream.translations
                ],
                "defaultTranslation": stream.default_translation,
            }
        }
    )


@router.get("/anime/episode")
async def anime_episode(
    request: Request,
    release: str | None = None,
    type: str | None = None,  # noqa: A002
    episode: str | None = None,
) -> JSONResponse:
    state = cast(AppState, request.app.state)
    try:
        release_id = int(release or "")
        type_id = int(type or "")
        position = int(episode or "")
    except ValueError:
        return error_response(400, "release, type and episode must be integers")

    try:
        result = await state.anime_episode_uc.execute(release_id, type_id, position)
    except NoStreamsFound as e:
        log.info("anime_episode_not_found", release=release_id, type=type_id, episode=position)
        return error_response(404, str(e))
    return JSONResponse(content=result.to_dict())
