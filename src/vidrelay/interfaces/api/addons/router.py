"""Stream-listing addon endpoints (single addon passthrough + aggregation)."""

from __future__ import annotations

from typing import Any, cast

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from vidrelay.domain.entities import AddonDescriptor
from vidrelay.domain.exceptions import InvalidManifest, ParseFailure, UpstreamUnavailable
from vidrelay.infrastructure.addons.aggregator import build_addon_id
from vidrelay.infrastructure.addons.normalizer import format_bytes
from vidrelay.interfaces.api.responses import error_response
from vidrelay.interfaces.app_state import AppState

log = structlog.get_logger(__name__)

router = APIRouter(prefix="/addons", tags=["addons"])


class AddonPayload(BaseModel):
    id: str
    name: str
    transport_url: str = Field(alias="transportUrl")
    manifest: dict[str, Any] = Field(default_factory=dict)
    enabled: bool = True

    model_config = {"populate_by_name": True}


class AggregateRequest(BaseModel):
    type: str
    id: str
    season: int | None = None
    episode: int | None = None
    addons: list[AddonPayload] | None = None


@router.get("/stream")
async def addon_stream(
    request: Request,
    addon: str | None = None,
    type: str | None = None,  # noqa: A002
    id: str | None = None,  # noqa: A002
) -> JSONResponse:
    state = cast(AppState, request.app.state)
    if not addon or not type or not id:
        return error_response(400, "addon, type, and id parameters are required")

    try:
        streams = await state.addon_aggregator.fetch_streams(addon, type, id)
    except UpstreamUnavailable as e:
        detail = f"Addon returned {e.status}" if e.status else "Addon unreachable"
        return error_response(502, detail)
    except ParseFailure:
        return error_response(502, "Addon returned an invalid response")
    return JSONResponse(content={"streams": streams})


@router.get("/manifest")
async def addon_manifest(request: Request, url: str | None = None) -> JSONResponse:
    state = cast(AppState, request.app.state)
    if not url:
        return error_response(400, "url parameter is required")

    try:
        manifest = await state.addon_aggregator.fetch_manifest(url)
    except InvalidManifest as e:
        return error_response(422, str(e))
    except UpstreamUnavailable as e:
        detail = f"Addon returned {e.status}" if e.status else "Addon unreachable"
        return error_response(502, detail)
    except ParseFailure:
        return error_response(502, "Addon manifest is not JSON")
    return JSONResponse(content=manifest)


@router.post("/aggregate")
async def addon_aggregate(request: Request, payload: AggregateRequest) -> JSONResponse:
    """Query every enabled addon and return normalized, sorted sources.

    Falls back to the configured addons when the request lists none.
    """
    state = cast(AppState, request.app.state)
    if payload.addons is not None:
        addons = [
            AddonDescriptor(
                id=a.id,
                name=a.name,
                transport_url=a.transport_url,
                manifest=a.manifest,
                enabled=a.enabled,
            )
            for a in payload.addons
        ]
    else:
        addons = [
            AddonDescriptor(
                id=a.id, name=a.name, transport_url=a.transport_url, enabled=a.enabled
            )
            for a in state.config.addons.installed
        ]

    content_id = build_addon_id(payload.id, payload.season, payload.episode)
    sources = await state.addon_aggregator.aggregate(addons, payload.type, content_id)
    return JSONResponse(
        content={
            "id": content_id,
            "streams": [
                {**s.to_dict(), "sizeDisplay": format_bytes(s.size_bytes)} for s in sources
            ],
        }
    )
