"""Concurrent stream aggregation across user-enabled addons.

Each addon is queried with its own timeout. An addon that errors, times
out or returns malformed JSON contributes nothing and never affects the
others or the aggregate call.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import Any

import httpx
import structlog

from vidrelay.domain.entities import AddonDescriptor, StreamSource
from vidrelay.domain.exceptions import InvalidManifest, ParseFailure, UpstreamUnavailable
from vidrelay.infrastructure.addons.normalizer import normalize_stream, sort_sources

log = structlog.get_logger(__name__)

_JSON_HEADERS = {"Accept": "application/json"}


def build_addon_id(imdb_id: str, season: int | None = None, episode: int | None = None) -> str:
    """Content id in the addon protocol: ``tt123`` or ``tt123:1:2``."""
    if season is not None and episode is not None:
        return f"{imdb_id}:{season}:{episode}"
    return imdb_id


def manifest_url(url: str) -> str:
    """Normalize any addon URL to its ``.../manifest.json``."""
    base = url.rstrip("/")
    if base.endswith("/manifest.json"):
        base = base[: -len("/manifest.json")]
    return f"{base}/manifest.json"


def transport_base(url: str) -> str:
    base = url.rstrip("/")
    if base.endswith("/manifest.json"):
        base = base[: -len("/manifest.json")]
    return base


class AddonAggregator:
    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        timeout_seconds: float = 15.0,
        manifest_timeout_seconds: float = 10.0,
    ) -> None:
        self._http = http_client
        self._timeout = timeout_seconds
        self._manifest_timeout = manifest_timeout_seconds

    async def fetch_streams(
        self, transport_url: str, content_type: str, content_id: str
    ) -> list[dict[str, Any]]:
        """Raw stream descriptors (with url or infoHash) from one addon.

        Raises:
            UpstreamUnavailable: network error or non-2xx.
            ParseFailure: body is not the expected JSON shape.
        """
        url = f"{transport_base(transport_url)}/stream/{content_type}/{content_id}.json"
        try:
            resp = await self._http.get(url, headers=_JSON_HEADERS, timeout=self._timeout)
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(url) from e
        if resp.status_code != 200:
            raise UpstreamUnavailable(url, resp.status_code)
        try:
            data = resp.json()
        except ValueError as e:
            raise ParseFailure(f"addon returned non-JSON body: {url}") from e
        streams = data.get("streams") if isinstance(data, dict) else None
        if not isinstance(streams, list):
            raise ParseFailure(f"addon response has no streams list: {url}")
        return [
            s for s in streams if isinstance(s, dict) and (s.get("url") or s.get("infoHash"))
        ]

    async def fetch_manifest(self, url: str) -> dict[str, Any]:
        """Fetch and validate an addon manifest.

        Raises:
            UpstreamUnavailable: network error or non-2xx.
            ParseFailure: not JSON.
            InvalidManifest: missing ``id``/``name``.
        """
        target = manifest_url(url)
        try:
            resp = await self._http.get(
                target, headers=_JSON_HEADERS, timeout=self._manifest_timeout
            )
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(target) from e
        if resp.status_code != 200:
            raise UpstreamUnavailable(target, resp.status_code)
        try:
            manifest = resp.json()
        except ValueError as e:
            raise ParseFailure(f"manifest is not JSON: {target}") from e
        if not isinstance(manifest, dict) or not manifest.get("id") or not manifest.get("name"):
            raise InvalidManifest("Invalid manifest: missing id or name")
        return manifest

    async def _collect(
        self, addon: AddonDescriptor, content_type: str, content_id: str
    ) -> list[StreamSource]:
        try:
            raw = await asyncio.wait_for(
                self.fetch_streams(addon.transport_url, content_type, content_id),
                timeout=self._timeout,
            )
        except TimeoutError:
            log.warning("addon_timeout", addon=addon.id, timeout=self._timeout)
            return []
        except (UpstreamUnavailable, ParseFailure) as e:
            log.warning("addon_failed", addon=addon.id, error=str(e))
            return []

        sources = []
        for descriptor in raw:
            source = normalize_stream(descriptor, addon.name)
            if source is not None:
                sources.append(source)
        log.debug("addon_streams", addon=addon.id, count=len(sources))
        return sources

    async def aggregate(
        self,
        addons: Sequence[AddonDescriptor],
        content_type: str,
        content_id: str,
    ) -> list[StreamSource]:
        enabled = [a for a in addons if a.enabled]
        if not enabled:
            return []

        results = await asyncio.gather(
            *(self._collect(a, content_type, content_id) for a in enabled),
            return_exceptions=True,
        )
        merged: list[StreamSource] = []
        for addon, result in zip(enabled, results):
            if isinstance(result, BaseException):
                log.error("addon_unexpected_error", addon=addon.id, error=repr(result))
                continue
            merged.extend(result)
        log.info(
            "addons_aggregated",
            addons=len(enabled),
            streams=len(merged),
            content_id=content_id,
        )
        return sort_sources(merged)
