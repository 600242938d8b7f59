"""Anime episode source resolver.

The catalog API exposes episodes in three hops::

    /episode/{release}                      voiceover types
    /episode/{release}/{type}               sources (players) for a type
    /episode/{release}/{type}/{source}      episodes {position, url, iframe}

The first listed source is selected and remembered per (release, type).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from vidrelay.infrastructure.persistence.source_cache import SourceSelectionCache

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class EpisodeLocation:
    url: str
    iframe: bool
    source_id: int

    @property
    def absolute_url(self) -> str:
        return f"https:{self.url}" if self.url.startswith("//") else self.url


class AnixartEpisodeResolver:
    def __init__(
        self,
        http_client: httpx.AsyncClient,
        source_cache: SourceSelectionCache,
        *,
        api_base: str = "https://api.anixart.tv",
        headers: dict[str, str] | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._http = http_client
        self._sources = source_cache
        self._api_base = api_base.rstrip("/")
        self._headers = headers or {}
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "anixart"

    async def _get_json(self, path: str) -> dict[str, Any] | None:
        url = f"{self._api_base}{path}"
        try:
            resp = await self._http.get(url, headers=self._headers, timeout=self._timeout)
        except httpx.HTTPError:
            log.warning("anixart_request_failed", url=url)
            return None
        if resp.status_code != 200 or not resp.content:
            log.warning("anixart_http_error", url=url, status=resp.status_code)
            return None
        try:
            data = resp.json()
        except ValueError:
            log.warning("anixart_not_json", url=url)
            return None
        return data if isinstance(data, dict) else None

    async def sources(self, release_id: int, type_id: int) -> list[dict[str, Any]]:
        data = await self._get_json(f"/episode/{release_id}/{type_id}")
        sources = (data or {}).get("sources") or []
        return [s for s in sources if isinstance(s, dict) and "id" in s]

    async def _select_source(self, release_id: int, type_id: int) -> dict[str, Any] | None:
        async def load() -> dict[str, Any] | None:
            sources = await self.sources(release_id, type_id)
            if not sources:
                return None
            first = sources[0]
            return {
                "source_id": int(first["id"]),
                "episodes_count": first.get("episodes_count"),
            }

        return await self._sources.get_or_load(
            SourceSelectionCache.key(release_id, type_id), load
        )

    async def resolve(
        self, release_id: int, type_id: int, episode: int
    ) -> EpisodeLocation | None:
        selection = await self._select_source(release_id, type_id)
        if selection is None:
            log.info("anixart_no_sources", release=release_id, type=type_id)
            return None

        source_id = selection["source_id"]
        data = await self._get_json(f"/episode/{release_id}/{type_id}/{source_id}")
        if data is None:
            # Remembered source no longer answers; pick again next time.
            log.info(
                "anixart_source_dropped", release=release_id, type=type_id, source=source_id
            )
            await self._sources.invalidate(SourceSelectionCache.key(release_id, type_id))
            return None
        for item in data.get("episodes") or []:
            if isinstance(item, dict) and item.get("position") == episode and item.get("url"):
                return EpisodeLocation(
                    url=str(item["url"]),
                    iframe=bool(item.get("iframe")),
                    source_id=source_id,
                )

        log.info("anixart_episode_missing", release=release_id, type=type_id, episode=episode)
        return None
