"""Iframe player aggregator client (fallback players)."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from vidrelay.domain.entities import ContentRef, PlayerInfo, Translation

log = structlog.get_logger(__name__)

_UNKNOWN_TRANSLATION = "Неизвестно"


def parse_players(payload: Any) -> list[PlayerInfo]:
    """Keep entries with an iframe URL; label from their first translation."""
    entries = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(entries, list):
        return []

    players = []
    for entry in entries:
        if not isinstance(entry, dict) or not entry.get("iframeUrl"):
            continue
        translations = entry.get("translations") or []
        first = translations[0] if translations and isinstance(translations[0], dict) else {}
        players.append(
            PlayerInfo(
                type=str(entry.get("type") or "unknown"),
                iframe_url=str(entry["iframeUrl"]),
                translation=first.get("name") or _UNKNOWN_TRANSLATION,
                quality=first.get("quality") or "HD",
            )
        )
    return players


def parse_translations(payload: Any, player_type: str = "Collaps") -> list[Translation]:
    """Translations the aggregator lists for one player type."""
    entries = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(entries, list):
        return []
    out = []
    for entry in entries:
        if not isinstance(entry, dict) or entry.get("type") != player_type:
            continue
        for t in entry.get("translations") or []:
            if isinstance(t, dict) and t.get("name") and t.get("id"):
                out.append(
                    Translation(
                        id=str(t["id"]),
                        display_name=str(t["name"]),
                        quality=t.get("quality") or "HD",
                        provider_name=player_type.lower(),
                    )
                )
    return out


class KinoboxClient:
    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        api_url: str = "https://fbphdplay.top/api/players",
        headers: dict[str, str] | None = None,
        timeout: float = 15.0,
    ) -> None:
        self._http = http_client
        self._api_url = api_url
        self._headers = headers or {}
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "kinobox"

    async def fetch(self, ref: ContentRef) -> Any:
        """Raw aggregator payload, or None on any failure."""
        params = {"kinopoisk": str(ref.catalog_id)}
        if ref.is_episode:
            params["season"] = str(ref.season)
            params["episode"] = str(ref.episode)
        try:
            resp = await self._http.get(
                self._api_url, params=params, headers=self._headers, timeout=self._timeout
            )
        except httpx.HTTPError:
            log.warning("kinobox_request_failed", catalog_id=ref.catalog_id)
            return None
        if resp.status_code != 200:
            log.warning("kinobox_http_error", catalog_id=ref.catalog_id, status=resp.status_code)
            return None
        try:
            return resp.json()
        except ValueError:
            log.warning("kinobox_not_json", catalog_id=ref.catalog_id)
            return None

    async def players(self, ref: ContentRef) -> list[PlayerInfo]:
        return parse_players(await self.fetch(ref))
