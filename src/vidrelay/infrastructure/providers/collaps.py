"""Embed-API decoder: catalog id -> HLS master URL + audio tracks.

The embed endpoint answers with an HTML page whose player config is an
inline ``makePlayer({...})`` literal. Movies carry ``source.hls``;
series carry ``playlist.seasons[].episodes[].hls`` keyed by season number
and a *string* episode number.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

import httpx
import structlog

from vidrelay.domain.entities import ContentRef, Translation
from vidrelay.domain.exceptions import ParseFailure
from vidrelay.infrastructure.providers.literal_parser import (
    JsArray,
    JsObject,
    JsValue,
    as_int,
    as_str,
    extract_call_argument,
    lookup,
)

log = structlog.get_logger(__name__)

PROVIDER_NAME = "collaps"

_BARE_URL_TEMPLATE = r"""https?://[^"'\s\\]+\.{ext}[^"'\s\\]*"""
_MANIFEST_URL_RE = re.compile(_BARE_URL_TEMPLATE.format(ext="m3u8"))
_MP4_URL_RE = re.compile(_BARE_URL_TEMPLATE.format(ext="mp4"))


def clean_stream_url(url: str) -> str:
    """Reverse leftover string-literal escaping in an extracted URL."""
    return (
        url.replace("\\u0026", "&")
        .replace("\\u003d", "=")
        .replace("\\/", "/")
        .replace('\\"', '"')
        .replace("\\", "")
    )


def find_manifest_urls(html: str) -> list[str]:
    """Bare ``.m3u8`` URLs anywhere in a page, cleaned, in page order."""
    urls: list[str] = []
    for match in _MANIFEST_URL_RE.finditer(html):
        url = clean_stream_url(match.group(0))
        if url not in urls:
            urls.append(url)
    return urls


def find_mp4_url(html: str) -> str | None:
    match = _MP4_URL_RE.search(html)
    return clean_stream_url(match.group(0)) if match else None


@dataclass(frozen=True)
class EmbedStream:
    hls_url: str
    translations: list[Translation] = field(default_factory=list)


def _audio_translations(audio: JsValue | None) -> list[Translation]:
    """``{names: [...], order: [...]}`` -> Translations in selection order."""
    names = lookup(audio, "names")
    if not isinstance(names, JsArray):
        return []
    order = lookup(audio, "order")
    order_items = order.items if isinstance(order, JsArray) else ()

    translations = []
    for i, name_value in enumerate(names.items):
        name = as_str(name_value)
        if not name:
            continue
        audio_id = as_int(order_items[i]) if i < len(order_items) else None
        translations.append(
            Translation(
                id=str(audio_id if audio_id is not None else i),
                display_name=name,
                provider_name=PROVIDER_NAME,
            )
        )
    return translations


def _audios_list(audios: JsValue | None) -> list[Translation]:
    """Legacy ``audios: [{id, name}, ...]`` shape."""
    if not isinstance(audios, JsArray):
        return []
    translations = []
    for item in audios.items:
        name = as_str(lookup(item, "name"))
        audio_id = as_str(lookup(item, "id"))
        if name and audio_id:
            translations.append(
                Translation(id=audio_id, display_name=name, provider_name=PROVIDER_NAME)
            )
    return translations


def _dedupe_by_name(translations: list[Translation]) -> list[Translation]:
    seen: set[str] = set()
    out = []
    for t in translations:
        if t.display_name in seen:
            continue
        seen.add(t.display_name)
        out.append(t)
    return out


def _find_episode(config: JsValue, season: int, episode: int) -> JsValue | None:
    seasons = lookup(config, "playlist", "seasons")
    if not isinstance(seasons, JsArray):
        return None
    for season_value in seasons.items:
        if as_int(lookup(season_value, "season")) != season:
            continue
        episodes = lookup(season_value, "episodes")
        if not isinstance(episodes, JsArray):
            return None
        for episode_value in episodes.items:
            if as_int(lookup(episode_value, "episode")) == episode:
                return episode_value
    return None


def extract_embed_stream(config: JsValue, ref: ContentRef) -> EmbedStream | None:
    """Pick the HLS URL and audio tracks for ``ref`` out of the player config."""
    if not isinstance(config, JsObject):
        return None

    movie_hls = as_str(lookup(config, "source", "hls"))
    if movie_hls:
        translations = _audio_translations(lookup(config, "source", "audio"))
        if not translations:
            translations = _audios_list(lookup(config, "audios"))
        return EmbedStream(clean_stream_url(movie_hls), _dedupe_by_name(translations))

    if ref.is_episode:
        assert ref.season is not None and ref.episode is not None
        episode = _find_episode(config, ref.season, ref.episode)
        hls = as_str(lookup(episode, "hls"))
        if hls:
            translations = _audio_translations(lookup(episode, "audio"))
            if not translations:
                translations = _audios_list(lookup(config, "audios"))
            return EmbedStream(clean_stream_url(hls), _dedupe_by_name(translations))

    return None


class CollapsDecoder:
    """Fetches the embed page for a ContentRef and parses its player config."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        api_base: str = "https://api.delivembd.ws/embed/kp/",
        headers: dict[str, str] | None = None,
        timeout: float = 15.0,
    ) -> None:
        self._http = http_client
        self._api_base = api_base
        self._headers = headers or {}
        self._timeout = timeout

    @property
    def name(self) -> str:
        return PROVIDER_NAME

    def embed_url(self, ref: ContentRef) -> tuple[str, dict[str, str]]:
        params: dict[str, str] = {}
        if ref.audio_index is not None:
            params["audio"] = str(ref.audio_index)
        if ref.season is not None:
            params["season"] = str(ref.season)
        if ref.episode is not None:
            params["episode"] = str(ref.episode)
        return f"{self._api_base}{ref.catalog_id}", params

    async def resolve(self, ref: ContentRef) -> EmbedStream | None:
        url, params = self.embed_url(ref)
        try:
            resp = await self._http.get(
                url, params=params, headers=self._headers, timeout=self._timeout
            )
        except httpx.HTTPError:
            log.warning("collaps_request_failed", url=url)
            return None
        if resp.status_code != 200:
            log.warning("collaps_http_error", url=url, status=resp.status_code)
            return None

        page = resp.text
        try:
            config = extract_call_argument(page)
        except ParseFailure as e:
            log.warning("collaps_config_malformed", catalog_id=ref.catalog_id, error=str(e))
            config = None

        stream = extract_embed_stream(config, ref) if config is not None else None
        if stream is None:
            stream = self._scan_page(page, ref)
        if stream is None:
            log.info(
                "collaps_no_hls",
                catalog_id=ref.catalog_id,
                season=ref.season,
                episode=ref.episode,
            )
            return None

        log.debug(
            "collaps_resolved",
            catalog_id=ref.catalog_id,
            translations=len(stream.translations),
        )
        return stream

    def _scan_page(self, page: str, ref: ContentRef) -> EmbedStream | None:
        """Player config without an ``hls`` key: take the first bare manifest URL."""
        urls = find_manifest_urls(page)
        if not urls:
            return None
        log.info("collaps_bare_manifest", catalog_id=ref.catalog_id, found=len(urls))
        return EmbedStream(urls[0])
