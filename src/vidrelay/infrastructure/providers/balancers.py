"""Stream extraction from the aggregator's iframe players.

Used when the embed API yields nothing. Collaps-family pages carry an
``hls: "..."`` option or a bare manifest URL; Alloha pages carry a bare
manifest URL, a ``fileList = JSON.parse('...')`` blob whose active file is
looked up on the file API, or a ``"file": "...m3u8"`` pair.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from vidrelay.domain.entities import PlayerInfo, StreamQuality
from vidrelay.domain.exceptions import ParseFailure
from vidrelay.infrastructure.addons.normalizer import quality_from_label
from vidrelay.infrastructure.providers.collaps import (
    clean_stream_url,
    find_manifest_urls,
    find_mp4_url,
)
from vidrelay.infrastructure.providers.literal_parser import JsString, parse_literal

log = structlog.get_logger(__name__)

DEFAULT_TRANSLATION = "Дублированный"

_HLS_OPTION_RE = re.compile(r"""hls:\s*["']([^"']+)["']""")
_FILE_LIST_RE = re.compile(r"""fileList\s*=\s*JSON\.parse\('((?:[^'\\]|\\.)+)'\)""")
_TOKEN_RE = re.compile(r"""token:\s*['"]([^'"]+)['"]""")
_FILE_KEY_RE = re.compile(r'"file"\s*:\s*"([^"]+\.m3u8[^"]*)"')
_ERROR_MARKERS = ("Ошибка", "контент не найден")

_COLLAPS_HOST_HINTS = ("variyt", "delivembd")
_ALLOHA_HOST_HINTS = ("alloha", "stloadi")


@dataclass(frozen=True)
class BalancerStream:
    url: str
    source: str
    quality: StreamQuality = StreamQuality.UNKNOWN
    translation: str = DEFAULT_TRANSLATION

    @property
    def is_manifest(self) -> bool:
        return ".m3u8" in self.url


def _relabel_quality(label: str | None, fallback: StreamQuality) -> StreamQuality:
    quality = quality_from_label(label or "")
    return fallback if quality is StreamQuality.UNKNOWN else quality


def player_family(player: PlayerInfo) -> str | None:
    """``"collaps"``, ``"alloha"`` or None for players we cannot read."""
    url = player.iframe_url.lower()
    if player.type == "Collaps" or any(h in url for h in _COLLAPS_HOST_HINTS):
        return "collaps"
    if player.type == "Alloha" or any(h in url for h in _ALLOHA_HOST_HINTS):
        return "alloha"
    return None


def parse_collaps_page(html: str) -> BalancerStream | None:
    match = _HLS_OPTION_RE.search(html)
    if match:
        return BalancerStream(clean_stream_url(match.group(1)), "collaps")
    manifests = find_manifest_urls(html)
    url = manifests[0] if manifests else find_mp4_url(html)
    if url is None:
        return None
    return BalancerStream(url, "collaps")


def parse_file_list(raw: str) -> dict[str, Any] | None:
    """Decode the single-quoted argument of ``JSON.parse('...')``.

    Raises:
        ParseFailure: the argument is not a valid literal.
    """
    text = parse_literal(f"'{raw}'")
    if not isinstance(text, JsString):
        return None
    value = parse_literal(text.value).to_python()
    return value if isinstance(value, dict) else None


@dataclass(frozen=True)
class AllohaFileRef:
    file_id: str
    token: str
    quality: str | None = None
    translation: str | None = None


def parse_alloha_page(html: str) -> BalancerStream | AllohaFileRef | None:
    """A stream found on the page itself, or the file to ask the API for."""
    if any(marker in html for marker in _ERROR_MARKERS):
        return None

    manifests = find_manifest_urls(html)
    if manifests:
        return BalancerStream(manifests[0], "alloha")

    file_match = _FILE_LIST_RE.search(html)
    token_match = _TOKEN_RE.search(html)
    if file_match and token_match:
        try:
            file_list = parse_file_list(file_match.group(1))
        except ParseFailure as e:
            log.warning("alloha_file_list_malformed", error=str(e))
            file_list = None
        active = file_list.get("active") if file_list else None
        if isinstance(active, dict) and active.get("id") is not None:
            return AllohaFileRef(
                file_id=str(active["id"]),
                token=token_match.group(1),
                quality=active.get("quality") or None,
                translation=active.get("translation") or None,
            )

    match = _FILE_KEY_RE.search(html)
    if match:
        return BalancerStream(clean_stream_url(match.group(1)), "alloha")
    return None


class BalancerResolver:
    """Reads one aggregator player page into a playable stream.

    Every failure is logged and reported as None.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        alloha_api: str = "https://theatre.stloadi.live",
        headers: dict[str, str] | None = None,
        timeout: float = 15.0,
        file_api_timeout: float = 5.0,
    ) -> None:
        self._http = http_client
        self._alloha_api = alloha_api.rstrip("/")
        self._headers = headers or {}
        self._timeout = timeout
        self._file_api_timeout = file_api_timeout

    @property
    def name(self) -> str:
        return "balancers"

    async def resolve(self, player: PlayerInfo) -> BalancerStream | None:
        """Stream for ``player``, labelled with the player's translation and quality."""
        family = player_family(player)
        if family is None:
            log.debug("balancer_unsupported", type=player.type)
            return None

        page = await self._get_page(player.iframe_url)
        if page is None:
            return None

        if family == "collaps":
            stream = parse_collaps_page(page)
        else:
            found = parse_alloha_page(page)
            stream = await self._fetch_file(found) if isinstance(found, AllohaFileRef) else found
        if stream is None:
            log.info("balancer_no_stream", type=player.type, url=player.iframe_url)
            return None

        return BalancerStream(
            url=stream.url,
            source=stream.source,
            quality=_relabel_quality(player.quality, stream.quality),
            translation=player.translation or stream.translation,
        )

    async def _get_page(self, url: str) -> str | None:
        try:
            resp = await self._http.get(url, headers=self._headers, timeout=self._timeout)
        except httpx.HTTPError:
            log.warning("balancer_request_failed", url=url)
            return None
        if resp.status_code != 200:
            log.warning("balancer_http_error", url=url, status=resp.status_code)
            return None
        return resp.text

    async def _fetch_file(self, ref: AllohaFileRef) -> BalancerStream | None:
        url = f"{self._alloha_api}/api/file/{ref.file_id}"
        headers = {**self._headers, "Referer": self._alloha_api, "X-Token": ref.token}
        try:
            resp = await self._http.get(url, headers=headers, timeout=self._file_api_timeout)
        except httpx.HTTPError:
            log.warning("alloha_file_request_failed", file_id=ref.file_id)
            return None
        if resp.status_code != 200:
            log.info("alloha_file_unavailable", file_id=ref.file_id, status=resp.status_code)
            return None
        try:
            data = resp.json()
        except ValueError:
            log.warning("alloha_file_not_json", file_id=ref.file_id)
            return None

        target = (data.get("url") or data.get("file")) if isinstance(data, dict) else None
        if not target:
            return None
        return BalancerStream(
            clean_stream_url(str(target)),
            "alloha",
            quality=quality_from_label(ref.quality or ""),
            translation=ref.translation or DEFAULT_TRANSLATION,
        )
