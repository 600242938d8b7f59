"""Page-scraping decoder for rezka-style sites.

Three steps, each tolerant of failure:

- search: POST ``q=`` to ``/engine/ajax/search.php`` on each mirror in
  priority order; the first mirror that yields parsed results wins.
- page: scrape ``data-post_id`` and the translator list from the title page.
- stream: POST ``/ajax/get_cdn_series/`` and decode the obfuscated
  ``url`` field into ``{quality: mp4_url}``.

Mirrors:
    hdrezka.ag, rezka.ag, hdrezka.me, hdrezka.co
"""

from __future__ import annotations

import base64
import binascii
import itertools
import re
from collections.abc import Sequence
from urllib.parse import urlparse

import httpx
import structlog

from vidrelay.domain.entities import (
    RezkaPage,
    RezkaSearchResult,
    RezkaStream,
    RezkaTranslation,
)

log = structlog.get_logger(__name__)

_SEARCH_ITEM_RE = re.compile(
    r'<li>.*?<a href="([^"]+)"[^>]*>.*?<span class="enty">([^<]+)</span>.*?</li>',
    re.DOTALL,
)
_YEAR_RE = re.compile(r"\((\d{4})\)")
_YEAR_STRIP_RE = re.compile(r"\s*\(\d{4}\)\s*")
_POST_ID_RE = re.compile(r'data-post_id="(\d+)"')
_TRANSLATOR_RE = re.compile(r'<li[^>]*data-translator_id="(\d+)"[^>]*title="([^"]+)"')
_TRANSLATOR_ALT_RE = re.compile(
    r'<li[^>]*class="b-translator__item[^"]*"[^>]*data-translator_id="(\d+)"[^>]*>([^<]+)'
)
_QUALITY_TAG_RE = re.compile(r"\[(\d+p)[^\]]*\]")
_MP4_URL_RE = re.compile(r"(https?://[^\s,]+\.mp4)")

_TRASH_SYMBOLS = ("@", "#", "!", "^", "$")


def _trash_tokens() -> list[str]:
    tokens = []
    for size in (2, 3):
        for combo in itertools.product(_TRASH_SYMBOLS, repeat=size):
            tokens.append(base64.b64encode("".join(combo).encode()).decode())
    return tokens


_TRASH_TOKENS = _trash_tokens()


def decode_stream_payload(encoded: str) -> str:
    """Undo the trash-combination obfuscation. Returns ``""`` on failure."""
    cleaned = encoded.replace("#h", "", 1).replace("//_//", "")
    for token in _TRASH_TOKENS:
        cleaned = cleaned.replace(token, "")
    cleaned += "=" * (-len(cleaned) % 4)
    try:
        return base64.b64decode(cleaned, validate=False).decode("utf-8", "replace")
    except (binascii.Error, ValueError):
        return ""


def parse_qualities(text: str) -> dict[str, str]:
    """``[720p]https://.../a.mp4:hls:...,[1080p]...`` -> ``{quality: mp4}``."""
    qualities: dict[str, str] = {}
    for part in text.split(","):
        quality = _QUALITY_TAG_RE.search(part)
        url = _MP4_URL_RE.search(part)
        if quality and url:
            qualities[quality.group(1)] = url.group(1)
    return qualities


def parse_search_results(html: str) -> list[RezkaSearchResult]:
    results = []
    for href, raw_title in _SEARCH_ITEM_RE.findall(html):
        full_title = raw_title.strip()
        year_match = _YEAR_RE.search(full_title)
        results.append(
            RezkaSearchResult(
                url=href,
                title=_YEAR_STRIP_RE.sub(" ", full_title, count=1).strip(),
                year=int(year_match.group(1)) if year_match else None,
            )
        )
    return results


def parse_page_html(html: str) -> RezkaPage | None:
    id_match = _POST_ID_RE.search(html)
    if not id_match:
        return None

    translations = [
        RezkaTranslation(id=int(tid), title=title)
        for tid, title in _TRANSLATOR_RE.findall(html)
    ]
    if not translations:
        translations = [
            RezkaTranslation(id=int(tid), title=title.strip())
            for tid, title in _TRANSLATOR_ALT_RE.findall(html)
        ]
    return RezkaPage(id=id_match.group(1), translations=translations)


class RezkaDecoder:
    """Search, page scraping and stream decoding across mirrors."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        mirrors: Sequence[str] = (
            "https://hdrezka.ag",
            "https://rezka.ag",
            "https://hdrezka.me",
            "https://hdrezka.co",
        ),
        headers: dict[str, str] | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._http = http_client
        self._mirrors = [m.rstrip("/") for m in mirrors]
        self._headers = headers or {}
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "rezka"

    async def search(self, title: str, year: int | None = None) -> list[RezkaSearchResult]:
        results: list[RezkaSearchResult] = []
        for mirror in self._mirrors:
            url = f"{mirror}/engine/ajax/search.php"
            try:
                resp = await self._http.post(
                    url, data={"q": title}, headers=self._headers, timeout=self._timeout
                )
            except httpx.HTTPError:
                log.warning("rezka_search_failed", mirror=mirror)
                continue
            if resp.status_code != 200:
                log.warning("rezka_search_status", mirror=mirror, status=resp.status_code)
                continue
            results = parse_search_results(resp.text)
            if results:
                log.info("rezka_search_hit", mirror=mirror, results=len(results))
                break

        if year is not None:
            results = [r for r in results if r.year is None or r.year == year]
        return results

    async def parse_page(self, url: str) -> RezkaPage | None:
        try:
            resp = await self._http.get(url, headers=self._headers, timeout=self._timeout)
        except httpx.HTTPError:
            log.warning("rezka_page_failed", url=url)
            return None
        if resp.status_code != 200:
            log.warning("rezka_page_status", url=url, status=resp.status_code)
            return None

        page = parse_page_html(resp.text)
        if page is None:
            log.warning("rezka_post_id_missing", url=url)
        return page

    async def get_stream(
        self,
        page_url: str,
        content_id: str,
        translator_id: int,
        translations: Sequence[RezkaTranslation] = (),
    ) -> RezkaStream | None:
        parsed = urlparse(page_url)
        endpoint = f"{parsed.scheme}://{parsed.netloc}/ajax/get_cdn_series/"
        try:
            resp = await self._http.post(
                endpoint,
                data={
                    "id": content_id,
                    "translator_id": str(translator_id),
                    "action": "get_movie",
                },
                headers={**self._headers, "X-Requested-With": "XMLHttpRequest"},
                timeout=self._timeout,
            )
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError:
            log.warning("rezka_stream_failed", url=endpoint, translator_id=translator_id)
            return None
        except ValueError:
            log.warning("rezka_stream_not_json", url=endpoint)
            return None

        encoded = data.get("url") if isinstance(data, dict) else None
        if not encoded:
            log.info("rezka_stream_empty", content_id=content_id, translator_id=translator_id)
            return None

        qualities = parse_qualities(decode_stream_payload(str(encoded)))
        if not qualities:
            log.warning("rezka_stream_undecodable", content_id=content_id)
        return RezkaStream(
            qualities=qualities,
            translations=list(translations),
            default_translation=translator_id,
        )

    async def resolve_stream(
        self, page_url: str, translator_id: int | None = None
    ) -> RezkaStream | None:
        """Page + stream in one go, defaulting to the first translation."""
        page = await self.parse_page(page_url)
        if page is None:
            return None
        selected = translator_id
        if selected is None and page.translations:
            selected = page.translations[0].id
        if selected is None:
            log.info("rezka_no_translations", url=page_url)
            return None
        return await self.get_stream(page_url, page.id, selected, page.translations)
