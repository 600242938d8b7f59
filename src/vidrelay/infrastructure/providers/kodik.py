"""URL-pattern decoder for kodik-style embed players.

Embed URLs look like::

    //kodik.info/seria/123456/0a1b2c3d4e/720p
    https://aniqit.com/video/98765/ffeedd/1080p

Resolution happens in three steps:

1. Fetch the player page (embed host first, then mirrors) and pull out
   ``urlParams``, the bundled player script path and the inline
   ``.type/.id/.hash`` overrides.
2. Discover the link API path from the player script
   (``type:"POST",url:atob("...")``), falling back to the known paths.
3. Call the link API across hosts and methods until one answers with a
   non-empty ``links`` map, then decrypt every ``src`` (ROT18 + base64).

Mirrors:
    kodik.info, aniqit.com, kodik.cc, kodik.biz
"""

from __future__ import annotations

import base64
import binascii
import json
import re
from collections.abc import Iterable, Sequence
from typing import Any
from urllib.parse import urlparse

import httpx
import structlog

from vidrelay.domain.entities import EmbedRef, ProviderLink

log = structlog.get_logger(__name__)

_EMBED_RE = re.compile(
    r"^(?:https?:|)//([a-z0-9]+\.[a-z]+)/([a-z]+)/(\d+)/([0-9a-z]+)/(\d+p)"
)
_URL_PARAMS_RE = re.compile(r"var\s+urlParams\s*=\s*'([^']+)'")
_PLAYER_SCRIPT_RE = re.compile(r'src="(/assets/js/app\.player_single\.[a-z0-9]+\.js)"')
_INLINE_TYPE_RE = re.compile(r"\.type\s*=\s*'([^']+)'")
_INLINE_ID_RE = re.compile(r"\.id\s*=\s*'([^']+)'")
_INLINE_HASH_RE = re.compile(r"\.hash\s*=\s*'([^']+)'")
_ENDPOINT_RE = re.compile(
    r'type:\s*"POST"\s*,\s*url:\s*atob\("([^"]+)"\)', re.IGNORECASE
)

_KNOWN_ROTATION = 18
_MEDIA_MARKERS = ("mp4", "hls", "manifest", ".m3u8")


def parse_embed_url(url: str) -> EmbedRef | None:
    """Split an embed URL into host/type/id/hash/quality.

    Falls back to a permissive parse (at least three path parts, quality
    defaulting to ``720p``) for URLs the strict pattern rejects.
    """
    match = _EMBED_RE.match(url)
    if match:
        return EmbedRef(*match.groups())

    full = f"https:{url}" if url.startswith("//") else url
    parsed = urlparse(full)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return None
    parts = [p for p in parsed.path.split("/") if p]
    if len(parts) < 3:
        return None
    quality = parts[3] if len(parts) > 3 else "720p"
    return EmbedRef(
        host=parsed.netloc,
        type=parts[0],
        id=parts[1],
        hash=parts[2],
        quality=quality,
    )


def _rotate(text: str, shift: int) -> str:
    out = []
    for ch in text:
        if "A" <= ch <= "Z":
            out.append(chr((ord(ch) - 65 + shift) % 26 + 65))
        elif "a" <= ch <= "z":
            out.append(chr((ord(ch) - 97 + shift) % 26 + 97))
        else:
            out.append(ch)
    return "".join(out)


def _b64decode_lenient(text: str) -> str:
    normalized = text.replace("-", "+").replace("_", "/")
    normalized += "=" * (-len(normalized) % 4)
    return base64.b64decode(normalized, validate=False).decode("utf-8")


def _rotations() -> Iterable[int]:
    yield _KNOWN_ROTATION
    for shift in range(26):
        if shift != _KNOWN_ROTATION:
            yield shift


def decrypt_source(encrypted: str) -> str | None:
    """Decrypt one obfuscated ``src`` value.

    The known rotation is tried first; the other 25 only when its output
    does not look like a media URL. Returns None when no rotation yields
    one.
    """
    for shift in _rotations():
        try:
            decoded = _b64decode_lenient(_rotate(encrypted, shift))
        except (binascii.Error, UnicodeDecodeError, ValueError):
            continue
        if any(marker in decoded for marker in _MEDIA_MARKERS):
            if shift != _KNOWN_ROTATION:
                log.info("kodik_rotation_changed", rotation=shift)
            return decoded
    return None


def _quality_key(link: ProviderLink) -> int:
    digits = re.match(r"\d+", link.quality)
    return int(digits.group(0)) if digits else 0


def decrypt_links(links: dict[str, Any]) -> list[ProviderLink]:
    """Decrypt a ``links`` map into ProviderLinks sorted best quality first."""
    results: list[ProviderLink] = []
    for quality, sources in links.items():
        if quality == "default" or not isinstance(sources, list):
            continue
        for source in sources:
            if not isinstance(source, dict):
                continue
            src = source.get("src")
            kind = source.get("type")
            if not src or not kind:
                continue
            url = decrypt_source(str(src))
            if url is None:
                log.debug("kodik_source_undecodable", quality=quality)
                continue
            if url.startswith("//"):
                url = f"https:{url}"
            results.append(ProviderLink(quality=str(quality), url=url, type=str(kind)))
    results.sort(key=_quality_key, reverse=True)
    return results


class KodikDecoder:
    """Resolves an embed URL to decrypted, quality-sorted links.

    Never raises for upstream trouble: an exhausted host/method/path
    matrix yields an empty list.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        mirrors: Sequence[str] = ("kodik.info", "aniqit.com", "kodik.cc", "kodik.biz"),
        fallback_paths: Sequence[str] = ("/ftor", "/kor", "/gvi", "/seria"),
        headers: dict[str, str] | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._http = http_client
        self._mirrors = list(mirrors)
        self._fallback_paths = list(fallback_paths)
        self._headers = headers or {}
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "kodik"

    def _hosts(self, primary: str) -> list[str]:
        return [primary, *(m for m in self._mirrors if m != primary)]

    async def _fetch_player_page(self, ref: EmbedRef) -> tuple[dict[str, Any], str | None, EmbedRef]:
        for host in self._hosts(ref.host):
            url = f"https://{host}/{ref.type}/{ref.id}/{ref.hash}/{ref.quality}"
            try:
                resp = await self._http.get(url, headers=self._headers, timeout=self._timeout)
            except httpx.HTTPError:
                log.warning("kodik_player_page_failed", url=url)
                continue
            if resp.status_code != 200:
                log.debug("kodik_player_page_status", url=url, status=resp.status_code)
                continue

            html = resp.text
            url_params: dict[str, Any] = {}
            params_match = _URL_PARAMS_RE.search(html)
            if params_match:
                try:
                    parsed = json.loads(params_match.group(1))
                except json.JSONDecodeError:
                    log.warning("kodik_url_params_invalid", url=url)
                else:
                    if isinstance(parsed, dict):
                        url_params = parsed

            script = _PLAYER_SCRIPT_RE.search(html)
            type_match = _INLINE_TYPE_RE.search(html)
            id_match = _INLINE_ID_RE.search(html)
            hash_match = _INLINE_HASH_RE.search(html)
            effective = EmbedRef(
                host=ref.host,
                type=type_match.group(1) if type_match else ref.type,
                id=id_match.group(1) if id_match else ref.id,
                hash=hash_match.group(1) if hash_match else ref.hash,
                quality=ref.quality,
            )
            return url_params, script.group(1) if script else None, effective

        return {}, None, ref

    async def discover_endpoint(self, host: str, script_path: str | None) -> str | None:
        """Read the link API path out of the player bundle, or None."""
        if not script_path:
            return None
        url = f"https://{host}{script_path}"
        try:
            resp = await self._http.get(url, headers=self._headers, timeout=self._timeout)
        except httpx.HTTPError:
            log.warning("kodik_player_script_failed", url=url)
            return None

        match = _ENDPOINT_RE.search(resp.text)
        if not match:
            log.info("kodik_endpoint_not_found", url=url)
            return None
        try:
            path = base64.b64decode(match.group(1)).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            log.warning("kodik_endpoint_undecodable", url=url)
            return None
        return path if path.startswith("/") else None

    async def _request_links(
        self, host: str, method: str, path: str, body: dict[str, str]
    ) -> dict[str, Any] | None:
        url = f"https://{host}{path}"
        headers = {
            **self._headers,
            "Referer": f"https://{host}/",
            "Origin": f"https://{host}",
        }
        try:
            if method == "POST":
                resp = await self._http.post(
                    url, data=body, headers=headers, timeout=self._timeout
                )
            else:
                resp = await self._http.get(
                    url, params=body, headers=headers, timeout=self._timeout
                )
        except httpx.HTTPError:
            log.debug("kodik_links_request_failed", url=url, method=method)
            return None
        if resp.status_code != 200:
            return None
        try:
            data = resp.json()
        except ValueError:
            return None
        links = data.get("links") if isinstance(data, dict) else None
        if isinstance(links, dict) and links:
            return links
        return None

    async def fetch_links(
        self,
        ref: EmbedRef,
        url_params: dict[str, Any],
        paths: Sequence[str],
    ) -> dict[str, Any] | None:
        """Walk hosts x methods x paths until a non-empty ``links`` map."""
        body = {str(k): str(v) for k, v in url_params.items()}
        body.update(
            type=ref.type,
            id=ref.id,
            hash=ref.hash,
            bad_user="true",
            cdn_is_working="true",
        )
        for host in self._hosts(ref.host):
            for method in ("POST", "GET"):
                for path in paths:
                    links = await self._request_links(host, method, path, body)
                    if links is not None:
                        log.info("kodik_links_found", host=host, method=method, path=path)
                        return links
        return None

    async def resolve(self, url: str) -> list[ProviderLink]:
        ref = parse_embed_url(url)
        if ref is None:
            log.warning("kodik_invalid_url", url=url)
            return []

        url_params, script_path, effective = await self._fetch_player_page(ref)
        discovered = await self.discover_endpoint(ref.host, script_path)
        paths = [discovered] if discovered else []
        paths.extend(p for p in self._fallback_paths if p not in paths)

        links = await self.fetch_links(effective, url_params, paths)
        if links is None:
            log.warning("kodik_links_exhausted", url=url, paths=paths)
            return []

        results = decrypt_links(links)
        log.info("kodik_resolved", url=url, links=len(results))
        return results
