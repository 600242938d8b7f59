"""Upstream fetching for manifests and segments with spoofed headers.

CDNs behind the embed players insist on specific ``User-Agent``,
``Referer`` and ``Origin`` values on every sub-request. The bundle is
picked by explicit provider hint, then by upstream host, then falls back
to the configured default.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass
from urllib.parse import urlparse

import httpx
import structlog

from vidrelay.domain.exceptions import UpstreamUnavailable
from vidrelay.infrastructure.config.schema import ProvidersConfig

log = structlog.get_logger(__name__)

_FORWARDED_SEGMENT_HEADERS = ("content-type", "content-length", "content-range", "accept-ranges")


def select_headers(
    providers: ProvidersConfig, url: str, provider: str | None = None
) -> dict[str, str]:
    if provider and provider in providers.headers:
        return providers.headers[provider].as_headers()
    host = (urlparse(url).hostname or "").lower()
    for suffix, bundle_name in providers.host_headers.items():
        if host == suffix or host.endswith(f".{suffix}"):
            return providers.bundle(bundle_name).as_headers()
    return providers.bundle(None).as_headers()


@dataclass
class SegmentStream:
    """An open upstream segment response; ``body`` must be fully consumed or
    the stream closed via ``aclose``."""

    status_code: int
    headers: dict[str, str]
    body: AsyncIterator[bytes]
    _response: httpx.Response

    async def aclose(self) -> None:
        await self._response.aclose()


class HlsFetcher:
    def __init__(
        self,
        http_client: httpx.AsyncClient,
        providers: ProvidersConfig,
        *,
        max_concurrent: int = 50,
        timeout: float = 15.0,
        chunk_size: int = 65536,
    ) -> None:
        self._http = http_client
        self._providers = providers
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._timeout = timeout
        self._chunk_size = chunk_size

    def headers_for(self, url: str, provider: str | None = None) -> dict[str, str]:
        return select_headers(self._providers, url, provider)

    async def fetch_text(self, url: str, provider: str | None = None) -> str:
        """GET a manifest body.

        Raises:
            UpstreamUnavailable: network failure (status None) or non-2xx.
        """
        async with self._semaphore:
            try:
                resp = await self._http.get(
                    url, headers=self.headers_for(url, provider), timeout=self._timeout
                )
            except httpx.HTTPError as e:
                log.warning("hls_fetch_failed", url=url, error=str(e))
                raise UpstreamUnavailable(url) from e
        if not resp.is_success:
            log.warning("hls_fetch_status", url=url, status=resp.status_code)
            raise UpstreamUnavailable(url, resp.status_code)
        return resp.text

    async def fetch_bytes(self, url: str, provider: str | None = None) -> bytes:
        async with self._semaphore:
            try:
                resp = await self._http.get(
                    url, headers=self.headers_for(url, provider), timeout=self._timeout
                )
            except httpx.HTTPError as e:
                raise UpstreamUnavailable(url) from e
        if not resp.is_success:
            raise UpstreamUnavailable(url, resp.status_code)
        return resp.content

    async def open_stream(
        self,
        url: str,
        provider: str | None = None,
        *,
        range_header: str | None = None,
    ) -> SegmentStream:
        """Open a streaming GET, forwarding ``Range`` when given.

        Raises:
            UpstreamUnavailable: network failure or non-2xx status.
        """
        headers = self.headers_for(url, provider)
        if range_header:
            headers["Range"] = range_header

        request = self._http.build_request("GET", url, headers=headers)
        async with self._semaphore:
            try:
                resp = await self._http.send(request, stream=True)
            except httpx.HTTPError as e:
                log.warning("hls_stream_failed", url=url, error=str(e))
                raise UpstreamUnavailable(url) from e

        if not resp.is_success:
            await resp.aclose()
            raise UpstreamUnavailable(url, resp.status_code)

        forwarded = {
            name: resp.headers[name]
            for name in _FORWARDED_SEGMENT_HEADERS
            if name in resp.headers
        }

        async def _iter() -> AsyncIterator[bytes]:
            try:
                async for chunk in resp.aiter_bytes(chunk_size=self._chunk_size):
                    yield chunk
            finally:
                await resp.aclose()

        return SegmentStream(resp.status_code, forwarded, _iter(), resp)
