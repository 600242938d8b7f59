"""HLS playlist helpers: proxy rewriting, variant selection, segment lists."""

from __future__ import annotations

import re
from urllib.parse import quote, urljoin, urlparse

from vidrelay.domain.entities import PlaylistVariant, SegmentRef

MANIFEST_CONTENT_TYPE = "application/vnd.apple.mpegurl"

_URI_ATTR_RE = re.compile(r'URI="([^"]+)"')
_BANDWIDTH_RE = re.compile(r"(?<![-A-Z])BANDWIDTH=(\d+)")
_STREAM_INF = "#EXT-X-STREAM-INF:"


def manifest_base(manifest_url: str) -> str:
    """Everything up to and including the last ``/`` of the URL path.

    >>> manifest_base("https://cdn.example/hls/abc/master.m3u8?t=1")
    'https://cdn.example/hls/abc/'
    """
    parsed = urlparse(manifest_url)
    path = parsed.path
    base_path = path[: path.rfind("/") + 1] if "/" in path else "/"
    return f"{parsed.scheme}://{parsed.netloc}{base_path}"


def resolve_uri(base: str, uri: str) -> str:
    if uri.startswith(("http://", "https://")):
        return uri
    return urljoin(base, uri)


def is_manifest_uri(url: str) -> bool:
    return ".m3u8" in url


class ProxyUrlBuilder:
    """Builds ``/proxy/manifest`` and ``/proxy/segment`` URLs.

    ``public_base`` is the externally visible origin of this service
    (``http://host:port``); with it the proxied URLs are absolute.
    """

    def __init__(
        self,
        public_base: str = "",
        *,
        provider: str | None = None,
        default_provider: str | None = None,
    ) -> None:
        self._base = public_base.rstrip("/")
        self._provider = provider if provider != default_provider else None

    def _build(self, route: str, url: str) -> str:
        proxied = f"{self._base}/proxy/{route}?url={quote(url, safe='')}"
        if self._provider:
            proxied += f"&provider={quote(self._provider, safe='')}"
        return proxied

    def manifest(self, url: str) -> str:
        return self._build("manifest", url)

    def segment(self, url: str) -> str:
        return self._build("segment", url)

    def route(self, url: str) -> str:
        return self.manifest(url) if is_manifest_uri(url) else self.segment(url)


def rewrite_manifest(content: str, manifest_url: str, proxy: ProxyUrlBuilder) -> str:
    """Route every URI in a playlist back through the proxy.

    - blank lines pass through unchanged
    - directive lines with ``URI="..."`` get each URI resolved and proxied
    - other directive lines pass through
    - URI lines are resolved and proxied by extension
    """
    base = manifest_base(manifest_url)

    def _rewrite_attr(match: re.Match[str]) -> str:
        return f'URI="{proxy.route(resolve_uri(base, match.group(1)))}"'

    out: list[str] = []
    for line in content.split("\n"):
        stripped = line.strip()
        if not stripped:
            out.append(line)
        elif stripped.startswith("#"):
            if 'URI="' in stripped:
                out.append(_URI_ATTR_RE.sub(_rewrite_attr, stripped))
            else:
                out.append(line)
        else:
            out.append(proxy.route(resolve_uri(base, stripped)))
    return "\n".join(out)


def parse_variants(content: str, manifest_url: str) -> list[PlaylistVariant]:
    """``#EXT-X-STREAM-INF`` entries in document order."""
    base = manifest_base(manifest_url)
    lines = [line.strip() for line in content.split("\n")]
    variants = []
    for i, line in enumerate(lines):
        if not line.startswith(_STREAM_INF):
            continue
        bw = _BANDWIDTH_RE.search(line)
        bandwidth = int(bw.group(1)) if bw else 0
        for follower in lines[i + 1 :]:
            if follower.startswith(_STREAM_INF):
                break
            if follower and not follower.startswith("#"):
                variants.append(PlaylistVariant(bandwidth, resolve_uri(base, follower)))
                break
    return variants


def select_variant(content: str, manifest_url: str) -> str:
    """URL of the highest-bandwidth variant (first one wins ties).

    A playlist without variant directives is already a media playlist,
    so ``manifest_url`` itself is returned.
    """
    best: PlaylistVariant | None = None
    for variant in parse_variants(content, manifest_url):
        if best is None or variant.bandwidth > best.bandwidth:
            best = variant
    return best.url if best is not None else manifest_url


def extract_segments(content: str, manifest_url: str) -> list[SegmentRef]:
    """Ordered absolute segment URLs of a media playlist."""
    base = manifest_base(manifest_url)
    segments = []
    for line in content.split("\n"):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        segments.append(SegmentRef(len(segments), resolve_uri(base, stripped)))
    return segments
