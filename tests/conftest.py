"""Shared test fixtures for the vidrelay test suite."""

from __future__ import annotations

from typing import Any

import pytest

from vidrelay.domain.entities import ContentRef, StreamQuality, StreamSource

# ---------------------------------------------------------------------------
# In-memory CachePort
# ---------------------------------------------------------------------------


class MemoryCache:
    """Dict-backed CachePort; records the TTL of every write."""

    def __init__(self) -> None:
        self.data: dict[str, Any] = {}
        self.ttls: dict[str, int | None] = {}

    async def get(self, key: str) -> Any:
        return self.data.get(key)

    async def set(self, key: str, value: Any, *, ttl: int | None = None) -> None:
        self.data[key] = value
        self.ttls[key] = ttl

    async def delete(self, key: str) -> bool:
        self.ttls.pop(key, None)
        return self.data.pop(key, None) is not None

    async def clear(self) -> None:
        self.data.clear()
        self.ttls.clear()

    async def aclose(self) -> None:
        pass

    async def __aenter__(self) -> MemoryCache:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        pass


@pytest.fixture()
def memory_cache() -> MemoryCache:
    return MemoryCache()


# ---------------------------------------------------------------------------
# Domain entity fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def movie_ref() -> ContentRef:
    return ContentRef(catalog_id=301)


@pytest.fixture()
def episode_ref() -> ContentRef:
    return ContentRef(catalog_id=77, season=1, episode=2, audio_index=0)


@pytest.fixture()
def stream_source() -> StreamSource:
    """Minimal valid direct-URL source."""
    return StreamSource(
        provider_name="Example Addon",
        url="https://cdn.example/movie.mp4",
        quality=StreamQuality.FHD_1080P,
        translation_label="Example 1080p",
        size_bytes=4_500_000_000,
    )


# ---------------------------------------------------------------------------
# Manifests
# ---------------------------------------------------------------------------

MASTER_MANIFEST = """#EXTM3U
#EXT-X-STREAM-INF:BANDWIDTH=800000,RESOLUTION=640x360
low/index.m3u8
#EXT-X-STREAM-INF:BANDWIDTH=2800000,RESOLUTION=1280x720
https://cdn.example/hls/high/index.m3u8
"""

MEDIA_MANIFEST = """#EXTM3U
#EXT-X-VERSION:3
#EXT-X-TARGETDURATION:10
#EXT-X-KEY:METHOD=AES-128,URI="key.bin"
#EXTINF:10.0,
seg-0.ts
#EXTINF:10.0,
seg-1.ts
#EXTINF:4.5,
/abs/seg-2.ts
#EXT-X-ENDLIST
"""


@pytest.fixture()
def master_manifest() -> str:
    return MASTER_MANIFEST


@pytest.fixture()
def media_manifest() -> str:
    return MEDIA_MANIFEST
