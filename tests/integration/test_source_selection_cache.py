"""SourceSelectionCache and the download segment-list cache on a real diskcache."""

from __future__ import annotations

import asyncio

import pytest

from vidrelay.infrastructure.cache.diskcache_adapter import DiskcacheAdapter
from vidrelay.infrastructure.persistence.source_cache import SourceSelectionCache

pytestmark = pytest.mark.integration


class TestSourceSelectionOnDisk:
    async def test_selection_survives_reopen(self, diskcache: DiskcacheAdapter) -> None:
        cache = SourceSelectionCache(diskcache, ttl_seconds=60)
        key = SourceSelectionCache.key(100, 3)

        async def loader():
            return {"source_id": 11, "episodes_count": 12}

        await cache.get_or_load(key, loader)

        reopened = DiskcacheAdapter(directory=diskcache.directory)
        async with reopened:
            assert await reopened.get(key) == {"source_id": 11, "episodes_count": 12}

    async def test_concurrent_first_lookups(self, diskcache: DiskcacheAdapter) -> None:
        cache = SourceSelectionCache(diskcache)
        calls = 0

        async def loader():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.05)
            return {"source_id": 7}

        results = await asyncio.gather(
            *(cache.get_or_load("anime:source:1:1", loader) for _ in range(4))
        )

        assert calls == 1
        assert all(r == {"source_id": 7} for r in results)

    async def test_entries_expire(self, diskcache: DiskcacheAdapter) -> None:
        await diskcache.set("anime:source:2:2", {"source_id": 1}, ttl=1)
        await asyncio.sleep(1.2)
        assert await diskcache.get("anime:source:2:2") is None
