"""Tests for the anime episode resolver and its source-selection cache."""

from __future__ import annotations

import asyncio

import httpx
import pytest
import respx

from vidrelay.infrastructure.persistence.source_cache import SourceSelectionCache
from vidrelay.infrastructure.providers.anixart import (
    AnixartEpisodeResolver,
    EpisodeLocation,
)

_API = "https://anime.example"

_SOURCES = {"sources": [{"id": 11, "name": "Kodik", "episodes_count": 12}, {"id": 12}]}
_EPISODES = {
    "episodes": [
        {"position": 1, "url": "//kodik.example/seria/1/abc/720p", "iframe": True},
        {"position": 2, "url": "https://cdn.example/ep2.mp4", "iframe": False},
    ]
}


class TestEpisodeLocation:
    def test_protocol_relative_url(self) -> None:
        loc = EpisodeLocation(url="//kodik.example/seria/1", iframe=True, source_id=1)
        assert loc.absolute_url == "https://kodik.example/seria/1"

    def test_absolute_url_untouched(self) -> None:
        loc = EpisodeLocation(url="https://a.example/x", iframe=False, source_id=1)
        assert loc.absolute_url == "https://a.example/x"


class TestSourceSelectionCache:
    def test_key_format(self) -> None:
        assert SourceSelectionCache.key(5, 2) == "anime:source:5:2"

    @pytest.mark.asyncio
    async def test_loads_once_then_serves_cached(self, memory_cache) -> None:
        cache = SourceSelectionCache(memory_cache, ttl_seconds=60)
        calls = 0

        async def loader():
            nonlocal calls
            calls += 1
            return {"source_id": 11}

        assert await cache.get_or_load("k", loader) == {"source_id": 11}
        assert await cache.get_or_load("k", loader) == {"source_id": 11}
        assert calls == 1
        assert memory_cache.ttls["k"] == 60

    @pytest.mark.asyncio
    async def test_concurrent_lookups_share_one_load(self, memory_cache) -> None:
        cache = SourceSelectionCache(memory_cache)
        calls = 0
        release = asyncio.Event()

        async def loader():
            nonlocal calls
            calls += 1
            await release.wait()
            return {"source_id": 7}

        tasks = [asyncio.create_task(cache.get_or_load("k", loader)) for _ in range(5)]
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(*tasks)

        assert calls == 1
        assert results == [{"source_id": 7}] * 5

    @pytest.mark.asyncio
    async def test_none_is_not_cached(self, memory_cache) -> None:
        cache = SourceSelectionCache(memory_cache)

        async def loader():
            return None

        assert await cache.get_or_load("k", loader) is None
        assert "k" not in memory_cache.data

    @pytest.mark.asyncio
    async def test_loader_error_propagates_to_all_waiters(self, memory_cache) -> None:
        cache = SourceSelectionCache(memory_cache)
        release = asyncio.Event()

        async def loader():
            await release.wait()
            raise RuntimeError("boom")

        tasks = [asyncio.create_task(cache.get_or_load("k", loader)) for _ in range(2)]
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert all(isinstance(r, RuntimeError) for r in results)

    @pytest.mark.asyncio
    async def test_invalidate(self, memory_cache) -> None:
        cache = SourceSelectionCache(memory_cache)
        await memory_cache.set("k", {"source_id": 1})
        await cache.invalidate("k")
        assert await memory_cache.get("k") is None


class TestAnixartEpisodeResolver:
    @respx.mock
    @pytest.mark.asyncio
    async def test_resolves_first_source(self, memory_cache) -> None:
        respx.get(f"{_API}/episode/100/3").respond(200, json=_SOURCES)
        respx.get(f"{_API}/episode/100/3/11").respond(200, json=_EPISODES)

        async with httpx.AsyncClient() as client:
            resolver = AnixartEpisodeResolver(
                client, SourceSelectionCache(memory_cache), api_base=_API
            )
            location = await resolver.resolve(100, 3, 1)

        assert location == EpisodeLocation(
            url="//kodik.example/seria/1/abc/720p", iframe=True, source_id=11
        )
        assert memory_cache.data["anime:source:100:3"]["source_id"] == 11

    @respx.mock
    @pytest.mark.asyncio
    async def test_selection_is_reused(self, memory_cache) -> None:
        sources = respx.get(f"{_API}/episode/100/3").respond(200, json=_SOURCES)
        respx.get(f"{_API}/episode/100/3/11").respond(200, json=_EPISODES)

        async with httpx.AsyncClient() as client:
            resolver = AnixartEpisodeResolver(
                client, SourceSelectionCache(memory_cache), api_base=_API
            )
            await resolver.resolve(100, 3, 1)
            second = await resolver.resolve(100, 3, 2)

        assert sources.call_count == 1
        assert second is not None
        assert second.iframe is False

    @respx.mock
    @pytest.mark.asyncio
    async def test_no_sources(self, memory_cache) -> None:
        respx.get(f"{_API}/episode/100/3").respond(200, json={"sources": []})

        async with httpx.AsyncClient() as client:
            resolver = AnixartEpisodeResolver(
                client, SourceSelectionCache(memory_cache), api_base=_API
            )
            assert await resolver.resolve(100, 3, 1) is None

        assert memory_cache.data == {}

    @respx.mock
    @pytest.mark.asyncio
    async def test_missing_episode(self, memory_cache) -> None:
        respx.get(f"{_API}/episode/100/3").respond(200, json=_SOURCES)
        respx.get(f"{_API}/episode/100/3/11").respond(200, json=_EPISODES)

        async with httpx.AsyncClient() as client:
            resolver = AnixartEpisodeResolver(
                client, SourceSelectionCache(memory_cache), api_base=_API
            )
            assert await resolver.resolve(100, 3, 99) is None

    @respx.mock
    @pytest.mark.asyncio
    async def test_network_error(self, memory_cache) -> None:
        respx.get(f"{_API}/episode/100/3").mock(side_effect=httpx.ConnectError("down"))

        async with httpx.AsyncClient() as client:
            resolver = AnixartEpisodeResolver(
                client, SourceSelectionCache(memory_cache), api_base=_API
            )
            assert await resolver.resolve(100, 3, 1) is None

    @respx.mock
    @pytest.mark.asyncio
    async def test_unreachable_source_is_forgotten(self, memory_cache) -> None:
        sources = respx.get(f"{_API}/episode/100/3").respond(200, json=_SOURCES)
        episodes = respx.get(f"{_API}/episode/100/3/11")
        episodes.side_effect = [httpx.Response(404), httpx.Response(200, json=_EPISODES)]

        async with httpx.AsyncClient() as client:
            resolver = AnixartEpisodeResolver(
                client, SourceSelectionCache(memory_cache), api_base=_API
            )
            assert await resolver.resolve(100, 3, 1) is None
            assert "anime:source:100:3" not in memory_cache.data

            location = await resolver.resolve(100, 3, 1)

        assert sources.call_count == 2
        assert location is not None
        assert location.source_id == 11
