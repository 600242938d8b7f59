"""Remembers which episode source was picked per (release, voiceover)."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from vidrelay.domain.ports.cache import CachePort

log = structlog.get_logger(__name__)

_KEY_PREFIX = "anime:source"


class SourceSelectionCache:
    """CachePort-backed selection cache with request coalescing.

    Concurrent lookups for the same key share one in-flight loader call.
    A loader returning None is not cached.
    """

    def __init__(self, cache: CachePort, *, ttl_seconds: int = 6 * 3600) -> None:
        self._cache = cache
        self._ttl = ttl_seconds
        self._inflight: dict[str, asyncio.Future[Any]] = {}

    @staticmethod
    def key(release_id: int, type_id: int) -> str:
        return f"{_KEY_PREFIX}:{release_id}:{type_id}"

    async def get_or_load(
        self, key: str, loader: Callable[[], Awaitable[dict[str, Any] | None]]
    ) -> dict[str, Any] | None:
        cached = await self._cache.get(key)
        if cached is not None:
            return cached

        pending = self._inflight.get(key)
        if pending is not None:
            log.debug("source_cache_coalesced", key=key)
            return await asyncio.shield(pending)

        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            value = await loader()
            if value is not None:
                await self._cache.set(key, value, ttl=self._ttl)
            future.set_result(value)
            return value
        except BaseException as exc:
            future.set_exception(exc)
            # Mark retrieved so an un-awaited future does not warn.
            future.exception()
            raise
        finally:
            self._inflight.pop(key, None)

    async def invalidate(self, key: str) -> None:
        await self._cache.delete(key)
