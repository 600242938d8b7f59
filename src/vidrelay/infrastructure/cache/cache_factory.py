"""Builds the configured cache adapter."""

from __future__ import annotations

from typing import Literal

import structlog

from vidrelay.domain.ports.cache import CachePort
from vidrelay.infrastructure.cache.diskcache_adapter import DiskcacheAdapter
from vidrelay.infrastructure.cache.redis_adapter import RedisAdapter

log = structlog.get_logger(__name__)

CacheBackend = Literal["diskcache", "redis"]

_REDIS_MAX_CONCURRENT = 50


def create_cache(
    backend: CacheBackend = "diskcache",
    *,
    directory: str = "./.cache/vidrelay",
    redis_url: str = "redis://localhost:6379/0",
    ttl_seconds: int = 3600,
    max_concurrent: int = 10,
) -> CachePort:
    """Create the cache adapter for ``backend``.

    Raises:
        ValueError: unknown backend.
    """
    if backend == "diskcache":
        log.info(
            "cache_factory_create",
            backend=backend,
            directory=directory,
            ttl=ttl_seconds,
        )
        return DiskcacheAdapter(
            directory=directory,
            ttl_seconds=ttl_seconds,
            max_concurrent=max_concurrent,
        )
    if backend == "redis":
        log.info("cache_factory_create", backend=backend, url=redis_url, ttl=ttl_seconds)
        return RedisAdapter(
            url=redis_url,
            ttl_seconds=ttl_seconds,
            max_concurrent=_REDIS_MAX_CONCURRENT,
        )
    raise ValueError(
        f"Unknown cache backend: {backend!r}. Must be 'diskcache' or 'redis'."
    )
