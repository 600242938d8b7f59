"""Per-domain token-bucket rate limiter for outgoing HTTP requests."""

from __future__ import annotations

import asyncio
import time
from urllib.parse import urlparse

import structlog

log = structlog.get_logger(__name__)


class TokenBucket:
    """Token bucket: ``rate`` tokens per second, at most ``burst`` stored."""

    def __init__(self, rate: float, burst: int = 10) -> None:
        self._rate = rate
        self._burst = burst
        self._tokens = float(burst)
        self._last_refill = time.monotonic()
        self._lock = asyncio.Lock()

    @property
    def rate(self) -> float:
        return self._rate

    async def acquire(self) -> None:
        """Wait until a token is available, then consume it."""
        if self._rate <= 0:
            return

        async with self._lock:
            self._refill()
            while self._tokens < 1.0:
                await asyncio.sleep((1.0 - self._tokens) / self._rate)
                self._refill()
            self._tokens -= 1.0

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self._last_refill
        self._tokens = min(self._burst, self._tokens + elapsed * self._rate)
        self._last_refill = now


class DomainRateLimiter:
    """One TokenBucket per upstream host. ``default_rps=0`` disables limiting.

    Segment CDNs and provider APIs live on distinct hosts, so a burst of
    segment fetches never starves decoder calls.
    """

    def __init__(self, default_rps: float = 0.0, burst: int = 10) -> None:
        self._default_rps = default_rps
        self._burst = burst
        self._buckets: dict[str, TokenBucket] = {}

    @staticmethod
    def _host(url: str) -> str:
        return (urlparse(url).hostname or "").lower()

    def _get_bucket(self, host: str) -> TokenBucket:
        bucket = self._buckets.get(host)
        if bucket is None:
            bucket = TokenBucket(rate=self._default_rps, burst=self._burst)
            self._buckets[host] = bucket
        return bucket

    async def acquire(self, url: str) -> None:
        if self._default_rps <= 0:
            return
        host = self._host(url)
        if not host:
            return
        await self._get_bucket(host).acquire()
