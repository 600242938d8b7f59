"""httpx transport with per-domain rate limiting and 429/503 retry."""

from __future__ import annotations

import asyncio
import random

import httpx
import structlog

from vidrelay.infrastructure.common.rate_limiter import DomainRateLimiter

log = structlog.get_logger(__name__)

_DEFAULT_RETRYABLE = frozenset({429, 503})


def _parse_retry_after(headers: httpx.Headers) -> float | None:
    """``Retry-After`` in seconds, or None (HTTP-date form is ignored)."""
    raw = headers.get("retry-after")
    if raw is None:
        return None
    try:
        return float(raw)
    except (ValueError, TypeError):
        return None


class RetryTransport(httpx.AsyncBaseTransport):
    """Wraps a transport with rate limiting and retry on 429/503.

    Acquires a ``DomainRateLimiter`` token before every attempt. Retryable
    responses are drained and retried with exponential backoff plus jitter,
    honouring ``Retry-After``. The final attempt's response is returned
    as-is so callers see the real upstream status.
    """

    def __init__(
        self,
        wrapped: httpx.AsyncBaseTransport,
        rate_limiter: DomainRateLimiter,
        *,
        max_retries: int = 2,
        backoff_base: float = 1.0,
        max_backoff: float = 10.0,
        retryable_status_codes: frozenset[int] = _DEFAULT_RETRYABLE,
    ) -> None:
        self._wrapped = wrapped
        self._rate_limiter = rate_limiter
        self._max_retries = max_retries
        self._backoff_base = backoff_base
        self._max_backoff = max_backoff
        self._retryable = retryable_status_codes

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        attempt = 0
        while True:
            await self._rate_limiter.acquire(str(request.url))
            response = await self._wrapped.handle_async_request(request)

            if response.status_code not in self._retryable:
                return response
            if attempt >= self._max_retries:
                return response

            await response.aread()
            await response.aclose()

            delay = self._compute_delay(response, attempt)
            log.info(
                "http_retry",
                url=str(request.url),
                status=response.status_code,
                attempt=attempt + 1,
                delay=round(delay, 2),
            )
            await asyncio.sleep(delay)
            attempt += 1

    def _compute_delay(self, response: httpx.Response, attempt: int) -> float:
        retry_after = _parse_retry_after(response.headers)
        if retry_after is not None:
            return min(retry_after, self._max_backoff)
        delay = self._backoff_base * (2**attempt)
        jitter = random.uniform(0, self._backoff_base)  # noqa: S311
        return min(delay + jitter, self._max_backoff)

    async def aclose(self) -> None:
        await self._wrapped.aclose()


def build_http_client(
    *,
    timeout_seconds: float,
    user_agent: str,
    follow_redirects: bool = True,
    rate_limit_rps: float = 0.0,
    max_retries: int = 2,
    backoff_base: float = 1.0,
    max_backoff: float = 10.0,
) -> httpx.AsyncClient:
    """The shared outbound client used by every decoder, proxy and pipeline."""
    transport = RetryTransport(
        httpx.AsyncHTTPTransport(),
        DomainRateLimiter(default_rps=rate_limit_rps),
        max_retries=max_retries,
        backoff_base=backoff_base,
        max_backoff=max_backoff,
    )
    return httpx.AsyncClient(
        transport=transport,
        timeout=httpx.Timeout(timeout_seconds),
        follow_redirects=follow_redirects,
        headers={"User-Agent": user_agent},
    )
