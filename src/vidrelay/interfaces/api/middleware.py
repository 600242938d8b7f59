"""Per-client API rate limiting."""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Sequence

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from vidrelay.interfaces.api.responses import error_response

log = structlog.get_logger(__name__)

_WINDOW_SECONDS = 60.0
# Dispatch cycles between sweeps of idle clients.
_GC_INTERVAL = 256
# Players request segments back to back; health checks must always answer.
DEFAULT_EXEMPT_PREFIXES = ("/healthz", "/readyz", "/proxy/segment")


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Sliding one-minute window per client IP.

    Args:
        app: ASGI application.
        requests_per_minute: Max requests per IP per minute. 0 = unlimited.
        exempt_prefixes: Paths never counted.
    """

    def __init__(
        self,
        app: object,
        requests_per_minute: int = 120,
        exempt_prefixes: Sequence[str] = DEFAULT_EXEMPT_PREFIXES,
    ) -> None:
        super().__init__(app)  # type: ignore[arg-type]
        self._rpm = requests_per_minute
        self._exempt = tuple(exempt_prefixes)
        self._hits: dict[str, deque[float]] = {}
        self._dispatches = 0

    def _sweep(self) -> None:
        self._dispatches += 1
        if self._dispatches < _GC_INTERVAL:
            return
        self._dispatches = 0
        for ip in [ip for ip, hits in self._hits.items() if not hits]:
            del self._hits[ip]

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if self._rpm <= 0 or request.url.path.startswith(self._exempt):
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        now = time.monotonic()
        hits = self._hits.setdefault(client_ip, deque())
        while hits and hits[0] <= now - _WINDOW_SECONDS:
            hits.popleft()

        if len(hits) >= self._rpm:
            log.warning(
                "rate_limit_exceeded",
                client_ip=client_ip,
                path=request.url.path,
                rpm=self._rpm,
            )
            response = error_response(429, "Rate limit exceeded", cors=True)
            response.headers["Retry-After"] = str(int(_WINDOW_SECONDS))
            return response

        hits.append(now)
        self._sweep()

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self._rpm)
        response.headers["X-RateLimit-Remaining"] = str(max(0, self._rpm - len(hits)))
        return response
