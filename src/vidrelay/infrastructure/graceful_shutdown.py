"""Track in-flight requests and drain them on stop."""

from __future__ import annotations

import asyncio

import structlog

log = structlog.get_logger(__name__)


class GracefulShutdown:
    """Counts active requests; the lifespan waits for them before closing
    the shared HTTP client.

    Long-lived download streams are counted separately so the drain log
    says how many remux jobs are being cut short.
    """

    def __init__(self) -> None:
        self._active = 0
        self._active_downloads = 0
        self._shutting_down = False
        self._drained = asyncio.Event()
        self._drained.set()
        self._ready = False

    @property
    def active_requests(self) -> int:
        return self._active

    @property
    def active_downloads(self) -> int:
        return self._active_downloads

    @property
    def is_shutting_down(self) -> bool:
        return self._shutting_down

    @property
    def is_ready(self) -> bool:
        return self._ready and not self._shutting_down

    def mark_ready(self) -> None:
        self._ready = True

    def request_started(self) -> None:
        self._active += 1
        self._drained.clear()

    def request_finished(self) -> None:
        self._active = max(0, self._active - 1)
        if self._active == 0:
            self._drained.set()

    def download_started(self) -> None:
        self._active_downloads += 1

    def download_finished(self) -> None:
        self._active_downloads = max(0, self._active_downloads - 1)

    async def wait_for_drain(self, *, timeout: float = 10.0) -> None:
        """Wait up to ``timeout`` seconds for active requests to finish."""
        self._shutting_down = True
        if self._active == 0:
            return
        log.info(
            "graceful_shutdown_draining",
            active_requests=self._active,
            active_downloads=self._active_downloads,
        )
        try:
            await asyncio.wait_for(self._drained.wait(), timeout=timeout)
            log.info("graceful_shutdown_drained")
        except TimeoutError:
            log.warning(
                "graceful_shutdown_timeout",
                remaining_requests=self._active,
                remaining_downloads=self._active_downloads,
                timeout=timeout,
            )
