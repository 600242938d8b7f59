"""Segment fetching: bounded retry and ordered bounded prefetch."""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Generic, TypeVar

import structlog

from vidrelay.domain.entities import SegmentRef
from vidrelay.domain.exceptions import SegmentLoss, UpstreamUnavailable, VidrelayError

log = structlog.get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")


async def fetch_segment_with_retry(
    fetch: Callable[[str], Awaitable[bytes]],
    segment: SegmentRef,
    *,
    attempts: int = 3,
    backoff_seconds: float = 0.5,
) -> bytes:
    """Fetch one segment, waiting ``backoff_seconds * attempt`` between tries.

    Raises:
        SegmentLoss: every attempt failed.
    """
    for attempt in range(attempts):
        if attempt:
            await asyncio.sleep(backoff_seconds * attempt)
        try:
            return await fetch(segment.absolute_url)
        except UpstreamUnavailable as e:
            log.debug(
                "segment_attempt_failed",
                index=segment.index,
                attempt=attempt + 1,
                status=e.status,
            )
    raise SegmentLoss(segment.index, segment.absolute_url)


@dataclass(frozen=True)
class Prefetched(Generic[T, R]):
    item: T
    value: R | None = None
    error: VidrelayError | None = None


class OrderedPrefetcher(Generic[T, R]):
    """Runs up to ``depth`` fetches ahead and yields results in input order.

    Pending fetches form a FIFO: the head is awaited, then the window is
    refilled. Closing the iterator early cancels everything still in
    flight.
    """

    def __init__(
        self,
        items: Sequence[T],
        fetch: Callable[[T], Awaitable[R]],
        *,
        depth: int = 8,
    ) -> None:
        if depth < 1:
            raise ValueError("depth must be >= 1")
        self._items = items
        self._fetch = fetch
        self._depth = depth

    async def __aiter__(self) -> AsyncIterator[Prefetched[T, R]]:
        pending: deque[tuple[T, asyncio.Task[R]]] = deque()
        next_index = 0

        def refill() -> None:
            nonlocal next_index
            while next_index < len(self._items) and len(pending) < self._depth:
                item = self._items[next_index]
                pending.append((item, asyncio.ensure_future(self._fetch(item))))
                next_index += 1

        refill()
        try:
            while pending:
                item, task = pending.popleft()
                try:
                    value = await task
                except VidrelayError as e:
                    refill()
                    yield Prefetched(item, error=e)
                    continue
                refill()
                yield Prefetched(item, value=value)
        finally:
            for _, task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*(t for _, t in pending), return_exceptions=True)
