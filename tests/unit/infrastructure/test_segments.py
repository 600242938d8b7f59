"""Tests for segment retry and the ordered prefetch window."""

from __future__ import annotations

import asyncio
import random

import pytest

from vidrelay.domain.entities import SegmentRef
from vidrelay.domain.exceptions import SegmentLoss, UpstreamUnavailable
from vidrelay.infrastructure.download.segments import (
    OrderedPrefetcher,
    fetch_segment_with_retry,
)


class TestFetchSegmentWithRetry:
    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self) -> None:
        attempts = []

        async def fetch(url: str) -> bytes:
            attempts.append(url)
            if len(attempts) < 3:
                raise UpstreamUnavailable(url, 503)
            return b"data"

        data = await fetch_segment_with_retry(
            fetch, SegmentRef(4, "https://cdn.example/4.ts"), attempts=3, backoff_seconds=0
        )

        assert data == b"data"
        assert attempts == ["https://cdn.example/4.ts"] * 3

    @pytest.mark.asyncio
    async def test_exhausted(self) -> None:
        async def fetch(url: str) -> bytes:
            raise UpstreamUnavailable(url)

        with pytest.raises(SegmentLoss) as exc_info:
            await fetch_segment_with_retry(
                fetch, SegmentRef(7, "https://cdn.example/7.ts"), attempts=2, backoff_seconds=0
            )

        assert exc_info.value.index == 7

    @pytest.mark.asyncio
    async def test_unexpected_errors_propagate(self) -> None:
        async def fetch(url: str) -> bytes:
            raise RuntimeError("bug")

        with pytest.raises(RuntimeError):
            await fetch_segment_with_retry(fetch, SegmentRef(0, "https://x.example/0.ts"))


class TestOrderedPrefetcher:
    def test_depth_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            OrderedPrefetcher([1], lambda i: asyncio.sleep(0), depth=0)

    @pytest.mark.asyncio
    async def test_yields_in_input_order(self) -> None:
        async def fetch(i: int) -> int:
            # Later items finish first.
            await asyncio.sleep((5 - i) * 0.01)
            return i * 10

        results = [r async for r in OrderedPrefetcher(list(range(5)), fetch, depth=5)]

        assert [r.item for r in results] == [0, 1, 2, 3, 4]
        assert [r.value for r in results] == [0, 10, 20, 30, 40]

    @pytest.mark.asyncio
    async def test_window_is_bounded(self) -> None:
        in_flight = 0
        peak = 0

        async def fetch(i: int) -> int:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return i

        results = [r async for r in OrderedPrefetcher(list(range(10)), fetch, depth=3)]

        assert len(results) == 10
        assert peak <= 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("seed", "depth"), [(1, 1), (2, 3), (3, 4), (4, 8)])
    async def test_order_and_bound_under_random_delays(self, seed, depth) -> None:
        rng = random.Random(seed)
        delays = [rng.uniform(0, 0.01) for _ in range(30)]
        in_flight = 0
        peak = 0

        async def fetch(i: int) -> int:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            try:
                await asyncio.sleep(delays[i])
                return i * 2
            finally:
                in_flight -= 1

        results = [r async for r in OrderedPrefetcher(list(range(30)), fetch, depth=depth)]

        assert [r.item for r in results] == list(range(30))
        assert [r.value for r in results] == [i * 2 for i in range(30)]
        assert peak <= depth

    @pytest.mark.asyncio
    async def test_errors_are_yielded_in_place(self) -> None:
        async def fetch(i: int) -> int:
            if i == 1:
                raise SegmentLoss(i, f"https://x.example/{i}.ts")
            return i

        results = [r async for r in OrderedPrefetcher([0, 1, 2], fetch, depth=2)]

        assert [r.item for r in results] == [0, 1, 2]
        assert isinstance(results[1].error, SegmentLoss)
        assert results[1].value is None
        assert results[2].value == 2

    @pytest.mark.asyncio
    async def test_early_close_cancels_pending(self) -> None:
        cancelled = []

        async def fetch(i: int) -> int:
            try:
                if i > 0:
                    await asyncio.sleep(10)
                return i
            except asyncio.CancelledError:
                cancelled.append(i)
                raise

        iterator = OrderedPrefetcher(list(range(4)), fetch, depth=3).__aiter__()
        first = await iterator.__anext__()
        await iterator.aclose()

        assert first.value == 0
        assert {1, 2} <= set(cancelled)
        assert 0 not in cancelled
