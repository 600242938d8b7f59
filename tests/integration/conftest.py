"""Shared fixtures for integration tests.

These tests use real infrastructure components (config loader,
DiskcacheAdapter, HlsFetcher, the FastAPI app) with mocked HTTP via respx.
"""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from vidrelay.infrastructure.cache.diskcache_adapter import DiskcacheAdapter


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Drop VIDRELAY_* variables leaking in from the developer shell."""
    for name in list(os.environ):
        if name.upper().startswith("VIDRELAY_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture()
async def diskcache(tmp_path: Path) -> DiskcacheAdapter:
    """Real DiskcacheAdapter backed by tmp_path (auto-cleaned)."""
    adapter = DiskcacheAdapter(
        directory=tmp_path / "cache",
        ttl_seconds=3600,
        max_concurrent=5,
    )
    async with adapter:
        yield adapter
