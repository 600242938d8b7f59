"""Cache port: backend-agnostic async key-value store."""

from __future__ import annotations

from typing import Any, Protocol


class CachePort(Protocol):
    """Async key-value cache with per-entry TTL.

    Implemented by DiskcacheAdapter (SQLite, no daemon) and RedisAdapter.
    Adapters are opened/closed as async context managers by the lifespan.
    """

    async def get(self, key: str) -> Any:
        """Return the stored value, or None when missing/expired."""
        ...

    async def set(self, key: str, value: Any, *, ttl: int | None = None) -> None: ...

    async def delete(self, key: str) -> bool: ...

    async def clear(self) -> None: ...

    async def aclose(self) -> None: ...

    async def __aenter__(self) -> CachePort: ...

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None: ...
