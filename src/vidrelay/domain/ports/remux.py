"""Ports for the two remux strategies (subprocess and in-process)."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Protocol


class RemuxProcessPort(Protocol):
    """A running remux step: bytes in (flow-controlled), container out."""

    async def write(self, data: bytes) -> None:
        """Write one chunk, suspending while the input pipe is saturated."""
        ...

    async def close_input(self) -> None: ...

    def output(self) -> AsyncIterator[bytes]: ...

    async def wait(self) -> int:
        """Wait for exit and return the exit code."""
        ...

    async def kill(self) -> None: ...

    @property
    def stderr_tail(self) -> str: ...


class TransmuxerPort(Protocol):
    """Converts concatenated transport-stream buffers into a playable file."""

    async def transmux(self, segments: list[bytes]) -> bytes: ...
