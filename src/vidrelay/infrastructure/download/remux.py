"""External remux subprocess (ffmpeg) with flow-controlled input."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator, Sequence

import structlog

log = structlog.get_logger(__name__)

REMUX_ARGS: tuple[str, ...] = (
    "-hide_banner",
    "-loglevel",
    "error",
    "-i",
    "pipe:0",
    "-c",
    "copy",
    "-f",
    "mp4",
    "-movflags",
    "frag_keyframe+empty_moov",
    "pipe:1",
)

_STDERR_TAIL_BYTES = 2000


class FlowControlledWriter:
    """Wraps a StreamWriter so producers can wait for the reader to catch up.

    ``write`` only buffers; ``wait_writable`` suspends until the transport's
    buffer drains below its high-water mark.
    """

    def __init__(self, stream: asyncio.StreamWriter) -> None:
        self._stream = stream
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, data: bytes) -> None:
        if self._closed:
            raise BrokenPipeError("writer already closed")
        self._stream.write(data)

    async def wait_writable(self) -> None:
        await self._stream.drain()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._stream.close()
        with contextlib.suppress(BrokenPipeError, ConnectionResetError):
            await self._stream.wait_closed()


class RemuxProcess:
    """One ffmpeg process: TS bytes in on stdin, fragmented MP4 out on stdout."""

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        *,
        chunk_size: int = 65536,
    ) -> None:
        if process.stdin is None or process.stdout is None or process.stderr is None:
            raise ValueError("remux process needs piped stdin, stdout and stderr")
        self._process = process
        self._writer = FlowControlledWriter(process.stdin)
        self._stdout = process.stdout
        self._chunk_size = chunk_size
        self._stderr_tail = b""
        self._stderr_task = asyncio.ensure_future(self._collect_stderr(process.stderr))

    @classmethod
    async def spawn(
        cls,
        binary: str = "ffmpeg",
        *,
        args: Sequence[str] = REMUX_ARGS,
        chunk_size: int = 65536,
    ) -> RemuxProcess:
        process = await asyncio.create_subprocess_exec(
            binary,
            *args,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        log.debug("remux_spawned", binary=binary, pid=process.pid)
        return cls(process, chunk_size=chunk_size)

    async def _collect_stderr(self, stream: asyncio.StreamReader) -> None:
        while True:
            chunk = await stream.read(4096)
            if not chunk:
                return
            self._stderr_tail = (self._stderr_tail + chunk)[-_STDERR_TAIL_BYTES:]

    @property
    def stderr_tail(self) -> str:
        return self._stderr_tail.decode("utf-8", "replace")

    async def write(self, data: bytes) -> None:
        self._writer.write(data)
        await self._writer.wait_writable()

    async def close_input(self) -> None:
        await self._writer.close()

    async def output(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await self._stdout.read(self._chunk_size)
            if not chunk:
                return
            yield chunk

    async def wait(self) -> int:
        returncode = await self._process.wait()
        with contextlib.suppress(asyncio.CancelledError):
            await self._stderr_task
        return returncode

    async def kill(self) -> None:
        if self._process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                self._process.kill()
            await self._process.wait()
        self._stderr_task.cancel()
        await self._writer.close()
