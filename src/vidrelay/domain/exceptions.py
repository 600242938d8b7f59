"""Error taxonomy shared by decoders, proxies and download pipelines.

Decoders and addon clients catch these internally and degrade to an empty
result; only the HTTP layer turns "nothing reached a terminal point" into
a structured error response.
"""

from __future__ import annotations


class VidrelayError(Exception):
    """Base error for all engine failures."""


class UpstreamUnavailable(VidrelayError):
    """Network error or non-2xx response from an upstream provider."""

    def __init__(self, url: str, status: int | None = None) -> None:
        self.url = url
        self.status = status
        detail = f"status {status}" if status is not None else "network error"
        super().__init__(f"{url}: {detail}")


class ParseFailure(VidrelayError):
    """Expected pattern not found (upstream format likely changed)."""


class InvalidManifest(ParseFailure):
    """Addon manifest lacks a required field (`id` or `name`)."""


class DecodeFailure(VidrelayError):
    """Cipher/deobfuscation produced invalid output."""


class NoStreamsFound(VidrelayError):
    """Every decoder/addon returned nothing."""


class SubprocessFailure(VidrelayError):
    """Remux subprocess exited non-zero."""

    def __init__(self, returncode: int, stderr_tail: str = "") -> None:
        self.returncode = returncode
        self.stderr_tail = stderr_tail
        super().__init__(f"remux exited with code {returncode}")


class SegmentLoss(VidrelayError):
    """Retries exhausted on one segment."""

    def __init__(self, index: int, url: str) -> None:
        self.index = index
        self.url = url
        super().__init__(f"segment {index} lost after retries: {url}")


class DownloadCancelled(VidrelayError):
    """Download aborted through its cancellation token."""
