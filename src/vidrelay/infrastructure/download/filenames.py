"""Download filenames and Content-Disposition headers."""

from __future__ import annotations

import re
from urllib.parse import quote

_TITLE_STRIP_RE = re.compile(r"[^\w\s-]", re.UNICODE)
_UNSAFE_FILENAME_RE = re.compile(r'[\\/:*?"<>|\x00-\x1f]')
_NON_ASCII_RE = re.compile(r"[^\x20-\x7e]")


def build_filename(
    title: str,
    season: int | None = None,
    episode: int | None = None,
    ext: str = "mp4",
) -> str:
    """``Some Title`` + S1E2 -> ``Some_Title_S01E02.mp4``."""
    clean = _TITLE_STRIP_RE.sub("", title).strip()
    clean = re.sub(r"\s+", "_", clean) or "video"
    if season is not None and episode is not None:
        return f"{clean}_S{season:02d}E{episode:02d}.{ext}"
    return f"{clean}.{ext}"


def sanitize_filename(name: str | None, default: str = "video.mp4") -> str:
    """Strip path separators and control characters from a client filename."""
    if not name:
        return default
    cleaned = _UNSAFE_FILENAME_RE.sub("_", name).strip(" .")
    return cleaned or default


def content_disposition(filename: str) -> str:
    """Attachment header with an ASCII fallback and an RFC 5987 ``filename*``."""
    ascii_name = _NON_ASCII_RE.sub("_", filename)
    return (
        f'attachment; filename="{ascii_name}"; '
        f"filename*=UTF-8''{quote(filename, safe='')}"
    )
