"""Quality/size inference and normalization of addon stream descriptors.

Provider-specific labels ("1080p", "Full HD", "[720p]", "4K HDR") are
folded into the fixed StreamQuality enum. Sizes are read from
``behaviorHints.videoSize`` when declared, else parsed from the title.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from typing import Any

from vidrelay.domain.entities import StreamQuality, StreamSource, Subtitle

# Order matters: "full hd" must win over the bare "hd" rule.
_QUALITY_RULES: list[tuple[re.Pattern[str], StreamQuality]] = [
    (re.compile(r"2160p|4k|uhd", re.IGNORECASE), StreamQuality.UHD_4K),
    (re.compile(r"1080p|full\s*hd", re.IGNORECASE), StreamQuality.FHD_1080P),
    (re.compile(r"720p|hd", re.IGNORECASE), StreamQuality.HD_720P),
    (re.compile(r"480p", re.IGNORECASE), StreamQuality.SD_480P),
    (re.compile(r"360p", re.IGNORECASE), StreamQuality.SD_360P),
]

_SIZE_RE = re.compile(r"([\d.]+)\s*(GB|MB|TB)", re.IGNORECASE)
_UNIT_MULTIPLIER = {"TB": 10**12, "GB": 10**9, "MB": 10**6}


def parse_quality(text: str | None) -> StreamQuality:
    if not text:
        return StreamQuality.UNKNOWN
    for pattern, quality in _QUALITY_RULES:
        if pattern.search(text):
            return quality
    return StreamQuality.UNKNOWN


def quality_from_label(label: str) -> StreamQuality:
    """Map a provider quality key such as ``"720"`` or ``"1080p"``."""
    label = label.strip()
    if label.isdigit():
        label = f"{label}p"
    return parse_quality(label)


def parse_size(descriptor: Mapping[str, Any]) -> int | None:
    """Declared ``behaviorHints.videoSize`` first, then ``12.3 GB`` in the title."""
    hints = descriptor.get("behaviorHints")
    if isinstance(hints, Mapping):
        declared = hints.get("videoSize")
        if isinstance(declared, (int, float)) and not isinstance(declared, bool) and declared > 0:
            return int(declared)

    for key in ("title", "description"):
        text = descriptor.get(key)
        if not isinstance(text, str):
            continue
        match = _SIZE_RE.search(text)
        if match:
            try:
                number = float(match.group(1))
            except ValueError:
                continue
            return int(number * _UNIT_MULTIPLIER[match.group(2).upper()])
    return None


def format_bytes(size: int | None) -> str:
    if not size:
        return ""
    if size >= 10**12:
        return f"{size / 10**12:.1f} TB"
    if size >= 10**9:
        return f"{size / 10**9:.1f} GB"
    if size >= 10**6:
        return f"{size / 10**6:.0f} MB"
    return f"{size} B"


def _subtitles(raw: Any) -> tuple[Subtitle, ...]:
    if not isinstance(raw, list):
        return ()
    out = []
    for i, item in enumerate(raw):
        if isinstance(item, Mapping) and item.get("url"):
            out.append(
                Subtitle(
                    id=str(item.get("id") or i),
                    url=str(item["url"]),
                    lang=str(item.get("lang") or "und"),
                    label=item.get("label"),
                )
            )
    return tuple(out)


def normalize_stream(descriptor: Mapping[str, Any], addon_name: str) -> StreamSource | None:
    """Build a StreamSource, or None for descriptors with neither url nor infoHash
    (or with a url that is not absolute)."""
    url = descriptor.get("url") or None
    info_hash = descriptor.get("infoHash") or None
    if not url and not info_hash:
        return None

    name = str(descriptor.get("name") or "")
    title = descriptor.get("title") or descriptor.get("description")
    hints = descriptor.get("behaviorHints")
    filename = hints.get("filename") if isinstance(hints, Mapping) else None

    try:
        return StreamSource(
            provider_name=addon_name,
            url=str(url) if url else None,
            quality=parse_quality(f"{name} {title or ''}"),
            translation_label=name.split("\n", 1)[0],
            size_bytes=parse_size(descriptor),
            is_torrent=url is None,
            info_hash=str(info_hash) if info_hash else None,
            subtitles=_subtitles(descriptor.get("subtitles")),
            title=str(title) if title else None,
            filename=str(filename) if filename else None,
        )
    except ValueError:
        return None


def sort_sources(sources: Iterable[StreamSource]) -> list[StreamSource]:
    """Quality rank descending, then size descending (unknown size last)."""
    return sorted(
        sources,
        key=lambda s: (s.quality.rank, s.size_bytes or 0),
        reverse=True,
    )
