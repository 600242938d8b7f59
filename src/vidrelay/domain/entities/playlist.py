"""Segmented-playlist entities and the ephemeral download job."""

from __future__ import annotations

from dataclasses import dataclass, field

from vidrelay.domain.entities.streams import ContentRef


@dataclass(frozen=True)
class PlaylistVariant:
    """One ``#EXT-X-STREAM-INF`` entry of a master manifest."""

    bandwidth: int
    url: str


@dataclass(frozen=True)
class SegmentRef:
    """A media segment; ``index`` order must survive concurrent fetching."""

    index: int
    absolute_url: str


@dataclass
class DownloadJob:
    """Per-request download state. Never persisted or shared."""

    variant_url: str
    segments: list[SegmentRef] = field(default_factory=list)
    content_ref: ContentRef | None = None
    bytes_written: int = 0
    lost_segments: list[int] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.segments)
