"""Domain entities for resolved stream sources.

Pure value objects without framework dependencies or I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Literal
from urllib.parse import urlparse

ContentType = Literal["movie", "series"]


class StreamQuality(str, Enum):
    """Fixed quality levels surfaced to clients.

    The value is the display label; :attr:`rank` orders them
    (higher = better).
    """

    UHD_4K = "4K"
    FHD_1080P = "1080p"
    HD_720P = "720p"
    SD_480P = "480p"
    SD_360P = "360p"
    UNKNOWN = "Unknown"

    @property
    def rank(self) -> int:
        return _QUALITY_RANK[self]


_QUALITY_RANK: dict[StreamQuality, int] = {
    StreamQuality.UHD_4K: 5,
    StreamQuality.FHD_1080P: 4,
    StreamQuality.HD_720P: 3,
    StreamQuality.SD_480P: 2,
    StreamQuality.SD_360P: 1,
    StreamQuality.UNKNOWN: 0,
}


def is_absolute_url(url: str) -> bool:
    """True for ``http(s)://host/...`` URLs."""
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


@dataclass(frozen=True)
class ContentRef:
    """Identifies what to resolve (numeric catalog id + optional episode)."""

    catalog_id: int
    season: int | None = None
    episode: int | None = None
    audio_index: int | None = None

    @property
    def is_episode(self) -> bool:
        return self.season is not None and self.episode is not None


@dataclass(frozen=True)
class Subtitle:
    id: str
    url: str
    lang: str
    label: str | None = None


@dataclass(frozen=True)
class StreamSource:
    """A single playable source, normalized across providers.

    Invariants (checked on construction):
      - ``is_torrent`` is True exactly when ``url`` is absent and
        ``info_hash`` is present.
      - ``url``, when present, is absolute.
    """

    provider_name: str
    url: str | None
    quality: StreamQuality = StreamQuality.UNKNOWN
    translation_label: str = ""
    size_bytes: int | None = None
    is_torrent: bool = False
    info_hash: str | None = None
    subtitles: tuple[Subtitle, ...] = ()
    title: str | None = None
    filename: str | None = None

    def __post_init__(self) -> None:
        torrent_shape = self.url is None and bool(self.info_hash)
        if self.is_torrent != torrent_shape:
            raise ValueError(
                "is_torrent requires url=None and an info_hash "
                f"(provider={self.provider_name!r})"
            )
        if self.url is not None and not is_absolute_url(self.url):
            raise ValueError(f"StreamSource url must be absolute: {self.url!r}")

    def to_dict(self) -> dict[str, object]:
        return {
            "providerName": self.provider_name,
            "url": self.url,
            "quality": self.quality.value,
            "translationLabel": self.translation_label,
            "sizeBytes": self.size_bytes,
            "isTorrent": self.is_torrent,
            "infoHash": self.info_hash,
            "title": self.title,
            "filename": self.filename,
            "subtitles": [
                {"id": s.id, "url": s.url, "lang": s.lang, "label": s.label}
                for s in self.subtitles
            ],
        }


@dataclass(frozen=True)
class Translation:
    """Alternate audio track; list order is provider-defined and significant."""

    id: str
    display_name: str
    quality: str = "HD"
    provider_name: str = ""

    def to_dict(self) -> dict[str, str]:
        return {
            "id": self.id,
            "name": self.display_name,
            "quality": self.quality,
            "source": self.provider_name,
        }


@dataclass(frozen=True)
class PlayerInfo:
    """Iframe-embeddable fallback player from the aggregator endpoint."""

    type: str
    iframe_url: str
    translation: str = "Unknown"
    quality: str = "HD"

    def to_dict(self) -> dict[str, str]:
        return {
            "type": self.type,
            "iframeUrl": self.iframe_url,
            "translation": self.translation,
            "quality": self.quality,
        }


@dataclass(frozen=True)
class ProviderLink:
    """Decrypted link returned by the URL-pattern decoder."""

    quality: str
    url: str
    type: str

    def to_dict(self) -> dict[str, str]:
        return {"quality": self.quality, "url": self.url, "type": self.type}


@dataclass(frozen=True)
class EmbedRef:
    """Components of a ``{host}/{type}/{id}/{hash}/{quality}`` embed URL."""

    host: str
    type: str
    id: str
    hash: str
    quality: str


@dataclass(frozen=True)
class RezkaSearchResult:
    url: str
    title: str
    year: int | None = None


@dataclass(frozen=True)
class RezkaTranslation:
    id: int
    title: str


@dataclass(frozen=True)
class RezkaPage:
    id: str
    translations: list[RezkaTranslation] = field(default_factory=list)


@dataclass(frozen=True)
class RezkaStream:
    qualities: dict[str, str]
    translations: list[RezkaTranslation] = field(default_factory=list)
    default_translation: int | None = None


@dataclass(frozen=True)
class AddonDescriptor:
    """A user-enabled stream-listing addon (transport URL + cached manifest)."""

    id: str
    name: str
    transport_url: str
    manifest: dict[str, object] = field(default_factory=dict)
    enabled: bool = True
