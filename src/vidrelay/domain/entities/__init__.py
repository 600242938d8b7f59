from .playlist import DownloadJob, PlaylistVariant, SegmentRef
from .progress import ProgressEvent
from .streams import (
    AddonDescriptor,
    ContentRef,
    ContentType,
    EmbedRef,
    PlayerInfo,
    ProviderLink,
    RezkaPage,
    RezkaSearchResult,
    RezkaStream,
    RezkaTranslation,
    StreamQuality,
    StreamSource,
    Subtitle,
    Translation,
)

__all__ = [
    "AddonDescriptor",
    "ContentRef",
    "ContentType",
    "DownloadJob",
    "EmbedRef",
    "PlayerInfo",
    "PlaylistVariant",
    "ProgressEvent",
    "ProviderLink",
    "RezkaPage",
    "RezkaSearchResult",
    "RezkaStream",
    "RezkaTranslation",
    "SegmentRef",
    "StreamQuality",
    "StreamSource",
    "Subtitle",
    "Translation",
]
