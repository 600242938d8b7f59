"""Provider decoders: one per upstream format."""

from __future__ import annotations

from .anixart import AnixartEpisodeResolver, EpisodeLocation
from .balancers import BalancerResolver
from .collaps import CollapsDecoder, EmbedStream
from .kinobox import KinoboxClient
from .kodik import KodikDecoder
from .rezka import RezkaDecoder

__all__ = [
    "AnixartEpisodeResolver",
    "BalancerResolver",
    "CollapsDecoder",
    "EmbedStream",
    "EpisodeLocation",
    "KinoboxClient",
    "KodikDecoder",
    "RezkaDecoder",
]
