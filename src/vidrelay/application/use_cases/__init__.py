from .anime_episode import AnimeEpisode, AnimeEpisodeUseCase
from .resolve_streams import ResolveStreamsUseCase, StreamResolution

__all__ = [
    "AnimeEpisode",
    "AnimeEpisodeUseCase",
    "ResolveStreamsUseCase",
    "StreamResolution",
]
