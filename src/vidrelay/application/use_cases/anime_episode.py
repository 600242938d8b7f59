from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog

from vidrelay.domain.entities import ProviderLink
from vidrelay.domain.exceptions import NoStreamsFound

log = structlog.get_logger(__name__)


class _EpisodeLocation(Protocol):
    iframe: bool
    source_id: int

    @property
    def absolute_url(self) -> str: ...


class _EpisodeResolver(Protocol):
    async def resolve(
        self, release_id: int, type_id: int, episode: int
    ) -> _EpisodeLocation | None: ...


class _LinkDecoder(Protocol):
    async def resolve(self, url: str) -> list[ProviderLink]: ...


@dataclass
class AnimeEpisode:
    embed_url: str
    source_id: int
    iframe: bool
    links: list[ProviderLink] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.embed_url,
            "sourceId": self.source_id,
            "iframe": self.iframe,
            "links": [link.to_dict() for link in self.links],
        }


class AnimeEpisodeUseCase:
    """(release, voiceover, episode) -> embed URL, decoded when it is a player iframe."""

    def __init__(self, *, resolver: _EpisodeResolver, link_decoder: _LinkDecoder) -> None:
        self._resolver = resolver
        self._decoder = link_decoder

    async def execute(self, release_id: int, type_id: int, episode: int) -> AnimeEpisode:
        location = await self._resolver.resolve(release_id, type_id, episode)
        if location is None:
            raise NoStreamsFound(
                f"episode {episode} not found for release {release_id} type {type_id}"
            )

        url = location.absolute_url
        links = await self._decoder.resolve(url) if location.iframe else []
        log.info(
            "anime_episode_resolved",
            release=release_id,
            type=type_id,
            episode=episode,
            links=len(links),
        )
        return AnimeEpisode(
            embed_url=url,
            source_id=location.source_id,
            iframe=location.iframe,
            links=links,
        )
