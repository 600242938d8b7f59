"""Stream resolution for a catalog id.

catalog id -> (embed-API decoder || iframe aggregator) -> proxied
StreamSources + fallback players + translations. When the embed API has
nothing, the aggregator's players are read for streams instead.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog

from vidrelay.domain.entities import (
    ContentRef,
    PlayerInfo,
    StreamQuality,
    StreamSource,
    Translation,
)
from vidrelay.domain.exceptions import NoStreamsFound
from vidrelay.infrastructure.hls.playlist import ProxyUrlBuilder

log = structlog.get_logger(__name__)


class _EmbedStream(Protocol):
    hls_url: str
    translations: list[Translation]


class _EmbedDecoder(Protocol):
    @property
    def name(self) -> str: ...

    async def resolve(self, ref: ContentRef) -> _EmbedStream | None: ...


class _PlayerAggregator(Protocol):
    async def fetch(self, ref: ContentRef) -> Any: ...


class _BalancerStream(Protocol):
    url: str
    source: str
    quality: StreamQuality
    translation: str

    @property
    def is_manifest(self) -> bool: ...


class _BalancerResolver(Protocol):
    async def resolve(self, player: PlayerInfo) -> _BalancerStream | None: ...


# Injected pure functions.
_ParsePlayersFn = Callable[[Any], list[PlayerInfo]]
_ParseTranslationsFn = Callable[[Any], list[Translation]]


@dataclass
class StreamResolution:
    streams: list[StreamSource] = field(default_factory=list)
    players: list[PlayerInfo] = field(default_factory=list)
    translations: list[Translation] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.streams and not self.players

    def to_dict(self) -> dict[str, Any]:
        return {
            "streams": [s.to_dict() for s in self.streams],
            "players": [p.to_dict() for p in self.players],
            "translations": [t.to_dict() for t in self.translations],
        }


class ResolveStreamsUseCase:
    """Queries both upstreams concurrently; either may fail on its own."""

    def __init__(
        self,
        *,
        embed_decoder: _EmbedDecoder,
        player_aggregator: _PlayerAggregator,
        parse_players: _ParsePlayersFn,
        parse_translations: _ParseTranslationsFn,
        balancer_resolver: _BalancerResolver | None = None,
    ) -> None:
        self._embed = embed_decoder
        self._aggregator = player_aggregator
        self._parse_players = parse_players
        self._parse_translations = parse_translations
        self._balancers = balancer_resolver

    async def locate_manifest(self, ref: ContentRef) -> str | None:
        """Raw upstream HLS URL for ``ref`` (no proxy wrapping)."""
        embed = await self._embed.resolve(ref)
        return embed.hls_url if embed is not None else None

    async def execute(self, ref: ContentRef, proxy: ProxyUrlBuilder) -> StreamResolution:
        """Raises:
            NoStreamsFound: neither upstream produced a stream or a player.
        """
        embed, payload = await asyncio.gather(
            self._embed.resolve(ref),
            self._aggregator.fetch(ref),
        )

        result = StreamResolution()
        if embed is not None:
            label = embed.translations[0].display_name if embed.translations else ""
            result.streams.append(
                StreamSource(
                    provider_name=self._embed.name,
                    url=proxy.manifest(embed.hls_url),
                    quality=StreamQuality.UNKNOWN,
                    translation_label=label,
                )
            )
            result.translations = list(embed.translations)

        result.players = self._parse_players(payload)
        if not result.translations:
            result.translations = self._parse_translations(payload)
        if not result.streams and result.players:
            result.streams = await self._from_players(result.players, proxy)

        log.info(
            "streams_resolved",
            catalog_id=ref.catalog_id,
            season=ref.season,
            episode=ref.episode,
            streams=len(result.streams),
            players=len(result.players),
            translations=len(result.translations),
        )
        if result.is_empty:
            raise NoStreamsFound(
                f"No streams for {ref.catalog_id}; try another source"
            )
        return result

    async def _from_players(
        self, players: list[PlayerInfo], proxy: ProxyUrlBuilder
    ) -> list[StreamSource]:
        """Read the aggregator's players in order; first stream per URL wins."""
        if self._balancers is None:
            return []
        found = await asyncio.gather(*(self._balancers.resolve(p) for p in players))

        streams: list[StreamSource] = []
        seen: set[str] = set()
        for stream in found:
            if stream is None or stream.url in seen:
                continue
            seen.add(stream.url)
            streams.append(
                StreamSource(
                    provider_name=stream.source,
                    url=proxy.manifest(stream.url) if stream.is_manifest else stream.url,
                    quality=stream.quality,
                    translation_label=stream.translation,
                )
            )
        log.info("player_streams_resolved", players=len(players), streams=len(streams))
        return streams
