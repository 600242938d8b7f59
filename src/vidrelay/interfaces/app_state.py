"""Application state container for FastAPI dependency injection."""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
from starlette.datastructures import State

from vidrelay.infrastructure.config import AppConfig
from vidrelay.infrastructure.graceful_shutdown import GracefulShutdown

if TYPE_CHECKING:
    from vidrelay.application.use_cases import (
        AnimeEpisodeUseCase,
        ResolveStreamsUseCase,
    )
    from vidrelay.domain.ports import CachePort
    from vidrelay.infrastructure.addons.aggregator import AddonAggregator
    from vidrelay.infrastructure.download.server import ServerDownloadPipeline
    from vidrelay.infrastructure.hls.fetcher import HlsFetcher
    from vidrelay.infrastructure.persistence.source_cache import SourceSelectionCache
    from vidrelay.infrastructure.providers import (
        AnixartEpisodeResolver,
        BalancerResolver,
        CollapsDecoder,
        KinoboxClient,
        KodikDecoder,
        RezkaDecoder,
    )


class AppState(State):
    """FastAPI application state with all DI resources.

    Lifecycle managed by composition.py::lifespan().
    """

    # Configuration
    config: AppConfig

    # Infrastructure
    cache: CachePort
    http_client: httpx.AsyncClient

    # Provider decoders
    kodik: KodikDecoder
    rezka: RezkaDecoder
    collaps: CollapsDecoder
    kinobox: KinoboxClient
    balancers: BalancerResolver
    anixart: AnixartEpisodeResolver
    source_cache: SourceSelectionCache

    # HLS proxy + downloads
    hls_fetcher: HlsFetcher
    download_pipeline: ServerDownloadPipeline

    # Addons
    addon_aggregator: AddonAggregator

    # Application services
    resolve_streams_uc: ResolveStreamsUseCase
    anime_episode_uc: AnimeEpisodeUseCase

    # Graceful shutdown (request tracking + drain)
    graceful_shutdown: GracefulShutdown
