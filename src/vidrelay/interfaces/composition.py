"""Composition root: dependency injection via FastAPI lifespan."""

from __future__ import annotations

import functools
from contextlib import asynccontextmanager
from typing import AsyncIterator, cast

import structlog
from fastapi import FastAPI

from vidrelay.application.use_cases import AnimeEpisodeUseCase, ResolveStreamsUseCase
from vidrelay.infrastructure.addons.aggregator import AddonAggregator
from vidrelay.infrastructure.cache.cache_factory import create_cache
from vidrelay.infrastructure.common.retry_transport import build_http_client
from vidrelay.infrastructure.download.remux import RemuxProcess
from vidrelay.infrastructure.download.server import SegmentPolicy, ServerDownloadPipeline
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
from vidrelay.infrastructure.providers.kinobox import parse_players, parse_translations
from vidrelay.interfaces.app_state import AppState

log = structlog.get_logger(__name__)


def _wire_providers(state: AppState) -> None:
    providers = state.config.providers
    timeout = providers.upstream_timeout_seconds

    state.kodik = KodikDecoder(
        state.http_client,
        mirrors=providers.kodik_hosts,
        fallback_paths=providers.kodik_fallback_paths,
        headers=providers.bundle("kodik").as_headers(),
        timeout=timeout,
    )
    state.rezka = RezkaDecoder(
        state.http_client,
        mirrors=providers.rezka_mirrors,
        headers=providers.bundle("rezka").as_headers(),
        timeout=timeout,
    )
    state.collaps = CollapsDecoder(
        state.http_client,
        api_base=providers.collaps_api,
        headers=providers.bundle("collaps").as_headers(),
        timeout=timeout,
    )
    state.kinobox = KinoboxClient(
        state.http_client,
        api_url=providers.kinobox_api,
        headers=providers.bundle("kinobox").as_headers(),
        timeout=timeout,
    )
    state.balancers = BalancerResolver(
        state.http_client,
        alloha_api=providers.alloha_api,
        headers=providers.bundle("kinobox").as_headers(),
        timeout=timeout,
    )
    state.source_cache = SourceSelectionCache(
        state.cache, ttl_seconds=state.config.cache.ttl_seconds
    )
    state.anixart = AnixartEpisodeResolver(
        state.http_client,
        state.source_cache,
        api_base=providers.anixart_api,
        headers=providers.bundle("anixart").as_headers(),
        timeout=timeout,
    )
    log.info(
        "providers_initialized",
        providers=[
            state.kodik.name,
            state.rezka.name,
            state.collaps.name,
            state.kinobox.name,
            state.balancers.name,
            state.anixart.name,
        ],
    )


def _wire_downloads(state: AppState) -> None:
    config = state.config
    state.hls_fetcher = HlsFetcher(
        state.http_client,
        config.providers,
        timeout=config.http_timeout_seconds,
        chunk_size=config.download.chunk_size,
    )
    remux_factory = functools.partial(
        RemuxProcess.spawn,
        config.download.ffmpeg_path,
        chunk_size=config.download.chunk_size,
    )
    policy = SegmentPolicy.STRICT if config.download.strict_segments else SegmentPolicy.LENIENT
    state.download_pipeline = ServerDownloadPipeline(
        state.hls_fetcher,
        remux_factory,
        prefetch_depth=config.download.prefetch_depth,
        segment_retries=config.download.segment_retries,
        backoff_seconds=config.download.segment_backoff_seconds,
        policy=policy,
    )
    log.info(
        "download_pipeline_initialized",
        ffmpeg=config.download.ffmpeg_path,
        prefetch_depth=config.download.prefetch_depth,
        policy=policy.value,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Initialize and clean up all resources.

    Order matters:
        1. Cache (source selection cache depends on it)
        2. HTTP client (every decoder, proxy and pipeline shares it)
        3. Provider decoders
        4. HLS fetcher + download pipeline
        5. Addon aggregator
        6. Use cases
    """
    state = cast(AppState, app.state)
    config = state.config

    # 1) Cache
    cache = create_cache(
        backend=config.cache.backend,
        directory=str(config.cache.directory),
        redis_url=config.cache.redis_url,
        ttl_seconds=config.cache.ttl_seconds,
        max_concurrent=config.cache.max_concurrent,
    )
    await cache.__aenter__()
    state.cache = cache
    log.info("cache_initialized", backend=config.cache.backend)

    if config.environment == "dev":
        await cache.clear()
        log.debug("cache_cleared", environment="dev")

    # 2) HTTP client with per-domain rate limiting + 429/503 retry
    state.http_client = build_http_client(
        timeout_seconds=config.http_timeout_seconds,
        user_agent=config.http_user_agent,
        follow_redirects=config.http_follow_redirects,
        rate_limit_rps=config.rate_limit_requests_per_second,
        max_retries=config.http_retry_max_attempts,
        backoff_base=config.http_retry_backoff_base,
        max_backoff=config.http_retry_max_backoff,
    )
    log.info(
        "http_client_initialized",
        rate_limit_rps=config.rate_limit_requests_per_second,
        retry_max_attempts=config.http_retry_max_attempts,
    )

    # 3) Provider decoders
    _wire_providers(state)

    # 4) Proxy fetcher + server download pipeline
    _wire_downloads(state)

    # 5) Addons
    state.addon_aggregator = AddonAggregator(
        state.http_client,
        timeout_seconds=config.addons.timeout_seconds,
        manifest_timeout_seconds=config.addons.manifest_timeout_seconds,
    )

    # 6) Use cases
    state.resolve_streams_uc = ResolveStreamsUseCase(
        embed_decoder=state.collaps,
        player_aggregator=state.kinobox,
        balancer_resolver=state.balancers,
        parse_players=parse_players,
        parse_translations=parse_translations,
    )
    state.anime_episode_uc = AnimeEpisodeUseCase(
        resolver=state.anixart,
        link_decoder=state.kodik,
    )

    state.graceful_shutdown.mark_ready()
    log.info("app_startup_complete")

    try:
        yield
    finally:
        await state.graceful_shutdown.wait_for_drain()

        await state.http_client.aclose()
        log.info("http_client_closed")

        await state.cache.aclose()
        log.info("cache_closed")

        log.info("app_shutdown_complete")
