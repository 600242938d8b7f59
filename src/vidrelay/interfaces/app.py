"""FastAPI application factory (create_app)."""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.responses import Response

from vidrelay import __version__
from vidrelay.domain.exceptions import VidrelayError
from vidrelay.infrastructure.config import AppConfig
from vidrelay.infrastructure.graceful_shutdown import GracefulShutdown
from vidrelay.interfaces.api.middleware import RateLimitMiddleware
from vidrelay.interfaces.api.responses import error_response
from vidrelay.interfaces.app_state import AppState
from vidrelay.interfaces.composition import lifespan

log = structlog.get_logger(__name__)


def create_app(config: AppConfig) -> FastAPI:
    """Create FastAPI app: configuration only, resources are created in lifespan()."""
    app = FastAPI(
        title="vidrelay",
        description="Video stream resolution, HLS proxy and download service",
        version=__version__,
        lifespan=lifespan,
    )

    app.state = AppState()
    app.state.config = config
    app.state.graceful_shutdown = GracefulShutdown()

    if config.api_rate_limit_rpm > 0:
        app.add_middleware(
            RateLimitMiddleware, requests_per_minute=config.api_rate_limit_rpm
        )

    from vidrelay.interfaces.api.addons.router import router as addons_router
    from vidrelay.interfaces.api.download.router import router as download_router
    from vidrelay.interfaces.api.providers.router import router as providers_router
    from vidrelay.interfaces.api.proxy.router import router as proxy_router
    from vidrelay.interfaces.api.stream.router import router as stream_router

    app.include_router(stream_router)
    app.include_router(proxy_router)
    app.include_router(download_router)
    app.include_router(providers_router)
    app.include_router(addons_router)

    @app.exception_handler(VidrelayError)
    async def vidrelay_error_handler(request: Request, exc: VidrelayError) -> JSONResponse:
        log.error(
            "unhandled_engine_error",
            path=request.url.path,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return error_response(500, "Internal error")

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        """Liveness check: 200 as long as the process is running."""
        return {"status": "ok", "version": __version__}

    @app.get("/readyz")
    async def readyz() -> Response:
        """Readiness check: 200 after startup completed, 503 otherwise."""
        gs: GracefulShutdown = app.state.graceful_shutdown
        if gs.is_ready:
            return JSONResponse({"status": "ready"}, status_code=200)
        return JSONResponse({"status": "not_ready"}, status_code=503)

    @app.middleware("http")
    async def log_requests(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ):
        gs: GracefulShutdown = app.state.graceful_shutdown
        gs.request_started()
        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            gs.request_finished()
            log.info(
                "http_request",
                method=request.method,
                path=request.url.path,
                query=str(request.url.query),
                status_code=status_code,
                duration_ms=round((time.perf_counter() - start) * 1000.0, 2),
                client_host=(request.client.host if request.client else None),
            )

    return app
