"""Pydantic configuration models with validation."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import (
    AliasChoices,
    AliasPath,
    BaseModel,
    Field,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

Environment = Literal["dev", "test", "prod"]
LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]
LogFormat = Literal["json", "console"]

_BROWSER_UA = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"


def _normalize_path(value: Any) -> Path:
    """
    Normalize a path-like value without causing filesystem side-effects.

    This function MUST NOT create directories or files.
    """
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise TypeError(f"Expected path-like value, got: {type(value)!r}")


class CacheConfig(BaseSettings):
    """Cache configuration (backend-agnostic)."""

    backend: Literal["diskcache", "redis"] = Field(
        default="diskcache",
        description="Cache backend: 'diskcache' (SQLite) or 'redis'",
    )
    directory: Path = Field(
        default=Path("./.cache/vidrelay"),
        alias="dir",
        description="Diskcache SQLite DB path",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL (only when backend=redis)",
    )
    ttl_seconds: int = Field(
        default=3600,
        description="Default TTL for cache entries (seconds)",
    )
    max_concurrent: int = Field(
        default=10,
        description="Max parallel cache ops (semaphore limit)",
    )

    model_config = SettingsConfigDict(
        env_prefix="VIDRELAY_CACHE_",
        case_sensitive=False,
        populate_by_name=True,
    )

    @field_validator("directory", mode="before")
    @classmethod
    def _validate_dir(cls, v: Any) -> Path:
        return _normalize_path(v)


class HeaderBundle(BaseModel):
    """Spoofed request headers one upstream insists on."""

    user_agent: str = _BROWSER_UA
    referer: str | None = None
    origin: str | None = None

    def as_headers(self) -> dict[str, str]:
        headers = {"User-Agent": self.user_agent}
        if self.referer:
            headers["Referer"] = self.referer
        if self.origin:
            headers["Origin"] = self.origin
        return headers


class ProvidersConfig(BaseModel):
    """Upstream hosts, mirrors and per-provider header bundles."""

    kodik_hosts: list[str] = Field(
        default=["kodik.info", "aniqit.com", "kodik.cc", "kodik.biz"],
        description="URL-pattern decoder mirror hosts (tried after the embed host).",
    )
    kodik_fallback_paths: list[str] = Field(
        default=["/ftor", "/kor", "/gvi", "/seria"],
        description="Historically used link API paths when discovery fails.",
    )
    rezka_mirrors: list[str] = Field(
        default=[
            "https://hdrezka.ag",
            "https://rezka.ag",
            "https://hdrezka.me",
            "https://hdrezka.co",
        ],
        description="Page-scraping decoder mirrors in priority order.",
    )
    collaps_api: str = Field(
        default="https://api.delivembd.ws/embed/kp/",
        description="Embed-API base URL (catalog id is appended).",
    )
    kinobox_api: str = Field(
        default="https://fbphdplay.top/api/players",
        description="Iframe player aggregator endpoint.",
    )
    alloha_api: str = Field(
        default="https://theatre.stloadi.live",
        description="File API base for aggregator players of the Alloha family.",
    )
    anixart_api: str = Field(
        default="https://api.anixart.tv",
        description="Anime episode-source API base URL.",
    )
    upstream_timeout_seconds: float = Field(
        default=10.0,
        description="Per-request timeout for decoder upstream calls.",
    )
    default_headers: str = Field(
        default="collaps_cdn",
        description="Header bundle used by the proxy when no provider matches.",
    )
    headers: dict[str, HeaderBundle] = Field(
        default_factory=lambda: {
            "collaps": HeaderBundle(referer="https://flcksbr.xyz/"),
            "collaps_cdn": HeaderBundle(
                referer="https://api.delivembd.ws/",
                origin="https://api.delivembd.ws",
            ),
            "kinobox": HeaderBundle(referer="https://flcksbr.xyz/"),
            "kodik": HeaderBundle(),
            "rezka": HeaderBundle(),
            "anixart": HeaderBundle(
                user_agent=(
                    "AnixartApp/8.0-22050323 "
                    "(Android 7.1.2; SDK 25; x86; samsung SM-N975F; ru)"
                ),
            ),
        },
        description="Provider name -> spoofed User-Agent/Referer/Origin.",
    )
    host_headers: dict[str, str] = Field(
        default_factory=dict,
        description="Upstream hostname suffix -> header bundle name.",
    )

    def bundle(self, name: str | None) -> HeaderBundle:
        """Look up a header bundle, falling back to the default bundle."""
        if name and name in self.headers:
            return self.headers[name]
        return self.headers.get(self.default_headers, HeaderBundle())


class DownloadConfig(BaseModel):
    """Segment download and remux settings."""

    ffmpeg_path: str = Field(default="ffmpeg", description="Remux binary.")
    prefetch_depth: int = Field(
        default=8, description="Segments fetched ahead of the write position."
    )
    segment_retries: int = Field(default=3, description="Attempts per segment.")
    segment_backoff_seconds: float = Field(
        default=0.5, description="Linear backoff step between segment attempts."
    )
    strict_segments: bool = Field(
        default=False,
        description="Abort the whole job on segment loss instead of skipping.",
    )
    client_concurrency: int = Field(
        default=3, description="Worker pool size for the client pipeline."
    )
    season_delay_seconds: float = Field(
        default=2.0, description="Pause between episodes of a season download."
    )
    chunk_size: int = Field(default=65536, description="Streaming chunk size.")

    @field_validator("prefetch_depth", "segment_retries", "client_concurrency")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v


class AddonConfig(BaseModel):
    id: str
    name: str
    transport_url: str
    enabled: bool = True


class AddonsConfig(BaseModel):
    timeout_seconds: float = Field(
        default=15.0, description="Per-addon stream request timeout."
    )
    manifest_timeout_seconds: float = Field(default=10.0)
    installed: list[AddonConfig] = Field(
        default_factory=list,
        description="Addons used by POST /addons/aggregate when none are posted.",
    )


class AppConfig(BaseModel):
    """
    Canonical application configuration (validated, final).

    Note:
    - YAML is expected to be sectioned (http/logging/cache/providers/download/addons).
    - Environment variables are handled by EnvOverrides(BaseSettings) to allow strict
      precedence control (defaults < YAML < ENV < CLI) in load.py.
    """

    app_name: str = Field(default="vidrelay", description="Application name.")
    environment: Environment = Field(
        default="dev",
        description="Runtime environment (affects defaults like log format).",
    )

    # HTTP client (YAML section: http.*)
    http_timeout_seconds: float = Field(
        default=30.0,
        validation_alias=AliasChoices(
            "http_timeout_seconds",
            AliasPath("http", "timeout_seconds"),
        ),
    )
    http_follow_redirects: bool = Field(
        default=True,
        validation_alias=AliasChoices(
            "http_follow_redirects",
            AliasPath("http", "follow_redirects"),
        ),
    )
    http_user_agent: str = Field(
        default=_BROWSER_UA,
        validation_alias=AliasChoices(
            "http_user_agent",
            AliasPath("http", "user_agent"),
        ),
    )
    http_retry_max_attempts: int = Field(
        default=2,
        validation_alias=AliasChoices(
            "http_retry_max_attempts",
            AliasPath("http", "retry_max_attempts"),
        ),
        description="Retries on 429/503 at the transport level.",
    )
    http_retry_backoff_base: float = Field(
        default=1.0,
        validation_alias=AliasChoices(
            "http_retry_backoff_base",
            AliasPath("http", "retry_backoff_base"),
        ),
    )
    http_retry_max_backoff: float = Field(
        default=10.0,
        validation_alias=AliasChoices(
            "http_retry_max_backoff",
            AliasPath("http", "retry_max_backoff"),
        ),
    )
    rate_limit_requests_per_second: float = Field(
        default=0.0,
        validation_alias=AliasChoices(
            "rate_limit_requests_per_second",
            AliasPath("http", "rate_limit_rps"),
        ),
        description="Per-domain outbound request rate. 0 = unlimited.",
    )

    api_rate_limit_rpm: int = Field(
        default=0,
        description="Inbound requests per minute per client IP. 0 = unlimited.",
    )

    # Logging (YAML section: logging.*)
    log_level: LogLevel = Field(
        default="INFO",
        validation_alias=AliasChoices(
            "log_level",
            AliasPath("logging", "level"),
        ),
    )
    log_format: Optional[LogFormat] = Field(
        default=None,
        validation_alias=AliasChoices(
            "log_format",
            AliasPath("logging", "format"),
        ),
        description=(
            "Log renderer format (console/json). If unset, derived from environment."
        ),
    )

    cache: CacheConfig = Field(default_factory=CacheConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    download: DownloadConfig = Field(default_factory=DownloadConfig)
    addons: AddonsConfig = Field(default_factory=AddonsConfig)

    @field_validator("http_timeout_seconds")
    @classmethod
    def _validate_http_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("http_timeout_seconds must be > 0")
        return v

    @model_validator(mode="after")
    def _derive_defaults(self) -> "AppConfig":
        # Default log format: console in dev/test, json in prod.
        if self.log_format is None:
            self.log_format = "json" if self.environment == "prod" else "console"
        return self

    def to_sectioned_dict(self) -> dict[str, Any]:
        """
        Dump configuration in the sectioned shape used by config.yaml/docs.
        """
        return {
            "app_name": self.app_name,
            "environment": self.environment,
            "http": {
                "timeout_seconds": self.http_timeout_seconds,
                "follow_redirects": self.http_follow_redirects,
                "user_agent": self.http_user_agent,
                "retry_max_attempts": self.http_retry_max_attempts,
                "retry_backoff_base": self.http_retry_backoff_base,
                "retry_max_backoff": self.http_retry_max_backoff,
                "rate_limit_rps": self.rate_limit_requests_per_second,
            },
            "logging": {"level": self.log_level, "format": self.log_format},
            "cache": {
                "backend": self.cache.backend,
                "dir": str(self.cache.directory),
                "ttl_seconds": self.cache.ttl_seconds,
            },
            "providers": self.providers.model_dump(),
            "download": self.download.model_dump(),
            "addons": self.addons.model_dump(),
        }


class EnvOverrides(BaseSettings):
    """
    Environment-variable overrides (all optional).

    load.py creates EnvOverrides() to read VIDRELAY_* variables, converts
    them to a dict of set values and merges it over YAML/defaults before
    validating AppConfig.

    Supported env var examples (flat, explicit):
    - VIDRELAY_HTTP_TIMEOUT_SECONDS
    - VIDRELAY_LOG_LEVEL
    - VIDRELAY_FFMPEG_PATH
    - VIDRELAY_STRICT_SEGMENTS
    """

    model_config = SettingsConfigDict(
        env_prefix="VIDRELAY_",
        extra="ignore",
        case_sensitive=False,
    )

    app_name: Optional[str] = None
    environment: Optional[Environment] = None

    http_timeout_seconds: Optional[float] = None
    http_follow_redirects: Optional[bool] = None
    http_user_agent: Optional[str] = None

    log_level: Optional[LogLevel] = None
    log_format: Optional[LogFormat] = None

    cache_dir: Optional[Path] = None
    cache_ttl_seconds: Optional[int] = None

    ffmpeg_path: Optional[str] = None
    prefetch_depth: Optional[int] = None
    strict_segments: Optional[bool] = None

    api_rate_limit_rpm: Optional[int] = None

    @field_validator("cache_dir", mode="before")
    @classmethod
    def _validate_paths(cls, v: Any) -> Any:
        if v is None:
            return None
        return _normalize_path(v)

    def to_update_dict(self) -> dict[str, Any]:
        """
        Return only values that were actually provided (non-None), for merging.
        """
        return self.model_dump(exclude_none=True)
