"""Hardcoded default configuration values."""

from __future__ import annotations

from typing import Any

DEFAULT_CONFIG: dict[str, Any] = {
    "app_name": "vidrelay",
    "environment": "dev",
    "http": {
        "timeout_seconds": 30.0,
        "follow_redirects": True,
        "user_agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
        "retry_max_attempts": 2,
        "retry_backoff_base": 1.0,
        "retry_max_backoff": 10.0,
        "rate_limit_rps": 0.0,
    },
    "logging": {
        "level": "INFO",
        "format": None,  # Derived from environment in schema.py
    },
    "cache": {
        "dir": "./.cache/vidrelay",
        "backend": "diskcache",
        "ttl_seconds": 3600,
    },
    "download": {
        "ffmpeg_path": "ffmpeg",
        "prefetch_depth": 8,
        "segment_retries": 3,
        "segment_backoff_seconds": 0.5,
        "strict_segments": False,
        "client_concurrency": 3,
        "season_delay_seconds": 2.0,
    },
    "addons": {
        "timeout_seconds": 15.0,
        "manifest_timeout_seconds": 10.0,
    },
}
