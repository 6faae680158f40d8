"""Application configuration via Pydantic Settings.

All configuration is driven by environment variables.  Every setting has a
working default so that a development instance can start with nothing but a
reachable Redis; invalid values raise a ``ValidationError`` at startup so
misconfigured deployments fail fast.

Usage::

    from filesentry.config import get_settings

    settings = get_settings()
    print(settings.clamav_host)

The ``get_settings`` function is cached with ``functools.lru_cache``. To override
settings in tests, patch ``filesentry.config.get_settings`` or set the relevant
environment variables before calling ``get_settings()`` for the first time.
"""
from __future__ import annotations

import functools

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

#: Product ceiling for a single upload (1 GiB).  ``max_upload_bytes`` may be
#: configured lower but never higher.
HARD_MAX_UPLOAD_BYTES = 1024 * 1024 * 1024

_DEFAULT_CODE_EXTENSIONS = ".js,.ts,.jsx,.tsx,.py,.php,.html,.css"


class Settings(BaseSettings):
    """FileSentry application settings.

    Environment variables are read case-insensitively. A ``.env`` file in the
    working directory is loaded automatically when present.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Redis (result store + Celery broker)
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis DSN, e.g. redis://localhost:6379/0",
    )
    result_store_backend: str = Field(
        default="redis",
        description="Result store implementation: 'redis' or 'memory'",
    )
    status_ttl_seconds: int = Field(
        default=86_400,
        ge=60,
        description="Lifetime of scan status entries in the result store",
    )

    # ClamAV daemon
    clamav_host: str = Field(
        default="localhost",
        description="Hostname of the clamd TCP listener (empty disables AV scanning)",
    )
    clamav_port: int = Field(default=3310, ge=1, le=65535)
    clamav_socket_path: str | None = Field(
        default=None,
        description="clamd Unix socket path; takes precedence over host/port",
    )
    clamav_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Upper bound for a single AV scan call",
    )
    clamav_stream: bool = Field(
        default=True,
        description="Stream file bytes via INSTREAM instead of asking clamd to read the path",
    )
    av_max_concurrency: int = Field(
        default=4,
        ge=1,
        description="Maximum number of concurrent calls to the AV daemon per process",
    )

    # Reputation service
    virustotal_api_key: str | None = Field(
        default=None,
        description="VirusTotal API key; absence disables reputation lookups",
    )
    virustotal_base_url: str = Field(default="https://www.virustotal.com/api/v3")
    reputation_timeout_seconds: float = Field(default=15.0, gt=0)
    reputation_high_threshold: int = Field(
        default=3,
        ge=1,
        description="Minimum positive engine count for a high-risk reputation detection",
    )

    # Uploads
    max_upload_bytes: int = Field(
        default=100 * 1024 * 1024,
        ge=1,
        le=HARD_MAX_UPLOAD_BYTES,
        description="Maximum accepted upload size in bytes",
    )
    upload_dir: str = Field(
        default="uploads",
        description="Directory where uploaded files are staged before scanning",
    )

    # Heuristic scanner
    code_extensions: str = Field(
        default=_DEFAULT_CODE_EXTENSIONS,
        description="Comma-separated file extensions routed to the heuristic code scanner",
    )
    heuristic_rules_path: str | None = Field(
        default=None,
        description="Optional JSON file with additional heuristic rules",
    )

    # Environment
    environment: str = Field(
        default="production",
        description="Deployment environment: development, staging, or production",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode (never set True in production)",
    )

    @field_validator("redis_url")
    @classmethod
    def validate_redis_url(cls, v: str) -> str:
        if not v.startswith(("redis://", "rediss://", "unix://")):
            raise ValueError("redis_url must be a redis://, rediss:// or unix:// DSN")
        return v

    @field_validator("result_store_backend")
    @classmethod
    def validate_result_store_backend(cls, v: str) -> str:
        v = v.lower()
        if v not in ("redis", "memory"):
            raise ValueError("result_store_backend must be 'redis' or 'memory'")
        return v

    @property
    def code_extension_set(self) -> frozenset[str]:
        """Normalised set of code extensions (lower-case, leading dot)."""
        exts = set()
        for raw in self.code_extensions.split(","):
            ext = raw.strip().lower()
            if not ext:
                continue
            exts.add(ext if ext.startswith(".") else f".{ext}")
        return frozenset(exts)


@functools.lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the cached application settings singleton.

    The first call reads environment variables (and ``.env``). Subsequent calls
    return the cached instance. Clear the cache with ``get_settings.cache_clear()``
    between tests.
    """
    return Settings()


settings = get_settings()
