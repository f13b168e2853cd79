"""Engine configuration — env-driven via pydantic-settings.

Reads PACKSMITH_* environment variables and an optional .env file. There is
no module-level instance: callers build an ``EngineConfig`` and hand it to
the engine, which carries it in the install context.
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineConfig(BaseSettings):
    """Tunables for downloads, concurrency, locking and logging.

    Examples
    --------
    Override via environment::

        export PACKSMITH_DOWNLOAD_WORKERS=4
        export PACKSMITH_LOG_FORMAT=text
        export PACKSMITH_TARGET_OS=linux
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PACKSMITH_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Logging
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "json"

    # Concurrency
    download_workers: int = Field(default=8, ge=1, le=64)
    promote_workers: int = Field(default=2, ge=1, le=16)

    # Network
    request_timeout_seconds: float = Field(default=30.0, gt=0)
    max_download_attempts: int = Field(default=4, ge=1)
    backoff_base_seconds: float = Field(default=0.5, ge=0)
    backoff_max_seconds: float = Field(default=8.0, ge=0)
    user_agent: str = "packsmith/0.1"
    chunk_size: int = Field(default=64 * 1024, ge=1024)

    # Integrity: full re-downloads allowed after a checksum mismatch
    max_integrity_attempts: int = Field(default=3, ge=1)

    # Instance lock older than this is considered abandoned
    lock_stale_seconds: float = Field(default=6 * 3600, gt=0)

    snapshot_after_install: bool = True

    # Upstream resolution (only used while generating a lockfile)
    target_os: Literal["windows", "linux", "osx"] = "windows"
    native_arch: str = "64"
    version_manifest_url: str = (
        "https://piston-meta.mojang.com/mc/game/version_manifest_v2.json"
    )
    asset_base_url: str = "https://resources.download.minecraft.net"
