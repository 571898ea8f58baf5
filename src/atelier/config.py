"""Lightweight application configuration loader."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() not in {"0", "false", "no"}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


@dataclass(frozen=True)
class AppSettings:
    """Immutable configuration sourced from environment variables."""

    environment: str = "development"
    database_url: str = "sqlite+aiosqlite:///atelier.db"
    artifacts_root: Path = Path("artifacts")
    workspace_root: Path = Path(".")
    api_base: str = "https://generators.example.com"
    api_key: str | None = None
    enable_local_fallback: bool = True
    simulated_latency: float = 0.0
    log_level: str = "INFO"
    retry_count: int = 6
    download_retry_timeout: float = 90.0
    status_check_timeout: float = 10.0
    poll_interval: float = 1.0
    quote_timeout: float = 30.0
    generate_timeout: float = 45.0
    transport_timeout: float = 30.0
    precache_timeout: float = 30.0

    @classmethod
    def from_env(cls) -> AppSettings:
        return cls(
            environment=os.getenv("ATELIER_ENV", cls.environment),
            database_url=os.getenv("ATELIER_DATABASE_URL", cls.database_url),
            artifacts_root=Path(os.getenv("ATELIER_ARTIFACTS_ROOT", str(cls.artifacts_root))),
            workspace_root=Path(os.getenv("ATELIER_WORKSPACE_ROOT", str(cls.workspace_root))),
            api_base=os.getenv("ATELIER_API_BASE", cls.api_base),
            api_key=os.getenv("ATELIER_API_KEY") or None,
            enable_local_fallback=_env_bool("ATELIER_LOCAL_FALLBACK", True),
            simulated_latency=_env_float("ATELIER_SIMULATED_LATENCY", cls.simulated_latency),
            log_level=os.getenv("ATELIER_LOG_LEVEL", cls.log_level).upper(),
            retry_count=_env_int("ATELIER_RETRY_COUNT", cls.retry_count),
            download_retry_timeout=_env_float(
                "ATELIER_DOWNLOAD_RETRY_TIMEOUT", cls.download_retry_timeout
            ),
            status_check_timeout=_env_float(
                "ATELIER_STATUS_CHECK_TIMEOUT", cls.status_check_timeout
            ),
            poll_interval=_env_float("ATELIER_POLL_INTERVAL", cls.poll_interval),
            quote_timeout=_env_float("ATELIER_QUOTE_TIMEOUT", cls.quote_timeout),
            generate_timeout=_env_float("ATELIER_GENERATE_TIMEOUT", cls.generate_timeout),
            transport_timeout=_env_float("ATELIER_TRANSPORT_TIMEOUT", cls.transport_timeout),
            precache_timeout=_env_float("ATELIER_PRECACHE_TIMEOUT", cls.precache_timeout),
        )


__all__ = ["AppSettings"]
