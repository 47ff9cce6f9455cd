"""Worker pool, polling, recovery and provider settings."""

from __future__ import annotations

import os
from dataclasses import dataclass, field


@dataclass
class SyncConfig:
    # Versions
    server_version: str = "0.1.0"

    # Network
    host: str = "0.0.0.0"
    port: int = 8780
    cors_allow_all: bool = True
    cors_allowed_origins: list[str] = field(default_factory=list)

    # WebSocket
    ws_heartbeat: float = 10.0
    # Client messages are tiny subscribe/unsubscribe objects.
    ws_max_msg_size: int = 4096
    ws_msgs_per_sec: float = 20.0
    ws_msg_burst: float = 40.0

    # Worker
    worker_enabled: bool = True
    worker_pool_size: int = 4
    poll_interval: float = 10.0
    max_matches_per_sync: int = 500

    # Recovery
    stuck_threshold: float = 10 * 60.0
    sweep_interval: float = 5 * 60.0
    sweep_enabled: bool = True

    # Provider
    provider_base_url: str = "https://europe.api.riotgames.com"
    provider_api_key: str = ""
    provider_requests_per_sec: float = 20.0
    provider_burst: float = 20.0
    provider_timeout: float = 30.0

    # Persistence
    sqlite_enabled: bool = True
    sqlite_path: str = "matchsync.sqlite3"

    log_level: str = "INFO"

    @staticmethod
    def _parse_bool(v: str | None, default: bool) -> bool:
        if v is None:
            return default
        return v.strip().lower() in ("1", "true", "yes", "on")

    @staticmethod
    def _parse_float(v: str | None, default: float) -> float:
        if v is None or not v.strip():
            return default
        try:
            return float(v)
        except ValueError:
            return default

    @staticmethod
    def _parse_int(v: str | None, default: int) -> int:
        if v is None or not v.strip():
            return default
        try:
            return int(v)
        except ValueError:
            return default

    @classmethod
    def from_env(cls) -> "SyncConfig":
        env = os.environ
        cfg = cls()
        cfg.host = env.get("MATCHSYNC_HOST", cfg.host)
        cfg.port = cls._parse_int(env.get("MATCHSYNC_PORT"), cfg.port)
        cfg.cors_allow_all = cls._parse_bool(env.get("MATCHSYNC_CORS_ALLOW_ALL"), cfg.cors_allow_all)
        origins = env.get("MATCHSYNC_CORS_ORIGINS")
        if origins:
            cfg.cors_allowed_origins = [o.strip() for o in origins.split(",") if o.strip()]

        cfg.worker_enabled = cls._parse_bool(env.get("MATCHSYNC_WORKER"), cfg.worker_enabled)
        cfg.worker_pool_size = max(1, cls._parse_int(env.get("MATCHSYNC_WORKER_POOL"), cfg.worker_pool_size))
        cfg.poll_interval = cls._parse_float(env.get("MATCHSYNC_POLL_INTERVAL"), cfg.poll_interval)
        cfg.max_matches_per_sync = cls._parse_int(env.get("MATCHSYNC_MAX_MATCHES"), cfg.max_matches_per_sync)

        cfg.stuck_threshold = cls._parse_float(env.get("MATCHSYNC_STUCK_THRESHOLD"), cfg.stuck_threshold)
        cfg.sweep_interval = cls._parse_float(env.get("MATCHSYNC_SWEEP_INTERVAL"), cfg.sweep_interval)
        cfg.sweep_enabled = cls._parse_bool(env.get("MATCHSYNC_SWEEP"), cfg.sweep_enabled)

        cfg.provider_base_url = env.get("MATCHSYNC_PROVIDER_URL", cfg.provider_base_url).rstrip("/")
        cfg.provider_api_key = env.get("MATCHSYNC_PROVIDER_API_KEY", env.get("RIOT_API_KEY", cfg.provider_api_key))
        cfg.provider_requests_per_sec = cls._parse_float(
            env.get("MATCHSYNC_PROVIDER_RPS"), cfg.provider_requests_per_sec
        )
        cfg.provider_timeout = cls._parse_float(env.get("MATCHSYNC_PROVIDER_TIMEOUT"), cfg.provider_timeout)

        cfg.sqlite_enabled = cls._parse_bool(env.get("MATCHSYNC_SQLITE"), cfg.sqlite_enabled)
        cfg.sqlite_path = env.get("MATCHSYNC_SQLITE_PATH", cfg.sqlite_path)

        cfg.log_level = env.get("MATCHSYNC_LOG_LEVEL", cfg.log_level).upper()
        return cfg
