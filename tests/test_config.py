# tests/test_config.py

from matchsync.sync.config import SyncConfig


def test_defaults(monkeypatch):
    for name in ("MATCHSYNC_PORT", "MATCHSYNC_POLL_INTERVAL", "MATCHSYNC_PROVIDER_API_KEY", "RIOT_API_KEY"):
        monkeypatch.delenv(name, raising=False)

    cfg = SyncConfig.from_env()

    assert cfg.port == 8780
    assert cfg.poll_interval == 10.0
    assert cfg.stuck_threshold == 600.0
    assert cfg.max_matches_per_sync == 500
    assert cfg.provider_api_key == ""


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("MATCHSYNC_PORT", "9000")
    monkeypatch.setenv("MATCHSYNC_WORKER_POOL", "0")
    monkeypatch.setenv("MATCHSYNC_POLL_INTERVAL", "2.5")
    monkeypatch.setenv("MATCHSYNC_SWEEP", "off")
    monkeypatch.setenv("MATCHSYNC_CORS_ORIGINS", "http://a.test, http://b.test,")
    monkeypatch.setenv("MATCHSYNC_PROVIDER_URL", "https://americas.api.riotgames.com/")
    monkeypatch.setenv("RIOT_API_KEY", "RGAPI-abc")
    monkeypatch.setenv("MATCHSYNC_LOG_LEVEL", "debug")

    cfg = SyncConfig.from_env()

    assert cfg.port == 9000
    assert cfg.worker_pool_size == 1
    assert cfg.poll_interval == 2.5
    assert cfg.sweep_enabled is False
    assert cfg.cors_allowed_origins == ["http://a.test", "http://b.test"]
    assert cfg.provider_base_url == "https://americas.api.riotgames.com"
    assert cfg.provider_api_key == "RGAPI-abc"
    assert cfg.log_level == "DEBUG"


def test_bad_numbers_fall_back_to_defaults(monkeypatch):
    monkeypatch.setenv("MATCHSYNC_PORT", "eighty")
    monkeypatch.setenv("MATCHSYNC_STUCK_THRESHOLD", "")

    cfg = SyncConfig.from_env()

    assert cfg.port == 8780
    assert cfg.stuck_threshold == 600.0


def test_explicit_api_key_wins_over_riot_env(monkeypatch):
    monkeypatch.setenv("RIOT_API_KEY", "RGAPI-fallback")
    monkeypatch.setenv("MATCHSYNC_PROVIDER_API_KEY", "RGAPI-primary")

    assert SyncConfig.from_env().provider_api_key == "RGAPI-primary"
