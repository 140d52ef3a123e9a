"""Tests for configuration management."""

import pytest
from pydantic import ValidationError


def create_test_settings(**kwargs):
    """Helper to create Settings instance without loading .env file."""
    from tonga.config import Settings

    return Settings(_env_file=None, **kwargs)


class TestSettings:
    def test_defaults(self) -> None:
        settings = create_test_settings()
        assert settings.postgres_dsn.startswith("postgresql://")
        assert settings.pool_min_size == 1
        assert settings.pool_max_size == 10
        assert settings.default_hide_for_seconds == 30.0
        assert settings.default_read_quantity == 10
        assert settings.consumer_workers == 1
        assert settings.gc_interval_seconds == 60.0

    def test_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TONGA_POSTGRES_DSN", "postgresql://u:p@db:5432/q")
        monkeypatch.setenv("TONGA_LOG_LEVEL", "debug")
        monkeypatch.setenv("TONGA_DEFAULT_HIDE_FOR_SECONDS", "2.5")
        monkeypatch.setenv("TONGA_CONSUMER_WORKERS", "4")

        settings = create_test_settings()
        assert settings.postgres_dsn == "postgresql://u:p@db:5432/q"
        assert settings.log_level == "DEBUG"
        assert settings.default_hide_for_seconds == 2.5
        assert settings.consumer_workers == 4

    def test_unknown_log_level(self) -> None:
        with pytest.raises(ValidationError, match="Unknown log level"):
            create_test_settings(log_level="chatty")

    def test_pool_bounds(self) -> None:
        with pytest.raises(ValidationError, match="pool_min_size"):
            create_test_settings(pool_min_size=5, pool_max_size=2)

    @pytest.mark.parametrize(
        "field,value",
        [
            ("default_read_quantity", 0),
            ("default_hide_for_seconds", -1),
            ("consumer_workers", 0),
            ("gc_interval_seconds", 0),
        ],
    )
    def test_rejects_out_of_range(self, field: str, value: float) -> None:
        with pytest.raises(ValidationError):
            create_test_settings(**{field: value})

    @pytest.mark.parametrize("env,expected", [("development", True), ("dev", True), ("test", False)])
    def test_is_development(self, env: str, expected: bool) -> None:
        assert create_test_settings(environment=env).is_development is expected

    def test_log_file_path(self) -> None:
        settings = create_test_settings(log_directory="/var/log/tonga", log_file_prefix="worker")
        assert settings.log_file_path == "/var/log/tonga/worker.log"


class TestGetSettings:
    def test_cached(self) -> None:
        from tonga.config import get_settings

        assert get_settings() is get_settings()

    def test_cache_clear_reloads(self, monkeypatch: pytest.MonkeyPatch) -> None:
        from tonga.config import get_settings

        first = get_settings()
        monkeypatch.setenv("TONGA_GC_INTERVAL_SECONDS", "5")
        get_settings.cache_clear()
        second = get_settings()

        assert second is not first
        assert second.gc_interval_seconds == 5.0
