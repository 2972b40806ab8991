"""Tests for environment-driven configuration."""

import logging

import pytest

from src.entsync.api.config import SyncConfig, configure_logging
from src.entsync.api.exceptions import ConfigurationError

ENV_KEYS = (
    "ENTSYNC_DB_PATH",
    "ENTSYNC_DRY_RUN",
    "ENTSYNC_HEARTBEAT_TTL",
    "ENTSYNC_HTTP_TIMEOUT",
    "ENTSYNC_LOG_LEVEL",
)


@pytest.fixture
def clean_env(monkeypatch):
    """Unset every ENTSYNC_* variable and restore it (or its absence) afterwards.

    Setting first makes monkeypatch remember the original state, so values a
    dotenv file loads during the test are removed on teardown.
    """
    for key in ENV_KEYS:
        monkeypatch.setenv(key, "")
        monkeypatch.delenv(key)
    return monkeypatch


class TestSyncConfig:
    """Tests for SyncConfig."""

    def test_defaults(self):
        config = SyncConfig()
        assert config.db_path == "entsync.db"
        assert config.dry_run is False
        assert config.heartbeat_ttl == 300
        assert config.http_timeout == 60.0
        assert config.log_level == "INFO"

    def test_from_env_defaults(self, clean_env):
        assert SyncConfig.from_env() == SyncConfig()

    def test_from_env_reads_variables(self, clean_env):
        clean_env.setenv("ENTSYNC_DB_PATH", "/var/lib/entsync/ledger.db")
        clean_env.setenv("ENTSYNC_DRY_RUN", "yes")
        clean_env.setenv("ENTSYNC_HEARTBEAT_TTL", "60")
        clean_env.setenv("ENTSYNC_HTTP_TIMEOUT", "2.5")
        clean_env.setenv("ENTSYNC_LOG_LEVEL", "debug")

        config = SyncConfig.from_env()

        assert config.db_path == "/var/lib/entsync/ledger.db"
        assert config.dry_run is True
        assert config.heartbeat_ttl == 60
        assert config.http_timeout == 2.5
        assert config.log_level == "DEBUG"

    def test_from_env_loads_dotenv_file(self, clean_env, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("ENTSYNC_DB_PATH=from-dotenv.db\nENTSYNC_DRY_RUN=true\n")

        config = SyncConfig.from_env(str(env_file))

        assert config.db_path == "from-dotenv.db"
        assert config.dry_run is True

    def test_environment_wins_over_dotenv(self, clean_env, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("ENTSYNC_DB_PATH=from-dotenv.db\n")
        clean_env.setenv("ENTSYNC_DB_PATH", "from-shell.db")

        assert SyncConfig.from_env(str(env_file)).db_path == "from-shell.db"

    @pytest.mark.parametrize("key,value", [
        ("ENTSYNC_DRY_RUN", "maybe"),
        ("ENTSYNC_HEARTBEAT_TTL", "soon"),
        ("ENTSYNC_HEARTBEAT_TTL", "-1"),
        ("ENTSYNC_HTTP_TIMEOUT", "fast"),
        ("ENTSYNC_LOG_LEVEL", "LOUD"),
    ])
    def test_invalid_values(self, clean_env, key, value):
        """Malformed values fail with the variable named in the details."""
        clean_env.setenv(key, value)
        with pytest.raises(ConfigurationError) as exc_info:
            SyncConfig.from_env()
        assert exc_info.value.details["key"] == key

    def test_blank_db_path(self, clean_env):
        clean_env.setenv("ENTSYNC_DB_PATH", "   ")
        with pytest.raises(ConfigurationError) as exc_info:
            SyncConfig.from_env()
        assert exc_info.value.details["missing_keys"] == ["ENTSYNC_DB_PATH"]


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_sets_root_level(self, monkeypatch):
        root = logging.getLogger()
        monkeypatch.setattr(root, "handlers", [])
        monkeypatch.setattr(root, "level", root.level)

        configure_logging("warning")

        assert root.level == logging.WARNING
        assert root.handlers
