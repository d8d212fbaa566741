"""
Tests for ipset_manager.core.config and backend selection.
"""

import logging
from pathlib import Path

import pytest

from ipset_manager.core.config import AppConfig, StorageBackend, StorageConfig
from ipset_manager.core.logging_config import get_logger, setup_logging
from ipset_manager.core.token import DEFAULT_API_URL, TokenManager
from ipset_manager.storage import (
    SnapshotRecordStore,
    SqlRecordStore,
    VersionedRecordStore,
    create_store,
)

ENV_VARS = (
    "IPSET_STORAGE_TYPE",
    "IPSET_FILE",
    "DATABASE_URL",
    "VERSIONED_DATABASE_URL",
    "JWT_SECRET",
    "AUTH_KEYS_FILE",
    "TOKEN_TTL_HOURS",
    "SERVER_HOST",
    "SERVER_PORT",
)


@pytest.fixture
def clean_env(monkeypatch):
    """Remove configuration variables from the environment."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestStorageBackend:
    """Test backend name resolution."""

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("snapshot", StorageBackend.SNAPSHOT),
            ("file", StorageBackend.SNAPSHOT),
            ("JSON", StorageBackend.SNAPSHOT),
            ("sql", StorageBackend.SQL),
            ("postgresql", StorageBackend.SQL),
            ("mysql", StorageBackend.SQL),
            ("versioned", StorageBackend.VERSIONED),
            ("clickhouse", StorageBackend.VERSIONED),
        ],
    )
    def test_from_name(self, name, expected):
        """Test canonical names and aliases."""
        assert StorageBackend.from_name(name) == expected

    def test_unknown_name(self):
        """Test that an unknown backend is rejected."""
        with pytest.raises(ValueError):
            StorageBackend.from_name("redis")


class TestAppConfig:
    """Test configuration loading."""

    def test_defaults(self, clean_env):
        """Test default values."""
        config = AppConfig.load_from_env()

        assert config.storage.backend == StorageBackend.SNAPSHOT
        assert config.server.port == 8080
        assert config.auth.token_ttl_hours == 24
        assert config.auth.key_ttl_days == 365

    def test_environment(self, clean_env):
        """Test overrides from environment variables."""
        clean_env.setenv("IPSET_STORAGE_TYPE", "postgresql")
        clean_env.setenv("DATABASE_URL", "postgresql://u:p@db/ipset")
        clean_env.setenv("JWT_SECRET", "s3cret")
        clean_env.setenv("SERVER_PORT", "9090")

        config = AppConfig.load_from_env()

        assert config.storage.backend == StorageBackend.SQL
        assert config.storage.database_url == "postgresql://u:p@db/ipset"
        assert config.auth.jwt_secret == "s3cret"
        assert config.server.port == 9090

    def test_missing_file_falls_back_to_env(self, clean_env, tmp_path):
        """Test loading when the config file does not exist."""
        clean_env.setenv("IPSET_FILE", "/tmp/records.json")

        config = AppConfig.load_from_file(tmp_path / "missing.yaml")

        assert config.storage.snapshot_path == Path("/tmp/records.json")

    def test_yaml_file(self, clean_env, tmp_path):
        """Test loading a YAML file with a top-level section."""
        path = tmp_path / "config.yaml"
        path.write_text(
            "ipset_manager:\n"
            "  storage:\n"
            "    backend: clickhouse\n"
            "    versioned_database_url: sqlite:///v.db\n"
            "  auth:\n"
            "    jwt_secret: from-file\n"
            "  server:\n"
            "    host: 0.0.0.0\n"
        )

        config = AppConfig.load_from_file(path)

        assert config.storage.backend == StorageBackend.VERSIONED
        assert config.storage.versioned_database_url == "sqlite:///v.db"
        assert config.auth.jwt_secret == "from-file"
        assert config.server.host == "0.0.0.0"

    def test_invalid_yaml_falls_back(self, clean_env, tmp_path):
        """Test that unparsable YAML uses defaults."""
        path = tmp_path / "config.yaml"
        path.write_text("storage: [unclosed\n")

        config = AppConfig.load_from_file(path)

        assert config.storage.backend == StorageBackend.SNAPSHOT


class TestCreateStore:
    """Test backend construction from configuration."""

    def test_snapshot(self, tmp_path):
        """Test the snapshot backend."""
        store = create_store(StorageConfig(snapshot_path=tmp_path / "r.json"))
        assert isinstance(store, SnapshotRecordStore)

    def test_sql(self, tmp_path):
        """Test the SQL backend."""
        config = StorageConfig(backend="sql", database_url=f"sqlite:///{tmp_path / 'r.db'}")
        with create_store(config) as store:
            assert isinstance(store, SqlRecordStore)

    def test_versioned(self, tmp_path):
        """Test the versioned backend."""
        config = StorageConfig(
            backend=StorageBackend.VERSIONED,
            versioned_database_url=f"sqlite:///{tmp_path / 'v.db'}",
        )
        with create_store(config) as store:
            assert isinstance(store, VersionedRecordStore)

    def test_sqlite_parent_directory_created(self, tmp_path):
        """Test that a missing directory for a SQLite file is created."""
        config = StorageConfig(
            backend=StorageBackend.SQL,
            database_url=f"sqlite:///{tmp_path / 'nested' / 'r.db'}",
        )
        with create_store(config):
            assert (tmp_path / "nested").is_dir()


class TestTokenManager:
    """Test cases for the CLI session file."""

    def test_save_and_get(self, tmp_path):
        """Test storing a token and its server."""
        manager = TokenManager(tmp_path)
        manager.save_token("abc", "http://ipset:8080")

        assert manager.get_token() == "abc"
        assert manager.get_api_url() == "http://ipset:8080"
        assert (manager.session_file.stat().st_mode & 0o777) == 0o600

    def test_defaults_without_session(self, tmp_path):
        """Test values before any login."""
        manager = TokenManager(tmp_path)

        assert manager.get_token() is None
        assert manager.get_api_url() == DEFAULT_API_URL

    def test_clear_keeps_url(self, tmp_path):
        """Test that logout forgets only the token."""
        manager = TokenManager(tmp_path)
        manager.save_token("abc", "http://ipset:8080")
        manager.clear_token()

        assert manager.get_token() is None
        assert manager.get_api_url() == "http://ipset:8080"

    def test_corrupt_session(self, tmp_path):
        """Test that a corrupt session file reads as empty."""
        manager = TokenManager(tmp_path)
        manager.session_file.write_text("{broken")

        assert manager.get_token() is None


class TestLogging:
    """Test logging setup."""

    def test_get_logger_namespace(self):
        """Test that loggers are placed under the package namespace."""
        assert get_logger("ipset_manager.storage.sql").name == "ipset_manager.storage.sql"
        assert get_logger("parser").name == "ipset_manager.parser"
        assert get_logger("__main__").name == "ipset_manager.cli"

    def test_verbosity_levels(self):
        """Test package and library levels per verbosity."""
        setup_logging(0, use_colors=False)
        assert logging.getLogger("ipset_manager").level == logging.WARNING

        setup_logging(1, use_colors=False)
        assert logging.getLogger("ipset_manager").level == logging.DEBUG
        assert logging.getLogger("sqlalchemy").level == logging.WARNING
        assert logging.getLogger().handlers[0].level == logging.DEBUG
