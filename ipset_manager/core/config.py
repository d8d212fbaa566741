"""
Configuration for the record store, the API server and its authentication.
"""

import os
from enum import Enum
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field

from .logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".ipset-manager" / "config.yaml"


class StorageBackend(str, Enum):
    """Supported persistence strategies."""

    SNAPSHOT = "snapshot"
    SQL = "sql"
    VERSIONED = "versioned"

    @classmethod
    def from_name(cls, name: str) -> "StorageBackend":
        """Resolve a backend name, accepting the legacy storage type names."""
        aliases = {
            "file": cls.SNAPSHOT,
            "json": cls.SNAPSHOT,
            "mysql": cls.SQL,
            "postgresql": cls.SQL,
            "postgres": cls.SQL,
            "sqlite": cls.SQL,
            "clickhouse": cls.VERSIONED,
            "append-only": cls.VERSIONED,
        }
        key = name.strip().lower()
        if key in aliases:
            return aliases[key]
        return cls(key)


class StorageConfig(BaseModel):
    """Where and how records are persisted."""

    backend: StorageBackend = StorageBackend.SNAPSHOT
    snapshot_path: Path = Path("data/ipset_records.json")
    database_url: str = "sqlite:///data/ipset_records.db"
    versioned_database_url: str = "sqlite:///data/ipset_record_versions.db"
    echo_sql: bool = False


class AuthConfig(BaseModel):
    """API key storage and token signing."""

    jwt_secret: str = "change-me-in-production"
    keys_file: Path = Path("data/auth_keys.json")
    token_ttl_hours: int = Field(default=24, ge=1)
    key_ttl_days: int = Field(default=365, ge=1)


class ServerConfig(BaseModel):
    """HTTP listener settings."""

    host: str = "localhost"
    port: int = 8080


class AppConfig(BaseModel):
    """Top-level configuration, passed explicitly to each component."""

    storage: StorageConfig = Field(default_factory=StorageConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    @classmethod
    def load_from_file(cls, config_path: Optional[Path] = None) -> "AppConfig":
        """Load configuration from a YAML file, falling back to the environment."""
        if config_path is None:
            config_path = DEFAULT_CONFIG_PATH

        if not config_path.exists():
            logger.info(
                "Config file not found at %s, using defaults and environment variables",
                config_path,
            )
            return cls.load_from_env()

        try:
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Failed to load config from %s: %s", config_path, e)
            return cls.load_from_env()

        section = data.get("ipset_manager", data)
        storage = dict(section.get("storage", {}))
        if "backend" in storage:
            storage["backend"] = StorageBackend.from_name(str(storage["backend"]))
        return cls(
            storage=StorageConfig(**storage),
            auth=AuthConfig(**section.get("auth", {})),
            server=ServerConfig(**section.get("server", {})),
        )

    @classmethod
    def load_from_env(cls) -> "AppConfig":
        """Load configuration from environment variables."""
        storage = StorageConfig()
        if os.getenv("IPSET_STORAGE_TYPE"):
            storage.backend = StorageBackend.from_name(os.environ["IPSET_STORAGE_TYPE"])
        if os.getenv("IPSET_FILE"):
            storage.snapshot_path = Path(os.environ["IPSET_FILE"])
        if os.getenv("DATABASE_URL"):
            storage.database_url = os.environ["DATABASE_URL"]
        if os.getenv("VERSIONED_DATABASE_URL"):
            storage.versioned_database_url = os.environ["VERSIONED_DATABASE_URL"]

        auth = AuthConfig()
        if os.getenv("JWT_SECRET"):
            auth.jwt_secret = os.environ["JWT_SECRET"]
        if os.getenv("AUTH_KEYS_FILE"):
            auth.keys_file = Path(os.environ["AUTH_KEYS_FILE"])
        if os.getenv("TOKEN_TTL_HOURS"):
            auth.token_ttl_hours = int(os.environ["TOKEN_TTL_HOURS"])

        server = ServerConfig()
        if os.getenv("SERVER_HOST"):
            server.host = os.environ["SERVER_HOST"]
        if os.getenv("SERVER_PORT"):
            server.port = int(os.environ["SERVER_PORT"])

        return cls(storage=storage, auth=auth, server=server)
