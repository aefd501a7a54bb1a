"""Configuration management for Folio Browser."""

import os
from typing import Optional

import toml
from pydantic import BaseModel, Field, field_validator

from .models.row import DEFAULT_SORT_COLUMN, KNOWN_COLUMNS


def default_cache_path() -> str:
    """Get default path of the local mirror database."""
    if os.name == "nt":
        base = os.environ.get("LOCALAPPDATA", os.path.join("~", "AppData", "Local"))
    else:
        base = os.environ.get("XDG_CACHE_HOME", os.path.join("~", ".cache"))
    return os.path.join(base, "folio-browser", "mirror.duckdb")


def _expand(value: str) -> str:
    return os.path.expanduser(os.path.expandvars(value))


class RemoteConfig(BaseModel):
    """Configuration for the remote data server."""

    base_url: str = Field(default="http://127.0.0.1:3000")
    data_path: str = Field(default="/data", description="Paginated rows endpoint")
    count_path: str = Field(default="/data/count", description="Row count endpoint")
    timeout_seconds: float = Field(default=30.0, gt=0, le=600)
    token: Optional[str] = Field(
        default=None,
        description="Bearer token issued by the login service",
    )
    token_env: str = Field(
        default="FOLIO_BROWSER_TOKEN",
        description="Environment variable checked before 'token'",
    )

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v):
        """Normalize base URL so paths can be appended."""
        return v.rstrip("/")

    def resolve_token(self) -> Optional[str]:
        """Get the bearer token, preferring the environment."""
        return os.environ.get(self.token_env) or self.token


class CacheConfig(BaseModel):
    """Configuration for the local DuckDB mirror and page cache."""

    db_path: str = Field(default_factory=default_cache_path)
    page_cache_entries: int = Field(
        default=0,
        ge=0,
        description="Maximum remembered pages per session (0 = unbounded)",
    )

    @field_validator("db_path")
    @classmethod
    def expand_db_path(cls, v):
        """Expand user paths and environment variables."""
        return _expand(v)


class QueryConfig(BaseModel):
    """Defaults applied by the query planner."""

    default_page_size: int = Field(default=20, ge=1, le=10000)
    default_sort_column: str = Field(default=DEFAULT_SORT_COLUMN)

    @field_validator("default_sort_column")
    @classmethod
    def known_sort_column(cls, v):
        """Only schema columns may be used for sorting."""
        if v not in KNOWN_COLUMNS:
            raise ValueError(f"Unknown sort column: {v}")
        return v


class SyncConfig(BaseModel):
    """Configuration for bulk replication into the local mirror."""

    chunk_size: int = Field(default=10000, ge=100, le=10000)


class ExportConfig(BaseModel):
    """Configuration for full-dataset export."""

    chunk_size: int = Field(default=2000, ge=100, le=10000)
    default_format: str = Field(default="xlsx", pattern="^(xlsx|csv)$")
    export_dir: str = Field(default="./exports")
    file_prefix: str = Field(default="holdings", min_length=1)

    @field_validator("export_dir")
    @classmethod
    def expand_export_dir(cls, v):
        """Expand user paths and environment variables."""
        return _expand(v)


class Config(BaseModel):
    """Main configuration class."""

    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    query: QueryConfig = Field(default_factory=QueryConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    export: ExportConfig = Field(default_factory=ExportConfig)


class ConfigManager:
    """Manages configuration loading and access."""

    ENV_VAR = "FOLIO_BROWSER_CONFIG"

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration manager.

        Args:
            config_path: Path to configuration file. If None, searches standard locations.
        """
        self.config_path = config_path or self._find_config_file()
        self._config: Optional[Config] = None

    def _find_config_file(self) -> str:
        """Find configuration file in standard locations."""
        search_paths = [
            os.environ.get(self.ENV_VAR, ""),
            os.path.expanduser("~/.config/folio-browser/config.toml"),
            "config.toml",
            "folio_browser.toml",
        ]

        for path in search_paths:
            if path and os.path.exists(path):
                return path

        # Return default path even if it doesn't exist
        return search_paths[1]

    @property
    def config(self) -> Config:
        """Get configuration, loading if necessary."""
        if self._config is None:
            self._config = self._load_config()
        return self._config

    def _load_config(self) -> Config:
        """Load configuration from TOML file."""
        if not os.path.exists(self.config_path):
            return Config()

        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                config_data = toml.load(f)
            return Config(**config_data)
        except (toml.TomlDecodeError, ValueError) as e:
            raise ValueError(f"Invalid configuration file {self.config_path}: {e}")

    def reload(self):
        """Drop the loaded configuration so the next access re-reads it."""
        self._config = None
