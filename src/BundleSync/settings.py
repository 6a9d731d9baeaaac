# === NAVMAP v1 ===
# {
#   "module": "BundleSync.settings",
#   "purpose": "Pydantic settings models for origins, cache layout, HTTP, and logging",
#   "sections": [
#     {"id": "defaults", "name": "Defaults", "anchor": "DEF", "kind": "constants"},
#     {"id": "models", "name": "Settings Models", "anchor": "MOD", "kind": "api"},
#     {"id": "singleton", "name": "Settings Singleton", "anchor": "SGL", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Settings for the bundle synchronization engine.

Settings are loaded from ``BUNDLESYNC_``-prefixed environment variables using
:mod:`pydantic_settings`.  Nested groups use ``__`` as the delimiter, e.g.
``BUNDLESYNC_HTTP__ASSET_TIMEOUT=45`` or ``BUNDLESYNC_CACHE__ROOT=/tmp/web``.

Example:
    >>> settings = BundleSyncSettings(origins=["https://a.example", "https://b.example"])
    >>> settings.origins
    ['https://a.example', 'https://b.example']
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Annotated, Any, List, Optional

import platformdirs
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

__all__ = [
    "DEFAULT_ORIGIN",
    "normalize_origins",
    "CacheSettings",
    "HttpSettings",
    "LoggingSettings",
    "BundleSyncSettings",
    "get_settings",
    "reset_settings",
]

# --- Defaults -------------------------------------------------------------------

DEFAULT_ORIGIN = "https://app.10.zawie.io"
DEFAULT_CACHE_ROOT = Path(platformdirs.user_cache_dir("bundlesync")) / "WebCache"


def _expand_path(value: Any) -> Path:
    return Path(value).expanduser().resolve()


def normalize_origins(value: Any) -> List[str]:
    """Split comma-separated origins and strip whitespace and trailing slashes.

    Examples:
        >>> normalize_origins("https://a.example/, https://b.example")
        ['https://a.example', 'https://b.example']
    """
    if isinstance(value, str):
        value = value.split(",")
    origins = [str(item).strip().rstrip("/") for item in value if str(item).strip()]
    if not origins:
        raise ValueError("at least one origin is required")
    return origins


# --- Settings Models ------------------------------------------------------------


class CacheSettings(BaseModel):
    """On-disk layout of the cache root, staging area, and bundled fallback."""

    model_config = ConfigDict(frozen=True, validate_assignment=False)

    root: Path = Field(
        default=DEFAULT_CACHE_ROOT,
        description="Cache root holding version.json, asset-manifest.json, and the asset tree",
    )
    staging_dir: Optional[Path] = Field(
        default=None,
        description="Directory for in-flight downloads (defaults to a sibling of root)",
    )
    bundled_root: Optional[Path] = Field(
        default=None,
        description="Read-only bundled fallback tree containing its own index.html",
    )

    @field_validator("root", mode="before")
    @classmethod
    def normalize_root(cls, v: Any) -> Path:
        """Expand ``~`` and make the cache root absolute."""
        return _expand_path(v)

    @field_validator("staging_dir", "bundled_root", mode="before")
    @classmethod
    def normalize_optional(cls, v: Any) -> Optional[Path]:
        """Expand optional directories, treating empty strings as unset."""
        if v is None or v == "":
            return None
        return _expand_path(v)

    def resolved_staging_dir(self) -> Path:
        """Return the staging directory, defaulting to ``<root>.staging``."""
        if self.staging_dir is not None:
            return self.staging_dir
        return self.root.with_name(f"{self.root.name}.staging")


class HttpSettings(BaseModel):
    """HTTP client settings: timeouts, concurrency, and identification."""

    model_config = ConfigDict(frozen=True, validate_assignment=False)

    metadata_timeout: float = Field(
        default=10.0,
        gt=0.0,
        le=120.0,
        description="Timeout in seconds for version.json and asset-manifest.json",
    )
    asset_timeout: float = Field(
        default=30.0,
        gt=0.0,
        le=600.0,
        description="Timeout in seconds for each asset download",
    )
    connect_timeout: float = Field(
        default=5.0,
        gt=0.0,
        le=60.0,
        description="Connect timeout in seconds",
    )
    max_concurrent_downloads: int = Field(
        default=8,
        ge=1,
        le=64,
        description="Maximum number of simultaneous asset downloads",
    )
    http2: bool = Field(default=False, description="Enable HTTP/2 support")
    user_agent: str = Field(
        default="BundleSync/1.0",
        description="User-Agent header value",
    )


class LoggingSettings(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(frozen=True, validate_assignment=False)

    level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    emit_json_logs: bool = Field(
        default=False,
        description="Emit JSON-formatted records on the console handler",
    )
    log_dir: Optional[Path] = Field(
        default=None,
        description="Directory for rotating JSONL log files (disabled when unset)",
    )

    @field_validator("level", mode="before")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        """Normalize and validate logging level."""
        upper = str(v).upper()
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR"}
        if upper not in valid_levels:
            raise ValueError(f"level must be one of {sorted(valid_levels)}, got '{v}'")
        return upper

    @field_validator("log_dir", mode="before")
    @classmethod
    def normalize_log_dir(cls, v: Any) -> Optional[Path]:
        if v is None or v == "":
            return None
        return _expand_path(v)

    def level_int(self) -> int:
        """Convert level string to logging module integer."""
        return getattr(logging, self.level)


class BundleSyncSettings(BaseSettings):
    """Top-level settings for the bundle synchronization engine."""

    model_config = SettingsConfigDict(
        env_prefix="BUNDLESYNC_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    origins: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: [DEFAULT_ORIGIN],
        description="Candidate origin base URLs, tried in order",
    )
    cache: CacheSettings = Field(default_factory=CacheSettings)
    http: HttpSettings = Field(default_factory=HttpSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @field_validator("origins", mode="before")
    @classmethod
    def split_origins(cls, v: Any) -> List[str]:
        """Accept a comma-separated string and strip trailing slashes."""
        return normalize_origins(v)


# --- Settings Singleton ---------------------------------------------------------

_SETTINGS: Optional[BundleSyncSettings] = None
_SETTINGS_LOCK = threading.Lock()


def get_settings() -> BundleSyncSettings:
    """Return the process-wide settings, loading them from the environment once."""

    global _SETTINGS
    with _SETTINGS_LOCK:
        if _SETTINGS is None:
            _SETTINGS = BundleSyncSettings()
        return _SETTINGS


def reset_settings() -> None:
    """Drop the cached settings so the next :func:`get_settings` reloads them."""

    global _SETTINGS
    with _SETTINGS_LOCK:
        _SETTINGS = None
