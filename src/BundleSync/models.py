"""Data model for bundle generations, content locations, and cycle results.

``VersionDescriptor`` and ``Manifest`` are parsed straight from the JSON
documents each origin serves (``version.json`` and ``asset-manifest.json``).
The remaining types are plain frozen dataclasses passed between the
synchronization stages and handed to the presentation layer.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Dict, FrozenSet, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "VERSION_FILENAME",
    "MANIFEST_FILENAME",
    "INDEX_FILENAME",
    "METADATA_FILENAMES",
    "VersionDescriptor",
    "Manifest",
    "normalize_relative_path",
    "CacheGeneration",
    "ContentSource",
    "ContentLocation",
    "NO_CONTENT",
    "ContentState",
    "ProbeResult",
    "ManifestResult",
    "DownloadReport",
    "SweepReport",
    "SyncState",
    "SyncOutcome",
    "SyncReport",
]

VERSION_FILENAME = "version.json"
MANIFEST_FILENAME = "asset-manifest.json"
INDEX_FILENAME = "index.html"
METADATA_FILENAMES: FrozenSet[str] = frozenset({VERSION_FILENAME, MANIFEST_FILENAME})

_CURRENT_DIR_PREFIX = "./"


def normalize_relative_path(path: str) -> str:
    """Return the canonical cache-relative form of a manifest path.

    A single leading ``./`` marker is stripped and repeated separators or
    ``.`` segments collapse, so install, sweep and presence checks agree.

    Examples:
        >>> normalize_relative_path("./static/js/main.js")
        'static/js/main.js'
        >>> normalize_relative_path("index.html")
        'index.html'
        >>> normalize_relative_path("static//./app.js")
        'static/app.js'
    """
    if path.startswith(_CURRENT_DIR_PREFIX):
        path = path[len(_CURRENT_DIR_PREFIX) :]
    if not path:
        return path
    return PurePosixPath(path).as_posix()


class VersionDescriptor(BaseModel):
    """Identity of one bundle build as published in ``version.json``."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    commit_hash: str = Field(alias="commitHash")
    commit_hash_full: str = Field(alias="commitHashFull")
    branch: str
    build_time: str = Field(alias="buildTime")
    build_type: str = Field(alias="buildType")
    commit_message: str = Field(alias="commitMessage")
    commit_date: str = Field(alias="commitDate")

    def same_generation(self, other: Optional["VersionDescriptor"]) -> bool:
        """Return ``True`` when ``other`` names the same build time and commit."""
        if other is None:
            return False
        return self.build_time == other.build_time and self.commit_hash == other.commit_hash


class Manifest(BaseModel):
    """File mapping for one bundle generation as published in ``asset-manifest.json``."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    files: Dict[str, str]
    entrypoints: List[str]

    def relative_paths(self) -> FrozenSet[str]:
        """Return every referenced file as a cache-relative path."""
        return frozenset(normalize_relative_path(path) for path in self.files.values())


@dataclass(frozen=True)
class CacheGeneration:
    """Committed state of the cache store at one point in time."""

    descriptor: VersionDescriptor
    manifest: Manifest
    present_paths: FrozenSet[str]

    @property
    def missing_paths(self) -> FrozenSet[str]:
        """Manifest paths with no file on disk (left behind by interrupted cycles)."""
        return self.manifest.relative_paths() - self.present_paths


class ContentSource(str, enum.Enum):
    """Where the presentation layer should load content from."""

    CACHE = "cache"
    BUNDLED = "bundled"
    NONE = "none"


@dataclass(frozen=True)
class ContentLocation:
    """Index file to render plus the directory it may read from."""

    source: ContentSource
    index_path: Optional[Path] = None
    read_access_root: Optional[Path] = None

    @property
    def available(self) -> bool:
        return self.source is not ContentSource.NONE


NO_CONTENT = ContentLocation(ContentSource.NONE)


@dataclass(frozen=True)
class ContentState:
    """Snapshot published to subscribers: content version plus location."""

    version: int
    location: ContentLocation


@dataclass(frozen=True)
class ProbeResult:
    descriptor: VersionDescriptor
    raw: bytes
    origin: str


@dataclass(frozen=True)
class ManifestResult:
    manifest: Manifest
    raw: bytes


@dataclass(frozen=True)
class DownloadReport:
    """Outcome of downloading every file named by a manifest."""

    attempted: int
    bytes_written: int = 0
    failed_paths: Tuple[str, ...] = ()

    @property
    def succeeded(self) -> bool:
        return not self.failed_paths


@dataclass(frozen=True)
class SweepReport:
    removed: Tuple[str, ...] = ()
    failed: Tuple[str, ...] = ()


class SyncState(str, enum.Enum):
    """States of one synchronization cycle."""

    IDLE = "idle"
    PROBING_VERSION = "probing_version"
    UP_TO_DATE = "up_to_date"
    FETCHING_MANIFEST = "fetching_manifest"
    DOWNLOADING_ASSETS = "downloading_assets"
    COMMITTED = "committed"
    DOWNLOAD_FAILED = "download_failed"
    CLEANING_ORPHANS = "cleaning_orphans"


class SyncOutcome(str, enum.Enum):
    """Terminal result of one synchronization cycle."""

    UP_TO_DATE = "up_to_date"
    COMMITTED = "committed"
    NO_ORIGIN_REACHABLE = "no_origin_reachable"
    MANIFEST_FAILED = "manifest_failed"
    DOWNLOAD_FAILED = "download_failed"
    COMMIT_FAILED = "commit_failed"
    BUSY = "busy"


@dataclass(frozen=True)
class SyncReport:
    """Summary of a synchronization cycle returned to the caller."""

    outcome: SyncOutcome
    content_version: int
    origin: Optional[str] = None
    descriptor: Optional[VersionDescriptor] = None
    failed_paths: Tuple[str, ...] = ()
    removed_paths: Tuple[str, ...] = ()
    error: Optional[str] = None
    cycle_id: Optional[str] = field(default=None, compare=False)

    @property
    def ok(self) -> bool:
        return self.outcome in (SyncOutcome.UP_TO_DATE, SyncOutcome.COMMITTED)
