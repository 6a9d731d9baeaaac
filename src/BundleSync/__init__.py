"""Public API for the BundleSync asset cache synchronization engine.

BundleSync keeps a locally cached copy of a versioned, multi-file web bundle
in sync with one of several remote origins.  The presentation layer reads the
current content location from :class:`ContentVersionSignal` and reloads when
its version advances.
"""

from __future__ import annotations

__version__ = "0.1.0"

from .download import AssetDownloader, DownloadProgress
from .errors import (
    AssetDownloadFailure,
    BundleSyncError,
    CacheFilesystemError,
    CommitError,
    ConfigurationError,
    DecodeError,
    NoContentAvailable,
    NoOriginReachable,
    OriginUnreachable,
)
from .manifests import ManifestFetcher
from .models import (
    CacheGeneration,
    ContentLocation,
    ContentSource,
    ContentState,
    Manifest,
    SyncOutcome,
    SyncReport,
    SyncState,
    VersionDescriptor,
)
from .orchestrator import SyncOrchestrator, build_orchestrator
from .probe import VersionProbe, is_stale
from .reaper import OrphanReaper
from .resolver import ContentResolver
from .settings import BundleSyncSettings, get_settings
from .signals import ContentVersionSignal
from .storage import CacheStore

__all__ = [
    "__version__",
    "AssetDownloadFailure",
    "AssetDownloader",
    "BundleSyncError",
    "BundleSyncSettings",
    "CacheFilesystemError",
    "CacheGeneration",
    "CacheStore",
    "CommitError",
    "ConfigurationError",
    "ContentLocation",
    "ContentResolver",
    "ContentSource",
    "ContentState",
    "ContentVersionSignal",
    "DecodeError",
    "DownloadProgress",
    "Manifest",
    "ManifestFetcher",
    "NoContentAvailable",
    "NoOriginReachable",
    "OrphanReaper",
    "OriginUnreachable",
    "SyncOrchestrator",
    "SyncOutcome",
    "SyncReport",
    "SyncState",
    "VersionDescriptor",
    "VersionProbe",
    "build_orchestrator",
    "get_settings",
    "is_stale",
]
