"""Exception hierarchy shared across version probing, downloading, and caching.

A synchronization cycle spans remote metadata retrieval, concurrent asset
downloads, and writes into the on-disk cache.  This module groups the failure
modes into a small hierarchy so the orchestrator can react to high-level
categories (an origin that cannot be reached vs. a cache that cannot be
written) while still giving callers access to the specific details.
"""

from __future__ import annotations

from typing import Mapping, Optional

__all__ = [
    "BundleSyncError",
    "ConfigurationError",
    "OriginUnreachable",
    "DecodeError",
    "NoOriginReachable",
    "AssetDownloadFailure",
    "CacheFilesystemError",
    "CommitError",
    "NoContentAvailable",
]


class BundleSyncError(RuntimeError):
    """Base exception for bundle synchronization failures."""


class ConfigurationError(BundleSyncError):
    """Raised when settings or CLI inputs are invalid."""


class OriginUnreachable(BundleSyncError):
    """Raised when an origin times out, fails transport, or answers non-2xx."""

    def __init__(self, message: str, *, url: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class DecodeError(BundleSyncError):
    """Raised when a descriptor or manifest body cannot be parsed."""

    def __init__(self, message: str, *, url: str) -> None:
        super().__init__(message)
        self.url = url


class NoOriginReachable(BundleSyncError):
    """Raised when every candidate origin failed the version probe."""

    def __init__(self, failures: Mapping[str, str]) -> None:
        self.failures = dict(failures)
        if self.failures:
            detail = "; ".join(f"{origin}: {reason}" for origin, reason in self.failures.items())
        else:
            detail = "no origins configured"
        super().__init__(f"no origin reachable ({detail})")


class AssetDownloadFailure(BundleSyncError):
    """Per-file download failure recorded by the asset downloader."""

    def __init__(
        self,
        message: str,
        *,
        relative_path: str,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.relative_path = relative_path
        self.status_code = status_code


class CacheFilesystemError(BundleSyncError):
    """Raised when creating, moving, or deleting cache entries fails."""


class CommitError(CacheFilesystemError):
    """Raised when the generation metadata cannot be written."""


class NoContentAvailable(BundleSyncError):
    """Raised when neither the cache nor the bundled tree has an index file."""
