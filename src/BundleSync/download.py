# === NAVMAP v1 ===
# {
#   "module": "BundleSync.download",
#   "purpose": "Concurrent, manifest-driven asset downloads into the cache store",
#   "sections": [
#     {"id": "progress", "name": "DownloadProgress", "anchor": "PRG", "kind": "api"},
#     {"id": "downloader", "name": "AssetDownloader", "anchor": "DLR", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Concurrent asset downloads for one manifest.

Every file named by the manifest is fetched with its own request on a bounded
thread pool.  Each body is streamed into the store's staging directory and
moved into the cache tree as soon as that single file completes.  A failing
file is recorded and never cancels its siblings; the overall report succeeds
only when every file did.

Files that completed before a sibling failed stay in the cache tree while the
metadata still names the previous generation.  The next successful cycle
overwrites them.
"""

from __future__ import annotations

import contextvars
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import suppress
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

import httpx

from .errors import AssetDownloadFailure, CacheFilesystemError
from .models import DownloadReport, Manifest
from .storage import CacheStore, safe_relative_path

__all__ = ["AssetDownloader", "DownloadProgress", "ProgressSnapshot"]

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class ProgressSnapshot:
    total: int
    completed: int
    failed: int
    bytes_written: int

    @property
    def finished(self) -> bool:
        return self.completed + self.failed >= self.total


class DownloadProgress:
    """Single aggregation point for counters shared by concurrent downloads."""

    def __init__(
        self,
        total: int,
        callback: Optional[Callable[[ProgressSnapshot], None]] = None,
    ) -> None:
        self._lock = threading.Lock()
        self._total = total
        self._completed = 0
        self._failed = 0
        self._bytes = 0
        self._failed_paths: List[str] = []
        self._callback = callback

    def record_success(self, size: int) -> None:
        with self._lock:
            self._completed += 1
            self._bytes += size
            snapshot = self._snapshot_unlocked()
        self._notify(snapshot)

    def record_failure(self, relative_path: str) -> None:
        with self._lock:
            self._failed += 1
            self._failed_paths.append(relative_path)
            snapshot = self._snapshot_unlocked()
        self._notify(snapshot)

    def snapshot(self) -> ProgressSnapshot:
        with self._lock:
            return self._snapshot_unlocked()

    def failed_paths(self) -> Tuple[str, ...]:
        with self._lock:
            return tuple(sorted(self._failed_paths))

    def _snapshot_unlocked(self) -> ProgressSnapshot:
        return ProgressSnapshot(
            total=self._total,
            completed=self._completed,
            failed=self._failed,
            bytes_written=self._bytes,
        )

    def _notify(self, snapshot: ProgressSnapshot) -> None:
        if self._callback is None:
            return
        try:
            self._callback(snapshot)
        except Exception:  # pragma: no cover - observer errors never affect downloads
            logger.exception("progress callback failed")


class AssetDownloader:
    """Download every manifest file from an origin into a :class:`CacheStore`."""

    def __init__(
        self,
        client: httpx.Client,
        store: CacheStore,
        *,
        timeout: float = 30.0,
        max_workers: int = 8,
    ) -> None:
        self.client = client
        self.store = store
        self.timeout = timeout
        self.max_workers = max(1, max_workers)

    def download(
        self,
        origin: str,
        manifest: Manifest,
        *,
        progress_callback: Optional[Callable[[ProgressSnapshot], None]] = None,
    ) -> DownloadReport:
        """Attempt every file in ``manifest`` and report which ones failed."""

        paths = sorted(manifest.relative_paths())
        progress = DownloadProgress(len(paths), progress_callback)
        base = origin.rstrip("/")

        if paths:
            workers = min(self.max_workers, len(paths))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="bundle-asset") as executor:
                futures = [
                    executor.submit(contextvars.copy_context().run, self._download_one, base, path, progress)
                    for path in paths
                ]
                for future in futures:
                    future.result()

        snapshot = progress.snapshot()
        report = DownloadReport(
            attempted=len(paths),
            bytes_written=snapshot.bytes_written,
            failed_paths=progress.failed_paths(),
        )
        if report.succeeded:
            logger.info(
                "all assets downloaded",
                extra={"stage": "download", "file_count": report.attempted, "bytes": report.bytes_written},
            )
        else:
            logger.warning(
                "some assets failed to download; keeping existing content",
                extra={"stage": "download", "failed_paths": list(report.failed_paths)},
            )
        return report

    def _download_one(self, origin: str, relative_path: str, progress: DownloadProgress) -> None:
        try:
            size = self._fetch_and_install(origin, relative_path)
        except (AssetDownloadFailure, CacheFilesystemError) as exc:
            logger.warning(
                "asset download failed",
                extra={"stage": "download", "path": relative_path, "error": str(exc)},
            )
            progress.record_failure(relative_path)
            return
        except Exception:
            logger.exception("unexpected error downloading asset", extra={"path": relative_path})
            progress.record_failure(relative_path)
            return
        logger.debug("asset downloaded", extra={"event": "bundle_asset_downloaded", "path": relative_path, "bytes": size})
        progress.record_success(size)

    def _fetch_and_install(self, origin: str, relative_path: str) -> int:
        safe_relative_path(relative_path)
        url = f"{origin}/{relative_path}"
        try:
            staged = self.store.staging_file()
        except OSError as exc:
            raise CacheFilesystemError(f"cannot create staging file: {exc}") from exc

        written = 0
        try:
            with self.client.stream("GET", url, timeout=self.timeout) as response:
                if not response.is_success:
                    raise AssetDownloadFailure(
                        f"HTTP {response.status_code}",
                        relative_path=relative_path,
                        status_code=response.status_code,
                    )
                with staged.open("wb") as handle:
                    for chunk in response.iter_bytes(_CHUNK_SIZE):
                        handle.write(chunk)
                        written += len(chunk)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            with suppress(FileNotFoundError):
                staged.unlink()
            raise AssetDownloadFailure(f"transport error: {exc}", relative_path=relative_path) from exc
        except OSError as exc:
            with suppress(FileNotFoundError):
                staged.unlink()
            raise CacheFilesystemError(f"cannot write {relative_path}: {exc}") from exc
        except AssetDownloadFailure:
            with suppress(FileNotFoundError):
                staged.unlink()
            raise

        self.store.install(relative_path, staged)
        return written
