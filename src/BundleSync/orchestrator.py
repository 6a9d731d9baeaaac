# === NAVMAP v1 ===
# {
#   "module": "BundleSync.orchestrator",
#   "purpose": "Sequence probe, manifest, download, commit, and sweep into one synchronization cycle",
#   "sections": [
#     {"id": "orchestrator", "name": "SyncOrchestrator", "anchor": "ORC", "kind": "api"},
#     {"id": "cycle", "name": "Cycle Stages", "anchor": "CYC", "kind": "helpers"},
#     {"id": "factory", "name": "Factory", "anchor": "FAC", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Synchronization cycle orchestration.

One cycle runs the stages strictly in order::

    probe version -> (up to date | fetch manifest) -> download assets
        -> (commit -> sweep orphans | download failed) -> idle

Each stage starts only after the previous one returned.  Cycles are
serialized by a non-blocking lock: a trigger that arrives while a cycle is in
flight is ignored and reported as :attr:`SyncOutcome.BUSY`.  Sync failures
never escape as exceptions; every cycle returns a :class:`SyncReport` and the
content already shown stays in place until a later cycle succeeds.

Example:
    >>> orchestrator = build_orchestrator(get_settings())  # doctest: +SKIP
    >>> orchestrator.signal.subscribe(lambda state: print(state.version))  # doctest: +SKIP
    >>> orchestrator.trigger()  # doctest: +SKIP
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence

import httpx

from .download import AssetDownloader, ProgressSnapshot
from .errors import CacheFilesystemError, CommitError, DecodeError, NoOriginReachable, OriginUnreachable
from .logging_config import cycle_context, generate_cycle_id
from .manifests import ManifestFetcher
from .models import ContentLocation, SyncOutcome, SyncReport, SyncState
from .net import get_http_client
from .probe import VersionProbe, is_stale
from .reaper import OrphanReaper
from .resolver import ContentResolver
from .settings import BundleSyncSettings
from .signals import ContentVersionSignal
from .storage import CacheStore

__all__ = ["SyncOrchestrator", "build_orchestrator"]

logger = logging.getLogger(__name__)

StateListener = Callable[[SyncState], None]

# --- SyncOrchestrator -----------------------------------------------------------


class SyncOrchestrator:
    """Service object owning the active origin, cycle state, and content signal."""

    def __init__(
        self,
        *,
        origins: Sequence[str],
        store: CacheStore,
        probe: VersionProbe,
        manifests: ManifestFetcher,
        downloader: AssetDownloader,
        resolver: ContentResolver,
        reaper: Optional[OrphanReaper] = None,
        signal: Optional[ContentVersionSignal] = None,
        progress_callback: Optional[Callable[[ProgressSnapshot], None]] = None,
    ) -> None:
        self.origins = [origin.rstrip("/") for origin in origins]
        self.store = store
        self.probe = probe
        self.manifests = manifests
        self.downloader = downloader
        self.resolver = resolver
        self.reaper = reaper or OrphanReaper(store.root)
        self.progress_callback = progress_callback

        self._cycle_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._state = SyncState.IDLE
        self._listeners: List[StateListener] = []
        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()
        self.active_origin: Optional[str] = None

        try:
            self.store.ensure_root()
        except CacheFilesystemError:
            logger.warning("cache root unavailable at startup; using fallback content")
        self.signal = signal or ContentVersionSignal()
        self.signal.relocate(self.resolver.resolve())

    # -- observation ------------------------------------------------------------

    @property
    def state(self) -> SyncState:
        with self._state_lock:
            return self._state

    @property
    def busy(self) -> bool:
        return self._cycle_lock.locked()

    def add_state_listener(self, listener: StateListener) -> None:
        with self._state_lock:
            self._listeners.append(listener)

    def current_location(self) -> ContentLocation:
        return self.signal.current().location

    # -- triggers ---------------------------------------------------------------

    def trigger(self) -> Optional["Future[SyncReport]"]:
        """Start a cycle on the background worker unless one is already running.

        Returns:
            A future resolving to the cycle's report, or ``None`` when the
            trigger was ignored because a cycle is in flight.
        """

        if self.busy:
            logger.info("sync already in progress; ignoring trigger", extra={"event": "bundle_trigger_ignored"})
            return None
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="bundle-sync")
            return self._executor.submit(self.run_cycle)

    def run_cycle(self) -> SyncReport:
        """Run one synchronization cycle on the calling thread."""

        if not self._cycle_lock.acquire(blocking=False):
            logger.info("sync already in progress; skipping cycle", extra={"event": "bundle_trigger_ignored"})
            return SyncReport(outcome=SyncOutcome.BUSY, content_version=self.signal.version)
        try:
            with cycle_context(generate_cycle_id()) as cycle_id:
                report = self._run_cycle_locked(cycle_id)
                logger.info(
                    "sync cycle finished",
                    extra={"event": "bundle_cycle_finished", "outcome": report.outcome.value},
                )
                return report
        finally:
            self.active_origin = None
            self._set_state(SyncState.IDLE)
            self._cycle_lock.release()

    def force_refresh(self) -> ContentLocation:
        """Delete the whole cache and fall back to whatever resolves next.

        Waits for an in-flight cycle to finish so the deletion never races a
        writer.
        """

        with self._cycle_lock:
            try:
                self.store.clear()
            except CacheFilesystemError as exc:
                logger.error("could not clear cache", extra={"error": str(exc)})
            location = self.resolver.resolve()
            self.signal.relocate(location)
            logger.info("cache cleared", extra={"event": "bundle_cache_cleared", "source": location.source.value})
            return location

    def close(self) -> None:
        with self._executor_lock:
            if self._executor is not None:
                self._executor.shutdown(wait=True)
                self._executor = None

    def __enter__(self) -> "SyncOrchestrator":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # --- Cycle Stages -----------------------------------------------------------

    def _set_state(self, state: SyncState) -> None:
        with self._state_lock:
            self._state = state
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(state)
            except Exception:
                logger.exception("state listener failed")

    def _report(self, outcome: SyncOutcome, cycle_id: str, **fields: object) -> SyncReport:
        return SyncReport(
            outcome=outcome,
            content_version=self.signal.version,
            origin=self.active_origin,
            cycle_id=cycle_id,
            **fields,  # type: ignore[arg-type]
        )

    def _run_cycle_locked(self, cycle_id: str) -> SyncReport:
        self._set_state(SyncState.PROBING_VERSION)
        try:
            probed = self.probe.probe(self.origins)
        except NoOriginReachable as exc:
            logger.warning("no origin reachable; keeping existing content", extra={"stage": "probe"})
            return self._report(SyncOutcome.NO_ORIGIN_REACHABLE, cycle_id, error=str(exc))
        self.active_origin = probed.origin

        cached = self.store.load_descriptor()
        if not is_stale(probed.descriptor, cached):
            self._set_state(SyncState.UP_TO_DATE)
            logger.info("cache is up to date", extra={"stage": "probe", "commit_hash": probed.descriptor.commit_hash})
            return self._report(SyncOutcome.UP_TO_DATE, cycle_id, descriptor=probed.descriptor)

        logger.info(
            "new version available",
            extra={
                "stage": "probe",
                "commit_hash": probed.descriptor.commit_hash,
                "build_time": probed.descriptor.build_time,
            },
        )
        self._set_state(SyncState.FETCHING_MANIFEST)
        try:
            fetched = self.manifests.fetch(probed.origin)
        except (OriginUnreachable, DecodeError) as exc:
            logger.warning("manifest fetch failed; aborting cycle", extra={"stage": "manifest", "error": str(exc)})
            return self._report(SyncOutcome.MANIFEST_FAILED, cycle_id, descriptor=probed.descriptor, error=str(exc))

        self._set_state(SyncState.DOWNLOADING_ASSETS)
        download = self.downloader.download(
            probed.origin,
            fetched.manifest,
            progress_callback=self.progress_callback,
        )
        if not download.succeeded:
            self._set_state(SyncState.DOWNLOAD_FAILED)
            return self._report(
                SyncOutcome.DOWNLOAD_FAILED,
                cycle_id,
                descriptor=probed.descriptor,
                failed_paths=download.failed_paths,
            )

        try:
            self.store.commit(probed.raw, fetched.raw)
        except CommitError as exc:
            logger.error("generation commit failed", extra={"stage": "commit", "error": str(exc)})
            return self._report(SyncOutcome.COMMIT_FAILED, cycle_id, descriptor=probed.descriptor, error=str(exc))

        self._set_state(SyncState.COMMITTED)
        state = self.signal.advance(self.resolver.resolve())
        logger.info(
            "cache updated",
            extra={
                "event": "bundle_committed",
                "stage": "commit",
                "commit_hash": probed.descriptor.commit_hash,
                "build_time": probed.descriptor.build_time,
                "content_version": state.version,
            },
        )

        self._set_state(SyncState.CLEANING_ORPHANS)
        sweep = self.reaper.sweep(fetched.manifest.relative_paths())
        return self._report(SyncOutcome.COMMITTED, cycle_id, descriptor=probed.descriptor, removed_paths=sweep.removed)


# --- Factory --------------------------------------------------------------------


def build_orchestrator(
    settings: BundleSyncSettings,
    *,
    client: Optional[httpx.Client] = None,
    signal: Optional[ContentVersionSignal] = None,
    progress_callback: Optional[Callable[[ProgressSnapshot], None]] = None,
) -> SyncOrchestrator:
    """Wire every component from ``settings``.

    When ``client`` is omitted the shared client from :mod:`BundleSync.net`
    is used.
    """

    http = client or get_http_client(settings.http)
    store = CacheStore(settings.cache.root, settings.cache.resolved_staging_dir())
    return SyncOrchestrator(
        origins=settings.origins,
        store=store,
        probe=VersionProbe(http, timeout=settings.http.metadata_timeout),
        manifests=ManifestFetcher(http, timeout=settings.http.metadata_timeout),
        downloader=AssetDownloader(
            http,
            store,
            timeout=settings.http.asset_timeout,
            max_workers=settings.http.max_concurrent_downloads,
        ),
        resolver=ContentResolver(settings.cache.root, settings.cache.bundled_root),
        signal=signal,
        progress_callback=progress_callback,
    )
