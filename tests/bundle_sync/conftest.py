"""Shared fixtures for the bundle_sync test suite."""

from __future__ import annotations

import logging
import os
from pathlib import Path

import pytest

from BundleSync.download import AssetDownloader
from BundleSync.logging_config import LOGGER_NAME
from BundleSync.manifests import ManifestFetcher
from BundleSync.orchestrator import SyncOrchestrator
from BundleSync.probe import VersionProbe
from BundleSync.resolver import ContentResolver
from BundleSync.settings import reset_settings
from BundleSync.storage import CacheStore
from BundleSync.testing import FakeOrigins

ORIGIN_A = "https://a.example"
ORIGIN_B = "https://b.example"


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch: pytest.MonkeyPatch):
    for key in list(os.environ):
        if key.startswith("BUNDLESYNC_"):
            monkeypatch.delenv(key, raising=False)
    reset_settings()
    yield
    reset_settings()
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        if getattr(handler, "_bundlesync_managed", False):
            logger.removeHandler(handler)
            handler.close()


@pytest.fixture
def origins() -> FakeOrigins:
    return FakeOrigins()


@pytest.fixture
def client(origins: FakeOrigins):
    http = origins.client()
    yield http
    http.close()


@pytest.fixture
def cache_root(tmp_path: Path) -> Path:
    return tmp_path / "cache" / "WebCache"


@pytest.fixture
def store(cache_root: Path) -> CacheStore:
    store = CacheStore(cache_root)
    store.ensure_root()
    return store


@pytest.fixture
def bundled_root(tmp_path: Path) -> Path:
    root = tmp_path / "dist"
    (root / "static").mkdir(parents=True)
    (root / "index.html").write_text("<html>bundled</html>")
    (root / "static" / "app.js").write_text("bundled();")
    return root


@pytest.fixture
def make_orchestrator(client, store: CacheStore, cache_root: Path):
    created = []

    def _make(origin_list=(ORIGIN_A, ORIGIN_B), bundled_root=None, **kwargs) -> SyncOrchestrator:
        orchestrator = SyncOrchestrator(
            origins=list(origin_list),
            store=store,
            probe=VersionProbe(client, timeout=1.0),
            manifests=ManifestFetcher(client, timeout=1.0),
            downloader=AssetDownloader(client, store, timeout=2.0, max_workers=4),
            resolver=ContentResolver(cache_root, bundled_root),
            **kwargs,
        )
        created.append(orchestrator)
        return orchestrator

    yield _make
    for orchestrator in created:
        orchestrator.close()
