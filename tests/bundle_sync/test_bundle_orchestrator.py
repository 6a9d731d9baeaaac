"""End-to-end synchronization cycles against in-memory origins."""

from __future__ import annotations

import json
import threading

import httpx
import pytest

from BundleSync.errors import CommitError
from BundleSync.models import ContentSource, SyncOutcome, SyncState
from BundleSync.testing import ResponseSpec, descriptor_payload, manifest_payload, publish_generation

ORIGIN_A = "https://a.example"
ORIGIN_B = "https://b.example"

GENERATION_ONE = {"index.html": b"<html>v1</html>", "static/js/main.111.js": b"one()", "old.js": b"legacy"}
GENERATION_TWO = {"index.html": b"<html>v2</html>", "static/js/main.222.js": b"two()"}


def test_first_cycle_commits_generation(origins, store, make_orchestrator, bundled_root):
    served = publish_generation(origins, ORIGIN_A, GENERATION_ONE)
    orchestrator = make_orchestrator(bundled_root=bundled_root)
    assert orchestrator.current_location().source is ContentSource.BUNDLED
    before = orchestrator.signal.version

    report = orchestrator.run_cycle()

    assert report.outcome is SyncOutcome.COMMITTED
    assert report.origin == ORIGIN_A
    assert report.content_version == before + 1
    assert store.descriptor_path.read_bytes() == served["version.json"]
    assert store.manifest_path.read_bytes() == served["asset-manifest.json"]
    for relative, body in GENERATION_ONE.items():
        assert (store.root / relative).read_bytes() == body
    location = orchestrator.current_location()
    assert location.source is ContentSource.CACHE
    assert location.read_access_root == store.root
    assert orchestrator.state is SyncState.IDLE
    assert orchestrator.active_origin is None


def test_failover_cycle_uses_second_origin(origins, store, make_orchestrator):
    publish_generation(origins, ORIGIN_B, GENERATION_TWO)

    report = make_orchestrator().run_cycle()

    assert report.outcome is SyncOutcome.COMMITTED
    assert report.origin == ORIGIN_B
    urls = origins.requested_urls()
    assert urls[0] == f"{ORIGIN_A}/version.json"
    assert all(url.startswith(ORIGIN_B) for url in urls[1:])


def test_unreachable_origins_leave_cache_untouched(origins, store, make_orchestrator):
    (store.root / "keep.js").write_text("keep")
    orchestrator = make_orchestrator()

    report = orchestrator.run_cycle()

    assert report.outcome is SyncOutcome.NO_ORIGIN_REACHABLE
    assert report.content_version == 0
    assert sorted(p.name for p in store.root.iterdir()) == ["keep.js"]


def test_unchanged_remote_is_a_no_op(origins, store, make_orchestrator):
    publish_generation(origins, ORIGIN_A, GENERATION_ONE)
    orchestrator = make_orchestrator()
    orchestrator.run_cycle()
    origins.requests.clear()

    report = orchestrator.run_cycle()

    assert report.outcome is SyncOutcome.UP_TO_DATE
    assert report.content_version == 1
    assert origins.requested_urls() == [f"{ORIGIN_A}/version.json"]


def test_partial_failure_keeps_previous_metadata(origins, store, make_orchestrator):
    publish_generation(origins, ORIGIN_A, {"a.js": b"a1", "b.js": b"b1", "c.js": b"c1"}, commit_hash="1111111")
    orchestrator = make_orchestrator()
    orchestrator.run_cycle()
    old_descriptor = store.descriptor_path.read_bytes()
    old_manifest = store.manifest_path.read_bytes()

    publish_generation(origins, ORIGIN_A, {"a.js": b"a2", "b.js": b"b2", "c.js": b"c2"}, commit_hash="2222222")
    origins.set(ORIGIN_A, "b.js", ResponseSpec(status=500))
    report = orchestrator.run_cycle()

    assert report.outcome is SyncOutcome.DOWNLOAD_FAILED
    assert report.failed_paths == ("b.js",)
    assert report.content_version == 1
    assert store.descriptor_path.read_bytes() == old_descriptor
    assert store.manifest_path.read_bytes() == old_manifest
    # siblings of the failed file already hold new-generation bytes
    assert (store.root / "a.js").read_bytes() == b"a2"
    assert (store.root / "b.js").read_bytes() == b"b1"


def test_failed_manifest_aborts_without_changes(origins, store, make_orchestrator):
    publish_generation(origins, ORIGIN_A, GENERATION_ONE)
    origins.set(ORIGIN_A, "asset-manifest.json", ResponseSpec(body=b"{not json"))
    publish_generation(origins, ORIGIN_B, GENERATION_ONE)

    report = make_orchestrator().run_cycle()

    assert report.outcome is SyncOutcome.MANIFEST_FAILED
    assert report.origin == ORIGIN_A
    assert not store.descriptor_path.exists()
    assert not any(url.startswith(ORIGIN_B) for url in origins.requested_urls())


def test_new_generation_sweeps_orphans(origins, store, make_orchestrator):
    publish_generation(origins, ORIGIN_A, GENERATION_ONE, commit_hash="1111111")
    orchestrator = make_orchestrator()
    orchestrator.run_cycle()

    publish_generation(origins, ORIGIN_A, GENERATION_TWO, commit_hash="2222222")
    report = orchestrator.run_cycle()

    assert report.outcome is SyncOutcome.COMMITTED
    assert report.content_version == 2
    assert set(report.removed_paths) == {"old.js", "static/js/main.111.js"}
    assert store.present_paths() == {"index.html", "static/js/main.222.js", "version.json", "asset-manifest.json"}


def test_commit_failure_does_not_advance_version(origins, store, make_orchestrator, monkeypatch):
    publish_generation(origins, ORIGIN_A, GENERATION_ONE)
    orchestrator = make_orchestrator()

    def broken_commit(descriptor_raw, manifest_raw):
        raise CommitError("disk full")

    monkeypatch.setattr(orchestrator.store, "commit", broken_commit)
    report = orchestrator.run_cycle()

    assert report.outcome is SyncOutcome.COMMIT_FAILED
    assert report.content_version == 0


def test_state_transitions_for_committed_cycle(origins, make_orchestrator):
    publish_generation(origins, ORIGIN_A, GENERATION_ONE)
    orchestrator = make_orchestrator()
    states = []
    orchestrator.add_state_listener(states.append)

    orchestrator.run_cycle()

    assert states == [
        SyncState.PROBING_VERSION,
        SyncState.FETCHING_MANIFEST,
        SyncState.DOWNLOADING_ASSETS,
        SyncState.COMMITTED,
        SyncState.CLEANING_ORPHANS,
        SyncState.IDLE,
    ]


def test_state_transitions_for_unreachable_origins(make_orchestrator):
    orchestrator = make_orchestrator()
    states = []
    orchestrator.add_state_listener(states.append)

    orchestrator.run_cycle()

    assert states == [SyncState.PROBING_VERSION, SyncState.IDLE]


def test_subscribers_see_each_commit(origins, make_orchestrator):
    publish_generation(origins, ORIGIN_A, GENERATION_ONE)
    orchestrator = make_orchestrator()
    seen = []
    orchestrator.signal.subscribe(seen.append)

    orchestrator.run_cycle()
    orchestrator.run_cycle()

    assert [state.version for state in seen] == [1]
    assert seen[0].location.source is ContentSource.CACHE


def test_trigger_while_cycle_runs_is_ignored(origins, store, make_orchestrator):
    release = threading.Event()
    entered = threading.Event()
    descriptor = publish_generation(origins, ORIGIN_A, GENERATION_ONE)["version.json"]

    def blocking_version(request):
        entered.set()
        release.wait(timeout=5)
        return httpx.Response(200, content=descriptor, request=request)

    origins.set(ORIGIN_A, "version.json", blocking_version)
    orchestrator = make_orchestrator()

    first = orchestrator.trigger()
    assert first is not None
    assert entered.wait(timeout=5)
    assert orchestrator.busy

    assert orchestrator.trigger() is None
    assert orchestrator.run_cycle().outcome is SyncOutcome.BUSY

    release.set()
    report = first.result(timeout=5)
    assert report.outcome is SyncOutcome.COMMITTED
    assert orchestrator.signal.version == 1
    version_requests = [url for url in origins.requested_urls() if url.endswith("version.json")]
    assert len(version_requests) == 1


def test_force_refresh_falls_back_to_bundled(origins, store, make_orchestrator, bundled_root):
    publish_generation(origins, ORIGIN_A, GENERATION_ONE)
    orchestrator = make_orchestrator(bundled_root=bundled_root)
    orchestrator.run_cycle()
    assert orchestrator.current_location().source is ContentSource.CACHE

    location = orchestrator.force_refresh()

    assert location.source is ContentSource.BUNDLED
    assert orchestrator.current_location() == location
    assert orchestrator.signal.version == 1
    assert list(store.root.iterdir()) == []

    report = orchestrator.run_cycle()
    assert report.outcome is SyncOutcome.COMMITTED
    assert report.content_version == 2


@pytest.mark.parametrize("prefix", ["./", ""])
def test_manifest_path_prefix_does_not_change_layout(origins, store, make_orchestrator, prefix):
    publish_generation(origins, ORIGIN_A, {"static/app.js": b"app"}, prefix=prefix)

    make_orchestrator().run_cycle()

    assert (store.root / "static" / "app.js").read_bytes() == b"app"
    assert json.loads(store.manifest_path.read_bytes())["files"]["static/app.js"] == f"{prefix}static/app.js"


def test_file_replacing_directory_of_previous_generation(origins, store, make_orchestrator):
    publish_generation(origins, ORIGIN_A, {"index.html": b"v1", "static/a/x.js": b"x"}, commit_hash="1111111")
    orchestrator = make_orchestrator()
    assert orchestrator.run_cycle().outcome is SyncOutcome.COMMITTED

    publish_generation(origins, ORIGIN_A, {"index.html": b"v2", "static/a": b"flat"}, commit_hash="2222222")
    report = orchestrator.run_cycle()

    assert report.outcome is SyncOutcome.COMMITTED
    assert (store.root / "static" / "a").read_bytes() == b"flat"
    generation = store.load_generation()
    assert generation is not None
    assert generation.missing_paths == frozenset()
    assert store.present_paths() == {"index.html", "static/a", "version.json", "asset-manifest.json"}


def test_redundant_manifest_segments_survive_the_sweep(origins, store, make_orchestrator):
    descriptor = json.dumps(descriptor_payload()).encode()
    origins.add(
        ORIGIN_A,
        {
            "version.json": descriptor,
            "asset-manifest.json": json.dumps(
                manifest_payload({"app": "./static/./app.js", "css": "static//site.css"}, entrypoints=["app"])
            ).encode(),
            "static/app.js": b"app()",
            "static/site.css": b"body{}",
        },
    )

    report = make_orchestrator().run_cycle()

    assert report.outcome is SyncOutcome.COMMITTED
    assert report.removed_paths == ()
    assert (store.root / "static" / "app.js").read_bytes() == b"app()"
    assert (store.root / "static" / "site.css").read_bytes() == b"body{}"
    assert store.load_generation().missing_paths == frozenset()
