"""Content version signal: monotonic version and subscriber notification."""

from __future__ import annotations

import threading
from pathlib import Path

from BundleSync.models import NO_CONTENT, ContentLocation, ContentSource
from BundleSync.signals import ContentVersionSignal


def _cache_location(root: Path) -> ContentLocation:
    return ContentLocation(ContentSource.CACHE, root / "index.html", root)


def test_version_starts_at_zero_and_advances_by_one(tmp_path: Path):
    signal = ContentVersionSignal()
    assert signal.version == 0
    assert signal.current().location == NO_CONTENT

    state = signal.advance(_cache_location(tmp_path))

    assert state.version == 1
    assert signal.current() == state


def test_relocate_keeps_version(tmp_path: Path):
    signal = ContentVersionSignal()
    signal.advance(_cache_location(tmp_path))

    state = signal.relocate(NO_CONTENT)

    assert state.version == 1
    assert state.location == NO_CONTENT


def test_subscribers_receive_states_until_unsubscribed(tmp_path: Path):
    signal = ContentVersionSignal()
    seen = []
    unsubscribe = signal.subscribe(seen.append)

    signal.advance(_cache_location(tmp_path))
    unsubscribe()
    signal.advance(_cache_location(tmp_path))

    assert [state.version for state in seen] == [1]


def test_failing_subscriber_does_not_block_others(tmp_path: Path):
    signal = ContentVersionSignal()
    seen = []

    def broken(state):
        raise RuntimeError("render failed")

    signal.subscribe(broken)
    signal.subscribe(seen.append)
    signal.advance(_cache_location(tmp_path))

    assert len(seen) == 1


def test_concurrent_advances_never_lose_increments(tmp_path: Path):
    signal = ContentVersionSignal()
    location = _cache_location(tmp_path)

    threads = [threading.Thread(target=lambda: [signal.advance(location) for _ in range(50)]) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert signal.version == 200
