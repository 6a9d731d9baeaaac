"""Orphan sweep after a committed generation."""

from __future__ import annotations

from pathlib import Path

from BundleSync.reaper import OrphanReaper


def _touch(root: Path, relative: str, content: str = "x") -> Path:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


def test_sweep_removes_unreferenced_files_and_keeps_metadata(tmp_path: Path):
    root = tmp_path / "cache"
    for relative in ("a.js", "static/b.css", "old.js", "static/old.123.js", "version.json", "asset-manifest.json"):
        _touch(root, relative)

    report = OrphanReaper(root).sweep({"a.js", "static/b.css"})

    assert report.removed == ("old.js", "static/old.123.js")
    assert report.failed == ()
    assert (root / "version.json").exists()
    assert (root / "asset-manifest.json").exists()
    assert (root / "a.js").exists()
    assert (root / "static" / "b.css").exists()
    assert not (root / "old.js").exists()


def test_sweep_leaves_emptied_directories(tmp_path: Path):
    root = tmp_path / "cache"
    _touch(root, "legacy/only.js")

    report = OrphanReaper(root).sweep(set())

    assert report.removed == ("legacy/only.js",)
    assert (root / "legacy").is_dir()


def test_metadata_names_only_protected_at_root(tmp_path: Path):
    root = tmp_path / "cache"
    _touch(root, "nested/version.json")

    report = OrphanReaper(root).sweep(set())

    assert report.removed == ("nested/version.json",)


def test_sweep_of_missing_root_is_a_no_op(tmp_path: Path):
    report = OrphanReaper(tmp_path / "absent").sweep({"a.js"})
    assert report.removed == ()


def test_failed_deletions_are_recorded_and_sweep_continues(tmp_path: Path, monkeypatch):
    root = tmp_path / "cache"
    _touch(root, "locked.js")
    _touch(root, "stale.js")
    original_unlink = Path.unlink

    def flaky_unlink(self, *args, **kwargs):
        if self.name == "locked.js":
            raise PermissionError("locked")
        return original_unlink(self, *args, **kwargs)

    monkeypatch.setattr(Path, "unlink", flaky_unlink)

    report = OrphanReaper(root).sweep(set())

    assert report.failed == ("locked.js",)
    assert report.removed == ("stale.js",)
