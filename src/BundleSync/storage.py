# === NAVMAP v1 ===
# {
#   "module": "BundleSync.storage",
#   "purpose": "On-disk cache store: metadata files, asset installation, and generation commit",
#   "sections": [
#     {"id": "helpers", "name": "Path & Write Helpers", "anchor": "HLP", "kind": "helpers"},
#     {"id": "store", "name": "CacheStore", "anchor": "STO", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Cache store for the mirrored asset bundle.

The cache root holds the asset tree mirrored from the origin plus two
metadata files, ``version.json`` and ``asset-manifest.json``.  Together the
metadata files define the committed generation: they are written only after
every asset of a generation has been installed, and always with the exact
bytes the origin served.

Downloads are streamed into a staging directory that sits beside (not
inside) the cache root so partially received files never appear in the
tree, then moved into place with :func:`os.replace`.
"""

from __future__ import annotations

import errno
import logging
import os
import shutil
import tempfile
import uuid
from contextlib import suppress
from pathlib import Path, PurePosixPath
from typing import FrozenSet, Optional

from pydantic import ValidationError

from .errors import CacheFilesystemError, CommitError
from .models import (
    INDEX_FILENAME,
    MANIFEST_FILENAME,
    METADATA_FILENAMES,
    VERSION_FILENAME,
    CacheGeneration,
    Manifest,
    VersionDescriptor,
)

__all__ = ["CacheStore", "safe_relative_path"]

logger = logging.getLogger(__name__)

# --- Path & Write Helpers -------------------------------------------------------


def safe_relative_path(relative_path: str) -> PurePosixPath:
    """Validate a manifest path and return it as a relative POSIX path.

    Raises:
        CacheFilesystemError: When the path is empty, absolute, escapes the
            root, or names one of the root metadata documents.
    """

    candidate = PurePosixPath(relative_path)
    if not relative_path or candidate.is_absolute() or ".." in candidate.parts:
        raise CacheFilesystemError(f"unsafe asset path: {relative_path!r}")
    if candidate.parts in ((), (".",)):
        raise CacheFilesystemError(f"unsafe asset path: {relative_path!r}")
    if candidate.as_posix() in METADATA_FILENAMES:
        raise CacheFilesystemError(f"asset path shadows cache metadata: {relative_path!r}")
    return candidate


def _atomic_write_bytes(path: Path, payload: bytes) -> None:
    """Atomically replace ``path`` with ``payload`` to avoid partial writes."""

    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile("wb", dir=path.parent, delete=False, suffix=".part") as handle:
        temp_name = handle.name
        try:
            handle.write(payload)
            handle.flush()
            with suppress(AttributeError, OSError):
                os.fsync(handle.fileno())
        except BaseException:
            handle.close()
            with suppress(FileNotFoundError):
                os.unlink(temp_name)
            raise
    Path(temp_name).replace(path)


# --- CacheStore -----------------------------------------------------------------


class CacheStore:
    """Sole writer of the cache root and its staging directory."""

    def __init__(self, root: Path, staging_dir: Optional[Path] = None) -> None:
        self.root = Path(root)
        self.staging_dir = Path(staging_dir) if staging_dir else self.root.with_name(f"{self.root.name}.staging")

    @property
    def descriptor_path(self) -> Path:
        return self.root / VERSION_FILENAME

    @property
    def manifest_path(self) -> Path:
        return self.root / MANIFEST_FILENAME

    @property
    def index_path(self) -> Path:
        return self.root / INDEX_FILENAME

    def ensure_root(self) -> None:
        """Create the cache root if it does not exist yet."""

        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.error("could not create cache root", extra={"root": str(self.root), "error": str(exc)})
            raise CacheFilesystemError(f"cannot create cache root {self.root}: {exc}") from exc

    # -- reads ------------------------------------------------------------------

    def load_descriptor(self) -> Optional[VersionDescriptor]:
        """Return the committed descriptor, or ``None`` when absent or unreadable."""

        try:
            raw = self.descriptor_path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning("cached descriptor unreadable", extra={"error": str(exc)})
            return None
        try:
            return VersionDescriptor.model_validate_json(raw)
        except ValidationError:
            logger.warning("cached descriptor is malformed; treating cache as empty")
            return None

    def load_manifest(self) -> Optional[Manifest]:
        """Return the committed manifest, or ``None`` when absent or unreadable."""

        try:
            raw = self.manifest_path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning("cached manifest unreadable", extra={"error": str(exc)})
            return None
        try:
            return Manifest.model_validate_json(raw)
        except ValidationError:
            logger.warning("cached manifest is malformed")
            return None

    def present_paths(self) -> FrozenSet[str]:
        """Return root-relative POSIX paths of every regular file in the cache."""

        if not self.root.is_dir():
            return frozenset()
        found = set()
        for dirpath, _dirnames, filenames in os.walk(self.root):
            base = Path(dirpath)
            for name in filenames:
                path = base / name
                if path.is_file():
                    found.add(path.relative_to(self.root).as_posix())
        return frozenset(found)

    def load_generation(self) -> Optional[CacheGeneration]:
        """Return the committed generation when both metadata files parse."""

        descriptor = self.load_descriptor()
        manifest = self.load_manifest()
        if descriptor is None or manifest is None:
            return None
        return CacheGeneration(descriptor=descriptor, manifest=manifest, present_paths=self.present_paths())

    # -- writes -----------------------------------------------------------------

    def asset_path(self, relative_path: str) -> Path:
        """Return the absolute destination for a manifest-relative path."""

        return self.root.joinpath(*safe_relative_path(relative_path).parts)

    def staging_file(self) -> Path:
        """Return a fresh path in the staging directory for one download."""

        self.staging_dir.mkdir(parents=True, exist_ok=True)
        return self.staging_dir / f"{uuid.uuid4().hex}.part"

    def install(self, relative_path: str, staged: Path) -> Path:
        """Move a fully downloaded staging file into the cache tree.

        Any existing file at the destination is replaced. A directory left at
        the destination by an earlier generation is removed first. Files left
        where this path now needs a parent directory are removed as well.

        Raises:
            CacheFilesystemError: When the path is unsafe or the move fails.
        """

        destination = self.asset_path(relative_path)
        try:
            self._clear_file_ancestors(destination)
            destination.parent.mkdir(parents=True, exist_ok=True)
            if destination.is_dir() and not destination.is_symlink():
                logger.info(
                    "replacing directory with asset file",
                    extra={"stage": "download", "path": relative_path},
                )
                shutil.rmtree(destination)
            try:
                os.replace(staged, destination)
            except OSError as exc:
                if exc.errno != errno.EXDEV:
                    raise
                # staging on another filesystem
                shutil.copy2(staged, destination)
                staged.unlink()
        except OSError as exc:
            with suppress(FileNotFoundError):
                staged.unlink()
            raise CacheFilesystemError(f"cannot install {relative_path}: {exc}") from exc
        return destination

    def _clear_file_ancestors(self, destination: Path) -> None:
        for parent in reversed(destination.relative_to(self.root).parents):
            candidate = self.root / parent
            if candidate == self.root:
                continue
            if candidate.is_symlink() or candidate.is_file():
                logger.info(
                    "replacing asset file with directory",
                    extra={"stage": "download", "path": parent.as_posix()},
                )
                candidate.unlink()
                return

    def commit(self, descriptor_raw: bytes, manifest_raw: bytes) -> None:
        """Persist the generation metadata verbatim.

        Raises:
            CommitError: When either metadata file cannot be written.
        """

        try:
            self.ensure_root()
            _atomic_write_bytes(self.manifest_path, manifest_raw)
            _atomic_write_bytes(self.descriptor_path, descriptor_raw)
        except (OSError, CacheFilesystemError) as exc:
            raise CommitError(f"cannot write generation metadata: {exc}") from exc

    def clear(self) -> None:
        """Delete the cache root and staging directory, then recreate the root."""

        for directory in (self.root, self.staging_dir):
            try:
                shutil.rmtree(directory)
            except FileNotFoundError:
                continue
            except OSError as exc:
                raise CacheFilesystemError(f"cannot delete {directory}: {exc}") from exc
        self.ensure_root()
