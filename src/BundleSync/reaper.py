"""Reclaim cached files that the committed manifest no longer references."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import AbstractSet, List

from .models import METADATA_FILENAMES, SweepReport

__all__ = ["OrphanReaper"]

logger = logging.getLogger(__name__)


class OrphanReaper:
    """Delete regular files under the cache root that are not in the valid set.

    Only files are removed; directories emptied by the sweep are left behind.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def sweep(self, valid_paths: AbstractSet[str]) -> SweepReport:
        removed: List[str] = []
        failed: List[str] = []
        if not self.root.is_dir():
            return SweepReport()

        for dirpath, _dirnames, filenames in os.walk(self.root):
            base = Path(dirpath)
            for name in filenames:
                path = base / name
                relative = path.relative_to(self.root).as_posix()
                if relative in valid_paths or relative in METADATA_FILENAMES:
                    continue
                if path.is_symlink() or not path.is_file():
                    continue
                try:
                    path.unlink()
                except OSError as exc:
                    logger.warning(
                        "could not delete orphaned file",
                        extra={"stage": "sweep", "path": relative, "error": str(exc)},
                    )
                    failed.append(relative)
                    continue
                logger.info("cleaned up orphaned file", extra={"stage": "sweep", "path": relative})
                removed.append(relative)

        return SweepReport(removed=tuple(sorted(removed)), failed=tuple(sorted(failed)))
