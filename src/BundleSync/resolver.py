"""Pick the location the presentation layer should load from."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from .errors import NoContentAvailable
from .models import INDEX_FILENAME, NO_CONTENT, ContentLocation, ContentSource

__all__ = ["ContentResolver"]


class ContentResolver:
    """Read-only view over the cache root and the bundled fallback tree.

    Priority: the cache index, then the bundled index, then nothing.
    """

    def __init__(self, cache_root: Path, bundled_root: Optional[Path] = None) -> None:
        self.cache_root = Path(cache_root)
        self.bundled_root = Path(bundled_root) if bundled_root is not None else None

    def resolve(self) -> ContentLocation:
        cached_index = self.cache_root / INDEX_FILENAME
        if cached_index.is_file():
            return ContentLocation(ContentSource.CACHE, cached_index, self.cache_root)
        if self.bundled_root is not None and self.bundled_root.is_dir():
            bundled_index = self.bundled_root / INDEX_FILENAME
            if bundled_index.is_file():
                return ContentLocation(ContentSource.BUNDLED, bundled_index, self.bundled_root)
        return NO_CONTENT

    def require(self) -> ContentLocation:
        """Like :meth:`resolve` but raise :class:`NoContentAvailable` instead of NONE."""

        location = self.resolve()
        if not location.available:
            raise NoContentAvailable("no cached or bundled index.html to render")
        return location
