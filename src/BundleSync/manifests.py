"""Fetch and parse ``asset-manifest.json`` from the active origin."""

from __future__ import annotations

import logging

import httpx
from pydantic import ValidationError

from .errors import DecodeError
from .models import MANIFEST_FILENAME, Manifest, ManifestResult
from .net import fetch_bytes

__all__ = ["ManifestFetcher", "parse_manifest"]

logger = logging.getLogger(__name__)


def parse_manifest(raw: bytes, *, url: str) -> Manifest:
    """Parse manifest bytes, raising :class:`DecodeError` on bad input."""

    try:
        return Manifest.model_validate_json(raw)
    except ValidationError as exc:
        raise DecodeError(f"malformed asset manifest: {exc.error_count()} error(s)", url=url) from exc


class ManifestFetcher:
    """Single-origin manifest retrieval; failures propagate to abort the cycle."""

    def __init__(self, client: httpx.Client, *, timeout: float = 10.0) -> None:
        self.client = client
        self.timeout = timeout

    def fetch(self, origin: str) -> ManifestResult:
        """Return the parsed manifest and its raw bytes.

        Raises:
            OriginUnreachable: On transport errors, timeouts, or non-2xx statuses.
            DecodeError: When the body is not a valid manifest.
        """

        url = f"{origin.rstrip('/')}/{MANIFEST_FILENAME}"
        raw = fetch_bytes(self.client, url, timeout=self.timeout)
        manifest = parse_manifest(raw, url=url)
        logger.info(
            "asset manifest fetched",
            extra={"stage": "manifest", "origin": origin, "file_count": len(manifest.files)},
        )
        return ManifestResult(manifest=manifest, raw=raw)
