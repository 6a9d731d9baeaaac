"""Version discovery across candidate origins.

The probe walks the configured origins in order and stops at the first one
that answers ``version.json`` with a 2xx status and a parseable descriptor.
Unreachable or misbehaving origins are logged and skipped; only when every
origin fails does the probe raise :class:`NoOriginReachable`.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional

import httpx
from pydantic import ValidationError

from .errors import DecodeError, NoOriginReachable, OriginUnreachable
from .models import VERSION_FILENAME, ProbeResult, VersionDescriptor
from .net import fetch_bytes

__all__ = ["VersionProbe", "is_stale", "parse_descriptor"]

logger = logging.getLogger(__name__)


def parse_descriptor(raw: bytes, *, url: str) -> VersionDescriptor:
    """Parse ``version.json`` bytes, raising :class:`DecodeError` on bad input."""

    try:
        return VersionDescriptor.model_validate_json(raw)
    except ValidationError as exc:
        raise DecodeError(f"malformed version descriptor: {exc.error_count()} error(s)", url=url) from exc


def is_stale(remote: VersionDescriptor, cached: Optional[VersionDescriptor]) -> bool:
    """Return ``True`` when ``remote`` is a different generation than ``cached``.

    Only the build time and short commit hash take part in the comparison; a
    missing cached descriptor always counts as stale.

    Examples:
        >>> d = VersionDescriptor(commitHash="a", commitHashFull="a1", branch="main",
        ...     buildTime="t1", buildType="prod", commitMessage="m", commitDate="d")
        >>> is_stale(d, None)
        True
        >>> is_stale(d, d.model_copy(update={"branch": "dev"}))
        False
    """

    if cached is None:
        return True
    return remote.build_time != cached.build_time or remote.commit_hash != cached.commit_hash


class VersionProbe:
    """Fetch ``version.json`` from the first reachable origin."""

    def __init__(self, client: httpx.Client, *, timeout: float = 10.0) -> None:
        self.client = client
        self.timeout = timeout

    def probe(self, origins: Iterable[str]) -> ProbeResult:
        """Return the first origin's descriptor, raw bytes, and address.

        Raises:
            NoOriginReachable: When every origin fails or none is given.
        """

        failures: Dict[str, str] = {}
        for candidate in origins:
            origin = candidate.rstrip("/")
            url = f"{origin}/{VERSION_FILENAME}"
            try:
                raw = fetch_bytes(self.client, url, timeout=self.timeout)
                descriptor = parse_descriptor(raw, url=url)
            except (OriginUnreachable, DecodeError) as exc:
                failures[origin] = str(exc)
                logger.warning(
                    "version probe failed; trying next origin",
                    extra={"stage": "probe", "event": "bundle_probe_failed", "origin": origin, "error": str(exc)},
                )
                continue
            logger.info(
                "version probe succeeded",
                extra={
                    "stage": "probe",
                    "event": "bundle_probe_succeeded",
                    "origin": origin,
                    "commit_hash": descriptor.commit_hash,
                    "build_time": descriptor.build_time,
                },
            )
            return ProbeResult(descriptor=descriptor, raw=raw, origin=origin)
        raise NoOriginReachable(failures)
