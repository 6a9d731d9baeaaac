# === NAVMAP v1 ===
# {
#   "module": "BundleSync.net",
#   "purpose": "Provide a shared, cache-bypassing HTTPX client for origin requests",
#   "sections": [
#     {"id": "constants", "name": "Constants & globals", "anchor": "CONST", "kind": "constants"},
#     {"id": "helpers", "name": "Client construction helpers", "anchor": "HELP", "kind": "helpers"},
#     {"id": "api", "name": "Public API", "anchor": "API", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Shared HTTPX client used for version, manifest, and asset requests.

Every request must reach the origin live, so the client carries no caching
transport and the request hook stamps ``no-cache`` headers on each request.
Per-request timeouts are supplied by the callers (short for metadata, longer
for assets); the client-level timeout only bounds connection setup.
"""

from __future__ import annotations

import contextlib
import logging
import ssl
import threading
import time
from typing import Dict, MutableMapping, Optional

import certifi
import httpx

from .errors import OriginUnreachable
from .settings import HttpSettings

LOGGER = logging.getLogger("BundleSync.net")

# --- Constants & globals -------------------------------------------------------

NO_CACHE_HEADERS: Dict[str, str] = {
    "Cache-Control": "no-cache, no-store",
    "Pragma": "no-cache",
}

_CLIENT_LOCK = threading.RLock()
_HTTP_CLIENT: Optional[httpx.Client] = None

# --- Client construction helpers ----------------------------------------------


def _build_ssl_context() -> ssl.SSLContext:
    context = ssl.create_default_context()
    context.load_verify_locations(certifi.where())
    return context


def _request_hook(request: httpx.Request) -> None:
    for header, value in NO_CACHE_HEADERS.items():
        request.headers[header] = value
    meta: MutableMapping[str, object] = request.extensions.setdefault("bundle_meta", {})  # type: ignore[assignment]
    meta["start_time"] = time.perf_counter()


def _response_hook(response: httpx.Response) -> None:
    meta = response.request.extensions.get("bundle_meta") or {}
    start = meta.get("start_time")
    elapsed = time.perf_counter() - start if isinstance(start, (int, float)) else None
    LOGGER.debug(
        "bundle-http-response",
        extra={
            "url": str(response.request.url),
            "status": response.status_code,
            "elapsed_sec": elapsed,
        },
    )


def build_http_client(
    config: Optional[HttpSettings] = None,
    *,
    transport: Optional[httpx.BaseTransport] = None,
) -> httpx.Client:
    """Construct a client with no-cache hooks, certifi TLS, and pooled connections.

    Args:
        config: HTTP settings; defaults are used when omitted.
        transport: Optional transport override (``httpx.MockTransport`` in tests).

    Returns:
        A configured ``httpx.Client``. The caller owns it and must close it.
    """

    cfg = config or HttpSettings()
    kwargs: Dict[str, object] = {}
    if transport is not None:
        kwargs["transport"] = transport
    else:
        kwargs["verify"] = _build_ssl_context()
        kwargs["http2"] = cfg.http2
    return httpx.Client(
        timeout=httpx.Timeout(cfg.metadata_timeout, connect=cfg.connect_timeout),
        limits=httpx.Limits(
            max_connections=max(cfg.max_concurrent_downloads, 4),
            max_keepalive_connections=cfg.max_concurrent_downloads,
        ),
        headers={"User-Agent": cfg.user_agent},
        follow_redirects=True,
        trust_env=True,
        event_hooks={"request": [_request_hook], "response": [_response_hook]},
        **kwargs,
    )


def _close_client_unlocked() -> None:
    global _HTTP_CLIENT
    if _HTTP_CLIENT is not None:
        with contextlib.suppress(Exception):
            _HTTP_CLIENT.close()
    _HTTP_CLIENT = None


# --- Public API ----------------------------------------------------------------


def configure_http_client(client: Optional[httpx.Client]) -> None:
    """Install ``client`` as the shared client (``None`` drops the current one)."""

    global _HTTP_CLIENT
    with _CLIENT_LOCK:
        if _HTTP_CLIENT is not client:
            _close_client_unlocked()
        _HTTP_CLIENT = client


def get_http_client(config: Optional[HttpSettings] = None) -> httpx.Client:
    """Return the shared HTTPX client, creating it if necessary."""

    global _HTTP_CLIENT
    with _CLIENT_LOCK:
        if _HTTP_CLIENT is None:
            _HTTP_CLIENT = build_http_client(config)
            LOGGER.debug("HTTP client initialized")
        return _HTTP_CLIENT


def reset_http_client() -> None:
    """Close and forget the shared client (test helper and shutdown hook)."""

    with _CLIENT_LOCK:
        _close_client_unlocked()


def fetch_bytes(client: httpx.Client, url: str, *, timeout: float) -> bytes:
    """GET ``url`` live and return the body of a 2xx response.

    Raises:
        OriginUnreachable: On transport errors, timeouts, or non-2xx statuses.
    """

    try:
        response = client.get(url, timeout=timeout)
    except httpx.TimeoutException as exc:
        raise OriginUnreachable(f"timed out after {timeout}s", url=url) from exc
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        raise OriginUnreachable(f"transport error: {exc}", url=url) from exc
    if not response.is_success:
        raise OriginUnreachable(
            f"HTTP {response.status_code}",
            url=url,
            status_code=response.status_code,
        )
    return response.content


__all__ = [
    "NO_CACHE_HEADERS",
    "fetch_bytes",
    "build_http_client",
    "configure_http_client",
    "get_http_client",
    "reset_http_client",
]
