"""Testing utilities: in-memory origins served through ``httpx.MockTransport``.

Example:
    >>> origins = FakeOrigins()
    >>> origins.add("https://a.example", {"version.json": b"{}"})
    >>> client = origins.client()
    >>> client.get("https://a.example/version.json").status_code
    200
"""

from __future__ import annotations

import json
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Union

import httpx

from .net import build_http_client, configure_http_client, reset_http_client
from .settings import HttpSettings

__all__ = [
    "ResponseSpec",
    "FakeOrigins",
    "descriptor_payload",
    "manifest_payload",
    "publish_generation",
    "use_mock_http_client",
]

Body = Union[bytes, str, Mapping[str, Any]]
Handler = Callable[[httpx.Request], httpx.Response]


@dataclass
class ResponseSpec:
    """Canned response for one path on a fake origin."""

    status: int = 200
    body: Body = b""
    headers: Mapping[str, str] = field(default_factory=dict)
    raise_error: Optional[type] = None

    def serialise_body(self) -> bytes:
        if isinstance(self.body, bytes):
            return self.body
        if isinstance(self.body, str):
            return self.body.encode("utf-8")
        return json.dumps(self.body).encode("utf-8")


def descriptor_payload(commit_hash: str = "abc1234", build_time: str = "2024-01-01T00:00:00Z", **overrides: str) -> Dict[str, str]:
    """Return a ``version.json`` document with sensible defaults."""

    payload = {
        "commitHash": commit_hash,
        "commitHashFull": f"{commit_hash}{'0' * 33}",
        "branch": "main",
        "buildTime": build_time,
        "buildType": "production",
        "commitMessage": "Build",
        "commitDate": "2024-01-01T00:00:00Z",
    }
    payload.update(overrides)
    return payload


def manifest_payload(files: Mapping[str, str], entrypoints: Optional[List[str]] = None) -> Dict[str, Any]:
    """Return an ``asset-manifest.json`` document."""

    return {"files": dict(files), "entrypoints": list(entrypoints or [])}


class FakeOrigins:
    """Route requests to per-origin path tables and record every request made."""

    def __init__(self) -> None:
        self._routes: Dict[str, Dict[str, Union[ResponseSpec, Handler]]] = {}
        self._lock = threading.Lock()
        self.requests: List[httpx.Request] = []

    def add(self, origin: str, routes: Mapping[str, Union[ResponseSpec, Handler, Body]]) -> None:
        table: Dict[str, Union[ResponseSpec, Handler]] = {}
        for path, spec in routes.items():
            if isinstance(spec, ResponseSpec) or callable(spec):
                table[path.lstrip("/")] = spec
            else:
                table[path.lstrip("/")] = ResponseSpec(body=spec)
        self._routes[origin.rstrip("/")] = table

    def set(self, origin: str, path: str, spec: Union[ResponseSpec, Handler, Body]) -> None:
        if not (isinstance(spec, ResponseSpec) or callable(spec)):
            spec = ResponseSpec(body=spec)
        self._routes.setdefault(origin.rstrip("/"), {})[path.lstrip("/")] = spec

    def requested_urls(self) -> List[str]:
        with self._lock:
            return [str(request.url) for request in self.requests]

    def handler(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            self.requests.append(request)
        origin = f"{request.url.scheme}://{request.url.netloc.decode('ascii')}"
        table = self._routes.get(origin)
        if table is None:
            raise httpx.ConnectError(f"cannot connect to {origin}", request=request)
        spec = table.get(request.url.path.lstrip("/"))
        if spec is None:
            return httpx.Response(404, content=b"not found", request=request)
        if not isinstance(spec, ResponseSpec):
            return spec(request)
        if spec.raise_error is not None:
            raise spec.raise_error("simulated failure", request=request)
        return httpx.Response(spec.status, content=spec.serialise_body(), headers=dict(spec.headers), request=request)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def client(self, config: Optional[HttpSettings] = None) -> httpx.Client:
        return build_http_client(config, transport=self.transport())


@contextmanager
def use_mock_http_client(transport: httpx.BaseTransport, config: Optional[HttpSettings] = None) -> Iterator[httpx.Client]:
    """Temporarily install a shared client backed by ``transport``."""

    client = build_http_client(config, transport=transport)
    configure_http_client(client)
    try:
        yield client
    finally:
        reset_http_client()


def publish_generation(
    origins: FakeOrigins,
    origin: str,
    files: Mapping[str, bytes],
    *,
    commit_hash: str = "abc1234",
    build_time: str = "2024-01-01T00:00:00Z",
    prefix: str = "./",
) -> Dict[str, bytes]:
    """Serve a complete generation (descriptor, manifest, assets) from ``origin``.

    Manifest paths carry ``prefix`` the way bundlers emit them.  Returns the
    raw descriptor and manifest bytes being served.
    """

    descriptor = json.dumps(descriptor_payload(commit_hash, build_time)).encode("utf-8")
    manifest = json.dumps(
        manifest_payload({path: f"{prefix}{path}" for path in files}, entrypoints=sorted(files)[:1])
    ).encode("utf-8")
    routes: Dict[str, Union[ResponseSpec, Handler, Body]] = {
        "version.json": descriptor,
        "asset-manifest.json": manifest,
    }
    routes.update(files)
    origins.add(origin, routes)
    return {"version.json": descriptor, "asset-manifest.json": manifest}
