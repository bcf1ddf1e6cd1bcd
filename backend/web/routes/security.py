"""
Shared web security helpers (FastAPI-agnostic utilities for routes).

Contains the CSRF same-origin check used by every write endpoint. Keeping a
single implementation avoids security drift.
"""
from __future__ import annotations

import os
from urllib.parse import urlparse

from fastapi import Request


def _parse_origin(url: str) -> tuple[str, str, int]:
    p = urlparse(url)
    if not p.scheme or not p.hostname:
        raise ValueError("invalid_origin")
    scheme = p.scheme.lower()
    port = p.port if p.port is not None else (443 if scheme == "https" else 80)
    return scheme, p.hostname.lower(), int(port)


def _server_origin(request: Request) -> tuple[str, str, int]:
    """Origin the server is reachable at; X-Forwarded-* only with EDUPORTAL_TRUST_PROXY=true."""
    trust_proxy = (os.getenv("EDUPORTAL_TRUST_PROXY", "false") or "").lower() == "true"
    scheme = (request.url.scheme or "http").lower()
    host = (request.url.hostname or "").lower()
    port = int(request.url.port) if request.url.port else None
    if trust_proxy:
        xf_proto = (request.headers.get("x-forwarded-proto") or "").split(",")[0].strip()
        xf_host = (request.headers.get("x-forwarded-host") or "").split(",")[0].strip()
        if xf_proto:
            scheme = xf_proto.lower()
        if xf_host:
            host_only, _, port_str = xf_host.partition(":")
            host = host_only.lower()
            port = int(port_str) if port_str.isdigit() else None
        xf_port = (request.headers.get("x-forwarded-port") or "").split(",")[0].strip()
        if xf_port.isdigit():
            port = int(xf_port)
    if port is None:
        port = 443 if scheme == "https" else 80
    return scheme, host, port


def _strict_csrf() -> bool:
    env = (os.getenv("EDUPORTAL_ENV", "dev") or "").lower()
    flag = (os.getenv("STRICT_CSRF", "false") or "").lower() == "true"
    return flag or env in {"prod", "production"}


def _is_same_origin(request: Request) -> bool:
    """Verify same-origin using Origin or Referer headers.

    Behavior:
    - If Origin is present, require exact scheme/host/port match with server.
    - Else if Referer is present, validate its origin similarly.
    - Else (no headers): allowed in dev for non-browser clients, rejected in
      strict mode.
    """
    candidate = request.headers.get("origin") or request.headers.get("referer")
    if not candidate:
        return not _strict_csrf()
    try:
        return _parse_origin(candidate) == _server_origin(request)
    except ValueError:
        return False
