"""
Shared helpers for the API routers: responses, role guards, CSRF, error mapping
and the swappable table gateway / auth client.

Why:
    Every router answers with private, non-cacheable JSON and maps the same
    service exceptions to the same status codes. Keeping that in one module
    avoids drift between the admin, teaching, learning and communication APIs.
"""
from __future__ import annotations

import logging
import os
from typing import Optional, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse, Response

from identity_access.auth_client import AuthClientProtocol, SupabaseAuthClient
from identity_access.domain import AuthError, InvalidCredentialsError, SignUpRejectedError
from school.errors import (
    AccessDeniedError,
    DataError,
    DuplicateRecordError,
    NotAuthenticatedError,
    RecordNotFoundError,
    ValidationError,
    ensure_authenticated,
)
from school.gateway import InMemoryTableGateway, TableGateway
from school.services.common import Caller

from .security import _is_same_origin, _strict_csrf

logger = logging.getLogger("eduportal.web.common")


# --- Gateway & auth client wiring -------------------------------------------------

def _build_default_gateway() -> TableGateway:
    """Prefer the Postgres gateway; fall back to in-memory when unavailable.

    `SCHOOL_GATEWAY=memory` forces the in-memory gateway (offline dev).
    """
    if (os.getenv("SCHOOL_GATEWAY", "") or "").strip().lower() == "memory":
        return InMemoryTableGateway()
    try:
        from school.gateway_db import DBTableGateway

        return DBTableGateway()
    except Exception as exc:  # pragma: no cover - exercised when DSN missing
        logger.warning("School gateway unavailable (%s); using in-memory fallback", exc.__class__.__name__)
        return InMemoryTableGateway()


_GATEWAY: Optional[TableGateway] = None
_AUTH_CLIENT: Optional[AuthClientProtocol] = None


def get_gateway() -> TableGateway:
    global _GATEWAY
    if _GATEWAY is None:
        _GATEWAY = _build_default_gateway()
    return _GATEWAY


def set_gateway(gateway: Optional[TableGateway]) -> None:
    """Allow tests to swap the gateway implementation (None rebuilds lazily)."""
    global _GATEWAY
    _GATEWAY = gateway


def get_auth_client() -> AuthClientProtocol:
    global _AUTH_CLIENT
    if _AUTH_CLIENT is None:
        _AUTH_CLIENT = SupabaseAuthClient()
    return _AUTH_CLIENT


def set_auth_client(client: Optional[AuthClientProtocol]) -> None:
    """Allow tests to provide a fake auth provider."""
    global _AUTH_CLIENT
    _AUTH_CLIENT = client


# --- Responses -----------------------------------------------------------------------

def json_private(payload, *, status_code: int = 200) -> JSONResponse:
    """Return JSON with cache disabled for shared caches and browsers."""
    return JSONResponse(content=payload, status_code=status_code, headers={"Cache-Control": "private, no-store"})


def no_content() -> Response:
    return Response(status_code=204, headers={"Cache-Control": "private, no-store"})


def private_error(error: str, detail: str | None = None, *, status_code: int) -> JSONResponse:
    body = {"error": error}
    if detail:
        body["detail"] = detail
    return json_private(body, status_code=status_code)


def error_response(exc: Exception, *, operation: str) -> JSONResponse:
    """Map service/provider exceptions to the API error contract."""
    if isinstance(exc, InvalidCredentialsError):
        return private_error("unauthenticated", "invalid_credentials", status_code=401)
    if isinstance(exc, SignUpRejectedError):
        return private_error("bad_request", "signup_rejected", status_code=400)
    if isinstance(exc, AuthError):
        logger.warning("[%s] auth provider error: %s", operation, exc.__class__.__name__)
        return private_error("unavailable", "auth_unavailable", status_code=503)
    if isinstance(exc, NotAuthenticatedError):
        return private_error("unauthenticated", status_code=401)
    if isinstance(exc, AccessDeniedError):
        return private_error("forbidden", exc.code, status_code=403)
    if isinstance(exc, DuplicateRecordError):
        return private_error("conflict", exc.code, status_code=409)
    if isinstance(exc, RecordNotFoundError):
        return private_error("not_found", exc.code, status_code=404)
    if isinstance(exc, ValidationError):
        return private_error("bad_request", exc.code, status_code=400)
    if isinstance(exc, DataError):
        logger.error("[%s] data error code=%s", operation, exc.code)
        return private_error("unavailable", status_code=503)
    if isinstance(exc, ValueError):
        return private_error("bad_request", str(exc) or "invalid_input", status_code=400)
    if isinstance(exc, LookupError):
        return private_error("not_found", str(exc) or None, status_code=404)
    if isinstance(exc, PermissionError):
        return private_error("forbidden", status_code=403)
    raise exc


SERVICE_ERRORS = (DataError, AuthError, ValueError, LookupError, PermissionError)


# --- Caller & guards -----------------------------------------------------------------

def current_user(request: Request) -> dict | None:
    return getattr(request.state, "user", None)


def require_roles(request: Request, *roles: str) -> Tuple[Optional[Caller], Optional[JSONResponse]]:
    """Return (caller, error) ensuring the caller holds one of `roles` (any role when empty)."""
    user = current_user(request)
    try:
        ensure_authenticated(user)
    except NotAuthenticatedError:
        return None, private_error("unauthenticated", status_code=401)
    caller = Caller.from_user(user)
    if roles and not any(caller.has(r) for r in roles):
        return None, private_error("forbidden", status_code=403)
    return caller, None


def csrf_guard(request: Request) -> JSONResponse | None:
    """Enforce same-origin for browser write requests.

    In strict mode (prod or STRICT_CSRF=true) Origin or Referer must be
    present and same-origin; otherwise requests without either header pass.
    """
    if _strict_csrf():
        present = request.headers.get("origin") or request.headers.get("referer")
        if not present or not _is_same_origin(request):
            return private_error("forbidden", "csrf_violation", status_code=403)
        return None
    if not _is_same_origin(request):
        return private_error("forbidden", "csrf_violation", status_code=403)
    return None
