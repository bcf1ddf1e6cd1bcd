"""
Supabase Auth client (minimal) for sign-in, sign-up and admin user lookup.

Design:
- Framework-agnostic; the web adapter and the notification worker receive an
  instance (or a fake in tests) instead of constructing clients inline.
- Sign-in/sign-up use the anon key; `get_user_email` needs the service role key.

Security:
- Do not log credentials, tokens or email addresses.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import os
from typing import Any, Optional, Protocol

from supabase import Client, create_client

from .domain import AuthError, InvalidCredentialsError, SignUpRejectedError

logger = logging.getLogger("eduportal.identity_access.auth_client")


@dataclass(frozen=True)
class AuthUser:
    id: str
    email: str
    full_name: Optional[str] = None


class AuthClientProtocol(Protocol):
    def sign_in(self, email: str, password: str) -> AuthUser:
        ...

    def sign_up(self, email: str, password: str, *, full_name: str) -> AuthUser:
        ...

    def get_user_email(self, user_id: str) -> Optional[str]:
        ...


def _status_of(exc: Exception) -> Optional[int]:
    status = getattr(exc, "status", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def _to_auth_user(user: Any) -> AuthUser:
    if user is None or not getattr(user, "id", None):
        raise AuthError("auth_user_missing")
    meta = getattr(user, "user_metadata", None) or {}
    return AuthUser(id=str(user.id), email=str(getattr(user, "email", "") or ""), full_name=meta.get("full_name"))


class SupabaseAuthClient:
    def __init__(self, url: str | None = None, anon_key: str | None = None, service_key: str | None = None) -> None:
        self._url = (url or os.getenv("SUPABASE_URL") or "").strip()
        self._anon_key = (anon_key or os.getenv("SUPABASE_ANON_KEY") or "").strip()
        self._service_key = (service_key or os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "").strip()
        self._public: Optional[Client] = None
        self._admin: Optional[Client] = None

    def _public_client(self) -> Client:
        if self._public is None:
            if not self._url or not self._anon_key:
                raise AuthError("auth_not_configured")
            self._public = create_client(self._url, self._anon_key)
        return self._public

    def _admin_client(self) -> Client:
        if self._admin is None:
            if not self._url or not self._service_key:
                raise AuthError("auth_admin_not_configured")
            self._admin = create_client(self._url, self._service_key)
        return self._admin

    def sign_in(self, email: str, password: str) -> AuthUser:
        try:
            resp = self._public_client().auth.sign_in_with_password({"email": email, "password": password})
        except AuthError:
            raise
        except Exception as exc:
            if _status_of(exc) in (400, 401, 422):
                raise InvalidCredentialsError("invalid_credentials") from exc
            logger.warning("Supabase sign-in failed err=%s", exc.__class__.__name__)
            raise AuthError("auth_unavailable") from exc
        return _to_auth_user(getattr(resp, "user", None))

    def sign_up(self, email: str, password: str, *, full_name: str) -> AuthUser:
        try:
            resp = self._public_client().auth.sign_up(
                {"email": email, "password": password, "options": {"data": {"full_name": full_name}}}
            )
        except AuthError:
            raise
        except Exception as exc:
            if _status_of(exc) in (400, 409, 422):
                raise SignUpRejectedError("signup_rejected") from exc
            logger.warning("Supabase sign-up failed err=%s", exc.__class__.__name__)
            raise AuthError("auth_unavailable") from exc
        return _to_auth_user(getattr(resp, "user", None))

    def get_user_email(self, user_id: str) -> Optional[str]:
        resp = self._admin_client().auth.admin.get_user_by_id(user_id)
        user = getattr(resp, "user", None)
        email = getattr(user, "email", None) if user is not None else None
        return str(email) if email else None
