"""
Identity domain constants and simple helpers.

Why:
- Centralize allowed roles to avoid drift between services and web layer.
- Keep the role priority (admin > teacher > student) in one place.
"""

from __future__ import annotations

from typing import Iterable, Optional

# Keep roles minimal and explicit. Immutable to prevent accidental mutation.
ALLOWED_ROLES = frozenset({"student", "teacher", "admin"})

ROLE_PRIORITY = ("admin", "teacher", "student")


def normalize_roles(roles: Iterable[object] | None) -> list[str]:
    """Lower-case, de-duplicate and filter roles to the allowed set (stable order)."""
    out: list[str] = []
    for role in roles or []:
        value = str(role or "").strip().lower()
        if value in ALLOWED_ROLES and value not in out:
            out.append(value)
    return out


def primary_role(roles: Iterable[object] | None) -> Optional[str]:
    known = normalize_roles(roles)
    for role in ROLE_PRIORITY:
        if role in known:
            return role
    return None


class AuthError(Exception):
    """Base class for failures reported by the auth provider."""


class InvalidCredentialsError(AuthError):
    pass


class SignUpRejectedError(AuthError):
    """The provider refused the registration (e.g. email already taken)."""


__all__ = [
    "ALLOWED_ROLES",
    "ROLE_PRIORITY",
    "normalize_roles",
    "primary_role",
    "AuthError",
    "InvalidCredentialsError",
    "SignUpRejectedError",
]
