"""
Shared authentication utilities.

Why:
    Keep the cookie policy and the role helpers used by the middleware and
    the auth router in one place.
"""

from __future__ import annotations

from typing import Iterable

from identity_access.domain import normalize_roles, primary_role


def cookie_opts(environment: str) -> dict:
    """Return hardened cookie flags.

    Production and staging require `Secure`; local dev over plain http keeps
    the cookie usable. SameSite=Lax in all environments.
    """
    env = (environment or "").lower()
    return {"secure": env in {"prod", "production", "stage", "staging"}, "samesite": "lax"}


def user_context(sub: str, name: str, roles: Iterable[object]) -> dict:
    """Shape stored in `request.state.user` for authenticated requests."""
    known = normalize_roles(roles)
    return {"sub": sub, "name": name, "role": primary_role(known), "roles": known}
