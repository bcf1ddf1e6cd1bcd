"""
Test doubles for the auth provider and the table gateway.

FakeAuthClient mimics the Supabase Auth wrapper (sign-in, sign-up, admin email
lookup). FailingGateway wraps the in-memory gateway and raises configured
errors for selected calls, which is how RLS denials are simulated without a
database.
"""
from __future__ import annotations

from typing import Callable, Dict, List, Optional, Tuple
from uuid import uuid4

from identity_access.auth_client import AuthUser  # type: ignore
from identity_access.domain import AuthError, InvalidCredentialsError, SignUpRejectedError  # type: ignore


class FakeAuthClient:
    def __init__(self) -> None:
        self._users: Dict[str, Tuple[AuthUser, str]] = {}
        self.unavailable = False

    def add_user(self, email: str, password: str, *, full_name: str | None = None, user_id: str | None = None) -> AuthUser:
        user = AuthUser(id=user_id or str(uuid4()), email=email.lower(), full_name=full_name)
        self._users[user.email] = (user, password)
        return user

    def sign_in(self, email: str, password: str) -> AuthUser:
        if self.unavailable:
            raise AuthError("auth_unavailable")
        entry = self._users.get(email.lower())
        if entry is None or entry[1] != password:
            raise InvalidCredentialsError("invalid_credentials")
        return entry[0]

    def sign_up(self, email: str, password: str, *, full_name: str) -> AuthUser:
        if self.unavailable:
            raise AuthError("auth_unavailable")
        if email.lower() in self._users:
            raise SignUpRejectedError("signup_rejected")
        return self.add_user(email, password, full_name=full_name)

    def get_user_email(self, user_id: str) -> Optional[str]:
        for user, _ in self._users.values():
            if user.id == user_id:
                return user.email
        return None


class FailingGateway:
    """Delegate to `inner`; raise `error` for calls matching a rule.

    A rule is `(method, table, service)` where `service` is True/False to
    match only system/user actors, or None to match both.
    """

    def __init__(self, inner, rules: List[Tuple[str, str, Optional[bool]]], error: Callable[[], Exception]):
        self.inner = inner
        self.rules = rules
        self.error = error
        self.calls: List[Tuple[str, str, bool]] = []

    def _check(self, method: str, actor, table: str) -> None:
        self.calls.append((method, table, bool(actor.service)))
        for m, t, service in self.rules:
            if m == method and t == table and (service is None or service == bool(actor.service)):
                raise self.error()

    def select(self, actor, table, **kwargs):
        self._check("select", actor, table)
        return self.inner.select(actor, table, **kwargs)

    def insert(self, actor, table, rows):
        self._check("insert", actor, table)
        return self.inner.insert(actor, table, rows)

    def update(self, actor, table, values, **kwargs):
        self._check("update", actor, table)
        return self.inner.update(actor, table, values, **kwargs)

    def delete(self, actor, table, **kwargs):
        self._check("delete", actor, table)
        return self.inner.delete(actor, table, **kwargs)

    def upsert(self, actor, table, row, *, on_conflict):
        self._check("upsert", actor, table)
        return self.inner.upsert(actor, table, row, on_conflict=on_conflict)

    def replace(self, actor, table, *, eq, rows):
        self._check("replace", actor, table)
        return self.inner.replace(actor, table, eq=eq, rows=rows)
