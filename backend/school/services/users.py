"""Admin user management and the profile directory."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List

from identity_access.domain import ALLOWED_ROLES, primary_role

from ..errors import RecordNotFoundError, ValidationError
from ..gateway import TableGateway
from .common import Caller, clean_text, record_activity, require_uuid

MIN_SEARCH_LENGTH = 2
MAX_SEARCH_LIMIT = 50


@dataclass
class UserAdminService:
    gateway: TableGateway

    def list_users(self, caller: Caller) -> List[dict]:
        profiles = self.gateway.select(caller.actor, "profiles", order_by="created_at", desc=True)
        roles = self.gateway.select(caller.actor, "user_roles", columns=["user_id", "role"])
        by_user: Dict[str, List[str]] = {}
        for row in roles:
            by_user.setdefault(str(row["user_id"]), []).append(str(row["role"]))
        out = []
        for p in profiles:
            user_roles = sorted(by_user.get(str(p["id"]), []))
            out.append({**p, "roles": user_roles, "role": primary_role(user_roles)})
        return out

    def set_role(self, caller: Caller, user_id: object, role: object) -> dict:
        """Make `role` the only role of the user."""
        uid = require_uuid(user_id, code="invalid_user_id")
        value = clean_text(role, max_len=20, code="invalid_role")
        if value not in ALLOWED_ROLES:
            raise ValidationError(code="invalid_role")
        if not self.gateway.select(caller.actor, "profiles", columns=["id"], eq={"id": uid}, limit=1):
            raise RecordNotFoundError(code="user_not_found")
        self.gateway.replace(caller.actor, "user_roles", eq={"user_id": uid}, rows=[{"user_id": uid, "role": value}])
        record_activity(self.gateway, caller, "role_changed", f"user={uid} role={value}")
        return {"user_id": uid, "role": value}

    def search_profiles(self, caller: Caller, q: object, *, limit: int = 20) -> List[dict]:
        query = clean_text(q, max_len=100, code="invalid_query")
        if not query or len(query) < MIN_SEARCH_LENGTH:
            raise ValidationError(code="invalid_query")
        limit = max(1, min(int(limit), MAX_SEARCH_LIMIT))
        return self.gateway.select(
            caller.actor,
            "profiles",
            columns=["id", "full_name", "avatar_url"],
            ilike={"full_name": query},
            order_by="full_name",
            limit=limit,
        )
