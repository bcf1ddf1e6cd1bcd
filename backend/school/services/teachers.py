"""Admin CRUD over the `teachers` table."""

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Any, List, Mapping

from ..errors import RecordNotFoundError, ValidationError, validate_required_fields
from ..gateway import TableGateway
from .common import Caller, clean_text, record_activity, require_text, require_uuid

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

_OPTIONAL_FIELDS = {
    "phone": 40,
    "qualification": 500,
    "experience": 500,
    "subject": 200,
}


def _normalize_email(value: object) -> str:
    email = require_text(value, max_len=320, code="invalid_email").lower()
    if not _EMAIL_RE.match(email):
        raise ValidationError(code="invalid_email")
    return email


@dataclass
class TeacherService:
    gateway: TableGateway

    def list_teachers(self, caller: Caller) -> List[dict]:
        return self.gateway.select(caller.actor, "teachers", order_by="created_at", desc=True)

    def create_teacher(self, caller: Caller, data: Mapping[str, Any]) -> dict:
        validate_required_fields(data, ("full_name", "email"))
        row = {
            "full_name": require_text(data.get("full_name"), max_len=200, code="invalid_full_name"),
            "email": _normalize_email(data.get("email")),
        }
        for col, max_len in _OPTIONAL_FIELDS.items():
            row[col] = clean_text(data.get(col), max_len=max_len, code=f"invalid_{col}")
        if data.get("user_id"):
            row["user_id"] = require_uuid(data.get("user_id"), code="invalid_user_id")
        created = self.gateway.insert(caller.actor, "teachers", [row])[0]
        record_activity(self.gateway, caller, "teacher_created", f"teacher={created['id']}")
        return created

    def update_teacher(self, caller: Caller, teacher_id: object, changes: Mapping[str, Any]) -> dict:
        tid = require_uuid(teacher_id, code="invalid_teacher_id")
        values: dict = {}
        if "full_name" in changes:
            values["full_name"] = require_text(changes["full_name"], max_len=200, code="invalid_full_name")
        if "email" in changes:
            values["email"] = _normalize_email(changes["email"])
        for col, max_len in _OPTIONAL_FIELDS.items():
            if col in changes:
                values[col] = clean_text(changes[col], max_len=max_len, code=f"invalid_{col}")
        if not values:
            raise ValidationError(code="empty_update")
        rows = self.gateway.update(caller.actor, "teachers", values, eq={"id": tid})
        if not rows:
            raise RecordNotFoundError(code="teacher_not_found")
        return rows[0]

    def delete_teacher(self, caller: Caller, teacher_id: object) -> None:
        tid = require_uuid(teacher_id, code="invalid_teacher_id")
        if not self.gateway.delete(caller.actor, "teachers", eq={"id": tid}):
            raise RecordNotFoundError(code="teacher_not_found")
        record_activity(self.gateway, caller, "teacher_deleted", f"teacher={tid}")
