"""
Classes and enrollment.

Why:
    Admins own the class list and who is enrolled where; teachers see their
    own classes and rosters; students see the classes they are enrolled in.
    Ownership is checked here in addition to RLS so the in-memory gateway and
    a misconfigured database both reject cross-class access.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping

from ..errors import AccessDeniedError, RecordNotFoundError, ValidationError
from ..gateway import TableGateway
from .common import (
    Caller,
    clean_text,
    enrolled_class_ids,
    fetch_one,
    profile_names,
    record_activity,
    require_class_access,
    require_text,
    require_uuid,
)

_TEXT_FIELDS = {"section": 50, "subject": 200, "description": 2000}


def _class_values(data: Mapping[str, Any], *, partial: bool) -> dict:
    values: dict = {}
    if not partial or "name" in data:
        values["name"] = require_text(data.get("name"), max_len=200, code="invalid_name")
    for col, max_len in _TEXT_FIELDS.items():
        if not partial or col in data:
            values[col] = clean_text(data.get(col), max_len=max_len, code=f"invalid_{col}")
    if not partial or "teacher_id" in data:
        teacher_id = data.get("teacher_id")
        values["teacher_id"] = require_uuid(teacher_id, code="invalid_teacher_id") if teacher_id else None
    return values


@dataclass
class ClassService:
    gateway: TableGateway

    # --- Admin ------------------------------------------------------------------

    def list_classes(self, caller: Caller) -> List[dict]:
        classes = self.gateway.select(caller.actor, "classes", order_by="created_at", desc=True)
        names = profile_names(self.gateway, caller.actor, (c.get("teacher_id") for c in classes))
        return [{**c, "teacher_name": names.get(str(c.get("teacher_id") or ""))} for c in classes]

    def create_class(self, caller: Caller, data: Mapping[str, Any]) -> dict:
        values = _class_values(data, partial=False)
        values["created_by"] = caller.sub
        created = self.gateway.insert(caller.actor, "classes", [values])[0]
        record_activity(self.gateway, caller, "class_created", f"class={created['id']}")
        return created

    def update_class(self, caller: Caller, class_id: object, changes: Mapping[str, Any]) -> dict:
        cid = require_uuid(class_id, code="invalid_class_id")
        values = _class_values(changes, partial=True)
        if not values:
            raise ValidationError(code="empty_update")
        rows = self.gateway.update(caller.actor, "classes", values, eq={"id": cid})
        if not rows:
            raise RecordNotFoundError(code="class_not_found")
        return rows[0]

    def delete_class(self, caller: Caller, class_id: object) -> None:
        cid = require_uuid(class_id, code="invalid_class_id")
        if not self.gateway.delete(caller.actor, "classes", eq={"id": cid}):
            raise RecordNotFoundError(code="class_not_found")
        record_activity(self.gateway, caller, "class_deleted", f"class={cid}")

    def assignable_teachers(self, caller: Caller) -> List[dict]:
        rows = self.gateway.select(
            caller.actor, "teachers", columns=["user_id", "full_name", "subject"], order_by="full_name"
        )
        return [r for r in rows if r.get("user_id")]

    # --- Enrollment (admin) ---------------------------------------------------

    def enroll(self, caller: Caller, class_id: object, student_id: object) -> dict:
        cid = require_uuid(class_id, code="invalid_class_id")
        sid = require_uuid(student_id, code="invalid_student_id")
        fetch_one(self.gateway, caller.actor, "classes", cid, code="class_not_found")
        if not self.gateway.select(caller.actor, "profiles", columns=["id"], eq={"id": sid}, limit=1):
            raise RecordNotFoundError(code="student_not_found")
        created = self.gateway.insert(caller.actor, "class_enrollments", [{"class_id": cid, "student_id": sid}])[0]
        record_activity(self.gateway, caller, "student_enrolled", f"class={cid} student={sid}")
        return created

    def remove_enrollment(self, caller: Caller, enrollment_id: object) -> None:
        eid = require_uuid(enrollment_id, code="invalid_enrollment_id")
        if not self.gateway.delete(caller.actor, "class_enrollments", eq={"id": eid}):
            raise RecordNotFoundError(code="enrollment_not_found")
        record_activity(self.gateway, caller, "student_unenrolled", f"enrollment={eid}")

    def class_enrollments(self, caller: Caller, class_id: object) -> List[dict]:
        cid = require_uuid(class_id, code="invalid_class_id")
        rows = self.gateway.select(
            caller.actor, "class_enrollments", eq={"class_id": cid}, order_by="enrolled_at", desc=True
        )
        names = profile_names(self.gateway, caller.actor, (r["student_id"] for r in rows))
        return [{**r, "student_name": names.get(str(r["student_id"]), "")} for r in rows]

    def students_with_enrollment_counts(self, caller: Caller) -> List[dict]:
        student_ids = [
            str(r["user_id"])
            for r in self.gateway.select(caller.actor, "user_roles", columns=["user_id"], eq={"role": "student"})
        ]
        names = profile_names(self.gateway, caller.actor, student_ids)
        counts: Dict[str, int] = {}
        if student_ids:
            for row in self.gateway.select(
                caller.actor, "class_enrollments", columns=["student_id"], in_={"student_id": student_ids}
            ):
                key = str(row["student_id"])
                counts[key] = counts.get(key, 0) + 1
        out = [{"id": sid, "full_name": names.get(sid, ""), "enrollment_count": counts.get(sid, 0)} for sid in set(student_ids)]
        out.sort(key=lambda s: s["full_name"].lower())
        return out

    # --- Teacher ------------------------------------------------------------------

    def teacher_classes(self, caller: Caller) -> List[dict]:
        classes = self.gateway.select(
            caller.actor, "classes", eq={"teacher_id": caller.sub}, order_by="created_at", desc=True
        )
        counts: Dict[str, int] = {}
        ids = [str(c["id"]) for c in classes]
        if ids:
            for row in self.gateway.select(caller.actor, "class_enrollments", columns=["class_id"], in_={"class_id": ids}):
                key = str(row["class_id"])
                counts[key] = counts.get(key, 0) + 1
        return [{**c, "student_count": counts.get(str(c["id"]), 0)} for c in classes]

    def roster(self, caller: Caller, class_id: object) -> List[dict]:
        cls = require_class_access(self.gateway, caller, class_id)
        rows = self.gateway.select(caller.actor, "class_enrollments", eq={"class_id": cls["id"]})
        names = profile_names(self.gateway, caller.actor, (r["student_id"] for r in rows))
        roster = [
            {"student_id": str(r["student_id"]), "full_name": names.get(str(r["student_id"]), ""), "enrolled_at": r.get("enrolled_at")}
            for r in rows
        ]
        roster.sort(key=lambda s: s["full_name"].lower())
        return roster

    # --- Student ------------------------------------------------------------------

    def student_classes(self, caller: Caller) -> List[dict]:
        enrollments = self.gateway.select(
            caller.actor, "class_enrollments", eq={"student_id": caller.sub}, order_by="enrolled_at", desc=True
        )
        if not enrollments:
            return []
        ids = [str(e["class_id"]) for e in enrollments]
        classes = {str(c["id"]): c for c in self.gateway.select(caller.actor, "classes", in_={"id": ids})}
        names = profile_names(self.gateway, caller.actor, (c.get("teacher_id") for c in classes.values()))
        out = []
        for e in enrollments:
            cls = classes.get(str(e["class_id"]))
            if cls is None:
                continue
            out.append(
                {
                    "enrollment_id": str(e["id"]),
                    "enrolled_at": e.get("enrolled_at"),
                    "class": {**cls, "teacher_name": names.get(str(cls.get("teacher_id") or ""))},
                }
            )
        return out

    def class_details(self, caller: Caller, class_id: object) -> dict:
        """Class with its resources and assignments; only for enrolled students."""
        cid = require_uuid(class_id, code="invalid_class_id")
        if cid not in enrolled_class_ids(self.gateway, caller.actor, caller.sub):
            raise AccessDeniedError(code="not_enrolled")
        cls = fetch_one(self.gateway, caller.actor, "classes", cid, code="class_not_found")
        resources = self.gateway.select(caller.actor, "resources", eq={"class_id": cid}, order_by="created_at", desc=True)
        assignments = self.gateway.select(caller.actor, "assignments", eq={"class_id": cid}, order_by="due_date")
        return {"class": cls, "resources": resources, "assignments": assignments}
