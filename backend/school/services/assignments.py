"""
Assignments, submissions and grading.

Why:
    Teachers create assignments for their own classes and grade what enrolled
    students hand in. One submission per student and assignment; students may
    resubmit until the submission has been graded.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, List, Mapping

from ..errors import AccessDeniedError, DuplicateRecordError, ValidationError
from ..gateway import TableGateway
from .common import (
    Caller,
    check_url,
    clean_text,
    enrolled_class_ids,
    fetch_one,
    optional_int,
    parse_timestamp,
    profile_names,
    require_class_access,
    require_text,
    require_uuid,
    utcnow_iso,
)
from .notifications import NotificationService

logger = logging.getLogger("eduportal.school.assignments")

DEFAULT_TOTAL_MARKS = 100


class AlreadyGradedError(DuplicateRecordError):
    code = "already_graded"


@dataclass
class AssignmentService:
    gateway: TableGateway
    notifications: NotificationService

    def _owned(self, caller: Caller, assignment_id: object) -> dict:
        aid = require_uuid(assignment_id, code="invalid_assignment_id")
        assignment = fetch_one(self.gateway, caller.actor, "assignments", aid, code="assignment_not_found")
        if not caller.is_admin and str(assignment.get("teacher_id") or "") != caller.sub:
            raise AccessDeniedError(code="not_assignment_owner")
        return assignment

    # --- Teacher ------------------------------------------------------------------

    def list_own(self, caller: Caller) -> List[dict]:
        rows = self.gateway.select(
            caller.actor, "assignments", eq={"teacher_id": caller.sub}, order_by="created_at", desc=True
        )
        class_ids = sorted({str(r["class_id"]) for r in rows if r.get("class_id")})
        names = {}
        if class_ids:
            names = {
                str(c["id"]): c.get("name")
                for c in self.gateway.select(caller.actor, "classes", columns=["id", "name"], in_={"id": class_ids})
            }
        return [{**r, "class_name": names.get(str(r.get("class_id")))} for r in rows]

    def create(self, caller: Caller, data: Mapping[str, Any]) -> dict:
        if not data.get("class_id"):
            raise ValidationError(code="invalid_class_id")
        cls = require_class_access(self.gateway, caller, data.get("class_id"))
        total = optional_int(data.get("total_marks"), minimum=0, code="invalid_total_marks")
        row = {
            "class_id": str(cls["id"]),
            "teacher_id": caller.sub,
            "title": require_text(data.get("title"), max_len=200, code="invalid_title"),
            "description": clean_text(data.get("description"), max_len=10000, code="invalid_description"),
            "due_date": parse_timestamp(data.get("due_date"), code="invalid_due_date"),
            "total_marks": DEFAULT_TOTAL_MARKS if total is None else total,
        }
        return self.gateway.insert(caller.actor, "assignments", [row])[0]

    def update(self, caller: Caller, assignment_id: object, changes: Mapping[str, Any]) -> dict:
        assignment = self._owned(caller, assignment_id)
        values: dict = {}
        if "title" in changes:
            values["title"] = require_text(changes["title"], max_len=200, code="invalid_title")
        if "description" in changes:
            values["description"] = clean_text(changes["description"], max_len=10000, code="invalid_description")
        if "due_date" in changes:
            values["due_date"] = parse_timestamp(changes["due_date"], code="invalid_due_date")
        if "total_marks" in changes:
            total = optional_int(changes["total_marks"], minimum=0, code="invalid_total_marks")
            values["total_marks"] = DEFAULT_TOTAL_MARKS if total is None else total
        if not values:
            raise ValidationError(code="empty_update")
        return self.gateway.update(caller.actor, "assignments", values, eq={"id": assignment["id"]})[0]

    def delete(self, caller: Caller, assignment_id: object) -> None:
        assignment = self._owned(caller, assignment_id)
        self.gateway.delete(caller.actor, "assignments", eq={"id": assignment["id"]})

    def submissions_for(self, caller: Caller, assignment_id: object) -> List[dict]:
        assignment = self._owned(caller, assignment_id)
        rows = self.gateway.select(
            caller.actor, "assignment_submissions", eq={"assignment_id": assignment["id"]}, order_by="submitted_at", desc=True
        )
        names = profile_names(self.gateway, caller.actor, (r["student_id"] for r in rows))
        return [{**r, "student_name": names.get(str(r["student_id"]), "")} for r in rows]

    def grade(self, caller: Caller, submission_id: object, *, marks: object, feedback: object = None) -> dict:
        sid = require_uuid(submission_id, code="invalid_submission_id")
        submission = fetch_one(self.gateway, caller.actor, "assignment_submissions", sid, code="submission_not_found")
        assignment = self._owned(caller, submission["assignment_id"])
        value = optional_int(marks, minimum=0, code="invalid_marks")
        if value is None:
            raise ValidationError(code="invalid_marks")
        total = assignment.get("total_marks")
        if total is not None and value > int(total):
            raise ValidationError(code="invalid_marks")
        updated = self.gateway.update(
            caller.actor,
            "assignment_submissions",
            {
                "marks_obtained": value,
                "feedback": clean_text(feedback, max_len=4000, code="invalid_feedback"),
                "graded_at": utcnow_iso(),
            },
            eq={"id": sid},
        )[0]
        try:
            self.notifications.notify(
                caller.actor,
                str(submission["student_id"]),
                title="Assignment graded",
                message=f"Your submission for \"{assignment.get('title')}\" was graded: {value}/{total}.",
                type="assignment",
            )
        except Exception as exc:
            logger.warning("Grade notification failed submission=%s err=%s", sid, exc.__class__.__name__)
        return updated

    # --- Student ------------------------------------------------------------------

    def submit(self, caller: Caller, assignment_id: object, *, text: object = None, url: object = None) -> dict:
        aid = require_uuid(assignment_id, code="invalid_assignment_id")
        assignment = fetch_one(self.gateway, caller.actor, "assignments", aid, code="assignment_not_found")
        if str(assignment.get("class_id")) not in enrolled_class_ids(self.gateway, caller.actor, caller.sub):
            raise AccessDeniedError(code="not_enrolled")
        body = clean_text(text, max_len=20000, code="invalid_submission_text")
        link = check_url(url, code="invalid_submission_url") if clean_text(url, code="invalid_submission_url") else None
        if body is None and link is None:
            raise ValidationError(code="empty_submission")
        existing = self.gateway.select(
            caller.actor, "assignment_submissions", eq={"assignment_id": aid, "student_id": caller.sub}, limit=1
        )
        values = {"submission_text": body, "submission_url": link}
        if existing:
            if existing[0].get("graded_at"):
                raise AlreadyGradedError()
            values["submitted_at"] = utcnow_iso()
            return self.gateway.update(caller.actor, "assignment_submissions", values, eq={"id": existing[0]["id"]})[0]
        return self.gateway.insert(
            caller.actor, "assignment_submissions", [{"assignment_id": aid, "student_id": caller.sub, **values}]
        )[0]

    def my_submissions(self, caller: Caller) -> List[dict]:
        return self.gateway.select(
            caller.actor, "assignment_submissions", eq={"student_id": caller.sub}, order_by="submitted_at", desc=True
        )

    def my_assignments(self, caller: Caller) -> List[dict]:
        """Assignments of enrolled classes by due date, each with the caller's submission (if any)."""
        class_ids = enrolled_class_ids(self.gateway, caller.actor, caller.sub)
        if not class_ids:
            return []
        assignments = self.gateway.select(caller.actor, "assignments", in_={"class_id": class_ids}, order_by="due_date")
        mine = {str(s["assignment_id"]): s for s in self.my_submissions(caller)}
        return [{**a, "submission": mine.get(str(a["id"]))} for a in assignments]
