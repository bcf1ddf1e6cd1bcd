"""
Teacher approval workflow.

Why:
    Approving a teacher is several dependent writes: grant the `teacher`
    role, create the `teachers` record, mark the request and notify the
    applicant. Only the teachers record is mandatory for success; the role
    grant tolerates duplicates and logs other failures. The request flips to
    approved last, so a failed teachers insert leaves it pending and the
    admin can simply approve again.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import List, Optional

from ..errors import DuplicateRecordError, ValidationError, with_error_handling
from ..gateway import TableGateway
from ..schema import REQUEST_STATUSES
from .common import Caller, clean_text, fetch_one, record_activity, require_uuid, utcnow_iso
from .notifications import NotificationService
from .onboarding import assign_role_tolerantly

logger = logging.getLogger("eduportal.school.approvals")


class RequestNotPendingError(DuplicateRecordError):
    code = "request_not_pending"


@dataclass
class TeacherApprovalService:
    gateway: TableGateway
    notifications: NotificationService

    def list_requests(self, caller: Caller, *, status: Optional[str] = None) -> List[dict]:
        eq = None
        if status:
            if status not in REQUEST_STATUSES:
                raise ValidationError(code="invalid_status")
            eq = {"status": status}
        return self.gateway.select(caller.actor, "teacher_requests", eq=eq, order_by="created_at", desc=True)

    def _pending(self, caller: Caller, request_id: object) -> dict:
        rid = require_uuid(request_id, code="invalid_request_id")
        request = fetch_one(self.gateway, caller.actor, "teacher_requests", rid, code="request_not_found")
        if request.get("status") != "pending":
            raise RequestNotPendingError()
        return request

    def approve(self, caller: Caller, request_id: object) -> dict:
        request = self._pending(caller, request_id)
        rid = str(request["id"])
        user_id = str(request["user_id"])
        role_assigned = assign_role_tolerantly(self.gateway, caller.actor, user_id, "teacher")
        if not role_assigned:
            logger.error("Teacher role assignment failed request=%s user=%s", rid, user_id)
        existing = self.gateway.select(caller.actor, "teachers", eq={"user_id": user_id}, limit=1)
        if existing:
            teacher = existing[0]
        else:
            teacher = self.gateway.insert(
                caller.actor,
                "teachers",
                [
                    {
                        "user_id": user_id,
                        "full_name": request.get("full_name"),
                        "email": request.get("email"),
                        "phone": request.get("phone"),
                        "qualification": request.get("qualification"),
                        "experience": request.get("experience"),
                        "subject": request.get("subject"),
                        "approved_at": utcnow_iso(),
                    }
                ],
            )[0]
        updated = self.gateway.update(
            caller.actor,
            "teacher_requests",
            {"status": "approved", "reviewed_at": utcnow_iso(), "reviewed_by": caller.sub},
            eq={"id": rid},
        )
        self._notify(
            caller,
            user_id,
            "Teacher application approved",
            "Your teacher account has been approved. You can now access the teacher dashboard.",
            "approval",
        )
        record_activity(self.gateway, caller, "teacher_approved", f"request={rid} user={user_id}")
        return {
            "request": updated[0] if updated else {**request, "status": "approved"},
            "teacher": teacher,
            "role_assigned": role_assigned,
        }

    def reject(self, caller: Caller, request_id: object, *, admin_notes: object = None) -> dict:
        request = self._pending(caller, request_id)
        rid = str(request["id"])
        notes = clean_text(admin_notes, max_len=2000, code="invalid_admin_notes")
        updated = self.gateway.update(
            caller.actor,
            "teacher_requests",
            {"status": "rejected", "reviewed_at": utcnow_iso(), "reviewed_by": caller.sub, "admin_notes": notes},
            eq={"id": rid},
        )
        message = "Your teacher application was not approved."
        if notes:
            message = f"{message} Notes: {notes}"
        self._notify(caller, str(request["user_id"]), "Teacher application rejected", message, "warning")
        record_activity(self.gateway, caller, "teacher_rejected", f"request={rid}")
        return updated[0] if updated else {**request, "status": "rejected", "admin_notes": notes}

    def _notify(self, caller: Caller, user_id: str, title: str, message: str, kind: str) -> None:
        result = with_error_handling(
            "notify_teacher_request",
            lambda: self.notifications.notify(caller.actor, user_id, title=title, message=message, type=kind),
        )
        if not result.ok:
            logger.warning("Approval notification failed user=%s", user_id)
