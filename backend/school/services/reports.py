"""Teacher-to-student reports."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, List, Mapping, Sequence

from ..errors import AccessDeniedError, RecordNotFoundError, ValidationError
from ..gateway import TableGateway
from ..schema import REPORT_TYPES
from .common import Caller, check_url, clean_text, require_class_access, require_text, require_uuid, utcnow_iso
from .notifications import NotificationService

logger = logging.getLogger("eduportal.school.reports")

MAX_RECIPIENTS = 200


@dataclass
class ReportService:
    gateway: TableGateway
    notifications: NotificationService

    def send(self, caller: Caller, data: Mapping[str, Any], student_ids: Sequence[object]) -> List[dict]:
        """Create one report row per selected student, then notify each of them."""
        title = require_text(data.get("title"), max_len=200, code="invalid_title")
        report_type = clean_text(data.get("report_type"), max_len=32, code="invalid_report_type")
        if report_type not in REPORT_TYPES:
            raise ValidationError(code="invalid_report_type")
        if not data.get("class_id"):
            raise ValidationError(code="invalid_class_id")
        cls = require_class_access(self.gateway, caller, data.get("class_id"))
        students = list(dict.fromkeys(require_uuid(s, code="invalid_student_id") for s in student_ids or []))
        if not students or len(students) > MAX_RECIPIENTS:
            raise ValidationError(code="invalid_students")
        enrolled = {
            str(r["student_id"])
            for r in self.gateway.select(caller.actor, "class_enrollments", columns=["student_id"], eq={"class_id": cls["id"]})
        }
        if any(s not in enrolled for s in students):
            raise ValidationError(code="student_not_enrolled")
        url = data.get("report_url")
        base = {
            "class_id": str(cls["id"]),
            "title": title,
            "description": clean_text(data.get("description"), max_len=10000, code="invalid_description"),
            "report_type": report_type,
            "report_url": check_url(url, code="invalid_report_url") if clean_text(url, code="invalid_report_url") else None,
            "generated_by": caller.sub,
        }
        sent_at = utcnow_iso()
        extra = data.get("report_data") if isinstance(data.get("report_data"), Mapping) else {}
        rows = self.gateway.insert(
            caller.actor,
            "reports",
            [{**base, "user_id": s, "report_data": {**extra, "sent_at": sent_at}} for s in students],
        )
        for student in students:
            try:
                self.notifications.notify(
                    caller.actor,
                    student,
                    title="New report available",
                    message=f"You received a {report_type} report: {title}",
                    type="report",
                )
            except Exception as exc:
                logger.warning("Report notification failed student=%s err=%s", student, exc.__class__.__name__)
        return rows

    def list_sent(self, caller: Caller) -> List[dict]:
        """Reports the caller generated; admins see every report."""
        eq = None if caller.is_admin else {"generated_by": caller.sub}
        return self.gateway.select(caller.actor, "reports", eq=eq, order_by="created_at", desc=True)

    def list_received(self, caller: Caller) -> List[dict]:
        return self.gateway.select(caller.actor, "reports", eq={"user_id": caller.sub}, order_by="created_at", desc=True)

    def delete(self, caller: Caller, report_id: object) -> None:
        rid = require_uuid(report_id, code="invalid_report_id")
        rows = self.gateway.select(caller.actor, "reports", columns=["id", "generated_by"], eq={"id": rid}, limit=1)
        if not rows:
            raise RecordNotFoundError(code="report_not_found")
        if not caller.is_admin and str(rows[0].get("generated_by") or "") != caller.sub:
            raise AccessDeniedError(code="not_report_owner")
        self.gateway.delete(caller.actor, "reports", eq={"id": rid})
