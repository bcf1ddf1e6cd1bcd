"""
Attendance marking and statistics.

Why:
    A teacher saves a whole day for a class at once; the saved set replaces
    whatever was recorded for that class and date in one transaction so a
    partially failed save never leaves mixed marks behind.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from ..errors import ValidationError
from ..gateway import TableGateway
from ..schema import ATTENDANCE_STATUSES
from .common import Caller, parse_date, profile_names, require_class_access, require_uuid, round_half_up
from .classes import ClassService


def summarize(records: Iterable[Mapping[str, Any]]) -> dict:
    """Count statuses; percentage is present/total rounded to a whole number."""
    stats = {"total": 0, "present": 0, "absent": 0, "late": 0, "excused": 0}
    for rec in records:
        stats["total"] += 1
        status = rec.get("status")
        if status in stats:
            stats[status] += 1
    stats["percentage"] = round_half_up(stats["present"] / stats["total"] * 100) if stats["total"] else 0
    return stats


@dataclass
class AttendanceService:
    gateway: TableGateway

    def sheet(self, caller: Caller, class_id: object, day: object) -> dict:
        """Roster of the class with the marks already saved for `day`."""
        date_str = parse_date(day)
        if date_str is None:
            raise ValidationError(code="invalid_date")
        roster = ClassService(self.gateway).roster(caller, class_id)
        cid = require_uuid(class_id, code="invalid_class_id")
        existing = {
            str(r["student_id"]): r.get("status")
            for r in self.gateway.select(caller.actor, "attendance", eq={"class_id": cid, "date": date_str})
        }
        return {
            "class_id": cid,
            "date": date_str,
            "students": [{**s, "status": existing.get(s["student_id"])} for s in roster],
        }

    def save_day(self, caller: Caller, class_id: object, day: object, marks: Sequence[Mapping[str, Any]]) -> List[dict]:
        cls = require_class_access(self.gateway, caller, class_id)
        cid = str(cls["id"])
        date_str = parse_date(day)
        if date_str is None:
            raise ValidationError(code="invalid_date")
        enrolled = {
            str(r["student_id"])
            for r in self.gateway.select(caller.actor, "class_enrollments", columns=["student_id"], eq={"class_id": cid})
        }
        rows: Dict[str, dict] = {}
        for mark in marks:
            student_id = require_uuid(mark.get("student_id"), code="invalid_student_id")
            status = mark.get("status")
            if status not in ATTENDANCE_STATUSES:
                raise ValidationError(code="invalid_status")
            if student_id not in enrolled:
                raise ValidationError(code="student_not_enrolled")
            rows[student_id] = {
                "class_id": cid,
                "student_id": student_id,
                "date": date_str,
                "status": status,
                "marked_by": caller.sub,
            }
        return self.gateway.replace(caller.actor, "attendance", eq={"class_id": cid, "date": date_str}, rows=list(rows.values()))

    def student_summary(self, caller: Caller, *, class_id: Optional[object] = None) -> dict:
        eq: Dict[str, Any] = {"student_id": caller.sub}
        if class_id:
            eq["class_id"] = require_uuid(class_id, code="invalid_class_id")
        records = self.gateway.select(caller.actor, "attendance", eq=eq, order_by="date", desc=True)
        return {"records": records, "stats": summarize(records)}

    def class_overview(self, caller: Caller, class_id: object) -> dict:
        """Per-student counts and percentage for one of the caller's classes."""
        roster = ClassService(self.gateway).roster(caller, class_id)
        cid = require_uuid(class_id, code="invalid_class_id")
        by_student: Dict[str, List[dict]] = {}
        records = self.gateway.select(caller.actor, "attendance", eq={"class_id": cid})
        for rec in records:
            by_student.setdefault(str(rec["student_id"]), []).append(rec)
        names = {s["student_id"]: s["full_name"] for s in roster}
        missing = [sid for sid in by_student if sid not in names]
        names.update(profile_names(self.gateway, caller.actor, missing))
        students = [
            {"student_id": sid, "full_name": names.get(sid, ""), **summarize(by_student.get(sid, []))}
            for sid in sorted(set(names), key=lambda s: names.get(s, "").lower())
        ]
        return {"class_id": cid, "students": students, "overall": summarize(records)}
