"""Exam schedule (admin) and the student exam tracker."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
import re
from typing import Any, List, Mapping, Optional

from ..errors import RecordNotFoundError, ValidationError, validate_required_fields
from ..gateway import TableGateway
from .common import (
    Caller,
    clean_text,
    enrolled_class_ids,
    optional_int,
    parse_date,
    require_text,
    require_uuid,
    today,
)

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d(:[0-5]\d)?$")


def _exam_time(value: object) -> Optional[str]:
    text = clean_text(value, max_len=8, code="invalid_time")
    if text is not None and not _TIME_RE.match(text):
        raise ValidationError(code="invalid_time")
    return text


def _exam_values(data: Mapping[str, Any], *, partial: bool) -> dict:
    values: dict = {}
    if not partial or "title" in data:
        values["title"] = require_text(data.get("title"), max_len=200, code="invalid_title")
    if not partial or "subject" in data:
        values["subject"] = require_text(data.get("subject"), max_len=200, code="invalid_subject")
    if not partial or "date" in data:
        exam_date = parse_date(data.get("date"))
        if exam_date is None:
            raise ValidationError(code="invalid_date")
        values["date"] = exam_date
    if not partial or "class_id" in data:
        class_id = data.get("class_id")
        values["class_id"] = require_uuid(class_id, code="invalid_class_id") if class_id else None
    if not partial or "time" in data:
        values["time"] = _exam_time(data.get("time"))
    if not partial or "duration_minutes" in data:
        values["duration_minutes"] = optional_int(data.get("duration_minutes"), minimum=1, code="invalid_duration")
    if not partial or "total_marks" in data:
        values["total_marks"] = optional_int(data.get("total_marks"), minimum=0, code="invalid_total_marks")
    if not partial or "syllabus" in data:
        values["syllabus"] = clean_text(data.get("syllabus"), max_len=10000, code="invalid_syllabus")
    return values


@dataclass
class ExamService:
    gateway: TableGateway

    def list_exams(self, caller: Caller) -> List[dict]:
        return self.gateway.select(caller.actor, "exams", order_by="date")

    def create_exam(self, caller: Caller, data: Mapping[str, Any]) -> dict:
        validate_required_fields(data, ("title", "subject", "date"))
        values = _exam_values(data, partial=False)
        values["created_by"] = caller.sub
        return self.gateway.insert(caller.actor, "exams", [values])[0]

    def update_exam(self, caller: Caller, exam_id: object, changes: Mapping[str, Any]) -> dict:
        eid = require_uuid(exam_id, code="invalid_exam_id")
        values = _exam_values(changes, partial=True)
        if not values:
            raise ValidationError(code="empty_update")
        rows = self.gateway.update(caller.actor, "exams", values, eq={"id": eid})
        if not rows:
            raise RecordNotFoundError(code="exam_not_found")
        return rows[0]

    def delete_exam(self, caller: Caller, exam_id: object) -> None:
        eid = require_uuid(exam_id, code="invalid_exam_id")
        if not self.gateway.delete(caller.actor, "exams", eq={"id": eid}):
            raise RecordNotFoundError(code="exam_not_found")

    def tracker(self, caller: Caller, *, on: Optional[date] = None) -> dict:
        """Exams of the caller's classes split into upcoming (with days_until) and past."""
        class_ids = enrolled_class_ids(self.gateway, caller.actor, caller.sub)
        if not class_ids:
            return {"upcoming": [], "past": []}
        exams = self.gateway.select(caller.actor, "exams", in_={"class_id": class_ids}, order_by="date")
        current = on or today()
        upcoming: List[dict] = []
        past: List[dict] = []
        for exam in exams:
            exam_day = date.fromisoformat(str(exam["date"])[:10])
            if exam_day >= current:
                upcoming.append({**exam, "days_until": (exam_day - current).days})
            else:
                past.append(exam)
        return {"upcoming": upcoming, "past": past}
