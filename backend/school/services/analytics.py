"""
Analytics aggregates for dashboards.

All aggregation happens over fetched rows; the results are plain numbers
and lists that the client renders as charts. Per-student breakdowns and the
class-wide pools use the same helpers.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping

from ..gateway import TableGateway
from .common import Caller, profile_names, round_half_up

LEARNING_SPEEDS = ("fast", "medium", "slow")
BELOW_AVERAGE_THRESHOLD = 50


def _score(row: Mapping[str, Any]) -> float:
    try:
        return float(row.get("performance_score") or 0)
    except (TypeError, ValueError):
        return 0.0


def rows_by_student(rows: Iterable[Mapping[str, Any]]) -> Dict[str, List[Mapping[str, Any]]]:
    grouped: Dict[str, List[Mapping[str, Any]]] = {}
    for row in rows:
        grouped.setdefault(str(row.get("student_id")), []).append(row)
    return grouped


def student_averages(rows: Iterable[Mapping[str, Any]]) -> Dict[str, float]:
    return {
        sid: sum(_score(r) for r in student_rows) / len(student_rows)
        for sid, student_rows in rows_by_student(rows).items()
    }


def subject_averages(rows: Iterable[Mapping[str, Any]]) -> Dict[str, int]:
    totals: Dict[str, List[float]] = {}
    for row in rows:
        subject = row.get("subject") or "General"
        totals.setdefault(str(subject), []).append(_score(row))
    return {subject: round_half_up(sum(scores) / len(scores)) for subject, scores in sorted(totals.items())}


def weak_areas(rows: Iterable[Mapping[str, Any]]) -> List[str]:
    found: set = set()
    for row in rows:
        areas = row.get("weak_areas") or []
        if isinstance(areas, str):
            areas = [areas]
        found.update(str(a).strip() for a in areas if str(a).strip())
    return sorted(found)


def performance_trend(rows: Iterable[Mapping[str, Any]]) -> List[dict]:
    """Scores in record order, numbered from 1."""
    return [
        {"index": idx, "score": _score(row), "subject": row.get("subject") or "General"}
        for idx, row in enumerate(rows, start=1)
    ]


def speed_distribution(rows: Iterable[Mapping[str, Any]]) -> Dict[str, int]:
    """Count learning speeds case-insensitively; missing means medium, unknown values are ignored."""
    dist = {speed: 0 for speed in LEARNING_SPEEDS}
    for row in rows:
        speed = str(row.get("learning_speed") or "medium").strip().lower()
        if speed in dist:
            dist[speed] += 1
    return dist


def summarize(rows: List[Mapping[str, Any]]) -> dict:
    """Headline numbers; the overall average weighs every student equally."""
    averages = student_averages(rows)
    overall = round_half_up(sum(averages.values()) / len(averages)) if averages else 0
    return {
        "students": len(averages),
        "average_score": overall,
        "records": len(rows),
        "below_threshold": sum(1 for avg in averages.values() if avg < BELOW_AVERAGE_THRESHOLD),
    }


@dataclass
class AnalyticsService:
    gateway: TableGateway

    def _teacher_student_ids(self, caller: Caller) -> List[str]:
        class_ids = [
            str(c["id"]) for c in self.gateway.select(caller.actor, "classes", columns=["id"], eq={"teacher_id": caller.sub})
        ]
        if not class_ids:
            return []
        rows = self.gateway.select(caller.actor, "class_enrollments", columns=["student_id"], in_={"class_id": class_ids})
        return sorted({str(r["student_id"]) for r in rows})

    def teacher_student_analytics(self, caller: Caller) -> dict:
        student_ids = self._teacher_student_ids(caller)
        rows: List[dict] = []
        if student_ids:
            rows = self.gateway.select(
                caller.actor, "student_analytics", in_={"student_id": student_ids}, order_by="created_at", desc=True
            )
        names = profile_names(self.gateway, caller.actor, student_ids)
        averages = student_averages(rows)
        per_student = rows_by_student(rows)
        return {
            "students": [
                {
                    "student_id": sid,
                    "full_name": names.get(sid, ""),
                    "average_score": round_half_up(avg),
                    "records": len(per_student[sid]),
                    "subjects": subject_averages(per_student[sid]),
                    "weak_areas": weak_areas(per_student[sid]),
                    # Rows arrive newest first; the trend reads oldest first.
                    "trend": performance_trend(reversed(per_student[sid])),
                }
                for sid, avg in sorted(averages.items(), key=lambda kv: kv[1], reverse=True)
            ],
            "subjects": subject_averages(rows),
            "weak_areas": weak_areas(rows),
            "learning_speed": speed_distribution(rows),
            "summary": summarize(rows),
        }

    def admin_stats(self, caller: Caller) -> dict:
        students = {
            str(r["user_id"]) for r in self.gateway.select(caller.actor, "user_roles", columns=["user_id"], eq={"role": "student"})
        }
        return {
            "students": len(students),
            "teachers": len(self.gateway.select(caller.actor, "teachers", columns=["id"])),
            "classes": len(self.gateway.select(caller.actor, "classes", columns=["id"])),
            "pending_requests": len(
                self.gateway.select(caller.actor, "teacher_requests", columns=["id"], eq={"status": "pending"})
            ),
        }

    def teacher_dashboard(self, caller: Caller) -> dict:
        classes = self.gateway.select(caller.actor, "classes", columns=["id"], eq={"teacher_id": caller.sub})
        assignments = self.gateway.select(caller.actor, "assignments", columns=["id"], eq={"teacher_id": caller.sub})
        return {
            "classes": len(classes),
            "students": len(self._teacher_student_ids(caller)),
            "assignments": len(assignments),
        }
