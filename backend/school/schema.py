"""
Table catalogue for the portal's hosted Postgres schema.

Why:
    Both table gateways (Postgres and in-memory) need the same knowledge about
    tables: which columns exist (identifier whitelist for SQL composition),
    which defaults the database fills in, and which column sets are unique.
    Keeping it declarative here avoids drift between the two and matches the
    migration in `supabase/migrations/`.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Tuple


ROLES = ("student", "teacher", "admin")
ATTENDANCE_STATUSES = ("present", "absent", "late", "excused")
REQUEST_STATUSES = ("pending", "approved", "rejected")
REPORT_TYPES = ("progress", "attendance", "performance", "behavior")
MOODS = ("great", "good", "okay", "bad", "awful")
DELIVERY_STATUSES = ("queued", "leased", "sent", "dead")


@dataclass(frozen=True)
class Table:
    name: str
    columns: Tuple[str, ...]
    defaults: Mapping[str, Any] = field(default_factory=dict)
    unique: Tuple[Tuple[str, ...], ...] = ()
    timestamps: Tuple[str, ...] = ("created_at",)
    json_columns: Tuple[str, ...] = ()

    def has(self, column: str) -> bool:
        return column in self.columns


_TABLES = (
    Table("profiles", ("id", "full_name", "avatar_url", "phone", "created_at")),
    Table("user_roles", ("id", "user_id", "role", "created_at"), unique=(("user_id", "role"),)),
    Table(
        "teacher_requests",
        (
            "id", "user_id", "full_name", "email", "phone", "qualification", "experience",
            "subject", "reason", "status", "admin_notes", "reviewed_at", "reviewed_by", "created_at",
        ),
        defaults={"status": "pending"},
    ),
    Table(
        "teachers",
        ("id", "user_id", "full_name", "email", "phone", "qualification", "experience", "subject", "approved_at", "created_at"),
        unique=(("user_id",),),
    ),
    Table("classes", ("id", "name", "section", "subject", "description", "teacher_id", "created_by", "created_at")),
    Table(
        "class_enrollments",
        ("id", "class_id", "student_id", "enrolled_at"),
        unique=(("class_id", "student_id"),),
        timestamps=("enrolled_at",),
    ),
    Table("assignments", ("id", "class_id", "teacher_id", "title", "description", "due_date", "total_marks", "created_at")),
    Table(
        "assignment_submissions",
        (
            "id", "assignment_id", "student_id", "submission_text", "submission_url",
            "marks_obtained", "feedback", "graded_at", "submitted_at",
        ),
        unique=(("assignment_id", "student_id"),),
        timestamps=("submitted_at",),
    ),
    Table(
        "resources",
        ("id", "class_id", "title", "description", "resource_type", "resource_url", "subject", "uploaded_by", "created_at"),
    ),
    Table(
        "announcements",
        ("id", "class_id", "teacher_id", "title", "content", "created_at", "updated_at"),
        timestamps=("created_at", "updated_at"),
    ),
    Table(
        "attendance",
        ("id", "class_id", "student_id", "date", "status", "marked_by", "created_at"),
        unique=(("class_id", "student_id", "date"),),
    ),
    Table(
        "exams",
        (
            "id", "class_id", "title", "subject", "date", "time", "duration_minutes",
            "total_marks", "syllabus", "created_by", "created_at", "updated_at",
        ),
        timestamps=("created_at", "updated_at"),
    ),
    Table("messages", ("id", "sender_id", "receiver_id", "message", "read", "created_at"), defaults={"read": False}),
    Table(
        "notifications",
        ("id", "user_id", "title", "message", "type", "read", "created_at"),
        defaults={"read": False, "type": "info"},
    ),
    Table(
        "notification_deliveries",
        ("id", "notification_id", "status", "retry_count", "visible_at", "leased_until", "last_error", "created_at", "updated_at"),
        defaults={"status": "queued", "retry_count": 0},
        timestamps=("created_at", "updated_at", "visible_at"),
    ),
    Table(
        "reports",
        ("id", "user_id", "class_id", "title", "description", "report_type", "report_data", "report_url", "generated_by", "created_at"),
        json_columns=("report_data",),
    ),
    Table(
        "student_analytics",
        ("id", "student_id", "subject", "chapter", "performance_score", "learning_speed", "weak_areas", "last_activity", "created_at"),
    ),
    Table("goals", ("id", "user_id", "subject", "hours_target", "deadline", "completed", "created_at"), defaults={"completed": False}),
    Table(
        "progress_tracker",
        ("id", "user_id", "current_day", "streak", "study_done", "homework_done", "sleep_done", "last_updated", "created_at"),
        defaults={"current_day": 0, "streak": 0, "study_done": False, "homework_done": False, "sleep_done": False},
        unique=(("user_id",),),
        timestamps=("created_at", "last_updated"),
    ),
    Table("mood_entries", ("id", "user_id", "mood", "note", "created_at")),
    Table("feedback", ("id", "user_id", "name", "message", "created_at")),
    Table("activity_logs", ("id", "user_id", "action", "details", "ip_address", "created_at")),
)

TABLES: Dict[str, Table] = {t.name: t for t in _TABLES}


def table(name: str) -> Table:
    try:
        return TABLES[name]
    except KeyError:
        raise ValueError(f"unknown_table:{name}") from None


def check_columns(name: str, columns) -> Table:
    """Return the table after verifying every column is catalogued."""
    t = table(name)
    for col in columns:
        if not t.has(col):
            raise ValueError(f"unknown_column:{name}.{col}")
    return t
