"""
Attendance and analytics aggregation: rounding, per-student weighting and
learning-speed normalisation.
"""
from __future__ import annotations

import pytest

from school.gateway import Actor, InMemoryTableGateway  # type: ignore
from school.services import analytics, attendance  # type: ignore
from school.services.common import Caller, round_half_up  # type: ignore

SYSTEM = Actor.system()


@pytest.mark.parametrize("value, expected", [(12.5, 13), (12.4999, 12), (0.5, 1), (1.5, 2), (2.5, 3), (99.5, 100), (0, 0)])
def test_round_half_up(value, expected):
    assert round_half_up(value) == expected


def test_attendance_percentage_rounds_half_up():
    records = [{"status": "present"}] + [{"status": "absent"}] * 7
    stats = attendance.summarize(records)
    assert stats["total"] == 8
    assert stats["percentage"] == 13


def test_attendance_percentage_without_records():
    assert attendance.summarize([])["percentage"] == 0


def test_overall_average_weighs_students_equally():
    rows = [
        {"student_id": "a", "performance_score": 100},
        {"student_id": "b", "performance_score": 0},
        {"student_id": "b", "performance_score": 0},
        {"student_id": "b", "performance_score": 0},
    ]
    summary = analytics.summarize(rows)
    assert summary["average_score"] == 50
    assert summary["students"] == 2
    assert summary["records"] == 4
    assert summary["below_threshold"] == 1


def test_subject_average_rounds_half_up():
    rows = [{"subject": "Maths", "performance_score": 45}, {"subject": "Maths", "performance_score": 46}]
    assert analytics.subject_averages(rows) == {"Maths": 46}


def test_speed_distribution_is_case_insensitive_and_ignores_unknown():
    rows = [
        {"learning_speed": "Fast"},
        {"learning_speed": " SLOW "},
        {"learning_speed": None},
        {},
        {"learning_speed": "turbo"},
    ]
    assert analytics.speed_distribution(rows) == {"fast": 1, "medium": 2, "slow": 1}


def test_teacher_analytics_breaks_down_per_student():
    gw = InMemoryTableGateway()
    teacher = Caller(sub="t1", roles=("teacher",), name="T")
    cls = gw.insert(SYSTEM, "classes", [{"name": "7A", "teacher_id": "t1"}])[0]
    gw.insert(SYSTEM, "class_enrollments", [{"class_id": cls["id"], "student_id": s} for s in ("s1", "s2")])
    gw.insert(SYSTEM, "profiles", [{"id": "s1", "full_name": "Ada"}, {"id": "s2", "full_name": "Bo"}])
    gw.insert(
        SYSTEM,
        "student_analytics",
        [
            {"student_id": "s1", "subject": "Maths", "performance_score": 90, "weak_areas": ["proofs"]},
            {"student_id": "s1", "subject": "Physics", "performance_score": 70},
            {"student_id": "s2", "subject": "Maths", "performance_score": 30, "weak_areas": ["fractions"]},
        ],
    )

    body = analytics.AnalyticsService(gw).teacher_student_analytics(teacher)

    ada, bo = body["students"]
    assert (ada["full_name"], ada["average_score"]) == ("Ada", 80)
    assert ada["subjects"] == {"Maths": 90, "Physics": 70}
    assert ada["weak_areas"] == ["proofs"]
    assert [p["score"] for p in ada["trend"]] == [90, 70]
    assert bo["subjects"] == {"Maths": 30}
    assert bo["weak_areas"] == ["fractions"]
    # Class-wide pools stay available next to the breakdown.
    assert body["subjects"] == {"Maths": 60, "Physics": 70}
    assert body["weak_areas"] == ["fractions", "proofs"]
    assert body["summary"]["average_score"] == 55
