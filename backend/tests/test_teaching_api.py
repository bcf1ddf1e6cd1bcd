"""
Teaching API: classes, assignments and grading, resources, announcements,
attendance and reports.

Covers:
- ownership checks (another teacher's class/assignment is 403)
- grading bounds and the student notification
- attendance save replaces the day and rejects non-enrolled students
- reports are one row per student and notify each recipient
"""
from __future__ import annotations

import pytest

from utils.school import SYSTEM, client, enroll, person, school_class

pytestmark = pytest.mark.anyio("asyncio")


def _submission(gateway, assignment, student, **extra):
    row = {"assignment_id": assignment["id"], "student_id": student.sub, "submission_text": "done", **extra}
    return gateway.insert(SYSTEM, "assignment_submissions", [row])[0]


async def test_students_cannot_use_teaching_endpoints(gateway):
    student = person(gateway, "student")
    async with client(student) as c:
        r = await c.get("/api/teaching/classes")
    assert r.status_code == 403


async def test_dashboard_classes_and_roster(gateway):
    teacher = person(gateway, "teacher")
    alice = person(gateway, "student", name="Alice")
    bob = person(gateway, "student", name="bob")
    mine = school_class(gateway, teacher)
    school_class(gateway, person(gateway, "teacher"), name="Other")
    enroll(gateway, mine, bob, alice)
    async with client(teacher) as c:
        dash = await c.get("/api/teaching/dashboard")
        classes = await c.get("/api/teaching/classes")
        roster = await c.get(f"/api/teaching/classes/{mine['id']}/students")
    assert dash.json() == {"classes": 1, "students": 2, "assignments": 0}
    assert [(c["name"], c["student_count"]) for c in classes.json()] == [("Class 7A", 2)]
    assert [s["full_name"] for s in roster.json()] == ["Alice", "bob"]


async def test_roster_of_foreign_class_is_forbidden(gateway):
    teacher = person(gateway, "teacher")
    other = school_class(gateway, person(gateway, "teacher"))
    async with client(teacher) as c:
        r = await c.get(f"/api/teaching/classes/{other['id']}/students")
    assert r.status_code == 403
    assert r.json()["detail"] == "not_class_teacher"


async def test_admin_passes_class_ownership(gateway):
    admin = person(gateway, "admin")
    cls = school_class(gateway, person(gateway, "teacher"))
    async with client(admin) as c:
        r = await c.get(f"/api/teaching/classes/{cls['id']}/students")
    assert r.status_code == 200


async def test_assignment_crud(gateway):
    teacher = person(gateway, "teacher")
    cls = school_class(gateway, teacher)
    async with client(teacher) as c:
        no_class = await c.post("/api/teaching/assignments", json={"title": "Essay"})
        created = await c.post(
            "/api/teaching/assignments",
            json={"class_id": cls["id"], "title": "Essay", "due_date": "2026-11-01T12:00:00Z"},
        )
        aid = created.json()["id"]
        listed = await c.get("/api/teaching/assignments")
        patched = await c.patch(f"/api/teaching/assignments/{aid}", json={"total_marks": 20})
        deleted = await c.delete(f"/api/teaching/assignments/{aid}")
    assert no_class.status_code == 400 and no_class.json()["detail"] == "invalid_class_id"
    assert created.status_code == 201
    assert created.json()["total_marks"] == 100
    assert created.json()["teacher_id"] == teacher.sub
    assert listed.json()[0]["class_name"] == "Class 7A"
    assert patched.json()["total_marks"] == 20
    assert deleted.status_code == 204


async def test_assignment_in_foreign_class_is_forbidden(gateway):
    teacher = person(gateway, "teacher")
    other = school_class(gateway, person(gateway, "teacher"))
    async with client(teacher) as c:
        r = await c.post("/api/teaching/assignments", json={"class_id": other["id"], "title": "Essay"})
    assert r.status_code == 403


async def test_grading_bounds_and_notification(gateway):
    teacher = person(gateway, "teacher")
    student = person(gateway, "student", name="Alice")
    cls = school_class(gateway, teacher)
    enroll(gateway, cls, student)
    assignment = gateway.insert(
        SYSTEM, "assignments", [{"class_id": cls["id"], "teacher_id": teacher.sub, "title": "Essay", "total_marks": 50}]
    )[0]
    sub = _submission(gateway, assignment, student)
    async with client(teacher) as c:
        listed = await c.get(f"/api/teaching/assignments/{assignment['id']}/submissions")
        too_high = await c.post(f"/api/teaching/submissions/{sub['id']}/grade", json={"marks": 51})
        negative = await c.post(f"/api/teaching/submissions/{sub['id']}/grade", json={"marks": -1})
        not_int = await c.post(f"/api/teaching/submissions/{sub['id']}/grade", json={"marks": "lots"})
        ok = await c.post(f"/api/teaching/submissions/{sub['id']}/grade", json={"marks": 50, "feedback": " Great "})
    assert listed.json()[0]["student_name"] == "Alice"
    for bad in (too_high, negative, not_int):
        assert bad.status_code == 400
        assert bad.json()["detail"] == "invalid_marks"
    assert ok.status_code == 200
    assert ok.json()["marks_obtained"] == 50
    assert ok.json()["feedback"] == "Great"
    assert ok.json()["graded_at"]
    notes = gateway.select(SYSTEM, "notifications", eq={"user_id": student.sub})
    assert len(notes) == 1
    assert notes[0]["type"] == "assignment"
    assert "50/50" in notes[0]["message"]


async def test_grading_other_teachers_submission_is_forbidden(gateway):
    owner = person(gateway, "teacher")
    intruder = person(gateway, "teacher")
    student = person(gateway, "student")
    cls = school_class(gateway, owner)
    assignment = gateway.insert(SYSTEM, "assignments", [{"class_id": cls["id"], "teacher_id": owner.sub, "title": "T"}])[0]
    sub = _submission(gateway, assignment, student)
    async with client(intruder) as c:
        r = await c.post(f"/api/teaching/submissions/{sub['id']}/grade", json={"marks": 10})
    assert r.status_code == 403
    assert r.json()["detail"] == "not_assignment_owner"


async def test_resources_and_announcements(gateway):
    teacher = person(gateway, "teacher")
    other = person(gateway, "teacher")
    cls = school_class(gateway, teacher)
    async with client(teacher) as c:
        bad_url = await c.post("/api/teaching/resources", json={"title": "Notes", "resource_url": "ftp://x"})
        res = await c.post(
            "/api/teaching/resources",
            json={"title": "Notes", "resource_url": "https://example.org/notes.pdf", "resource_type": "Document"},
        )
        ann = await c.post(
            "/api/teaching/announcements", json={"class_id": cls["id"], "title": "Trip", "content": "Bring lunch"}
        )
        listed = await c.get("/api/teaching/announcements")
    assert bad_url.status_code == 400
    assert res.status_code == 201
    assert res.json()["resource_type"] == "document"
    assert ann.status_code == 201
    assert [a["title"] for a in listed.json()] == ["Trip"]

    async with client(other) as c:
        foreign_res = await c.delete(f"/api/teaching/resources/{res.json()['id']}")
        foreign_ann = await c.delete(f"/api/teaching/announcements/{ann.json()['id']}")
    assert foreign_res.status_code == 403
    assert foreign_ann.status_code == 403

    async with client(teacher) as c:
        patched = await c.patch(f"/api/teaching/resources/{res.json()['id']}", json={"subject": "History"})
        gone = await c.delete(f"/api/teaching/announcements/{ann.json()['id']}")
    assert patched.json()["subject"] == "History"
    assert gone.status_code == 204


async def test_attendance_save_replaces_day(gateway):
    teacher = person(gateway, "teacher")
    alice = person(gateway, "student", name="Alice")
    bob = person(gateway, "student", name="Bob")
    cls = school_class(gateway, teacher)
    enroll(gateway, cls, alice, bob)
    url = f"/api/teaching/classes/{cls['id']}/attendance"
    async with client(teacher) as c:
        first = await c.put(
            url,
            json={
                "date": "2026-10-05",
                "marks": [{"student_id": alice.sub, "status": "present"}, {"student_id": bob.sub, "status": "absent"}],
            },
        )
        second = await c.put(url, json={"date": "2026-10-05", "marks": [{"student_id": bob.sub, "status": "late"}]})
        sheet = await c.get(url, params={"date": "2026-10-05"})
    assert first.status_code == 200
    assert len(first.json()) == 2
    assert [(r["student_id"], r["status"]) for r in second.json()] == [(bob.sub, "late")]
    stored = gateway.select(SYSTEM, "attendance", eq={"class_id": cls["id"], "date": "2026-10-05"})
    assert [(r["student_id"], r["status"]) for r in stored] == [(bob.sub, "late")]
    statuses = {s["full_name"]: s["status"] for s in sheet.json()["students"]}
    assert statuses == {"Alice": None, "Bob": "late"}


async def test_attendance_rejects_unenrolled_and_bad_status_without_writing(gateway):
    teacher = person(gateway, "teacher")
    alice = person(gateway, "student")
    stranger = person(gateway, "student")
    cls = school_class(gateway, teacher)
    enroll(gateway, cls, alice)
    gateway.insert(
        SYSTEM, "attendance", [{"class_id": cls["id"], "student_id": alice.sub, "date": "2026-10-05", "status": "present"}]
    )
    url = f"/api/teaching/classes/{cls['id']}/attendance"
    async with client(teacher) as c:
        unenrolled = await c.put(
            url,
            json={
                "date": "2026-10-05",
                "marks": [{"student_id": alice.sub, "status": "absent"}, {"student_id": stranger.sub, "status": "present"}],
            },
        )
        bad_status = await c.put(url, json={"date": "2026-10-05", "marks": [{"student_id": alice.sub, "status": "holiday"}]})
        no_date = await c.put(url, json={"marks": []})
    assert unenrolled.status_code == 400 and unenrolled.json()["detail"] == "student_not_enrolled"
    assert bad_status.status_code == 400 and bad_status.json()["detail"] == "invalid_status"
    assert no_date.status_code == 400 and no_date.json()["detail"] == "invalid_date"
    stored = gateway.select(SYSTEM, "attendance", eq={"class_id": cls["id"]})
    assert [r["status"] for r in stored] == ["present"]


async def test_attendance_overview_percentages(gateway):
    teacher = person(gateway, "teacher")
    alice = person(gateway, "student", name="Alice")
    cls = school_class(gateway, teacher)
    enroll(gateway, cls, alice)
    gateway.insert(
        SYSTEM,
        "attendance",
        [
            {"class_id": cls["id"], "student_id": alice.sub, "date": "2026-10-01", "status": "present"},
            {"class_id": cls["id"], "student_id": alice.sub, "date": "2026-10-02", "status": "present"},
            {"class_id": cls["id"], "student_id": alice.sub, "date": "2026-10-03", "status": "absent"},
        ],
    )
    async with client(teacher) as c:
        r = await c.get(f"/api/teaching/classes/{cls['id']}/attendance/overview")
    body = r.json()
    assert body["students"][0]["full_name"] == "Alice"
    assert body["students"][0]["percentage"] == 67
    assert body["overall"]["total"] == 3


async def test_reports_one_row_per_student_and_notifications(gateway):
    teacher = person(gateway, "teacher")
    alice = person(gateway, "student")
    bob = person(gateway, "student")
    cls = school_class(gateway, teacher)
    enroll(gateway, cls, alice, bob)
    async with client(teacher) as c:
        bad_type = await c.post(
            "/api/teaching/reports",
            json={"class_id": cls["id"], "title": "Term 1", "report_type": "gossip", "student_ids": [alice.sub]},
        )
        none = await c.post(
            "/api/teaching/reports", json={"class_id": cls["id"], "title": "Term 1", "report_type": "progress"}
        )
        sent = await c.post(
            "/api/teaching/reports",
            json={
                "class_id": cls["id"],
                "title": "Term 1",
                "report_type": "progress",
                "student_ids": [alice.sub, bob.sub, alice.sub],
                "report_data": {"grade": "A"},
            },
        )
        listed = await c.get("/api/teaching/reports")
    assert bad_type.status_code == 400 and bad_type.json()["detail"] == "invalid_report_type"
    assert none.status_code == 400 and none.json()["detail"] == "invalid_students"
    assert sent.status_code == 201
    rows = sent.json()
    assert sorted(r["user_id"] for r in rows) == sorted([alice.sub, bob.sub])
    assert rows[0]["report_data"]["grade"] == "A"
    assert rows[0]["report_data"]["sent_at"]
    assert len(listed.json()) == 2
    for s in (alice, bob):
        notes = gateway.select(SYSTEM, "notifications", eq={"user_id": s.sub, "type": "report"})
        assert len(notes) == 1


async def test_report_to_unenrolled_student_is_rejected(gateway):
    teacher = person(gateway, "teacher")
    stranger = person(gateway, "student")
    cls = school_class(gateway, teacher)
    async with client(teacher) as c:
        r = await c.post(
            "/api/teaching/reports",
            json={"class_id": cls["id"], "title": "T", "report_type": "behavior", "student_ids": [stranger.sub]},
        )
    assert r.status_code == 400
    assert r.json()["detail"] == "student_not_enrolled"
    assert not gateway.select(SYSTEM, "reports")


async def test_admin_lists_every_sent_report(gateway):
    teacher = person(gateway, "teacher")
    other = person(gateway, "teacher")
    admin = person(gateway, "admin")
    alice = person(gateway, "student")
    cls = school_class(gateway, teacher)
    enroll(gateway, cls, alice)
    body = {"class_id": cls["id"], "title": "Term 1", "report_type": "progress", "student_ids": [alice.sub]}
    async with client(teacher) as c:
        assert (await c.post("/api/teaching/reports", json=body)).status_code == 201
    async with client(other) as c:
        others = await c.get("/api/teaching/reports")
    async with client(admin) as c:
        everything = await c.get("/api/teaching/reports")
    assert others.status_code == 200 and others.json() == []
    assert everything.status_code == 200
    assert [r["generated_by"] for r in everything.json()] == [teacher.sub]


async def test_teacher_analytics_aggregates(gateway):
    teacher = person(gateway, "teacher")
    alice = person(gateway, "student", name="Alice")
    cls = school_class(gateway, teacher)
    enroll(gateway, cls, alice)
    gateway.insert(
        SYSTEM,
        "student_analytics",
        [
            {"student_id": alice.sub, "subject": "Maths", "performance_score": 40, "learning_speed": "slow", "weak_areas": ["fractions"]},
            {"student_id": alice.sub, "subject": "Maths", "performance_score": 50, "learning_speed": "slow", "weak_areas": ["algebra"]},
        ],
    )
    async with client(teacher) as c:
        r = await c.get("/api/teaching/analytics")
    body = r.json()
    assert body["students"] == [
        {
            "student_id": alice.sub,
            "full_name": "Alice",
            "average_score": 45,
            "records": 2,
            "subjects": {"Maths": 45},
            "weak_areas": ["algebra", "fractions"],
            "trend": [
                {"index": 1, "score": 40, "subject": "Maths"},
                {"index": 2, "score": 50, "subject": "Maths"},
            ],
        }
    ]
    assert body["subjects"] == {"Maths": 45}
    assert body["weak_areas"] == ["algebra", "fractions"]
    assert body["learning_speed"] == {"fast": 0, "medium": 0, "slow": 2}
    assert body["summary"]["below_threshold"] == 1
