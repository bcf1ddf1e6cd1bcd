"""
Admin API: teacher approvals, teachers, classes, enrollment, exams, stats, export.

Covers:
- admin-only access (403 for teachers/students)
- approval writes request status, teacher role, teachers row and a notification
- role grant failures never fail the approval; a failed teachers insert leaves the request pending
- 409 for already-reviewed requests and duplicate enrollments
"""
from __future__ import annotations

import pytest

import routes.common as common  # type: ignore
from school.errors import AccessDeniedError, DataError  # type: ignore
from utils.fakes import FailingGateway
from utils.school import SYSTEM, client, enroll, person, school_class

pytestmark = pytest.mark.anyio("asyncio")


def _request(gateway, applicant, **extra):
    row = {"user_id": applicant.sub, "full_name": applicant.name, "email": "app@school.edu", "status": "pending", **extra}
    return gateway.insert(SYSTEM, "teacher_requests", [row])[0]


async def test_admin_endpoints_reject_non_admins(gateway):
    teacher = person(gateway, "teacher")
    student = person(gateway, "student")
    for who in (teacher, student):
        async with client(who) as c:
            r1 = await c.get("/api/admin/teacher-requests")
            r2 = await c.post("/api/admin/classes", json={"name": "X"})
            r3 = await c.get("/api/admin/stats")
        assert r1.status_code == 403
        assert r2.status_code == 403
        assert r3.status_code == 403
        assert r1.json() == {"error": "forbidden"}


async def test_list_requests_filters_by_status(gateway):
    admin = person(gateway, "admin")
    a = person(gateway)
    b = person(gateway)
    _request(gateway, a)
    _request(gateway, b, status="rejected")
    async with client(admin) as c:
        all_rows = await c.get("/api/admin/teacher-requests")
        pending = await c.get("/api/admin/teacher-requests", params={"status": "pending"})
        bad = await c.get("/api/admin/teacher-requests", params={"status": "bogus"})
    assert len(all_rows.json()) == 2
    assert [r["user_id"] for r in pending.json()] == [a.sub]
    assert bad.status_code == 400
    assert bad.json()["detail"] == "invalid_status"


async def test_approve_grants_role_creates_teacher_and_notifies(gateway):
    admin = person(gateway, "admin")
    applicant = person(gateway, name="Grace")
    req = _request(gateway, applicant, subject="Maths", qualification="MSc")
    async with client(admin) as c:
        r = await c.post(f"/api/admin/teacher-requests/{req['id']}/approve")
    assert r.status_code == 200
    body = r.json()
    assert body["role_assigned"] is True
    assert body["request"]["status"] == "approved"
    assert body["request"]["reviewed_by"] == admin.sub
    assert body["teacher"]["user_id"] == applicant.sub
    assert body["teacher"]["subject"] == "Maths"

    roles = gateway.select(SYSTEM, "user_roles", eq={"user_id": applicant.sub})
    assert [row["role"] for row in roles] == ["teacher"]
    notes = gateway.select(SYSTEM, "notifications", eq={"user_id": applicant.sub})
    assert len(notes) == 1 and notes[0]["type"] == "approval"
    deliveries = gateway.select(SYSTEM, "notification_deliveries")
    assert [d["notification_id"] for d in deliveries] == [notes[0]["id"]]
    logs = gateway.select(SYSTEM, "activity_logs", eq={"action": "teacher_approved"})
    assert len(logs) == 1


async def test_approve_twice_is_conflict(gateway):
    admin = person(gateway, "admin")
    req = _request(gateway, person(gateway))
    async with client(admin) as c:
        first = await c.post(f"/api/admin/teacher-requests/{req['id']}/approve")
        second = await c.post(f"/api/admin/teacher-requests/{req['id']}/approve")
        rejected = await c.post(f"/api/admin/teacher-requests/{req['id']}/reject")
    assert first.status_code == 200
    assert second.status_code == 409
    assert second.json() == {"error": "conflict", "detail": "request_not_pending"}
    assert rejected.status_code == 409


async def test_approve_unknown_request_is_404(gateway):
    admin = person(gateway, "admin")
    async with client(admin) as c:
        r = await c.post("/api/admin/teacher-requests/00000000-0000-0000-0000-000000000000/approve")
        bad = await c.post("/api/admin/teacher-requests/not-a-uuid/approve")
    assert r.status_code == 404
    assert r.json()["detail"] == "request_not_found"
    assert bad.status_code == 400


async def test_approve_falls_back_to_service_role_for_role_grant(gateway):
    admin = person(gateway, "admin")
    applicant = person(gateway)
    req = _request(gateway, applicant)
    failing = FailingGateway(
        gateway, [("insert", "user_roles", False)], error=lambda: AccessDeniedError(code="rls_denied")
    )
    common.set_gateway(failing)
    async with client(admin) as c:
        r = await c.post(f"/api/admin/teacher-requests/{req['id']}/approve")
    assert r.status_code == 200
    assert r.json()["role_assigned"] is True
    assert ("upsert", "user_roles", True) in failing.calls
    assert gateway.select(SYSTEM, "user_roles", eq={"user_id": applicant.sub, "role": "teacher"})


async def test_approve_succeeds_when_role_grant_fails_everywhere(gateway):
    admin = person(gateway, "admin")
    applicant = person(gateway)
    req = _request(gateway, applicant)
    failing = FailingGateway(
        gateway,
        [("insert", "user_roles", False), ("upsert", "user_roles", True)],
        error=lambda: AccessDeniedError(code="rls_denied"),
    )
    common.set_gateway(failing)
    async with client(admin) as c:
        r = await c.post(f"/api/admin/teacher-requests/{req['id']}/approve")
    assert r.status_code == 200
    body = r.json()
    assert body["role_assigned"] is False
    assert body["teacher"]["user_id"] == applicant.sub


async def test_approve_tolerates_notification_failure(gateway):
    admin = person(gateway, "admin")
    req = _request(gateway, person(gateway))
    common.set_gateway(
        FailingGateway(gateway, [("insert", "notifications", None)], error=lambda: AccessDeniedError(code="rls_denied"))
    )
    async with client(admin) as c:
        r = await c.post(f"/api/admin/teacher-requests/{req['id']}/approve")
    assert r.status_code == 200
    assert r.json()["request"]["status"] == "approved"


async def test_approve_can_be_retried_after_teacher_insert_fails(gateway):
    admin = person(gateway, "admin")
    applicant = person(gateway)
    req = _request(gateway, applicant)
    common.set_gateway(
        FailingGateway(gateway, [("insert", "teachers", None)], error=lambda: DataError("connection reset"))
    )
    async with client(admin) as c:
        failed = await c.post(f"/api/admin/teacher-requests/{req['id']}/approve")
    assert failed.status_code == 503
    assert gateway.select(SYSTEM, "teacher_requests", eq={"id": req["id"]})[0]["status"] == "pending"

    common.set_gateway(gateway)
    async with client(admin) as c:
        retried = await c.post(f"/api/admin/teacher-requests/{req['id']}/approve")
    assert retried.status_code == 200
    assert retried.json()["request"]["status"] == "approved"
    assert len(gateway.select(SYSTEM, "teachers", eq={"user_id": applicant.sub})) == 1
    assert len(gateway.select(SYSTEM, "user_roles", eq={"user_id": applicant.sub, "role": "teacher"})) == 1


async def test_reject_stores_notes_and_notifies(gateway):
    admin = person(gateway, "admin")
    applicant = person(gateway)
    req = _request(gateway, applicant)
    async with client(admin) as c:
        r = await c.post(f"/api/admin/teacher-requests/{req['id']}/reject", json={"admin_notes": " Missing papers "})
    assert r.status_code == 200
    assert r.json()["status"] == "rejected"
    assert r.json()["admin_notes"] == "Missing papers"
    notes = gateway.select(SYSTEM, "notifications", eq={"user_id": applicant.sub})
    assert "Missing papers" in notes[0]["message"]
    assert not gateway.select(SYSTEM, "user_roles", eq={"user_id": applicant.sub})

    async with client(applicant) as c:
        status = await c.get("/api/me/teacher-status")
    assert status.json()["status"] == "rejected"


async def test_teacher_crud(gateway):
    admin = person(gateway, "admin")
    async with client(admin) as c:
        missing = await c.post("/api/admin/teachers", json={"full_name": "No Mail"})
        created = await c.post("/api/admin/teachers", json={"full_name": "Ada", "email": "ADA@school.edu"})
        tid = created.json()["id"]
        patched = await c.patch(f"/api/admin/teachers/{tid}", json={"subject": "Physics"})
        listed = await c.get("/api/admin/teachers")
        deleted = await c.delete(f"/api/admin/teachers/{tid}")
        again = await c.delete(f"/api/admin/teachers/{tid}")
    assert missing.status_code == 400
    assert missing.json()["detail"] == "missing_fields"
    assert created.status_code == 201
    assert created.json()["email"] == "ada@school.edu"
    assert patched.json()["subject"] == "Physics"
    assert [t["id"] for t in listed.json()] == [tid]
    assert deleted.status_code == 204
    assert again.status_code == 404


async def test_class_crud_and_teacher_names(gateway):
    admin = person(gateway, "admin")
    teacher = person(gateway, "teacher", name="Mr Smith")
    async with client(admin) as c:
        bad = await c.post("/api/admin/classes", json={"name": "  "})
        created = await c.post("/api/admin/classes", json={"name": "Class 8B", "section": "B", "teacher_id": teacher.sub})
        cid = created.json()["id"]
        listed = await c.get("/api/admin/classes")
        patched = await c.patch(f"/api/admin/classes/{cid}", json={"subject": "Science"})
        empty = await c.patch(f"/api/admin/classes/{cid}", json={})
        deleted = await c.delete(f"/api/admin/classes/{cid}")
    assert bad.status_code == 400
    assert created.status_code == 201
    assert created.json()["created_by"] == admin.sub
    assert listed.json()[0]["teacher_name"] == "Mr Smith"
    assert patched.json()["subject"] == "Science"
    assert empty.status_code == 400 and empty.json()["detail"] == "empty_update"
    assert deleted.status_code == 204


async def test_assignable_teachers_lists_teacher_records(gateway):
    admin = person(gateway, "admin")
    t = person(gateway, "teacher", name="Zed")
    gateway.insert(SYSTEM, "teachers", [{"user_id": t.sub, "full_name": "Zed", "email": "z@school.edu"}])
    gateway.insert(SYSTEM, "teachers", [{"full_name": "No Account", "email": "n@school.edu"}])
    async with client(admin) as c:
        r = await c.get("/api/admin/assignable-teachers")
    assert [row["user_id"] for row in r.json()] == [t.sub]


async def test_enrollment_flow_and_duplicate_conflict(gateway):
    admin = person(gateway, "admin")
    student = person(gateway, "student", name="Alice")
    cls = school_class(gateway, None)
    async with client(admin) as c:
        first = await c.post(f"/api/admin/classes/{cls['id']}/enrollments", json={"student_id": student.sub})
        dup = await c.post(f"/api/admin/classes/{cls['id']}/enrollments", json={"student_id": student.sub})
        unknown = await c.post(
            f"/api/admin/classes/{cls['id']}/enrollments", json={"student_id": "00000000-0000-0000-0000-000000000001"}
        )
        roster = await c.get(f"/api/admin/classes/{cls['id']}/enrollments")
        students = await c.get("/api/admin/students")
        removed = await c.delete(f"/api/admin/enrollments/{first.json()['id']}")
        students_after = await c.get("/api/admin/students")
    assert first.status_code == 201
    assert dup.status_code == 409
    assert dup.json()["error"] == "conflict"
    assert unknown.status_code == 404 and unknown.json()["detail"] == "student_not_found"
    assert [r["student_name"] for r in roster.json()] == ["Alice"]
    assert students.json() == [{"id": student.sub, "full_name": "Alice", "enrollment_count": 1}]
    assert removed.status_code == 204
    assert students_after.json()[0]["enrollment_count"] == 0


async def test_exam_crud_validates_fields(gateway):
    admin = person(gateway, "admin")
    cls = school_class(gateway, None)
    async with client(admin) as c:
        missing = await c.post("/api/admin/exams", json={"title": "Midterm"})
        bad_time = await c.post(
            "/api/admin/exams", json={"title": "Midterm", "subject": "Maths", "date": "2026-11-02", "time": "25:00"}
        )
        created = await c.post(
            "/api/admin/exams",
            json={"title": "Midterm", "subject": "Maths", "date": "2026-11-02", "time": "09:30", "class_id": cls["id"], "duration_minutes": 90},
        )
        eid = created.json()["id"]
        patched = await c.patch(f"/api/admin/exams/{eid}", json={"total_marks": 50})
        listed = await c.get("/api/admin/exams")
        deleted = await c.delete(f"/api/admin/exams/{eid}")
    assert missing.status_code == 400 and missing.json()["detail"] == "missing_fields"
    assert bad_time.status_code == 400 and bad_time.json()["detail"] == "invalid_time"
    assert created.status_code == 201
    assert created.json()["duration_minutes"] == 90
    assert patched.json()["total_marks"] == 50
    assert len(listed.json()) == 1
    assert deleted.status_code == 204


async def test_admin_stats_counts(gateway):
    admin = person(gateway, "admin")
    s1 = person(gateway, "student")
    person(gateway, "student")
    teacher = person(gateway, "teacher")
    gateway.insert(SYSTEM, "teachers", [{"user_id": teacher.sub, "full_name": "T", "email": "t@school.edu"}])
    cls = school_class(gateway, teacher)
    enroll(gateway, cls, s1)
    _request(gateway, person(gateway))
    async with client(admin) as c:
        r = await c.get("/api/admin/stats")
    assert r.json() == {"students": 2, "teachers": 1, "classes": 1, "pending_requests": 1}


async def test_admin_export_returns_core_tables_as_attachment(gateway):
    admin = person(gateway, "admin")
    teacher = person(gateway, "teacher", name="Tess")
    student = person(gateway, "student")
    cls = school_class(gateway, teacher)
    gateway.insert(SYSTEM, "attendance", [{"class_id": cls["id"], "student_id": student.sub, "date": "2026-09-01", "status": "present"}])
    gateway.insert(SYSTEM, "exams", [{"title": "Midterm", "subject": "Maths", "date": "2026-11-02"}])
    async with client(teacher) as c:
        forbidden = await c.get("/api/admin/export")
    async with client(admin) as c:
        r = await c.get("/api/admin/export")
    assert forbidden.status_code == 403
    assert r.status_code == 200
    assert r.headers["Cache-Control"] == "private, no-store"
    assert r.headers["Content-Disposition"].startswith('attachment; filename="eduportal-backup-')
    body = r.json()
    assert set(body) == {"profiles", "classes", "teachers", "exams", "attendance", "assignments", "exported_at"}
    assert {p["id"] for p in body["profiles"]} == {admin.sub, teacher.sub, student.sub}
    assert [c["id"] for c in body["classes"]] == [cls["id"]]
    assert body["attendance"][0]["status"] == "present"
    assert body["exams"][0]["title"] == "Midterm"
    assert body["teachers"] == [] and body["assignments"] == []
    logs = gateway.select(SYSTEM, "activity_logs", eq={"action": "data_exported"})
    assert len(logs) == 1 and logs[0]["user_id"] == admin.sub


async def test_admin_writes_require_same_origin_in_strict_mode(gateway, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("STRICT_CSRF", "true")
    admin = person(gateway, "admin")
    async with client(admin) as c:
        no_origin = await c.post("/api/admin/classes", json={"name": "X"})
        cross = await c.post("/api/admin/classes", json={"name": "X"}, headers={"Origin": "http://evil.example"})
        same = await c.post("/api/admin/classes", json={"name": "X"}, headers={"Origin": "http://test"})
    assert no_origin.status_code == 403
    assert no_origin.json()["detail"] == "csrf_violation"
    assert cross.status_code == 403
    assert same.status_code == 201
