"""
Admin API routes: teacher requests, teachers, classes, enrollments, exams,
dashboard stats, feedback and the data export.

Permissions:
    Every endpoint requires the `admin` role. Writes additionally pass the
    same-origin CSRF check.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field, field_validator

from school.services import backup
from school.services.analytics import AnalyticsService
from school.services.approvals import TeacherApprovalService
from school.services.classes import ClassService
from school.services.exams import ExamService
from school.services.notifications import NotificationService
from school.services.teachers import TeacherService
from school.services.wellbeing import WellbeingService

from .common import (
    SERVICE_ERRORS,
    csrf_guard,
    error_response,
    get_gateway,
    json_private,
    no_content,
    require_roles,
)

admin_router = APIRouter(tags=["Admin"])
logger = logging.getLogger("eduportal.web.admin")


def _admin_write(request: Request):
    caller, error = require_roles(request, "admin")
    if error:
        return None, error
    csrf = csrf_guard(request)
    if csrf:
        return None, csrf
    return caller, None


class _Stripped(BaseModel):
    @field_validator("*", mode="before")
    @classmethod
    def _strip_empty(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v if v else None
        return v


class RejectPayload(_Stripped):
    admin_notes: str | None = Field(default=None, max_length=2000)


class TeacherPayload(_Stripped):
    full_name: str | None = None
    email: str | None = None
    phone: str | None = None
    qualification: str | None = None
    experience: str | None = None
    subject: str | None = None
    user_id: str | None = None


class ClassPayload(_Stripped):
    name: str | None = None
    section: str | None = None
    subject: str | None = None
    description: str | None = None
    teacher_id: str | None = None


class EnrollmentPayload(_Stripped):
    student_id: str | None = None


class ExamPayload(_Stripped):
    title: str | None = None
    subject: str | None = None
    date: str | None = None
    class_id: str | None = None
    time: str | None = None
    duration_minutes: int | None = None
    total_marks: int | None = None
    syllabus: str | None = None


# --- Teacher requests -----------------------------------------------------------------

def _approvals() -> TeacherApprovalService:
    gateway = get_gateway()
    return TeacherApprovalService(gateway, NotificationService(gateway))


@admin_router.get("/api/admin/teacher-requests")
async def list_teacher_requests(request: Request, status: str | None = None):
    """List teacher requests newest first; optional `status` filter (pending|approved|rejected)."""
    caller, error = require_roles(request, "admin")
    if error:
        return error
    try:
        rows = _approvals().list_requests(caller, status=status)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="list_teacher_requests")
    return json_private(rows)


@admin_router.post("/api/admin/teacher-requests/{request_id}/approve")
async def approve_teacher_request(request: Request, request_id: str):
    """
    Approve a pending request.

    Behavior:
        - 200 `{request, teacher, role_assigned}`; the role step never fails
          the approval.
        - 404 `request_not_found`; 409 `request_not_pending`.
    """
    caller, error = _admin_write(request)
    if error:
        return error
    try:
        result = _approvals().approve(caller, request_id)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="approve_teacher_request")
    logger.info("Teacher request approved id=%s role_assigned=%s", request_id, result.get("role_assigned"))
    return json_private(result)


@admin_router.post("/api/admin/teacher-requests/{request_id}/reject")
async def reject_teacher_request(request: Request, request_id: str, payload: RejectPayload | None = None):
    caller, error = _admin_write(request)
    if error:
        return error
    notes = payload.admin_notes if payload else None
    try:
        row = _approvals().reject(caller, request_id, admin_notes=notes)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="reject_teacher_request")
    return json_private(row)


# --- Teachers ---------------------------------------------------------------------------

@admin_router.get("/api/admin/teachers")
async def list_teachers(request: Request):
    caller, error = require_roles(request, "admin")
    if error:
        return error
    try:
        rows = TeacherService(get_gateway()).list_teachers(caller)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="list_teachers")
    return json_private(rows)


@admin_router.post("/api/admin/teachers")
async def create_teacher(request: Request, payload: TeacherPayload):
    caller, error = _admin_write(request)
    if error:
        return error
    try:
        row = TeacherService(get_gateway()).create_teacher(caller, payload.model_dump(exclude_unset=True))
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="create_teacher")
    return json_private(row, status_code=201)


@admin_router.patch("/api/admin/teachers/{teacher_id}")
async def update_teacher(request: Request, teacher_id: str, payload: TeacherPayload):
    caller, error = _admin_write(request)
    if error:
        return error
    try:
        row = TeacherService(get_gateway()).update_teacher(caller, teacher_id, payload.model_dump(exclude_unset=True))
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="update_teacher")
    return json_private(row)


@admin_router.delete("/api/admin/teachers/{teacher_id}")
async def delete_teacher(request: Request, teacher_id: str):
    caller, error = _admin_write(request)
    if error:
        return error
    try:
        TeacherService(get_gateway()).delete_teacher(caller, teacher_id)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="delete_teacher")
    return no_content()


# --- Classes & enrollment ----------------------------------------------------------------

@admin_router.get("/api/admin/classes")
async def list_classes(request: Request):
    """All classes newest first, each with `teacher_name`."""
    caller, error = require_roles(request, "admin")
    if error:
        return error
    try:
        rows = ClassService(get_gateway()).list_classes(caller)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="list_classes")
    return json_private(rows)


@admin_router.post("/api/admin/classes")
async def create_class(request: Request, payload: ClassPayload):
    caller, error = _admin_write(request)
    if error:
        return error
    try:
        row = ClassService(get_gateway()).create_class(caller, payload.model_dump(exclude_unset=True))
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="create_class")
    return json_private(row, status_code=201)


@admin_router.patch("/api/admin/classes/{class_id}")
async def update_class(request: Request, class_id: str, payload: ClassPayload):
    caller, error = _admin_write(request)
    if error:
        return error
    try:
        row = ClassService(get_gateway()).update_class(caller, class_id, payload.model_dump(exclude_unset=True))
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="update_class")
    return json_private(row)


@admin_router.delete("/api/admin/classes/{class_id}")
async def delete_class(request: Request, class_id: str):
    caller, error = _admin_write(request)
    if error:
        return error
    try:
        ClassService(get_gateway()).delete_class(caller, class_id)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="delete_class")
    return no_content()


@admin_router.get("/api/admin/assignable-teachers")
async def assignable_teachers(request: Request):
    """Users holding the teacher role, for the class form."""
    caller, error = require_roles(request, "admin")
    if error:
        return error
    try:
        rows = ClassService(get_gateway()).assignable_teachers(caller)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="assignable_teachers")
    return json_private(rows)


@admin_router.get("/api/admin/classes/{class_id}/enrollments")
async def class_enrollments(request: Request, class_id: str):
    caller, error = require_roles(request, "admin")
    if error:
        return error
    try:
        rows = ClassService(get_gateway()).class_enrollments(caller, class_id)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="class_enrollments")
    return json_private(rows)


@admin_router.post("/api/admin/classes/{class_id}/enrollments")
async def enroll_student(request: Request, class_id: str, payload: EnrollmentPayload):
    """Enroll a student; 409 `conflict` when already enrolled."""
    caller, error = _admin_write(request)
    if error:
        return error
    try:
        row = ClassService(get_gateway()).enroll(caller, class_id, payload.student_id)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="enroll_student")
    return json_private(row, status_code=201)


@admin_router.delete("/api/admin/enrollments/{enrollment_id}")
async def remove_enrollment(request: Request, enrollment_id: str):
    caller, error = _admin_write(request)
    if error:
        return error
    try:
        ClassService(get_gateway()).remove_enrollment(caller, enrollment_id)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="remove_enrollment")
    return no_content()


@admin_router.get("/api/admin/students")
async def students_with_counts(request: Request):
    caller, error = require_roles(request, "admin")
    if error:
        return error
    try:
        rows = ClassService(get_gateway()).students_with_enrollment_counts(caller)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="list_students")
    return json_private(rows)


# --- Exams ------------------------------------------------------------------------------

@admin_router.get("/api/admin/exams")
async def list_exams(request: Request):
    caller, error = require_roles(request, "admin")
    if error:
        return error
    try:
        rows = ExamService(get_gateway()).list_exams(caller)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="list_exams")
    return json_private(rows)


@admin_router.post("/api/admin/exams")
async def create_exam(request: Request, payload: ExamPayload):
    caller, error = _admin_write(request)
    if error:
        return error
    try:
        row = ExamService(get_gateway()).create_exam(caller, payload.model_dump(exclude_unset=True))
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="create_exam")
    return json_private(row, status_code=201)


@admin_router.patch("/api/admin/exams/{exam_id}")
async def update_exam(request: Request, exam_id: str, payload: ExamPayload):
    caller, error = _admin_write(request)
    if error:
        return error
    try:
        row = ExamService(get_gateway()).update_exam(caller, exam_id, payload.model_dump(exclude_unset=True))
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="update_exam")
    return json_private(row)


@admin_router.delete("/api/admin/exams/{exam_id}")
async def delete_exam(request: Request, exam_id: str):
    caller, error = _admin_write(request)
    if error:
        return error
    try:
        ExamService(get_gateway()).delete_exam(caller, exam_id)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="delete_exam")
    return no_content()


# --- Dashboard & feedback ----------------------------------------------------------------

@admin_router.get("/api/admin/stats")
async def admin_stats(request: Request):
    caller, error = require_roles(request, "admin")
    if error:
        return error
    try:
        stats = AnalyticsService(get_gateway()).admin_stats(caller)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="admin_stats")
    return json_private(stats)


@admin_router.get("/api/admin/export")
async def export_data(request: Request):
    """Download profiles, classes, teachers, exams, attendance and assignments as one JSON file."""
    caller, error = require_roles(request, "admin")
    if error:
        return error
    try:
        snapshot = backup.export_snapshot(get_gateway(), caller)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="export_data")
    resp = json_private(snapshot)
    resp.headers["Content-Disposition"] = f'attachment; filename="{backup.export_filename()}"'
    return resp


@admin_router.get("/api/admin/feedback")
async def list_feedback(request: Request):
    caller, error = require_roles(request, "admin")
    if error:
        return error
    try:
        rows = WellbeingService(get_gateway()).list_feedback(caller)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="list_feedback")
    return json_private(rows)
