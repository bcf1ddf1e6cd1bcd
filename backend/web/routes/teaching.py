"""
Teaching API routes (teacher side of EduPortal).

Covers the teacher dashboard, own classes and rosters, assignments and
grading, resources, announcements, attendance, reports and student analytics.

Permissions:
    Callers need the `teacher` role; admins pass every ownership check in the
    services and may use these endpoints as well. Ownership (class teacher,
    assignment/resource/announcement author) is enforced by the services and
    surfaces as 403 with a detail code such as `not_class_teacher`.
"""
from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field, field_validator

from school.services.analytics import AnalyticsService
from school.services.assignments import AssignmentService
from school.services.attendance import AttendanceService
from school.services.classes import ClassService
from school.services.notifications import NotificationService
from school.services.reports import ReportService
from school.services.resources import AnnouncementService, ResourceService

from .common import (
    SERVICE_ERRORS,
    csrf_guard,
    error_response,
    get_gateway,
    json_private,
    no_content,
    require_roles,
)

teaching_router = APIRouter(tags=["Teaching"])
logger = logging.getLogger("eduportal.web.teaching")

_TEACHING_ROLES = ("teacher", "admin")


def _teacher(request: Request):
    return require_roles(request, *_TEACHING_ROLES)


def _teacher_write(request: Request):
    caller, error = require_roles(request, *_TEACHING_ROLES)
    if error:
        return None, error
    csrf = csrf_guard(request)
    if csrf:
        return None, csrf
    return caller, None


def _assignments() -> AssignmentService:
    gateway = get_gateway()
    return AssignmentService(gateway, NotificationService(gateway))


def _reports() -> ReportService:
    gateway = get_gateway()
    return ReportService(gateway, NotificationService(gateway))


# --- Request models -------------------------------------------------------------------

class _Stripped(BaseModel):
    @field_validator("*", mode="before")
    @classmethod
    def _strip_empty(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v if v else None
        return v


class AssignmentPayload(_Stripped):
    class_id: str | None = None
    title: str | None = None
    description: str | None = None
    due_date: str | None = None
    total_marks: int | None = None


class GradePayload(_Stripped):
    marks: int | None = None
    feedback: str | None = Field(default=None, max_length=4000)


class ResourcePayload(_Stripped):
    class_id: str | None = None
    title: str | None = None
    description: str | None = None
    resource_type: str | None = None
    resource_url: str | None = None
    subject: str | None = None


class AnnouncementPayload(_Stripped):
    class_id: str | None = None
    title: str | None = None
    content: str | None = None


class AttendanceMark(_Stripped):
    student_id: str | None = None
    status: str | None = None


class AttendanceDay(_Stripped):
    date: str | None = None
    marks: List[AttendanceMark] = Field(default_factory=list)


class ReportPayload(_Stripped):
    class_id: str | None = None
    title: str | None = None
    description: str | None = None
    report_type: str | None = None
    report_url: str | None = None
    report_data: dict | None = None
    student_ids: List[str] = Field(default_factory=list)


# --- Dashboard, classes, analytics ------------------------------------------------------

@teaching_router.get("/api/teaching/dashboard")
async def teaching_dashboard(request: Request):
    """Counts of own classes, distinct students and assignments."""
    caller, error = _teacher(request)
    if error:
        return error
    try:
        stats = AnalyticsService(get_gateway()).teacher_dashboard(caller)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="teacher_dashboard")
    return json_private(stats)


@teaching_router.get("/api/teaching/classes")
async def teaching_classes(request: Request):
    caller, error = _teacher(request)
    if error:
        return error
    try:
        rows = ClassService(get_gateway()).teacher_classes(caller)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="teacher_classes")
    return json_private(rows)


@teaching_router.get("/api/teaching/classes/{class_id}/students")
async def teaching_roster(request: Request, class_id: str):
    caller, error = _teacher(request)
    if error:
        return error
    try:
        rows = ClassService(get_gateway()).roster(caller, class_id)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="class_roster")
    return json_private(rows)


@teaching_router.get("/api/teaching/analytics")
async def teaching_analytics(request: Request):
    """Student analytics aggregates over the students of the caller's classes."""
    caller, error = _teacher(request)
    if error:
        return error
    try:
        body = AnalyticsService(get_gateway()).teacher_student_analytics(caller)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="teacher_student_analytics")
    return json_private(body)


# --- Assignments & grading ----------------------------------------------------------------

@teaching_router.get("/api/teaching/assignments")
async def list_assignments(request: Request):
    caller, error = _teacher(request)
    if error:
        return error
    try:
        rows = _assignments().list_own(caller)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="list_assignments")
    return json_private(rows)


@teaching_router.post("/api/teaching/assignments")
async def create_assignment(request: Request, payload: AssignmentPayload):
    caller, error = _teacher_write(request)
    if error:
        return error
    try:
        row = _assignments().create(caller, payload.model_dump(exclude_unset=True))
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="create_assignment")
    return json_private(row, status_code=201)


@teaching_router.patch("/api/teaching/assignments/{assignment_id}")
async def update_assignment(request: Request, assignment_id: str, payload: AssignmentPayload):
    caller, error = _teacher_write(request)
    if error:
        return error
    try:
        row = _assignments().update(caller, assignment_id, payload.model_dump(exclude_unset=True))
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="update_assignment")
    return json_private(row)


@teaching_router.delete("/api/teaching/assignments/{assignment_id}")
async def delete_assignment(request: Request, assignment_id: str):
    caller, error = _teacher_write(request)
    if error:
        return error
    try:
        _assignments().delete(caller, assignment_id)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="delete_assignment")
    return no_content()


@teaching_router.get("/api/teaching/assignments/{assignment_id}/submissions")
async def list_submissions(request: Request, assignment_id: str):
    caller, error = _teacher(request)
    if error:
        return error
    try:
        rows = _assignments().submissions_for(caller, assignment_id)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="list_submissions")
    return json_private(rows)


@teaching_router.post("/api/teaching/submissions/{submission_id}/grade")
async def grade_submission(request: Request, submission_id: str, payload: GradePayload):
    """
    Grade a submission of one of the caller's assignments.

    Behavior:
        - 200 with the graded submission; the student is notified.
        - 400 `invalid_marks` unless 0 <= marks <= total_marks.
    """
    caller, error = _teacher_write(request)
    if error:
        return error
    try:
        row = _assignments().grade(caller, submission_id, marks=payload.marks, feedback=payload.feedback)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="grade_submission")
    return json_private(row)


# --- Resources & announcements ------------------------------------------------------------

@teaching_router.get("/api/teaching/resources")
async def list_resources(request: Request):
    caller, error = _teacher(request)
    if error:
        return error
    try:
        rows = ResourceService(get_gateway()).list_own(caller)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="list_resources")
    return json_private(rows)


@teaching_router.post("/api/teaching/resources")
async def create_resource(request: Request, payload: ResourcePayload):
    caller, error = _teacher_write(request)
    if error:
        return error
    try:
        row = ResourceService(get_gateway()).create(caller, payload.model_dump(exclude_unset=True))
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="create_resource")
    return json_private(row, status_code=201)


@teaching_router.patch("/api/teaching/resources/{resource_id}")
async def update_resource(request: Request, resource_id: str, payload: ResourcePayload):
    caller, error = _teacher_write(request)
    if error:
        return error
    try:
        row = ResourceService(get_gateway()).update(caller, resource_id, payload.model_dump(exclude_unset=True))
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="update_resource")
    return json_private(row)


@teaching_router.delete("/api/teaching/resources/{resource_id}")
async def delete_resource(request: Request, resource_id: str):
    caller, error = _teacher_write(request)
    if error:
        return error
    try:
        ResourceService(get_gateway()).delete(caller, resource_id)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="delete_resource")
    return no_content()


@teaching_router.get("/api/teaching/announcements")
async def list_announcements(request: Request):
    caller, error = _teacher(request)
    if error:
        return error
    try:
        rows = AnnouncementService(get_gateway()).list_own(caller)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="list_announcements")
    return json_private(rows)


@teaching_router.post("/api/teaching/announcements")
async def create_announcement(request: Request, payload: AnnouncementPayload):
    caller, error = _teacher_write(request)
    if error:
        return error
    try:
        row = AnnouncementService(get_gateway()).create(caller, payload.model_dump(exclude_unset=True))
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="create_announcement")
    return json_private(row, status_code=201)


@teaching_router.delete("/api/teaching/announcements/{announcement_id}")
async def delete_announcement(request: Request, announcement_id: str):
    caller, error = _teacher_write(request)
    if error:
        return error
    try:
        AnnouncementService(get_gateway()).delete(caller, announcement_id)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="delete_announcement")
    return no_content()


# --- Attendance -----------------------------------------------------------------------------

@teaching_router.get("/api/teaching/classes/{class_id}/attendance")
async def attendance_sheet(request: Request, class_id: str, date: str | None = None):
    """Roster of the class with the existing mark (or null) per student for `date`."""
    caller, error = _teacher(request)
    if error:
        return error
    try:
        body = AttendanceService(get_gateway()).sheet(caller, class_id, date)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="attendance_sheet")
    return json_private(body)


@teaching_router.put("/api/teaching/classes/{class_id}/attendance")
async def attendance_save(request: Request, class_id: str, payload: AttendanceDay):
    """
    Replace all attendance records of `(class, date)` with the submitted marks.

    Behavior:
        - 200 with the stored records.
        - 400 `invalid_status` or `student_not_enrolled`; nothing is written then.
    """
    caller, error = _teacher_write(request)
    if error:
        return error
    marks = [m.model_dump() for m in payload.marks]
    try:
        rows = AttendanceService(get_gateway()).save_day(caller, class_id, payload.date, marks)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="attendance_save")
    logger.info("Attendance saved class=%s date=%s marks=%d", class_id, payload.date, len(rows))
    return json_private(rows)


@teaching_router.get("/api/teaching/classes/{class_id}/attendance/overview")
async def attendance_overview(request: Request, class_id: str):
    caller, error = _teacher(request)
    if error:
        return error
    try:
        body = AttendanceService(get_gateway()).class_overview(caller, class_id)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="attendance_overview")
    return json_private(body)


# --- Reports ----------------------------------------------------------------------------------

@teaching_router.get("/api/teaching/reports")
async def list_sent_reports(request: Request):
    caller, error = _teacher(request)
    if error:
        return error
    try:
        rows = _reports().list_sent(caller)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="list_sent_reports")
    return json_private(rows)


@teaching_router.post("/api/teaching/reports")
async def send_report(request: Request, payload: ReportPayload):
    """Send one report row per selected (enrolled) student and notify each of them."""
    caller, error = _teacher_write(request)
    if error:
        return error
    data = payload.model_dump(exclude_unset=True)
    students = data.pop("student_ids", [])
    try:
        rows = _reports().send(caller, data, students)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="send_report")
    return json_private(rows, status_code=201)


@teaching_router.delete("/api/teaching/reports/{report_id}")
async def delete_report(request: Request, report_id: str):
    caller, error = _teacher_write(request)
    if error:
        return error
    try:
        _reports().delete(caller, report_id)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="delete_report")
    return no_content()
