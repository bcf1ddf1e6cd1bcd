"""
Learning API routes (student side of EduPortal).

Students read their classes, assignments, attendance, exams and reports,
submit assignments and manage their own goals, progress tracker and mood
check-ins.

Permissions:
    Caller must have the `student` role. Visibility beyond that (enrollment)
    is checked by the services; reads are additionally scoped by RLS.
"""
from __future__ import annotations

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field, field_validator

from school.services.assignments import AssignmentService
from school.services.attendance import AttendanceService
from school.services.classes import ClassService
from school.services.exams import ExamService
from school.services.notifications import NotificationService
from school.services.reports import ReportService
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

learning_router = APIRouter(tags=["Learning"])


def _student(request: Request):
    return require_roles(request, "student")


def _student_write(request: Request):
    caller, error = require_roles(request, "student")
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


class SubmissionPayload(_Stripped):
    submission_text: str | None = Field(default=None, max_length=20000)
    submission_url: str | None = Field(default=None, max_length=2000)


class GoalPayload(_Stripped):
    subject: str | None = None
    hours_target: float | None = None
    deadline: str | None = None


class TrackerChecks(BaseModel):
    study_done: bool | None = None
    homework_done: bool | None = None
    sleep_done: bool | None = None


class MoodPayload(_Stripped):
    mood: str | None = None
    note: str | None = Field(default=None, max_length=1000)


# --- Classes & assignments -------------------------------------------------------------

@learning_router.get("/api/learning/classes")
async def my_classes(request: Request):
    """Enrolled classes newest first, each with class details and teacher name."""
    caller, error = _student(request)
    if error:
        return error
    try:
        rows = ClassService(get_gateway()).student_classes(caller)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="student_classes")
    return json_private(rows)


@learning_router.get("/api/learning/classes/{class_id}")
async def my_class_details(request: Request, class_id: str):
    """Class with resources and assignments; 403 `not_enrolled` for other classes."""
    caller, error = _student(request)
    if error:
        return error
    try:
        body = ClassService(get_gateway()).class_details(caller, class_id)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="class_details")
    return json_private(body)


@learning_router.get("/api/learning/assignments")
async def my_assignments(request: Request):
    caller, error = _student(request)
    if error:
        return error
    gateway = get_gateway()
    try:
        rows = AssignmentService(gateway, NotificationService(gateway)).my_assignments(caller)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="student_assignments")
    return json_private(rows)


@learning_router.put("/api/learning/assignments/{assignment_id}/submission")
async def submit_assignment(request: Request, assignment_id: str, payload: SubmissionPayload):
    """
    Submit (or resubmit) an assignment.

    Behavior:
        - 200 with the stored submission; text or URL is required.
        - 403 `not_enrolled`; 409 `already_graded` once a grade exists.
    """
    caller, error = _student_write(request)
    if error:
        return error
    gateway = get_gateway()
    try:
        row = AssignmentService(gateway, NotificationService(gateway)).submit(
            caller, assignment_id, text=payload.submission_text, url=payload.submission_url
        )
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="submit_assignment")
    return json_private(row)


@learning_router.get("/api/learning/submissions")
async def my_submissions(request: Request):
    caller, error = _student(request)
    if error:
        return error
    gateway = get_gateway()
    try:
        rows = AssignmentService(gateway, NotificationService(gateway)).my_submissions(caller)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="student_submissions")
    return json_private(rows)


# --- Attendance, exams, reports ------------------------------------------------------------

@learning_router.get("/api/learning/attendance")
async def my_attendance(request: Request, class_id: str | None = None):
    """Own attendance records newest first plus `stats` (percentage of present)."""
    caller, error = _student(request)
    if error:
        return error
    try:
        body = AttendanceService(get_gateway()).student_summary(caller, class_id=class_id)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="student_attendance")
    return json_private(body)


@learning_router.get("/api/learning/exams")
async def my_exams(request: Request):
    caller, error = _student(request)
    if error:
        return error
    try:
        body = ExamService(get_gateway()).tracker(caller)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="exam_tracker")
    return json_private(body)


@learning_router.get("/api/learning/reports")
async def my_reports(request: Request):
    caller, error = _student(request)
    if error:
        return error
    gateway = get_gateway()
    try:
        rows = ReportService(gateway, NotificationService(gateway)).list_received(caller)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="student_reports")
    return json_private(rows)


# --- Goals ------------------------------------------------------------------------------------

@learning_router.get("/api/learning/goals")
async def list_goals(request: Request):
    caller, error = _student(request)
    if error:
        return error
    try:
        rows = WellbeingService(get_gateway()).list_goals(caller)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="list_goals")
    return json_private(rows)


@learning_router.post("/api/learning/goals")
async def create_goal(request: Request, payload: GoalPayload):
    caller, error = _student_write(request)
    if error:
        return error
    try:
        row = WellbeingService(get_gateway()).create_goal(caller, payload.model_dump(exclude_unset=True))
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="create_goal")
    return json_private(row, status_code=201)


@learning_router.post("/api/learning/goals/{goal_id}/toggle")
async def toggle_goal(request: Request, goal_id: str):
    caller, error = _student_write(request)
    if error:
        return error
    try:
        row = WellbeingService(get_gateway()).toggle_goal(caller, goal_id)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="toggle_goal")
    return json_private(row)


@learning_router.delete("/api/learning/goals/{goal_id}")
async def delete_goal(request: Request, goal_id: str):
    caller, error = _student_write(request)
    if error:
        return error
    try:
        WellbeingService(get_gateway()).delete_goal(caller, goal_id)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="delete_goal")
    return no_content()


# --- Progress tracker ----------------------------------------------------------------------

@learning_router.get("/api/learning/tracker")
async def get_tracker(request: Request):
    """Own progress tracker row; created on first access."""
    caller, error = _student(request)
    if error:
        return error
    try:
        row = WellbeingService(get_gateway()).tracker(caller)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="get_tracker")
    return json_private(row)


@learning_router.patch("/api/learning/tracker")
async def set_tracker_checks(request: Request, payload: TrackerChecks):
    caller, error = _student_write(request)
    if error:
        return error
    checks = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}
    try:
        row = WellbeingService(get_gateway()).set_checks(caller, checks)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="set_tracker_checks")
    return json_private(row)


@learning_router.post("/api/learning/tracker/advance")
async def advance_tracker(request: Request):
    """Advance to the next day; 400 `checks_incomplete` unless all daily checks are done."""
    caller, error = _student_write(request)
    if error:
        return error
    try:
        row = WellbeingService(get_gateway()).advance_day(caller)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="advance_tracker")
    return json_private(row)


# --- Mood --------------------------------------------------------------------------------------

@learning_router.get("/api/learning/moods")
async def list_moods(request: Request):
    caller, error = _student(request)
    if error:
        return error
    try:
        rows = WellbeingService(get_gateway()).list_moods(caller)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="list_moods")
    return json_private(rows)


@learning_router.post("/api/learning/moods")
async def record_mood(request: Request, payload: MoodPayload):
    caller, error = _student_write(request)
    if error:
        return error
    try:
        row = WellbeingService(get_gateway()).record_mood(caller, payload.mood, payload.note)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="record_mood")
    return json_private(row, status_code=201)
