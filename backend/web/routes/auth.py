"""
Authentication-related FastAPI routes (router-only module).

Why:
    Login, registration and logout talk to the auth provider and the session
    store; the rest of the API only sees `request.state.user`.

Notes:
    - This module imports `main` inside functions to reuse the shared session
      store and cookie policy; tests may load the app as `main` or
      `backend.web.main`.
    - Registration can be limited to school domains via
      ALLOWED_REGISTRATION_DOMAINS (comma-separated, e.g. "@school.edu").
"""

from __future__ import annotations

import logging
import os
import sys

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

from school.services.onboarding import OnboardingService

from .common import SERVICE_ERRORS, csrf_guard, error_response, get_auth_client, get_gateway, json_private, private_error

auth_router = APIRouter(tags=["Auth"])
logger = logging.getLogger("eduportal.web.auth")


def _parse_allowed_registration_domains(raw: str | None) -> set[str]:
    """Parse ALLOWED_REGISTRATION_DOMAINS into a normalized set like {"@school.edu"}."""
    if not raw:
        return set()
    items = [part.strip().lower() for part in str(raw).split(",")]
    return {item if item.startswith("@") else f"@{item}" for item in items if item}


def _is_allowed_registration_email(email: str, allowed_domains: set[str]) -> bool:
    """An empty allow-list means no restriction."""
    if not allowed_domains:
        return True
    normalized = (email or "").strip().lower()
    _, at, domain = normalized.rpartition("@")
    if not at or not domain:
        return False
    return f"@{domain}" in allowed_domains


def _resolve_active_main(request: Request):
    """Return the main module whose app serves this request."""
    candidates = [m for m in (sys.modules.get("main"), sys.modules.get("backend.web.main")) if m]
    for m in candidates:
        if getattr(m, "app", None) is getattr(request, "app", None):
            return m
    if candidates:
        return candidates[0]
    import main as mod  # type: ignore

    return mod


def _onboarding() -> OnboardingService:
    return OnboardingService(get_gateway(), get_auth_client())


def _start_session(request: Request, body: dict, *, status_code: int) -> JSONResponse:
    mod = _resolve_active_main(request)
    rec = mod.SESSION_STORE.create(sub=body["user_id"], name=body.get("name") or "", roles=body.get("roles") or [])
    response = json_private(body, status_code=status_code)
    mod._set_session_cookie(response, rec.session_id, max_age=rec.ttl_seconds)
    return response


class LoginPayload(BaseModel):
    email: str = Field(..., max_length=320)
    password: str = Field(..., max_length=200)

    @field_validator("email")
    @classmethod
    def _strip(cls, v: str) -> str:
        return v.strip()


class StudentRegistration(BaseModel):
    email: str = Field(..., max_length=320)
    password: str = Field(..., max_length=200)
    full_name: str = Field(..., max_length=200)

    @field_validator("email", "full_name")
    @classmethod
    def _strip(cls, v: str) -> str:
        return v.strip()


class TeacherRegistration(StudentRegistration):
    phone: str | None = None
    qualification: str | None = None
    experience: str | None = None
    subject: str | None = None
    reason: str | None = None

    @field_validator("phone", "qualification", "experience", "subject", "reason")
    @classmethod
    def _strip_empty(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v if v else None
        return v


@auth_router.post("/auth/login")
async def auth_login(request: Request, payload: LoginPayload):
    """
    Sign in with email and password and start a session.

    Behavior:
        - 200 with `{user_id, name, email, roles, landing}` and the session cookie.
        - 401 `invalid_credentials` when the provider rejects the credentials.
    """
    csrf = csrf_guard(request)
    if csrf:
        return csrf
    try:
        body = _onboarding().login(payload.email, payload.password)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="login")
    logger.info("Login ok sub=%s landing=%s", body["user_id"], body["landing"])
    return _start_session(request, body, status_code=200)


@auth_router.post("/auth/register/student")
async def auth_register_student(request: Request, payload: StudentRegistration):
    """Create a student account; role assignment failures do not fail the request."""
    csrf = csrf_guard(request)
    if csrf:
        return csrf
    allowed = _parse_allowed_registration_domains(os.getenv("ALLOWED_REGISTRATION_DOMAINS"))
    if not _is_allowed_registration_email(payload.email, allowed):
        return private_error("bad_request", "invalid_email_domain", status_code=400)
    try:
        body = _onboarding().register_student(payload.email, payload.password, payload.full_name)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="register_student")
    return _start_session(request, body, status_code=201)


@auth_router.post("/auth/register/teacher")
async def auth_register_teacher(request: Request, payload: TeacherRegistration):
    """Create an account plus a pending teacher request; landing is `teacher-pending`."""
    csrf = csrf_guard(request)
    if csrf:
        return csrf
    allowed = _parse_allowed_registration_domains(os.getenv("ALLOWED_REGISTRATION_DOMAINS"))
    if not _is_allowed_registration_email(payload.email, allowed):
        return private_error("bad_request", "invalid_email_domain", status_code=400)
    try:
        body = _onboarding().register_teacher(
            payload.email,
            payload.password,
            payload.full_name,
            phone=payload.phone,
            qualification=payload.qualification,
            experience=payload.experience,
            subject=payload.subject,
            reason=payload.reason,
        )
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="register_teacher")
    return _start_session(request, body, status_code=201)


@auth_router.post("/auth/logout")
async def auth_logout(request: Request):
    """Delete the server-side session and expire the cookie. Idempotent."""
    mod = _resolve_active_main(request)
    sid = request.cookies.get(mod.SESSION_COOKIE_NAME)
    if sid:
        try:
            mod.SESSION_STORE.delete(sid)
        except Exception as exc:
            logger.warning("Session delete failed: %s", exc.__class__.__name__)
    response = json_private({"ok": True}, status_code=200)
    mod._set_session_cookie(response, "", max_age=0)
    return response
