"EduPortal API"
from __future__ import annotations

import os
import logging
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from identity_access.stores import SessionStore
import sys as _sys

try:
    from .auth_utils import cookie_opts, user_context
except ImportError:
    from auth_utils import cookie_opts, user_context

# Ensure legacy imports consistently reference the same module instance.
if __name__ == "main":
    _sys.modules.setdefault("backend.web.main", _sys.modules[__name__])
elif __name__ == "backend.web.main":
    _sys.modules["main"] = _sys.modules[__name__]


def _should_load_dotenv() -> bool:
    """Decide if we should load a local .env file.

    - Never load under pytest to avoid contaminating test env.
    - Allow explicit opt-out via EDUPORTAL_ENABLE_DOTENV (default true
      outside pytest).
    """
    if "pytest" in _sys.modules or os.getenv("PYTEST_CURRENT_TEST"):
        return False
    flag = (os.getenv("EDUPORTAL_ENABLE_DOTENV", "true") or "").strip().lower()
    return flag in ("1", "true", "yes")


from dotenv import load_dotenv

if _should_load_dotenv():
    load_dotenv()

# Minimal production safety checks (fail-fast on insecure config)
# Support both "flat" (container) and package (repo test) layouts.
try:
    import config as _cfg  # type: ignore
except ImportError:  # pragma: no cover
    from backend.web import config as _cfg  # type: ignore
_cfg.ensure_secure_config_on_startup()

# --- App & Settings Setup -------------------------------------------------------


class AuthSettings:
    def __init__(self) -> None:
        self._env_override: str | None = None

    @property
    def environment(self) -> str:
        if self._env_override is not None:
            return self._env_override
        return os.getenv("EDUPORTAL_ENV", "dev").lower()

    def override_environment(self, env: str | None) -> None:
        """Override environment for tests (e.g., "prod"), or reset with None."""
        self._env_override = env


logger = logging.getLogger("eduportal.identity_access")
SETTINGS = AuthSettings()
SESSION_COOKIE_NAME = "eduportal_session"

app = FastAPI(title="EduPortal", description="School management API", version="1.0.0")

from routes.auth import auth_router
from routes.admin import admin_router
from routes.communication import communication_router
from routes.learning import learning_router
from routes.teaching import teaching_router
from routes.users import users_router
from routes.operations import operations_router
from routes.common import SERVICE_ERRORS, error_response, get_auth_client, get_gateway, json_private, private_error

from school.services.onboarding import OnboardingService, landing_for


def _under_pytest() -> bool:
    return "pytest" in _sys.modules or bool(os.getenv("PYTEST_CURRENT_TEST"))


if (not _under_pytest()) and os.getenv("SESSIONS_BACKEND", "memory").lower() == "db":
    from identity_access.stores_db import DBSessionStore

    SESSION_STORE = DBSessionStore()
else:
    SESSION_STORE = SessionStore()

# --- Auth Helpers & Middleware --------------------------------------------------


def _session_cookie_options() -> dict:
    return cookie_opts(SETTINGS.environment)


def _set_session_cookie(response: Response, value: str, *, max_age: int | None = None) -> None:
    opts = _session_cookie_options()
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=value,
        httponly=True,
        secure=opts["secure"],
        samesite=opts["samesite"],
        path="/",
        max_age=max_age,
    )


def _is_public_path(path: str) -> bool:
    return path.startswith("/auth/") or path in ("/health", "/favicon.ico")


@app.middleware("http")
async def auth_enforcement(request: Request, call_next):
    path = request.url.path
    if _is_public_path(path):
        return await call_next(request)

    sid = request.cookies.get(SESSION_COOKIE_NAME)
    rec = None
    if sid:
        try:
            rec = SESSION_STORE.get(sid)
        except Exception as exc:
            logger.warning("Session store get failed: %s", exc.__class__.__name__)

    if not rec:
        headers = {"Cache-Control": "private, no-store", "Vary": "Origin"}
        return JSONResponse({"error": "unauthenticated"}, status_code=401, headers=headers)

    # Expose minimal, read-only user context for downstream handlers.
    request.state.user = user_context(rec.sub, getattr(rec, "name", ""), rec.roles)
    return await call_next(request)


# --- Security Headers Middleware ----------------------------------------------


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    # JSON-only API: nothing may be framed, scripted or embedded.
    response.headers.setdefault("Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    response.headers.setdefault("Permissions-Policy", "geolocation=(), microphone=(), camera=()")
    if SETTINGS.environment == "prod":
        response.headers.setdefault("Cross-Origin-Opener-Policy", "same-origin")
        response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
    return response


@app.exception_handler(RequestValidationError)
async def request_validation_error(request: Request, exc: RequestValidationError):
    # Malformed bodies share the 400 contract of service validation errors.
    first = (exc.errors() or [{}])[0]
    loc = [str(part) for part in first.get("loc", ()) if part != "body"]
    detail = f"invalid_{loc[-1]}" if loc else "invalid_input"
    return private_error("bad_request", detail, status_code=400)


# --- Routes ---------------------------------------------------------------------

app.include_router(auth_router)
app.include_router(admin_router)
app.include_router(teaching_router)
app.include_router(learning_router)
app.include_router(communication_router)
app.include_router(users_router)
app.include_router(operations_router)


@app.get("/health")
async def health_check():
    # Minimal health endpoint used by orchestrators and tests.
    return JSONResponse({"status": "healthy"}, headers={"Cache-Control": "private, no-store"})


@app.get("/api/me")
async def get_me(request: Request):
    """
    Current user with roles, profile name and landing page.

    Behavior:
        - Falls back to the session name when the profile cannot be read.
        - `landing` follows the same rules as login (admin, approved teacher,
          pending teacher, student dashboard).
    """
    sid = request.cookies.get(SESSION_COOKIE_NAME)
    rec = SESSION_STORE.get(sid or "")
    if not rec:
        return private_error("unauthenticated", status_code=401)
    onboarding = OnboardingService(get_gateway(), get_auth_client())
    name = getattr(rec, "name", "")
    has_teacher = False
    try:
        name = onboarding.profile_name(rec.sub) or name
        has_teacher = "teacher" in rec.roles and onboarding.has_teacher_record(rec.sub)
    except SERVICE_ERRORS as exc:
        logger.warning("Profile lookup for /api/me failed: %s", exc.__class__.__name__)
    user = user_context(rec.sub, name, rec.roles)
    exp_iso = datetime.fromtimestamp(rec.expires_at, tz=timezone.utc).isoformat(timespec="seconds") if rec.expires_at else None
    return json_private(
        {
            **user,
            "landing": landing_for(user["roles"], has_teacher),
            "expires_at": exp_iso,
        }
    )


@app.get("/api/me/teacher-status")
async def get_teacher_status(request: Request):
    """approved | pending | rejected | none for the current user."""
    user = getattr(request.state, "user", None) or {}
    onboarding = OnboardingService(get_gateway(), get_auth_client())
    try:
        body = onboarding.teacher_status(user["sub"])
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="teacher_status")
    return json_private(body)
