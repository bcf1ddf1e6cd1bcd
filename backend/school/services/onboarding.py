"""
Onboarding: login, registration and role assignment.

Why:
    Registration touches three places (auth provider, `profiles`,
    `user_roles`/`teacher_requests`) and hosted RLS setups are often
    misconfigured for the very first insert a new user makes. Role assignment
    is therefore tolerant: it tries the user's own session first, then the
    service role, treats duplicates as success, and never fails a registration
    outright.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import re
from typing import List, Optional

from identity_access.auth_client import AuthClientProtocol
from identity_access.domain import ALLOWED_ROLES, normalize_roles

from ..errors import DataError, DuplicateRecordError, ValidationError, retry_with_backoff
from ..gateway import Actor, TableGateway
from .common import clean_text, require_text

logger = logging.getLogger("eduportal.school.onboarding")

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 6


def landing_for(roles: List[str], has_teacher_record: bool) -> str:
    """Pick the first screen after login."""
    if "admin" in roles:
        return "admin-dashboard"
    if "teacher" in roles:
        return "teacher-dashboard" if has_teacher_record else "teacher-pending"
    return "dashboard"


def _email(value: object) -> str:
    email = require_text(value, max_len=320, code="invalid_email").lower()
    if not _EMAIL_RE.match(email):
        raise ValidationError(code="invalid_email")
    return email


def _password(value: object) -> str:
    if not isinstance(value, str) or len(value) < MIN_PASSWORD_LENGTH:
        raise ValidationError(code="invalid_password")
    return value


def assign_role_tolerantly(
    gateway: TableGateway,
    actor: Actor,
    user_id: str,
    role: str,
    *,
    skip_if_any_role: bool = False,
) -> bool:
    """Give `user_id` the `role`, trying the caller's session then the service role.

    Returns True when the role is present afterwards (including duplicates)
    and False when every approach failed. Never raises for data errors.
    """
    if role not in ALLOWED_ROLES:
        raise ValidationError(code="invalid_role")
    try:
        existing = [r["role"] for r in gateway.select(actor, "user_roles", columns=["role"], eq={"user_id": user_id})]
    except DataError as exc:
        logger.info("Role lookup failed user=%s err=%s", user_id, exc.code)
        existing = []
    if role in existing or (skip_if_any_role and existing):
        return True

    try:
        gateway.insert(actor, "user_roles", [{"user_id": user_id, "role": role}])
        return True
    except DuplicateRecordError:
        return True
    except DataError as exc:
        logger.warning("Role insert as caller failed user=%s role=%s err=%s", user_id, role, exc.code)

    try:
        gateway.upsert(Actor.system(), "user_roles", {"user_id": user_id, "role": role}, on_conflict=("user_id", "role"))
        return True
    except DuplicateRecordError:
        return True
    except DataError as exc:
        logger.error("Role upsert as service failed user=%s role=%s err=%s", user_id, role, exc.code)
    return False


@dataclass
class OnboardingService:
    gateway: TableGateway
    auth: AuthClientProtocol

    def load_roles(self, user_id: str) -> List[str]:
        rows = self.gateway.select(Actor.user(user_id), "user_roles", columns=["role"], eq={"user_id": user_id})
        return normalize_roles(r.get("role") for r in rows)

    def has_teacher_record(self, user_id: str) -> bool:
        rows = self.gateway.select(Actor.user(user_id), "teachers", columns=["id"], eq={"user_id": user_id}, limit=1)
        return bool(rows)

    def profile_name(self, user_id: str) -> Optional[str]:
        rows = self.gateway.select(Actor.user(user_id), "profiles", columns=["full_name"], eq={"id": user_id}, limit=1)
        return (rows[0].get("full_name") or None) if rows else None

    def login(self, email: object, password: object) -> dict:
        """Authenticate and describe the session to create.

        Raises `InvalidCredentialsError` from the auth client on bad input.
        """
        user = self.auth.sign_in(_email(email), require_text(password, code="invalid_password"))
        roles = retry_with_backoff(lambda: self.load_roles(user.id), retries=2, delay=0.2)
        has_teacher = "teacher" in roles and self.has_teacher_record(user.id)
        name = self.profile_name(user.id) or user.full_name or user.email
        return {
            "user_id": user.id,
            "email": user.email,
            "name": name,
            "roles": roles,
            "landing": landing_for(roles, has_teacher),
        }

    def _save_profile(self, user_id: str, full_name: str) -> None:
        row = {"id": user_id, "full_name": full_name}
        try:
            self.gateway.upsert(Actor.user(user_id), "profiles", row, on_conflict=("id",))
        except DataError as exc:
            logger.warning("Profile write as user failed user=%s err=%s", user_id, exc.code)
            self.gateway.upsert(Actor.system(), "profiles", row, on_conflict=("id",))

    def register_student(self, email: object, password: object, full_name: object) -> dict:
        name = require_text(full_name, max_len=200, code="invalid_full_name")
        user = self.auth.sign_up(_email(email), _password(password), full_name=name)
        self._save_profile(user.id, name)
        assigned = assign_role_tolerantly(self.gateway, Actor.user(user.id), user.id, "student", skip_if_any_role=True)
        if not assigned:
            logger.error("Student role could not be assigned user=%s", user.id)
        return {
            "user_id": user.id,
            "name": name,
            "roles": ["student"] if assigned else [],
            "role_assigned": assigned,
            "landing": "dashboard",
        }

    def register_teacher(
        self,
        email: object,
        password: object,
        full_name: object,
        *,
        phone: object = None,
        qualification: object = None,
        experience: object = None,
        subject: object = None,
        reason: object = None,
    ) -> dict:
        name = require_text(full_name, max_len=200, code="invalid_full_name")
        mail = _email(email)
        fields = {
            "phone": clean_text(phone, max_len=40, code="invalid_phone"),
            "qualification": clean_text(qualification, max_len=500, code="invalid_qualification"),
            "experience": clean_text(experience, max_len=500, code="invalid_experience"),
            "subject": clean_text(subject, max_len=200, code="invalid_subject"),
            "reason": clean_text(reason, max_len=2000, code="invalid_reason"),
        }
        user = self.auth.sign_up(mail, _password(password), full_name=name)
        self._save_profile(user.id, name)
        request = self.gateway.insert(
            Actor.user(user.id),
            "teacher_requests",
            [{"user_id": user.id, "full_name": name, "email": mail, "status": "pending", **fields}],
        )[0]
        return {
            "user_id": user.id,
            "name": name,
            "roles": [],
            "request_id": str(request["id"]),
            "landing": "teacher-pending",
        }

    def teacher_status(self, user_id: str) -> dict:
        """approved | pending | rejected | none, plus the latest request when present."""
        if self.has_teacher_record(user_id):
            return {"status": "approved", "request": None}
        requests = self.gateway.select(
            Actor.user(user_id), "teacher_requests", eq={"user_id": user_id}, order_by="created_at", desc=True
        )
        pending = next((r for r in requests if r.get("status") == "pending"), None)
        if pending:
            return {"status": "pending", "request": pending}
        if requests and requests[0].get("status") == "rejected":
            return {"status": "rejected", "request": requests[0]}
        return {"status": "none", "request": None}
