"""Shared helpers for the school services: caller identity, input normalisation,
ownership checks and activity logging."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
import logging
from typing import Any, Iterable, Mapping, Optional, Tuple
from urllib.parse import urlparse
from uuid import UUID

from ..errors import AccessDeniedError, RecordNotFoundError, ValidationError
from ..gateway import Actor, TableGateway

logger = logging.getLogger("eduportal.school.services")


@dataclass(frozen=True)
class Caller:
    """The authenticated user a service call runs for."""

    sub: str
    roles: Tuple[str, ...] = ()
    name: str = ""

    @classmethod
    def from_user(cls, user: Mapping[str, Any] | None) -> "Caller":
        user = user or {}
        roles = user.get("roles") or []
        if not isinstance(roles, (list, tuple)):
            roles = []
        return cls(sub=str(user.get("sub") or ""), roles=tuple(str(r) for r in roles), name=str(user.get("name") or ""))

    @property
    def actor(self) -> Actor:
        return Actor.user(self.sub)

    def has(self, role: str) -> bool:
        return role in self.roles

    @property
    def is_admin(self) -> bool:
        return "admin" in self.roles


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def today() -> date:
    return datetime.now(timezone.utc).date()


def round_half_up(value: float) -> int:
    """Round to a whole number with halves going up (12.5 -> 13)."""
    return int(Decimal(str(value)).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def clean_text(value: Any, *, max_len: Optional[int] = None, code: str = "invalid_input") -> Optional[str]:
    """Strip a string; empty becomes None. Non-strings and overlong text are rejected."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(code=code)
    trimmed = value.strip()
    if not trimmed:
        return None
    if max_len is not None and len(trimmed) > max_len:
        raise ValidationError(code=code)
    return trimmed


def require_text(value: Any, *, max_len: Optional[int] = None, code: str = "invalid_input") -> str:
    out = clean_text(value, max_len=max_len, code=code)
    if out is None:
        raise ValidationError(code=code)
    return out


def require_uuid(value: Any, *, code: str = "invalid_id") -> str:
    try:
        return str(UUID(str(value)))
    except (ValueError, TypeError, AttributeError):
        raise ValidationError(code=code) from None


def parse_date(value: Any, *, code: str = "invalid_date") -> Optional[str]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    try:
        return date.fromisoformat(str(value)[:10]).isoformat()
    except ValueError:
        raise ValidationError(code=code) from None


def parse_timestamp(value: Any, *, code: str = "invalid_timestamp") -> Optional[str]:
    if value is None or value == "":
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(code=code) from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).isoformat()


def optional_int(value: Any, *, minimum: int = 0, code: str = "invalid_number") -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(code=code)
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(code=code) from None
    if number < minimum:
        raise ValidationError(code=code)
    return number


def check_url(value: Any, *, code: str = "invalid_url") -> str:
    url = require_text(value, max_len=2048, code=code)
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError(code=code)
    return url


def only_known(values: Mapping[str, Any], allowed: Iterable[str]) -> dict:
    allowed_set = set(allowed)
    return {k: v for k, v in values.items() if k in allowed_set}


def fetch_one(gateway: TableGateway, actor: Actor, table: str, row_id: str, *, code: str = "not_found") -> dict:
    rows = gateway.select(actor, table, eq={"id": row_id}, limit=1)
    if not rows:
        raise RecordNotFoundError(code=code)
    return rows[0]


def require_class_access(gateway: TableGateway, caller: Caller, class_id: str) -> dict:
    """Return the class when the caller teaches it (admins always pass)."""
    class_id = require_uuid(class_id, code="invalid_class_id")
    cls = fetch_one(gateway, caller.actor, "classes", class_id, code="class_not_found")
    if caller.is_admin or str(cls.get("teacher_id") or "") == caller.sub:
        return cls
    raise AccessDeniedError(code="not_class_teacher")


def enrolled_class_ids(gateway: TableGateway, actor: Actor, student_id: str) -> list[str]:
    rows = gateway.select(actor, "class_enrollments", columns=["class_id"], eq={"student_id": student_id})
    return [str(r["class_id"]) for r in rows]


def profile_names(gateway: TableGateway, actor: Actor, user_ids: Iterable[str]) -> dict[str, str]:
    ids = sorted({str(u) for u in user_ids if u})
    if not ids:
        return {}
    rows = gateway.select(actor, "profiles", columns=["id", "full_name"], in_={"id": ids})
    return {str(r["id"]): (r.get("full_name") or "") for r in rows}


def record_activity(gateway: TableGateway, caller: Caller, action: str, details: str | None = None) -> None:
    """Append an activity log entry; logging failures never break the caller."""
    try:
        gateway.insert(caller.actor, "activity_logs", [{"user_id": caller.sub or None, "action": action, "details": details}])
    except Exception as exc:
        logger.warning("Activity log write failed action=%s err=%s", action, exc.__class__.__name__)
