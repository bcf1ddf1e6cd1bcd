"""
Configuration and startup security checks for EduPortal.

Why: A school portal stores minors' data. This module provides a single guard
that enforces minimal production safety constraints without burdening local
development.

Permissions: The caller needs no special privileges. The function simply reads
environment variables and raises `SystemExit` on fatal misconfiguration.
"""
from __future__ import annotations

import os
import re
from urllib.parse import urlparse

PLACEHOLDER_PREFIXES = ("DUMMY", "CHANGE_ME", "YOUR_")


def _is_prod_like(env: str) -> bool:
    env_l = (env or "").lower()
    return env_l in {"prod", "production", "stage", "staging"}


def _is_placeholder(value: str) -> bool:
    upper = (value or "").strip().upper()
    return not upper or upper.startswith(PLACEHOLDER_PREFIXES)


def _dsn_user(dsn_value: str) -> str | None:
    if "://" in dsn_value:
        return urlparse(dsn_value).username
    # Keyword form: host=... user=... dbname=...
    m = re.search(r"\buser\s*=\s*([^\s]+)", dsn_value)
    return m.group(1) if m else None


def ensure_secure_config_on_startup() -> None:
    """Fail fast on insecure production configuration.

    Checks (prod-like envs only):
    - SUPABASE_SERVICE_ROLE_KEY is set and not a placeholder.
    - SUPABASE_URL and APP_PUBLIC_URL use https.
    - No database DSN disables TLS.
    - No database DSN logs in as the NOLOGIN `eduportal_limited` role itself.
    - Session cookies for the DB session store need a DSN.
    """

    env = os.getenv("EDUPORTAL_ENV", "dev")
    if not _is_prod_like(env):
        return

    if _is_placeholder(os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")):
        raise SystemExit(
            "Refusing to start: SUPABASE_SERVICE_ROLE_KEY is unset or a placeholder in production."
        )

    for var_name in ("SUPABASE_URL", "APP_PUBLIC_URL"):
        value = (os.getenv(var_name) or "").strip().lower()
        if value and not value.startswith("https://"):
            raise SystemExit(f"Refusing to start: {var_name} must use https in production.")
    if not (os.getenv("SUPABASE_URL") or "").strip():
        raise SystemExit("Refusing to start: SUPABASE_URL is required in production.")

    for key in ("DATABASE_URL", "SCHOOL_DATABASE_URL", "SESSION_DATABASE_URL", "SERVICE_ROLE_DSN"):
        val = os.getenv(key, "")
        if not val:
            continue
        if "sslmode=disable" in val:
            raise SystemExit(
                f"Refusing to start: {key} contains sslmode=disable in production. Use sslmode=require."
            )
        if (_dsn_user(val) or "").lower() == "eduportal_limited":
            raise SystemExit(
                f"Refusing to start: {key} authenticates as 'eduportal_limited' in production. "
                "Use an environment-specific login role that is IN ROLE eduportal_limited."
            )

    if (os.getenv("SESSIONS_BACKEND", "memory") or "").strip().lower() == "db":
        if not (os.getenv("SESSION_DATABASE_URL") or os.getenv("SERVICE_ROLE_DSN")):
            raise SystemExit("Refusing to start: SESSIONS_BACKEND=db requires SESSION_DATABASE_URL.")
