"""
Database-backed SessionStore for production use (Postgres/Supabase).

Why: In-memory sessions are not durable and do not scale across instances. This
store persists sessions in Postgres while keeping the cookie opaque and
PII-minimal (no email stored).

Security:
- Intended to be used with a service role connection string; RLS is enabled
  on `app_sessions` without policies, so only the service role reaches it.
- Only the opaque `session_id` is set in the cookie; all user context stays server-side.
"""
from __future__ import annotations

from typing import Optional, Sequence
import os
import re
import time

import psycopg
from psycopg import sql
from psycopg.types.json import Json

from .stores import SessionRecord


def _now() -> int:
    return int(time.time())


class DBSessionStore:
    """Postgres-backed session store.

    Parameters
    ----------
    dsn:
        Psycopg3 connection string. Use the service role.
    table:
        Fully qualified table name. Defaults to `public.app_sessions`.
    """

    def __init__(self, dsn: str | None = None, table: str = "public.app_sessions") -> None:
        self._dsn = dsn or os.getenv("SESSION_DATABASE_URL") or os.getenv("SERVICE_ROLE_DSN") or os.getenv("SUPABASE_DB_URL", "")
        if not self._dsn:
            raise RuntimeError("No database DSN provided for DBSessionStore")
        if not re.match(r"^[A-Za-z_][A-Za-z0-9_]{0,62}(?:\.[A-Za-z_][A-Za-z0-9_]{0,62})?$", table or ""):
            raise ValueError("Invalid table name")
        schema, _, name = table.rpartition(".")
        self._table = sql.Identifier(schema or "public", name)

    def create(self, *, sub: str, roles: Sequence[str], name: str, ttl_seconds: int = 3600) -> SessionRecord:
        expires_at = _now() + ttl_seconds
        stmt = sql.SQL(
            "insert into {} (session_id, sub, roles, name, expires_at) "
            "values (gen_random_uuid()::text, %s, %s, %s, to_timestamp(%s)) returning session_id"
        ).format(self._table)
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(stmt, (sub, Json(list(roles)), name, expires_at))
                row = cur.fetchone()
        sid = str(row[0]) if row else ""
        return SessionRecord(
            session_id=sid, sub=sub, roles=list(roles), name=name, expires_at=expires_at, ttl_seconds=ttl_seconds
        )

    def get(self, session_id: str) -> Optional[SessionRecord]:
        stmt = sql.SQL(
            "select session_id, sub, roles, name, extract(epoch from expires_at)::bigint "
            "from {} where session_id = %s and expires_at > now()"
        ).format(self._table)
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(stmt, (session_id,))
                row = cur.fetchone()
        if not row:
            return None
        roles = row[2] if isinstance(row[2], list) else []
        return SessionRecord(
            session_id=row[0],
            sub=row[1],
            roles=roles,
            name=row[3],
            expires_at=int(row[4]) if row[4] is not None else None,
        )

    def delete(self, session_id: str) -> None:
        stmt = sql.SQL("delete from {} where session_id = %s").format(self._table)
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(stmt, (session_id,))
