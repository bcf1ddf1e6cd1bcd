"""
Postgres-backed table gateway for the school portal.

Security:
- Access with a limited-role DSN so Row Level Security (RLS) guards every query.
  Each transaction sets `app.current_sub` to the acting user; the policies in
  `supabase/migrations/` read it through `current_setting`.
- The service-role DSN (RLS bypass) is used only for `Actor.system()` calls:
  the notification worker, fallback role assignment and contact lookups.

Design:
- Minimal psycopg3 usage; each call opens a short-lived connection.
- Identifiers come from the table catalogue (`school.schema`) and are composed
  with `psycopg.sql`, values are always bound parameters.
- Returns plain dicts with JSON-friendly values.
"""
from __future__ import annotations

from datetime import date, datetime, time as dtime
from decimal import Decimal
import logging
import os
import re
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
from urllib.parse import urlparse
from uuid import UUID

try:
    import psycopg
    from psycopg import sql
    from psycopg.rows import dict_row
    from psycopg.types.json import Json
    HAVE_PSYCOPG = True
except Exception:  # pragma: no cover - optional in some dev envs
    psycopg = None  # type: ignore
    HAVE_PSYCOPG = False

from .errors import (
    AccessDeniedError,
    DataError,
    DuplicateRecordError,
    PolicyRecursionError,
    ValidationError,
)
from .gateway import Actor
from .schema import Table, check_columns, table as _table

logger = logging.getLogger("eduportal.school.gateway_db")

LIMITED_ROLE = "eduportal_limited"


def _default_limited_dsn() -> str:
    host = os.getenv("TEST_DB_HOST", "127.0.0.1")
    port = os.getenv("TEST_DB_PORT", "54322")
    user = os.getenv("APP_DB_USER", "eduportal_app")
    password = os.getenv("APP_DB_PASSWORD", "CHANGE_ME_DEV")
    return f"postgresql://{user}:{password}@{host}:{port}/postgres"


def _dsn() -> str:
    """Resolve the DSN for RLS-scoped access, falling back to limited-role credentials."""
    candidates = [
        os.getenv("SCHOOL_DATABASE_URL"),
        os.getenv("RLS_TEST_DSN"),
        os.getenv("DATABASE_URL"),
        os.getenv("SUPABASE_DB_URL"),
        _default_limited_dsn(),
    ]
    for dsn in candidates:
        if dsn:
            return dsn
    raise RuntimeError("Database DSN unavailable for DBTableGateway")


def _jsonable(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (date, dtime)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    return value


def _row(record: Mapping[str, Any]) -> dict:
    return {k: _jsonable(v) for k, v in record.items()}


def translate_error(exc: Exception) -> DataError:
    """Map a driver exception to the portal's error hierarchy."""
    sqlstate = getattr(exc, "sqlstate", None) or getattr(exc, "pgcode", None) or ""
    diag = getattr(exc, "diag", None)
    details = getattr(diag, "message_detail", None) if diag is not None else None
    hint = getattr(diag, "message_hint", None) if diag is not None else None
    message = str(exc).strip() or exc.__class__.__name__
    if "infinite recursion" in message.lower():
        return PolicyRecursionError(message, details=details, hint=hint)
    if sqlstate == "23505":
        return DuplicateRecordError(message, details=details, hint=hint)
    if sqlstate == "42501":
        return AccessDeniedError(message, details=details, hint=hint)
    if sqlstate == "23503":
        return ValidationError(message, code="invalid_reference", details=details, hint=hint)
    if sqlstate.startswith("22") or sqlstate in ("23502", "23514"):
        return ValidationError(message, details=details, hint=hint)
    return DataError(message, code=sqlstate or None, details=details, hint=hint)


def _like_escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _where(
    eq: Optional[Mapping[str, Any]],
    in_: Optional[Mapping[str, Sequence[Any]]],
    gte: Optional[Mapping[str, Any]] = None,
    gt: Optional[Mapping[str, Any]] = None,
    lte: Optional[Mapping[str, Any]] = None,
    ilike: Optional[Mapping[str, str]] = None,
) -> Tuple[Any, List[Any]]:
    parts: List[Any] = []
    params: List[Any] = []
    for col, val in (eq or {}).items():
        if val is None:
            parts.append(sql.SQL("{} is null").format(sql.Identifier(col)))
        else:
            parts.append(sql.SQL("{} = %s").format(sql.Identifier(col)))
            params.append(val)
    for col, vals in (in_ or {}).items():
        # Compare as text so uuid and text columns accept the same string list.
        parts.append(sql.SQL("{}::text = any(%s::text[])").format(sql.Identifier(col)))
        params.append([str(v) for v in vals])
    for op, mapping in ((">=", gte), (">", gt), ("<=", lte)):
        for col, val in (mapping or {}).items():
            parts.append(sql.SQL("{} " + op + " %s").format(sql.Identifier(col)))
            params.append(val)
    for col, text in (ilike or {}).items():
        parts.append(sql.SQL("{}::text ilike %s").format(sql.Identifier(col)))
        params.append("%" + _like_escape(str(text)) + "%")
    if not parts:
        return sql.SQL(""), params
    return sql.SQL(" where ") + sql.SQL(" and ").join(parts), params


def _adapt(t: Table, row: Mapping[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for col, val in row.items():
        if col in t.json_columns and val is not None:
            out[col] = Json(val)
        else:
            out[col] = val
    return out


class DBTableGateway:
    def __init__(self, dsn: Optional[str] = None, *, service_dsn: Optional[str] = None) -> None:
        """Initialize a Postgres-backed gateway with RLS-first safety.

        Parameters:
            dsn: Optional explicit DSN for user-scoped calls. When omitted,
                 resolves from env with a safe fallback to the limited test DSN.
            service_dsn: DSN for `Actor.system()` calls. Defaults to
                 SERVICE_ROLE_DSN; system calls fail when unset.

        Behavior:
            - Rejects user DSNs whose username is not the limited role unless
              ALLOW_SERVICE_DSN_FOR_TESTING=true is set (dev/testing only).
            - Does not open a connection eagerly; connections are per-call.
        """
        if not HAVE_PSYCOPG:
            raise RuntimeError("psycopg3 is required for DBTableGateway")
        self._dsn = dsn or _dsn()
        self._service_dsn = service_dsn or os.getenv("SERVICE_ROLE_DSN") or ""
        user = self._dsn_username(self._dsn)
        allow_override = str(os.getenv("ALLOW_SERVICE_DSN_FOR_TESTING", "")).lower() == "true"
        if not user.startswith("eduportal_") and not allow_override:
            raise RuntimeError(
                f"DBTableGateway requires a login role IN ROLE {LIMITED_ROLE}. Set SCHOOL_DATABASE_URL "
                "to a limited DSN or export ALLOW_SERVICE_DSN_FOR_TESTING=true to override in dev."
            )

    @staticmethod
    def _dsn_username(dsn: str) -> str:
        try:
            p = urlparse(dsn)
            if p.username:
                return p.username
        except Exception:
            pass
        m = re.match(r"^[a-z]+:\/\/(?P<u>[^:]+):?[^@]*@", dsn or "")
        return m.group("u") if m else ""

    def _connect(self, actor: Actor):
        if actor.service:
            if not self._service_dsn:
                raise AccessDeniedError("service DSN not configured", code="service_unavailable")
            return psycopg.connect(self._service_dsn, row_factory=dict_row)
        return psycopg.connect(self._dsn, row_factory=dict_row)

    @staticmethod
    def _scope(cur, actor: Actor) -> None:
        if not actor.service:
            # RLS: set local current_sub for this transaction
            cur.execute("select set_config('app.current_sub', %s, true)", (actor.sub,))

    def _execute(self, actor: Actor, statements: Sequence[Tuple[Any, Sequence[Any]]]) -> List[List[dict]]:
        """Run statements in one transaction; returns fetched rows per statement."""
        results: List[List[dict]] = []
        try:
            with self._connect(actor) as conn:
                with conn.cursor() as cur:
                    self._scope(cur, actor)
                    for stmt, params in statements:
                        cur.execute(stmt, params)
                        if cur.description is not None:
                            results.append([_row(r) for r in cur.fetchall()])
                        else:
                            results.append([{"rowcount": cur.rowcount}])
        except DataError:
            raise
        except Exception as exc:
            if HAVE_PSYCOPG and isinstance(exc, psycopg.Error):
                err = translate_error(exc)
                logger.warning("Query failed code=%s", err.code)
                raise err from exc
            raise
        return results

    # --- Gateway contract --------------------------------------------------------

    def select(self, actor, table, *, columns=None, eq=None, in_=None, gte=None, gt=None, lte=None,
               ilike=None, order_by=None, desc=False, limit=None) -> List[dict]:
        filter_cols = [c for m in (eq, in_, gte, gt, lte, ilike) if m for c in m.keys()]
        t = check_columns(table, list(columns or []) + filter_cols + ([order_by] if order_by else []))
        cols = sql.SQL(", ").join(sql.Identifier(c) for c in (columns or t.columns))
        where, params = _where(eq, in_, gte, gt, lte, ilike)
        stmt = sql.SQL("select {} from public.{}").format(cols, sql.Identifier(t.name)) + where
        if order_by:
            stmt += sql.SQL(" order by {} " + ("desc" if desc else "asc")).format(sql.Identifier(order_by))
        if limit is not None:
            stmt += sql.SQL(" limit %s")
            params.append(max(0, int(limit)))
        return self._execute(actor, [(stmt, params)])[0]

    def _insert_stmt(self, t: Table, rows: Sequence[Mapping[str, Any]]) -> List[Tuple[Any, Sequence[Any]]]:
        stmts = []
        for row in rows:
            check_columns(t.name, row.keys())
            adapted = _adapt(t, row)
            cols = list(adapted.keys())
            stmt = sql.SQL("insert into public.{} ({}) values ({}) returning *").format(
                sql.Identifier(t.name),
                sql.SQL(", ").join(sql.Identifier(c) for c in cols),
                sql.SQL(", ").join(sql.Placeholder() for _ in cols),
            )
            stmts.append((stmt, [adapted[c] for c in cols]))
        return stmts

    def insert(self, actor, table, rows) -> List[dict]:
        t = _table(table)
        if not rows:
            return []
        results = self._execute(actor, self._insert_stmt(t, rows))
        return [r for chunk in results for r in chunk]

    def update(self, actor, table, values, *, eq=None, in_=None) -> List[dict]:
        filter_cols = [c for m in (eq, in_) if m for c in m.keys()]
        t = check_columns(table, list(values.keys()) + filter_cols)
        adapted = _adapt(t, values)
        assignments = [sql.SQL("{} = %s").format(sql.Identifier(c)) for c in adapted.keys()]
        if t.has("updated_at") and "updated_at" not in adapted:
            assignments.append(sql.SQL("updated_at = now()"))
        where, params = _where(eq, in_)
        stmt = (
            sql.SQL("update public.{} set ").format(sql.Identifier(t.name))
            + sql.SQL(", ").join(assignments)
            + where
            + sql.SQL(" returning *")
        )
        return self._execute(actor, [(stmt, list(adapted.values()) + params)])[0]

    def delete(self, actor, table, *, eq=None, in_=None) -> int:
        filter_cols = [c for m in (eq, in_) if m for c in m.keys()]
        t = check_columns(table, filter_cols)
        where, params = _where(eq, in_)
        stmt = sql.SQL("delete from public.{}").format(sql.Identifier(t.name)) + where + sql.SQL(" returning id")
        return len(self._execute(actor, [(stmt, params)])[0])

    def upsert(self, actor, table, row, *, on_conflict) -> dict:
        t = check_columns(table, list(row.keys()) + list(on_conflict))
        adapted = _adapt(t, row)
        cols = list(adapted.keys())
        updates = [c for c in cols if c not in on_conflict]
        if updates:
            action = sql.SQL("do update set ") + sql.SQL(", ").join(
                sql.SQL("{0} = excluded.{0}").format(sql.Identifier(c)) for c in updates
            )
        else:
            # Touch a conflict column so `returning` yields the existing row.
            first = on_conflict[0]
            action = sql.SQL("do update set {0} = excluded.{0}").format(sql.Identifier(first))
        stmt = sql.SQL("insert into public.{} ({}) values ({}) on conflict ({}) ").format(
            sql.Identifier(t.name),
            sql.SQL(", ").join(sql.Identifier(c) for c in cols),
            sql.SQL(", ").join(sql.Placeholder() for _ in cols),
            sql.SQL(", ").join(sql.Identifier(c) for c in on_conflict),
        ) + action + sql.SQL(" returning *")
        rows = self._execute(actor, [(stmt, [adapted[c] for c in cols])])[0]
        return rows[0] if rows else {}

    def replace(self, actor, table, *, eq, rows) -> List[dict]:
        t = check_columns(table, list(eq.keys()))
        where, params = _where(eq, None)
        statements: List[Tuple[Any, Sequence[Any]]] = [
            (sql.SQL("delete from public.{}").format(sql.Identifier(t.name)) + where, params)
        ]
        statements.extend(self._insert_stmt(t, rows))
        results = self._execute(actor, statements)
        return [r for chunk in results[1:] for r in chunk]
