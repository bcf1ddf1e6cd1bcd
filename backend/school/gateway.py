"""
Table gateway: the single seam between school services and the database.

Why:
    Every portal operation is a table select/insert/update/delete performed on
    behalf of a user so that row-level security decides visibility. Services
    talk to a `TableGateway`; the Postgres implementation lives in
    `gateway_db.py`, the in-memory one below backs tests and offline dev.

Notes:
    - Filters are keyword mappings (`eq`, `in_`, `gte`, `gt`, `lte`,
      `ilike`) combined with AND, like the hosted query builder.
    - Rows are plain dicts with JSON-friendly values (ids and timestamps as
      ISO strings).
    - The in-memory gateway enforces catalogued unique keys but not RLS; the
      services perform their own role and ownership checks either way.
"""
from __future__ import annotations

import copy
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import RLock
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence
from uuid import uuid4

from .errors import DuplicateRecordError
from .schema import Table, check_columns, table as _table


@dataclass(frozen=True)
class Actor:
    """Who a table call runs as. `service=True` bypasses RLS (server only)."""

    sub: str
    service: bool = False

    @classmethod
    def user(cls, sub: str) -> "Actor":
        return cls(sub=str(sub or ""), service=False)

    @classmethod
    def system(cls) -> "Actor":
        return cls(sub="", service=True)


class TableGateway(Protocol):
    def select(
        self,
        actor: Actor,
        table: str,
        *,
        columns: Optional[Sequence[str]] = None,
        eq: Optional[Mapping[str, Any]] = None,
        in_: Optional[Mapping[str, Sequence[Any]]] = None,
        gte: Optional[Mapping[str, Any]] = None,
        gt: Optional[Mapping[str, Any]] = None,
        lte: Optional[Mapping[str, Any]] = None,
        ilike: Optional[Mapping[str, str]] = None,
        order_by: Optional[str] = None,
        desc: bool = False,
        limit: Optional[int] = None,
    ) -> List[dict]:
        """`ilike` keeps rows whose column contains the given text, ignoring case."""
        ...

    def insert(self, actor: Actor, table: str, rows: Sequence[Mapping[str, Any]]) -> List[dict]:
        ...

    def update(
        self,
        actor: Actor,
        table: str,
        values: Mapping[str, Any],
        *,
        eq: Optional[Mapping[str, Any]] = None,
        in_: Optional[Mapping[str, Sequence[Any]]] = None,
    ) -> List[dict]:
        ...

    def delete(
        self,
        actor: Actor,
        table: str,
        *,
        eq: Optional[Mapping[str, Any]] = None,
        in_: Optional[Mapping[str, Sequence[Any]]] = None,
    ) -> int:
        ...

    def upsert(self, actor: Actor, table: str, row: Mapping[str, Any], *, on_conflict: Sequence[str]) -> dict:
        ...

    def replace(
        self,
        actor: Actor,
        table: str,
        *,
        eq: Mapping[str, Any],
        rows: Sequence[Mapping[str, Any]],
    ) -> List[dict]:
        ...


def _key(value: Any) -> Any:
    # Compare ids and dates as strings so callers may pass either form.
    if value is None or isinstance(value, (bool, int, float)):
        return value
    return str(value)


def _filter_columns(eq, in_, gte, gt, lte, ilike=None) -> List[str]:
    cols: List[str] = []
    for mapping in (eq, in_, gte, gt, lte, ilike):
        if mapping:
            cols.extend(mapping.keys())
    return cols


def _matches(row: Mapping[str, Any], eq, in_, gte, gt, lte, ilike=None) -> bool:
    for col, val in (eq or {}).items():
        if _key(row.get(col)) != _key(val):
            return False
    for col, vals in (in_ or {}).items():
        if _key(row.get(col)) not in {_key(v) for v in vals}:
            return False
    for col, val in (gte or {}).items():
        cur = row.get(col)
        if cur is None or str(cur) < str(val):
            return False
    for col, val in (gt or {}).items():
        cur = row.get(col)
        if cur is None or str(cur) <= str(val):
            return False
    for col, val in (lte or {}).items():
        cur = row.get(col)
        if cur is None or str(cur) > str(val):
            return False
    for col, text in (ilike or {}).items():
        cur = row.get(col)
        if cur is None or str(text).lower() not in str(cur).lower():
            return False
    return True


class InMemoryTableGateway:
    """Dict-backed gateway with the same contract as the Postgres one."""

    def __init__(self) -> None:
        self._rows: Dict[str, List[dict]] = {}
        self._lock = RLock()
        self._last_ts: Optional[datetime] = None

    def _tick(self) -> str:
        # Strictly increasing timestamps keep "newest first" ordering stable.
        now = datetime.now(timezone.utc)
        if self._last_ts is not None and now <= self._last_ts:
            now = self._last_ts + timedelta(microseconds=1)
        self._last_ts = now
        return now.isoformat()

    # --- Helpers -----------------------------------------------------------------

    def _bucket(self, name: str) -> List[dict]:
        return self._rows.setdefault(name, [])

    def _with_defaults(self, t: Table, row: Mapping[str, Any]) -> dict:
        out = {col: None for col in t.columns}
        for col, val in t.defaults.items():
            out[col] = val
        now = self._tick()
        for col in t.timestamps:
            out[col] = now
        if t.has("id"):
            out["id"] = str(uuid4())
        for col, val in row.items():
            out[col] = copy.deepcopy(val)
        return out

    def _check_unique(self, t: Table, candidate: Mapping[str, Any], *, ignore: Optional[dict] = None) -> None:
        keys = list(t.unique)
        if t.has("id"):
            keys.append(("id",))
        for cols in keys:
            probe = tuple(_key(candidate.get(c)) for c in cols)
            if any(v is None for v in probe):
                continue
            for existing in self._bucket(t.name):
                if existing is ignore:
                    continue
                if tuple(_key(existing.get(c)) for c in cols) == probe:
                    raise DuplicateRecordError(
                        f"duplicate key value violates unique constraint on {t.name}({', '.join(cols)})"
                    )

    @staticmethod
    def _project(row: dict, columns: Optional[Sequence[str]]) -> dict:
        if not columns:
            return copy.deepcopy(row)
        return {c: copy.deepcopy(row.get(c)) for c in columns}

    # --- Gateway contract --------------------------------------------------------

    def select(self, actor, table, *, columns=None, eq=None, in_=None, gte=None, gt=None, lte=None,
               ilike=None, order_by=None, desc=False, limit=None) -> List[dict]:
        t = check_columns(table, list(columns or []) + _filter_columns(eq, in_, gte, gt, lte, ilike))
        if order_by:
            check_columns(table, [order_by])
        with self._lock:
            rows = [r for r in self._bucket(t.name) if _matches(r, eq, in_, gte, gt, lte, ilike)]
            if order_by:
                present = [r for r in rows if r.get(order_by) is not None]
                missing = [r for r in rows if r.get(order_by) is None]
                present.sort(key=lambda r: str(r.get(order_by)), reverse=desc)
                # Postgres sorts NULLs last ascending and first descending.
                rows = (missing + present) if desc else (present + missing)
            if limit is not None:
                rows = rows[: max(0, int(limit))]
            return [self._project(r, columns) for r in rows]

    def insert(self, actor, table, rows) -> List[dict]:
        t = _table(table)
        created: List[dict] = []
        with self._lock:
            staged: List[dict] = []
            for row in rows:
                check_columns(table, row.keys())
                full = self._with_defaults(t, row)
                self._check_unique(t, full)
                for other in staged:
                    for cols in t.unique:
                        if all(_key(other.get(c)) == _key(full.get(c)) for c in cols):
                            raise DuplicateRecordError(f"duplicate key value violates unique constraint on {t.name}")
                staged.append(full)
            self._bucket(t.name).extend(staged)
            created = [copy.deepcopy(r) for r in staged]
        return created

    def update(self, actor, table, values, *, eq=None, in_=None) -> List[dict]:
        t = check_columns(table, list(values.keys()) + _filter_columns(eq, in_, None, None, None))
        out: List[dict] = []
        with self._lock:
            for row in self._bucket(t.name):
                if not _matches(row, eq, in_, None, None, None):
                    continue
                candidate = dict(row)
                candidate.update(copy.deepcopy(dict(values)))
                if "updated_at" in t.columns and "updated_at" not in values:
                    candidate["updated_at"] = self._tick()
                self._check_unique(t, candidate, ignore=row)
                row.update(candidate)
                out.append(copy.deepcopy(row))
        return out

    def delete(self, actor, table, *, eq=None, in_=None) -> int:
        t = check_columns(table, _filter_columns(eq, in_, None, None, None))
        with self._lock:
            bucket = self._bucket(t.name)
            keep = [r for r in bucket if not _matches(r, eq, in_, None, None, None)]
            removed = len(bucket) - len(keep)
            self._rows[t.name] = keep
        return removed

    def upsert(self, actor, table, row, *, on_conflict) -> dict:
        t = check_columns(table, list(row.keys()) + list(on_conflict))
        with self._lock:
            match = {c: row.get(c) for c in on_conflict}
            for existing in self._bucket(t.name):
                if _matches(existing, match, None, None, None, None):
                    candidate = dict(existing)
                    candidate.update(copy.deepcopy(dict(row)))
                    self._check_unique(t, candidate, ignore=existing)
                    existing.update(candidate)
                    return copy.deepcopy(existing)
            return self.insert(actor, table, [row])[0]

    def replace(self, actor, table, *, eq, rows) -> List[dict]:
        with self._lock:
            snapshot = copy.deepcopy(self._rows.get(table, []))
            try:
                self.delete(actor, table, eq=eq)
                return self.insert(actor, table, rows) if rows else []
            except Exception:
                self._rows[table] = snapshot
                raise
