"""
In-memory session store for development and tests.

Why: Keep sessions opaque to the client. For production, use the DB-backed
store in `stores_db.py` (`SESSIONS_BACKEND=db`).

Security: Cookies carry only an opaque session id. Session data stays server-side.
"""
from __future__ import annotations

from dataclasses import dataclass
from threading import Lock
from typing import Dict, Optional, Sequence
import secrets
import time


def _now() -> int:
    return int(time.time())


@dataclass
class SessionRecord:
    session_id: str
    sub: str
    roles: list[str]
    name: str
    expires_at: Optional[int] = None
    ttl_seconds: int = 3600


class SessionStore:
    def __init__(self):
        self._data: Dict[str, SessionRecord] = {}
        self._lock = Lock()

    def create(self, *, sub: str, roles: Sequence[str], name: str, ttl_seconds: int = 3600) -> SessionRecord:
        sid = secrets.token_urlsafe(24)
        rec = SessionRecord(
            session_id=sid,
            sub=sub,
            roles=list(roles),
            name=name,
            expires_at=_now() + ttl_seconds,
            ttl_seconds=ttl_seconds,
        )
        with self._lock:
            self._data[sid] = rec
        return rec

    def get(self, session_id: str) -> Optional[SessionRecord]:
        with self._lock:
            rec = self._data.get(session_id)
            if not rec:
                return None
            if rec.expires_at and rec.expires_at < _now():
                self._data.pop(session_id, None)
                return None
            return rec

    def delete(self, session_id: str) -> None:
        with self._lock:
            self._data.pop(session_id, None)
