"""
RLS diagnostics.

Why:
    Misconfigured policies on the hosted database surface as confusing empty
    lists or "infinite recursion detected in policy" errors deep inside an
    unrelated screen. The probe reads one row from every catalogued table as
    the calling admin and reports which tables are readable.
"""

from __future__ import annotations

import logging
from typing import Dict

from ..errors import AccessDeniedError, DataError, PolicyRecursionError
from ..gateway import TableGateway
from ..schema import TABLES
from .common import Caller

logger = logging.getLogger("eduportal.school.diagnostics")


def probe_policies(gateway: TableGateway, caller: Caller) -> dict:
    """Return `{"status": "ok"|"degraded", "tables": {name: {...}}}`."""
    tables: Dict[str, dict] = {}
    for name in TABLES:
        try:
            rows = gateway.select(caller.actor, name, columns=[TABLES[name].columns[0]], limit=1)
            tables[name] = {"status": "ok", "rows_visible": len(rows)}
        except PolicyRecursionError as exc:
            tables[name] = {"status": "recursion", "code": exc.code, "hint": exc.hint}
        except AccessDeniedError as exc:
            tables[name] = {"status": "denied", "code": exc.code}
        except DataError as exc:
            tables[name] = {"status": "error", "code": exc.code}
        if tables[name]["status"] != "ok":
            logger.warning("RLS probe failed table=%s status=%s", name, tables[name]["status"])
    overall = "ok" if all(t["status"] == "ok" for t in tables.values()) else "degraded"
    return {"status": overall, "tables": tables}
