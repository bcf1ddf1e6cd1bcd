"""
Platform data export for admins.

Reads the core tables as the calling admin, so RLS still decides what ends up
in the file. The result is one JSON document keyed by table name.
"""

from __future__ import annotations

import logging
from typing import Dict, List

from ..gateway import TableGateway
from .common import Caller, record_activity, today, utcnow_iso

logger = logging.getLogger("eduportal.school.backup")

EXPORT_TABLES = ("profiles", "classes", "teachers", "exams", "attendance", "assignments")


def export_filename() -> str:
    return f"eduportal-backup-{today().isoformat()}.json"


def export_snapshot(gateway: TableGateway, caller: Caller) -> dict:
    """Return `{name: [rows]}` for EXPORT_TABLES plus an `exported_at` timestamp."""
    tables: Dict[str, List[dict]] = {}
    for name in EXPORT_TABLES:
        tables[name] = gateway.select(caller.actor, name, order_by="created_at")
    counts = " ".join(f"{name}={len(rows)}" for name, rows in tables.items())
    logger.info("Data export by=%s %s", caller.sub, counts)
    record_activity(gateway, caller, "data_exported", counts)
    return {**tables, "exported_at": utcnow_iso()}
