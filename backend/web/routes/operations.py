"""Operations endpoints (internal tooling for admins/operators)."""

from __future__ import annotations

from fastapi import APIRouter, Request

from school.services.diagnostics import probe_policies

from .common import get_gateway, json_private, require_roles

operations_router = APIRouter(tags=["Operations"])


@operations_router.get("/internal/diagnostics/rls")
async def rls_diagnostics(request: Request):
    """
    Probe row-level security on every table as the calling admin.

    Behavior:
        - 200 when every table is readable, otherwise 503 with the same body
          so operators can see which tables fail (`denied`, `recursion`, `error`).

    Permissions:
        Caller must have the `admin` role (auth via eduportal_session).
    """
    caller, error = require_roles(request, "admin")
    if error:
        return error
    probe = probe_policies(get_gateway(), caller)
    status_code = 200 if probe["status"] == "ok" else 503
    return json_private(probe, status_code=status_code)


@operations_router.get("/internal/telemetry/notifications")
async def notification_telemetry(request: Request):
    """In-process delivery counters of this process (admin only)."""
    _, error = require_roles(request, "admin")
    if error:
        return error
    from backend.notifications import telemetry

    body = {
        "deliveries": {
            status: telemetry.counter_value("notification_deliveries_total", status=status)
            for status in ("sent", "skipped", "retry", "dead")
        },
        "inflight": telemetry.gauge_value("notification_jobs_inflight"),
    }
    return json_private(body)
