"""
Postgres implementation of the delivery queue (`public.notification_deliveries`).

Behavior:
    - Leasing uses `for update skip locked` so several workers can poll the
      same table; expired leases become visible again.
    - All statements run on the caller's connection; the worker commits or
      rolls back the whole job at once.

Permissions:
    Needs a role that can read `notifications`/`profiles` for any user and
    update the queue table (service role or a dedicated worker role).
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from psycopg import Connection

from .ports import DeliveryContext, QueuedDelivery


def _truncate(message: Optional[str], limit: int = 1024) -> Optional[str]:
    text = (message or "").strip()
    if not text:
        return None
    return text if len(text) <= limit else f"{text[: limit - 3]}..."


class PostgresDeliveryQueue:
    def __init__(self, conn: Connection) -> None:
        self._conn = conn

    def lease_next(self, *, now: datetime, lease_seconds: int) -> Optional[QueuedDelivery]:
        lease_until = now + timedelta(seconds=lease_seconds)
        with self._conn.cursor() as cur:
            cur.execute(
                """
                with candidate as (
                    select id
                      from public.notification_deliveries
                     where (status = 'queued' and visible_at <= %s)
                        or (status = 'leased' and leased_until is not null and leased_until <= %s)
                     order by visible_at asc, created_at asc
                     limit 1
                     for update skip locked
                )
                update public.notification_deliveries as d
                   set status = 'leased',
                       leased_until = %s,
                       updated_at = now()
                  from candidate
                 where d.id = candidate.id
                returning d.id::text as id,
                          d.notification_id::text as notification_id,
                          d.retry_count
                """,
                (now, now, lease_until),
            )
            row = cur.fetchone()
        if not row:
            return None
        return QueuedDelivery(id=row["id"], notification_id=row["notification_id"], retry_count=int(row["retry_count"]))

    def load_context(self, job: QueuedDelivery) -> Optional[DeliveryContext]:
        with self._conn.cursor() as cur:
            cur.execute(
                """
                select n.user_id::text as user_id,
                       n.title,
                       n.message,
                       n.type,
                       p.full_name,
                       p.phone
                  from public.notifications n
                  left join public.profiles p on p.id = n.user_id
                 where n.id = %s::uuid
                """,
                (job.notification_id,),
            )
            row = cur.fetchone()
        if not row:
            return None
        return DeliveryContext(
            user_id=row["user_id"],
            title=row["title"] or "",
            message=row["message"] or "",
            type=row["type"] or "info",
            full_name=row["full_name"],
            phone=row["phone"],
        )

    def _finish(self, job: QueuedDelivery, *, status: str, error: Optional[str]) -> None:
        with self._conn.cursor() as cur:
            cur.execute(
                """
                update public.notification_deliveries
                   set status = %s,
                       leased_until = null,
                       last_error = %s,
                       updated_at = now()
                 where id = %s::uuid
                """,
                (status, _truncate(error), job.id),
            )

    def mark_sent(self, job: QueuedDelivery, *, note: Optional[str] = None) -> None:
        self._finish(job, status="sent", error=note)

    def mark_dead(self, job: QueuedDelivery, *, error: str) -> None:
        self._finish(job, status="dead", error=error)

    def requeue(self, job: QueuedDelivery, *, visible_at: datetime, error: str) -> None:
        with self._conn.cursor() as cur:
            cur.execute(
                """
                update public.notification_deliveries
                   set status = 'queued',
                       retry_count = %s,
                       visible_at = %s,
                       leased_until = null,
                       last_error = %s,
                       updated_at = now()
                 where id = %s::uuid
                """,
                (job.retry_count + 1, visible_at, _truncate(error), job.id),
            )
