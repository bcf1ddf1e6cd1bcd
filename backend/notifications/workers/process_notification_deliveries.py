"""
Notification delivery worker: leases queued deliveries and sends email/SMS.

Intent:
    Provide a minimal, framework-free worker that:
      1. Leases the next visible job from `notification_deliveries`.
      2. Loads the notification and how to reach its recipient.
      3. Sends it by email (Resend) and SMS (Twilio) where configured.
      4. Marks the job `sent`, re-queues it with backoff, or dead-letters it.

    The worker is invoked via:
        python -m backend.notifications.workers.process_notification_deliveries [--once] [--interval 2]
"""

from __future__ import annotations

import argparse
from datetime import datetime, timedelta, timezone
import logging
import os
import time
from typing import List, Optional

import psycopg
from psycopg.rows import dict_row

from .. import telemetry
from ..ports import (
    DeliveryPermanentError,
    DeliveryQueueProtocol,
    DeliveryTransientError,
    EmailLookupProtocol,
    EmailSenderProtocol,
    QueuedDelivery,
    SmsSenderProtocol,
)
from ..queue_db import PostgresDeliveryQueue
from ..senders import (
    build_email_sender_from_env,
    build_sms_sender_from_env,
    normalize_phone,
    render_email,
    render_sms,
)

LOG = logging.getLogger(__name__)


def _int_env(name: str, default: int, *, minimum: int) -> int:
    raw = os.getenv(name, str(default))
    try:
        value = int(raw)
    except ValueError:
        LOG.warning("Invalid %s=%s, defaulting to %s", name, raw, default)
        return default
    return max(minimum, value)


LEASE_SECONDS = _int_env("NOTIFY_LEASE_SECONDS", 45, minimum=1)
MAX_RETRIES = _int_env("NOTIFY_MAX_RETRIES", 3, minimum=0)


def _backoff_seconds() -> int:
    return _int_env("NOTIFY_BACKOFF_SECONDS", 10, minimum=1)


def run_once(
    *,
    queue: DeliveryQueueProtocol,
    email_sender: Optional[EmailSenderProtocol],
    sms_sender: Optional[SmsSenderProtocol],
    email_lookup: Optional[EmailLookupProtocol],
    now: Optional[datetime] = None,
    app_url: Optional[str] = None,
) -> bool:
    """
    Lease and process at most one delivery job.

    Returns `False` when no job is visible. Sender and lookup objects are
    injected so tests can run without network access.
    """
    tick = now or datetime.now(tz=timezone.utc)
    job = queue.lease_next(now=tick, lease_seconds=LEASE_SECONDS)
    if job is None:
        return False
    telemetry.adjust_gauge("notification_jobs_inflight", delta=1)
    try:
        process_job(
            queue=queue,
            job=job,
            email_sender=email_sender,
            sms_sender=sms_sender,
            email_lookup=email_lookup,
            now=tick,
            app_url=app_url,
        )
    finally:
        telemetry.adjust_gauge("notification_jobs_inflight", delta=-1)
    return True


def process_job(
    *,
    queue: DeliveryQueueProtocol,
    job: QueuedDelivery,
    email_sender: Optional[EmailSenderProtocol],
    sms_sender: Optional[SmsSenderProtocol],
    email_lookup: Optional[EmailLookupProtocol],
    now: datetime,
    app_url: Optional[str] = None,
) -> str:
    """Send one job on every available channel and return its final status."""
    ctx = queue.load_context(job)
    if ctx is None:
        LOG.warning("Notification %s missing; dead-lettering job %s", job.notification_id, job.id)
        queue.mark_dead(job, error="notification_missing")
        telemetry.increment_counter("notification_deliveries_total", status="dead")
        return "dead"

    delivered: List[str] = []
    transient: List[str] = []
    permanent: List[str] = []
    attempted = False

    if email_sender is not None:
        email: Optional[str] = None
        try:
            email = email_lookup.get_user_email(ctx.user_id) if email_lookup is not None else None
        except Exception as exc:
            # Avoid logging the exception message; it may contain the address.
            LOG.info("Email lookup failed job=%s err=%s", job.id, exc.__class__.__name__)
            transient.append("email_lookup_failed")
            attempted = True
        if email:
            attempted = True
            subject, text, html = render_email(ctx, app_url=app_url)
            try:
                email_sender.send(to=email, subject=subject, text=text, html=html)
                delivered.append("email")
            except DeliveryTransientError as exc:
                transient.append(str(exc) or "email_transient")
            except DeliveryPermanentError as exc:
                permanent.append(str(exc) or "email_permanent")
            except Exception as exc:
                # Unclassified sender failures retry like transient ones.
                LOG.warning("Email sender failed job=%s err=%s", job.id, exc.__class__.__name__)
                transient.append("email_error")

    phone = normalize_phone(ctx.phone)
    if sms_sender is not None and phone:
        attempted = True
        try:
            sms_sender.send(to=phone, body=render_sms(ctx))
            delivered.append("sms")
        except DeliveryTransientError as exc:
            transient.append(str(exc) or "sms_transient")
        except DeliveryPermanentError as exc:
            permanent.append(str(exc) or "sms_permanent")
        except Exception as exc:
            LOG.warning("SMS sender failed job=%s err=%s", job.id, exc.__class__.__name__)
            transient.append("sms_error")

    if delivered:
        queue.mark_sent(job, note=f"delivered:{','.join(delivered)}")
        telemetry.increment_counter("notification_deliveries_total", status="sent")
        LOG.info("Delivered job=%s channels=%s", job.id, ",".join(delivered))
        return "sent"
    if not attempted:
        queue.mark_sent(job, note="no_channel")
        telemetry.increment_counter("notification_deliveries_total", status="skipped")
        LOG.debug("No channel for job=%s", job.id)
        return "sent"

    error = ";".join(transient + permanent)
    if transient and job.retry_count < MAX_RETRIES:
        next_visible = now + timedelta(seconds=_backoff_seconds() * (2 ** job.retry_count))
        queue.requeue(job, visible_at=next_visible, error=error)
        telemetry.increment_counter("notification_deliveries_total", status="retry")
        LOG.warning(
            "Delivery retry scheduled job=%s retry=%s next_visible_at=%s",
            job.id,
            job.retry_count + 1,
            next_visible.isoformat(),
        )
        return "queued"

    queue.mark_dead(job, error=error)
    telemetry.increment_counter("notification_deliveries_total", status="dead")
    LOG.warning("Delivery dead-lettered job=%s retries=%s", job.id, job.retry_count)
    return "dead"


def run_once_db(
    *,
    dsn: str,
    email_sender: Optional[EmailSenderProtocol],
    sms_sender: Optional[SmsSenderProtocol],
    email_lookup: Optional[EmailLookupProtocol],
    app_url: Optional[str] = None,
) -> bool:
    """Process one job inside a single Postgres transaction."""
    with psycopg.connect(dsn, row_factory=dict_row) as conn:
        conn.autocommit = False
        try:
            processed = run_once(
                queue=PostgresDeliveryQueue(conn),
                email_sender=email_sender,
                sms_sender=sms_sender,
                email_lookup=email_lookup,
                app_url=app_url,
            )
            conn.commit()
        except Exception:
            conn.rollback()
            raise
    return processed


def run_forever(
    *,
    dsn: str,
    email_sender: Optional[EmailSenderProtocol],
    sms_sender: Optional[SmsSenderProtocol],
    email_lookup: Optional[EmailLookupProtocol],
    poll_interval: float = 2.0,
    app_url: Optional[str] = None,
) -> None:
    """Continuously process jobs until interrupted."""
    while True:
        processed = run_once_db(
            dsn=dsn, email_sender=email_sender, sms_sender=sms_sender, email_lookup=email_lookup, app_url=app_url
        )
        if not processed:
            time.sleep(poll_interval)


def _resolve_worker_dsn() -> str:
    """The worker reads any user's notification, so it needs the service DSN."""
    for name in ("NOTIFY_DATABASE_URL", "SERVICE_ROLE_DSN", "SUPABASE_DB_URL"):
        value = (os.getenv(name) or "").strip()
        if value:
            return value
    raise RuntimeError("Notification worker requires NOTIFY_DATABASE_URL or SERVICE_ROLE_DSN")


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entrypoint for the worker."""
    parser = argparse.ArgumentParser(description="Deliver queued notifications by email and SMS.")
    parser.add_argument("--once", action="store_true", help="process at most one job and exit")
    parser.add_argument("--interval", type=float, default=float(os.getenv("NOTIFY_POLL_INTERVAL", "2")))
    args = parser.parse_args(argv)

    level_name = os.getenv("LOG_LEVEL", "INFO")
    logging.basicConfig(level=level_name.strip().upper() or "INFO")
    dsn = _resolve_worker_dsn()

    from backend.identity_access.auth_client import SupabaseAuthClient

    email_sender = build_email_sender_from_env()
    sms_sender = build_sms_sender_from_env()
    lookup = SupabaseAuthClient() if email_sender is not None else None
    app_url = (os.getenv("APP_PUBLIC_URL") or "").strip() or None
    LOG.info(
        "notifications.worker.start email=%s sms=%s once=%s",
        email_sender is not None,
        sms_sender is not None,
        args.once,
    )
    if args.once:
        run_once_db(dsn=dsn, email_sender=email_sender, sms_sender=sms_sender, email_lookup=lookup, app_url=app_url)
        return
    run_forever(
        dsn=dsn,
        email_sender=email_sender,
        sms_sender=sms_sender,
        email_lookup=lookup,
        poll_interval=args.interval,
        app_url=app_url,
    )


if __name__ == "__main__":
    main()
