"""
Ports for notification delivery: recipient/job types, sender protocols, errors.

Intent:
    Keep the worker independent of concrete channels (Resend email, Twilio
    SMS) and of the queue storage, so tests can plug in fakes.

Design:
    - Senders raise `DeliveryTransientError` (retry with backoff) or
      `DeliveryPermanentError` (dead-letter right away).
    - The queue protocol mirrors the job lifecycle: lease, load, then exactly
      one of sent / retry / dead.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol


@dataclass
class QueuedDelivery:
    """Minimal snapshot of a delivery job leased from the queue."""

    id: str
    notification_id: str
    retry_count: int


@dataclass
class DeliveryContext:
    """Notification content plus how to reach its recipient."""

    user_id: str
    title: str
    message: str
    type: str
    full_name: Optional[str] = None
    phone: Optional[str] = None


class DeliveryError(Exception):
    """Base class for channel failures."""


class DeliveryTransientError(DeliveryError):
    """Recoverable failure (timeouts, 429, 5xx); the job is retried."""


class DeliveryPermanentError(DeliveryError):
    """Unrecoverable failure (rejected recipient, bad credentials)."""


class EmailSenderProtocol(Protocol):
    def send(self, *, to: str, subject: str, text: str, html: str) -> str:
        ...


class SmsSenderProtocol(Protocol):
    def send(self, *, to: str, body: str) -> str:
        ...


class EmailLookupProtocol(Protocol):
    def get_user_email(self, user_id: str) -> Optional[str]:
        ...


class DeliveryQueueProtocol(Protocol):
    def lease_next(self, *, now: datetime, lease_seconds: int) -> Optional[QueuedDelivery]:
        ...

    def load_context(self, job: QueuedDelivery) -> Optional[DeliveryContext]:
        ...

    def mark_sent(self, job: QueuedDelivery, *, note: Optional[str] = None) -> None:
        ...

    def requeue(self, job: QueuedDelivery, *, visible_at: datetime, error: str) -> None:
        ...

    def mark_dead(self, job: QueuedDelivery, *, error: str) -> None:
        ...
