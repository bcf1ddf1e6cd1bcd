"""Notifications and the polling feed.

Why:
    In-app notifications are plain rows; delivery by email/SMS happens
    asynchronously through the `notification_deliveries` queue drained by the
    worker in `notifications.workers`. The feed replaces realtime
    subscriptions: clients poll with a `since` cursor and receive only newer
    announcements, messages and notifications plus unread counters.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, List, Optional

from ..errors import RecordNotFoundError, ValidationError
from ..gateway import Actor, TableGateway
from .common import (
    Caller,
    clean_text,
    enrolled_class_ids,
    parse_timestamp,
    require_text,
    require_uuid,
    utcnow_iso,
)

logger = logging.getLogger("eduportal.school.notifications")

NOTIFICATION_TYPES = ("info", "success", "warning", "error", "assignment", "report", "approval", "message")
FEED_MESSAGE_LIMIT = 20


@dataclass
class NotificationService:
    gateway: TableGateway

    def notify(
        self,
        actor: Actor,
        user_id: str,
        *,
        title: object,
        message: object,
        type: object = "info",
    ) -> dict:
        """Insert a notification for `user_id` and queue its delivery.

        Queueing failures are logged; the notification itself still stands.
        """
        kind = clean_text(type, max_len=32, code="invalid_type") or "info"
        if kind not in NOTIFICATION_TYPES:
            raise ValidationError(code="invalid_type")
        row = self.gateway.insert(
            actor,
            "notifications",
            [
                {
                    "user_id": require_uuid(user_id, code="invalid_user_id"),
                    "title": require_text(title, max_len=200, code="invalid_title"),
                    "message": require_text(message, max_len=4000, code="invalid_message"),
                    "type": kind,
                }
            ],
        )[0]
        self._enqueue_delivery(str(row["id"]))
        return row

    def _enqueue_delivery(self, notification_id: str) -> None:
        try:
            self.gateway.insert(Actor.system(), "notification_deliveries", [{"notification_id": notification_id}])
        except Exception as exc:
            logger.warning("Delivery enqueue failed notification=%s err=%s", notification_id, exc.__class__.__name__)

    def list_for(self, caller: Caller, *, limit: int = 50) -> List[dict]:
        return self.gateway.select(
            caller.actor, "notifications", eq={"user_id": caller.sub}, order_by="created_at", desc=True, limit=limit
        )

    def mark_read(self, caller: Caller, notification_id: str) -> dict:
        notification_id = require_uuid(notification_id, code="invalid_notification_id")
        rows = self.gateway.update(
            caller.actor, "notifications", {"read": True}, eq={"id": notification_id, "user_id": caller.sub}
        )
        if not rows:
            raise RecordNotFoundError(code="notification_not_found")
        return rows[0]

    def mark_all_read(self, caller: Caller) -> int:
        rows = self.gateway.update(
            caller.actor, "notifications", {"read": True}, eq={"user_id": caller.sub, "read": False}
        )
        return len(rows)

    def feed(self, caller: Caller, *, since: Optional[Any] = None) -> dict:
        """Collect everything new for the caller since the cursor.

        Returns announcements of enrolled classes, the latest received
        messages and the caller's notifications, each newest first, plus
        unread counters and the cursor for the next poll.
        """
        server_time = utcnow_iso()
        cursor = parse_timestamp(since, code="invalid_since")
        newer = {"created_at": cursor} if cursor else None

        class_ids = enrolled_class_ids(self.gateway, caller.actor, caller.sub)
        announcements: List[dict] = []
        if class_ids:
            announcements = self.gateway.select(
                caller.actor,
                "announcements",
                in_={"class_id": class_ids},
                gt=newer,
                order_by="created_at",
                desc=True,
                limit=50,
            )
        messages = self.gateway.select(
            caller.actor,
            "messages",
            eq={"receiver_id": caller.sub},
            gt=newer,
            order_by="created_at",
            desc=True,
            limit=FEED_MESSAGE_LIMIT,
        )
        notifications = self.gateway.select(
            caller.actor,
            "notifications",
            eq={"user_id": caller.sub},
            gt=newer,
            order_by="created_at",
            desc=True,
            limit=50,
        )
        unread_notifications = self.gateway.select(
            caller.actor, "notifications", columns=["id"], eq={"user_id": caller.sub, "read": False}
        )
        unread_messages = self.gateway.select(
            caller.actor, "messages", columns=["id"], eq={"receiver_id": caller.sub, "read": False}
        )
        return {
            "announcements": announcements,
            "messages": messages,
            "notifications": notifications,
            "unread": {"notifications": len(unread_notifications), "messages": len(unread_messages)},
            "server_time": server_time,
        }
