"""
Communication API routes: direct messages, notifications, the polling feed
and feedback submission.

Why:
    Clients poll `GET /api/feed?since=<server_time>` instead of holding a
    realtime subscription. Each response carries the cursor for the next poll
    and the unread counters for badges.

Permissions:
    Any authenticated user. Rows are always scoped to the caller.
"""
from __future__ import annotations

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field, field_validator

from school.services.messaging import MessagingService
from school.services.notifications import NotificationService
from school.services.wellbeing import WellbeingService

from .common import SERVICE_ERRORS, csrf_guard, error_response, get_gateway, json_private, require_roles

communication_router = APIRouter(tags=["Communication"])


def _authenticated_write(request: Request):
    caller, error = require_roles(request)
    if error:
        return None, error
    csrf = csrf_guard(request)
    if csrf:
        return None, csrf
    return caller, None


class MessagePayload(BaseModel):
    receiver_id: str | None = None
    message: str | None = Field(default=None, max_length=4000)

    @field_validator("receiver_id", "message")
    @classmethod
    def _strip_empty(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v if v else None
        return v


class FeedbackPayload(BaseModel):
    name: str | None = Field(default=None, max_length=200)
    message: str | None = Field(default=None, max_length=4000)


# --- Messages ----------------------------------------------------------------------------

@communication_router.get("/api/messages")
async def list_messages(request: Request):
    """Sent and received messages of the caller, newest first."""
    caller, error = require_roles(request)
    if error:
        return error
    try:
        rows = MessagingService(get_gateway()).inbox(caller)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="inbox")
    return json_private(rows)


@communication_router.post("/api/messages")
async def send_message(request: Request, payload: MessagePayload):
    """Send a message; 404 `receiver_not_found` when the recipient has no profile."""
    caller, error = _authenticated_write(request)
    if error:
        return error
    try:
        row = MessagingService(get_gateway()).send(caller, payload.receiver_id, payload.message)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="send_message")
    return json_private(row, status_code=201)


@communication_router.get("/api/messages/contacts")
async def list_contacts(request: Request):
    caller, error = require_roles(request)
    if error:
        return error
    try:
        rows = MessagingService(get_gateway()).contacts(caller)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="contacts")
    return json_private(rows)


@communication_router.get("/api/messages/with/{partner_id}")
async def conversation(request: Request, partner_id: str):
    """
    Thread with one partner, oldest first.

    Side effect:
        Unread messages from the partner are marked read (only those rows).
    """
    caller, error = require_roles(request)
    if error:
        return error
    try:
        rows = MessagingService(get_gateway()).conversation(caller, partner_id)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="conversation")
    return json_private(rows)


# --- Notifications & feed ---------------------------------------------------------------------

@communication_router.get("/api/notifications")
async def list_notifications(request: Request, limit: int = 50):
    caller, error = require_roles(request)
    if error:
        return error
    limit = max(1, min(200, int(limit or 50)))
    try:
        rows = NotificationService(get_gateway()).list_for(caller, limit=limit)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="list_notifications")
    return json_private(rows)


@communication_router.post("/api/notifications/{notification_id}/read")
async def mark_notification_read(request: Request, notification_id: str):
    caller, error = _authenticated_write(request)
    if error:
        return error
    try:
        row = NotificationService(get_gateway()).mark_read(caller, notification_id)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="mark_notification_read")
    return json_private(row)


@communication_router.post("/api/notifications/read-all")
async def mark_all_notifications_read(request: Request):
    caller, error = _authenticated_write(request)
    if error:
        return error
    try:
        updated = NotificationService(get_gateway()).mark_all_read(caller)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="mark_all_notifications_read")
    return json_private({"updated": updated})


@communication_router.get("/api/feed")
async def feed(request: Request, since: str | None = None):
    """Announcements, received messages and notifications newer than `since`."""
    caller, error = require_roles(request)
    if error:
        return error
    try:
        body = NotificationService(get_gateway()).feed(caller, since=since)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="feed")
    return json_private(body)


# --- Feedback ---------------------------------------------------------------------------------

@communication_router.post("/api/feedback")
async def submit_feedback(request: Request, payload: FeedbackPayload):
    caller, error = _authenticated_write(request)
    if error:
        return error
    try:
        row = WellbeingService(get_gateway()).submit_feedback(caller, payload.name, payload.message)
    except SERVICE_ERRORS as exc:
        return error_response(exc, operation="submit_feedback")
    return json_private(row, status_code=201)
