"""
Channel adapters: Resend (email) and Twilio (SMS) over plain HTTP.

Design:
- Uses requests under the hood; failures are classified into transient vs.
  permanent errors for the worker's retry policy.
- Factories return None when a channel is not configured so the worker can
  skip it instead of failing.

Security:
- Do not log API keys, recipient addresses or phone numbers.
"""

from __future__ import annotations

from html import escape
import logging
import os
import re
from typing import Optional

import requests

from .ports import DeliveryContext, DeliveryPermanentError, DeliveryTransientError

LOG = logging.getLogger(__name__)

RESEND_URL = "https://api.resend.com/emails"
TWILIO_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"
DEFAULT_TIMEOUT = 10


def _classify(resp: requests.Response, channel: str) -> None:
    if resp.status_code < 300:
        return
    if resp.status_code == 429 or resp.status_code >= 500:
        raise DeliveryTransientError(f"{channel}_http_{resp.status_code}")
    raise DeliveryPermanentError(f"{channel}_http_{resp.status_code}")


def _provider_id(resp: requests.Response, key: str) -> str:
    """Provider message id from a 2xx body; the message is already sent, so a bad body only loses the id."""
    try:
        body = resp.json()
    except ValueError:
        LOG.info("Provider returned a non-JSON body status=%s", resp.status_code)
        return ""
    return str(body.get(key) or "") if isinstance(body, dict) else ""


def normalize_phone(raw: str | None) -> Optional[str]:
    """Digits only, then `+1` prefix unless the number already starts with 1."""
    digits = re.sub(r"\D", "", raw or "")
    if not digits:
        return None
    if digits.startswith("1"):
        return f"+{digits}"
    return f"+1{digits}"


def render_email(ctx: DeliveryContext, *, app_url: str | None = None) -> tuple[str, str, str]:
    """Return (subject, text, html) for a notification email."""
    greeting = f"Hello {ctx.full_name}," if ctx.full_name else "Hello,"
    link = (app_url or "").rstrip("/")
    text = f"{greeting}\n\n{ctx.message}\n"
    if link:
        text += f"\nOpen EduPortal: {link}\n"
    html = f"<p>{escape(greeting)}</p><p>{escape(ctx.message)}</p>"
    if link:
        html += f'<p><a href="{escape(link)}">Open EduPortal</a></p>'
    return f"EduPortal: {ctx.title}", text, html


def render_sms(ctx: DeliveryContext) -> str:
    return f"EduPortal: {ctx.title} - {ctx.message}"[:320]


class ResendEmailSender:
    def __init__(self, api_key: str, sender: str, *, session: requests.Session | None = None) -> None:
        self._api_key = api_key
        self._sender = sender
        self._session = session or requests.Session()

    def send(self, *, to: str, subject: str, text: str, html: str) -> str:
        payload = {"from": self._sender, "to": [to], "subject": subject, "text": text, "html": html}
        try:
            resp = self._session.post(
                RESEND_URL,
                headers={"Authorization": f"Bearer {self._api_key}", "Content-Type": "application/json"},
                json=payload,
                timeout=DEFAULT_TIMEOUT,
            )
        except requests.RequestException as exc:
            raise DeliveryTransientError("email_unreachable") from exc
        _classify(resp, "email")
        return _provider_id(resp, "id")


class TwilioSmsSender:
    def __init__(self, account_sid: str, auth_token: str, from_number: str, *, session: requests.Session | None = None) -> None:
        self._sid = account_sid
        self._token = auth_token
        self._from = from_number
        self._session = session or requests.Session()

    def send(self, *, to: str, body: str) -> str:
        try:
            resp = self._session.post(
                TWILIO_URL.format(sid=self._sid),
                auth=(self._sid, self._token),
                data={"From": self._from, "To": to, "Body": body},
                timeout=DEFAULT_TIMEOUT,
            )
        except requests.RequestException as exc:
            raise DeliveryTransientError("sms_unreachable") from exc
        _classify(resp, "sms")
        return _provider_id(resp, "sid")


def build_email_sender_from_env() -> Optional[ResendEmailSender]:
    api_key = (os.getenv("RESEND_API_KEY") or "").strip()
    sender = (os.getenv("NOTIFY_EMAIL_FROM") or "").strip()
    if not api_key or not sender:
        LOG.info("notifications.email disabled (RESEND_API_KEY/NOTIFY_EMAIL_FROM missing)")
        return None
    return ResendEmailSender(api_key, sender)


def build_sms_sender_from_env() -> Optional[TwilioSmsSender]:
    sid = (os.getenv("TWILIO_ACCOUNT_SID") or "").strip()
    token = (os.getenv("TWILIO_AUTH_TOKEN") or "").strip()
    number = (os.getenv("TWILIO_PHONE_NUMBER") or "").strip()
    if not sid or not token or not number:
        LOG.info("notifications.sms disabled (TWILIO_* missing)")
        return None
    return TwilioSmsSender(sid, token, number)
