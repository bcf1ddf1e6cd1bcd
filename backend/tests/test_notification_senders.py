"""
Resend/Twilio adapters: request shape and error classification with a fake
requests session; phone normalization and message rendering.
"""
from __future__ import annotations

import pytest
import requests

from backend.notifications import senders
from backend.notifications.ports import DeliveryContext, DeliveryPermanentError, DeliveryTransientError


class _Resp:
    def __init__(self, status_code: int, body: dict | None = None) -> None:
        self.status_code = status_code
        self._body = body or {}

    def json(self):
        return self._body


class _Session:
    def __init__(self, resp: _Resp | None = None, exc: Exception | None = None) -> None:
        self.resp = resp
        self.exc = exc
        self.calls: list = []

    def post(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.exc:
            raise self.exc
        return self.resp


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("(555) 123-4567", "+15551234567"),
        ("1-555-123-4567", "+15551234567"),
        ("+44 20 7946 0958", "+1442079460958"),
        ("", None),
        (None, None),
        ("n/a", None),
    ],
)
def test_normalize_phone(raw, expected):
    assert senders.normalize_phone(raw) == expected


def test_resend_sender_posts_json_and_returns_id():
    session = _Session(_Resp(200, {"id": "em_123"}))
    sender = senders.ResendEmailSender("re_key", "EduPortal <noreply@school.edu>", session=session)
    assert sender.send(to="ada@school.edu", subject="S", text="T", html="<p>T</p>") == "em_123"
    url, kwargs = session.calls[0]
    assert url == senders.RESEND_URL
    assert kwargs["headers"]["Authorization"] == "Bearer re_key"
    assert kwargs["json"]["to"] == ["ada@school.edu"]
    assert kwargs["timeout"] == senders.DEFAULT_TIMEOUT


@pytest.mark.parametrize("status, error", [(429, DeliveryTransientError), (502, DeliveryTransientError), (422, DeliveryPermanentError)])
def test_resend_sender_classifies_http_errors(status, error):
    sender = senders.ResendEmailSender("k", "f@school.edu", session=_Session(_Resp(status)))
    with pytest.raises(error) as info:
        sender.send(to="a@school.edu", subject="S", text="T", html="H")
    assert str(info.value) == f"email_http_{status}"


def test_twilio_sender_network_error_is_transient():
    session = _Session(exc=requests.ConnectionError("boom"))
    sender = senders.TwilioSmsSender("AC1", "tok", "+15550000000", session=session)
    with pytest.raises(DeliveryTransientError):
        sender.send(to="+15551234567", body="hi")


def test_twilio_sender_uses_basic_auth_and_form_data():
    session = _Session(_Resp(201, {"sid": "SM9"}))
    sender = senders.TwilioSmsSender("AC1", "tok", "+15550000000", session=session)
    assert sender.send(to="+15551234567", body="hi") == "SM9"
    url, kwargs = session.calls[0]
    assert url.endswith("/Accounts/AC1/Messages.json")
    assert kwargs["auth"] == ("AC1", "tok")
    assert kwargs["data"] == {"From": "+15550000000", "To": "+15551234567", "Body": "hi"}


class _HtmlResp(_Resp):
    def json(self):
        raise ValueError("Expecting value: line 1 column 1")


def test_twilio_sender_non_json_success_body_keeps_message_sent():
    sender = senders.TwilioSmsSender("AC1", "tok", "+15550000000", session=_Session(_HtmlResp(201)))
    assert sender.send(to="+15551234567", body="hi") == ""


def test_render_sms_is_truncated():
    ctx = DeliveryContext(user_id="u", title="T", message="x" * 1000, type="info")
    assert len(senders.render_sms(ctx)) == 320


def test_factories_return_none_without_configuration(monkeypatch: pytest.MonkeyPatch):
    for name in ("RESEND_API_KEY", "NOTIFY_EMAIL_FROM", "TWILIO_ACCOUNT_SID", "TWILIO_AUTH_TOKEN", "TWILIO_PHONE_NUMBER"):
        monkeypatch.delenv(name, raising=False)
    assert senders.build_email_sender_from_env() is None
    assert senders.build_sms_sender_from_env() is None
    monkeypatch.setenv("RESEND_API_KEY", "re_key")
    monkeypatch.setenv("NOTIFY_EMAIL_FROM", "noreply@school.edu")
    assert isinstance(senders.build_email_sender_from_env(), senders.ResendEmailSender)
