from __future__ import annotations

import asyncio
from datetime import UTC, datetime
import json
from urllib.parse import parse_qs

import httpx
import pytest

from kiosk.clients.notifications import (
    SENDGRID_SEND_URL,
    HttpNotificationDispatcher,
    build_email_message,
    gallery_url,
    normalize_phone,
)
from kiosk.domain.models import (
    BrandingSettings,
    CaptureSettings,
    EventSnapshot,
    SubmissionSnapshot,
    SubmissionStatus,
)
from kiosk.settings import NotificationSettings

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=UTC)

CONFIGURED = NotificationSettings(
    base_url="https://kiosk.example.com/",
    sendgrid_api_key="sg-key",
    sendgrid_from_email="stickers@example.com",
    twilio_account_sid="AC123",
    twilio_auth_token="tw-token",
    twilio_phone_number="+15550000000",
)


def _submission(*, email: str = "ada@example.com", phone: str = "(555) 123-4567") -> SubmissionSnapshot:
    return SubmissionSnapshot(
        submission_id="sub_42",
        event_id="evt_1",
        name="Ada",
        email=email,
        phone=phone,
        photo_url="memory://submissions/1.jpg",
        prompt="astronaut cat",
        custom_text="",
        status=SubmissionStatus.COMPLETED,
        approved_at=NOW,
        processing_started_at=NOW,
        processed_at=NOW,
        retry_count=0,
        failure_reason=None,
        generated_images=(),
        processing_logs=(),
        created_at=NOW,
    )


def _event() -> EventSnapshot:
    return EventSnapshot(
        event_id="evt_1",
        name="Launch <Party>",
        description="",
        event_date=NOW,
        is_archived=False,
        capture_settings=CaptureSettings(),
        branding=BrandingSettings(),
        created_at=NOW,
        updated_at=NOW,
    )


@pytest.mark.unit
@pytest.mark.parametrize(
    ("raw", "expected"),
    [("(555) 123-4567", "+15551234567"), ("+44 20 7946 0958", "+442079460958"), ("1-555-123-4567", "+15551234567")],
)
def test_normalize_phone(raw: str, expected: str) -> None:
    assert normalize_phone(raw) == expected


@pytest.mark.unit
def test_email_message_links_gallery_and_escapes_html() -> None:
    message = build_email_message(CONFIGURED, _submission(), _event())

    html = message["content"][1]["value"]
    assert message["personalizations"] == [{"to": [{"email": "ada@example.com"}]}]
    assert message["subject"] == "Your Stickers from Launch <Party> are Ready!"
    assert "Launch &lt;Party&gt;" in html
    assert gallery_url(CONFIGURED.base_url, "sub_42") == "https://kiosk.example.com/gallery.html?id=sub_42"
    assert "https://kiosk.example.com/gallery.html?id=sub_42" in message["content"][0]["value"]


@pytest.mark.unit
def test_notify_sends_email_and_sms() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(202 if request.url.host == "api.sendgrid.com" else 201, json={})

    dispatcher = HttpNotificationDispatcher(settings=CONFIGURED, transport=httpx.MockTransport(handler))

    outcome = asyncio.run(dispatcher.notify(_submission(), _event()))

    assert outcome.email is not None and outcome.email.sent is True
    assert outcome.sms is not None and outcome.sms.to == "+15551234567"
    email_request, sms_request = requests
    assert str(email_request.url) == SENDGRID_SEND_URL
    assert email_request.headers["Authorization"] == "Bearer sg-key"
    assert json.loads(email_request.content)["from"]["email"] == "stickers@example.com"
    assert "/Accounts/AC123/Messages.json" in str(sms_request.url)
    form = parse_qs(sms_request.content.decode("utf-8"))
    assert form["To"] == ["+15551234567"]
    assert form["From"] == ["+15550000000"]
    assert sms_request.headers["Authorization"].startswith("Basic ")


@pytest.mark.unit
def test_notify_reports_unconfigured_channels_without_calls() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError(f"unexpected call to {request.url}")

    dispatcher = HttpNotificationDispatcher(settings=NotificationSettings(), transport=httpx.MockTransport(handler))

    outcome = asyncio.run(dispatcher.notify(_submission(), None))

    assert outcome.email is not None and outcome.email.reason == "No API key or email address"
    assert outcome.sms is not None and outcome.sms.reason == "No Twilio config or phone number"


@pytest.mark.unit
def test_notify_skips_channels_without_contact_details() -> None:
    dispatcher = HttpNotificationDispatcher(settings=CONFIGURED)

    outcome = asyncio.run(dispatcher.notify(_submission(email="", phone=""), None))

    assert outcome.email is None
    assert outcome.sms is None


@pytest.mark.unit
def test_provider_errors_are_reported_not_raised() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "api.sendgrid.com":
            return httpx.Response(401, json={"errors": [{"message": "bad key"}]})
        raise httpx.ConnectError("twilio unreachable", request=request)

    dispatcher = HttpNotificationDispatcher(settings=CONFIGURED, transport=httpx.MockTransport(handler))

    outcome = asyncio.run(dispatcher.notify(_submission(), _event()))

    assert outcome.email is not None
    assert outcome.email.sent is False
    assert outcome.email.error == "sendgrid returned 401"
    assert outcome.sms is not None
    assert outcome.sms.sent is False
    assert outcome.sms.error == "twilio unreachable"
