from __future__ import annotations

from dataclasses import dataclass, field
from html import escape
import logging
import re
from typing import Any

import httpx

from kiosk.domain.dto import ChannelResult, NotificationOutcome
from kiosk.domain.models import EventSnapshot, SubmissionSnapshot
from kiosk.settings import NotificationSettings

logger = logging.getLogger("kiosk.notifications")

SENDGRID_SEND_URL = "https://api.sendgrid.com/v3/mail/send"
TWILIO_MESSAGES_URL = "https://api.twilio.com/2010-04-01/Accounts/{account_sid}/Messages.json"

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(raw: str) -> str:
    """Format a typed phone number as E.164, assuming US for 10 digits."""
    digits = _NON_DIGITS.sub("", raw)
    if len(digits) == 10:
        return f"+1{digits}"
    return f"+{digits}"


def gallery_url(base_url: str, submission_id: str) -> str:
    return f"{base_url.rstrip('/')}/gallery.html?id={submission_id}"


def _event_name(event: EventSnapshot | None, default: str) -> str:
    if event is None or not event.name:
        return default
    return event.name


def build_email_message(
    settings: NotificationSettings,
    submission: SubmissionSnapshot,
    event: EventSnapshot | None,
) -> dict[str, Any]:
    link = gallery_url(settings.base_url, submission.submission_id)
    event_name = _event_name(event, "Your Event")
    text = (
        f"Hi {submission.name},\n\n"
        f"Your personalized stickers from {event_name} are ready!\n\n"
        f"View and download them here: {link}\n"
    )
    html = (
        f"<p>Hi <strong>{escape(submission.name)}</strong>,</p>"
        f"<p>Your personalized stickers from <strong>{escape(event_name)}</strong> are ready.</p>"
        f'<p><a href="{escape(link)}">View Your Stickers</a></p>'
        f"<p>Or copy this link: {escape(link)}</p>"
    )
    return {
        "personalizations": [{"to": [{"email": submission.email}]}],
        "from": {"email": settings.sendgrid_from_email, "name": settings.sendgrid_from_name},
        "subject": f"Your Stickers from {event_name} are Ready!",
        "content": [
            {"type": "text/plain", "value": text},
            {"type": "text/html", "value": html},
        ],
    }


def build_sms_body(settings: NotificationSettings, submission: SubmissionSnapshot, event: EventSnapshot | None) -> str:
    link = gallery_url(settings.base_url, submission.submission_id)
    event_name = _event_name(event, "your event")
    return f"Hi {submission.name}! Your stickers from {event_name} are ready. View & download here: {link}"


@dataclass
class HttpNotificationDispatcher:
    """Completion notices over SendGrid (email) and Twilio (SMS) REST APIs."""

    settings: NotificationSettings
    transport: httpx.AsyncBaseTransport | None = field(default=None, repr=False)
    timeout_seconds: float = 10.0

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport, timeout=self.timeout_seconds)

    async def notify(self, submission: SubmissionSnapshot, event: EventSnapshot | None) -> NotificationOutcome:
        email = await self.send_email(submission, event) if submission.email else None
        sms = await self.send_sms(submission, event) if submission.phone else None
        return NotificationOutcome(email=email, sms=sms)

    async def send_email(self, submission: SubmissionSnapshot, event: EventSnapshot | None) -> ChannelResult:
        if not self.settings.email_configured or not submission.email:
            logger.info("email notification skipped", extra={"submission_id": submission.submission_id})
            return ChannelResult(sent=False, reason="No API key or email address")

        message = build_email_message(self.settings, submission, event)
        try:
            async with self._client() as client:
                response = await client.post(
                    SENDGRID_SEND_URL,
                    json=message,
                    headers={"Authorization": f"Bearer {self.settings.sendgrid_api_key}"},
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "email notification rejected",
                extra={"submission_id": submission.submission_id, "status_code": exc.response.status_code},
            )
            return ChannelResult(sent=False, error=f"sendgrid returned {exc.response.status_code}")
        except httpx.RequestError as exc:
            logger.error("email notification transport error", extra={"submission_id": submission.submission_id})
            return ChannelResult(sent=False, error=str(exc) or exc.__class__.__name__)

        logger.info("email notification sent", extra={"submission_id": submission.submission_id})
        return ChannelResult(sent=True, to=submission.email)

    async def send_sms(self, submission: SubmissionSnapshot, event: EventSnapshot | None) -> ChannelResult:
        if not self.settings.sms_configured or not submission.phone:
            logger.info("sms notification skipped", extra={"submission_id": submission.submission_id})
            return ChannelResult(sent=False, reason="No Twilio config or phone number")

        to = normalize_phone(submission.phone)
        url = TWILIO_MESSAGES_URL.format(account_sid=self.settings.twilio_account_sid)
        try:
            async with self._client() as client:
                response = await client.post(
                    url,
                    data={
                        "To": to,
                        "From": self.settings.twilio_phone_number,
                        "Body": build_sms_body(self.settings, submission, event),
                    },
                    auth=(self.settings.twilio_account_sid, self.settings.twilio_auth_token),
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "sms notification rejected",
                extra={"submission_id": submission.submission_id, "status_code": exc.response.status_code},
            )
            return ChannelResult(sent=False, error=f"twilio returned {exc.response.status_code}")
        except httpx.RequestError as exc:
            logger.error("sms notification transport error", extra={"submission_id": submission.submission_id})
            return ChannelResult(sent=False, error=str(exc) or exc.__class__.__name__)

        logger.info("sms notification sent", extra={"submission_id": submission.submission_id})
        return ChannelResult(sent=True, to=to)
