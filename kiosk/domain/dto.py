from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from kiosk.domain.models import LogLevel, SubmissionSnapshot


@dataclass(frozen=True)
class CreateSubmissionCommand:
    event_id: str
    name: str
    photo: str
    prompt: str = ""
    email: str = ""
    phone: str = ""
    custom_text: str = ""


@dataclass(frozen=True)
class UpdateSubmissionFieldsCommand:
    submission_id: str
    photo: str | None = None
    prompt: str | None = None
    custom_text: str | None = None
    processing_started_at: datetime | None = None


@dataclass(frozen=True)
class AppendLogCommand:
    submission_id: str
    message: str
    level: LogLevel = LogLevel.INFO


@dataclass(frozen=True)
class GeneratedImagePayload:
    data: str
    filename: str
    created_at: datetime | None = None


@dataclass(frozen=True)
class ReportImagesCommand:
    submission_id: str
    images: tuple[GeneratedImagePayload, ...]


@dataclass(frozen=True)
class ChannelResult:
    sent: bool
    to: str | None = None
    reason: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class NotificationOutcome:
    email: ChannelResult | None = None
    sms: ChannelResult | None = None


@dataclass(frozen=True)
class CompletionResult:
    submission: SubmissionSnapshot
    uploaded: int
    skipped: tuple[str, ...]
    notifications: NotificationOutcome | None


@dataclass(frozen=True)
class StaleScanResult:
    reset: int
    submissions: list[SubmissionSnapshot]


@dataclass(frozen=True)
class VerifyStatusResult:
    fixed: bool
    message: str
    submission: SubmissionSnapshot


@dataclass(frozen=True)
class ProcessorStatus:
    is_healthy: bool
    last_heartbeat: datetime | None
    seconds_since_heartbeat: float | None
    stuck_count: int
