from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum


# Canonical submission lifecycle states.
#
# IMPORTANT:
# - Keep this enum synchronized with kiosk/domain/lifecycle.py (TRANSITION_RULES).
# - Keep this enum synchronized with the DB status CHECK constraint in
#   db/migrations/000001_bootstrap.up.sql.
class SubmissionStatus(StrEnum):
    # Review states.
    PENDING = "pending"
    APPROVED = "approved"

    # In-progress state.
    PROCESSING = "processing"

    # Terminal states (escape hatch: add-to-queue).
    COMPLETED = "completed"
    REJECTED = "rejected"
    FAILED = "failed"


class LogLevel(StrEnum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class CaptureInputMode(StrEnum):
    FREE = "free"
    LOCKED = "locked"
    PRESETS = "presets"
    SUGGESTIONS = "suggestions"


@dataclass(frozen=True)
class GeneratedImage:
    url: str
    filename: str
    created_at: datetime


@dataclass(frozen=True)
class ProcessingLogEntry:
    timestamp: datetime
    message: str
    level: LogLevel = LogLevel.INFO


@dataclass(frozen=True)
class SubmissionSnapshot:
    submission_id: str
    event_id: str
    name: str
    email: str
    phone: str
    photo_url: str
    prompt: str
    custom_text: str
    status: SubmissionStatus
    approved_at: datetime | None
    processing_started_at: datetime | None
    processed_at: datetime | None
    retry_count: int
    failure_reason: str | None
    generated_images: tuple[GeneratedImage, ...]
    processing_logs: tuple[ProcessingLogEntry, ...]
    created_at: datetime


@dataclass(frozen=True)
class NewSubmission:
    event_id: str
    name: str
    photo_url: str
    prompt: str
    email: str = ""
    phone: str = ""
    custom_text: str = ""
    status: SubmissionStatus = SubmissionStatus.PENDING
    approved_at: datetime | None = None
    processing_logs: tuple[ProcessingLogEntry, ...] = ()


# Columns a SubmissionUpdate may touch besides status and logs.
UPDATABLE_SUBMISSION_FIELDS: frozenset[str] = frozenset(
    {
        "approved_at",
        "processing_started_at",
        "processed_at",
        "retry_count",
        "failure_reason",
        "generated_images",
        "photo_url",
        "prompt",
        "custom_text",
    }
)


@dataclass(frozen=True)
class SubmissionUpdate:
    """Single-record write. A `None` value in `changes` clears the column."""

    status: SubmissionStatus | None = None
    changes: Mapping[str, object] = field(default_factory=dict)
    append_logs: tuple[ProcessingLogEntry, ...] = ()

    def __post_init__(self) -> None:
        unknown = set(self.changes) - UPDATABLE_SUBMISSION_FIELDS
        if unknown:
            raise ValueError(f"unsupported submission fields: {', '.join(sorted(unknown))}")


@dataclass(frozen=True)
class SubmissionListQuery:
    event_id: str | None = None
    statuses: tuple[SubmissionStatus, ...] | None = None
    limit: int = 50
    offset: int = 0


@dataclass(frozen=True)
class SubmissionPage:
    items: list[SubmissionSnapshot]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + self.limit < self.total


@dataclass(frozen=True)
class PromptChoice:
    name: str
    value: str


@dataclass(frozen=True)
class CaptureSettings:
    prompt_mode: CaptureInputMode = CaptureInputMode.FREE
    locked_prompt_title: str = ""
    locked_prompt_value: str = ""
    prompt_presets: tuple[PromptChoice, ...] = ()
    custom_text_mode: CaptureInputMode = CaptureInputMode.FREE
    locked_custom_text_value: str = ""
    custom_text_presets: tuple[PromptChoice, ...] = ()


@dataclass(frozen=True)
class BrandingSettings:
    enabled: bool = False
    logo_url: str = ""
    # Logo centre as percent of canvas width/height.
    position_x: float = 50.0
    position_y: float = 90.0
    # Logo width as percent of canvas width.
    size: float = 20.0
    opacity: float = 100.0
    lock_aspect_ratio: bool = True


@dataclass(frozen=True)
class EventSnapshot:
    event_id: str
    name: str
    description: str
    event_date: datetime
    is_archived: bool
    capture_settings: CaptureSettings
    branding: BrandingSettings
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class EventSummary:
    event: EventSnapshot
    pending_count: int
    total_count: int


@dataclass(frozen=True)
class NewEvent:
    name: str
    event_date: datetime
    description: str = ""
    capture_settings: CaptureSettings = field(default_factory=CaptureSettings)
    branding: BrandingSettings = field(default_factory=BrandingSettings)


@dataclass(frozen=True)
class EventUpdate:
    name: str | None = None
    description: str | None = None
    event_date: datetime | None = None
    capture_settings: CaptureSettings | None = None
    branding: BrandingSettings | None = None
    is_archived: bool | None = None


@dataclass(frozen=True)
class PresetSnapshot:
    preset_id: str
    name: str
    prompt: str
    custom_text: str
