from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from kiosk.domain.dto import ChannelResult, CompletionResult, NotificationOutcome, ProcessorStatus, VerifyStatusResult
from kiosk.domain.models import (
    BrandingSettings,
    CaptureInputMode,
    CaptureSettings,
    EventSnapshot,
    EventSummary,
    LogLevel,
    PresetSnapshot,
    PromptChoice,
    SubmissionPage,
    SubmissionSnapshot,
    SubmissionStatus,
)


class ApiModel(BaseModel):
    """Wire models speak camelCase; Python code keeps snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ErrorResponse(BaseModel):
    detail: str
    code: str | None = None


class WorkerMetrics(BaseModel):
    started: bool
    stopped: bool
    ticks_total: int
    resets_total: int
    idle_ticks_total: int
    errors_total: int


class HealthResponse(BaseModel):
    status: str
    role: str
    mode: str


class ReadyResponse(BaseModel):
    status: str
    role: str
    mode: str
    worker_loop_enabled: bool
    worker_loop_ready: bool
    worker_metrics: WorkerMetrics


class ApiHealthResponse(ApiModel):
    status: str = "ok"
    message: str = "Server is running"


class MessageResponse(ApiModel):
    message: str


class LoginRequest(ApiModel):
    password: str = ""


class LoginResponse(ApiModel):
    token: str
    role: Literal["admin", "capture"]


class GeneratedImageModel(ApiModel):
    url: str
    filename: str
    created_at: datetime


class ProcessingLogModel(ApiModel):
    timestamp: datetime
    message: str
    level: LogLevel


class SubmissionResponse(ApiModel):
    id: str
    event_id: str
    name: str
    email: str
    phone: str
    photo: str
    prompt: str
    custom_text: str
    status: SubmissionStatus
    approved_at: datetime | None = None
    processing_started_at: datetime | None = None
    processed_at: datetime | None = None
    retry_count: int
    failure_reason: str | None = None
    generated_images: list[GeneratedImageModel] = Field(default_factory=list)
    processing_logs: list[ProcessingLogModel] = Field(default_factory=list)
    created_at: datetime

    @classmethod
    def from_domain(cls, submission: SubmissionSnapshot) -> SubmissionResponse:
        return cls(
            id=submission.submission_id,
            event_id=submission.event_id,
            name=submission.name,
            email=submission.email,
            phone=submission.phone,
            photo=submission.photo_url,
            prompt=submission.prompt,
            custom_text=submission.custom_text,
            status=submission.status,
            approved_at=submission.approved_at,
            processing_started_at=submission.processing_started_at,
            processed_at=submission.processed_at,
            retry_count=submission.retry_count,
            failure_reason=submission.failure_reason,
            generated_images=[
                GeneratedImageModel(url=image.url, filename=image.filename, created_at=image.created_at)
                for image in submission.generated_images
            ],
            processing_logs=[
                ProcessingLogModel(timestamp=entry.timestamp, message=entry.message, level=entry.level)
                for entry in submission.processing_logs
            ],
            created_at=submission.created_at,
        )


class CreateSubmissionRequest(ApiModel):
    event_id: str = ""
    name: str = Field(default="", max_length=256)
    photo: str = ""
    prompt: str = ""
    email: str = Field(default="", max_length=320)
    phone: str = Field(default="", max_length=64)
    custom_text: str = ""


class CreateSubmissionResponse(ApiModel):
    message: str = "Submission saved successfully"
    submission_id: str


class Pagination(ApiModel):
    total: int
    limit: int
    skip: int
    has_more: bool


class SubmissionListResponse(ApiModel):
    submissions: list[SubmissionResponse]
    pagination: Pagination

    @classmethod
    def from_domain(cls, page: SubmissionPage) -> SubmissionListResponse:
        return cls(
            submissions=[SubmissionResponse.from_domain(item) for item in page.items],
            pagination=Pagination(total=page.total, limit=page.limit, skip=page.offset, has_more=page.has_more),
        )


class ThumbnailResponse(ApiModel):
    photo: str
    name: str


class UpdateSubmissionRequest(ApiModel):
    photo: str | None = None
    prompt: str | None = None
    custom_text: str | None = None
    processing_started_at: datetime | None = None


class StatusUpdateRequest(ApiModel):
    status: SubmissionStatus


class AppendLogRequest(ApiModel):
    message: str = Field(min_length=1)
    level: LogLevel = LogLevel.INFO


class FailSubmissionRequest(ApiModel):
    reason: str = ""


class GeneratedImagePayloadModel(ApiModel):
    data: str = Field(min_length=1)
    filename: str = Field(min_length=1, max_length=512)
    created_at: datetime | None = None


class ReportImagesRequest(ApiModel):
    generated_images: list[GeneratedImagePayloadModel] = Field(min_length=1)


class ChannelResultModel(ApiModel):
    sent: bool
    to: str | None = None
    reason: str | None = None
    error: str | None = None

    @classmethod
    def from_domain(cls, result: ChannelResult | None) -> ChannelResultModel | None:
        if result is None:
            return None
        return cls(sent=result.sent, to=result.to, reason=result.reason, error=result.error)


class NotificationOutcomeModel(ApiModel):
    email: ChannelResultModel | None = None
    sms: ChannelResultModel | None = None

    @classmethod
    def from_domain(cls, outcome: NotificationOutcome | None) -> NotificationOutcomeModel | None:
        if outcome is None:
            return None
        return cls(email=ChannelResultModel.from_domain(outcome.email), sms=ChannelResultModel.from_domain(outcome.sms))


class ReportImagesResponse(ApiModel):
    submission: SubmissionResponse
    uploaded: int
    skipped: list[str]
    notifications: NotificationOutcomeModel | None = None

    @classmethod
    def from_domain(cls, result: CompletionResult) -> ReportImagesResponse:
        return cls(
            submission=SubmissionResponse.from_domain(result.submission),
            uploaded=result.uploaded,
            skipped=list(result.skipped),
            notifications=NotificationOutcomeModel.from_domain(result.notifications),
        )


class StaleScanResponse(ApiModel):
    reset: int
    submissions: list[SubmissionResponse]


class VerifyStatusResponse(ApiModel):
    fixed: bool
    message: str
    submission: SubmissionResponse

    @classmethod
    def from_domain(cls, result: VerifyStatusResult) -> VerifyStatusResponse:
        return cls(
            fixed=result.fixed,
            message=result.message,
            submission=SubmissionResponse.from_domain(result.submission),
        )


class PresetRequest(ApiModel):
    name: str = ""
    prompt: str = ""
    custom_text: str = ""


class PresetResponse(ApiModel):
    id: str
    name: str
    prompt: str
    custom_text: str

    @classmethod
    def from_domain(cls, preset: PresetSnapshot) -> PresetResponse:
        return cls(id=preset.preset_id, name=preset.name, prompt=preset.prompt, custom_text=preset.custom_text)


class PromptChoiceModel(ApiModel):
    name: str = ""
    value: str = ""


class CaptureSettingsModel(ApiModel):
    prompt_mode: CaptureInputMode = CaptureInputMode.FREE
    locked_prompt_title: str = ""
    locked_prompt_value: str = ""
    prompt_presets: list[PromptChoiceModel] = Field(default_factory=list)
    custom_text_mode: CaptureInputMode = CaptureInputMode.FREE
    locked_custom_text_value: str = ""
    custom_text_presets: list[PromptChoiceModel] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, settings: CaptureSettings) -> CaptureSettingsModel:
        return cls(
            prompt_mode=settings.prompt_mode,
            locked_prompt_title=settings.locked_prompt_title,
            locked_prompt_value=settings.locked_prompt_value,
            prompt_presets=[PromptChoiceModel(name=c.name, value=c.value) for c in settings.prompt_presets],
            custom_text_mode=settings.custom_text_mode,
            locked_custom_text_value=settings.locked_custom_text_value,
            custom_text_presets=[PromptChoiceModel(name=c.name, value=c.value) for c in settings.custom_text_presets],
        )

    def to_domain(self) -> CaptureSettings:
        return CaptureSettings(
            prompt_mode=self.prompt_mode,
            locked_prompt_title=self.locked_prompt_title,
            locked_prompt_value=self.locked_prompt_value,
            prompt_presets=tuple(PromptChoice(name=c.name, value=c.value) for c in self.prompt_presets),
            custom_text_mode=self.custom_text_mode,
            locked_custom_text_value=self.locked_custom_text_value,
            custom_text_presets=tuple(PromptChoice(name=c.name, value=c.value) for c in self.custom_text_presets),
        )


class BrandingModel(ApiModel):
    enabled: bool = False
    logo_url: str = ""
    position_x: float = Field(default=50.0, ge=0, le=100)
    position_y: float = Field(default=90.0, ge=0, le=100)
    size: float = Field(default=20.0, gt=0, le=100)
    opacity: float = Field(default=100.0, ge=0, le=100)
    lock_aspect_ratio: bool = True

    @classmethod
    def from_domain(cls, branding: BrandingSettings) -> BrandingModel:
        return cls(
            enabled=branding.enabled,
            logo_url=branding.logo_url,
            position_x=branding.position_x,
            position_y=branding.position_y,
            size=branding.size,
            opacity=branding.opacity,
            lock_aspect_ratio=branding.lock_aspect_ratio,
        )

    def to_domain(self) -> BrandingSettings:
        return BrandingSettings(
            enabled=self.enabled,
            logo_url=self.logo_url,
            position_x=self.position_x,
            position_y=self.position_y,
            size=self.size,
            opacity=self.opacity,
            lock_aspect_ratio=self.lock_aspect_ratio,
        )


class CreateEventRequest(ApiModel):
    name: str = ""
    event_date: datetime
    description: str = ""
    capture_settings: CaptureSettingsModel | None = None
    branding: BrandingModel | None = None


class UpdateEventRequest(ApiModel):
    name: str | None = None
    event_date: datetime | None = None
    description: str | None = None
    capture_settings: CaptureSettingsModel | None = None
    branding: BrandingModel | None = None


class ArchiveEventRequest(ApiModel):
    is_archived: bool = True


class EventResponse(ApiModel):
    id: str
    name: str
    description: str
    event_date: datetime
    is_archived: bool
    capture_settings: CaptureSettingsModel
    branding: BrandingModel
    created_at: datetime
    updated_at: datetime
    pending_count: int | None = None
    total_count: int | None = None

    @classmethod
    def from_domain(cls, event: EventSnapshot) -> EventResponse:
        return cls(
            id=event.event_id,
            name=event.name,
            description=event.description,
            event_date=event.event_date,
            is_archived=event.is_archived,
            capture_settings=CaptureSettingsModel.from_domain(event.capture_settings),
            branding=BrandingModel.from_domain(event.branding),
            created_at=event.created_at,
            updated_at=event.updated_at,
        )

    @classmethod
    def from_summary(cls, summary: EventSummary) -> EventResponse:
        response = cls.from_domain(summary.event)
        response.pending_count = summary.pending_count
        response.total_count = summary.total_count
        return response


class HeartbeatResponse(ApiModel):
    success: bool = True
    timestamp: datetime


class ProcessorStatusResponse(ApiModel):
    is_healthy: bool
    last_heartbeat: datetime | None = None
    seconds_since_heartbeat: float | None = None
    stuck_count: int = 0

    @classmethod
    def from_domain(cls, status: ProcessorStatus) -> ProcessorStatusResponse:
        return cls(
            is_healthy=status.is_healthy,
            last_heartbeat=status.last_heartbeat,
            seconds_since_heartbeat=status.seconds_since_heartbeat,
            stuck_count=status.stuck_count,
        )
