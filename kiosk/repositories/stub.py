from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime

from kiosk.domain.errors import DomainConflictError, DomainNotFoundError, DuplicateNameError
from kiosk.domain.ids import new_event_public_id, new_preset_public_id, new_submission_public_id
from kiosk.domain.models import (
    EventSnapshot,
    EventSummary,
    EventUpdate,
    GeneratedImage,
    NewEvent,
    NewSubmission,
    PresetSnapshot,
    ProcessingLogEntry,
    SubmissionListQuery,
    SubmissionPage,
    SubmissionSnapshot,
    SubmissionStatus,
    SubmissionUpdate,
)


@dataclass
class _SubmissionRow:
    id: int
    submission_id: str
    event_id: str
    name: str
    email: str
    phone: str
    photo_url: str
    prompt: str
    custom_text: str
    status: SubmissionStatus
    approved_at: datetime | None = None
    processing_started_at: datetime | None = None
    processed_at: datetime | None = None
    retry_count: int = 0
    failure_reason: str | None = None
    generated_images: list[GeneratedImage] = field(default_factory=list)
    processing_logs: list[ProcessingLogEntry] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))


@dataclass
class InMemorySubmissionRepository:
    """Non-network repository with deterministic behavior for local mode and tests."""

    submissions: dict[str, _SubmissionRow] = field(default_factory=dict)
    events: dict[str, EventSnapshot] = field(default_factory=dict)
    presets: dict[str, PresetSnapshot] = field(default_factory=dict)
    writes: list[tuple[str, SubmissionStatus | None]] = field(default_factory=list)
    processor_heartbeat: datetime | None = None
    next_submission_id: int = 1

    async def create_submission(self, *, record: NewSubmission) -> SubmissionSnapshot:
        submission_id = new_submission_public_id()
        row = _SubmissionRow(
            id=self.next_submission_id,
            submission_id=submission_id,
            event_id=record.event_id,
            name=record.name,
            email=record.email,
            phone=record.phone,
            photo_url=record.photo_url,
            prompt=record.prompt,
            custom_text=record.custom_text,
            status=record.status,
            approved_at=record.approved_at,
            processing_logs=list(record.processing_logs),
        )
        self.next_submission_id += 1
        self.submissions[submission_id] = row
        return _snapshot(row)

    async def get_submission(self, *, submission_id: str) -> SubmissionSnapshot | None:
        row = self.submissions.get(submission_id)
        if row is None:
            return None
        return _snapshot(row)

    async def list_submissions(self, *, query: SubmissionListQuery) -> SubmissionPage:
        rows = [
            row
            for row in self.submissions.values()
            if (query.event_id is None or row.event_id == query.event_id)
            and (query.statuses is None or row.status in set(query.statuses))
        ]
        rows.sort(key=lambda row: (row.created_at, row.id), reverse=True)
        start = query.offset
        end = query.offset + query.limit
        return SubmissionPage(
            items=[_snapshot(row) for row in rows[start:end]],
            total=len(rows),
            limit=query.limit,
            offset=query.offset,
        )

    async def update_submission(
        self,
        *,
        submission_id: str,
        update: SubmissionUpdate,
        expected_status: SubmissionStatus | None = None,
    ) -> SubmissionSnapshot:
        row = self.submissions.get(submission_id)
        if row is None:
            raise DomainNotFoundError("Submission not found")
        if expected_status is not None and row.status != expected_status:
            raise DomainConflictError(
                f"submission status changed concurrently: expected {expected_status}, found {row.status}"
            )

        if update.status is not None:
            row.status = update.status
        for name, value in update.changes.items():
            if name == "generated_images":
                row.generated_images = list(value or ())  # type: ignore[call-overload]
            else:
                setattr(row, name, value)
        row.processing_logs.extend(update.append_logs)
        self.writes.append((submission_id, update.status))
        return _snapshot(row)

    async def delete_submission(self, *, submission_id: str) -> bool:
        return self.submissions.pop(submission_id, None) is not None

    async def next_approved(self) -> SubmissionSnapshot | None:
        approved = [row for row in self.submissions.values() if row.status == SubmissionStatus.APPROVED]
        if not approved:
            return None
        approved.sort(key=_queue_sort_key)
        return _snapshot(approved[0])

    async def list_stale_processing(self, *, started_before: datetime) -> list[SubmissionSnapshot]:
        return [
            _snapshot(row)
            for row in self.submissions.values()
            if row.status == SubmissionStatus.PROCESSING
            and (row.processing_started_at is None or row.processing_started_at < started_before)
        ]

    async def count_submissions(
        self,
        *,
        event_id: str,
        status: SubmissionStatus | None = None,
    ) -> int:
        return sum(
            1
            for row in self.submissions.values()
            if row.event_id == event_id and (status is None or row.status == status)
        )

    async def count_photo_references(self, *, photo_url: str) -> int:
        return sum(1 for row in self.submissions.values() if row.photo_url == photo_url)

    async def create_event(self, *, record: NewEvent) -> EventSnapshot:
        now = datetime.now(tz=UTC)
        event = EventSnapshot(
            event_id=new_event_public_id(),
            name=record.name,
            description=record.description,
            event_date=record.event_date,
            is_archived=False,
            capture_settings=record.capture_settings,
            branding=record.branding,
            created_at=now,
            updated_at=now,
        )
        self.events[event.event_id] = event
        return event

    async def get_event(self, *, event_id: str) -> EventSnapshot | None:
        return self.events.get(event_id)

    async def list_events(self, *, include_archived: bool) -> list[EventSummary]:
        events = [event for event in self.events.values() if include_archived or not event.is_archived]
        events.sort(key=lambda event: event.event_date, reverse=True)
        return [
            EventSummary(
                event=event,
                pending_count=await self.count_submissions(event_id=event.event_id, status=SubmissionStatus.PENDING),
                total_count=await self.count_submissions(event_id=event.event_id),
            )
            for event in events
        ]

    async def update_event(self, *, event_id: str, update: EventUpdate) -> EventSnapshot | None:
        event = self.events.get(event_id)
        if event is None:
            return None
        changes = {
            name: value
            for name, value in (
                ("name", update.name),
                ("description", update.description),
                ("event_date", update.event_date),
                ("capture_settings", update.capture_settings),
                ("branding", update.branding),
                ("is_archived", update.is_archived),
            )
            if value is not None
        }
        updated = replace(event, **changes, updated_at=datetime.now(tz=UTC))
        self.events[event_id] = updated
        return updated

    async def delete_event(self, *, event_id: str) -> bool:
        return self.events.pop(event_id, None) is not None

    async def create_preset(self, *, name: str, prompt: str, custom_text: str) -> PresetSnapshot:
        if any(preset.name == name for preset in self.presets.values()):
            raise DuplicateNameError("Preset name already exists")
        preset = PresetSnapshot(
            preset_id=new_preset_public_id(),
            name=name,
            prompt=prompt,
            custom_text=custom_text,
        )
        self.presets[preset.preset_id] = preset
        return preset

    async def list_presets(self) -> list[PresetSnapshot]:
        return sorted(self.presets.values(), key=lambda preset: preset.name)

    async def delete_preset(self, *, preset_id: str) -> bool:
        return self.presets.pop(preset_id, None) is not None

    async def record_processor_heartbeat(self, *, at: datetime) -> None:
        self.processor_heartbeat = at

    async def get_processor_heartbeat(self) -> datetime | None:
        return self.processor_heartbeat


def _queue_sort_key(row: _SubmissionRow) -> tuple[bool, datetime, int, int]:
    # Mirrors ORDER BY approved_at ASC NULLS LAST, retry_count ASC.
    approved_at = row.approved_at or datetime.max.replace(tzinfo=UTC)
    return (row.approved_at is None, approved_at, row.retry_count, row.id)


def _snapshot(row: _SubmissionRow) -> SubmissionSnapshot:
    return SubmissionSnapshot(
        submission_id=row.submission_id,
        event_id=row.event_id,
        name=row.name,
        email=row.email,
        phone=row.phone,
        photo_url=row.photo_url,
        prompt=row.prompt,
        custom_text=row.custom_text,
        status=row.status,
        approved_at=row.approved_at,
        processing_started_at=row.processing_started_at,
        processed_at=row.processed_at,
        retry_count=row.retry_count,
        failure_reason=row.failure_reason,
        generated_images=tuple(row.generated_images),
        processing_logs=tuple(row.processing_logs),
        created_at=row.created_at,
    )
