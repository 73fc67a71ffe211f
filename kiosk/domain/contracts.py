from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable

from kiosk.domain.dto import NotificationOutcome
from kiosk.domain.models import (
    BrandingSettings,
    EventSnapshot,
    EventSummary,
    EventUpdate,
    NewEvent,
    NewSubmission,
    PresetSnapshot,
    SubmissionListQuery,
    SubmissionPage,
    SubmissionSnapshot,
    SubmissionStatus,
    SubmissionUpdate,
)

QUEUE_ORDER_CONTRACT = "WHERE status = 'approved' ORDER BY approved_at ASC, retry_count ASC LIMIT 1"
STORAGE_FOLDERS = (
    "submissions",
    "results",
)


@runtime_checkable
class SubmissionRepository(Protocol):
    """Record store shared by the kiosk, the operator and the processor.

    Every submission write is a single-record update. When `expected_status`
    is given the write is conditional on it and raises DomainConflictError on
    mismatch; there are no multi-record transactions.
    """

    async def create_submission(self, *, record: NewSubmission) -> SubmissionSnapshot: ...

    async def get_submission(self, *, submission_id: str) -> SubmissionSnapshot | None: ...

    async def list_submissions(self, *, query: SubmissionListQuery) -> SubmissionPage: ...

    async def update_submission(
        self,
        *,
        submission_id: str,
        update: SubmissionUpdate,
        expected_status: SubmissionStatus | None = None,
    ) -> SubmissionSnapshot: ...

    async def delete_submission(self, *, submission_id: str) -> bool: ...

    # Queue-claim read: oldest approved first, least retried on ties.
    async def next_approved(self) -> SubmissionSnapshot | None: ...

    async def list_stale_processing(self, *, started_before: datetime) -> list[SubmissionSnapshot]: ...

    async def count_submissions(
        self,
        *,
        event_id: str,
        status: SubmissionStatus | None = None,
    ) -> int: ...

    async def count_photo_references(self, *, photo_url: str) -> int: ...

    async def create_event(self, *, record: NewEvent) -> EventSnapshot: ...

    async def get_event(self, *, event_id: str) -> EventSnapshot | None: ...

    async def list_events(self, *, include_archived: bool) -> list[EventSummary]: ...

    async def update_event(self, *, event_id: str, update: EventUpdate) -> EventSnapshot | None: ...

    async def delete_event(self, *, event_id: str) -> bool: ...

    async def create_preset(self, *, name: str, prompt: str, custom_text: str) -> PresetSnapshot: ...

    async def list_presets(self) -> list[PresetSnapshot]: ...

    async def delete_preset(self, *, preset_id: str) -> bool: ...

    async def record_processor_heartbeat(self, *, at: datetime) -> None: ...

    async def get_processor_heartbeat(self) -> datetime | None: ...


@runtime_checkable
class ObjectStore(Protocol):
    """Binary image storage returning stable public URLs."""

    async def put(self, payload: bytes, content_type: str, *, folder: str = "submissions") -> str: ...

    # Best-effort: implementations log and swallow errors.
    async def delete(self, url: str) -> None: ...


@runtime_checkable
class ImageFetcher(Protocol):
    async def fetch(self, url: str) -> bytes: ...


@runtime_checkable
class BrandingCompositor(Protocol):
    async def composite(self, image: bytes, branding: BrandingSettings) -> bytes: ...


@runtime_checkable
class NotificationDispatcher(Protocol):
    async def notify(self, submission: SubmissionSnapshot, event: EventSnapshot | None) -> NotificationOutcome: ...
