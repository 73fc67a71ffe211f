from __future__ import annotations

from dataclasses import dataclass, field
import itertools

from kiosk.domain.contracts import STORAGE_FOLDERS
from kiosk.domain.dto import ChannelResult, NotificationOutcome
from kiosk.domain.media import extension_for
from kiosk.domain.models import BrandingSettings, EventSnapshot, SubmissionSnapshot

STUB_URL_PREFIX = "memory://"


@dataclass
class StubObjectStore:
    objects: dict[str, bytes] = field(default_factory=dict)
    deleted: list[str] = field(default_factory=list)
    fail_puts: int = 0
    _counter: itertools.count = field(default_factory=lambda: itertools.count(1), repr=False)

    async def put(self, payload: bytes, content_type: str, *, folder: str = "submissions") -> str:
        if folder not in STORAGE_FOLDERS:
            raise ValueError(f"unknown storage folder: {folder}")
        if self.fail_puts > 0:
            self.fail_puts -= 1
            raise RuntimeError("stub upload failure")
        url = f"{STUB_URL_PREFIX}{folder}/{next(self._counter):06d}.{extension_for(content_type)}"
        self.objects[url] = payload
        return url

    async def delete(self, url: str) -> None:
        # Unknown urls are ignored like a real bucket delete.
        self.deleted.append(url)
        self.objects.pop(url, None)


@dataclass
class StubImageFetcher:
    images: dict[str, bytes] = field(default_factory=dict)

    async def fetch(self, url: str) -> bytes:
        payload = self.images.get(url)
        if payload is None:
            raise KeyError(f"image not found: {url}")
        return payload


@dataclass
class StubCompositor:
    calls: list[BrandingSettings] = field(default_factory=list)
    fail: bool = False

    async def composite(self, image: bytes, branding: BrandingSettings) -> bytes:
        self.calls.append(branding)
        if self.fail:
            raise RuntimeError("stub branding failure")
        return b"branded:" + image


@dataclass
class StubNotificationDispatcher:
    sent: list[str] = field(default_factory=list)
    fail: bool = False

    async def notify(self, submission: SubmissionSnapshot, event: EventSnapshot | None) -> NotificationOutcome:
        if self.fail:
            raise RuntimeError("stub notification failure")
        self.sent.append(submission.submission_id)
        return NotificationOutcome(
            email=ChannelResult(sent=True, to=submission.email) if submission.email else None,
            sms=ChannelResult(sent=True, to=submission.phone) if submission.phone else None,
        )
