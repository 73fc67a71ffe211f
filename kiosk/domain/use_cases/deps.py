from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from kiosk.domain.contracts import (
    BrandingCompositor,
    ImageFetcher,
    NotificationDispatcher,
    ObjectStore,
    SubmissionRepository,
)


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def as_utc(value: datetime) -> datetime:
    """Timestamps without an offset are taken to be UTC."""
    if value.tzinfo is None or value.utcoffset() is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


@dataclass(frozen=True)
class ServiceDeps:
    repository: SubmissionRepository
    object_store: ObjectStore
    notifier: NotificationDispatcher
    compositor: BrandingCompositor
    image_fetcher: ImageFetcher
    clock: Callable[[], datetime] = field(default=utc_now)
