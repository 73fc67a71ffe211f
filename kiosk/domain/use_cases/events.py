from __future__ import annotations

import logging

from kiosk.domain.errors import DomainNotFoundError, DomainValidationError
from kiosk.domain.models import (
    CaptureSettings,
    EventSnapshot,
    EventSummary,
    EventUpdate,
    NewEvent,
)
from kiosk.domain.use_cases.deps import ServiceDeps

logger = logging.getLogger("kiosk.events")


async def require_event(deps: ServiceDeps, event_id: str) -> EventSnapshot:
    event = await deps.repository.get_event(event_id=event_id)
    if event is None:
        raise DomainNotFoundError("Event not found")
    return event


async def list_events(deps: ServiceDeps, *, include_archived: bool = False) -> list[EventSummary]:
    return await deps.repository.list_events(include_archived=include_archived)


async def create_event(deps: ServiceDeps, record: NewEvent) -> EventSnapshot:
    if not record.name.strip():
        raise DomainValidationError("Name and event date are required")
    event = await deps.repository.create_event(record=record)
    logger.info("event created", extra={"event_id": event.event_id})
    return event


async def update_event(deps: ServiceDeps, *, event_id: str, update: EventUpdate) -> EventSnapshot:
    if update.name is not None and not update.name.strip():
        raise DomainValidationError("event name must not be empty")
    event = await deps.repository.update_event(event_id=event_id, update=update)
    if event is None:
        raise DomainNotFoundError("Event not found")
    return event


async def set_archived(deps: ServiceDeps, *, event_id: str, is_archived: bool) -> EventSnapshot:
    event = await update_event(deps, event_id=event_id, update=EventUpdate(is_archived=is_archived))
    logger.info("event archive flag changed", extra={"event_id": event_id, "is_archived": is_archived})
    return event


async def delete_event(deps: ServiceDeps, *, event_id: str) -> None:
    count = await deps.repository.count_submissions(event_id=event_id)
    if count > 0:
        raise DomainValidationError(f"Cannot delete event with {count} submission(s). Archive it instead.")
    if not await deps.repository.delete_event(event_id=event_id):
        raise DomainNotFoundError("Event not found")
    logger.info("event deleted", extra={"event_id": event_id})


async def capture_settings_for(deps: ServiceDeps, *, event_id: str | None) -> CaptureSettings:
    # Kiosks without an event id get the free-form defaults.
    if not event_id:
        return CaptureSettings()
    event = await require_event(deps, event_id)
    return event.capture_settings
