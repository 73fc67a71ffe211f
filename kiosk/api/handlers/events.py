from __future__ import annotations

from kiosk.api.handlers.deps import ApiDeps
from kiosk.api.schemas import (
    CaptureSettingsModel,
    CreateEventRequest,
    EventResponse,
    MessageResponse,
    UpdateEventRequest,
)
from kiosk.domain.models import BrandingSettings, CaptureSettings, EventUpdate, NewEvent
from kiosk.domain.use_cases import events as use_cases


async def list_events_handler(*, include_archived: bool, api_deps: ApiDeps) -> list[EventResponse]:
    summaries = await use_cases.list_events(api_deps.services, include_archived=include_archived)
    return [EventResponse.from_summary(summary) for summary in summaries]


async def get_event_handler(*, event_id: str, api_deps: ApiDeps) -> EventResponse:
    event = await use_cases.require_event(api_deps.services, event_id)
    return EventResponse.from_domain(event)


async def create_event_handler(*, request: CreateEventRequest, api_deps: ApiDeps) -> EventResponse:
    event = await use_cases.create_event(
        api_deps.services,
        NewEvent(
            name=request.name.strip(),
            event_date=request.event_date,
            description=request.description,
            capture_settings=request.capture_settings.to_domain() if request.capture_settings else CaptureSettings(),
            branding=request.branding.to_domain() if request.branding else BrandingSettings(),
        ),
    )
    return EventResponse.from_domain(event)


async def update_event_handler(*, event_id: str, request: UpdateEventRequest, api_deps: ApiDeps) -> EventResponse:
    event = await use_cases.update_event(
        api_deps.services,
        event_id=event_id,
        update=EventUpdate(
            name=request.name.strip() if request.name is not None else None,
            description=request.description,
            event_date=request.event_date,
            capture_settings=request.capture_settings.to_domain() if request.capture_settings else None,
            branding=request.branding.to_domain() if request.branding else None,
        ),
    )
    return EventResponse.from_domain(event)


async def archive_event_handler(*, event_id: str, is_archived: bool, api_deps: ApiDeps) -> EventResponse:
    event = await use_cases.set_archived(api_deps.services, event_id=event_id, is_archived=is_archived)
    return EventResponse.from_domain(event)


async def delete_event_handler(*, event_id: str, api_deps: ApiDeps) -> MessageResponse:
    await use_cases.delete_event(api_deps.services, event_id=event_id)
    return MessageResponse(message="Event deleted successfully")


async def capture_settings_handler(*, event_id: str | None, api_deps: ApiDeps) -> CaptureSettingsModel:
    settings = await use_cases.capture_settings_for(api_deps.services, event_id=event_id)
    return CaptureSettingsModel.from_domain(settings)
