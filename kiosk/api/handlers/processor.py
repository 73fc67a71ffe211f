from __future__ import annotations

from kiosk.api.handlers.deps import ApiDeps
from kiosk.api.schemas import HeartbeatResponse, ProcessorStatusResponse
from kiosk.domain.use_cases import processor as use_cases


async def heartbeat_handler(*, api_deps: ApiDeps) -> HeartbeatResponse:
    recorded_at = await use_cases.record_heartbeat(api_deps.services)
    return HeartbeatResponse(timestamp=recorded_at)


async def processor_status_handler(*, api_deps: ApiDeps) -> ProcessorStatusResponse:
    status = await use_cases.processor_status(api_deps.services)
    return ProcessorStatusResponse.from_domain(status)
