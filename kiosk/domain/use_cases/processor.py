from __future__ import annotations

from datetime import datetime, timedelta

from kiosk.domain.dto import ProcessorStatus
from kiosk.domain.lifecycle import STALE_PROCESSING_AFTER
from kiosk.domain.use_cases.deps import ServiceDeps

HEARTBEAT_HEALTHY_WINDOW = timedelta(seconds=60)


async def record_heartbeat(deps: ServiceDeps) -> datetime:
    now = deps.clock()
    await deps.repository.record_processor_heartbeat(at=now)
    return now


async def processor_status(deps: ServiceDeps) -> ProcessorStatus:
    now = deps.clock()
    last_heartbeat = await deps.repository.get_processor_heartbeat()
    stuck = await deps.repository.list_stale_processing(started_before=now - STALE_PROCESSING_AFTER)
    if last_heartbeat is None:
        return ProcessorStatus(
            is_healthy=False,
            last_heartbeat=None,
            seconds_since_heartbeat=None,
            stuck_count=len(stuck),
        )
    age = now - last_heartbeat
    return ProcessorStatus(
        is_healthy=age < HEARTBEAT_HEALTHY_WINDOW,
        last_heartbeat=last_heartbeat,
        seconds_since_heartbeat=age.total_seconds(),
        stuck_count=len(stuck),
    )
