from __future__ import annotations

from dataclasses import dataclass
import logging

from kiosk.domain.use_cases.deps import ServiceDeps
from kiosk.domain.use_cases.queue import reset_stale_submissions

logger = logging.getLogger("runtime")


@dataclass
class WatchdogLoop:
    """One tick of the in-process staleness watchdog.

    Each tick runs the bulk stale scan. Running it again right away resets
    nothing, so overlapping ticks and the processor's own scan are harmless.
    """

    role: str
    deps: ServiceDeps
    stage: str = "watchdog"

    async def run_once(self) -> int:
        result = await reset_stale_submissions(self.deps)
        for submission in result.submissions:
            logger.warning(
                "stale submission reset",
                extra={
                    "role": self.role,
                    "submission_id": submission.submission_id,
                    "event_id": submission.event_id,
                    "retry_count": submission.retry_count,
                },
            )
        return result.reset
