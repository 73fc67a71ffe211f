from __future__ import annotations

import logging

from kiosk.domain.dto import StaleScanResult, VerifyStatusResult
from kiosk.domain.errors import DomainConflictError
from kiosk.domain.lifecycle import (
    FORCE_COMPLETE_IMAGE_COUNT,
    STALE_PROCESSING_AFTER,
    STUCK_RESET_LOG_MESSAGE,
    Actor,
    is_processing_stale,
    require_rule,
)
from kiosk.domain.models import SubmissionSnapshot, SubmissionStatus
from kiosk.domain.use_cases.deps import ServiceDeps
from kiosk.domain.use_cases.submissions import apply_transition, require_submission

COMPONENT_ID_CLAIM = "domain.queue.claim"
COMPONENT_ID_STALE_SCAN = "domain.queue.stale_scan"
COMPONENT_ID_VERIFY = "domain.queue.verify"

logger = logging.getLogger("kiosk.lifecycle")


async def claim_next(deps: ServiceDeps) -> list[SubmissionSnapshot]:
    """Return the next approved submission as a list of zero or one items.

    Reading does not claim: the processor must move the item to processing
    itself, so two pollers may see the same head of queue.
    """
    head = await deps.repository.next_approved()
    if head is None:
        return []
    return [head]


async def reset_stale_submissions(deps: ServiceDeps) -> StaleScanResult:
    now = deps.clock()
    stale = await deps.repository.list_stale_processing(started_before=now - STALE_PROCESSING_AFTER)
    reset: list[SubmissionSnapshot] = []
    for submission in stale:
        rule = require_rule("stale_reset", current=submission.status, actor=Actor.SYSTEM)
        try:
            updated = await apply_transition(
                deps,
                submission=submission,
                rule=rule,
                log_message=STUCK_RESET_LOG_MESSAGE,
            )
        except DomainConflictError:
            # Finished or reset by someone else since the scan read it.
            logger.info("stale reset skipped", extra={"submission_id": submission.submission_id})
            continue
        reset.append(updated)

    if reset:
        logger.warning("stale submissions reset", extra={"count": len(reset)})
    return StaleScanResult(reset=len(reset), submissions=reset)


async def verify_submission_status(deps: ServiceDeps, *, submission_id: str) -> VerifyStatusResult:
    submission = await require_submission(deps, submission_id)
    if submission.status != SubmissionStatus.PROCESSING:
        return VerifyStatusResult(
            fixed=False,
            message=f"Status {submission.status} is correct",
            submission=submission,
        )

    image_count = len(submission.generated_images)
    if image_count >= FORCE_COMPLETE_IMAGE_COUNT:
        message = f"Fixed: Found {image_count} images, marked as completed"
        rule = require_rule("force_complete", current=submission.status, actor=Actor.ADMIN)
        updated = await apply_transition(deps, submission=submission, rule=rule, log_message=message)
        return VerifyStatusResult(fixed=True, message=message, submission=updated)

    if is_processing_stale(submission, now=deps.clock()):
        rule = require_rule("stale_reset", current=submission.status, actor=Actor.SYSTEM)
        updated = await apply_transition(
            deps,
            submission=submission,
            rule=rule,
            log_message=STUCK_RESET_LOG_MESSAGE,
        )
        return VerifyStatusResult(
            fixed=True,
            message="Reset stuck processing submission to approved",
            submission=updated,
        )

    return VerifyStatusResult(
        fixed=False,
        message="Still processing (less than 2 minutes)",
        submission=submission,
    )
