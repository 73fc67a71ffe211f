from __future__ import annotations

from kiosk.api.handlers.deps import ApiDeps
from kiosk.api.schemas import (
    FailSubmissionRequest,
    ReportImagesRequest,
    ReportImagesResponse,
    StaleScanResponse,
    SubmissionResponse,
    VerifyStatusResponse,
)
from kiosk.domain.dto import GeneratedImagePayload, ReportImagesCommand
from kiosk.domain.use_cases import completion, queue
from kiosk.domain.use_cases.submissions import mark_failed

COMPONENT_ID_CLAIM = "api.queue.claim"
COMPONENT_ID_STALE_SCAN = "api.queue.stale_scan"


async def approved_queue_handler(*, api_deps: ApiDeps) -> list[SubmissionResponse]:
    items = await queue.claim_next(api_deps.services)
    return [SubmissionResponse.from_domain(item) for item in items]


async def stale_scan_handler(*, api_deps: ApiDeps) -> StaleScanResponse:
    result = await queue.reset_stale_submissions(api_deps.services)
    return StaleScanResponse(
        reset=result.reset,
        submissions=[SubmissionResponse.from_domain(item) for item in result.submissions],
    )


async def verify_status_handler(*, submission_id: str, api_deps: ApiDeps) -> VerifyStatusResponse:
    result = await queue.verify_submission_status(api_deps.services, submission_id=submission_id)
    return VerifyStatusResponse.from_domain(result)


async def report_images_handler(
    *,
    submission_id: str,
    request: ReportImagesRequest,
    api_deps: ApiDeps,
) -> ReportImagesResponse:
    result = await completion.report_generated_images(
        api_deps.services,
        ReportImagesCommand(
            submission_id=submission_id,
            images=tuple(
                GeneratedImagePayload(data=image.data, filename=image.filename, created_at=image.created_at)
                for image in request.generated_images
            ),
        ),
    )
    return ReportImagesResponse.from_domain(result)


async def mark_failed_handler(
    *,
    submission_id: str,
    request: FailSubmissionRequest,
    api_deps: ApiDeps,
) -> SubmissionResponse:
    submission = await mark_failed(api_deps.services, submission_id=submission_id, reason=request.reason)
    return SubmissionResponse.from_domain(submission)
