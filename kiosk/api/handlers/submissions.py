from __future__ import annotations

from kiosk.api.auth import ACTOR_BY_ROLE, Role
from kiosk.api.handlers.deps import ApiDeps
from kiosk.api.schemas import (
    AppendLogRequest,
    CreateSubmissionRequest,
    CreateSubmissionResponse,
    MessageResponse,
    SubmissionListResponse,
    SubmissionResponse,
    ThumbnailResponse,
    UpdateSubmissionRequest,
)
from kiosk.domain.dto import AppendLogCommand, CreateSubmissionCommand, UpdateSubmissionFieldsCommand
from kiosk.domain.errors import DomainValidationError
from kiosk.domain.models import SubmissionListQuery, SubmissionStatus
from kiosk.domain.use_cases import submissions as use_cases

COMPONENT_ID_CREATE = "api.create_submission"
COMPONENT_ID_LIST = "api.list_submissions"

MAX_PAGE_SIZE = 200


def parse_status_filter(raw: str | None) -> tuple[SubmissionStatus, ...] | None:
    """`status` may be one value or a comma separated list."""
    if raw is None or not raw.strip():
        return None
    statuses: list[SubmissionStatus] = []
    for token in raw.split(","):
        token = token.strip()
        if not token:
            continue
        try:
            statuses.append(SubmissionStatus(token))
        except ValueError as exc:
            raise DomainValidationError(f"Unknown status: {token}") from exc
    return tuple(statuses) or None


async def create_submission_handler(*, request: CreateSubmissionRequest, api_deps: ApiDeps) -> CreateSubmissionResponse:
    submission = await use_cases.create_submission(
        api_deps.services,
        CreateSubmissionCommand(
            event_id=request.event_id,
            name=request.name,
            photo=request.photo,
            prompt=request.prompt,
            email=request.email,
            phone=request.phone,
            custom_text=request.custom_text,
        ),
    )
    return CreateSubmissionResponse(submission_id=submission.submission_id)


async def list_submissions_handler(
    *,
    event_id: str | None,
    status: str | None,
    limit: int,
    skip: int,
    api_deps: ApiDeps,
) -> SubmissionListResponse:
    page = await use_cases.list_submissions(
        api_deps.services,
        query=SubmissionListQuery(
            event_id=event_id or None,
            statuses=parse_status_filter(status),
            limit=min(limit, MAX_PAGE_SIZE),
            offset=skip,
        ),
    )
    return SubmissionListResponse.from_domain(page)


async def get_submission_handler(*, submission_id: str, api_deps: ApiDeps) -> SubmissionResponse:
    submission = await use_cases.get_submission(api_deps.services, submission_id=submission_id)
    return SubmissionResponse.from_domain(submission)


async def get_thumbnail_handler(*, submission_id: str, api_deps: ApiDeps) -> ThumbnailResponse:
    submission = await use_cases.get_submission(api_deps.services, submission_id=submission_id)
    return ThumbnailResponse(photo=submission.photo_url, name=submission.name)


async def update_submission_handler(
    *,
    submission_id: str,
    request: UpdateSubmissionRequest,
    api_deps: ApiDeps,
) -> SubmissionResponse:
    submission = await use_cases.update_submission_fields(
        api_deps.services,
        UpdateSubmissionFieldsCommand(
            submission_id=submission_id,
            photo=request.photo,
            prompt=request.prompt,
            custom_text=request.custom_text,
            processing_started_at=request.processing_started_at,
        ),
    )
    return SubmissionResponse.from_domain(submission)


async def set_status_handler(
    *,
    submission_id: str,
    status: SubmissionStatus,
    role: Role,
    api_deps: ApiDeps,
) -> SubmissionResponse:
    submission = await use_cases.transition_status(
        api_deps.services,
        submission_id=submission_id,
        target=status,
        actor=ACTOR_BY_ROLE[role],
    )
    return SubmissionResponse.from_domain(submission)


async def approve_handler(*, submission_id: str, api_deps: ApiDeps) -> SubmissionResponse:
    submission = await use_cases.approve_submission(api_deps.services, submission_id=submission_id)
    return SubmissionResponse.from_domain(submission)


async def reject_handler(*, submission_id: str, api_deps: ApiDeps) -> SubmissionResponse:
    submission = await use_cases.reject_submission(api_deps.services, submission_id=submission_id)
    return SubmissionResponse.from_domain(submission)


async def add_to_queue_handler(*, submission_id: str, api_deps: ApiDeps) -> SubmissionResponse:
    submission = await use_cases.add_to_queue(api_deps.services, submission_id=submission_id)
    return SubmissionResponse.from_domain(submission)


async def retry_handler(*, submission_id: str, api_deps: ApiDeps) -> SubmissionResponse:
    submission = await use_cases.retry_failed(api_deps.services, submission_id=submission_id)
    return SubmissionResponse.from_domain(submission)


async def regenerate_handler(*, submission_id: str, api_deps: ApiDeps) -> SubmissionResponse:
    clone = await use_cases.regenerate_submission(api_deps.services, submission_id=submission_id)
    return SubmissionResponse.from_domain(clone)


async def append_log_handler(
    *,
    submission_id: str,
    request: AppendLogRequest,
    api_deps: ApiDeps,
) -> SubmissionResponse:
    submission = await use_cases.append_log(
        api_deps.services,
        AppendLogCommand(submission_id=submission_id, message=request.message, level=request.level),
    )
    return SubmissionResponse.from_domain(submission)


async def delete_submission_handler(*, submission_id: str, api_deps: ApiDeps) -> MessageResponse:
    await use_cases.delete_submission(api_deps.services, submission_id=submission_id)
    return MessageResponse(message="Submission deleted successfully")
