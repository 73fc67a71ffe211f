from __future__ import annotations

from dataclasses import replace
import logging

from kiosk.domain.capture import resolve_capture_input
from kiosk.domain.dto import AppendLogCommand, CreateSubmissionCommand, UpdateSubmissionFieldsCommand
from kiosk.domain.errors import (
    DomainDependencyError,
    DomainInvariantError,
    DomainNotFoundError,
    DomainValidationError,
)
from kiosk.domain.lifecycle import Actor, TransitionRule, find_rule, plan_transition, require_rule
from kiosk.domain.media import decode_image_payload
from kiosk.domain.models import (
    GeneratedImage,
    LogLevel,
    NewSubmission,
    ProcessingLogEntry,
    SubmissionListQuery,
    SubmissionPage,
    SubmissionSnapshot,
    SubmissionStatus,
    SubmissionUpdate,
)
from kiosk.domain.use_cases.deps import ServiceDeps, as_utc

COMPONENT_ID = "domain.submission"

logger = logging.getLogger("kiosk.lifecycle")

_REQUEUE_FOR_REVIEW_SOURCES = frozenset(
    {SubmissionStatus.COMPLETED, SubmissionStatus.REJECTED, SubmissionStatus.FAILED}
)


async def require_submission(deps: ServiceDeps, submission_id: str) -> SubmissionSnapshot:
    submission = await deps.repository.get_submission(submission_id=submission_id)
    if submission is None:
        raise DomainNotFoundError("Submission not found")
    return submission


async def apply_transition(
    deps: ServiceDeps,
    *,
    submission: SubmissionSnapshot,
    rule: TransitionRule,
    failure_reason: str | None = None,
    generated_images: tuple[GeneratedImage, ...] | None = None,
    log_message: str | None = None,
    extra_logs: tuple[ProcessingLogEntry, ...] = (),
) -> SubmissionSnapshot:
    """Write one transition, conditional on the status that was read."""
    update = plan_transition(
        rule,
        submission=submission,
        now=deps.clock(),
        failure_reason=failure_reason,
        generated_images=generated_images,
        log_message=log_message,
    )
    if extra_logs:
        update = replace(update, append_logs=extra_logs + update.append_logs)
    updated = await deps.repository.update_submission(
        submission_id=submission.submission_id,
        update=update,
        expected_status=submission.status,
    )
    logger.info(
        "submission transition applied",
        extra={
            "submission_id": submission.submission_id,
            "event_id": submission.event_id,
            "transition": rule.name,
            "from_status": str(submission.status),
            "to_status": str(updated.status),
        },
    )
    return updated


async def create_submission(deps: ServiceDeps, cmd: CreateSubmissionCommand) -> SubmissionSnapshot:
    name = cmd.name.strip()
    if not cmd.event_id or not name or not cmd.photo:
        raise DomainValidationError("Event, name, photo, and prompt are required")

    event = await deps.repository.get_event(event_id=cmd.event_id)
    if event is None:
        raise DomainNotFoundError("Event not found")
    if event.is_archived:
        raise DomainValidationError("Cannot submit to archived event")

    prompt, custom_text = resolve_capture_input(
        event.capture_settings,
        prompt=cmd.prompt,
        custom_text=cmd.custom_text,
    )
    if not prompt:
        raise DomainValidationError("Event, name, photo, and prompt are required")

    image = decode_image_payload(cmd.photo)
    # The record only exists once its photo is stored.
    try:
        photo_url = await deps.object_store.put(image.payload, image.content_type, folder="submissions")
    except Exception as exc:
        logger.exception("photo upload failed", extra={"event_id": cmd.event_id})
        raise DomainDependencyError("photo upload failed") from exc

    submission = await deps.repository.create_submission(
        record=NewSubmission(
            event_id=event.event_id,
            name=name,
            email=cmd.email.strip(),
            phone=cmd.phone.strip(),
            photo_url=photo_url,
            prompt=prompt,
            custom_text=custom_text,
        )
    )
    logger.info(
        "submission created",
        extra={"submission_id": submission.submission_id, "event_id": submission.event_id},
    )
    return submission


async def get_submission(deps: ServiceDeps, *, submission_id: str) -> SubmissionSnapshot:
    return await require_submission(deps, submission_id)


async def list_submissions(deps: ServiceDeps, *, query: SubmissionListQuery) -> SubmissionPage:
    if query.limit < 1:
        raise DomainValidationError("limit must be positive")
    if query.offset < 0:
        raise DomainValidationError("skip must not be negative")
    return await deps.repository.list_submissions(query=query)


async def update_submission_fields(deps: ServiceDeps, cmd: UpdateSubmissionFieldsCommand) -> SubmissionSnapshot:
    changes: dict[str, object] = {}
    if cmd.photo is not None:
        changes["photo_url"] = cmd.photo
    if cmd.prompt is not None:
        changes["prompt"] = cmd.prompt
    if cmd.custom_text is not None:
        changes["custom_text"] = cmd.custom_text
    if cmd.processing_started_at is not None:
        changes["processing_started_at"] = as_utc(cmd.processing_started_at)
    if not changes:
        return await require_submission(deps, cmd.submission_id)
    return await deps.repository.update_submission(
        submission_id=cmd.submission_id,
        update=SubmissionUpdate(changes=changes),
    )


async def transition_status(
    deps: ServiceDeps,
    *,
    submission_id: str,
    target: SubmissionStatus,
    actor: Actor,
) -> SubmissionSnapshot:
    submission = await require_submission(deps, submission_id)
    rule = find_rule(current=submission.status, target=target, actor=actor)
    return await apply_transition(deps, submission=submission, rule=rule)


async def approve_submission(deps: ServiceDeps, *, submission_id: str) -> SubmissionSnapshot:
    submission = await require_submission(deps, submission_id)
    rule = require_rule("approve", current=submission.status, actor=Actor.ADMIN)
    return await apply_transition(deps, submission=submission, rule=rule)


async def reject_submission(deps: ServiceDeps, *, submission_id: str) -> SubmissionSnapshot:
    submission = await require_submission(deps, submission_id)
    rule = require_rule("reject", current=submission.status, actor=Actor.ADMIN)
    return await apply_transition(deps, submission=submission, rule=rule)


async def add_to_queue(deps: ServiceDeps, *, submission_id: str) -> SubmissionSnapshot:
    """Put a submission back into the pipeline.

    Finished submissions go back to review and need a fresh approval; a
    processing submission is immediately claimable again.
    """
    submission = await require_submission(deps, submission_id)
    if submission.status in _REQUEUE_FOR_REVIEW_SOURCES:
        rule_name = "requeue_for_review"
    elif submission.status == SubmissionStatus.PROCESSING:
        rule_name = "requeue_stuck"
    else:
        raise DomainInvariantError(f"submission is already {submission.status}")
    rule = require_rule(rule_name, current=submission.status, actor=Actor.ADMIN)
    return await apply_transition(deps, submission=submission, rule=rule)


async def retry_failed(deps: ServiceDeps, *, submission_id: str) -> SubmissionSnapshot:
    submission = await require_submission(deps, submission_id)
    rule = require_rule("retry", current=submission.status, actor=Actor.ADMIN)
    return await apply_transition(deps, submission=submission, rule=rule)


async def mark_failed(deps: ServiceDeps, *, submission_id: str, reason: str) -> SubmissionSnapshot:
    submission = await require_submission(deps, submission_id)
    rule = require_rule("fail", current=submission.status, actor=Actor.PROCESSOR)
    updated = await apply_transition(deps, submission=submission, rule=rule, failure_reason=reason)
    logger.warning(
        "submission failed",
        extra={"submission_id": submission_id, "event_id": submission.event_id, "reason": updated.failure_reason},
    )
    return updated


async def append_log(deps: ServiceDeps, cmd: AppendLogCommand) -> SubmissionSnapshot:
    message = cmd.message.strip()
    if not message:
        raise DomainValidationError("log message is required")
    entry = ProcessingLogEntry(timestamp=deps.clock(), message=message, level=cmd.level)
    return await deps.repository.update_submission(
        submission_id=cmd.submission_id,
        update=SubmissionUpdate(append_logs=(entry,)),
    )


async def regenerate_submission(deps: ServiceDeps, *, submission_id: str) -> SubmissionSnapshot:
    """Clone a completed submission into a fresh approved one.

    The original keeps its images and history; contact details are not
    copied so the attendee is only notified once.
    """
    original = await require_submission(deps, submission_id)
    if original.status != SubmissionStatus.COMPLETED:
        raise DomainInvariantError(f"only completed submissions can be regenerated, found {original.status}")
    now = deps.clock()
    clone = await deps.repository.create_submission(
        record=NewSubmission(
            event_id=original.event_id,
            name=original.name,
            photo_url=original.photo_url,
            prompt=original.prompt,
            custom_text=original.custom_text,
            status=SubmissionStatus.APPROVED,
            approved_at=now,
            processing_logs=(
                ProcessingLogEntry(
                    timestamp=now,
                    message=f"Regenerated from submission {original.submission_id}",
                    level=LogLevel.INFO,
                ),
            ),
        )
    )
    logger.info(
        "submission regenerated",
        extra={"submission_id": clone.submission_id, "event_id": clone.event_id, "source_id": submission_id},
    )
    return clone


async def delete_submission(deps: ServiceDeps, *, submission_id: str) -> None:
    submission = await require_submission(deps, submission_id)

    urls = [image.url for image in submission.generated_images if image.url]
    # Regenerated clones share the original photo.
    if await deps.repository.count_photo_references(photo_url=submission.photo_url) <= 1:
        urls.insert(0, submission.photo_url)
    for url in urls:
        try:
            await deps.object_store.delete(url)
        except Exception:
            logger.warning(
                "image delete failed",
                exc_info=True,
                extra={"submission_id": submission_id, "url": url},
            )

    if not await deps.repository.delete_submission(submission_id=submission_id):
        raise DomainNotFoundError("Submission not found")
    logger.info("submission deleted", extra={"submission_id": submission_id, "event_id": submission.event_id})
