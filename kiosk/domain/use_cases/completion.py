from __future__ import annotations

import logging

from kiosk.domain.dto import ChannelResult, CompletionResult, NotificationOutcome, ReportImagesCommand
from kiosk.domain.errors import DomainConflictError, DomainValidationError
from kiosk.domain.lifecycle import Actor, TransitionRule, require_rule
from kiosk.domain.media import decode_image_payload
from kiosk.domain.models import (
    BrandingSettings,
    GeneratedImage,
    LogLevel,
    ProcessingLogEntry,
    SubmissionSnapshot,
    SubmissionStatus,
    SubmissionUpdate,
)
from kiosk.domain.use_cases.deps import ServiceDeps, as_utc
from kiosk.domain.use_cases.submissions import apply_transition, require_submission

COMPONENT_ID = "domain.submission.complete"

NO_IMAGES_STORED_REASON = "No generated images could be stored"
LATE_RESULT_DROPPED_MESSAGE = "Late result dropped: no generated images could be stored"

logger = logging.getLogger("kiosk.lifecycle")


async def report_generated_images(deps: ServiceDeps, cmd: ReportImagesCommand) -> CompletionResult:
    """Store processor output and complete the submission.

    Each image is handled on its own: a bad payload, a branding failure or a
    failed upload costs that image only and leaves a warning in the
    submission's log. When nothing could be stored the submission fails
    instead, since a completed submission always carries images.
    Notification runs after the status write and never undoes it.

    A processor that finishes after the watchdog requeued its item still
    completes it, unless another processor has claimed it meanwhile.
    """
    if not cmd.images:
        raise DomainValidationError("generatedImages must not be empty")

    submission = await require_submission(deps, cmd.submission_id)
    complete_rule = _completion_rule(submission)
    event = await deps.repository.get_event(event_id=submission.event_id)
    branding = event.branding if event is not None and _branding_active(event.branding) else None

    uploaded: list[GeneratedImage] = []
    skipped: list[str] = []
    warnings: list[ProcessingLogEntry] = []
    for image in cmd.images:
        try:
            decoded = decode_image_payload(image.data, default_content_type="image/png")
        except DomainValidationError as exc:
            skipped.append(image.filename)
            warnings.append(_warning(deps, f"Skipped {image.filename}: {exc}"))
            continue

        payload = decoded.payload
        content_type = decoded.content_type
        if branding is not None:
            try:
                payload = await deps.compositor.composite(payload, branding)
                content_type = "image/png"
            except Exception:
                logger.warning(
                    "branding failed, storing original",
                    exc_info=True,
                    extra={"submission_id": submission.submission_id, "filename": image.filename},
                )
                warnings.append(_warning(deps, f"Branding skipped for {image.filename}"))

        try:
            url = await deps.object_store.put(payload, content_type, folder="results")
        except Exception:
            logger.warning(
                "generated image upload failed",
                exc_info=True,
                extra={"submission_id": submission.submission_id, "filename": image.filename},
            )
            skipped.append(image.filename)
            warnings.append(_warning(deps, f"Upload failed for {image.filename}"))
            continue

        uploaded.append(
            GeneratedImage(
                url=url,
                filename=image.filename,
                created_at=as_utc(image.created_at) if image.created_at else deps.clock(),
            )
        )

    if not uploaded:
        if complete_rule.name == "late_complete":
            # The requeued item stays in the queue for a fresh attempt.
            kept = await deps.repository.update_submission(
                submission_id=submission.submission_id,
                update=SubmissionUpdate(append_logs=(*warnings, _warning(deps, LATE_RESULT_DROPPED_MESSAGE))),
            )
            return CompletionResult(submission=kept, uploaded=0, skipped=tuple(skipped), notifications=None)
        fail_rule = require_rule("fail", current=submission.status, actor=Actor.PROCESSOR)
        failed = await apply_transition(
            deps,
            submission=submission,
            rule=fail_rule,
            failure_reason=NO_IMAGES_STORED_REASON,
            extra_logs=tuple(warnings),
        )
        return CompletionResult(submission=failed, uploaded=0, skipped=tuple(skipped), notifications=None)

    completed = await _write_completion(
        deps,
        submission=submission,
        rule=complete_rule,
        images=tuple(uploaded),
        warnings=tuple(warnings),
    )

    notifications: NotificationOutcome | None = None
    try:
        notifications = await deps.notifier.notify(completed, event)
    except Exception:
        logger.warning(
            "notification dispatch failed",
            exc_info=True,
            extra={"submission_id": completed.submission_id},
        )
        completed = await _append(deps, completed, _warning(deps, "Notification dispatch failed"))
    else:
        summary = _notification_log(deps, notifications)
        if summary is not None:
            completed = await _append(deps, completed, summary)

    return CompletionResult(
        submission=completed,
        uploaded=len(uploaded),
        skipped=tuple(skipped),
        notifications=notifications,
    )


def _completion_rule(submission: SubmissionSnapshot) -> TransitionRule:
    # retry_count > 0 on an approved item means the watchdog took it back.
    if submission.status == SubmissionStatus.APPROVED and submission.retry_count > 0:
        return require_rule("late_complete", current=submission.status, actor=Actor.PROCESSOR)
    return require_rule("complete", current=submission.status, actor=Actor.PROCESSOR)


async def _write_completion(
    deps: ServiceDeps,
    *,
    submission: SubmissionSnapshot,
    rule: TransitionRule,
    images: tuple[GeneratedImage, ...],
    warnings: tuple[ProcessingLogEntry, ...],
) -> SubmissionSnapshot:
    try:
        try:
            return await apply_transition(
                deps,
                submission=submission,
                rule=rule,
                generated_images=images,
                extra_logs=warnings,
            )
        except DomainConflictError:
            # Reset by the watchdog while the images were uploading.
            current = await require_submission(deps, submission.submission_id)
            return await apply_transition(
                deps,
                submission=current,
                rule=_completion_rule(current),
                generated_images=images,
                extra_logs=warnings,
            )
    except DomainConflictError:
        logger.warning(
            "completion rejected, removing uploaded images",
            extra={"submission_id": submission.submission_id, "count": len(images)},
        )
        for image in images:
            await deps.object_store.delete(image.url)
        raise


def _branding_active(branding: BrandingSettings) -> bool:
    return branding.enabled and bool(branding.logo_url)


def _warning(deps: ServiceDeps, message: str) -> ProcessingLogEntry:
    return ProcessingLogEntry(timestamp=deps.clock(), message=message, level=LogLevel.WARNING)


async def _append(deps: ServiceDeps, submission: SubmissionSnapshot, entry: ProcessingLogEntry) -> SubmissionSnapshot:
    return await deps.repository.update_submission(
        submission_id=submission.submission_id,
        update=SubmissionUpdate(append_logs=(entry,)),
    )


def _describe(channel: str, result: ChannelResult) -> str:
    if result.sent:
        return f"{channel} sent to {result.to}"
    detail = result.error or result.reason or "not sent"
    return f"{channel} not sent ({detail})"


def _notification_log(deps: ServiceDeps, outcome: NotificationOutcome) -> ProcessingLogEntry | None:
    parts: list[str] = []
    failed = False
    for channel, result in (("email", outcome.email), ("sms", outcome.sms)):
        if result is None:
            continue
        parts.append(_describe(channel, result))
        failed = failed or not result.sent
    if not parts:
        return None
    return ProcessingLogEntry(
        timestamp=deps.clock(),
        message="Notifications: " + "; ".join(parts),
        level=LogLevel.WARNING if failed else LogLevel.INFO,
    )
