from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum

from kiosk.domain.errors import DomainInvariantError, DomainValidationError
from kiosk.domain.models import (
    GeneratedImage,
    LogLevel,
    ProcessingLogEntry,
    SubmissionSnapshot,
    SubmissionStatus,
    SubmissionUpdate,
)

# A processing claim older than this is presumed dead.
STALE_PROCESSING_AFTER = timedelta(minutes=2)

# A processing submission carrying this many images crashed after its image
# write and before its status flip.
FORCE_COMPLETE_IMAGE_COUNT = 4

STUCK_RESET_LOG_MESSAGE = "Reset from stuck processing state"
LATE_COMPLETION_LOG_MESSAGE = "Completed by a processor that finished after a stuck reset"


class Actor(StrEnum):
    KIOSK = "kiosk"
    ADMIN = "admin"
    PROCESSOR = "processor"
    # Staleness recovery, whether scheduled or triggered on request.
    SYSTEM = "system"


@dataclass(frozen=True)
class TransitionRule:
    name: str
    sources: frozenset[SubmissionStatus]
    target: SubmissionStatus
    actors: frozenset[Actor]
    # Only reachable through its dedicated operation, never a plain status change.
    dedicated: bool = False


_S = SubmissionStatus

# Order matters for find_rule(): the first rule that matches (source, target,
# actor) wins.
TRANSITION_RULES: dict[str, TransitionRule] = {
    "approve": TransitionRule(
        name="approve",
        sources=frozenset({_S.PENDING}),
        target=_S.APPROVED,
        actors=frozenset({Actor.ADMIN}),
    ),
    "reject": TransitionRule(
        name="reject",
        sources=frozenset({_S.PENDING}),
        target=_S.REJECTED,
        actors=frozenset({Actor.ADMIN}),
    ),
    "claim": TransitionRule(
        name="claim",
        sources=frozenset({_S.APPROVED}),
        target=_S.PROCESSING,
        actors=frozenset({Actor.PROCESSOR}),
    ),
    "complete": TransitionRule(
        name="complete",
        sources=frozenset({_S.PROCESSING}),
        target=_S.COMPLETED,
        actors=frozenset({Actor.PROCESSOR}),
    ),
    "late_complete": TransitionRule(
        name="late_complete",
        sources=frozenset({_S.APPROVED}),
        target=_S.COMPLETED,
        actors=frozenset({Actor.PROCESSOR}),
        dedicated=True,
    ),
    "fail": TransitionRule(
        name="fail",
        sources=frozenset({_S.PROCESSING}),
        target=_S.FAILED,
        actors=frozenset({Actor.PROCESSOR}),
    ),
    "requeue_stuck": TransitionRule(
        name="requeue_stuck",
        sources=frozenset({_S.PROCESSING}),
        target=_S.APPROVED,
        actors=frozenset({Actor.ADMIN}),
    ),
    "requeue_for_review": TransitionRule(
        name="requeue_for_review",
        sources=frozenset({_S.COMPLETED, _S.REJECTED, _S.FAILED}),
        target=_S.PENDING,
        actors=frozenset({Actor.ADMIN}),
    ),
    "retry": TransitionRule(
        name="retry",
        sources=frozenset({_S.FAILED}),
        target=_S.APPROVED,
        actors=frozenset({Actor.ADMIN}),
    ),
    "force_complete": TransitionRule(
        name="force_complete",
        sources=frozenset({_S.PROCESSING}),
        target=_S.COMPLETED,
        actors=frozenset({Actor.ADMIN, Actor.SYSTEM}),
    ),
    "stale_reset": TransitionRule(
        name="stale_reset",
        sources=frozenset({_S.PROCESSING}),
        target=_S.APPROVED,
        actors=frozenset({Actor.SYSTEM}),
    ),
}


def _allowed_transitions() -> dict[SubmissionStatus, set[SubmissionStatus]]:
    allowed: dict[SubmissionStatus, set[SubmissionStatus]] = {status: set() for status in SubmissionStatus}
    for rule in TRANSITION_RULES.values():
        for source in rule.sources:
            allowed[source].add(rule.target)
    return allowed


ALLOWED_TRANSITIONS: dict[SubmissionStatus, set[SubmissionStatus]] = _allowed_transitions()


def require_rule(name: str, *, current: SubmissionStatus, actor: Actor) -> TransitionRule:
    rule = TRANSITION_RULES[name]
    if actor not in rule.actors:
        raise DomainInvariantError(f"{actor} may not {name.replace('_', ' ')} a submission")
    if current not in rule.sources:
        raise DomainInvariantError(f"invalid transition: {current} -> {rule.target} ({name.replace('_', ' ')})")
    return rule


def find_rule(*, current: SubmissionStatus, target: SubmissionStatus, actor: Actor) -> TransitionRule:
    for rule in TRANSITION_RULES.values():
        if rule.dedicated:
            continue
        if current in rule.sources and rule.target == target and actor in rule.actors:
            return rule
    raise DomainInvariantError(f"invalid transition: {current} -> {target} for {actor}")


def is_processing_stale(submission: SubmissionSnapshot, *, now: datetime) -> bool:
    if submission.status != SubmissionStatus.PROCESSING:
        return False
    started_at = submission.processing_started_at
    # Without a claim timestamp nothing proves the processor is alive.
    if started_at is None:
        return True
    return started_at < now - STALE_PROCESSING_AFTER


def plan_transition(
    rule: TransitionRule,
    *,
    submission: SubmissionSnapshot,
    now: datetime,
    failure_reason: str | None = None,
    generated_images: tuple[GeneratedImage, ...] | None = None,
    log_message: str | None = None,
) -> SubmissionUpdate:
    """Compute the single-record write that moves `submission` along `rule`.

    The update only carries the side effects of the transition; callers apply
    it with the status they read as the expected status so that a concurrent
    writer turns the write into a conflict instead of a lost update.
    """
    changes: dict[str, object] = {}
    logs: list[ProcessingLogEntry] = []

    if rule.name == "approve":
        changes["approved_at"] = now
        changes["retry_count"] = 0
    elif rule.name == "claim":
        changes["processing_started_at"] = now
    elif rule.name in ("complete", "force_complete", "late_complete"):
        images = generated_images if generated_images is not None else submission.generated_images
        if not images:
            raise DomainValidationError("completed submissions require at least one generated image")
        if generated_images is not None:
            changes["generated_images"] = tuple(generated_images)
        changes["processed_at"] = now
        if rule.name == "force_complete":
            logs.append(
                ProcessingLogEntry(
                    timestamp=now,
                    message=log_message or f"Marked completed with {len(images)} images already attached",
                    level=LogLevel.INFO,
                )
            )
        elif rule.name == "late_complete":
            changes["processing_started_at"] = None
            logs.append(
                ProcessingLogEntry(
                    timestamp=now,
                    message=log_message or LATE_COMPLETION_LOG_MESSAGE,
                    level=LogLevel.WARNING,
                )
            )
    elif rule.name == "fail":
        reason = (failure_reason or "").strip() or "unspecified failure"
        changes["failure_reason"] = reason
        logs.append(ProcessingLogEntry(timestamp=now, message=f"Failed: {reason}", level=LogLevel.ERROR))
    elif rule.name == "stale_reset":
        changes["retry_count"] = submission.retry_count + 1
        changes["processing_started_at"] = None
        logs.append(
            ProcessingLogEntry(
                timestamp=now,
                message=log_message or STUCK_RESET_LOG_MESSAGE,
                level=LogLevel.WARNING,
            )
        )
    elif rule.name == "requeue_stuck":
        changes["approved_at"] = now
        changes["retry_count"] = 0
        changes["processing_started_at"] = None
    elif rule.name == "requeue_for_review":
        changes["approved_at"] = None
        changes["retry_count"] = 0
    elif rule.name == "retry":
        changes["approved_at"] = now

    # failure_reason only lives while the submission is failed.
    if submission.status == SubmissionStatus.FAILED and rule.target != SubmissionStatus.FAILED:
        changes["failure_reason"] = None

    return SubmissionUpdate(status=rule.target, changes=changes, append_logs=tuple(logs))
