from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from kiosk.domain.errors import DomainInvariantError, DomainValidationError
from kiosk.domain.lifecycle import (
    ALLOWED_TRANSITIONS,
    STUCK_RESET_LOG_MESSAGE,
    Actor,
    find_rule,
    is_processing_stale,
    plan_transition,
    require_rule,
)
from kiosk.domain.models import (
    GeneratedImage,
    LogLevel,
    SubmissionSnapshot,
    SubmissionStatus,
    SubmissionUpdate,
)

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=UTC)


def _snapshot(status: SubmissionStatus, **overrides: object) -> SubmissionSnapshot:
    values: dict[str, object] = {
        "submission_id": "sub_1",
        "event_id": "evt_1",
        "name": "Ada",
        "email": "",
        "phone": "",
        "photo_url": "memory://submissions/000001.jpg",
        "prompt": "astronaut cat",
        "custom_text": "",
        "status": status,
        "approved_at": None,
        "processing_started_at": None,
        "processed_at": None,
        "retry_count": 0,
        "failure_reason": None,
        "generated_images": (),
        "processing_logs": (),
        "created_at": NOW - timedelta(hours=1),
    }
    values.update(overrides)
    return SubmissionSnapshot(**values)  # type: ignore[arg-type]


@pytest.mark.unit
def test_every_status_has_an_outgoing_transition() -> None:
    for status in SubmissionStatus:
        assert ALLOWED_TRANSITIONS[status], status
    assert SubmissionStatus.PROCESSING in ALLOWED_TRANSITIONS[SubmissionStatus.APPROVED]
    assert SubmissionStatus.COMPLETED not in ALLOWED_TRANSITIONS[SubmissionStatus.PENDING]


@pytest.mark.unit
def test_require_rule_rejects_wrong_actor_and_wrong_source() -> None:
    with pytest.raises(DomainInvariantError, match="may not approve"):
        require_rule("approve", current=SubmissionStatus.PENDING, actor=Actor.PROCESSOR)
    with pytest.raises(DomainInvariantError, match="invalid transition"):
        require_rule("approve", current=SubmissionStatus.COMPLETED, actor=Actor.ADMIN)


@pytest.mark.unit
def test_find_rule_resolves_generic_status_change_per_actor() -> None:
    claim = find_rule(current=SubmissionStatus.APPROVED, target=SubmissionStatus.PROCESSING, actor=Actor.PROCESSOR)
    requeue = find_rule(current=SubmissionStatus.PROCESSING, target=SubmissionStatus.APPROVED, actor=Actor.ADMIN)

    assert claim.name == "claim"
    assert requeue.name == "requeue_stuck"
    with pytest.raises(DomainInvariantError):
        find_rule(current=SubmissionStatus.PENDING, target=SubmissionStatus.COMPLETED, actor=Actor.ADMIN)


@pytest.mark.unit
def test_approve_stamps_approval_and_resets_retries() -> None:
    update = plan_transition(
        require_rule("approve", current=SubmissionStatus.PENDING, actor=Actor.ADMIN),
        submission=_snapshot(SubmissionStatus.PENDING, retry_count=3),
        now=NOW,
    )

    assert update.status == SubmissionStatus.APPROVED
    assert update.changes == {"approved_at": NOW, "retry_count": 0}


@pytest.mark.unit
def test_complete_requires_at_least_one_image() -> None:
    rule = require_rule("complete", current=SubmissionStatus.PROCESSING, actor=Actor.PROCESSOR)
    with pytest.raises(DomainValidationError):
        plan_transition(rule, submission=_snapshot(SubmissionStatus.PROCESSING), now=NOW, generated_images=())

    image = GeneratedImage(url="memory://results/1.png", filename="a.png", created_at=NOW)
    update = plan_transition(rule, submission=_snapshot(SubmissionStatus.PROCESSING), now=NOW, generated_images=(image,))
    assert update.changes["generated_images"] == (image,)
    assert update.changes["processed_at"] == NOW


@pytest.mark.unit
def test_stale_reset_bumps_retry_count_and_logs_warning() -> None:
    update = plan_transition(
        require_rule("stale_reset", current=SubmissionStatus.PROCESSING, actor=Actor.SYSTEM),
        submission=_snapshot(SubmissionStatus.PROCESSING, retry_count=1, processing_started_at=NOW),
        now=NOW,
    )

    assert update.status == SubmissionStatus.APPROVED
    assert update.changes["retry_count"] == 2
    assert update.changes["processing_started_at"] is None
    assert update.append_logs[0].message == STUCK_RESET_LOG_MESSAGE
    assert update.append_logs[0].level == LogLevel.WARNING


@pytest.mark.unit
def test_requeue_for_review_clears_approval_but_requeue_stuck_sets_it() -> None:
    review = plan_transition(
        require_rule("requeue_for_review", current=SubmissionStatus.COMPLETED, actor=Actor.ADMIN),
        submission=_snapshot(SubmissionStatus.COMPLETED, approved_at=NOW - timedelta(hours=1), retry_count=2),
        now=NOW,
    )
    stuck = plan_transition(
        require_rule("requeue_stuck", current=SubmissionStatus.PROCESSING, actor=Actor.ADMIN),
        submission=_snapshot(SubmissionStatus.PROCESSING, processing_started_at=NOW),
        now=NOW,
    )

    assert review.status == SubmissionStatus.PENDING
    assert review.changes["approved_at"] is None
    assert review.changes["retry_count"] == 0
    assert stuck.status == SubmissionStatus.APPROVED
    assert stuck.changes["approved_at"] == NOW


@pytest.mark.unit
def test_leaving_failed_clears_failure_reason() -> None:
    update = plan_transition(
        require_rule("retry", current=SubmissionStatus.FAILED, actor=Actor.ADMIN),
        submission=_snapshot(SubmissionStatus.FAILED, failure_reason="boom", retry_count=2),
        now=NOW,
    )

    assert update.changes["failure_reason"] is None
    assert "retry_count" not in update.changes


@pytest.mark.unit
def test_fail_records_reason_with_fallback() -> None:
    update = plan_transition(
        require_rule("fail", current=SubmissionStatus.PROCESSING, actor=Actor.PROCESSOR),
        submission=_snapshot(SubmissionStatus.PROCESSING),
        now=NOW,
        failure_reason="   ",
    )

    assert update.changes["failure_reason"] == "unspecified failure"
    assert update.append_logs[0].level == LogLevel.ERROR


@pytest.mark.unit
def test_processing_staleness_threshold() -> None:
    fresh = _snapshot(SubmissionStatus.PROCESSING, processing_started_at=NOW - timedelta(seconds=119))
    stale = _snapshot(SubmissionStatus.PROCESSING, processing_started_at=NOW - timedelta(seconds=121))
    unstamped = _snapshot(SubmissionStatus.PROCESSING)
    approved = _snapshot(SubmissionStatus.APPROVED)

    assert is_processing_stale(fresh, now=NOW) is False
    assert is_processing_stale(stale, now=NOW) is True
    assert is_processing_stale(unstamped, now=NOW) is True
    assert is_processing_stale(approved, now=NOW) is False


@pytest.mark.unit
def test_submission_update_rejects_unknown_fields() -> None:
    with pytest.raises(ValueError, match="unsupported submission fields"):
        SubmissionUpdate(changes={"email": "x@example.com"})


@pytest.mark.unit
def test_late_complete_is_only_reachable_through_its_own_operation() -> None:
    rule = require_rule("late_complete", current=SubmissionStatus.APPROVED, actor=Actor.PROCESSOR)
    image = GeneratedImage(url="memory://results/1.png", filename="a.png", created_at=NOW)

    update = plan_transition(
        rule,
        submission=_snapshot(SubmissionStatus.APPROVED, retry_count=1),
        now=NOW,
        generated_images=(image,),
    )

    assert update.status == SubmissionStatus.COMPLETED
    assert update.changes["processing_started_at"] is None
    assert update.append_logs[-1].level == LogLevel.WARNING
    with pytest.raises(DomainInvariantError):
        find_rule(current=SubmissionStatus.APPROVED, target=SubmissionStatus.COMPLETED, actor=Actor.PROCESSOR)
