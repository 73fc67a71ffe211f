from __future__ import annotations

import asyncio

import pytest

from kiosk.domain.lifecycle import STUCK_RESET_LOG_MESSAGE
from kiosk.domain.models import GeneratedImage, SubmissionStatus, SubmissionUpdate
from kiosk.domain.use_cases import queue
from kiosk.workers.loop import WatchdogLoop
from tests.unit.service_seed import FakeClock, build_services, seed_event, seed_submission


@pytest.mark.unit
def test_claim_returns_oldest_approved_then_least_retried() -> None:
    clock = FakeClock()
    deps = build_services(clock)

    async def _run() -> None:
        event = await seed_event(deps)
        assert await queue.claim_next(deps) == []

        newest = await seed_submission(deps, event_id=event.event_id, status=SubmissionStatus.APPROVED)
        clock.advance(minutes=-10)
        retried = await seed_submission(deps, event_id=event.event_id, status=SubmissionStatus.APPROVED)
        fresh = await seed_submission(deps, event_id=event.event_id, status=SubmissionStatus.APPROVED)
        await deps.repository.update_submission(
            submission_id=retried.submission_id,
            update=SubmissionUpdate(changes={"retry_count": 2}),
        )
        await seed_submission(deps, event_id=event.event_id)

        claimed = await queue.claim_next(deps)

        assert [item.submission_id for item in claimed] == [fresh.submission_id]
        assert newest.submission_id != fresh.submission_id
        # Reading the head of the queue does not claim it.
        assert (await queue.claim_next(deps))[0].submission_id == fresh.submission_id

    asyncio.run(_run())


@pytest.mark.unit
def test_stale_scan_resets_old_claims_once() -> None:
    clock = FakeClock()
    deps = build_services(clock)

    async def _run() -> None:
        event = await seed_event(deps)
        stuck = await seed_submission(deps, event_id=event.event_id, status=SubmissionStatus.PROCESSING)
        clock.advance(minutes=1)
        young = await seed_submission(deps, event_id=event.event_id, status=SubmissionStatus.PROCESSING)
        clock.advance(seconds=90)

        first = await queue.reset_stale_submissions(deps)
        second = await queue.reset_stale_submissions(deps)

        assert first.reset == 1
        assert first.submissions[0].submission_id == stuck.submission_id
        assert first.submissions[0].status == SubmissionStatus.APPROVED
        assert first.submissions[0].retry_count == 1
        assert first.submissions[0].processing_logs[-1].message == STUCK_RESET_LOG_MESSAGE
        assert second.reset == 0

        still_processing = await deps.repository.get_submission(submission_id=young.submission_id)
        assert still_processing is not None
        assert still_processing.status == SubmissionStatus.PROCESSING

    asyncio.run(_run())


@pytest.mark.unit
def test_verify_status_reports_non_processing_as_correct() -> None:
    deps = build_services()

    async def _run() -> None:
        event = await seed_event(deps)
        pending = await seed_submission(deps, event_id=event.event_id)

        result = await queue.verify_submission_status(deps, submission_id=pending.submission_id)

        assert result.fixed is False
        assert result.message == "Status pending is correct"

    asyncio.run(_run())


@pytest.mark.unit
def test_verify_status_force_completes_when_images_are_attached() -> None:
    clock = FakeClock()
    deps = build_services(clock)

    async def _run() -> None:
        event = await seed_event(deps)
        processing = await seed_submission(deps, event_id=event.event_id, status=SubmissionStatus.PROCESSING)
        images = tuple(
            GeneratedImage(url=f"memory://results/{index}.png", filename=f"{index}.png", created_at=clock.now)
            for index in range(4)
        )
        await deps.repository.update_submission(
            submission_id=processing.submission_id,
            update=SubmissionUpdate(changes={"generated_images": images}),
        )

        result = await queue.verify_submission_status(deps, submission_id=processing.submission_id)

        assert result.fixed is True
        assert result.message == "Fixed: Found 4 images, marked as completed"
        assert result.submission.status == SubmissionStatus.COMPLETED
        assert result.submission.processed_at == clock.now

    asyncio.run(_run())


@pytest.mark.unit
def test_verify_status_resets_stale_and_leaves_young_processing() -> None:
    clock = FakeClock()
    deps = build_services(clock)

    async def _run() -> None:
        event = await seed_event(deps)
        processing = await seed_submission(deps, event_id=event.event_id, status=SubmissionStatus.PROCESSING)

        clock.advance(seconds=60)
        young = await queue.verify_submission_status(deps, submission_id=processing.submission_id)
        clock.advance(seconds=90)
        stale = await queue.verify_submission_status(deps, submission_id=processing.submission_id)

        assert young.fixed is False
        assert young.message == "Still processing (less than 2 minutes)"
        assert stale.fixed is True
        assert stale.message == "Reset stuck processing submission to approved"
        assert stale.submission.status == SubmissionStatus.APPROVED
        assert stale.submission.retry_count == 1

    asyncio.run(_run())


@pytest.mark.unit
def test_watchdog_loop_tick_is_idempotent() -> None:
    clock = FakeClock()
    deps = build_services(clock)
    loop = WatchdogLoop(role="worker-watchdog", deps=deps)

    async def _run() -> None:
        event = await seed_event(deps)
        await seed_submission(deps, event_id=event.event_id, status=SubmissionStatus.PROCESSING)
        await seed_submission(deps, event_id=event.event_id, status=SubmissionStatus.PROCESSING)
        clock.advance(minutes=5)

        assert await loop.run_once() == 2
        assert await loop.run_once() == 0

    asyncio.run(_run())


@pytest.mark.unit
def test_processing_without_start_time_counts_as_stale() -> None:
    deps = build_services()

    async def _run() -> None:
        event = await seed_event(deps)
        scanned = await seed_submission(deps, event_id=event.event_id, status=SubmissionStatus.PROCESSING)
        verified = await seed_submission(deps, event_id=event.event_id, status=SubmissionStatus.PROCESSING)
        for submission in (scanned, verified):
            await deps.repository.update_submission(
                submission_id=submission.submission_id,
                update=SubmissionUpdate(changes={"processing_started_at": None}),
            )

        # No clock advance: a missing claim time is treated as an abandoned claim.
        verify = await queue.verify_submission_status(deps, submission_id=verified.submission_id)
        scan = await queue.reset_stale_submissions(deps)

        assert verify.fixed is True
        assert verify.submission.status == SubmissionStatus.APPROVED
        assert [item.submission_id for item in scan.submissions] == [scanned.submission_id]
        assert scan.submissions[0].retry_count == 1

    asyncio.run(_run())
