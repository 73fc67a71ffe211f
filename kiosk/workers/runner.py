from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import os

from kiosk.workers.loop import WatchdogLoop


@dataclass(frozen=True)
class WorkerRuntimeSettings:
    interval_ms: int = 30000
    error_backoff_ms: int = 5000


@dataclass
class WorkerRuntimeState:
    started: bool = False
    stopped: bool = False
    ticks_total: int = 0
    resets_total: int = 0
    idle_ticks_total: int = 0
    errors_total: int = 0


def worker_runtime_settings_from_env() -> WorkerRuntimeSettings:
    return WorkerRuntimeSettings(
        interval_ms=_env_int("WATCHDOG_INTERVAL_MS", 30000),
        error_backoff_ms=_env_int("WATCHDOG_ERROR_BACKOFF_MS", 5000),
    )


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default

    try:
        parsed = int(value)
    except ValueError:
        return default

    return parsed if parsed > 0 else default


async def run_worker_until_stopped(
    *,
    worker_loop: WatchdogLoop,
    role: str,
    run_id: str,
    stop_event: asyncio.Event,
    settings: WorkerRuntimeSettings,
    logger: logging.Logger,
    state: WorkerRuntimeState | None = None,
) -> None:
    if state is not None:
        state.started = True

    base_extra = {"role": role, "service": role, "run_id": run_id, "stage": worker_loop.stage}
    logger.info("worker loop started", extra=base_extra)

    while not stop_event.is_set():
        delay_ms = settings.interval_ms
        try:
            reset = await worker_loop.run_once()
            if state is not None:
                state.ticks_total += 1
                if reset:
                    state.resets_total += reset
                else:
                    state.idle_ticks_total += 1
            logger.info("worker tick", extra={**base_extra, "reset": reset})
        except Exception:
            if state is not None:
                state.ticks_total += 1
                state.errors_total += 1
            delay_ms = settings.error_backoff_ms
            logger.exception("worker tick error", extra=base_extra)

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=delay_ms / 1000)
        except TimeoutError:
            continue

    logger.info("worker loop stopped", extra=base_extra)
    if state is not None:
        state.stopped = True
