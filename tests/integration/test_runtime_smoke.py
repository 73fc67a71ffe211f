import subprocess
import sys
import time

from fastapi.testclient import TestClient
import pytest

from kiosk.api.http_app import build_app
from kiosk.roles import SUPPORTED_ROLES, validate_role
from kiosk.services.bootstrap import build_runtime_container
from kiosk.settings import AppSettings
from kiosk.workers.runner import WorkerRuntimeSettings


@pytest.mark.integration
@pytest.mark.parametrize("role", SUPPORTED_ROLES)
def test_role_starts_in_empty_mode_via_dry_run(role: str) -> None:
    proc = subprocess.run(
        [sys.executable, "-m", "kiosk.main", "--role", role, "--dry-run-startup"],
        capture_output=True,
        text=True,
        check=False,
    )
    assert proc.returncode == 0, proc.stderr


@pytest.mark.integration
def test_unknown_role_exits_with_usage_error() -> None:
    proc = subprocess.run(
        [sys.executable, "-m", "kiosk.main", "--role", "migrator", "--dry-run-startup"],
        capture_output=True,
        text=True,
        check=False,
    )
    assert proc.returncode == 2
    assert "Supported roles" in proc.stderr


@pytest.mark.integration
def test_watchdog_role_reports_running_loop_on_ready() -> None:
    role = validate_role("worker-watchdog")
    container = build_runtime_container(role, AppSettings())
    app = build_app(
        role=role.name,
        run_id="integration-watchdog",
        worker_loop=container.worker_loop,
        worker_runtime_settings=WorkerRuntimeSettings(interval_ms=10, error_backoff_ms=10),
        api_deps=container.api_deps,
    )

    with TestClient(app) as client:
        deadline = time.monotonic() + 2
        payload = client.get("/ready").json()
        while payload["worker_metrics"]["ticks_total"] < 2 and time.monotonic() < deadline:
            time.sleep(0.02)
            payload = client.get("/ready").json()

    assert payload["role"] == "worker-watchdog"
    assert payload["worker_loop_enabled"] is True
    assert payload["worker_loop_ready"] is True
    assert payload["worker_metrics"]["started"] is True
    assert payload["worker_metrics"]["ticks_total"] >= 2
    assert payload["worker_metrics"]["errors_total"] == 0
    assert payload["worker_metrics"]["resets_total"] == 0
