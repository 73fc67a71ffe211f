from __future__ import annotations

from dataclasses import dataclass

from fastapi.testclient import TestClient

from kiosk.api.handlers.deps import ApiDeps
from kiosk.api.http_app import build_app
from kiosk.domain.use_cases.deps import ServiceDeps
from kiosk.settings import AuthSettings
from tests.unit.service_seed import PHOTO_B64, FakeClock, build_services

ADMIN_PASSWORD = "admin-pass"
CAPTURE_PASSWORD = "kiosk-pass"
PROCESSOR_SECRET = "proc-secret"

AUTH = AuthSettings(
    admin_password=ADMIN_PASSWORD,
    capture_password=CAPTURE_PASSWORD,
    token_secret="integration-secret",
    processor_secret=PROCESSOR_SECRET,
)


@dataclass
class ApiHarness:
    client: TestClient
    services: ServiceDeps
    clock: FakeClock
    admin: dict[str, str]
    kiosk: dict[str, str]
    processor: dict[str, str]


def build_api(*, role: str = "api", run_id: str = "integration-api", clock: FakeClock | None = None):
    clock = clock or FakeClock()
    services = build_services(clock)
    app = build_app(role=role, run_id=run_id, api_deps=ApiDeps(services=services, auth=AUTH))
    return app, services, clock


def login(client: TestClient, role: str, password: str) -> dict[str, str]:
    response = client.post(f"/api/auth/login/{role}", json={"password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['token']}"}


def harness(client: TestClient, services: ServiceDeps, clock: FakeClock) -> ApiHarness:
    return ApiHarness(
        client=client,
        services=services,
        clock=clock,
        admin=login(client, "admin", ADMIN_PASSWORD),
        kiosk=login(client, "capture", CAPTURE_PASSWORD),
        processor={"Authorization": f"Bearer {PROCESSOR_SECRET}"},
    )


def create_event(api: ApiHarness, *, name: str = "Launch Party", **extra) -> str:
    response = api.client.post(
        "/api/events",
        headers=api.admin,
        json={"name": name, "eventDate": "2025-06-01T18:00:00Z", **extra},
    )
    assert response.status_code == 201, response.text
    return response.json()["id"]


def submit(api: ApiHarness, *, event_id: str, name: str = "Ada", **extra) -> str:
    response = api.client.post(
        "/api/submissions",
        headers=api.kiosk,
        json={"eventId": event_id, "name": name, "photo": PHOTO_B64, "prompt": "astronaut cat", **extra},
    )
    assert response.status_code == 201, response.text
    return response.json()["submissionId"]
