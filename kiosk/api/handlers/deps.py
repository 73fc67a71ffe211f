from __future__ import annotations

from dataclasses import dataclass

from kiosk.domain.use_cases.deps import ServiceDeps
from kiosk.settings import AuthSettings


@dataclass(frozen=True)
class ApiDeps:
    services: ServiceDeps
    auth: AuthSettings
