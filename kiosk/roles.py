from __future__ import annotations

from dataclasses import dataclass

SUPPORTED_ROLES = (
    "api",
    "worker-watchdog",
)

DEFAULT_PORTS = {
    "api": 8000,
    "worker-watchdog": 8100,
}


@dataclass(frozen=True)
class RuntimeRole:
    name: str

    @property
    def default_port(self) -> int:
        return DEFAULT_PORTS[self.name]


def validate_role(role: str) -> RuntimeRole:
    if role in SUPPORTED_ROLES:
        return RuntimeRole(name=role)

    supported = ", ".join(SUPPORTED_ROLES)
    raise ValueError(
        f"Unsupported role '{role}'. Supported roles: {supported}. "
        "Note: migrations run externally and are not an app role."
    )
