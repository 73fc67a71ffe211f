from __future__ import annotations

from kiosk.domain.errors import DomainNotFoundError, DomainValidationError
from kiosk.domain.models import PresetSnapshot
from kiosk.domain.use_cases.deps import ServiceDeps


async def list_presets(deps: ServiceDeps) -> list[PresetSnapshot]:
    return await deps.repository.list_presets()


async def create_preset(deps: ServiceDeps, *, name: str, prompt: str, custom_text: str = "") -> PresetSnapshot:
    name = name.strip()
    prompt = prompt.strip()
    if not name or not prompt:
        raise DomainValidationError("Name and prompt are required")
    return await deps.repository.create_preset(name=name, prompt=prompt, custom_text=custom_text)


async def delete_preset(deps: ServiceDeps, *, preset_id: str) -> None:
    if not await deps.repository.delete_preset(preset_id=preset_id):
        raise DomainNotFoundError("Preset not found")
