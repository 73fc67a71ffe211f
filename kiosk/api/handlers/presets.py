from __future__ import annotations

from kiosk.api.handlers.deps import ApiDeps
from kiosk.api.schemas import MessageResponse, PresetRequest, PresetResponse
from kiosk.domain.use_cases import presets as use_cases


async def list_presets_handler(*, api_deps: ApiDeps) -> list[PresetResponse]:
    presets = await use_cases.list_presets(api_deps.services)
    return [PresetResponse.from_domain(preset) for preset in presets]


async def create_preset_handler(*, request: PresetRequest, api_deps: ApiDeps) -> PresetResponse:
    preset = await use_cases.create_preset(
        api_deps.services,
        name=request.name,
        prompt=request.prompt,
        custom_text=request.custom_text,
    )
    return PresetResponse.from_domain(preset)


async def delete_preset_handler(*, preset_id: str, api_deps: ApiDeps) -> MessageResponse:
    await use_cases.delete_preset(api_deps.services, preset_id=preset_id)
    return MessageResponse(message="Preset deleted successfully")
