from __future__ import annotations

from kiosk.domain.errors import DomainValidationError
from kiosk.domain.models import CaptureInputMode, CaptureSettings, PromptChoice


def _resolve(
    *,
    label: str,
    mode: CaptureInputMode,
    value: str,
    locked_value: str,
    choices: tuple[PromptChoice, ...],
) -> str:
    value = value.strip()
    if mode == CaptureInputMode.LOCKED and locked_value.strip():
        # Operator-locked input ignores whatever the kiosk sent.
        return locked_value.strip()
    if mode == CaptureInputMode.PRESETS and choices and value:
        allowed = {choice.value.strip() for choice in choices}
        if value not in allowed:
            raise DomainValidationError(f"{label} must be one of the event presets")
    return value


def resolve_capture_input(settings: CaptureSettings, *, prompt: str, custom_text: str) -> tuple[str, str]:
    """Apply an event's capture settings to raw kiosk input.

    Free and suggestion modes accept the input as typed (suggestions are
    chips the kiosk offers, not a constraint).
    """
    resolved_prompt = _resolve(
        label="prompt",
        mode=settings.prompt_mode,
        value=prompt,
        locked_value=settings.locked_prompt_value,
        choices=settings.prompt_presets,
    )
    resolved_custom_text = _resolve(
        label="custom text",
        mode=settings.custom_text_mode,
        value=custom_text,
        locked_value=settings.locked_custom_text_value,
        choices=settings.custom_text_presets,
    )
    return resolved_prompt, resolved_custom_text
