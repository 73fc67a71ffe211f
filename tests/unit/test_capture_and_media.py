from __future__ import annotations

import base64

import pytest

from kiosk.domain.capture import resolve_capture_input
from kiosk.domain.errors import DomainValidationError
from kiosk.domain.media import decode_image_payload, extension_for
from kiosk.domain.models import CaptureInputMode, CaptureSettings, PromptChoice


@pytest.mark.unit
def test_free_and_suggestion_modes_accept_typed_input() -> None:
    settings = CaptureSettings(
        prompt_mode=CaptureInputMode.SUGGESTIONS,
        prompt_presets=(PromptChoice(name="Cat", value="cat"),),
    )

    assert resolve_capture_input(settings, prompt=" dragon ", custom_text="hi") == ("dragon", "hi")


@pytest.mark.unit
def test_locked_mode_overrides_input_and_presets_mode_restricts_it() -> None:
    settings = CaptureSettings(
        prompt_mode=CaptureInputMode.PRESETS,
        prompt_presets=(PromptChoice(name="Cat", value="cat"), PromptChoice(name="Dog", value="dog")),
        custom_text_mode=CaptureInputMode.LOCKED,
        locked_custom_text_value="ACME 2025",
    )

    assert resolve_capture_input(settings, prompt="dog", custom_text="mine") == ("dog", "ACME 2025")
    with pytest.raises(DomainValidationError, match="prompt must be one of"):
        resolve_capture_input(settings, prompt="horse", custom_text="")


@pytest.mark.unit
def test_locked_mode_without_value_falls_back_to_input() -> None:
    settings = CaptureSettings(prompt_mode=CaptureInputMode.LOCKED, locked_prompt_value="  ")

    assert resolve_capture_input(settings, prompt="typed", custom_text="") == ("typed", "")


@pytest.mark.unit
def test_decode_image_payload_reads_data_url_content_type() -> None:
    encoded = base64.b64encode(b"\x89PNG").decode("ascii")

    with_prefix = decode_image_payload(f"data:image/PNG;base64,{encoded}")
    bare = decode_image_payload(encoded, default_content_type="image/webp")

    assert with_prefix.payload == b"\x89PNG"
    assert with_prefix.content_type == "image/png"
    assert bare.content_type == "image/webp"


@pytest.mark.unit
@pytest.mark.parametrize("payload", ["", "   ", "data:image/png;base64,", "%%%"])
def test_decode_image_payload_rejects_bad_input(payload: str) -> None:
    with pytest.raises(DomainValidationError):
        decode_image_payload(payload)


@pytest.mark.unit
def test_extension_lookup_has_binary_fallback() -> None:
    assert extension_for("image/jpeg") == "jpg"
    assert extension_for("IMAGE/PNG") == "png"
    assert extension_for("application/pdf") == "bin"
