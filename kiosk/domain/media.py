from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
import re

from kiosk.domain.errors import DomainValidationError

DATA_URL_PREFIX = re.compile(r"^data:(image/[\w.+-]+);base64,", re.IGNORECASE)

EXTENSION_BY_CONTENT_TYPE: dict[str, str] = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
}


@dataclass(frozen=True)
class DecodedImage:
    payload: bytes
    content_type: str


def decode_image_payload(data: str, *, default_content_type: str = "image/jpeg") -> DecodedImage:
    """Decode a base64 image, with or without a `data:image/...;base64,` prefix."""
    if not data or not data.strip():
        raise DomainValidationError("image payload is empty")
    content_type = default_content_type
    body = data.strip()
    match = DATA_URL_PREFIX.match(body)
    if match is not None:
        content_type = match.group(1).lower()
        body = body[match.end():]
    try:
        payload = base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DomainValidationError("image payload is not valid base64") from exc
    if not payload:
        raise DomainValidationError("image payload is empty")
    return DecodedImage(payload=payload, content_type=content_type)


def extension_for(content_type: str) -> str:
    return EXTENSION_BY_CONTENT_TYPE.get(content_type.lower(), "bin")
