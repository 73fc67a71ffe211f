from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from io import BytesIO
import logging
import re

import httpx
import numpy as np
from PIL import Image, ImageDraw

from kiosk.domain.contracts import ImageFetcher
from kiosk.domain.models import BrandingSettings

logger = logging.getLogger("kiosk.imaging")

# 2.5 inch sticker at 600 DPI.
PRINT_HEIGHT_PX = 1500
PRINT_DPI = 600
# Alpha above this becomes fully opaque, everything else fully transparent.
ALPHA_THRESHOLD = 240

_FIVE_DIGITS = re.compile(r"(\d{5})")
_EXTERIOR = 128


def download_filename(source_filename: str | None) -> str:
    match = _FIVE_DIGITS.search(source_filename or "")
    number = match.group(1) if match else "00000"
    return f"Sticker{number}.png"


def _encode_png(image: Image.Image, *, dpi: int | None = None) -> bytes:
    buffer = BytesIO()
    if dpi is None:
        image.save(buffer, format="PNG")
    else:
        image.save(buffer, format="PNG", dpi=(dpi, dpi), compress_level=9)
    return buffer.getvalue()


def _fill_interior_holes(alpha: np.ndarray) -> np.ndarray:
    """Make transparent pixels opaque unless they connect to the image edge.

    Connectivity is 4-neighbour. The mask is padded with a transparent frame
    so a single flood from the corner reaches every edge-touching region.
    """
    height, width = alpha.shape
    mask = Image.new("L", (width + 2, height + 2), 0)
    mask.paste(Image.fromarray(alpha), (1, 1))
    ImageDraw.floodfill(mask, (0, 0), _EXTERIOR, thresh=0)
    filled = np.asarray(mask)[1:-1, 1:-1]
    return np.where(filled == _EXTERIOR, 0, 255).astype(np.uint8)


def prepare_for_print(payload: bytes) -> bytes:
    """Resize a sticker for print and clean its alpha channel.

    Output is a 1500 px tall PNG tagged at 600 DPI with a binary alpha
    channel and no interior holes. Running it on its own output yields the
    same pixels.
    """
    with Image.open(BytesIO(payload)) as source:
        source.load()
        rgba = source.convert("RGBA")

    target_width = max(1, round(PRINT_HEIGHT_PX * rgba.width / rgba.height))
    if rgba.size != (target_width, PRINT_HEIGHT_PX):
        rgba = rgba.resize((target_width, PRINT_HEIGHT_PX), Image.Resampling.LANCZOS)

    pixels = np.array(rgba)
    binary_alpha = np.where(pixels[..., 3] > ALPHA_THRESHOLD, 255, 0).astype(np.uint8)
    pixels[..., 3] = _fill_interior_holes(binary_alpha)
    return _encode_png(Image.fromarray(pixels), dpi=PRINT_DPI)


def compose_branding(image: bytes, logo: bytes, branding: BrandingSettings) -> bytes:
    with Image.open(BytesIO(image)) as base_source:
        base = base_source.convert("RGBA")
    with Image.open(BytesIO(logo)) as logo_source:
        mark = logo_source.convert("RGBA")

    target_width = max(1, round(base.width * branding.size / 100))
    if branding.lock_aspect_ratio:
        target_height = max(1, round(mark.height * target_width / mark.width))
    else:
        target_height = max(1, round(base.height * branding.size / 100))
    mark = mark.resize((target_width, target_height), Image.Resampling.LANCZOS)

    opacity = min(max(branding.opacity, 0.0), 100.0) / 100
    if opacity < 1:
        pixels = np.array(mark)
        pixels[..., 3] = np.round(pixels[..., 3].astype(np.float32) * opacity).astype(np.uint8)
        mark = Image.fromarray(pixels)

    left = round(base.width * branding.position_x / 100 - target_width / 2)
    top = round(base.height * branding.position_y / 100 - target_height / 2)
    overlay = Image.new("RGBA", base.size, (0, 0, 0, 0))
    overlay.paste(mark, (left, top))
    return _encode_png(Image.alpha_composite(base, overlay))


@dataclass
class HttpImageFetcher:
    transport: httpx.AsyncBaseTransport | None = field(default=None, repr=False)
    timeout_seconds: float = 30.0

    async def fetch(self, url: str) -> bytes:
        async with httpx.AsyncClient(
            transport=self.transport,
            timeout=self.timeout_seconds,
            follow_redirects=True,
        ) as client:
            response = await client.get(url)
            response.raise_for_status()
            return response.content


@dataclass
class PillowBrandingCompositor:
    fetcher: ImageFetcher

    async def composite(self, image: bytes, branding: BrandingSettings) -> bytes:
        logo = await self.fetcher.fetch(branding.logo_url)
        branded = await asyncio.to_thread(compose_branding, image, logo, branding)
        logger.info("branding applied", extra={"logo_url": branding.logo_url})
        return branded
