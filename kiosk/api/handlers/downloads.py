from __future__ import annotations

import asyncio
import logging

from fastapi import Response
from PIL import UnidentifiedImageError

from kiosk.api.handlers.deps import ApiDeps
from kiosk.clients.imaging import download_filename, prepare_for_print
from kiosk.domain.errors import DomainDependencyError, DomainValidationError

COMPONENT_ID = "api.print_download"

logger = logging.getLogger("kiosk.imaging")


async def print_download_handler(*, url: str | None, filename: str | None, api_deps: ApiDeps) -> Response:
    """Fetch a stored sticker and return it prepared for the printer."""
    if not url:
        raise DomainValidationError("url is required")

    try:
        payload = await api_deps.services.image_fetcher.fetch(url)
    except Exception as exc:
        logger.exception("download fetch failed", extra={"url": url})
        raise DomainDependencyError("image fetch failed") from exc

    try:
        printable = await asyncio.to_thread(prepare_for_print, payload)
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        logger.exception("print preparation failed", extra={"url": url})
        raise DomainDependencyError("print preparation failed") from exc

    return Response(
        content=printable,
        media_type="image/png",
        headers={"Content-Disposition": f'attachment; filename="{download_filename(filename)}"'},
    )
