from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
import secrets
import time
from typing import Any
from urllib.parse import unquote, urlparse

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from kiosk.domain.media import extension_for

logger = logging.getLogger("kiosk.storage")

# Stored objects never change after upload.
CACHE_CONTROL = "max-age=31536000"


def object_key(folder: str, content_type: str, *, now_ms: int | None = None, token: str | None = None) -> str:
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    suffix = token if token is not None else secrets.token_hex(8)
    return f"{folder.strip('/')}/{stamp}-{suffix}.{extension_for(content_type)}"


@dataclass
class S3ObjectStore:
    """Image store backed by a public-read S3 bucket."""

    bucket: str
    region: str = "us-east-1"
    client: Any = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.client is None:
            self.client = boto3.client("s3", region_name=self.region)

    def public_url(self, key: str) -> str:
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    def key_for_url(self, url: str) -> str:
        return unquote(urlparse(url).path.lstrip("/"))

    async def put(self, payload: bytes, content_type: str, *, folder: str = "submissions") -> str:
        key = object_key(folder, content_type)
        await asyncio.to_thread(
            self.client.put_object,
            Bucket=self.bucket,
            Key=key,
            Body=payload,
            ContentType=content_type,
            CacheControl=CACHE_CONTROL,
        )
        logger.info("object stored", extra={"key": key, "size": len(payload)})
        return self.public_url(key)

    async def delete(self, url: str) -> None:
        key = self.key_for_url(url)
        if not key:
            logger.warning("delete skipped for url without key", extra={"url": url})
            return
        try:
            await asyncio.to_thread(self.client.delete_object, Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError):
            logger.warning("object delete failed", exc_info=True, extra={"key": key})
            return
        logger.info("object deleted", extra={"key": key})
