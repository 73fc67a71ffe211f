from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import threading
from typing import Any

from botocore.exceptions import ClientError
import pytest

from kiosk.clients.s3 import CACHE_CONTROL, S3ObjectStore, object_key


@dataclass
class _RecordingS3Client:
    puts: list[dict[str, Any]] = field(default_factory=list)
    deletes: list[dict[str, Any]] = field(default_factory=list)
    threads: list[int] = field(default_factory=list)
    fail_deletes: bool = False

    def put_object(self, **kwargs: Any) -> dict[str, Any]:
        self.threads.append(threading.get_ident())
        self.puts.append(kwargs)
        return {}

    def delete_object(self, **kwargs: Any) -> dict[str, Any]:
        self.threads.append(threading.get_ident())
        if self.fail_deletes:
            raise ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "DeleteObject")
        self.deletes.append(kwargs)
        return {}


@pytest.mark.unit
def test_object_key_is_timestamped_and_typed() -> None:
    assert object_key("results", "image/png", now_ms=1700000000000, token="abcd") == "results/1700000000000-abcd.png"
    assert object_key("/submissions/", "image/jpeg", now_ms=1, token="x") == "submissions/1-x.jpg"


@pytest.mark.unit
def test_put_uploads_with_cache_headers_and_returns_public_url() -> None:
    client = _RecordingS3Client()
    store = S3ObjectStore(bucket="kiosk-images", region="eu-west-1", client=client)

    url = asyncio.run(store.put(b"png-bytes", "image/png", folder="results"))

    upload = client.puts[0]
    assert upload["Bucket"] == "kiosk-images"
    assert upload["ContentType"] == "image/png"
    assert upload["CacheControl"] == CACHE_CONTROL
    assert upload["Key"].startswith("results/") and upload["Key"].endswith(".png")
    assert url == f"https://kiosk-images.s3.eu-west-1.amazonaws.com/{upload['Key']}"


@pytest.mark.unit
def test_boto_calls_run_off_the_event_loop_thread() -> None:
    client = _RecordingS3Client()
    store = S3ObjectStore(bucket="kiosk-images", client=client)

    async def _run() -> int:
        loop_thread = threading.get_ident()
        url = await store.put(b"png-bytes", "image/png", folder="results")
        await store.delete(url)
        return loop_thread

    loop_thread = asyncio.run(_run())

    assert len(client.threads) == 2
    assert loop_thread not in client.threads


@pytest.mark.unit
def test_delete_derives_key_from_url() -> None:
    client = _RecordingS3Client()
    store = S3ObjectStore(bucket="kiosk-images", client=client)

    asyncio.run(store.delete("https://kiosk-images.s3.us-east-1.amazonaws.com/submissions/1-a%20b.jpg"))

    assert client.deletes == [{"Bucket": "kiosk-images", "Key": "submissions/1-a b.jpg"}]


@pytest.mark.unit
def test_delete_failures_are_swallowed() -> None:
    client = _RecordingS3Client(fail_deletes=True)
    store = S3ObjectStore(bucket="kiosk-images", client=client)

    async def _run() -> None:
        await store.delete("https://kiosk-images.s3.us-east-1.amazonaws.com/results/1-x.png")
        await store.delete("https://kiosk-images.s3.us-east-1.amazonaws.com/")

    asyncio.run(_run())

    assert client.deletes == []
