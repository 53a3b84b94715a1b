"""In-memory object stores and fake boto3 clients for tests."""

from __future__ import annotations

import hashlib
from typing import AsyncIterator, Optional

from botocore.exceptions import ClientError

from pixcache.common.errors import StorageError
from pixcache.resolver.envelope import detect_content_type
from pixcache.resolver.storage import ObjectStore, StoredObject


async def _chunks(data: bytes, size: int = 1024) -> AsyncIterator[bytes]:
    for offset in range(0, len(data), size):
        yield data[offset : offset + size]


class MemoryStore(ObjectStore):
    def __init__(self, objects: Optional[dict[str, bytes]] = None) -> None:
        self.objects: dict[str, bytes] = dict(objects or {})
        self.content_types: dict[str, str] = {}
        self.get_calls: list[str] = []
        self.put_calls: list[str] = []
        self.get_error: Optional[StorageError] = None
        self.put_error: Optional[Exception] = None

    async def get(self, key: str) -> Optional[StoredObject]:
        self.get_calls.append(key)
        if self.get_error is not None:
            raise self.get_error
        data = self.objects.get(key)
        if data is None:
            return None
        return StoredObject(
            key=key,
            content_type=self.content_types.get(key) or detect_content_type(data) or "application/octet-stream",
            content_length=len(data),
            etag=hashlib.md5(data).hexdigest(),
            body=_chunks(data),
        )

    async def put(self, key: str, data: bytes, content_type: str) -> None:
        self.put_calls.append(key)
        if self.put_error is not None:
            raise self.put_error
        self.objects[key] = data
        self.content_types[key] = content_type

    def status(self) -> dict[str, object]:
        return {"backend": "memory", "objects": len(self.objects)}


def client_error(code: str, operation: str = "GetObject") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class FakeBody:
    def __init__(self, payload: bytes) -> None:
        self._payload = payload
        self._offset = 0
        self.closed = False

    def read(self, amt: Optional[int] = None) -> bytes:
        if amt is None:
            amt = len(self._payload) - self._offset
        chunk = self._payload[self._offset : self._offset + amt]
        self._offset += len(chunk)
        return chunk

    def close(self) -> None:
        self.closed = True


class FakeS3Client:
    def __init__(self) -> None:
        self.objects: dict[str, dict[str, object]] = {}
        self.get_calls: list[dict[str, object]] = []
        self.put_calls: list[dict[str, object]] = []
        self.get_error: Optional[Exception] = None
        self.put_error: Optional[Exception] = None

    def get_object(self, **kwargs):
        self.get_calls.append(kwargs)
        if self.get_error is not None:
            raise self.get_error
        entry = self.objects.get(kwargs["Key"])
        if entry is None:
            raise client_error("NoSuchKey")
        body = entry["Body"]
        return {
            "Body": FakeBody(body),
            "ContentType": entry["ContentType"],
            "ContentLength": len(body),
            "ETag": f'"{hashlib.md5(body).hexdigest()}"',
        }

    def put_object(self, **kwargs):
        self.put_calls.append(kwargs)
        if self.put_error is not None:
            raise self.put_error
        self.objects[kwargs["Key"]] = {"Body": kwargs["Body"], "ContentType": kwargs["ContentType"]}
        return {}
