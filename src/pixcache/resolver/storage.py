"""Object store collaborators: S3 via boto3 and a local-disk store."""

from __future__ import annotations

import asyncio
import hashlib
import os
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Callable, Optional

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from ..common.errors import ErrorKind, StorageError
from ..common.settings import ResolverSettings
from .envelope import detect_content_type


LOGGER = structlog.get_logger("pixcache.resolver.storage")

CHUNK_SIZE = 64 * 1024
MISSING_KEY_CODES = {"404", "NoSuchKey", "NotFound"}


@dataclass
class StoredObject:
    """An object read from the store; ``body`` is consumed at most once."""

    key: str
    content_type: str
    content_length: int
    etag: str
    body: AsyncIterator[bytes]

    async def read(self) -> bytes:
        data = bytearray()
        async for chunk in self.body:
            data.extend(chunk)
        return bytes(data)


class ObjectStore:
    async def get(self, key: str) -> Optional[StoredObject]:  # pragma: no cover - interface
        """Return the object at ``key`` or ``None`` when it does not exist."""
        raise NotImplementedError

    async def put(self, key: str, data: bytes, content_type: str) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def status(self) -> dict[str, object]:  # pragma: no cover - interface
        raise NotImplementedError


def sanitize_key(root: Path, key: str) -> Path:
    base = root.resolve()
    candidate = base.joinpath(*[part for part in key.split("/") if part])
    resolved = candidate.resolve(strict=False)
    if resolved == base or not resolved.is_relative_to(base):
        raise StorageError(f"Invalid storage key {key!r}", kind=ErrorKind.STORAGE_READ)
    return resolved


async def _single_chunk(data: bytes) -> AsyncIterator[bytes]:
    yield data


class LocalObjectStore(ObjectStore):
    def __init__(self, root: Path) -> None:
        self._root = Path(root).expanduser()

    async def get(self, key: str) -> Optional[StoredObject]:
        path = sanitize_key(self._root, key)
        try:
            data = await asyncio.to_thread(path.read_bytes)
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
            return None
        except OSError as exc:
            raise StorageError(f"Failed to read {key}: {exc}", kind=ErrorKind.STORAGE_READ) from exc
        return StoredObject(
            key=key,
            content_type=detect_content_type(data) or "application/octet-stream",
            content_length=len(data),
            etag=hashlib.md5(data).hexdigest(),
            body=_single_chunk(data),
        )

    async def put(self, key: str, data: bytes, content_type: str) -> None:
        try:
            path = sanitize_key(self._root, key)
        except StorageError as exc:
            raise StorageError(exc.detail, kind=ErrorKind.STORAGE_WRITE) from exc
        try:
            await asyncio.to_thread(self._write_atomic, path, data)
        except OSError as exc:
            raise StorageError(f"Failed to write {key}: {exc}", kind=ErrorKind.STORAGE_WRITE) from exc

    @staticmethod
    def _write_atomic(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(f".{path.name}.{os.getpid()}.{id(data)}.tmp")
        tmp_path.write_bytes(data)
        os.replace(tmp_path, path)

    def status(self) -> dict[str, object]:
        return {
            "backend": "local",
            "storage_path": str(self._root),
            "writable": self._root.exists() and os.access(self._root, os.W_OK),
        }


class S3ObjectStore(ObjectStore):
    """S3 store; the boto3 client is created on first use and then shared."""

    def __init__(self, settings: ResolverSettings) -> None:
        self._settings = settings
        self._bucket = settings.s3_bucket
        self._client = None

    def _get_client(self):
        if self._client is not None:
            return self._client
        settings = self._settings
        secret = settings.s3_secret_access_key.get_secret_value() if settings.s3_secret_access_key else None
        session_args = {
            "aws_access_key_id": settings.s3_access_key_id,
            "aws_secret_access_key": secret,
            "region_name": settings.s3_region,
        }
        try:
            session = boto3.session.Session(**{k: v for k, v in session_args.items() if v})
            client_args = {"endpoint_url": settings.s3_endpoint_url}
            self._client = session.client("s3", **{k: v for k, v in client_args.items() if v})
        except (BotoCoreError, ClientError, ValueError) as exc:
            LOGGER.error("s3_session_failed", bucket=self._bucket, error=str(exc))
            raise StorageError(f"Unable to open storage session: {exc}", kind=ErrorKind.STORAGE_SESSION) from exc
        return self._client

    async def _call(self, func: Callable[..., object], **kwargs) -> object:
        return await asyncio.to_thread(func, Bucket=self._bucket, **kwargs)

    async def get(self, key: str) -> Optional[StoredObject]:
        client = self._get_client()
        try:
            response = await self._call(client.get_object, Key=key)
        except ClientError as exc:
            error_code = exc.response.get("Error", {}).get("Code", "")
            if error_code in MISSING_KEY_CODES:
                return None
            raise StorageError(f"Failed to read {key}: {error_code or exc}", kind=ErrorKind.STORAGE_READ) from exc
        except BotoCoreError as exc:
            raise StorageError(f"Failed to read {key}: {exc}", kind=ErrorKind.STORAGE_READ) from exc

        return StoredObject(
            key=key,
            content_type=response.get("ContentType") or "application/octet-stream",
            content_length=int(response.get("ContentLength", 0)),
            etag=str(response.get("ETag", "")).strip('"'),
            body=_stream_body(response["Body"]),
        )

    async def put(self, key: str, data: bytes, content_type: str) -> None:
        client = self._get_client()
        try:
            await self._call(
                client.put_object,
                Key=key,
                Body=data,
                ContentLength=len(data),
                ContentType=content_type,
                StorageClass=self._settings.s3_storage_class,
            )
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"Failed to write {key}: {exc}", kind=ErrorKind.STORAGE_WRITE) from exc

    def status(self) -> dict[str, object]:
        return {
            "backend": "s3",
            "bucket": self._bucket,
            "region": self._settings.s3_region,
            "endpoint": self._settings.s3_endpoint_url,
        }


async def _stream_body(body) -> AsyncIterator[bytes]:
    try:
        while True:
            chunk = await asyncio.to_thread(body.read, CHUNK_SIZE)
            if not chunk:
                break
            yield chunk
    finally:
        close = getattr(body, "close", None)
        if close is not None:
            close()


def build_store(settings: ResolverSettings) -> Optional[ObjectStore]:
    if settings.s3_bucket:
        return S3ObjectStore(settings)
    if settings.storage_path is not None:
        return LocalObjectStore(settings.storage_path)
    return None
