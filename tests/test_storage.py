from __future__ import annotations

import asyncio
import hashlib
from pathlib import Path

import pytest
from botocore.exceptions import EndpointConnectionError

from pixcache.common.errors import ErrorKind, StorageError
from pixcache.resolver.storage import LocalObjectStore, S3ObjectStore, build_store, sanitize_key

from tests.utils.stores import FakeS3Client, client_error


@pytest.mark.asyncio
async def test_local_store_roundtrip(tmp_path: Path, jpeg_bytes: bytes) -> None:
    store = LocalObjectStore(tmp_path)
    assert await store.get("cache/a/thumb/b.jpg") is None

    await store.put("cache/a/thumb/b.jpg", jpeg_bytes, "image/jpeg")
    stored = await store.get("cache/a/thumb/b.jpg")
    assert stored is not None
    assert stored.content_type == "image/jpeg"
    assert stored.content_length == len(jpeg_bytes)
    assert stored.etag == hashlib.md5(jpeg_bytes).hexdigest()
    assert await stored.read() == jpeg_bytes
    assert (tmp_path / "cache" / "a" / "thumb" / "b.jpg").read_bytes() == jpeg_bytes


@pytest.mark.asyncio
async def test_local_store_overwrites_last_write_wins(tmp_path: Path) -> None:
    store = LocalObjectStore(tmp_path)
    await asyncio.gather(
        store.put("k/x.png", b"first", "image/png"),
        store.put("k/x.png", b"second", "image/png"),
    )
    stored = await store.get("k/x.png")
    assert await stored.read() in {b"first", b"second"}
    assert [p.name for p in (tmp_path / "k").iterdir()] == ["x.png"]


@pytest.mark.parametrize("key", ["../etc/passwd", "a/../../b.jpg", "", "/"])
def test_sanitize_key_rejects_escape(tmp_path: Path, key: str) -> None:
    with pytest.raises(StorageError):
        sanitize_key(tmp_path, key)


@pytest.mark.asyncio
async def test_local_put_rejects_traversal_as_write_error(tmp_path: Path) -> None:
    with pytest.raises(StorageError) as exc_info:
        await LocalObjectStore(tmp_path / "root").put("../outside.jpg", b"x", "image/jpeg")
    assert exc_info.value.kind is ErrorKind.STORAGE_WRITE


@pytest.fixture
def fake_s3(monkeypatch: pytest.MonkeyPatch) -> FakeS3Client:
    client = FakeS3Client()

    class DummySession:
        def __init__(self, **kwargs) -> None:
            self.kwargs = kwargs

        def client(self, *_args, **_kwargs):  # noqa: D401 - mimic boto3 session
            return client

    monkeypatch.setattr("pixcache.resolver.storage.boto3.session.Session", DummySession)
    return client


@pytest.mark.asyncio
async def test_s3_store_roundtrip(fake_s3: FakeS3Client, make_settings, jpeg_bytes: bytes) -> None:
    store = S3ObjectStore(make_settings(s3_bucket="thumbs", s3_region="eu-west-1"))
    assert await store.get("cache/a/thumb/b.jpg") is None

    await store.put("cache/a/thumb/b.jpg", jpeg_bytes, "image/jpeg")
    put = fake_s3.put_calls[0]
    assert put["Bucket"] == "thumbs"
    assert put["ContentType"] == "image/jpeg"
    assert put["ContentLength"] == len(jpeg_bytes)
    assert put["StorageClass"] == "REDUCED_REDUNDANCY"

    stored = await store.get("cache/a/thumb/b.jpg")
    assert stored.etag == hashlib.md5(jpeg_bytes).hexdigest()
    assert stored.content_type == "image/jpeg"
    assert await stored.read() == jpeg_bytes


@pytest.mark.asyncio
async def test_s3_read_errors_are_storage_read(fake_s3: FakeS3Client, make_settings) -> None:
    store = S3ObjectStore(make_settings(s3_bucket="thumbs"))
    fake_s3.get_error = client_error("AccessDenied")
    with pytest.raises(StorageError) as exc_info:
        await store.get("cache/a/thumb/b.jpg")
    assert exc_info.value.kind is ErrorKind.STORAGE_READ

    fake_s3.get_error = EndpointConnectionError(endpoint_url="http://s3.invalid")
    with pytest.raises(StorageError) as exc_info:
        await store.get("cache/a/thumb/b.jpg")
    assert exc_info.value.kind is ErrorKind.STORAGE_READ
    assert len(fake_s3.get_calls) == 2


@pytest.mark.asyncio
async def test_s3_write_errors_are_storage_write(fake_s3: FakeS3Client, make_settings) -> None:
    store = S3ObjectStore(make_settings(s3_bucket="thumbs"))
    fake_s3.put_error = client_error("SlowDown", "PutObject")
    with pytest.raises(StorageError) as exc_info:
        await store.put("k.jpg", b"data", "image/jpeg")
    assert exc_info.value.kind is ErrorKind.STORAGE_WRITE
    assert len(fake_s3.put_calls) == 1


@pytest.mark.asyncio
async def test_s3_session_failure(monkeypatch: pytest.MonkeyPatch, make_settings) -> None:
    def broken_session(**_kwargs):
        raise ValueError("invalid region")

    monkeypatch.setattr("pixcache.resolver.storage.boto3.session.Session", broken_session)
    store = S3ObjectStore(make_settings(s3_bucket="thumbs"))
    with pytest.raises(StorageError) as exc_info:
        await store.get("k.jpg")
    assert exc_info.value.kind is ErrorKind.STORAGE_SESSION
    assert exc_info.value.status_code == 606


def test_build_store_selection(make_settings, tmp_path: Path, fake_s3: FakeS3Client) -> None:
    assert build_store(make_settings()) is None
    assert build_store(make_settings(s3_bucket="")) is None
    assert isinstance(build_store(make_settings(storage_path=tmp_path)), LocalObjectStore)
    assert isinstance(build_store(make_settings(s3_bucket="b", storage_path=tmp_path)), S3ObjectStore)
