from __future__ import annotations

from pathlib import Path

import pytest

from pixcache.common.security import sign_path
from pixcache.common.settings import ResolverSettings

from tests.utils.images import make_image


SECRET = "test-signing-secret"
SIZES = {"thumb": "100x100", "wide": "200x100", "broken": "150x"}


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    for name in ("PIXCACHE_S3_BUCKET", "PIXCACHE_STORAGE_PATH", "PIXCACHE_SIZES", "PIXCACHE_METRICS_TOKEN"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def jpeg_bytes() -> bytes:
    return make_image("JPEG")


@pytest.fixture
def png_bytes() -> bytes:
    return make_image("PNG")


@pytest.fixture
def make_settings():
    def _factory(**overrides) -> ResolverSettings:
        values = {"signing_secret": SECRET, "sizes": dict(SIZES), "persist_drain_timeout": 5.0}
        values.update(overrides)
        return ResolverSettings(**values)

    return _factory


@pytest.fixture
def signed_headers():
    def _factory(path: str, secret: str = SECRET) -> dict[str, str]:
        return {"Signature": sign_path(path, secret)}

    return _factory
