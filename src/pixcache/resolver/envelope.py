"""Result envelope and response header projection."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from ..common.errors import TransformError


IMAGE_SIGNATURES: tuple[tuple[bytes, str], ...] = (
    (b"\xff\xd8", "image/jpeg"),
    (b"\x89PNG", "image/png"),
    (b"GIF8", "image/gif"),
)


def detect_content_type(data: bytes) -> Optional[str]:
    for signature, content_type in IMAGE_SIGNATURES:
        if data.startswith(signature):
            return content_type
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return None


def content_hash(data: bytes) -> str:
    """Hex MD5 of ``data``; matches the S3 ETag of a single-part upload."""

    return hashlib.md5(data).hexdigest()


def cache_control(max_age: int) -> str:
    return f"max-age={max_age},public"


@dataclass
class ResultEnvelope:
    content_type: str
    content_length: int
    content_hash: str
    storage_path: str
    payload: Optional[bytes] = None
    stream: Optional[AsyncIterator[bytes]] = None
    cache_hit: bool = False

    @classmethod
    def from_payload(cls, payload: bytes, storage_path: str) -> "ResultEnvelope":
        content_type = detect_content_type(payload)
        if content_type is None:
            raise TransformError("Unknown image format")
        return cls(
            content_type=content_type,
            content_length=len(payload),
            content_hash=content_hash(payload),
            storage_path=storage_path,
            payload=payload,
        )

    def headers(self, max_age: int) -> dict[str, str]:
        return {
            "Content-Type": self.content_type,
            "Content-Length": str(self.content_length),
            "ETag": f'"{self.content_hash}"',
            "Cache-Control": cache_control(max_age),
        }

    async def chunks(self) -> AsyncIterator[bytes]:
        if self.payload is not None:
            yield self.payload
            return
        if self.stream is not None:
            async for chunk in self.stream:
                yield chunk
