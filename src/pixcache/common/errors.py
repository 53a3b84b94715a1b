"""Error taxonomy for the resolver chain.

Every stage raises a :class:`ResolverError` subclass tagged with an
:class:`ErrorKind`. The HTTP layer maps the kind to a private status code so
operators can attribute a failure to the stage that produced it.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    SIZE = "size"
    SIGNATURE = "signature"
    PARSE = "parse"
    ORIGIN_FETCH = "origin_fetch"
    TRANSFORM = "transform"
    STORAGE_SESSION = "storage_session"
    STORAGE_READ = "storage_read"
    STORAGE_WRITE = "storage_write"
    RESPONSE_COPY = "response_copy"

    @property
    def status_code(self) -> int:
        return STATUS_CODES[self]


STATUS_CODES: dict[ErrorKind, int] = {
    ErrorKind.SIZE: 601,
    ErrorKind.SIGNATURE: 602,
    ErrorKind.PARSE: 603,
    ErrorKind.ORIGIN_FETCH: 604,
    ErrorKind.TRANSFORM: 605,
    ErrorKind.STORAGE_SESSION: 606,
    ErrorKind.STORAGE_READ: 607,
    ErrorKind.STORAGE_WRITE: 608,
    ErrorKind.RESPONSE_COPY: 609,
}


class ResolverError(Exception):
    """Base class for every failure surfaced by the resolver chain."""

    kind: ErrorKind

    def __init__(self, detail: str, *, reason: Optional[str] = None, kind: Optional[ErrorKind] = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.reason = reason
        if kind is not None:
            self.kind = kind

    @property
    def status_code(self) -> int:
        return self.kind.status_code

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {"error": self.kind.value, "detail": self.detail}
        if self.reason:
            payload["reason"] = self.reason
        return payload


class AuthError(ResolverError):
    kind = ErrorKind.SIGNATURE

    SIGNATURE_MISMATCH = "signature_mismatch"
    COMPUTE_FAILURE = "compute_failure"


class SizeError(ResolverError):
    kind = ErrorKind.SIZE

    UNKNOWN_TOKEN = "unknown_token"
    MALFORMED_SPEC = "malformed_spec"


class ParseError(ResolverError):
    kind = ErrorKind.PARSE


class FetchError(ResolverError):
    kind = ErrorKind.ORIGIN_FETCH

    UPSTREAM_STATUS = "upstream_status"
    NOT_FOUND = "not_found"
    TRANSPORT = "transport"

    def __init__(self, detail: str, *, reason: Optional[str] = None, upstream_status: Optional[int] = None) -> None:
        super().__init__(detail, reason=reason)
        self.upstream_status = upstream_status


class TransformError(ResolverError):
    kind = ErrorKind.TRANSFORM


class CopyError(ResolverError):
    """Streaming the payload to the client failed after headers were sent."""

    kind = ErrorKind.RESPONSE_COPY


class StorageError(ResolverError):
    """Object store failure; ``kind`` is one of the three storage kinds."""

    kind = ErrorKind.STORAGE_READ
