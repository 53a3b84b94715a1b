"""Source reference classification and fetching.

A reference with a host component is a remote origin URL; anything else names
an original that already lives in the object store under the raw reference.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union
from urllib.parse import urlsplit, urlunsplit

import httpx
import structlog

from ..common.errors import FetchError, ParseError
from .storage import ObjectStore


LOGGER = structlog.get_logger("pixcache.resolver.sources")

REMOTE_SCHEMES = {"http", "https"}


@dataclass(frozen=True)
class RemoteURL:
    scheme: str
    host: str
    path: str
    query: str = ""
    fragment: str = ""

    @property
    def url(self) -> str:
        return urlunsplit((self.scheme, self.host, self.path, self.query, self.fragment))


@dataclass(frozen=True)
class StoreObject:
    key: str


SourceRef = Union[RemoteURL, StoreObject]


def classify_source(raw_reference: str) -> SourceRef:
    if not raw_reference:
        raise ParseError("Empty source reference")
    try:
        parts = urlsplit(raw_reference)
    except ValueError as exc:
        raise ParseError(f"Malformed source reference: {exc}") from exc
    if not parts.netloc:
        return StoreObject(key=raw_reference)
    if parts.scheme.lower() not in REMOTE_SCHEMES:
        raise ParseError(f"Unsupported source scheme {parts.scheme!r}")
    return RemoteURL(
        scheme=parts.scheme.lower(),
        host=parts.netloc,
        path=parts.path,
        query=parts.query,
        fragment=parts.fragment,
    )


class SourceFetcher:
    """Fetch original bytes from the origin or the object store, without retries."""

    def __init__(self, http_client: httpx.AsyncClient, store: Optional[ObjectStore]) -> None:
        self._http = http_client
        self._store = store

    async def fetch(self, ref: SourceRef) -> bytes:
        if isinstance(ref, RemoteURL):
            return await self.fetch_remote(ref)
        return await self.fetch_stored(ref)

    async def fetch_remote(self, ref: RemoteURL) -> bytes:
        try:
            response = await self._http.get(ref.url)
        except httpx.HTTPError as exc:
            LOGGER.warning("origin_transport_error", url=ref.url, error=str(exc))
            raise FetchError(f"Failed to fetch {ref.url}: {exc}", reason=FetchError.TRANSPORT) from exc
        if response.status_code != httpx.codes.OK:
            LOGGER.warning("origin_unexpected_status", url=ref.url, status=response.status_code)
            raise FetchError(
                f"Unexpected status code from source: {response.status_code}",
                reason=FetchError.UPSTREAM_STATUS,
                upstream_status=response.status_code,
            )
        return response.content

    async def fetch_stored(self, ref: StoreObject) -> bytes:
        if self._store is None:
            raise FetchError(f"No object store configured for {ref.key}", reason=FetchError.NOT_FOUND)
        stored = await self._store.get(ref.key)
        if stored is None:
            raise FetchError(f"Source object {ref.key} not found", reason=FetchError.NOT_FOUND)
        return await stored.read()
