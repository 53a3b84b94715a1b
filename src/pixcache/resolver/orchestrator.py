"""Cache-aware fetch orchestration.

Per request: authenticate, resolve the size, derive the cache key, probe the
store, and on a miss fetch the original (stored object or remote origin),
transform it and hand the envelope back for the response. Write-back happens
later through the persist queue.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Callable, Optional

import structlog
from opentelemetry import trace

from ..common.errors import ErrorKind, StorageError
from ..common.metrics import GLOBAL_REGISTRY, Counter
from ..common.security import verify_signature
from ..common.settings import ResolverSettings
from .envelope import ResultEnvelope
from .keys import derive_cache_key
from .persist import PersistQueue
from .sizes import SizeSpec, SizeTable
from .sources import SourceFetcher, SourceRef, classify_source
from .storage import ObjectStore, StoredObject


LOGGER = structlog.get_logger("pixcache.resolver")
TRACER = trace.get_tracer("pixcache.resolver")

HIT_COUNTER = GLOBAL_REGISTRY.register(Counter("pixcache_cache_hits_total", "Requests served from the cache store"))
MISS_COUNTER = GLOBAL_REGISTRY.register(Counter("pixcache_cache_misses_total", "Requests that required a transform"))
TRANSFORM_COUNTER = GLOBAL_REGISTRY.register(Counter("pixcache_transforms_total", "Transforms performed"))

TransformFunc = Callable[[bytes, int, int, bool, int], bytes]


@dataclass(frozen=True)
class RequestDescriptor:
    size_token: str
    source_reference: str
    signature: Optional[str]
    canonical_path: str


class ThumbnailResolver:
    def __init__(
        self,
        settings: ResolverSettings,
        *,
        sizes: SizeTable,
        fetcher: SourceFetcher,
        transform: TransformFunc,
        store: Optional[ObjectStore] = None,
        persist_queue: Optional[PersistQueue] = None,
        classify: Callable[[str], SourceRef] = classify_source,
    ) -> None:
        self._secret = settings.signing_secret.get_secret_value()
        self._crop = settings.transform_crop
        self._quality = settings.transform_quality
        self._sizes = sizes
        self._fetcher = fetcher
        self._transform = transform
        self._store = store
        self._persist_queue = persist_queue
        self._classify = classify

    @property
    def caching_enabled(self) -> bool:
        return self._store is not None

    async def resolve(self, request: RequestDescriptor) -> ResultEnvelope:
        verify_signature(request.signature, request.canonical_path, self._secret)
        size = self._sizes.resolve(request.size_token)
        source = self._classify(request.source_reference)
        cache_key = derive_cache_key(request.source_reference, request.size_token)
        log = LOGGER.bind(cache_key=cache_key, size_token=request.size_token)

        if self._store is None:
            data = await self._fetch(source)
            return await self._render(data, size, cache_key)

        stored = await self._probe(cache_key, log)
        if stored is not None:
            HIT_COUNTER.inc()
            log.info("cache_hit", bytes=stored.content_length)
            return ResultEnvelope(
                content_type=stored.content_type,
                content_length=stored.content_length,
                content_hash=stored.etag,
                storage_path=cache_key,
                stream=stored.body,
                cache_hit=True,
            )

        MISS_COUNTER.inc()
        log.info("cache_miss")
        # The unmodified reference is classified again rather than reusing
        # ``source``; both passes see the same input.
        original = self._classify(request.source_reference)
        data = await self._fetch(original)
        return await self._render(data, size, cache_key)

    def schedule_persist(self, envelope: ResultEnvelope) -> bool:
        if self._persist_queue is None or envelope.cache_hit or envelope.payload is None:
            return False
        return self._persist_queue.submit(envelope)

    async def _probe(self, cache_key: str, log) -> Optional[StoredObject]:
        with TRACER.start_as_current_span("resolver.cache_probe", attributes={"pixcache.cache_key": cache_key}):
            try:
                return await self._store.get(cache_key)
            except StorageError as exc:
                if exc.kind is not ErrorKind.STORAGE_READ:
                    raise
                log.warning("cache_probe_failed", error=exc.detail)
                return None

    async def _fetch(self, source: SourceRef) -> bytes:
        with TRACER.start_as_current_span("resolver.fetch_source") as span:
            span.set_attribute("pixcache.source_kind", type(source).__name__)
            data = await self._fetcher.fetch(source)
            span.set_attribute("pixcache.source_bytes", len(data))
            return data

    async def _render(self, data: bytes, size: SizeSpec, cache_key: str) -> ResultEnvelope:
        with TRACER.start_as_current_span("resolver.transform") as span:
            span.set_attribute("pixcache.width", size.width)
            span.set_attribute("pixcache.height", size.height)
            payload = await asyncio.to_thread(self._transform, data, size.width, size.height, self._crop, self._quality)
            TRANSFORM_COUNTER.inc()
            return ResultEnvelope.from_payload(payload, cache_key)
