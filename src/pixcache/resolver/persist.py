"""Bounded background queue that writes freshly produced artifacts to the store."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional

import structlog
from opentelemetry import trace

from ..common.errors import ErrorKind, StorageError
from ..common.metrics import GLOBAL_REGISTRY, Counter
from .envelope import ResultEnvelope
from .storage import ObjectStore


LOGGER = structlog.get_logger("pixcache.resolver.persist")
TRACER = trace.get_tracer("pixcache.resolver.persist")

PERSISTED_COUNTER = GLOBAL_REGISTRY.register(Counter("pixcache_persist_success_total", "Artifacts written to the cache store"))
PERSIST_FAILED_COUNTER = GLOBAL_REGISTRY.register(Counter("pixcache_persist_failed_total", "Cache store writes that failed"))
PERSIST_DROPPED_COUNTER = GLOBAL_REGISTRY.register(
    Counter("pixcache_persist_dropped_total", "Artifacts not persisted because the queue was full")
)


@dataclass(frozen=True)
class PersistJob:
    key: str
    data: bytes
    content_type: str


class PersistQueue:
    """Fire-and-forget write-back.

    ``submit`` never blocks the request; outcomes are only logged and counted.
    ``stop`` drains pending jobs for up to ``drain_timeout`` seconds.
    """

    def __init__(self, store: ObjectStore, *, maxsize: int = 256, workers: int = 2, drain_timeout: float = 10.0) -> None:
        self._store = store
        self._queue: asyncio.Queue[PersistJob] = asyncio.Queue(maxsize=max(1, maxsize))
        self._worker_count = max(1, workers)
        self._drain_timeout = max(0.0, drain_timeout)
        self._workers: set[asyncio.Task] = set()
        self._running = False

    @property
    def depth(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        for index in range(self._worker_count):
            task = asyncio.create_task(self._worker(), name=f"pixcache-persist-{index}")
            self._workers.add(task)
            task.add_done_callback(self._workers.discard)
        LOGGER.info("persist_queue_started", workers=self._worker_count, maxsize=self._queue.maxsize)

    def submit(self, envelope: ResultEnvelope) -> bool:
        if envelope.payload is None:
            return False
        job = PersistJob(key=envelope.storage_path, data=envelope.payload, content_type=envelope.content_type)
        try:
            self._queue.put_nowait(job)
        except asyncio.QueueFull:
            PERSIST_DROPPED_COUNTER.inc()
            LOGGER.warning("persist_dropped", cache_key=job.key, depth=self._queue.qsize())
            return False
        return True

    async def drain(self, timeout: Optional[float] = None) -> bool:
        timeout = self._drain_timeout if timeout is None else timeout
        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout)
        except asyncio.TimeoutError:
            LOGGER.warning("persist_drain_timeout", pending=self._queue.qsize())
            return False
        return True

    async def stop(self) -> None:
        if not self._running:
            return
        await self.drain()
        self._running = False
        for task in list(self._workers):
            task.cancel()
        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)
        LOGGER.info("persist_queue_stopped")

    async def _worker(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._persist(job)
            finally:
                self._queue.task_done()

    async def _persist(self, job: PersistJob) -> None:
        with TRACER.start_as_current_span("resolver.persist", attributes={"pixcache.cache_key": job.key}) as span:
            try:
                await self._store.put(job.key, job.data, job.content_type)
            except StorageError as exc:
                PERSIST_FAILED_COUNTER.inc()
                LOGGER.error("persist_failed", cache_key=job.key, kind=exc.kind.value, error=exc.detail)
                return
            except Exception as exc:  # noqa: BLE001 - worker must survive any store failure
                PERSIST_FAILED_COUNTER.inc()
                LOGGER.exception("persist_failed", cache_key=job.key, kind=ErrorKind.STORAGE_WRITE.value, error=str(exc))
                return
            PERSISTED_COUNTER.inc()
            span.set_attribute("pixcache.bytes_written", len(job.data))
            LOGGER.info("cache_write", cache_key=job.key, bytes=len(job.data))
