"""HTTP surface for the thumbnail resolver."""

from __future__ import annotations

import hmac
import time
from contextlib import asynccontextmanager
from ipaddress import ip_address
from typing import AsyncIterator, Optional

import httpx
import structlog
from fastapi import Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
from starlette.background import BackgroundTask

from ..common.errors import CopyError, ResolverError
from ..common.metrics import GLOBAL_REGISTRY, Counter, Gauge, Histogram
from ..common.observability import (
    REQUEST_ID_HEADER,
    configure_logging,
    configure_tracing,
    instrument_fastapi_app,
    request_context,
)
from ..common.settings import ResolverSettings
from .envelope import ResultEnvelope
from .orchestrator import RequestDescriptor, ThumbnailResolver
from .persist import PersistQueue
from .sizes import SizeTable
from .sources import SourceFetcher
from .storage import ObjectStore, build_store
from .transform import transform


SERVICE_NAME = "pixcache.resolver"
LOGGER = structlog.get_logger(SERVICE_NAME)

REQUEST_COUNTER = GLOBAL_REGISTRY.register(Counter("pixcache_requests_total", "Total resize requests"))
REJECTED_COUNTER = GLOBAL_REGISTRY.register(Counter("pixcache_requests_rejected_total", "Requests rejected by a stage error"))
BYTES_SERVED_COUNTER = GLOBAL_REGISTRY.register(Counter("pixcache_bytes_served_total", "Payload bytes sent to clients"))
COPY_FAILED_COUNTER = GLOBAL_REGISTRY.register(
    Counter("pixcache_response_copy_failed_total", "Cached payloads that failed mid-stream")
)
PERSIST_QUEUE_GAUGE = GLOBAL_REGISTRY.register(Gauge("pixcache_persist_queue_depth", "Artifacts waiting to be persisted"))
LATENCY_HISTOGRAM = GLOBAL_REGISTRY.register(
    Histogram(
        "pixcache_request_latency_seconds",
        buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0],
        description="Resize request latency",
    )
)


class ResolverState:
    def __init__(
        self,
        settings: ResolverSettings,
        resolver: ThumbnailResolver,
        store: Optional[ObjectStore],
        persist_queue: Optional[PersistQueue],
        sizes: SizeTable,
    ) -> None:
        self.settings = settings
        self.resolver = resolver
        self.store = store
        self.persist_queue = persist_queue
        self.sizes = sizes


def get_state(request: Request) -> ResolverState:
    return request.app.state.resolver_state  # type: ignore[attr-defined]


def canonical_path(request: Request) -> str:
    """The escaped request path, as signed by the caller."""

    raw_path = request.scope.get("raw_path")
    if raw_path:
        return raw_path.split(b"?", 1)[0].decode("latin-1")
    return request.url.path


def require_metrics_access(request: Request, state: ResolverState = Depends(get_state)) -> None:
    token = state.settings.metrics_token.get_secret_value() if state.settings.metrics_token else None
    if token:
        provided = request.headers.get("authorization") or ""
        if not hmac.compare_digest(provided.encode("utf-8"), f"Bearer {token}".encode("utf-8")):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid metrics token")
        return
    client_host = request.client.host if request.client else None
    try:
        loopback = bool(client_host) and ip_address(client_host).is_loopback
    except ValueError:
        loopback = False
    if not loopback:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Metrics access restricted to localhost")


async def _copy_stream(envelope: ResultEnvelope) -> AsyncIterator[bytes]:
    """Relay a cached body to the client.

    Status and headers are already on the wire when the body fails: the
    failure is logged and counted, the body is cut short, and no second
    response start is sent.
    """

    sent = 0
    try:
        async for chunk in envelope.chunks():
            sent += len(chunk)
            yield chunk
    except Exception as exc:  # noqa: BLE001 - any body failure ends the copy
        error = CopyError(f"Failed to copy {envelope.storage_path}: {exc}")
        COPY_FAILED_COUNTER.inc()
        LOGGER.error(
            "response_copy_failed",
            cache_key=envelope.storage_path,
            bytes_sent=sent,
            bytes_expected=envelope.content_length,
            kind=error.kind.value,
            status=error.status_code,
            error=error.detail,
        )
    finally:
        BYTES_SERVED_COUNTER.inc(sent)


def build_state(
    settings: ResolverSettings,
    http_client: httpx.AsyncClient,
    *,
    store: Optional[ObjectStore] = None,
    transform_func=transform,
) -> ResolverState:
    if store is None:
        store = build_store(settings)
    sizes = SizeTable.from_mapping(settings.sizes)
    persist_queue = None
    if store is not None:
        persist_queue = PersistQueue(
            store,
            maxsize=settings.persist_queue_size,
            workers=settings.persist_workers,
            drain_timeout=settings.persist_drain_timeout,
        )
    resolver = ThumbnailResolver(
        settings,
        sizes=sizes,
        fetcher=SourceFetcher(http_client, store),
        transform=transform_func,
        store=store,
        persist_queue=persist_queue,
    )
    return ResolverState(settings, resolver, store, persist_queue, sizes)


def create_app(
    settings: Optional[ResolverSettings] = None,
    *,
    store: Optional[ObjectStore] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    transform_func=transform,
) -> FastAPI:
    settings = settings or ResolverSettings()
    configure_logging(SERVICE_NAME, settings.log_level)
    configure_tracing(
        service_name=SERVICE_NAME,
        endpoint=settings.otel_exporter_endpoint,
        headers=settings.otel_exporter_headers,
        sampler_ratio=settings.otel_sampler_ratio,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(settings.origin_timeout_seconds))
        state = build_state(settings, client, store=store, transform_func=transform_func)
        app.state.resolver_state = state
        if state.persist_queue is not None:
            await state.persist_queue.start()
            PERSIST_QUEUE_GAUGE.bind(lambda: float(state.persist_queue.depth))
        LOGGER.info(
            "resolver_started",
            caching=state.resolver.caching_enabled,
            backend=state.store.status().get("backend") if state.store else "disabled",
            sizes=state.sizes.tokens(),
        )
        try:
            yield
        finally:
            if state.persist_queue is not None:
                await state.persist_queue.stop()
            PERSIST_QUEUE_GAUGE.bind(None)
            if http_client is None:
                await client.aclose()

    app = FastAPI(lifespan=lifespan)
    instrument_fastapi_app(app)

    @app.middleware("http")
    async def record_latency(request: Request, call_next):  # noqa: ANN001 - FastAPI middleware signature
        with request_context(request.headers.get(REQUEST_ID_HEADER)) as request_id:
            start = time.perf_counter()
            try:
                response = await call_next(request)
            except Exception:
                duration = time.perf_counter() - start
                LATENCY_HISTOGRAM.observe(duration)
                LOGGER.exception(
                    "http_request_error",
                    method=request.method,
                    path=request.url.path,
                    duration_ms=round(duration * 1000, 2),
                )
                raise

            duration = time.perf_counter() - start
            LATENCY_HISTOGRAM.observe(duration)
            log_kwargs = {
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "duration_ms": round(duration * 1000, 2),
            }
            if 500 <= response.status_code < 600:
                LOGGER.error("http_request", **log_kwargs)
            elif duration >= 1.0:
                LOGGER.warning("http_request", **log_kwargs)
            else:
                LOGGER.info("http_request", **log_kwargs)
            response.headers[REQUEST_ID_HEADER] = request_id
            return response

    @app.exception_handler(ResolverError)
    async def handle_resolver_error(request: Request, exc: ResolverError) -> JSONResponse:
        REJECTED_COUNTER.inc(kind=exc.kind.value)
        LOGGER.warning(
            "request_rejected",
            path=request.url.path,
            kind=exc.kind.value,
            reason=exc.reason,
            status=exc.status_code,
            error=exc.detail,
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.get("/healthz", status_code=status.HTTP_200_OK)
    async def health_check(state: ResolverState = Depends(get_state)) -> dict:
        health: dict[str, object] = {"status": "healthy", "checks": {}}
        if state.store is not None:
            health["checks"]["backend"] = state.store.status().get("backend", "unknown")
            health["checks"]["persist_queue"] = "running" if state.persist_queue.running else "stopped"
            if not state.persist_queue.running:
                health["status"] = "unhealthy"
        else:
            health["checks"]["backend"] = "disabled"
        if health["status"] != "healthy":
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=health)
        return health

    @app.get("/status")
    async def status_probe(state: ResolverState = Depends(get_state)) -> JSONResponse:
        payload: dict[str, object] = state.store.status() if state.store else {"backend": "disabled"}
        payload.update(
            {
                "caching_enabled": state.resolver.caching_enabled,
                "sizes": state.sizes.tokens(),
                "persist_queue_depth": state.persist_queue.depth if state.persist_queue else 0,
                "cache_max_age": state.settings.cache_max_age,
            }
        )
        return JSONResponse(payload)

    @app.get("/metrics", response_class=PlainTextResponse, dependencies=[Depends(require_metrics_access)])
    async def metrics_endpoint() -> PlainTextResponse:
        return PlainTextResponse(GLOBAL_REGISTRY.render())

    @app.get("/{size_token}/{source_reference:path}")
    async def resize(
        size_token: str,
        source_reference: str,
        request: Request,
        state: ResolverState = Depends(get_state),
    ) -> Response:
        REQUEST_COUNTER.inc()
        descriptor = RequestDescriptor(
            size_token=size_token,
            source_reference=source_reference,
            signature=request.headers.get("Signature"),
            canonical_path=canonical_path(request),
        )
        envelope = await state.resolver.resolve(descriptor)
        headers = envelope.headers(state.settings.cache_max_age)
        if envelope.cache_hit:
            return StreamingResponse(_copy_stream(envelope), headers=headers)

        async def persist_after_response() -> None:
            state.resolver.schedule_persist(envelope)

        BYTES_SERVED_COUNTER.inc(envelope.content_length)
        return Response(content=envelope.payload, headers=headers, background=BackgroundTask(persist_after_response))

    return app
