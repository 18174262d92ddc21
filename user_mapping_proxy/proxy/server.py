"""HTTP reverse proxy mapping backend content to the users who uploaded it.

Sits in front of a content-addressed storage node's HTTP API, forwards the
upload, import and unpin commands, and keeps a per-user ownership table so
several users can share one node while each sees only their own pins.

Usage:
    user-mapping-proxy run --target http://127.0.0.1:5001
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from typing import Any, TypeVar

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from ..core.store import ContentStore
from ..types import AuthenticationError, BackendError, ProxyConfig, ProxyError
from .add import register_add_routes
from .capture import BufferedResponse, ResponseCapture, relay
from .dag_import import register_dag_import_routes
from .helpers import forward_headers
from .metrics import ProxyMetrics
from .pin_ls import register_pin_ls_routes
from .pin_rm import register_pin_rm_routes

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# ProxyState: collaborators shared by all handlers
# ---------------------------------------------------------------------------

class ProxyState:
    """Store, backend client and metrics for the proxy lifetime.

    Handlers keep no mutable state of their own; everything shared between
    requests goes through the store.
    """

    def __init__(
        self,
        store: ContentStore,
        client: httpx.AsyncClient,
        target: str,
        metrics: ProxyMetrics | None = None,
    ) -> None:
        self.store = store
        self.client = client
        self.target = target.rstrip("/")
        self.metrics = metrics or ProxyMetrics()

    def backend_url(self, path: str, query: str = "") -> str:
        url = f"{self.target}{path}"
        if query:
            url += f"?{query}"
        return url

    async def run_store(self, fn: Callable[..., T], *args: Any) -> T:
        """Run a blocking store call off the event loop."""
        return await asyncio.to_thread(fn, *args)

    async def send_upstream(self, request: Request, query: str | None = None) -> httpx.Response:
        """Forward *request* to the same path on the backend, body streamed.

        *query* replaces the inbound query string when given. The returned
        response is open in streaming mode; the caller must close it.
        """
        url = self.backend_url(
            request.url.path, request.url.query if query is None else query,
        )
        upstream_request = self.client.build_request(
            request.method,
            url,
            headers=forward_headers(request.headers),
            content=request.stream(),
        )
        return await self.client.send(upstream_request, stream=True)

    async def forward_and_capture(
        self,
        request: Request,
        *,
        route: str,
        user: str,
        query: str | None = None,
    ) -> tuple[ResponseCapture, BufferedResponse]:
        """Forward *request* and capture the backend's full response.

        Returns the capture (status and body for inspection) and the sink
        holding the response to relay to the caller. An unreachable backend
        raises ``BackendError`` with 502.
        """
        sink = BufferedResponse()
        capture = ResponseCapture(sink)
        try:
            upstream = await self.send_upstream(request, query)
            await relay(upstream, capture)
        except httpx.TransportError as e:
            self.metrics.incr(f"{route}_handler_response_codes", code=502)
            logger.error("Backend request failed route=%s user=%s: %s", route, user, e)
            raise BackendError("bad gateway: backend unavailable", 502) from e

        code = capture.status_code
        self.metrics.incr(f"{route}_handler_response_codes", code=code)
        if not capture.ok:
            if code < 500:
                logger.warning(
                    "Backend rejected request route=%s user=%s code=%d body=%r",
                    route, user, code, capture.body[:512],
                )
            else:
                logger.error(
                    "Backend error route=%s user=%s code=%d body=%r",
                    route, user, code, capture.body[:512],
                )
        return capture, sink


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

def create_app(
    config: ProxyConfig,
    store: ContentStore,
    *,
    client: httpx.AsyncClient | None = None,
    metrics: ProxyMetrics | None = None,
) -> FastAPI:
    """Create the FastAPI proxy application.

    Args:
        config: Loaded proxy configuration (``target`` is the backend base URL).
        store: Ownership store, already migrated.
        client: Backend HTTP client. Created from ``config.upstream`` if None;
            a client passed in is not closed on shutdown.
        metrics: Metrics collector. Created if None.
    """
    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(
            timeout=httpx.Timeout(
                config.upstream.timeout, connect=config.upstream.connect_timeout,
            ),
        )

    state = ProxyState(store, client, config.target, metrics=metrics)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
        logger.info("Proxy ready, target=%s", state.target)
        yield
        if owns_client:
            await client.aclose()

    app = FastAPI(title="user-mapping-proxy", lifespan=lifespan)
    app.state.proxy = state

    @app.exception_handler(ProxyError)
    async def proxy_error_handler(request: Request, exc: ProxyError) -> PlainTextResponse:
        state.metrics.incr("error_responses", path=request.url.path, code=exc.status_code)
        state.metrics.record(
            "error", path=request.url.path, code=exc.status_code, error=type(exc).__name__,
        )
        headers = None
        if isinstance(exc, AuthenticationError):
            headers = {"WWW-Authenticate": 'Basic realm="user-mapping-proxy"'}
        return PlainTextResponse(str(exc), status_code=exc.status_code, headers=headers)

    register_add_routes(app, state)
    register_dag_import_routes(app, state)
    register_pin_ls_routes(app, state)
    register_pin_rm_routes(app, state)

    if config.debug.metrics:
        @app.get("/debug/metrics")
        async def debug_metrics():
            """Return counters and recent events as JSON."""
            return JSONResponse(state.metrics.snapshot())

    return app
