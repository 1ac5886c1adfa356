"""ASGI capture middleware.

Framework-agnostic: works with any ASGI server (uvicorn, hypercorn) and
any ASGI framework, without requiring FastAPI or Starlette.
"""

import asyncio
import fnmatch
import logging
import time
from collections.abc import Callable, Coroutine
from typing import Any

from capturepy.adapters.frameworks.http_context import (
    enrich_scope_from_request,
    incoming_trace_id,
)
from capturepy.core.hub import Hub, bind_hub
from capturepy.core.models import Level
from capturepy.core.pipeline import EventPipeline
from capturepy.core.recovery import recover

logger = logging.getLogger(__name__)

# ASGI type aliases
Scope = dict[str, Any]
Receive = Callable[[], Coroutine[Any, Any, dict[str, Any]]]
Send = Callable[[dict[str, Any]], Coroutine[Any, Any, None]]
ASGIApp = Callable[[Scope, Receive, Send], Coroutine[Any, Any, None]]

HTTP_THRESHOLD = 0.1


def _decode_headers(scope: Scope) -> list[tuple[str, str]]:
    headers: list[tuple[bytes, bytes]] = scope.get("headers", [])
    return [
        (name.decode("latin-1"), value.decode("latin-1")) for name, value in headers
    ]


def _request_url(scope: Scope, headers: list[tuple[str, str]]) -> str:
    """Rebuild the absolute request URL from an ASGI scope."""
    host = next((v for k, v in headers if k.lower() == "host"), "")
    if not host and scope.get("server"):
        server_host, port = scope["server"]
        host = f"{server_host}:{port}" if port else server_host
    url = f"{scope.get('scheme', 'http')}://{host}{scope.get('path', '')}"
    query = scope.get("query_string", b"")
    if query:
        url += "?" + query.decode("latin-1")
    return url


def _client_addr(scope: Scope) -> str:
    client = scope.get("client")
    return client[0] if client else ""


class ASGICaptureMiddleware:
    """ASGI middleware that captures errors, panics and slow requests.

    Each HTTP request gets its own Hub bound for the duration of the call,
    a transaction named ``"<METHOD> <path>"`` and a panic guard. Responses
    with a 5xx status are reported as error messages; 4xx are not.

    Args:
        app: The ASGI application to wrap.
        pipeline: Shared event pipeline.
        threshold: Seconds before a request is reported as slow.
        wait_for_delivery: If set, flush for up to this many seconds after a
                           reported error, before the middleware returns.
        exclude_paths: Paths passed through untouched. Supports wildcard
                       patterns (e.g. ``"/internal/*"``).
    """

    def __init__(
        self,
        app: ASGIApp,
        pipeline: EventPipeline,
        *,
        threshold: float = HTTP_THRESHOLD,
        wait_for_delivery: float | None = None,
        exclude_paths: list[str] | None = None,
    ) -> None:
        self.app = app
        self.pipeline = pipeline
        self.threshold = threshold
        self.wait_for_delivery = wait_for_delivery
        self.exclude_paths = exclude_paths or []

    def _path_excluded(self, path: str) -> bool:
        return any(fnmatch.fnmatch(path, pattern) for pattern in self.exclude_paths)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if (
            scope["type"] != "http"
            or not self.pipeline.enabled
            or self._path_excluded(scope.get("path", ""))
        ):
            await self.app(scope, receive, send)
            return

        method = scope.get("method", "GET")
        path = scope.get("path", "")
        route = f"{method} {path}"
        headers = _decode_headers(scope)

        hub = Hub(self.pipeline)
        filtered = enrich_scope_from_request(
            hub.scope, method, _request_url(scope, headers), headers, _client_addr(scope)
        )
        transaction = hub.start_transaction(
            route,
            "http.server",
            {"transport": "http"},
            trace_id=incoming_trace_id(filtered),
        )
        captured: dict[str, Any] = {"status": None}

        async def wrapped_send(message: dict[str, Any]) -> None:
            if message["type"] == "http.response.start":
                captured["status"] = message["status"]
            await send(message)

        reported = False
        start = time.perf_counter()
        try:
            with bind_hub(hub), recover(hub):
                await self.app(scope, receive, wrapped_send)
        except Exception:
            reported = True
            transaction.set_status("internal_error")
            raise
        else:
            status = captured["status"] or 0
            transaction.set_tag("http.status_code", str(status))
            if status >= 500:
                reported = True
                transaction.set_status("internal_error")
                hub.capture_message(
                    f"HTTP {status}: {route}",
                    Level.ERROR,
                    tags={"http.status_code": status},
                )
        finally:
            hub.capture_performance_issue(
                route, time.perf_counter() - start, self.threshold
            )
            transaction.finish()
            if reported and self.wait_for_delivery is not None:
                await asyncio.to_thread(hub.flush, self.wait_for_delivery)
