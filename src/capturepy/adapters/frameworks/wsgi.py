"""WSGI capture middleware."""

import fnmatch
import time
from collections.abc import Callable, Iterable, Iterator
from typing import Any

from capturepy.adapters.frameworks.http_context import (
    enrich_scope_from_request,
    incoming_trace_id,
)
from capturepy.core.hub import Hub, bind_hub
from capturepy.core.models import Level
from capturepy.core.pipeline import EventPipeline
from capturepy.core.recovery import recover
from capturepy.core.tracing import Transaction

Environ = dict[str, Any]
StartResponse = Callable[..., Any]
WSGIApp = Callable[[Environ, StartResponse], Iterable[bytes]]

HTTP_THRESHOLD = 0.1
DEFAULT_WAIT_FOR_DELIVERY = 2.0

# Marks the end of the wrapped response iterable.
_DONE = object()


def _environ_headers(environ: Environ) -> list[tuple[str, str]]:
    headers = []
    for key, value in environ.items():
        if key.startswith("HTTP_"):
            headers.append((key[5:].replace("_", "-").lower(), value))
        elif key in ("CONTENT_TYPE", "CONTENT_LENGTH") and value:
            headers.append((key.replace("_", "-").lower(), value))
    return headers


def _request_url(environ: Environ) -> str:
    """Reconstruct the request URL (PEP 3333)."""
    scheme = environ.get("wsgi.url_scheme", "http")
    host = environ.get("HTTP_HOST")
    if not host:
        host = environ.get("SERVER_NAME", "")
        port = environ.get("SERVER_PORT", "")
        if port and port != ("443" if scheme == "https" else "80"):
            host = f"{host}:{port}"
    url = f"{scheme}://{host}{environ.get('SCRIPT_NAME', '')}{environ.get('PATH_INFO', '')}"
    if environ.get("QUERY_STRING"):
        url += "?" + environ["QUERY_STRING"]
    return url


class WSGICaptureMiddleware:
    """WSGI middleware that captures errors, panics and slow requests.

    The response iterable is wrapped, not buffered: each chunk is produced
    under the panic guard with the call's hub bound, and the request is
    finalized (5xx check, slow-request check, transaction finish) when the
    server closes the response.

    Args:
        app: The WSGI application to wrap.
        pipeline: Shared event pipeline.
        threshold: Seconds before a request is reported as slow.
        wait_for_delivery: Seconds to block the response flushing a captured
                           error. None disables the wait.
        exclude_paths: Paths passed through untouched (wildcards allowed).
    """

    def __init__(
        self,
        app: WSGIApp,
        pipeline: EventPipeline,
        *,
        threshold: float = HTTP_THRESHOLD,
        wait_for_delivery: float | None = DEFAULT_WAIT_FOR_DELIVERY,
        exclude_paths: list[str] | None = None,
    ) -> None:
        self.app = app
        self.pipeline = pipeline
        self.threshold = threshold
        self.wait_for_delivery = wait_for_delivery
        self.exclude_paths = exclude_paths or []

    def __call__(self, environ: Environ, start_response: StartResponse) -> Iterable[bytes]:
        path = environ.get("PATH_INFO", "")
        if not self.pipeline.enabled or any(
            fnmatch.fnmatch(path, pattern) for pattern in self.exclude_paths
        ):
            return self.app(environ, start_response)

        method = environ.get("REQUEST_METHOD", "GET")
        route = f"{method} {path}"
        hub = Hub(self.pipeline)
        filtered = enrich_scope_from_request(
            hub.scope,
            method,
            _request_url(environ),
            _environ_headers(environ),
            environ.get("REMOTE_ADDR", ""),
        )
        transaction = hub.start_transaction(
            route,
            "http.server",
            {"transport": "http"},
            trace_id=incoming_trace_id(filtered),
        )
        response = _CapturedResponse(self, hub, transaction, route)

        def wrapped_start_response(status: str, headers: Any, exc_info: Any = None) -> Any:
            response.status = int(status.split(" ", 1)[0])
            return start_response(status, headers, exc_info)

        try:
            with bind_hub(hub), recover(hub):
                response.result = self.app(environ, wrapped_start_response)
        except Exception:
            response.failed = True
            response.finalize()
            raise
        return response


class _CapturedResponse:
    """Response iterable that guards every chunk and finalizes on close."""

    def __init__(
        self,
        middleware: WSGICaptureMiddleware,
        hub: Hub,
        transaction: Transaction,
        route: str,
    ) -> None:
        self.middleware = middleware
        self.hub = hub
        self.transaction = transaction
        self.route = route
        self.result: Iterable[bytes] = ()
        self.status = 0
        self.failed = False
        self.start = time.perf_counter()
        self._finalized = False

    def __iter__(self) -> Iterator[bytes]:
        try:
            with bind_hub(self.hub), recover(self.hub):
                iterator = iter(self.result)
            while True:
                with bind_hub(self.hub), recover(self.hub):
                    chunk = next(iterator, _DONE)
                if chunk is _DONE:
                    return
                yield chunk
        except Exception:
            self.failed = True
            raise

    def close(self) -> None:
        if self._finalized:
            return
        try:
            close = getattr(self.result, "close", None)
            if close is not None:
                with bind_hub(self.hub), recover(self.hub):
                    close()
        except Exception:
            self.failed = True
            raise
        finally:
            self.finalize()

    def finalize(self) -> None:
        """Classify the outcome and finish the transaction, exactly once."""
        if self._finalized:
            return
        self._finalized = True
        hub = self.hub
        reported = self.failed
        if self.failed:
            self.transaction.set_status("internal_error")
        else:
            self.transaction.set_tag("http.status_code", str(self.status))
            if self.status >= 500:
                reported = True
                self.transaction.set_status("internal_error")
                hub.capture_message(
                    f"HTTP {self.status}: {self.route}",
                    Level.ERROR,
                    tags={"http.status_code": self.status},
                )
        hub.capture_performance_issue(
            self.route, time.perf_counter() - self.start, self.middleware.threshold
        )
        self.transaction.finish()
        wait = self.middleware.wait_for_delivery
        if reported and wait is not None:
            hub.flush(wait)
