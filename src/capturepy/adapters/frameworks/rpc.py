"""Server and client interceptors for RPC frameworks.

The interceptors are transport-neutral: a server integration calls
``unary`` or ``stream`` with a ``CallInfo`` describing the call and the
next handler in its chain. Handlers signal classified failures by raising
``RpcError``; only server-side codes (``INTERNAL``, ``UNKNOWN``) are
reported. Any other exception is a panic: it is captured as a fatal event
and re-raised.

Traces cross service boundaries through ``x-trace-id`` metadata: the
server side continues a valid incoming id, and ``client_unary`` sends the
current trace id with outgoing calls.
"""

import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar

from capturepy.adapters.frameworks.http_context import (
    enrich_scope_from_request,
    incoming_trace_id,
    outgoing_metadata,
)
from capturepy.core.hub import Hub, bind_hub
from capturepy.core.pipeline import EventPipeline
from capturepy.core.recovery import capture_panic, resolve_hub
from capturepy.core.status import is_reportable
from capturepy.exceptions import RpcError

T = TypeVar("T")

UNARY_THRESHOLD = 0.1
STREAM_THRESHOLD = 0.5


@dataclass(frozen=True)
class CallInfo:
    """Description of an RPC call, inbound or outgoing.

    Attributes:
        full_method: Fully qualified method, e.g. ``"/auth.v1.Users/Get"``.
        metadata: Request metadata pairs in arrival order.
        peer: Client address, if known.
    """

    full_method: str
    metadata: Sequence[tuple[str, str]] = ()
    peer: str = ""


UnaryHandler = Callable[[Any, Any], Awaitable[Any]]
StreamHandler = Callable[[Any, Any], Awaitable[None]]
# Performs an outgoing call given the request and the metadata to send.
ClientInvoker = Callable[[Any, list[tuple[str, str]]], Awaitable[Any]]


class RpcCaptureInterceptors:
    """Unary and stream interceptors sharing one pipeline.

    Args:
        pipeline: Shared event pipeline.
        unary_threshold: Seconds before a unary call is reported slow.
        stream_threshold: Seconds before a stream is reported slow.
    """

    def __init__(
        self,
        pipeline: EventPipeline,
        *,
        unary_threshold: float = UNARY_THRESHOLD,
        stream_threshold: float = STREAM_THRESHOLD,
    ) -> None:
        self.pipeline = pipeline
        self.unary_threshold = unary_threshold
        self.stream_threshold = stream_threshold

    async def unary(
        self, request: Any, context: Any, call_info: CallInfo, handler: UnaryHandler
    ) -> Any:
        """Run a unary handler and return its response."""
        return await self._intercept(
            call_info,
            "grpc-unary",
            self.unary_threshold,
            lambda: handler(request, context),
            {"request": request},
        )

    async def stream(
        self, server: Any, stream: Any, call_info: CallInfo, handler: StreamHandler
    ) -> None:
        """Run a streaming handler."""
        await self._intercept(
            call_info,
            "grpc-stream",
            self.stream_threshold,
            lambda: handler(server, stream),
            {"stream_type": "server"},
        )

    async def client_unary(
        self, request: Any, call_info: CallInfo, invoker: ClientInvoker
    ) -> Any:
        """Make an outgoing unary call under a client span.

        The span is a child of the current call's transaction (or of a
        detached one outside any call). Its trace id is appended to the
        outgoing metadata as ``x-trace-id`` so the server continues the
        same trace. Errors are recorded on the span and re-raised; they
        are the caller's to capture.
        """
        method = call_info.full_method
        hub = resolve_hub(self.pipeline)
        tags = {"span.kind": "client", "component": "grpc-client"}
        if call_info.peer:
            tags["peer.address"] = call_info.peer
        span = hub.start_span(method, f"grpc client {method}", tags)
        metadata = outgoing_metadata(span.trace_id, call_info.metadata)
        try:
            return await invoker(request, metadata)
        except RpcError as exc:
            span.set_status(exc.code.name.lower())
            span.set_tag("error", str(exc))
            raise
        except Exception as exc:
            span.set_status("internal_error")
            span.set_tag("error", str(exc))
            raise
        finally:
            span.finish()

    async def _intercept(
        self,
        call_info: CallInfo,
        transport: str,
        threshold: float,
        invoke: Callable[[], Awaitable[T]],
        error_context: dict[str, Any],
    ) -> T:
        method = call_info.full_method
        hub = Hub(self.pipeline)
        filtered = enrich_scope_from_request(
            hub.scope, method, method, call_info.metadata, call_info.peer
        )
        transaction = hub.start_transaction(
            method,
            "grpc.server",
            {"transport": transport, "grpc_method": method},
            trace_id=incoming_trace_id(filtered),
        )
        transaction.set_context("grpc", {"method": method, "type": transport})
        start = time.perf_counter()
        try:
            with bind_hub(hub):
                return await invoke()
        except RpcError as exc:
            transaction.set_status(exc.code.name.lower())
            if is_reportable(exc):
                hub.capture_error(
                    exc,
                    tags={"grpc_method": method, "grpc_code": exc.code.name},
                    context=error_context,
                )
            raise
        except Exception as exc:
            transaction.set_status("internal_error")
            capture_panic(exc, hub)
            raise
        finally:
            duration = time.perf_counter() - start
            hub.capture_performance_issue(
                method, duration, threshold, {"grpc_method": method}
            )
            transaction.finish()
