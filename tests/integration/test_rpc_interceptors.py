"""Integration tests for the RPC capture interceptors."""

import asyncio

import pytest

from capturepy.adapters.frameworks.rpc import CallInfo, RpcCaptureInterceptors
from capturepy.adapters.storage.in_memory import InMemoryEventSink
from capturepy.core.hub import get_current_hub
from capturepy.core.models import EventKind, Level
from capturepy.core.pipeline import EventPipeline
from capturepy.core.status import StatusCode
from capturepy.exceptions import RpcError

GET_USER = CallInfo(
    "/auth.v1.Users/Get",
    metadata=[("x-user-id", "u-42"), ("authorization", "Bearer t"), ("user-agent", "grpc-python")],
    peer="10.0.0.7",
)


@pytest.fixture
def interceptors(pipeline: EventPipeline) -> RpcCaptureInterceptors:
    return RpcCaptureInterceptors(pipeline, unary_threshold=10.0, stream_threshold=10.0)


def failing_with(code: StatusCode):
    async def handler(request, context):
        raise RpcError(code, "lookup failed")

    return handler


@pytest.mark.rpc
class TestUnaryInterceptor:
    """Tests for unary call capture."""

    @pytest.mark.tier(2)
    @pytest.mark.tra("Adapter.RPC.UnarySuccess")
    async def test_success_returns_response_and_records_transaction(
        self, interceptors: RpcCaptureInterceptors, sink: InMemoryEventSink
    ) -> None:
        async def handler(request, context):
            return {"echo": request}

        response = await interceptors.unary("hi", None, GET_USER, handler)

        assert response == {"echo": "hi"}
        assert sink.events == []
        [txn] = sink.transactions
        assert txn.name == "/auth.v1.Users/Get"
        assert txn.operation == "grpc.server"
        assert txn.tags["transport"] == "grpc-unary"
        assert txn.tags["grpc_method"] == "/auth.v1.Users/Get"
        assert txn.status == "ok"

    @pytest.mark.tier(2)
    @pytest.mark.tra("Adapter.RPC.ReportableCodes")
    @pytest.mark.parametrize("code", [StatusCode.INTERNAL, StatusCode.UNKNOWN])
    async def test_server_side_codes_are_reported(
        self, interceptors, sink: InMemoryEventSink, code: StatusCode
    ) -> None:
        with pytest.raises(RpcError):
            await interceptors.unary("req", None, GET_USER, failing_with(code))

        [event] = sink.events
        assert event.kind is EventKind.ERROR
        assert event.level is Level.ERROR
        assert event.tags["grpc_code"] == code.name
        assert event.tags["grpc_method"] == "/auth.v1.Users/Get"
        assert event.exception is not None
        assert event.exception.status == code.name
        assert "request" in event.contexts
        assert sink.transactions[0].status == code.name.lower()

    @pytest.mark.tier(2)
    @pytest.mark.tra("Adapter.RPC.ClientCodesIgnored")
    @pytest.mark.parametrize(
        "code",
        [StatusCode.NOT_FOUND, StatusCode.INVALID_ARGUMENT, StatusCode.PERMISSION_DENIED],
    )
    async def test_client_side_codes_are_not_reported(
        self, interceptors, sink: InMemoryEventSink, code: StatusCode
    ) -> None:
        with pytest.raises(RpcError) as excinfo:
            await interceptors.unary("req", None, GET_USER, failing_with(code))

        assert excinfo.value.code is code
        assert sink.events == []
        assert sink.transactions[0].status == code.name.lower()

    @pytest.mark.tier(2)
    @pytest.mark.tra("Adapter.RPC.Panic")
    async def test_unclassified_exception_is_a_panic(
        self, interceptors, sink: InMemoryEventSink
    ) -> None:
        async def handler(request, context):
            raise ZeroDivisionError("bad math")

        with pytest.raises(ZeroDivisionError):
            await interceptors.unary("req", None, GET_USER, handler)

        [event] = sink.events
        assert event.level is Level.FATAL
        assert event.tags["error_type"] == "panic"
        assert event.contexts["panic_info"]["panic_value"] == "bad math"
        assert sink.transactions[0].status == "internal_error"

    @pytest.mark.tier(2)
    @pytest.mark.tra("Adapter.RPC.Enrichment")
    async def test_metadata_enriches_the_call_scope(
        self, interceptors, sink: InMemoryEventSink
    ) -> None:
        async def handler(request, context):
            get_current_hub().capture_message("inside handler", Level.WARNING)
            return None

        await interceptors.unary("req", None, GET_USER, handler)

        [event] = sink.events
        assert event.user is not None
        assert event.user.id == "u-42"
        assert event.tags["http.remote_addr"] == "10.0.0.7"
        assert event.tags["http.user_agent"] == "grpc-python"
        assert "authorization" not in event.contexts["request"]["headers"]
        assert event.contexts["trace"]["transaction"] == "/auth.v1.Users/Get"

    @pytest.mark.tier(2)
    @pytest.mark.tra("Adapter.RPC.SlowCall")
    async def test_slow_unary_call_reported(
        self, pipeline: EventPipeline, sink: InMemoryEventSink
    ) -> None:
        interceptors = RpcCaptureInterceptors(pipeline, unary_threshold=0.01)

        async def handler(request, context):
            await asyncio.sleep(0.05)
            return "done"

        assert await interceptors.unary("req", None, GET_USER, handler) == "done"

        [event] = sink.events
        assert event.kind is EventKind.PERFORMANCE
        assert event.contexts["grpc_method"] == "/auth.v1.Users/Get"

    @pytest.mark.tier(2)
    async def test_calls_do_not_share_scope(
        self, interceptors, sink: InMemoryEventSink
    ) -> None:
        async def handler(request, context):
            hub = get_current_hub()
            hub.scope.set_tag("request_tag", request)
            await asyncio.sleep(0.01)
            hub.capture_message(f"done {request}")
            return request

        await asyncio.gather(
            interceptors.unary("a", None, CallInfo("/svc/A"), handler),
            interceptors.unary("b", None, CallInfo("/svc/B"), handler),
        )

        by_message = {e.message: e.tags["request_tag"] for e in sink.events}
        assert by_message == {"done a": "a", "done b": "b"}


@pytest.mark.rpc
class TestStreamInterceptor:
    """Tests for streaming call capture."""

    @pytest.mark.tier(2)
    @pytest.mark.tra("Adapter.RPC.StreamReportable")
    async def test_stream_internal_error_reported(
        self, interceptors, sink: InMemoryEventSink
    ) -> None:
        async def handler(server, stream):
            raise RpcError(StatusCode.INTERNAL, "stream failed")

        with pytest.raises(RpcError):
            await interceptors.stream(None, None, CallInfo("/svc/Watch"), handler)

        [event] = sink.events
        assert event.contexts["stream_type"] == "server"
        assert sink.transactions[0].tags["transport"] == "grpc-stream"

    @pytest.mark.tier(2)
    @pytest.mark.tra("Adapter.RPC.StreamThreshold")
    async def test_stream_uses_its_own_threshold(
        self, pipeline: EventPipeline, sink: InMemoryEventSink
    ) -> None:
        interceptors = RpcCaptureInterceptors(
            pipeline, unary_threshold=10.0, stream_threshold=0.01
        )
        sent: list[int] = []

        async def handler(server, stream):
            for i in range(3):
                await asyncio.sleep(0.01)
                sent.append(i)

        await interceptors.stream(None, None, CallInfo("/svc/Watch"), handler)

        assert sent == [0, 1, 2]
        [event] = sink.events
        assert event.kind is EventKind.PERFORMANCE
        assert event.tags["operation"] == "/svc/Watch"


RESERVE_STOCK = CallInfo(
    "/inventory.v1.Stock/Reserve",
    metadata=[("x-trace-id", "0" * 31 + "1"), ("x-request-source", "checkout")],
    peer="10.0.0.9",
)


@pytest.mark.rpc
class TestTracePropagation:
    """Tests for x-trace-id continuation across calls."""

    @pytest.mark.tier(2)
    @pytest.mark.tra("Adapter.RPC.TraceContinuation")
    async def test_server_continues_incoming_trace_id(
        self, interceptors: RpcCaptureInterceptors, sink: InMemoryEventSink
    ) -> None:
        trace_id = "4bf92f3577b34da6a3ce929d0e0e4736"
        call = CallInfo("/auth.v1.Users/Get", metadata=[("X-Trace-ID", trace_id)])

        async def handler(request, context):
            return request

        await interceptors.unary("req", None, call, handler)

        assert sink.transactions[0].trace_id == trace_id

    @pytest.mark.tier(2)
    async def test_malformed_incoming_trace_id_starts_new_trace(
        self, interceptors: RpcCaptureInterceptors, sink: InMemoryEventSink
    ) -> None:
        call = CallInfo("/auth.v1.Users/Get", metadata=[("x-trace-id", "not-a-trace")])

        async def handler(request, context):
            return request

        await interceptors.unary("req", None, call, handler)

        [txn] = sink.transactions
        assert txn.trace_id != "not-a-trace"
        assert len(txn.trace_id) == 32

    @pytest.mark.tier(2)
    @pytest.mark.tra("Adapter.RPC.ClientPropagation")
    async def test_client_call_injects_trace_id_and_records_span(
        self, interceptors: RpcCaptureInterceptors, sink: InMemoryEventSink
    ) -> None:
        sent: list[list[tuple[str, str]]] = []

        async def invoker(request, metadata):
            sent.append(metadata)
            return {"reserved": request}

        async def handler(request, context):
            return await interceptors.client_unary(request, RESERVE_STOCK, invoker)

        response = await interceptors.unary("sku-1", None, GET_USER, handler)

        assert response == {"reserved": "sku-1"}
        [txn] = sink.transactions
        [metadata] = sent
        assert ("x-trace-id", txn.trace_id) in metadata
        assert [k for k, _ in metadata].count("x-trace-id") == 1
        assert ("x-request-source", "checkout") in metadata
        [span] = txn.spans
        assert span.operation == "/inventory.v1.Stock/Reserve"
        assert span.tags["span.kind"] == "client"
        assert span.tags["peer.address"] == "10.0.0.9"
        assert span.status == "ok"

    @pytest.mark.tier(2)
    async def test_client_error_marks_span_and_reraises(
        self, interceptors: RpcCaptureInterceptors, sink: InMemoryEventSink
    ) -> None:
        async def invoker(request, metadata):
            raise RpcError(StatusCode.NOT_FOUND, "no such sku")

        async def handler(request, context):
            try:
                await interceptors.client_unary(request, RESERVE_STOCK, invoker)
            except RpcError:
                return None
            return request

        await interceptors.unary("sku-1", None, GET_USER, handler)

        assert sink.events == []
        [span] = sink.transactions[0].spans
        assert span.status == "not_found"
        assert span.tags["error"] == "no such sku"

    @pytest.mark.tier(2)
    async def test_client_call_outside_a_call_is_not_recorded(
        self, interceptors: RpcCaptureInterceptors, sink: InMemoryEventSink
    ) -> None:
        sent: list[list[tuple[str, str]]] = []

        async def invoker(request, metadata):
            sent.append(metadata)
            return request

        await interceptors.client_unary("sku-1", RESERVE_STOCK, invoker)

        [metadata] = sent
        trace_id = dict(metadata)["x-trace-id"]
        assert len(trace_id) == 32
        assert trace_id != RESERVE_STOCK.metadata[0][1]
        assert sink.transactions == []

    @pytest.mark.tier(2)
    @pytest.mark.tra("Adapter.RPC.TraceAcrossServices")
    async def test_trace_spans_both_services(
        self, pipeline: EventPipeline, sink: InMemoryEventSink
    ) -> None:
        gateway = RpcCaptureInterceptors(pipeline, unary_threshold=10.0)
        inventory = RpcCaptureInterceptors(pipeline, unary_threshold=10.0)

        async def reserve(request, context):
            return "reserved"

        async def invoker(request, metadata):
            call = CallInfo(RESERVE_STOCK.full_method, metadata=metadata)
            return await inventory.unary(request, None, call, reserve)

        async def checkout(request, context):
            return await gateway.client_unary(request, RESERVE_STOCK, invoker)

        assert await gateway.unary("sku-1", None, GET_USER, checkout) == "reserved"

        downstream, upstream = sink.transactions
        assert downstream.name == "/inventory.v1.Stock/Reserve"
        assert upstream.name == "/auth.v1.Users/Get"
        assert downstream.trace_id == upstream.trace_id
