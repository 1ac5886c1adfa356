"""Transactions and spans for latency measurement.

Every timestamp in a transaction is derived from one wall-clock anchor
plus ``time.perf_counter`` offsets, so child intervals always nest inside
their parents regardless of wall-clock adjustments.
"""

import logging
import time
import uuid
from collections.abc import Callable
from types import TracebackType

from capturepy.core.models import SpanRecord, TransactionRecord, coerce_context

logger = logging.getLogger(__name__)

DEFAULT_MAX_SPANS = 1000


def _new_id(length: int = 32) -> str:
    """Random hex id (32 chars for traces, 16 for spans)."""
    return uuid.uuid4().hex[:length]


def is_valid_trace_id(value: str | None) -> bool:
    """Return True for a 32-char lowercase hex id that is not all zeros."""
    if not value or len(value) != 32 or value == "0" * 32:
        return False
    return all(c in "0123456789abcdef" for c in value)


class Span:
    """A timed interval owned by a transaction (or by a parent span).

    Create spans with ``Transaction.start_child`` or ``Span.start_child``.
    Spans can be used as context managers; leaving the block with an
    exception marks the span ``internal_error``.
    """

    def __init__(
        self,
        transaction: "Transaction",
        operation: str,
        description: str = "",
        tags: dict[str, str] | None = None,
        parent_span_id: str | None = None,
    ) -> None:
        self._transaction = transaction
        self.span_id = _new_id(16)
        self.parent_span_id = parent_span_id
        self.operation = operation
        self.description = description
        self.tags: dict[str, str] = dict(tags or {})
        self.status = "ok"
        self.start_time = transaction.timestamp()
        self.end_time: float | None = None
        self._children: list[Span] = []

    @property
    def trace_id(self) -> str:
        return self._transaction.trace_id

    @property
    def finished(self) -> bool:
        return self.end_time is not None

    @property
    def duration(self) -> float | None:
        if self.end_time is None:
            return None
        return self.end_time - self.start_time

    def set_tag(self, key: str, value: str) -> None:
        self.tags[key] = value

    def set_status(self, status: str) -> None:
        self.status = status

    def start_child(
        self,
        operation: str,
        description: str = "",
        tags: dict[str, str] | None = None,
    ) -> "Span":
        """Open a span nested under this one."""
        return self._transaction._start_span(operation, description, tags, parent=self)

    def finish(self) -> None:
        """Close the span. Open children are closed at the same instant.

        Raises:
            RuntimeError: If the span was already finished.
        """
        if self.finished:
            raise RuntimeError(f"span {self.operation!r} already finished")
        self._close(self._transaction.timestamp())

    def _close(self, end: float, status: str | None = None) -> None:
        for child in self._children:
            if not child.finished:
                child._close(end, status="cancelled")
        if status is not None:
            self.status = status
        self.end_time = end

    def to_record(self) -> SpanRecord:
        return SpanRecord(
            span_id=self.span_id,
            parent_span_id=self.parent_span_id,
            operation=self.operation,
            description=self.description,
            status=self.status,
            start_time=self.start_time,
            end_time=self.end_time if self.end_time is not None else self.start_time,
            tags=dict(self.tags),
        )

    def __enter__(self) -> "Span":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if exc_type is not None:
            self.status = "internal_error"
        if not self.finished:
            self.finish()


class Transaction:
    """Root timing interval for one inbound call.

    Args:
        name: Route or RPC method name.
        operation: Operation class (e.g. "http.server", "grpc.server").
        tags: Initial tags.
        sampled: Whether the finished record is handed to ``on_finish``.
        max_spans: Spans beyond this count are returned to callers but not
                   recorded.
        on_finish: Callback receiving the TransactionRecord of a sampled
                   transaction.
        trace_id: Trace to continue, e.g. from an incoming request. A
                  missing or malformed id starts a new trace.
    """

    def __init__(
        self,
        name: str,
        operation: str,
        tags: dict[str, str] | None = None,
        *,
        sampled: bool = True,
        max_spans: int = DEFAULT_MAX_SPANS,
        on_finish: Callable[[TransactionRecord], None] | None = None,
        environment: str = "",
        release: str = "",
        trace_id: str | None = None,
    ) -> None:
        self.trace_id = (
            trace_id if trace_id and is_valid_trace_id(trace_id) else _new_id(32)
        )
        self.span_id = _new_id(16)
        self.name = name
        self.operation = operation
        self.tags: dict[str, str] = dict(tags or {})
        self.contexts: dict[str, object] = {}
        self.status = "ok"
        self.sampled = sampled
        self.max_spans = max_spans
        self.environment = environment
        self.release = release
        self.spans: list[Span] = []
        self.dropped_spans = 0
        self._children: list[Span] = []
        self._on_finish = on_finish
        self._wall_anchor = time.time()
        self._perf_anchor = time.perf_counter()
        self.start_time = self._wall_anchor
        self.end_time: float | None = None

    def timestamp(self) -> float:
        """Current time on this transaction's clock."""
        return self._wall_anchor + (time.perf_counter() - self._perf_anchor)

    @property
    def finished(self) -> bool:
        return self.end_time is not None

    @property
    def duration(self) -> float | None:
        if self.end_time is None:
            return None
        return self.end_time - self.start_time

    def set_tag(self, key: str, value: str) -> None:
        self.tags[key] = value

    def set_context(self, key: str, value: object) -> None:
        self.contexts[key] = value

    def set_status(self, status: str) -> None:
        self.status = status

    def start_child(
        self,
        operation: str,
        description: str = "",
        tags: dict[str, str] | None = None,
    ) -> Span:
        """Open a span directly under the transaction."""
        return self._start_span(operation, description, tags, parent=None)

    def _start_span(
        self,
        operation: str,
        description: str,
        tags: dict[str, str] | None,
        parent: Span | None,
    ) -> Span:
        span = Span(
            self,
            operation,
            description,
            tags,
            parent_span_id=parent.span_id if parent is not None else self.span_id,
        )
        (parent._children if parent is not None else self._children).append(span)
        if len(self.spans) < self.max_spans:
            self.spans.append(span)
        else:
            self.dropped_spans += 1
        return span

    def finish(self) -> TransactionRecord:
        """Close the transaction and every span still open under it.

        Returns:
            The finished TransactionRecord.

        Raises:
            RuntimeError: If the transaction was already finished.
        """
        if self.finished:
            raise RuntimeError(f"transaction {self.name!r} already finished")
        end = self.timestamp()
        for child in self._children:
            if not child.finished:
                child._close(end, status="cancelled")
        ends = [s.end_time for s in self.spans if s.end_time is not None]
        self.end_time = max([end, *ends])
        record = self.to_record()
        if self.sampled and self._on_finish is not None:
            self._on_finish(record)
        elif not self.sampled:
            logger.debug("Transaction %s not sampled", self.name)
        return record

    def to_record(self) -> TransactionRecord:
        return TransactionRecord(
            trace_id=self.trace_id,
            span_id=self.span_id,
            name=self.name,
            operation=self.operation,
            status=self.status,
            start_time=self.start_time,
            end_time=self.end_time if self.end_time is not None else self.start_time,
            tags=dict(self.tags),
            contexts={k: coerce_context(v) for k, v in self.contexts.items()},
            spans=tuple(s.to_record() for s in self.spans),
            environment=self.environment,
            release=self.release,
        )

    def __enter__(self) -> "Transaction":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if exc_type is not None:
            self.status = "internal_error"
        if not self.finished:
            self.finish()
