"""Event pipeline: builds, filters, samples and forwards telemetry.

The pipeline is the process-wide entry point for capture calls. It is
safe to share between threads and tasks; per-call enrichment lives in a
Scope that callers pass explicitly (usually through a Hub).

A pipeline built without an endpoint is disabled: every operation returns
immediately and nothing reaches a sink, so callers never branch on
whether capture is configured.
"""

import asyncio
import json
import logging
import platform
import socket
import threading
import time
import traceback
import uuid
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field, replace
from typing import Any
from urllib.parse import urlparse

from capturepy.core.encoding.ndjson import encode_ndjson
from capturepy.core.filters import (
    DEFAULT_IGNORED_ERRORS,
    BreadcrumbFilter,
    EventFilter,
    apply_chain,
    environment_breadcrumb_filter,
    environment_event_filter,
)
from capturepy.core.models import (
    Breadcrumb,
    CapturedEvent,
    ContextValue,
    EventKind,
    ExceptionInfo,
    Level,
    TransactionRecord,
    User,
    coerce_context,
    coerce_tag,
)
from capturepy.core.ports import EventSinkPort
from capturepy.core.profiles import resolve_profile
from capturepy.core.sampling import RateSampler
from capturepy.core.scope import DEFAULT_MAX_BREADCRUMBS, Scope
from capturepy.core.status import StatusCode, status_of
from capturepy.core.tracing import DEFAULT_MAX_SPANS, Transaction
from capturepy.exceptions import PanicError, PipelineInitError

logger = logging.getLogger(__name__)

DEFAULT_MAX_TRACE_PAYLOAD_SIZE = 10 * 1024 * 1024


@dataclass(frozen=True)
class EventPipelineConfig:
    """Pipeline-wide settings, fixed for the life of the process.

    Attributes:
        endpoint: Sink URL. ``None`` or empty disables the pipeline.
        environment: Environment name attached to every event.
        release: Release identifier attached to every event.
        server_name: Host identifier (defaults to the host name).
        dist: Distribution/build identifier.
        static_tags: Tags added to every event.
        error_sample_rate: Fraction of events forwarded.
        trace_sample_rate: Fraction of transactions forwarded.
        debug: Log every forwarded event at DEBUG level.
        max_breadcrumbs: Breadcrumb capacity for scopes created by adapters.
        max_spans: Spans recorded per transaction.
        max_trace_payload_size: Encoded transaction size limit in bytes.
        flush_timeout: Default timeout for ``flush``.
        ignored_errors: Root-cause types dropped in production.
        before_send: Caller filters run after the environment filter.
        before_breadcrumb: Caller breadcrumb filters.
    """

    endpoint: str | None = None
    environment: str = "development"
    release: str = ""
    server_name: str = field(default_factory=socket.gethostname)
    dist: str = ""
    static_tags: Mapping[str, str] = field(default_factory=dict)
    error_sample_rate: float = 1.0
    trace_sample_rate: float = 1.0
    debug: bool = False
    max_breadcrumbs: int = DEFAULT_MAX_BREADCRUMBS
    max_spans: int = DEFAULT_MAX_SPANS
    max_trace_payload_size: int = DEFAULT_MAX_TRACE_PAYLOAD_SIZE
    flush_timeout: float = 2.0
    ignored_errors: frozenset[str] = DEFAULT_IGNORED_ERRORS
    before_send: tuple[EventFilter, ...] = ()
    before_breadcrumb: tuple[BreadcrumbFilter, ...] = ()

    @property
    def enabled(self) -> bool:
        return bool(self.endpoint)

    @classmethod
    def for_environment(
        cls, environment: str, endpoint: str | None = None, **overrides: Any
    ) -> "EventPipelineConfig":
        """Build a config from an environment profile.

        Args:
            environment: Environment name, resolved with ``resolve_profile``.
            endpoint: Sink URL, or None for a disabled pipeline.
            **overrides: Any other config field, applied after the profile.
        """
        profile = resolve_profile(environment)
        values: dict[str, Any] = {
            "environment": profile.name,
            "error_sample_rate": profile.error_sample_rate,
            "trace_sample_rate": profile.trace_sample_rate,
            "debug": profile.debug,
            "max_breadcrumbs": profile.max_breadcrumbs,
            "flush_timeout": profile.flush_timeout,
        }
        values.update(overrides)
        return cls(endpoint=endpoint, **values)


def format_duration(seconds: float) -> str:
    """Format seconds as milliseconds with microsecond precision."""
    return f"{seconds * 1000:.3f}ms"


def _validate_endpoint(endpoint: str) -> None:
    parsed = urlparse(endpoint)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise PipelineInitError(f"invalid capture endpoint: {endpoint!r}")


def _default_sink(endpoint: str) -> EventSinkPort:
    from capturepy.adapters.transport.background import BackgroundTransport
    from capturepy.adapters.transport.http import HttpDelivery

    return BackgroundTransport(HttpDelivery(endpoint))


def _root_cause(exc: BaseException) -> BaseException:
    """Follow ``__cause__``/``__context__`` to the innermost exception."""
    seen = {id(exc)}
    current = exc
    while True:
        nxt = current.__cause__
        if nxt is None and not current.__suppress_context__:
            nxt = current.__context__
        if nxt is None or id(nxt) in seen:
            return current
        seen.add(id(nxt))
        current = nxt


def _exception_info(exc: BaseException) -> ExceptionInfo:
    root = _root_cause(exc)
    status = status_of(exc)
    if status is StatusCode.UNKNOWN:
        status = status_of(root)
    return ExceptionInfo(
        type=type(exc).__name__,
        module=type(exc).__module__,
        value=str(exc),
        stacktrace="".join(
            traceback.format_exception(type(exc), exc, exc.__traceback__)
        ),
        root_type=type(root).__name__,
        status=status.name,
    )


def _level_for(exc: BaseException) -> Level:
    level = getattr(exc, "level", None)
    if isinstance(level, Level):
        return level
    if isinstance(exc, PanicError):
        return Level.FATAL
    return Level.ERROR


def _system_context() -> dict[str, ContextValue]:
    """Runtime, platform and concurrency-unit counts of the calling process."""
    try:
        tasks = len(asyncio.all_tasks())
    except RuntimeError:
        tasks = 0
    return {
        "runtime": platform.python_implementation(),
        "python_version": platform.python_version(),
        "os": platform.system(),
        "arch": platform.machine(),
        "threads": threading.active_count(),
        "tasks": tasks,
    }


class EventPipeline:
    """Capture primitives plus transaction creation and flushing.

    Args:
        config: Pipeline configuration. Defaults to a disabled pipeline.
        sink: Event sink. When the config has an endpoint and no sink is
              given, a background HTTP transport to the endpoint is used.

    Raises:
        PipelineInitError: If the endpoint is not an http(s) URL.
    """

    def __init__(
        self,
        config: EventPipelineConfig | None = None,
        sink: EventSinkPort | None = None,
    ) -> None:
        self.config = config or EventPipelineConfig()
        self._sink: EventSinkPort | None = None
        if self.config.enabled:
            _validate_endpoint(str(self.config.endpoint))
            self._sink = sink if sink is not None else _default_sink(
                str(self.config.endpoint)
            )
        self._event_chain: tuple[EventFilter, ...] = (
            environment_event_filter(
                self.config.environment, self.config.ignored_errors
            ),
            *self.config.before_send,
        )
        self._breadcrumb_chain: tuple[BreadcrumbFilter, ...] = (
            environment_breadcrumb_filter(self.config.environment),
            *self.config.before_breadcrumb,
        )
        self._error_sampler = RateSampler(self.config.error_sample_rate)
        self._trace_sampler = RateSampler(self.config.trace_sample_rate)

    @classmethod
    def disabled(cls) -> "EventPipeline":
        """Return a pipeline on which every operation is a no-op."""
        return cls(EventPipelineConfig(endpoint=None))

    @property
    def enabled(self) -> bool:
        return self._sink is not None

    @property
    def sink(self) -> EventSinkPort | None:
        return self._sink

    def new_scope(self) -> Scope:
        """Create an empty scope sized for this pipeline."""
        return Scope(max_breadcrumbs=self.config.max_breadcrumbs)

    # === Capture ===

    def capture_error(
        self,
        error: BaseException,
        tags: Mapping[str, Any] | None = None,
        context: Mapping[str, Any] | None = None,
        user: User | None = None,
        *,
        level: Level | None = None,
        scope: Scope | None = None,
    ) -> str | None:
        """Capture an exception with tags, extra context and system info.

        Returns:
            The event id if the event was handed to the sink, else None.
        """
        if not self.enabled:
            return None
        try:
            contexts = dict(context or {})
            contexts["system"] = _system_context()
            event = self._build_event(
                EventKind.ERROR,
                level or _level_for(error),
                f"{type(error).__name__}: {error}",
                tags=tags,
                contexts=contexts,
                user=user,
                scope=scope,
                exception=_exception_info(error),
            )
            return self._dispatch(event)
        except Exception:
            logger.exception("Failed to capture error")
            return None

    def capture_message(
        self,
        text: str,
        level: Level = Level.INFO,
        tags: Mapping[str, Any] | None = None,
        context: Mapping[str, Any] | None = None,
        *,
        scope: Scope | None = None,
    ) -> str | None:
        """Capture a plain message at the given level."""
        if not self.enabled:
            return None
        try:
            event = self._build_event(
                EventKind.MESSAGE,
                level,
                text,
                tags=tags,
                contexts=context,
                scope=scope,
            )
            return self._dispatch(event)
        except Exception:
            logger.exception("Failed to capture message")
            return None

    def capture_business_event(
        self,
        event_type: str,
        user_id: str,
        properties: Mapping[str, Any] | None = None,
        *,
        scope: Scope | None = None,
    ) -> str | None:
        """Capture a business event (info level) attributed to a user."""
        if not self.enabled:
            return None
        try:
            event = self._build_event(
                EventKind.BUSINESS,
                Level.INFO,
                f"Business event: {event_type}",
                tags={"event_type": "business", "business_event": event_type},
                contexts={
                    "business_event": {
                        "type": event_type,
                        "properties": dict(properties or {}),
                    }
                },
                user=User(id=user_id),
                scope=scope,
            )
            return self._dispatch(event)
        except Exception:
            logger.exception("Failed to capture business event")
            return None

    def capture_performance_issue(
        self,
        operation: str,
        duration: float,
        threshold: float,
        context: Mapping[str, Any] | None = None,
        *,
        scope: Scope | None = None,
    ) -> str | None:
        """Capture a warning when ``duration`` exceeds ``threshold``.

        Args:
            operation: Name of the measured operation.
            duration: Measured duration in seconds.
            threshold: Allowed duration in seconds.
            context: Extra context attached to the event.

        Returns:
            The event id, or None when within threshold or dropped.
        """
        if not self.enabled or duration <= threshold:
            return None
        try:
            exceeded = duration - threshold
            contexts: dict[str, Any] = dict(context or {})
            contexts["performance"] = {
                "duration_seconds": duration,
                "threshold_seconds": threshold,
                "exceeded_by_seconds": exceeded,
            }
            event = self._build_event(
                EventKind.PERFORMANCE,
                Level.WARNING,
                f"Performance issue: {operation} took {format_duration(duration)} "
                f"(threshold: {format_duration(threshold)})",
                tags={
                    "issue_type": "performance",
                    "operation": operation,
                    "exceeded_by": format_duration(exceeded),
                },
                contexts=contexts,
                scope=scope,
            )
            return self._dispatch(event)
        except Exception:
            logger.exception("Failed to capture performance issue")
            return None

    def add_breadcrumb(self, breadcrumb: Breadcrumb, *, scope: Scope) -> None:
        """Run a breadcrumb through the filter chain and store it on ``scope``."""
        if not self.enabled:
            return
        try:
            kept = apply_chain(breadcrumb, self._breadcrumb_chain)
        except Exception:
            logger.exception("Breadcrumb filter failed")
            return
        if kept is not None:
            scope.add_breadcrumb(kept)

    # === Tracing ===

    def start_transaction(
        self,
        name: str,
        operation: str,
        tags: Mapping[str, str] | None = None,
        *,
        scope: Scope | None = None,
        trace_id: str | None = None,
    ) -> Transaction:
        """Start a transaction; it is sent to the sink when finished if sampled.

        When ``scope`` is given the transaction becomes the scope's current
        transaction, so nested code can open child spans through the hub.
        A valid ``trace_id`` continues an upstream trace.
        """
        sampled = self.enabled and self._trace_sampler.should_keep()
        transaction = Transaction(
            name,
            operation,
            dict(tags or {}),
            sampled=sampled,
            max_spans=self.config.max_spans,
            on_finish=self._send_transaction,
            environment=self.config.environment,
            release=self.config.release,
            trace_id=trace_id,
        )
        if scope is not None:
            scope.transaction = transaction
        return transaction

    # === Delivery ===

    def flush(self, timeout: float | None = None) -> bool:
        """Block until pending events are delivered or the timeout elapses.

        Args:
            timeout: Seconds to wait; defaults to ``config.flush_timeout``.

        Returns:
            True if delivery completed (always True when disabled).
        """
        if self._sink is None:
            return True
        wait = self.config.flush_timeout if timeout is None else timeout
        try:
            return self._sink.flush(wait)
        except Exception:
            logger.exception("Flush failed")
            return False

    def close(self, timeout: float | None = None) -> bool:
        """Flush and stop the sink. The pipeline is disabled afterwards."""
        if self._sink is None:
            return True
        sink, self._sink = self._sink, None
        wait = self.config.flush_timeout if timeout is None else timeout
        try:
            return sink.close(wait)
        except Exception:
            logger.exception("Closing sink failed")
            return False

    # === Internals ===

    def _build_event(
        self,
        kind: EventKind,
        level: Level,
        message: str,
        *,
        tags: Mapping[str, Any] | None = None,
        contexts: Mapping[str, Any] | None = None,
        user: User | None = None,
        scope: Scope | None = None,
        exception: ExceptionInfo | None = None,
    ) -> CapturedEvent:
        merged_tags: dict[str, str] = dict(self.config.static_tags)
        merged_contexts: dict[str, ContextValue] = {}
        breadcrumbs: tuple[Breadcrumb, ...] = ()
        event_user: User | None = None
        if scope is not None:
            merged_tags.update(scope.tags)
            merged_contexts.update(scope.contexts)
            event_user = scope.user
            breadcrumbs = scope.breadcrumbs
            if scope.transaction is not None:
                merged_contexts["trace"] = {
                    "trace_id": scope.transaction.trace_id,
                    "span_id": scope.transaction.span_id,
                    "transaction": scope.transaction.name,
                }
        if tags:
            merged_tags.update({k: coerce_tag(v) for k, v in tags.items()})
        if contexts:
            merged_contexts.update({k: coerce_context(v) for k, v in contexts.items()})
        if user is not None:
            event_user = user
        return CapturedEvent(
            event_id=uuid.uuid4().hex,
            kind=kind,
            level=level,
            message=message,
            timestamp=time.time(),
            tags=merged_tags,
            contexts=merged_contexts,
            user=event_user,
            breadcrumbs=breadcrumbs,
            exception=exception,
            environment=self.config.environment,
            release=self.config.release,
            server_name=self.config.server_name,
            dist=self.config.dist,
        )

    def _dispatch(self, event: CapturedEvent) -> str | None:
        """Filter, sample and enqueue. Decisions are made once per event."""
        kept = apply_chain(event, self._event_chain)
        if kept is None:
            logger.debug("Event %s dropped by filter chain", event.event_id)
            return None
        if not self._error_sampler.should_keep():
            logger.debug("Event %s not sampled", event.event_id)
            return None
        sink = self._sink
        if sink is None:
            return None
        sink.send_event(kept)
        if self.config.debug:
            logger.debug(
                "Captured %s event %s: %s", kept.kind, kept.event_id, kept.message
            )
        return kept.event_id

    def _send_transaction(self, record: TransactionRecord) -> None:
        sink = self._sink
        if sink is None:
            return
        try:
            sink.send_transaction(self._fit_payload(record))
        except Exception:
            logger.exception("Failed to send transaction %s", record.name)

    def _fit_payload(self, record: TransactionRecord) -> TransactionRecord:
        """Drop the newest spans until the encoded record fits the size limit."""
        limit = self.config.max_trace_payload_size
        size = len(encode_ndjson([record]).encode())
        if size <= limit:
            return record
        spans = list(record.spans)
        while spans and size > limit:
            span = spans.pop()
            size -= len(json.dumps(asdict(span), default=str).encode()) + 2
        logger.warning(
            "Transaction %s exceeded %d bytes; kept %d of %d spans",
            record.name,
            limit,
            len(spans),
            len(record.spans),
        )
        return replace(
            record,
            spans=tuple(spans),
            tags={**record.tags, "spans_truncated": "true"},
        )
