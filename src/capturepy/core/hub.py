"""Hub: the explicit telemetry handle of one call, propagated via contextvars.

Boundary adapters create a Hub per inbound call and bind it for the
duration of the handler. Nested code retrieves it with
``get_current_hub()`` instead of receiving it through every signature.
Outside a binding, ``get_current_hub()`` returns a fresh hub around a
disabled pipeline, so capture calls from unbound code are harmless no-ops.
"""

import time
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any

from capturepy.core.models import Breadcrumb, Level, User, coerce_context
from capturepy.core.pipeline import EventPipeline
from capturepy.core.scope import Scope
from capturepy.core.tracing import Span, Transaction


class Hub:
    """A pipeline paired with the scope of the call that owns it.

    Args:
        pipeline: Shared event pipeline.
        scope: Per-call scope; a new one sized for the pipeline by default.
    """

    def __init__(self, pipeline: EventPipeline, scope: Scope | None = None) -> None:
        self.pipeline = pipeline
        self.scope = scope if scope is not None else pipeline.new_scope()

    @property
    def transaction(self) -> Transaction | None:
        return self.scope.transaction

    def capture_error(
        self,
        error: BaseException,
        tags: Mapping[str, Any] | None = None,
        context: Mapping[str, Any] | None = None,
        user: User | None = None,
        *,
        level: Level | None = None,
    ) -> str | None:
        return self.pipeline.capture_error(
            error, tags, context, user, level=level, scope=self.scope
        )

    def capture_message(
        self,
        text: str,
        level: Level = Level.INFO,
        tags: Mapping[str, Any] | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> str | None:
        return self.pipeline.capture_message(text, level, tags, context, scope=self.scope)

    def capture_business_event(
        self,
        event_type: str,
        user_id: str,
        properties: Mapping[str, Any] | None = None,
    ) -> str | None:
        return self.pipeline.capture_business_event(
            event_type, user_id, properties, scope=self.scope
        )

    def capture_performance_issue(
        self,
        operation: str,
        duration: float,
        threshold: float,
        context: Mapping[str, Any] | None = None,
    ) -> str | None:
        return self.pipeline.capture_performance_issue(
            operation, duration, threshold, context, scope=self.scope
        )

    def add_breadcrumb(
        self,
        message: str,
        *,
        level: Level = Level.INFO,
        category: str = "default",
        data: Mapping[str, Any] | None = None,
    ) -> None:
        breadcrumb = Breadcrumb(
            message=message,
            timestamp=time.time(),
            level=level,
            category=category,
            data={k: coerce_context(v) for k, v in (data or {}).items()},
        )
        self.pipeline.add_breadcrumb(breadcrumb, scope=self.scope)

    def start_transaction(
        self,
        name: str,
        operation: str,
        tags: Mapping[str, str] | None = None,
        *,
        trace_id: str | None = None,
    ) -> Transaction:
        return self.pipeline.start_transaction(
            name, operation, tags, scope=self.scope, trace_id=trace_id
        )

    def start_span(
        self,
        operation: str,
        description: str = "",
        tags: dict[str, str] | None = None,
    ) -> Span:
        """Open a child span of the call's transaction.

        Without an active transaction the span belongs to a detached,
        unsampled transaction: it still measures time but is never sent.
        """
        transaction = self.scope.transaction
        if transaction is None or transaction.finished:
            transaction = Transaction(operation, operation, sampled=False)
        return transaction.start_child(operation, description, tags)

    def flush(self, timeout: float | None = None) -> bool:
        return self.pipeline.flush(timeout)


_current_hub: ContextVar[Hub | None] = ContextVar("capturepy_hub", default=None)


def get_current_hub() -> Hub:
    """Return the hub bound to the current context, or a disabled one."""
    hub = _current_hub.get()
    if hub is None:
        return Hub(EventPipeline.disabled())
    return hub


@contextmanager
def bind_hub(hub: Hub) -> Iterator[Hub]:
    """Bind ``hub`` as the current hub until the block exits."""
    token = _current_hub.set(hub)
    try:
        yield hub
    finally:
        _current_hub.reset(token)
