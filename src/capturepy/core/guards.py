"""Timing and error capture around database and business-logic calls."""

import time
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from typing import TypeVar

from capturepy.core.hub import get_current_hub
from capturepy.core.pipeline import EventPipeline
from capturepy.core.scope import Scope

T = TypeVar("T")

DATABASE_THRESHOLD = 1.0
BUSINESS_THRESHOLD = 0.5


class OperationGuards:
    """Wrap operations with a performance threshold and error capture.

    Errors are captured and re-raised unchanged; results pass through.

    Args:
        pipeline: Pipeline that receives the events.
        database_threshold: Seconds before a database call is reported slow.
        business_threshold: Seconds before a business operation is reported slow.
    """

    def __init__(
        self,
        pipeline: EventPipeline,
        *,
        database_threshold: float = DATABASE_THRESHOLD,
        business_threshold: float = BUSINESS_THRESHOLD,
    ) -> None:
        self.pipeline = pipeline
        self.database_threshold = database_threshold
        self.business_threshold = business_threshold

    def _scope(self) -> Scope | None:
        hub = get_current_hub()
        return hub.scope if hub.pipeline is self.pipeline else None

    @contextmanager
    def observe(self, operation: str, *, component: str, threshold: float) -> Iterator[None]:
        """Time the block; report slowness and any exception raised in it."""
        scope = self._scope()
        start = time.perf_counter()
        error: Exception | None = None
        try:
            yield
        except Exception as exc:
            error = exc
            raise
        finally:
            duration = time.perf_counter() - start
            self.pipeline.capture_performance_issue(
                operation, duration, threshold, {"component": component}, scope=scope
            )
            if error is not None:
                tags = {"component": component}
                if component != "database":
                    tags["operation"] = operation
                self.pipeline.capture_error(
                    error, tags, {"duration_seconds": duration}, scope=scope
                )

    def database(self, operation: Callable[[], T]) -> T:
        with self.observe(
            "database_query", component="database", threshold=self.database_threshold
        ):
            return operation()

    def business(self, name: str, operation: Callable[[], T]) -> T:
        with self.observe(
            name, component="business_logic", threshold=self.business_threshold
        ):
            return operation()

    async def adatabase(self, operation: Callable[[], Awaitable[T]]) -> T:
        with self.observe(
            "database_query", component="database", threshold=self.database_threshold
        ):
            return await operation()

    async def abusiness(self, name: str, operation: Callable[[], Awaitable[T]]) -> T:
        with self.observe(
            name, component="business_logic", threshold=self.business_threshold
        ):
            return await operation()
