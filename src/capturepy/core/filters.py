"""Before-send and before-breadcrumb filter chains.

A filter receives an item and returns it (possibly replaced with an
annotated copy) or ``None`` to drop it. Chains run the environment filter
first and caller-supplied filters after it; the first ``None`` ends the
chain.
"""

from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import UTC, datetime
from typing import TypeVar

from capturepy.core.models import Breadcrumb, CapturedEvent, Level
from capturepy.core.status import StatusCode

T = TypeVar("T")

EventFilter = Callable[[CapturedEvent], CapturedEvent | None]
BreadcrumbFilter = Callable[[Breadcrumb], Breadcrumb | None]

# Root-cause types treated as low-value recurring noise in production.
DEFAULT_IGNORED_ERRORS = frozenset({"TimeoutError", "DeadlineExceeded"})


def apply_chain(item: T, chain: Iterable[Callable[[T], T | None]]) -> T | None:
    """Run ``item`` through ``chain`` in order, stopping at the first drop."""
    current: T | None = item
    for fn in chain:
        current = fn(current)
        if current is None:
            return None
    return current


def is_frequent_error(
    event: CapturedEvent, ignored_errors: frozenset[str] = DEFAULT_IGNORED_ERRORS
) -> bool:
    """Return True when the event's root cause is classified as ignorable."""
    exc = event.exception
    if exc is None:
        return False
    if exc.root_type in ignored_errors:
        return True
    return exc.status == StatusCode.DEADLINE_EXCEEDED.name


def environment_event_filter(
    environment: str,
    ignored_errors: frozenset[str] = DEFAULT_IGNORED_ERRORS,
) -> EventFilter:
    """Build the environment-level before-send filter.

    Debug events only survive in ``development``; ``production`` also drops
    frequent errors. Surviving events get a ``processed_at`` tag.
    """

    def _filter(event: CapturedEvent) -> CapturedEvent | None:
        if environment != "development" and event.level is Level.DEBUG:
            return None
        if environment == "production" and is_frequent_error(event, ignored_errors):
            return None
        tags = {**event.tags, "processed_at": datetime.now(UTC).isoformat()}
        return replace(event, tags=tags)

    return _filter


def environment_breadcrumb_filter(environment: str) -> BreadcrumbFilter:
    """Build the environment-level before-breadcrumb filter."""

    def _filter(breadcrumb: Breadcrumb) -> Breadcrumb | None:
        if environment != "development" and breadcrumb.level is Level.DEBUG:
            return None
        return breadcrumb

    return _filter
