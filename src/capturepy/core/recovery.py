"""Panic guards: capture unhandled exceptions at call and task boundaries.

An exception escaping a guarded block is a panic. It is captured as a
fatal event (tag ``error_type=panic``, context ``panic_info``), logged,
and then either re-raised (``recover``) or swallowed (``recover_silent``).
The capture is complete before control continues in either case.
"""

import contextvars
import functools
import inspect
import logging
import threading
import traceback
from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager, contextmanager
from typing import Any, TypeVar

from capturepy.core.hub import Hub, get_current_hub
from capturepy.core.models import Level
from capturepy.core.pipeline import EventPipeline
from capturepy.exceptions import PanicError

logger = logging.getLogger(__name__)

T = TypeVar("T")

HubTarget = Hub | EventPipeline | None


def resolve_hub(target: HubTarget = None) -> Hub:
    """Return the hub a guard should capture to.

    ``None`` means the current hub. A pipeline reuses the current hub when
    it is bound to the same pipeline, so the call's scope is kept.
    """
    if isinstance(target, Hub):
        return target
    current = get_current_hub()
    if target is None or current.pipeline is target:
        return current
    return Hub(target)


def capture_panic(exc: BaseException, hub: Hub) -> str | None:
    """Capture ``exc`` as a fatal panic event on ``hub``.

    Returns:
        The event id, or None if the event was filtered or not sampled.
    """
    stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    value = exc.value if isinstance(exc, PanicError) else str(exc)
    event_id = hub.capture_error(
        exc,
        tags={"error_type": "panic"},
        context={"panic_info": {"panic_value": value, "stack": stack}},
        level=Level.FATAL,
    )
    logger.error(
        "Recovered panic: %s", exc, exc_info=(type(exc), exc, exc.__traceback__)
    )
    return event_id


def panic(value: Any) -> None:
    """Raise ``value`` as a panic, wrapping non-exception values."""
    if isinstance(value, BaseException):
        raise value
    raise PanicError(value)


@contextmanager
def recover(
    target: HubTarget = None,
    *,
    repanic: bool = True,
    wait_for_delivery: float | None = None,
) -> Iterator[Hub]:
    """Capture any exception raised in the block as a panic.

    Args:
        target: Hub or pipeline to capture to; the current hub by default.
        repanic: Re-raise the exception after capturing it.
        wait_for_delivery: If set, flush for up to this many seconds after
                           capturing.

    Yields:
        The hub events are captured to.
    """
    hub = resolve_hub(target)
    try:
        yield hub
    except Exception as exc:
        capture_panic(exc, hub)
        if wait_for_delivery is not None:
            hub.flush(wait_for_delivery)
        if repanic:
            raise


def recover_silent(
    target: HubTarget = None, *, wait_for_delivery: float | None = None
) -> AbstractContextManager[Hub]:
    """Like ``recover`` but the exception is swallowed after capture."""
    return recover(target, repanic=False, wait_for_delivery=wait_for_delivery)


def with_panic_recovery(fn: Callable[[], T], target: HubTarget = None) -> T:
    """Call ``fn``; a panic is captured and re-raised."""
    with recover(target):
        return fn()


def with_panic_recovery_silent(
    fn: Callable[[], T], target: HubTarget = None
) -> T | None:
    """Call ``fn``; a panic is captured and None is returned."""
    with recover(target, repanic=False):
        return fn()
    return None


def guarded(target: HubTarget = None, *, repanic: bool = True) -> Callable[[Any], Any]:
    """Decorate a function or coroutine function with a panic guard.

    Example:
        @guarded(pipeline, repanic=False)
        async def consume(message): ...
    """

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        if inspect.iscoroutinefunction(fn):

            @functools.wraps(fn)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                with recover(target, repanic=repanic):
                    return await fn(*args, **kwargs)
                return None

            return async_wrapper

        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            with recover(target, repanic=repanic):
                return fn(*args, **kwargs)
            return None

        return wrapper

    return decorator


def spawn_guarded(
    fn: Callable[[], Any], target: HubTarget = None, *, name: str | None = None
) -> threading.Thread:
    """Run ``fn`` in a daemon thread under a silent panic guard.

    The thread runs in a copy of the caller's context, so the current hub
    is inherited.
    """
    context = contextvars.copy_context()

    def run() -> None:
        with recover(target, repanic=False):
            fn()

    thread = threading.Thread(target=context.run, args=(run,), name=name, daemon=True)
    thread.start()
    return thread

