"""BDD step definitions for panic recovery features."""

import builtins
import threading
from collections.abc import Iterator
from contextlib import ExitStack
from dataclasses import dataclass, field

import pytest
from pytest_bdd import given, parsers, then, when

from capturepy.adapters.storage.in_memory import InMemoryEventSink
from capturepy.core.hub import Hub, bind_hub
from capturepy.core.models import Level
from capturepy.core.pipeline import EventPipeline
from capturepy.core.recovery import panic, recover, recover_silent, spawn_guarded


@dataclass
class RecoveryScenarioContext:
    """State shared between the steps of one scenario."""

    stack: ExitStack = field(default_factory=ExitStack)
    pipeline: EventPipeline | None = None
    sink: InMemoryEventSink | None = None
    raised: BaseException | None = None
    thread_alive_after: bool = False


@pytest.fixture
def ctx() -> Iterator[RecoveryScenarioContext]:
    """Fresh scenario context; hubs bound by steps are unbound on teardown."""
    context = RecoveryScenarioContext()
    with context.stack:
        yield context


def _raise(name: str, message: str) -> None:
    raise getattr(builtins, name)(message)


# === Given ===
@given("a development pipeline with an in-memory sink")
def step_pipeline(
    ctx: RecoveryScenarioContext, pipeline: EventPipeline, sink: InMemoryEventSink
) -> None:
    ctx.pipeline = pipeline
    ctx.sink = sink


@given(parsers.parse('a breadcrumb "{message}" on the current call'))
def step_breadcrumb(ctx: RecoveryScenarioContext, message: str) -> None:
    hub = ctx.stack.enter_context(bind_hub(Hub(ctx.pipeline)))
    hub.add_breadcrumb(message, category="ui")


# === When ===
@when(parsers.parse('a guarded block raises "{name}" with message "{message}"'))
def step_guarded_raise(ctx: RecoveryScenarioContext, name: str, message: str) -> None:
    try:
        with recover(ctx.pipeline):
            _raise(name, message)
    except Exception as exc:
        ctx.raised = exc


@when(parsers.parse('a silently guarded block raises "{name}" with message "{message}"'))
def step_silent_raise(ctx: RecoveryScenarioContext, name: str, message: str) -> None:
    try:
        with recover_silent(ctx.pipeline):
            _raise(name, message)
    except Exception as exc:
        ctx.raised = exc


@when(parsers.parse('a guarded block panics with the value "{value}"'))
def step_guarded_panic(ctx: RecoveryScenarioContext, value: str) -> None:
    try:
        with recover(ctx.pipeline):
            panic(value)
    except Exception as exc:
        ctx.raised = exc


@when(parsers.parse('a guarded thread raises "{name}" with message "{message}"'))
def step_guarded_thread(ctx: RecoveryScenarioContext, name: str, message: str) -> None:
    thread = spawn_guarded(lambda: _raise(name, message), ctx.pipeline, name="worker")
    thread.join(timeout=5.0)
    ctx.thread_alive_after = threading.current_thread().is_alive()


# === Then ===
@then("the exception is re-raised to the caller")
def step_reraised(ctx: RecoveryScenarioContext) -> None:
    assert ctx.raised is not None


@then("no exception reaches the caller")
def step_not_raised(ctx: RecoveryScenarioContext) -> None:
    assert ctx.raised is None


@then("one fatal event tagged as a panic is captured")
def step_one_panic(ctx: RecoveryScenarioContext) -> None:
    assert ctx.sink is not None
    [event] = ctx.sink.events
    assert event.level is Level.FATAL
    assert event.tags["error_type"] == "panic"


@then(parsers.parse('the panic value is "{value}"'))
def step_panic_value(ctx: RecoveryScenarioContext, value: str) -> None:
    assert ctx.sink is not None
    [event] = ctx.sink.events
    assert event.contexts["panic_info"]["panic_value"] == value


@then("the calling thread keeps running")
def step_caller_alive(ctx: RecoveryScenarioContext) -> None:
    assert ctx.thread_alive_after


@then(parsers.parse('the captured panic carries the breadcrumb "{message}"'))
def step_breadcrumb_carried(ctx: RecoveryScenarioContext, message: str) -> None:
    assert ctx.sink is not None
    [event] = ctx.sink.events
    assert [b.message for b in event.breadcrumbs] == [message]
