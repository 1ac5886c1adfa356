"""Core domain models for captured telemetry."""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, TypeAlias, Union

# Closed shape for "extra context" payloads: scalars, nested mappings and
# sequences. Anything else is converted with coerce_context().
ContextValue: TypeAlias = Union[
    str,
    int,
    float,
    bool,
    None,
    Mapping[str, "ContextValue"],
    Sequence["ContextValue"],
]


class Level(StrEnum):
    """Severity of a captured event or breadcrumb."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    FATAL = "fatal"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]


_SEVERITY = {
    Level.DEBUG: 10,
    Level.INFO: 20,
    Level.WARNING: 30,
    Level.ERROR: 40,
    Level.FATAL: 50,
}


class EventKind(StrEnum):
    """Kind of telemetry carried by a CapturedEvent."""

    ERROR = "error"
    MESSAGE = "message"
    BUSINESS = "business"
    PERFORMANCE = "performance"


@dataclass(frozen=True)
class User:
    """Identity attached to an event.

    Attributes:
        id: Stable user identifier.
        email: Optional email address.
    """

    id: str
    email: str | None = None


@dataclass(frozen=True)
class Breadcrumb:
    """A timestamped trail entry kept in a scope's bounded history.

    Attributes:
        message: Human-readable description.
        level: Severity of the breadcrumb.
        category: Free-form grouping (e.g. "http", "log").
        timestamp: Unix timestamp in seconds.
        data: Additional structured fields.
    """

    message: str
    timestamp: float
    level: Level = Level.INFO
    category: str = "default"
    data: dict[str, ContextValue] = field(default_factory=dict)


@dataclass(frozen=True)
class ExceptionInfo:
    """Serializable description of a captured exception.

    Attributes:
        type: Exception class name.
        module: Module the exception class is defined in.
        value: ``str()`` of the exception.
        stacktrace: Formatted traceback text.
        root_type: Class name of the innermost cause in the exception chain.
        status: Transport status name when the error carries one.
    """

    type: str
    module: str
    value: str
    stacktrace: str
    root_type: str
    status: str | None = None


@dataclass(frozen=True)
class CapturedEvent:
    """A unit of telemetry sent to the sink.

    Events are immutable: filters that annotate an event return a
    replacement built with ``dataclasses.replace``.
    """

    event_id: str
    kind: EventKind
    level: Level
    message: str
    timestamp: float
    tags: dict[str, str] = field(default_factory=dict)
    contexts: dict[str, ContextValue] = field(default_factory=dict)
    user: User | None = None
    breadcrumbs: tuple[Breadcrumb, ...] = ()
    exception: ExceptionInfo | None = None
    environment: str = ""
    release: str = ""
    server_name: str = ""
    dist: str = ""


@dataclass(frozen=True)
class SpanRecord:
    """Snapshot of a finished span."""

    span_id: str
    parent_span_id: str | None
    operation: str
    description: str
    status: str
    start_time: float
    end_time: float
    tags: dict[str, str] = field(default_factory=dict)

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


@dataclass(frozen=True)
class TransactionRecord:
    """Snapshot of a finished transaction and its spans."""

    trace_id: str
    span_id: str
    name: str
    operation: str
    status: str
    start_time: float
    end_time: float
    tags: dict[str, str] = field(default_factory=dict)
    contexts: dict[str, ContextValue] = field(default_factory=dict)
    spans: tuple[SpanRecord, ...] = ()
    environment: str = ""
    release: str = ""

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


def coerce_tag(value: Any) -> str:
    """Convert a scalar to its tag string.

    Integers use their decimal representation; booleans become
    ``"true"``/``"false"``.
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, StrEnum):
        return value.value
    return str(value)


def coerce_context(value: Any) -> ContextValue:
    """Convert an arbitrary object into a ContextValue.

    Scalars pass through, mappings and sequences are converted recursively
    and any other object is replaced by its ``repr``.
    """
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Mapping):
        return {str(k): coerce_context(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [coerce_context(v) for v in value]
    return repr(value)


# Anything a sink accepts.
Envelope = CapturedEvent | TransactionRecord
