"""RPC status codes and error classification."""

from enum import IntEnum


class StatusCode(IntEnum):
    """RPC status codes, numbered as in gRPC."""

    OK = 0
    CANCELLED = 1
    UNKNOWN = 2
    INVALID_ARGUMENT = 3
    DEADLINE_EXCEEDED = 4
    NOT_FOUND = 5
    ALREADY_EXISTS = 6
    PERMISSION_DENIED = 7
    RESOURCE_EXHAUSTED = 8
    FAILED_PRECONDITION = 9
    ABORTED = 10
    OUT_OF_RANGE = 11
    UNIMPLEMENTED = 12
    INTERNAL = 13
    UNAVAILABLE = 14
    DATA_LOSS = 15
    UNAUTHENTICATED = 16


# Server-side failure classes; everything else is caused by the client.
REPORTABLE_CODES = frozenset({StatusCode.INTERNAL, StatusCode.UNKNOWN})


def status_of(exc: BaseException) -> StatusCode:
    """Classify an exception into a status code.

    Recognizes exceptions with a ``code`` attribute holding a StatusCode,
    objects exposing a grpc-style ``code()`` method whose result has a
    ``name``, and timeouts. Anything else is ``UNKNOWN``.
    """
    code = getattr(exc, "code", None)
    if isinstance(code, StatusCode):
        return code
    if callable(code):
        try:
            name = getattr(code(), "name", None)
        except Exception:
            name = None
        if isinstance(name, str) and name in StatusCode.__members__:
            return StatusCode[name]
    if isinstance(exc, TimeoutError):
        return StatusCode.DEADLINE_EXCEEDED
    return StatusCode.UNKNOWN


def is_reportable(exc: BaseException) -> bool:
    """Return True when the exception is a server-side (platform) failure."""
    return status_of(exc) in REPORTABLE_CODES
