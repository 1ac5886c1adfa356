"""Custom exceptions for capturepy."""

from typing import Any

from capturepy.core.status import StatusCode

__all__ = [
    "CaptureError",
    "DeliveryError",
    "PanicError",
    "PipelineInitError",
    "RpcError",
]


class CaptureError(Exception):
    """Base exception for all capturepy errors."""


class PipelineInitError(CaptureError):
    """Raised when the pipeline configuration is invalid at startup."""


class DeliveryError(CaptureError):
    """Raised by a delivery backend when the sink rejects a payload."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PanicError(CaptureError):
    """Wraps a value recovered at a panic boundary."""

    def __init__(self, value: Any) -> None:
        super().__init__(str(value))
        self.value = value


class RpcError(CaptureError):
    """An RPC failure carrying a status code.

    Handlers raise it to return a classified error to the caller; the
    interceptors only report ``INTERNAL`` and ``UNKNOWN`` codes.
    """

    def __init__(self, code: StatusCode, details: str = "") -> None:
        super().__init__(details or code.name)
        self.code = code
        self.details = details
