"""Python logging handler adapter for capturepy.

This adapter bridges Python's standard library logging module to the
event pipeline: records at or above ``event_level`` become events, lower
records become breadcrumbs on the current call's scope.
"""

import logging
from typing import Any

from capturepy.core.hub import get_current_hub
from capturepy.core.models import Level
from capturepy.core.pipeline import EventPipeline

# Standard LogRecord attributes that should not be treated as extra fields
_STANDARD_LOGRECORD_ATTRS = frozenset(
    {
        "args",
        "asctime",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "message",
        "module",
        "msecs",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "taskName",
        "thread",
        "threadName",
    }
)

# Loggers whose records are never bridged, to avoid capturing our own output.
_INTERNAL_LOGGER_PREFIX = "capturepy"


def level_for_record(levelno: int) -> Level:
    """Map a stdlib logging level number to an event Level."""
    if levelno >= logging.CRITICAL:
        return Level.FATAL
    if levelno >= logging.ERROR:
        return Level.ERROR
    if levelno >= logging.WARNING:
        return Level.WARNING
    if levelno >= logging.INFO:
        return Level.INFO
    return Level.DEBUG


class CaptureHandler(logging.Handler):
    """Logging handler that forwards records to an EventPipeline.

    Example:
        ```python
        from capturepy import CaptureHandler, create_pipeline

        pipeline = create_pipeline()
        logging.getLogger().addHandler(CaptureHandler(pipeline))
        ```
    """

    def __init__(self, pipeline: EventPipeline, event_level: int = logging.ERROR) -> None:
        """Initialize the handler.

        Args:
            pipeline: Pipeline that receives events.
            event_level: Records at or above this level become events; lower
                         records become breadcrumbs.
        """
        super().__init__()
        self._pipeline = pipeline
        self._event_level = event_level

    def emit(self, record: logging.LogRecord) -> None:
        """Forward a log record as an event or a breadcrumb.

        Args:
            record: The log record to emit.
        """
        if record.name.startswith(_INTERNAL_LOGGER_PREFIX):
            return
        try:
            tags: dict[str, Any] = {"logger": record.name}
            context: dict[str, Any] = {}
            for key, value in record.__dict__.items():
                if key in _STANDARD_LOGRECORD_ATTRS or key.startswith("_"):
                    continue
                if isinstance(value, (str, int, float, bool)):
                    tags[key] = value
                else:
                    context[key] = value

            hub = get_current_hub()
            scope = hub.scope if hub.pipeline is self._pipeline else None
            level = level_for_record(record.levelno)

            if record.levelno < self._event_level:
                if scope is not None:
                    hub.add_breadcrumb(
                        record.getMessage(),
                        level=level,
                        category="log",
                        data={"logger": record.name, **context},
                    )
                return

            exc = record.exc_info[1] if record.exc_info else None
            if exc is not None:
                context["log_message"] = record.getMessage()
                self._pipeline.capture_error(
                    exc, tags, context, level=level, scope=scope
                )
            else:
                self._pipeline.capture_message(
                    record.getMessage(), level, tags, context, scope=scope
                )
        except Exception:
            self.handleError(record)
