"""Environment-driven settings and pipeline construction.

All values can be overridden via environment variables prefixed with
``CAPTURE_`` or a ``.env`` file. Unset optional values fall back to the
environment profile.
"""

import logging
import socket
from collections.abc import Iterable

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from capturepy.core.filters import BreadcrumbFilter, EventFilter
from capturepy.core.pipeline import (
    DEFAULT_MAX_TRACE_PAYLOAD_SIZE,
    EventPipeline,
    EventPipelineConfig,
)
from capturepy.core.ports import EventSinkPort
from capturepy.core.profiles import resolve_profile
from capturepy.core.tracing import DEFAULT_MAX_SPANS

logger = logging.getLogger(__name__)


class CaptureSettings(BaseSettings):
    """Settings for the capture pipeline.

    Order of precedence (highest to lowest):
        1. Environment variables (``CAPTURE_ENDPOINT``, etc.)
        2. ``.env`` file
        3. Defaults below
    """

    endpoint: str | None = Field(default=None, description="Ingest URL; unset disables capture")
    environment: str = Field(default="development", description="Environment profile name")
    release: str = Field(default="", description="Release identifier")
    debug: bool | None = Field(default=None, description="Debug logging; profile default if unset")
    max_breadcrumbs: int | None = Field(default=None, ge=0)
    max_spans: int = Field(default=DEFAULT_MAX_SPANS, ge=0)
    max_trace_payload_size: int = Field(default=DEFAULT_MAX_TRACE_PAYLOAD_SIZE, gt=0)
    error_sample_rate: float | None = Field(default=None, ge=0.0, le=1.0)
    trace_sample_rate: float | None = Field(default=None, ge=0.0, le=1.0)
    server_name: str = Field(default_factory=socket.gethostname)
    dist: str = ""
    service_name: str = ""
    additional_tags: str = Field(default="", description="Comma-separated key:value pairs")

    model_config = SettingsConfigDict(
        env_prefix="CAPTURE_",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("endpoint")
    @classmethod
    def _blank_endpoint_is_none(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            return None
        return value

    def static_tags(self) -> dict[str, str]:
        """Tags attached to every event: service identity plus extras."""
        tags = {
            "service": self.service_name,
            "version": self.release,
            "environment": resolve_profile(self.environment).name,
            "server": self.server_name,
        }
        tags = {k: v for k, v in tags.items() if v}
        tags.update(parse_additional_tags(self.additional_tags))
        return tags

    def to_pipeline_config(
        self,
        before_send: Iterable[EventFilter] = (),
        before_breadcrumb: Iterable[BreadcrumbFilter] = (),
    ) -> EventPipelineConfig:
        overrides: dict[str, object] = {
            "release": self.release,
            "server_name": self.server_name,
            "dist": self.dist,
            "static_tags": self.static_tags(),
            "max_spans": self.max_spans,
            "max_trace_payload_size": self.max_trace_payload_size,
            "before_send": tuple(before_send),
            "before_breadcrumb": tuple(before_breadcrumb),
        }
        if self.debug is not None:
            overrides["debug"] = self.debug
        if self.max_breadcrumbs is not None:
            overrides["max_breadcrumbs"] = self.max_breadcrumbs
        if self.error_sample_rate is not None:
            overrides["error_sample_rate"] = self.error_sample_rate
        if self.trace_sample_rate is not None:
            overrides["trace_sample_rate"] = self.trace_sample_rate
        return EventPipelineConfig.for_environment(
            self.environment, self.endpoint, **overrides
        )


def parse_additional_tags(raw: str) -> dict[str, str]:
    """Parse ``"team:auth, region:eu"`` into a dict.

    Entries without a colon or with an empty key are skipped.
    """
    tags: dict[str, str] = {}
    for item in raw.split(","):
        key, sep, value = item.partition(":")
        key = key.strip()
        if not sep or not key:
            continue
        tags[key] = value.strip()
    return tags


def create_pipeline(
    settings: CaptureSettings | None = None,
    *,
    sink: EventSinkPort | None = None,
    before_send: Iterable[EventFilter] = (),
    before_breadcrumb: Iterable[BreadcrumbFilter] = (),
) -> EventPipeline:
    """Build the process-wide pipeline from settings.

    Args:
        settings: Settings to use; loaded from the environment by default.
        sink: Event sink; the background HTTP transport by default.
        before_send: Extra event filters, run after the environment filter.
        before_breadcrumb: Extra breadcrumb filters.

    Raises:
        PipelineInitError: If the configured endpoint is not an http(s) URL.
    """
    settings = settings or CaptureSettings()
    config = settings.to_pipeline_config(before_send, before_breadcrumb)
    pipeline = EventPipeline(config, sink=sink)
    if pipeline.enabled:
        logger.info(
            "Capture enabled for environment %s (error rate %.2f, trace rate %.2f)",
            config.environment,
            config.error_sample_rate,
            config.trace_sample_rate,
        )
    else:
        logger.info("Capture disabled: no endpoint configured")
    return pipeline
