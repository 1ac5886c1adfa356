"""Shared test fixtures for all test modules."""

from collections.abc import Callable
from typing import Any

import httpx
import pytest

from capturepy.adapters.storage.in_memory import InMemoryEventSink
from capturepy.core.pipeline import EventPipeline, EventPipelineConfig

TEST_ENDPOINT = "http://capture.test/ingest"


@pytest.fixture
def sink() -> InMemoryEventSink:
    """Fresh in-memory sink collecting everything the pipeline forwards."""
    return InMemoryEventSink()


@pytest.fixture
def make_pipeline(sink: InMemoryEventSink) -> Callable[..., EventPipeline]:
    """Factory fixture for enabled pipelines writing to ``sink``.

    Usage:
        pipeline = make_pipeline("production", error_sample_rate=1.0)
    """

    def _make(environment: str = "development", **overrides: Any) -> EventPipeline:
        config = EventPipelineConfig.for_environment(
            environment, TEST_ENDPOINT, **overrides
        )
        return EventPipeline(config, sink=sink)

    return _make


@pytest.fixture
def pipeline(make_pipeline: Callable[..., EventPipeline]) -> EventPipeline:
    """Development pipeline: every event and transaction is kept."""
    return make_pipeline("development")


# === ASGI Test Fixtures ===


@pytest.fixture
def asgi_test_client():
    """Factory fixture that creates an httpx.AsyncClient for ASGI testing.

    Usage:
        async def test_something(asgi_test_client):
            async with asgi_test_client(app) as client:
                response = await client.get("/endpoint")
    """

    def _get_client(app):
        return httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app), base_url="http://test"
        )

    return _get_client
