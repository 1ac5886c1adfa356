"""Integration tests for the FastAPI helpers."""

import pytest
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient

from capturepy.adapters.frameworks.fastapi import capture_lifespan, install_capture
from capturepy.adapters.storage.in_memory import InMemoryEventSink
from capturepy.core.hub import get_current_hub
from capturepy.core.models import Level
from capturepy.core.pipeline import EventPipeline


@pytest.fixture
def app(pipeline: EventPipeline) -> FastAPI:
    app = FastAPI(lifespan=capture_lifespan(pipeline))
    install_capture(app, pipeline, threshold=10.0, exclude_paths=["/health"])

    @app.get("/users/{user_id}")
    async def get_user(user_id: int) -> dict:
        get_current_hub().add_breadcrumb(f"loading user {user_id}", category="db")
        return {"id": user_id}

    @app.get("/unavailable")
    async def unavailable() -> dict:
        raise HTTPException(status_code=503, detail="maintenance")

    @app.get("/crash")
    async def crash() -> dict:
        raise RuntimeError("route failed")

    @app.get("/health")
    async def health() -> dict:
        raise HTTPException(status_code=500)

    return app


@pytest.mark.fastapi
class TestFastAPICapture:
    """Tests for install_capture and capture_lifespan."""

    @pytest.mark.tier(2)
    @pytest.mark.tra("Adapter.FastAPI.Success")
    def test_route_records_transaction(self, app: FastAPI, sink: InMemoryEventSink) -> None:
        with TestClient(app) as client:
            response = client.get("/users/7")

        assert response.json() == {"id": 7}
        assert sink.events == []
        assert [t.name for t in sink.transactions] == ["GET /users/7"]

    @pytest.mark.tier(2)
    @pytest.mark.tra("Adapter.FastAPI.HTTPExceptionReported")
    def test_http_exception_5xx_reported(self, app: FastAPI, sink: InMemoryEventSink) -> None:
        with TestClient(app) as client:
            response = client.get("/unavailable")

        assert response.status_code == 503
        [event] = sink.events
        assert event.message == "HTTP 503: GET /unavailable"
        assert event.level is Level.ERROR

    @pytest.mark.tier(2)
    @pytest.mark.tra("Adapter.FastAPI.Panic")
    def test_unhandled_exception_captured_as_panic(
        self, app: FastAPI, sink: InMemoryEventSink
    ) -> None:
        with TestClient(app, raise_server_exceptions=False) as client:
            response = client.get("/crash")

        assert response.status_code == 500
        [event] = sink.events
        assert event.level is Level.FATAL
        assert event.tags["error_type"] == "panic"
        assert event.exception is not None
        assert event.exception.value == "route failed"

    @pytest.mark.tier(2)
    def test_excluded_path_not_captured(self, app: FastAPI, sink: InMemoryEventSink) -> None:
        with TestClient(app) as client:
            assert client.get("/health").status_code == 500
        assert sink.events == []
        assert sink.transactions == []

    @pytest.mark.tier(2)
    @pytest.mark.tra("Adapter.FastAPI.LifespanCloses")
    def test_lifespan_closes_pipeline_on_shutdown(
        self, app: FastAPI, pipeline: EventPipeline, sink: InMemoryEventSink
    ) -> None:
        with TestClient(app) as client:
            client.get("/users/1")
            assert not sink.closed

        assert sink.closed
        assert not pipeline.enabled
