"""FastAPI integration: middleware installation and shutdown flushing."""

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any

from fastapi import FastAPI

from capturepy.adapters.frameworks.asgi import ASGICaptureMiddleware
from capturepy.core.pipeline import EventPipeline


def install_capture(app: FastAPI, pipeline: EventPipeline, **options: Any) -> None:
    """Add the capture middleware to a FastAPI app.

    Args:
        app: FastAPI application.
        pipeline: Shared event pipeline.
        **options: Passed to ``ASGICaptureMiddleware`` (threshold,
                   wait_for_delivery, exclude_paths).
    """
    app.add_middleware(ASGICaptureMiddleware, pipeline=pipeline, **options)


def capture_lifespan(
    pipeline: EventPipeline,
) -> Callable[[FastAPI], AbstractAsyncContextManager[None]]:
    """Build a lifespan that closes the pipeline on shutdown.

    Example:
        ```python
        pipeline = create_pipeline()
        app = FastAPI(lifespan=capture_lifespan(pipeline))
        install_capture(app, pipeline)
        ```
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await asyncio.to_thread(pipeline.close)

    return lifespan
