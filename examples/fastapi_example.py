"""Example FastAPI application with error and performance capture.

Run with:
    CAPTURE_ENDPOINT=http://localhost:9000/ingest \
    CAPTURE_ENVIRONMENT=development \
        uvicorn examples.fastapi_example:app --reload

Endpoints:
    /                 - Fast route; only a transaction is recorded
    /users/{user_id}  - Database lookup measured by OperationGuards
    /checkout         - Business event attributed to the X-User-ID header
    /slow             - Exceeds the request threshold; performance issue
    /unavailable      - 503 response; reported as an error message
    /crash            - Unhandled exception; captured as a fatal panic

Without CAPTURE_ENDPOINT the pipeline is disabled and every capture call
is a no-op.
"""

import asyncio
import logging
from typing import Annotated

from fastapi import FastAPI, Header, HTTPException

from capturepy import CaptureHandler, OperationGuards, create_pipeline, get_current_hub
from capturepy.adapters.frameworks.fastapi import capture_lifespan, install_capture

logging.basicConfig(level=logging.INFO)

pipeline = create_pipeline()
guards = OperationGuards(pipeline)
logging.getLogger().addHandler(CaptureHandler(pipeline, event_level=logging.ERROR))

app = FastAPI(title="Capture Example", lifespan=capture_lifespan(pipeline))
install_capture(app, pipeline, exclude_paths=["/health"])

USERS = {"1": "Alice", "2": "Bob"}


@app.get("/")
async def root() -> dict[str, str]:
    return {"message": "Hello! Try /slow, /unavailable or /crash."}


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/users/{user_id}")
async def get_user(user_id: str) -> dict[str, str]:
    """Look a user up under the database guard.

    Lookups slower than the database threshold are reported as performance
    issues; lookup failures are captured with ``component=database``.
    """

    async def lookup() -> str:
        await asyncio.sleep(0.01)
        return USERS[user_id]

    try:
        name = await guards.adatabase(lookup)
    except KeyError:
        raise HTTPException(status_code=404, detail="user not found") from None
    return {"id": user_id, "name": name}


@app.post("/checkout")
async def checkout(
    x_user_id: Annotated[str, Header()] = "anonymous",
) -> dict[str, str]:
    hub = get_current_hub()
    hub.add_breadcrumb("cart validated", category="checkout")
    with hub.start_span("payment.charge", "charge card"):
        await asyncio.sleep(0.02)
    hub.capture_business_event("checkout_completed", x_user_id, {"items": 3})
    return {"status": "paid"}


@app.get("/slow")
async def slow() -> dict[str, str]:
    await asyncio.sleep(0.3)
    return {"message": "that took a while"}


@app.get("/unavailable")
async def unavailable() -> dict[str, str]:
    raise HTTPException(status_code=503, detail="down for maintenance")


@app.get("/crash")
async def crash() -> dict[str, str]:
    raise RuntimeError("something went badly wrong")
