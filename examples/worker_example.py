"""Example background worker and RPC service using capture guards.

Run with:
    CAPTURE_ENDPOINT=http://localhost:9000/ingest python -m examples.worker_example

Shows:
    - ``spawn_guarded`` for a thread whose failure must not kill the process
    - ``guarded`` on a coroutine consuming a queue
    - ``RpcCaptureInterceptors`` wrapping handlers of an RPC server
"""

import asyncio
import logging
import time

from capturepy import (
    CallInfo,
    RpcCaptureInterceptors,
    RpcError,
    StatusCode,
    create_pipeline,
    guarded,
    spawn_guarded,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("worker_example")

pipeline = create_pipeline()
interceptors = RpcCaptureInterceptors(pipeline)


def rebuild_search_index() -> None:
    time.sleep(0.05)
    raise OSError("index directory is read-only")


@guarded(pipeline, repanic=False)
async def consume(queue: asyncio.Queue[int]) -> None:
    while True:
        job = await queue.get()
        if job < 0:
            raise ValueError(f"invalid job id {job}")
        logger.info("processed job %d", job)
        queue.task_done()


async def get_user(request: dict, context: object) -> dict:
    if request["id"] == "missing":
        raise RpcError(StatusCode.NOT_FOUND, "no such user")
    if request["id"] == "corrupt":
        raise RpcError(StatusCode.INTERNAL, "row failed to decode")
    return {"id": request["id"], "name": "Alice"}


async def main() -> None:
    thread = spawn_guarded(rebuild_search_index, pipeline, name="indexer")

    queue: asyncio.Queue[int] = asyncio.Queue()
    for job in (1, 2, -1):
        queue.put_nowait(job)
    await consume(queue)

    call = CallInfo("/users.v1.Users/Get", metadata=[("x-user-id", "u-1")])
    for user_id in ("1", "missing", "corrupt"):
        try:
            reply = await interceptors.unary({"id": user_id}, None, call, get_user)
            logger.info("reply: %s", reply)
        except RpcError as exc:
            # NOT_FOUND is returned to the client without an event; INTERNAL is reported.
            logger.info("rpc failed with %s", exc.code.name)

    thread.join()
    pipeline.close()


if __name__ == "__main__":
    asyncio.run(main())
