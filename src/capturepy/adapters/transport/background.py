"""Background transport: a bounded queue drained by a daemon worker thread.

``send_*`` never blocks on the network. A full queue drops the new item
and logs a warning. Delivery failures are logged and the batch counts as
handled, so ``flush`` cannot wait on a sink that is down.
"""

import logging
import threading
from collections import deque

from capturepy.core.models import CapturedEvent, Envelope, TransactionRecord
from capturepy.core.ports import DeliveryPort

logger = logging.getLogger(__name__)

DEFAULT_MAX_QUEUE_SIZE = 100
DEFAULT_BATCH_SIZE = 50


class BackgroundTransport:
    """EventSinkPort that delivers through a DeliveryPort off the calling thread.

    Args:
        delivery: Backend that performs the actual network call.
        max_queue_size: Items buffered before new ones are dropped.
        batch_size: Items handed to ``delivery.deliver`` per call.
    """

    def __init__(
        self,
        delivery: DeliveryPort,
        max_queue_size: int = DEFAULT_MAX_QUEUE_SIZE,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        self._delivery = delivery
        self._max_queue_size = max_queue_size
        self._batch_size = max(batch_size, 1)
        self._queue: deque[Envelope] = deque()
        self._cond = threading.Condition()
        self._in_flight = 0
        self._worker: threading.Thread | None = None
        self._closed = False
        self.dropped = 0
        self.failed = 0

    def send_event(self, event: CapturedEvent) -> None:
        self._enqueue(event)

    def send_transaction(self, transaction: TransactionRecord) -> None:
        self._enqueue(transaction)

    @property
    def pending(self) -> int:
        """Items queued or being delivered."""
        with self._cond:
            return len(self._queue) + self._in_flight

    def flush(self, timeout: float) -> bool:
        with self._cond:
            return self._cond.wait_for(
                lambda: not self._queue and self._in_flight == 0, timeout
            )

    def close(self, timeout: float) -> bool:
        drained = self.flush(timeout)
        with self._cond:
            self._closed = True
            self._cond.notify_all()
        worker = self._worker
        if worker is not None:
            worker.join(timeout)
        self._delivery.close()
        return drained

    def _enqueue(self, item: Envelope) -> None:
        with self._cond:
            if self._closed:
                logger.warning("Transport closed; dropping %s", type(item).__name__)
                return
            if len(self._queue) >= self._max_queue_size:
                self.dropped += 1
                logger.warning(
                    "Transport queue full (%d); dropping %s",
                    self._max_queue_size,
                    type(item).__name__,
                )
                return
            self._queue.append(item)
            self._ensure_worker()
            self._cond.notify_all()

    def _ensure_worker(self) -> None:
        # Caller holds self._cond.
        if self._worker is None or not self._worker.is_alive():
            self._worker = threading.Thread(
                target=self._run, name="capturepy-transport", daemon=True
            )
            self._worker.start()

    def _run(self) -> None:
        while True:
            with self._cond:
                self._cond.wait_for(lambda: self._queue or self._closed)
                if not self._queue:
                    return
                batch = [
                    self._queue.popleft()
                    for _ in range(min(self._batch_size, len(self._queue)))
                ]
                self._in_flight = len(batch)
            try:
                self._delivery.deliver(batch)
            except Exception:
                self.failed += len(batch)
                logger.exception("Failed to deliver %d item(s)", len(batch))
            finally:
                with self._cond:
                    self._in_flight = 0
                    self._cond.notify_all()
