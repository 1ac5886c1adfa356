"""Ring buffer event sink.

Provides bounded in-memory storage that automatically evicts the oldest
items when the buffer is full. Useful for services that keep recent
telemetry for inspection with predictable memory usage.
"""

import threading
from collections import deque

from capturepy.core.models import CapturedEvent, TransactionRecord


class RingBufferEventSink:
    """Ring buffer implementation of EventSinkPort.

    Events and transactions are kept in separate fixed-size buffers. When
    a buffer is full, its oldest item is evicted to make room.

    Args:
        max_size: Maximum number of items kept per buffer.
    """

    def __init__(self, max_size: int) -> None:
        self._lock = threading.Lock()
        self._events: deque[CapturedEvent] = deque(maxlen=max_size)
        self._transactions: deque[TransactionRecord] = deque(maxlen=max_size)

    def send_event(self, event: CapturedEvent) -> None:
        with self._lock:
            self._events.append(event)

    def send_transaction(self, transaction: TransactionRecord) -> None:
        with self._lock:
            self._transactions.append(transaction)

    def flush(self, timeout: float) -> bool:
        return True

    def close(self, timeout: float) -> bool:
        return True

    @property
    def events(self) -> list[CapturedEvent]:
        with self._lock:
            return list(self._events)

    @property
    def transactions(self) -> list[TransactionRecord]:
        with self._lock:
            return list(self._transactions)
