"""In-memory event sink."""

import threading

from capturepy.core.models import CapturedEvent, TransactionRecord


class InMemoryEventSink:
    """In-memory implementation of EventSinkPort.

    Keeps every event and transaction in a list. Suitable for testing and
    local inspection where delivery is not required.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: list[CapturedEvent] = []
        self._transactions: list[TransactionRecord] = []
        self.closed = False

    def send_event(self, event: CapturedEvent) -> None:
        with self._lock:
            self._events.append(event)

    def send_transaction(self, transaction: TransactionRecord) -> None:
        with self._lock:
            self._transactions.append(transaction)

    def flush(self, timeout: float) -> bool:
        return True

    def close(self, timeout: float) -> bool:
        self.closed = True
        return True

    @property
    def events(self) -> list[CapturedEvent]:
        """Snapshot of received events, oldest first."""
        with self._lock:
            return list(self._events)

    @property
    def transactions(self) -> list[TransactionRecord]:
        with self._lock:
            return list(self._transactions)

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
            self._transactions.clear()
