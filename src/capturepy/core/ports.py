"""Port interfaces for event sinks and delivery backends.

The pipeline depends only on these protocols. Adapters live under
``capturepy.adapters``: in-memory and ring-buffer sinks for local use, and
a background transport that hands batches to a delivery backend.
"""

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from capturepy.core.models import CapturedEvent, Envelope, TransactionRecord


@runtime_checkable
class EventSinkPort(Protocol):
    """Port for the process-wide event sink.

    Implementations must accept concurrent calls from many request
    threads or tasks. ``send_*`` must not block on network I/O.
    """

    def send_event(self, event: CapturedEvent) -> None:
        """Enqueue an event for delivery."""
        ...

    def send_transaction(self, transaction: TransactionRecord) -> None:
        """Enqueue a finished transaction for delivery."""
        ...

    def flush(self, timeout: float) -> bool:
        """Block until pending items are delivered or ``timeout`` elapses.

        Returns:
            True if everything pending was delivered in time.
        """
        ...

    def close(self, timeout: float) -> bool:
        """Flush and release resources (worker threads, connections)."""
        ...


@runtime_checkable
class DeliveryPort(Protocol):
    """Port for the network call that hands items to the telemetry backend."""

    def deliver(self, items: Sequence[Envelope]) -> None:
        """Deliver a batch. Raises on failure."""
        ...

    def close(self) -> None:
        """Release underlying connections."""
        ...
